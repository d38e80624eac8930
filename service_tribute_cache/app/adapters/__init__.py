"""
Adapters package for the Tribute Cache service.

Contains the HTTP client for the upstream tribute API. The client is
built on the caching transport so every call goes through interception.
"""

from .tribute_api_client import TributeApiClient

__all__ = [
    "TributeApiClient",
]
