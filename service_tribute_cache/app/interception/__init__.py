"""
Interception package for the Tribute Cache service.

Classifies outbound upstream API calls, serves cache hits with a
synthesized response and captures successful misses for later hits.
"""
