"""
Caching package for the Tribute Cache service.

Provides the key builder, TTL policy, the two-tier store (fast shared tier
plus durable fallback tier) and the invalidator. Every store operation
degrades instead of raising; the cache can only help or be neutral.
"""
