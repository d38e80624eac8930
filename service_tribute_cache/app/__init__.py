"""
Tribute Cache service package.

The service sits between the host application and the upstream tribute
API, caching responses to cut latency and upstream load:
- Interception: classify outbound calls and short-circuit cache hits
- Caching: key derivation, TTL policy, two-tier store, invalidation
- Admin: authenticated endpoints for invalidation and stats

Structure:
- app.main: FastAPI app exposing the admin control surface.
- app.adapters: HTTP client for the upstream tribute API.
- app.caching: Keys, TTL policy, tiers, store and invalidator.
- app.interception: Classifier, interceptor and httpx transport.
"""
