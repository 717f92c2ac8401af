"""
Listing API package for the Service Marketplace.

The service answers listing searches and accepts new listings, enforcing:
- Admission control: per-caller window limits in Redis, with a bypass for
  callers holding a signed internal service token
- Response caching: search results cached in Redis under canonical keys
- Query composition: text, category, state, price and geo filters compiled
  for the PostgreSQL document store

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.adapters: Document store driver.
- app.auth: Internal service token verification.
- app.caching: Cache key derivation and the response cache.
- app.ratelimit: Admission controller.
- app.search: Request models, query composer and the search pipeline.
- app.domain: Listing creation rules.
"""
