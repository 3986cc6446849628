"""
Grepolis API Reflector service package.

The reflector fronts browser requests for Grepolis world data, providing:
- Cross-origin headers on every response, including errors
- An in-memory, bounded, per-endpoint TTL cache
- Single-flight coalescing of concurrent origin fetches

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: HTTP client for the origin API.
- app.caching: Cache store and request coalescer.
- app.domain: Endpoint catalogue, results, CORS policy, and the responder.
"""
