"""
StoreGuard Backend: API Routes Package
========================================

Route Inventory:
    - health.py:  GET /         (API welcome)
                  GET /health   (service + database health)
    - stats.py:   GET /api/stats (guard diagnostics, non-production only)

The storefront's business routers (products, cart, orders, ...) mount
alongside these under /api and inherit the whole guard chain.
"""
