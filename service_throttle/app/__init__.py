"""
Throttling Service package.

Per-client leaky-bucket rate limiting with state held in a shared Redis
cache, so several instances enforce the same budgets.

Structure:
- app.main: FastAPI app, routes, and bucket registration.
- app.bucket: Bucket state, state store, and admission logic.
- app.middleware: Handler wrapping, app-wide middleware and client key functions.
"""
