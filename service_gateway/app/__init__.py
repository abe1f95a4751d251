"""
API Gateway service package for the Request Pipeline.

The gateway fronts client requests, admitting them in a fixed order:
- API key: the key must belong to a configured usage plan
- Quota: the plan's per-key request quota for the current period
- Token authorizer: bearer credential allow/deny, optionally cached

Admitted requests run the primary compute unit through the embedded
dispatcher, which routes outcomes to the success or failure queue.

Structure:
- app.main: FastAPI app, routes, and wiring.
- app.domain: admission middleware and usage plans.
"""
