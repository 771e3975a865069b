"""
Transaction Gatekeeper service package.

The gatekeeper fronts the transaction processor, enforcing:
- Idempotency: at most one execution per caller-supplied idempotency key
- Rate limiting: a bounded number of requests per identity per window

Both checks are decided in one atomic step against the shared state store,
so any number of gateway instances can run side by side.

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.store: Shared state store clients (Redis, in-memory).
- app.gatekeeper: The atomic decision procedure and its result types.
- app.domain: Request handling protocol around the decision.
- app.adapters: Downstream transaction processor clients.
"""
