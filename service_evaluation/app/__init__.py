"""
Evaluation Service package for the Feature Flag platform.

Decides whether a tenant's feature flag is on for a request context. It
provides:

- app.main: API surface for single and bulk evaluation, health and stats.
- app.engine: Pure evaluation engine (conditions, rules, rollout, versions).
- app.store: Read-side flag providers (file snapshot, Redis).
- app.evaluation: Fetch-then-evaluate facade with metrics and logging.

Guidelines:
- Evaluation is a pure function of a flag snapshot and a context.
- Snapshots are swapped whole, never edited in place.
- Every evaluation yields a result with its reason and version.
"""
