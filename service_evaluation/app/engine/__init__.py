"""
Flag evaluation engine.

Pure, synchronous evaluation of fully loaded flag snapshots:

- models: Flag, version, rule and condition snapshots; context and result.
- conditions: Operator semantics and type coercion for single conditions.
- bucketing: MurmurHash3 based percentage rollout.
- matcher: Rule kill switch, condition conjunction and rollout gate.
- versions: Selection of the active (or replayed) flag version.
- evaluator: First-match rule iteration with fallback to the flag state.

Nothing in this package performs I/O. Callers fetch flag definitions first
and hand the snapshot in.
"""
