"""
Flag definition providers for the Evaluation Service.

Providers answer ``get_flag(tenant_id, key)`` with a complete, immutable
FeatureFlag snapshot:

- codec: Validation of the published JSON shape and conversion to snapshots.
- snapshot: In-memory snapshot loaded from a YAML/JSON file.
- redis_store: Definitions published to Redis, cached locally with a TTL.
"""
