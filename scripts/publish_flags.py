#!/usr/bin/env python3
"""
Publish flag definitions from a YAML/JSON file to Redis.

The Evaluation service reads ``flag:{tenant_id}:{key}`` when it runs with
``FLAGS_FLAGS_SOURCE=redis``. This helper validates a flags file with the same
codec the service uses and writes every flag under its key, so a definitions
file can be promoted from a developer workstation or CI job. Each write is
announced on the ``flag-changes`` channel so running instances drop their
cached copy.
"""

import argparse
import asyncio
import json
from pathlib import Path
from typing import List, Optional
import sys
import os

import yaml

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from service_evaluation.app.engine.models import FeatureFlag  # noqa: E402
from service_evaluation.app.store.codec import decode_flags  # noqa: E402
from service_evaluation.app.store.redis_store import RedisFlagStore  # noqa: E402


def load_flags(path: Path, tenant_id: Optional[str] = None) -> List[FeatureFlag]:
    """Read and validate a flags file, optionally keeping one tenant."""
    with path.open("r", encoding="utf-8") as handle:
        flags = decode_flags(yaml.safe_load(handle) or [])
    if tenant_id:
        flags = [flag for flag in flags if flag.tenant_id == tenant_id]
    return flags


async def publish(*, redis_url: str, flags: List[FeatureFlag], dry_run: bool) -> dict:
    """Write flags to Redis and return the summary."""
    keys = [f"{RedisFlagStore.FLAG_PREFIX}{flag.tenant_id}:{flag.key}" for flag in flags]
    if dry_run:
        return {"published": 0, "planned": keys}

    store = RedisFlagStore(redis_url, cache_ttl_seconds=0, listen_for_changes=False)
    await store.start()
    try:
        for flag in flags:
            await store.publish_flag(flag)
    finally:
        await store.stop()

    return {"published": len(flags), "keys": keys}


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish flag definitions to Redis.")
    parser.add_argument("flags_file", type=Path, help="YAML or JSON flags file")
    parser.add_argument("--redis-url", default=os.getenv("FLAGS_REDIS_URL", "redis://localhost:6379/0"), help="Redis connection URL")
    parser.add_argument("--tenant", default=None, help="Only publish flags of this tenant")
    parser.add_argument("--dry-run", action="store_true", help="Validate and list keys without writing to Redis")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    try:
        flags = load_flags(args.flags_file, args.tenant)
        summary = asyncio.run(publish(redis_url=args.redis_url, flags=flags, dry_run=args.dry_run))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[publish-flags] failed: {exc}", file=sys.stderr)
        return 1

    if args.dry_run:
        print("[publish-flags] DRY RUN - no Redis writes executed")

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
