#!/usr/bin/env python3
"""
Pre-load featured properties and restaurants into shared Redis storage.

Every client pointing at the same storage namespace then serves the featured
lists from durable storage until the featured window lapses. Run from a
developer workstation or a scheduled CI job after catalog changes.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List

from shared.config import get_config
from shared.logging import configure_logging
from staychill_client import QueryError, StayChillClient


FEATURED_KEYS = ("/api/properties/featured", "/api/restaurants/featured")


async def warm(*, api_base_url: str, redis_url: str, namespace: str, keys: List[str], dry_run: bool) -> dict:
    """Fetch each key through a client and return a summary."""
    config = get_config(
        api_base_url=api_base_url,
        redis_url=redis_url,
        storage_namespace=namespace,
        storage_backend="memory" if dry_run else "redis",
        enable_metrics=False,
    )
    summary = {"warmed": [], "failed": [], "dry_run": dry_run}
    async with StayChillClient(config) as client:
        for key in keys:
            try:
                data = await client.load(key, force=True)
            except QueryError as exc:
                summary["failed"].append({"key": key, "kind": exc.kind.value, "message": exc.message})
                continue
            summary["warmed"].append({"key": key, "items": len(data) if isinstance(data, list) else 1})

    return summary


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Warm shared storage with featured listings.")
    parser.add_argument("--api-url", default=os.getenv("STAYCHILL_API_BASE_URL", "http://localhost:5000"), help="StayChill API base URL")
    parser.add_argument("--redis-url", default=os.getenv("STAYCHILL_REDIS_URL", "redis://localhost:6379/0"), help="Redis connection URL")
    parser.add_argument("--namespace", default=os.getenv("STAYCHILL_STORAGE_NAMESPACE", "staychill:storage:"), help="Storage key namespace")
    parser.add_argument("--key", action="append", dest="keys", default=None, help="Resource path to warm (repeatable)")
    parser.add_argument("--dry-run", action="store_true", help="Fetch but do not write to Redis")
    parser.add_argument("--log-level", default=os.getenv("STAYCHILL_LOG_LEVEL", "info"))
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    configure_logging("cache-warm", args.log_level)

    try:
        summary = asyncio.run(
            warm(
                api_base_url=args.api_url,
                redis_url=args.redis_url,
                namespace=args.namespace,
                keys=args.keys or list(FEATURED_KEYS),
                dry_run=args.dry_run,
            )
        )
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[cache-warm] failed: {exc}", file=sys.stderr)
        return 1

    if args.dry_run:
        print("[cache-warm] DRY RUN - no Redis writes executed")

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    return 0 if not summary["failed"] else 2


if __name__ == "__main__":
    raise SystemExit(main())
