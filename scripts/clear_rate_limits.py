#!/usr/bin/env python3
"""
Clear rate limit counters for one client address.

Meant for developers locked out of the local admin login. Loopback
addresses clear every counter, since local traffic all shares one identity.

Usage: python scripts/clear_rate_limits.py [ip-address]
"""

import argparse
import asyncio
import os
import sys
from typing import Dict, List

from service_blog.app.adapters.counter_store import CounterStore, RedisCounterStore
from shared.errors import StoreUnavailableError

KEY_PATTERNS = ("auth_rate_limit*", "api_rate_limit*", "custom_rate_limit*")
LOOPBACK_IDENTITIES = ("127.0.0.1", "::1", "localhost")


def key_identity(key: str) -> str:
    """Identity segment of ``<scope>_rate_limit:<identity>:<window>``."""
    return ":".join(key.split(":")[1:-1])


def matches_identity(key: str, identity: str) -> bool:
    """True when ``key`` belongs to exactly ``identity`` in any of its spellings."""
    if identity in LOOPBACK_IDENTITIES:
        return True
    return key_identity(key) in {
        identity,
        identity.replace(".", "_"),
        identity.replace(".", "-"),
    }


async def clear_rate_limits(store: CounterStore, identity: str) -> Dict[str, List[str]]:
    """Delete matching counters and return the removed keys per pattern."""
    cleared: Dict[str, List[str]] = {}
    for pattern in KEY_PATTERNS:
        keys = [key for key in await store.scan_keys(pattern) if matches_identity(key, identity)]
        if keys:
            await store.delete(*keys)
        cleared[pattern] = keys
    return cleared


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clear rate limit counters for a client address.")
    parser.add_argument("ip", nargs="?", default="127.0.0.1", help="Client address (default: 127.0.0.1)")
    parser.add_argument("--redis-url", default=os.getenv("BLOG_REDIS_URL", "redis://localhost:6379/0"), help="Redis connection URL")
    return parser.parse_args()


async def _run(redis_url: str, identity: str) -> Dict[str, List[str]]:
    store = RedisCounterStore(redis_url)
    try:
        return await clear_rate_limits(store, identity)
    finally:
        await store.close()


def main() -> int:
    args = _parse_args()
    print(f"[clear-rate-limits] clearing counters for {args.ip}")
    try:
        cleared = asyncio.run(_run(args.redis_url, args.ip))
    except KeyboardInterrupt:
        return 130
    except StoreUnavailableError as exc:
        print(f"[clear-rate-limits] failed: {exc.message}", file=sys.stderr)
        return 1

    total = 0
    for pattern, keys in cleared.items():
        if not keys:
            print(f"  {pattern}: no keys")
            continue
        print(f"  {pattern}: {len(keys)} keys")
        for key in keys:
            print(f"    - {key}")
        total += len(keys)

    print(f"[clear-rate-limits] cleared {total} keys")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
