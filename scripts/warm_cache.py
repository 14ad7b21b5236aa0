#!/usr/bin/env python3
"""
warm_cache.py - Pre-populate the vulnwatch cache from the upstream feeds

Usage:
    python scripts/warm_cache.py [--days N] [--source NVD|EUVD|ALL] [--term T ...] [--id ID ...]

Options:
    --days N      Date-range window to fetch (default: 30)
    --source S    Feed to warm (default: ALL)
    --term T      Keyword to search, may be repeated
    --id ID       CVE or EUVD id to look up, may be repeated
    --exploited   Also refresh the known-exploited list

Requires VULNWATCH_DATABASE_URL. Queries go through the normal query
router, so fresh keys are skipped and rate limits are respected.
"""

import argparse
import asyncio
import sys

from loguru import logger

from vulnwatch.api.dependencies import build_clients, get_cache_store
from vulnwatch.api.main import configure_logging
from vulnwatch.cache.freshness import FreshnessPolicy
from vulnwatch.config import settings
from vulnwatch.errors import UpstreamError
from vulnwatch.query.router import QueryRouter
from vulnwatch.types import Source


async def warm(args: argparse.Namespace) -> int:
    store = get_cache_store()
    if store is None:
        logger.error("VULNWATCH_DATABASE_URL is not set, nothing to warm")
        return 1

    await store.create_schema()
    router = QueryRouter(
        build_clients(),
        store=store,
        policy=FreshnessPolicy.from_settings(settings),
        serve_stale_on_error=False,
        page_size=settings.page_size,
    )
    source = None if args.source == "ALL" else Source(args.source)
    failures = 0

    jobs = [("date range", lambda: router.list_recent(args.days, source))]
    jobs += [(f"search '{t}'", lambda t=t: router.search(t, days=args.days)) for t in args.term]
    jobs += [(f"lookup {i}", lambda i=i: router.lookup(i)) for i in args.id]
    if args.exploited:
        jobs.append(("exploited", lambda: router.list_exploited(source)))

    for label, job in jobs:
        try:
            result = await job()
            logger.info(
                "{}: {} record(s){}", label, result.total, " (already fresh)" if result.from_cache else ""
            )
        except UpstreamError as e:
            failures += 1
            logger.error("{} failed: {}", label, e)

    logger.info("Cache now holds {} record(s)", await store.total_count())
    return 1 if failures else 0


def main():
    parser = argparse.ArgumentParser(description="Warm the vulnwatch cache")
    parser.add_argument("--days", type=int, default=settings.default_days)
    parser.add_argument("--source", choices=["ALL", "NVD", "EUVD"], default="ALL")
    parser.add_argument("--term", action="append", default=[])
    parser.add_argument("--id", action="append", default=[])
    parser.add_argument("--exploited", action="store_true")
    args = parser.parse_args()

    configure_logging()
    sys.exit(asyncio.run(warm(args)))


if __name__ == "__main__":
    main()
