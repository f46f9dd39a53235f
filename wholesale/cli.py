"""Command-line entry point.

Usage:
    wholesale search --platform alibaba --query socks --limit 20
    wholesale refresh --listing-id 42
    wholesale refresh --url https://www.alibaba.com/product-detail/x_1.html
    wholesale audit --platform alibaba --max-listings 100
    wholesale schedule
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import structlog

from wholesale.config import Settings
from wholesale.core.exceptions import ConfigurationError
from wholesale.core.logging import configure_logging
from wholesale.runtime import Runtime, build_runtime
from wholesale.services.ingest_service import SearchJob

logger = structlog.get_logger(__name__)


def _banner(title: str) -> None:
    print(f"\n{'=' * 70}")
    print(f"  {title}")
    print(f"{'=' * 70}\n")


async def run_search(runtime: Runtime, args: argparse.Namespace) -> int:
    job = SearchJob(
        platform=args.platform,
        query=args.query,
        limit=args.limit,
        headless=False if args.static_only else None,
    )
    _banner(f"Searching {job.platform} for '{job.query}'")
    result = await runtime.ingest_service().run(job)

    for i, listing in enumerate(result.listings, 1):
        stub = listing.stub
        print(f"[{i}] {stub.title if stub and stub.title else '(untitled)'}")
        if stub and stub.price_raw:
            print(f"    Price: {stub.price_raw}")
        print(f"    URL: {listing.url}")

    print(f"\n  Found: {result.found}  Stored: {len(result.listings)}\n")
    return 0


async def run_refresh(runtime: Runtime, args: argparse.Namespace) -> int:
    result = await runtime.refresh_service().refresh(listing_id=args.listing_id, url=args.url)
    print(json.dumps(result.as_dict(), indent=2))
    return 0 if result.ok else 1


async def run_audit(runtime: Runtime, args: argparse.Namespace) -> int:
    platforms = [args.platform] if args.platform else runtime.platforms
    report = await runtime.audit_service().sweep(platforms, max_listings=args.max_listings)
    print(json.dumps(report.as_dict(), indent=2))
    return 0


async def run_schedule(runtime: Runtime, args: argparse.Namespace) -> int:
    scheduler = runtime.audit_scheduler(max_listings=args.max_listings)
    scheduler.load_platform_jobs(runtime.platforms)
    scheduler.start()
    _banner(f"Audit scheduler running for {', '.join(runtime.platforms)} (Ctrl+C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
    return 0


COMMANDS = {
    "search": run_search,
    "refresh": run_refresh,
    "audit": run_audit,
    "schedule": run_schedule,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wholesale",
        description="Wholesale listing ingestion, detail healing and image caching",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--static-only", action="store_true", help="Never launch a headless browser")
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search a platform and store the listings")
    search.add_argument("--platform", required=True, help="Platform identifier (e.g., 'alibaba')")
    search.add_argument("--query", required=True, help="Search keywords")
    search.add_argument("--limit", type=int, default=50, help="Maximum listings (default: 50)")

    refresh = sub.add_parser("refresh", help="Re-scrape one stored listing")
    target = refresh.add_mutually_exclusive_group(required=True)
    target.add_argument("--listing-id", type=int, help="Stored listing id")
    target.add_argument("--url", help="Listing URL")

    audit = sub.add_parser("audit", help="Run one audit/heal sweep")
    audit.add_argument("--platform", help="Only sweep this platform (default: all enabled)")
    audit.add_argument("--max-listings", type=int, help="Cap listings visited per platform")

    schedule = sub.add_parser("schedule", help="Run periodic audit sweeps until interrupted")
    schedule.add_argument("--max-listings", type=int, help="Cap listings visited per sweep")

    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    runtime = build_runtime(settings, headless=False if args.static_only else None)
    await runtime.start()
    try:
        return await COMMANDS[args.command](runtime, args)
    finally:
        await runtime.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_logging(settings.LOG_LEVEL, json=settings.LOG_JSON)

    try:
        return asyncio.run(_run(args, settings))
    except ConfigurationError as e:
        logger.error("startup_failed", error=e.message, setting=e.setting)
        print(f"\nError: {e.message}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
