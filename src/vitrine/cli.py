"""CLI tools for inspecting the storefront search index and cache."""

import argparse
import asyncio
import json
import logging
import sys

from .config import get_config
from .container import StorefrontServices

logger = logging.getLogger(__name__)


async def search(args):
    """Run a query against a freshly loaded index."""
    try:
        async with StorefrontServices() as services:
            if not services.index.ready:
                print("❌ Search index unavailable: catalog fetch failed")
                sys.exit(1)

            executor = services.executor
            response = executor.search_all(args.term) if args.all else executor.search(args.term)
            results = response.results[: args.limit] if args.limit else response.results

            print(f"🔎 '{args.term}': {response.total} matches")
            for entry in results:
                product = entry.product
                print(f"  {product.name} - {product.price:.2f} (score {entry.score:.0f}) {product.url}")

            if response.did_you_mean:
                print(f"Did you mean: {response.did_you_mean}?")
            if response.categories:
                facets = ", ".join(f"{c.name} ({c.count})" for c in response.categories)
                print(f"Categories: {facets}")
            if response.suggestions:
                print(f"Related: {', '.join(response.suggestions)}")

    except Exception as e:
        logger.error(f"Search failed: {e}")
        sys.exit(1)


async def cache_command(args):
    """Show statistics for, sweep, or invalidate entries in the durable cache."""
    try:
        async with StorefrontServices(load_index=False) as services:
            cache = services.cache

            if args.cache_command == "stats":
                stats = await cache.get_stats()
                print("📊 Adaptive Cache Statistics")
                print("=" * 40)
                print(f"Strategy: {stats['strategy']}")
                print(f"Durable entries: {stats['durable_entries']}")
                print(f"Tracked keys: {stats['tracked_keys']}")
                print(f"Popular keys: {stats['popular_keys']}")
                print(f"Swept on startup: {stats['swept']}")
            elif args.cache_command == "sweep":
                removed = await cache.sweep()
                print(f"✅ Removed {removed} expired entries")
            elif args.cache_command == "invalidate":
                if await cache.invalidate(args.key):
                    print(f"✅ Invalidated {args.key}")
                else:
                    print(f"No cache entry for {args.key}")

    except Exception as e:
        logger.error(f"Cache command failed: {e}")
        sys.exit(1)


def show_config(args):
    """Print the effective configuration with sensitive fields masked."""
    print(json.dumps(get_config().to_safe_dict(), indent=2))


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Vitrine storefront search and cache CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Search command
    search_parser = subparsers.add_parser("search", help="Search the product catalog")
    search_parser.add_argument("term", help="Free-text query")
    search_parser.add_argument("--limit", "-n", type=int, help="Show at most N results")
    search_parser.add_argument(
        "--all", action="store_true", help="Return the full result list instead of the inline cap"
    )

    # Cache command
    cache_parser = subparsers.add_parser("cache", help="Inspect and maintain the cache")
    cache_subparsers = cache_parser.add_subparsers(dest="cache_command")
    cache_subparsers.add_parser("stats", help="Show cache statistics")
    cache_subparsers.add_parser("sweep", help="Delete entries past their stale window")
    invalidate_parser = cache_subparsers.add_parser("invalidate", help="Remove one cache key")
    invalidate_parser.add_argument("key", help="Cache key to remove")

    # Config command
    subparsers.add_parser("config", help="Show effective configuration")

    args = parser.parse_args(argv)

    # Configure logging
    monitoring = get_config().monitoring
    default_level = getattr(logging, monitoring.log_level, logging.INFO)
    log_level = logging.DEBUG if args.verbose else default_level
    logging.basicConfig(level=log_level, format=monitoring.log_format)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Run command
    if args.command == "search":
        asyncio.run(search(args))
    elif args.command == "cache":
        if not args.cache_command:
            cache_parser.print_help()
            sys.exit(1)
        asyncio.run(cache_command(args))
    elif args.command == "config":
        show_config(args)


if __name__ == "__main__":
    main()
