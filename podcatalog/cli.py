"""Command line entry point: ``podcatalog crawl|add|reactivate|shows``."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Callable, Optional, Sequence

from src.contracts.catalog import ShowState
from src.errors import ShowNotFound
from src.scheduler import CrawlContext, CrawlScheduler
from src.utils.url_canonicalizer import InvalidFeedUrl, normalize_feed_url

ContextFactory = Callable[[], CrawlContext]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="podcatalog",
        description="Podcast feed ingestion and catalog reconciliation",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    crawl = commands.add_parser("crawl", help="Run the crawl scheduler")
    crawl.add_argument(
        "--once",
        action="store_true",
        help="Crawl the shows that are due now, print a report and exit",
    )

    add = commands.add_parser("add", help="Ingest one or more new feed URLs")
    add.add_argument("urls", nargs="+", metavar="URL")

    reactivate = commands.add_parser("reactivate", help="Re-enable a disabled show")
    reactivate.add_argument("url", metavar="URL")

    shows = commands.add_parser("shows", help="List shows in the catalog")
    shows.add_argument(
        "--state", choices=[state.value for state in ShowState], default=None
    )
    shows.add_argument("--limit", type=int, default=100)
    return parser


def _default_context() -> CrawlContext:
    from config.settings import CONFIG, validate_config
    from config.version import PROJECT_VERSION
    from src.utils.logger import setup_logging

    validate_config()
    logger_factory = setup_logging()
    logger_factory.log_system_startup(
        PROJECT_VERSION,
        {
            "environment": CONFIG.app.environment,
            "database": CONFIG.database.driver,
            "max_concurrency": CONFIG.scheduler.max_concurrency,
        },
    )
    return CrawlContext.from_settings(logger_factory=logger_factory)


async def _crawl(context: CrawlContext, once: bool) -> int:
    scheduler = CrawlScheduler(context)
    try:
        if once:
            report = await scheduler.run_once()
            print(json.dumps(report, indent=2, sort_keys=True))
            return 0

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, stop_event.set)
            except NotImplementedError:
                signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop_event.set))
        await scheduler.run_forever(stop_event)
        return 0
    finally:
        await context.aclose()


async def _add(context: CrawlContext, urls: Sequence[str]) -> int:
    scheduler = CrawlScheduler(context)
    exit_code = 0
    try:
        for url in urls:
            try:
                result = await scheduler.add_feed(url)
            except InvalidFeedUrl as exc:
                print(f"invalid URL {url!r}: {exc}", file=sys.stderr)
                exit_code = 1
                continue
            if result is None:
                print(f"{url}: skipped, a crawl is already running")
                continue
            print(json.dumps(result.as_dict(), sort_keys=True))
            if not result.outcome.is_success:
                exit_code = 1
    finally:
        await context.aclose()
    return exit_code


def _reactivate(context: CrawlContext, url: str) -> int:
    try:
        show = context.store.reactivate_show(normalize_feed_url(url))
    except (InvalidFeedUrl, ShowNotFound) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(f"reactivated show {show['id']}: {show['feed_url']}")
    return 0


def _shows(context: CrawlContext, state: Optional[str], limit: int) -> int:
    rows = context.store.list_shows(state=state, limit=limit)
    for row in rows:
        print(
            f"{row['id']:>6}  {row['state']:<8}  failures={row['consecutive_failures']:<3}  "
            f"{row['feed_url']}  {row['title']}"
        )
    if not rows:
        print("no shows")
    return 0


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    context_factory: Optional[ContextFactory] = None,
) -> int:
    args = build_parser().parse_args(argv)
    context = (context_factory or _default_context)()

    if args.command == "crawl":
        return asyncio.run(_crawl(context, args.once))
    if args.command == "add":
        return asyncio.run(_add(context, args.urls))
    try:
        if args.command == "reactivate":
            return _reactivate(context, args.url)
        return _shows(context, args.state, args.limit)
    finally:
        asyncio.run(context.aclose())


if __name__ == "__main__":
    sys.exit(main())
