"""Command-line interface for the feed sync job."""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from feedsync.catalog import CatalogClient
from feedsync.config import SyncSettings, get_feed_definitions
from feedsync.enrichment import EnrichmentClient
from feedsync.errors import AuthenticationError, ConfigurationError
from feedsync.logging_config import get_logger, setup_logging
from feedsync.models import FeedDefinition
from feedsync.shutdown import get_shutdown_handler
from feedsync.sync import SyncOrchestrator

__all__ = ["main", "parse_args", "select_feeds", "run_sync"]

logger = get_logger("cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="feedsync",
        description="Sync product feeds into the shop catalog, enriched with OpenAI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Feeds are configured through environment variables (or a .env file):
  FEED_URL_1=https://example.com/feed.csv.gz
  FEED_ID_1=F1
  FEED_MAPPING_1=ext_Hersteller=Hersteller|ext_EAN=europäische Artikelnummer EAN
  FEED_DEFAULT_MANUFACTURER_1=Acme

Examples:
  # Sync all configured feeds
  feedsync

  # Sync only feed F1 with a specific env file
  feedsync --env-file /etc/feedsync.env --feeds F1

  # Show configured feeds
  feedsync --list-feeds
        """,
    )
    parser.add_argument(
        "--env-file",
        metavar="PATH",
        help="Load environment variables from this file (default: .env in the working directory)",
    )
    parser.add_argument(
        "--feeds",
        nargs="+",
        metavar="FEED_ID",
        help="Only sync the feeds with these ids (default: all)",
    )
    parser.add_argument(
        "--list-feeds",
        action="store_true",
        help="List configured feeds and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Don't write the JSONL log file",
    )
    return parser.parse_args(argv)


def select_feeds(feeds: List[FeedDefinition], wanted: Optional[List[str]]) -> List[FeedDefinition]:
    """Restrict feeds to the requested ids, keeping configuration order.

    Raises:
        ConfigurationError: If no feeds are configured or an id is unknown
    """
    if not feeds:
        raise ConfigurationError("No feed definitions found (FEED_URL_<n>)")
    if not wanted:
        return feeds

    known = {f.identifier for f in feeds}
    unknown = [w for w in wanted if w not in known]
    if unknown:
        raise ConfigurationError(f"Unknown feed ids: {', '.join(unknown)}. Available: {sorted(known)}")
    return [f for f in feeds if f.identifier in wanted]


def run_sync(settings: SyncSettings, feeds: List[FeedDefinition]) -> int:
    """Run the sync and translate its result into an exit code."""
    catalog = CatalogClient(settings)
    enrichment = EnrichmentClient(api_key=settings.openai_api_key, model=settings.openai_model)
    orchestrator = SyncOrchestrator(catalog, enrichment, settings)

    try:
        report = orchestrator.run(feeds)
    except AuthenticationError as e:
        logger.error(f"Authentication failed, aborting run: {e}")
        return EXIT_FAILURE

    if report.interrupted:
        logger.warning("Run interrupted before all feeds were processed")
        return EXIT_INTERRUPTED

    logger.info("All feeds processed.")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    args = parse_args(argv)

    if args.env_file:
        if not Path(args.env_file).is_file():
            print(f"Env file not found: {args.env_file}", file=sys.stderr)
            return EXIT_FAILURE
        load_dotenv(dotenv_path=args.env_file)
    else:
        load_dotenv()

    setup_logging(
        level=getattr(logging, args.log_level),
        log_to_file=not args.no_log_file,
    )

    try:
        feeds = get_feed_definitions(os.environ)
        if args.list_feeds:
            if not feeds:
                print("No feeds configured.")
            for feed in feeds:
                rules = ", ".join(f"{s}->{t}" for s, t in feed.mapping_rules) or "none"
                print(f"  [{feed.index}] {feed.identifier}: {feed.url} (mapping: {rules})")
            return EXIT_OK

        feeds = select_feeds(feeds, args.feeds)
        settings = SyncSettings.from_env(os.environ)
        settings.require_catalog_credentials()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILURE

    handler = get_shutdown_handler().install()
    try:
        return run_sync(settings, feeds)
    finally:
        handler.uninstall()


if __name__ == "__main__":
    sys.exit(main())
