import argparse

from loguru import logger

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db import init_db
from app.errors import ServiceError
from app.services.sync_service import SyncService
from ingestion.registry import available_adapters


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest one venue's open events into the catalog")
    parser.add_argument(
        "--platform",
        default="polymarket",
        choices=available_adapters(),
        help="Venue to sync",
    )
    parser.add_argument("--type", dest="event_type", default="sports", help="Event type to fetch")
    parser.add_argument(
        "--all",
        action="store_true",
        help="Sync every venue listed in sync.enabled_platforms instead of --platform",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = get_settings()
    configure_logging(settings.log)
    init_db()

    platforms = list(settings.sync.enabled_platforms) if args.all else [args.platform]
    service = SyncService(config=settings)
    failures = 0
    for platform in platforms:
        try:
            summary = service.sync_platform(platform, args.event_type)
        except (ServiceError, LookupError) as exc:
            logger.error("Sync of {} failed: {}", platform, exc)
            failures += 1
            continue
        logger.info(
            "{}: {} batches, {} events, {} odds",
            summary.platform,
            summary.batches,
            summary.events,
            summary.odds,
        )
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
