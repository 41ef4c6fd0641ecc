#!/usr/bin/env python3
"""
Scheduled runner for the weekly pipeline.

Run manually: golf-edge-sync
Schedule with cron: 0 7 * * 1-4 golf-edge-sync
"""

import sys
import logging
from datetime import datetime

from .config import get_config, Config
from .database import DatabaseError
from .models import RunStatus
from .pipeline import get_pipeline

logger = logging.getLogger(__name__)


def setup_logging(config: Config):
    """Log to <data_dir>/pipeline.log and stderr."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.data_dir / 'pipeline.log'),
            logging.StreamHandler()
        ]
    )


def run_sync(config: Config = None) -> bool:
    """Run one pipeline pass for the configured mode. True when it completed."""
    config = config or get_config()
    logger.info("=" * 50)
    logger.info(f"Starting scheduled run at {datetime.now()}")

    try:
        pipeline = get_pipeline(config)
        removed = pipeline.db.clear_expired_cache()
    except DatabaseError as e:
        logger.error(f"Cannot open database: {e}")
        return False
    if removed:
        logger.info(f"Cleared {removed} expired cache entries")

    artifact = pipeline.run()
    if artifact.status != RunStatus.COMPLETED:
        logger.error(f"Run {artifact.run_key} failed at {artifact.failure_step}: {artifact.error_summary}")
        return False

    logger.info(
        f"Run {artifact.run_key} completed with {artifact.recommendations_created} "
        f"recommendations across {artifact.events_processed} events"
    )
    return True


def main():
    config = get_config()
    setup_logging(config)
    success = run_sync(config)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
