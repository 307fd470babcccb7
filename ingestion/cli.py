"""Command-line entry point for the MISP to Sentinel sync."""

import logging
import signal
import sys
from typing import Optional

import click

from pipeline.orchestrator import SyncOrchestrator
from utils.config import load_settings
from utils.errors import SyncError
from utils.log import configure_logging

logger = logging.getLogger(__name__)


@click.command()
@click.option(
    '--config',
    'config_path',
    type=click.Path(dir_okay=False),
    default=None,
    help='The YAML configuration file.'
)
def main(config_path: Optional[str]):
    """
    Push recent MISP indicators into Microsoft Sentinel and remove expired
    ones. Every setting can also be given through TI_* environment variables.
    """
    configure_logging()

    try:
        settings = load_settings(config_path)
    except SyncError as e:
        logger.critical(f"Failed to load configuration {config_path}: {e}")
        sys.exit(1)

    configure_logging(settings.log.level)

    try:
        orchestrator = SyncOrchestrator.from_settings(settings)
    except SyncError as e:
        logger.critical(f"Could not create clients: {e}")
        sys.exit(1)

    def _cancel(signum, frame):
        orchestrator.cancel()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)

    result = orchestrator.run()

    if not result.success:
        logger.critical(f"Sync failed: {result.error}")
        sys.exit(1)

    logger.info("Submitted all TI to Sentinel")


if __name__ == '__main__':
    main()
