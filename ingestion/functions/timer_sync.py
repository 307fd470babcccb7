"""
Timer-Triggered Azure Function for Periodic MISP to Sentinel Sync

Runs on schedule (e.g. every hour). Configuration comes from the Function
App settings (TI_* variables); TI_CONFIG_FILE may point to a YAML file.
"""
import logging
import os

import azure.functions as func

from pipeline.orchestrator import SyncOrchestrator
from utils.config import load_settings


def main(mytimer: func.TimerRequest) -> None:
    """
    Timer-triggered function running one sync

    Args:
        mytimer: Timer trigger object

    Raises:
        SyncError: If the configuration is invalid or a task failed, so the
            Functions host records the invocation as failed
    """
    if mytimer.past_due:
        logging.warning('Timer is past due!')

    logging.info('Timer trigger function started')

    settings = load_settings(os.getenv('TI_CONFIG_FILE'))
    orchestrator = SyncOrchestrator.from_settings(settings)

    result = orchestrator.run()

    logging.info(f"Timer trigger completed: {result.run.counters()}")

    if not result.success:
        logging.error(f"Sync failed: {result.error}")
        raise result.error
