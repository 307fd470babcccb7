"""
Sync Engine

Creates translated indicators in Sentinel unless one with the same display
name already exists
"""
from dataclasses import dataclass
from typing import Iterable, Optional
import logging
import threading

from models.threat_indicator import ThreatIndicator
from storage.sentinel_client import SentinelClient
from utils.errors import RunCancelled, SyncError, TransportError


@dataclass
class UpsertResult:
    """Counters of one upsert_all call and the error that stopped it, if any"""
    created: int = 0
    skipped_existing: int = 0
    lookup_errors: int = 0
    error: Optional[SyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SyncEngine:
    """
    Create-if-absent writer for Sentinel indicators

    Existing indicators are never updated. A failed create stops the whole
    batch since it usually means a credential or quota problem.
    """

    def __init__(self, store: SentinelClient, cancel_event: Optional[threading.Event] = None):
        """
        Args:
            store: Sentinel client (anything with get_by_name and create)
            cancel_event: Set to stop processing between items
        """
        self.store = store
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logging.getLogger(self.__class__.__name__)

    def upsert_all(
        self,
        indicators: Iterable[ThreatIndicator],
        source_hostname: str
    ) -> UpsertResult:
        """
        Create every indicator that Sentinel does not have yet, in order

        Args:
            indicators: Translated indicators
            source_hostname: MISP hostname, used as source and created_by_ref

        Returns:
            UpsertResult; error is set when a create failed or the run was
            cancelled, in which case later indicators were not processed
        """
        result = UpsertResult()

        for i, indicator in enumerate(indicators):
            if self.cancel_event.is_set():
                result.error = RunCancelled("upsert cancelled")
                break

            name = indicator.display_name
            self.logger.debug(f"Pushing TI indicator {i}: {name}")

            try:
                existing = self.store.get_by_name(name)
            except TransportError as e:
                self.logger.error(f"Could not look up indicator {name}: {e}")
                result.lookup_errors += 1
                continue

            if existing is not None:
                self.logger.info(f"Skipping pre-existing indicator {name}")
                result.skipped_existing += 1
                continue

            stamped = indicator.model_copy(
                update={"source": source_hostname, "created_by_ref": source_hostname}
            )

            try:
                self.store.create(stamped)
            except TransportError as e:
                self.logger.error(f"Could not create indicator {name}: {e}")
                result.error = TransportError(
                    f"could not create indicator {indicator.external_id or name}: {e}",
                    status_code=e.status_code
                )
                break

            result.created += 1
            self.logger.info(
                f"Created indicator {name} in Sentinel "
                f"(expires {indicator.valid_until:%Y-%m-%d})"
            )

        if result.created > 0:
            self.logger.info(f"Successfully pushed {result.created} TI indicators into Sentinel")

        return result
