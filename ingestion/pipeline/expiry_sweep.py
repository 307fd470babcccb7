"""
Expiry Sweep

Deletes Sentinel indicators whose validity window has passed
"""
from enum import Enum
from datetime import datetime
from typing import Dict, List, Optional, Set
import logging
import threading

from storage.sentinel_client import SentinelClient
from utils.errors import RateLimited, RunCancelled, TransportError


class PageOutcome(str, Enum):
    DONE = "done"
    RETRY_PAGE = "retry_page"


class ExpirySweep:
    """
    Page-by-page deletion of expired indicators

    When Sentinel throttles deletes, the sweep pauses and restarts the
    current page from its first item. Deleted IDs are remembered for the
    run; seeing one again is logged but does not block the delete.
    """

    DEFAULT_PAGE_SIZE = 5000
    RATE_LIMIT_PAUSE = 30  # seconds
    MAX_PAGE_RETRIES = 10

    def __init__(
        self,
        store: SentinelClient,
        page_size: int = DEFAULT_PAGE_SIZE,
        rate_limit_pause: float = RATE_LIMIT_PAUSE,
        max_page_retries: int = MAX_PAGE_RETRIES,
        cancel_event: Optional[threading.Event] = None
    ):
        """
        Args:
            store: Sentinel client (anything with query_expired and delete)
            page_size: Indicators requested per query page
            rate_limit_pause: Seconds to wait after a throttled delete
            max_page_retries: Throttling restarts allowed per page
            cancel_event: Set to stop the sweep; also interrupts pauses
        """
        self.store = store
        self.page_size = page_size
        self.rate_limit_pause = rate_limit_pause
        self.max_page_retries = max_page_retries
        self.cancel_event = cancel_event or threading.Event()

        self.deleted_ids: Set[str] = set()
        self.deleted = 0
        self.delete_errors = 0
        self.pages = 0

        self.logger = logging.getLogger(self.__class__.__name__)

    def sweep(self, retention_cutoff: datetime) -> int:
        """
        Delete every enabled indicator with valid_until before the cutoff

        The query is issued again after each full pass since deletions move
        the remaining items between pages. The sweep ends when a query
        returns nothing or a pass deletes nothing new.

        Args:
            retention_cutoff: Indicators valid until before this are removed

        Returns:
            Number of indicators deleted in this run

        Raises:
            TransportError: If querying Sentinel fails
            RunCancelled: If the run was cancelled
        """
        while True:
            deleted_before = self.deleted
            pages_in_pass = 0

            self.logger.info(
                f"Retrieving expired TI indicators (page={self.pages}, total_deleted={self.deleted})"
            )

            for items in self.store.query_expired(retention_cutoff, self.page_size):
                if not items:
                    break
                pages_in_pass += 1
                self.pages += 1
                self._sweep_page(items)

            if pages_in_pass == 0:
                break

            if self.deleted == deleted_before:
                self.logger.warning(
                    "No expired TI indicators could be deleted in the last pass, stopping sweep"
                )
                break

        if self.deleted > 0:
            self.logger.info(f"Deleted {self.deleted} expired TI indicators")
        else:
            self.logger.info("No TI indicators to delete")

        return self.deleted

    def _sweep_page(self, items: List[Dict]) -> None:
        """Run one page, restarting it from the top while it asks to"""
        retries = 0

        while self._process_page(items) == PageOutcome.RETRY_PAGE:
            retries += 1
            if retries > self.max_page_retries:
                self.logger.error(
                    f"Giving up on page after {self.max_page_retries} rate limited restarts"
                )
                return

    def _pause(self) -> None:
        # Event.wait doubles as an interruptible sleep
        if self.cancel_event.wait(self.rate_limit_pause):
            raise RunCancelled("sweep cancelled")

    def _process_page(self, items: List[Dict]) -> PageOutcome:
        """
        Delete the items of one page in order

        Returns:
            RETRY_PAGE after a throttled delete (the pause has already been
            taken), DONE once every item was attempted
        """
        page_deleted = 0

        for item in items:
            if self.cancel_event.is_set():
                raise RunCancelled("sweep cancelled")

            item_id = item.get("id") or item.get("name")
            name = item.get("name") or item_id

            if not name:
                self.logger.error(f"Skipping TI indicator without id or name: {item}")
                self.delete_errors += 1
                continue

            self.logger.debug(
                f"Deleting TI indicator {name}",
                extra={
                    "progress": f"{page_deleted}/{len(items)}",
                    "total_deleted": self.deleted,
                }
            )

            if item_id in self.deleted_ids:
                self.logger.warning(f"Encountered TI item which was previously deleted: {item_id}")

            try:
                self.store.delete(name)
            except RateLimited:
                self.logger.warning(
                    f"Exceeded request rate on {item_id}, waiting {self.rate_limit_pause} seconds"
                )
                self._pause()
                return PageOutcome.RETRY_PAGE
            except TransportError as e:
                self.logger.error(f"Could not delete TI indicator {item_id}: {e}")
                self.delete_errors += 1
                continue

            page_deleted += 1
            if item_id not in self.deleted_ids:
                self.deleted_ids.add(item_id)
                self.deleted += 1

        return PageOutcome.DONE
