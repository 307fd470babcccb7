"""
Run Orchestrator

Runs the expiry sweep and the fetch -> translate -> upsert task for one
sync run and decides whether the run succeeded
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Tuple
import logging
import threading

from connectors.misp_connector import MISPConnector
from models.sync_run import RunMode, RunState, SyncRun
from normalization.translator import IndicatorTranslator
from pipeline.expiry_sweep import ExpirySweep
from pipeline.sync_engine import SyncEngine
from storage.sentinel_client import SentinelClient, SentinelCredentials


Task = Tuple[str, RunState, Callable[[], None]]


@dataclass
class RunResult:
    success: bool
    run: SyncRun
    error: Optional[BaseException] = None


class SyncOrchestrator:
    """
    Schedules the two tasks of a run

    In concurrent mode the sweep and the fetch+upsert task run side by side.
    A failing task does not stop the other one; the run fails with the first
    error observed once both have finished.

    Only the orchestrator thread moves the run state. In sequential mode it
    follows each stage; in concurrent mode it stays at the first scheduled
    stage until both tasks are done.
    """

    # Indicators that expired before yesterday are swept
    RETENTION = timedelta(days=1)

    def __init__(
        self,
        source: MISPConnector,
        store: SentinelClient,
        source_hostname: str,
        days_to_fetch: int,
        types_to_fetch: Iterable[str],
        expires_months: int,
        mode: RunMode = RunMode.CONCURRENT,
        sweep_enabled: bool = True,
        delete_page_size: int = ExpirySweep.DEFAULT_PAGE_SIZE,
        translator: Optional[IndicatorTranslator] = None
    ):
        self.source = source
        self.store = store
        self.source_hostname = source_hostname
        self.days_to_fetch = days_to_fetch
        self.types_to_fetch = list(types_to_fetch)
        self.expires_months = expires_months
        self.mode = RunMode(mode)
        self.sweep_enabled = sweep_enabled and expires_months > 0
        self.delete_page_size = delete_page_size
        self.translator = translator or IndicatorTranslator()

        self._cancel_event = threading.Event()
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_settings(cls, settings) -> 'SyncOrchestrator':
        """
        Build the clients and the orchestrator from validated settings

        Args:
            settings: utils.config.SyncSettings
        """
        source = MISPConnector(
            api_key=settings.misp.access_key,
            base_url=settings.misp.base_url
        )

        sentinel = settings.mssentinel
        store = SentinelClient(
            SentinelCredentials(
                tenant_id=sentinel.tenant_id,
                client_id=sentinel.app_id,
                client_secret=sentinel.secret_key,
                subscription_id=sentinel.subscription_id,
                resource_group=sentinel.resource_group,
                workspace_name=sentinel.workspace_name,
            ),
            api_version=sentinel.api_version
        )

        return cls(
            source=source,
            store=store,
            source_hostname=settings.misp_hostname,
            days_to_fetch=settings.misp.days_to_fetch,
            types_to_fetch=settings.misp.types_to_fetch,
            expires_months=sentinel.expires_months,
            mode=settings.run.mode,
            sweep_enabled=settings.sweep_enabled,
            delete_page_size=sentinel.delete_page_size,
        )

    def cancel(self) -> None:
        """Ask the running tasks to stop after their current item"""
        self.logger.warning("Cancelling sync run")
        self._cancel_event.set()

    def _set_state(self, run: SyncRun, state: RunState) -> None:
        self.logger.debug(f"Run state {run.state.value} -> {state.value}")
        run.state = state

    def _sweep_task(self, run: SyncRun, now: datetime) -> None:
        self.logger.info("Cleaning up Sentinel TI")

        sweep = ExpirySweep(
            self.store,
            page_size=self.delete_page_size,
            cancel_event=self._cancel_event
        )
        try:
            sweep.sweep(now - self.RETENTION)
        finally:
            run.deleted = sweep.deleted
            run.delete_errors = sweep.delete_errors
            run.deleted_ids = set(sweep.deleted_ids)

    def _sync_task(
        self,
        run: SyncRun,
        now: datetime,
        on_stage: Callable[[RunState], None]
    ) -> None:
        self.logger.info("Fetching indicators from MISP")

        attributes = self.source.fetch_indicators(
            run.days_to_fetch,
            run.types_to_fetch,
            now=now
        )
        run.fetched = len(attributes)

        on_stage(RunState.UPSERTING)
        indicators, dropped = self.translator.translate_all(attributes, run.expires_months, now)
        run.translated = len(indicators)
        run.skipped_expired = dropped

        self.logger.info(f"Submitting {len(indicators)} MISP indicators to MS Sentinel")

        engine = SyncEngine(self.store, cancel_event=self._cancel_event)
        result = engine.upsert_all(indicators, self.source_hostname)

        run.created = result.created
        run.skipped_existing = result.skipped_existing
        run.lookup_errors = result.lookup_errors

        if result.error is not None:
            raise result.error

    def _run_sequential(self, run: SyncRun, tasks: List[Task]) -> List[BaseException]:
        errors = []
        for name, state, task in tasks:
            self._set_state(run, state)
            try:
                task()
            except Exception as e:
                self.logger.error(f"Task {name} failed: {e}", exc_info=True)
                errors.append(e)
        return errors

    def _run_concurrent(self, run: SyncRun, tasks: List[Task]) -> List[BaseException]:
        errors = []
        self._set_state(run, tasks[0][1])
        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="sync") as executor:
            futures = {executor.submit(task): name for name, _, task in tasks}

            self.logger.info("Waiting for tasks to finish")
            for future in as_completed(futures):
                error = future.exception()
                if error is not None:
                    self.logger.error(f"Task {futures[future]} failed: {error}", exc_info=error)
                    errors.append(error)
        return errors

    def run(self, now: Optional[datetime] = None) -> RunResult:
        """
        Execute one sync run

        Args:
            now: Run time, defaults to the current UTC time

        Returns:
            RunResult with success flag, counters and the first fatal error
        """
        now = now or datetime.now(timezone.utc)
        self._cancel_event = threading.Event()

        run = SyncRun(
            days_to_fetch=self.days_to_fetch,
            types_to_fetch=list(self.types_to_fetch),
            expires_months=self.expires_months,
            mode=self.mode,
            started_at=now,
        )

        sequential = self.mode == RunMode.SEQUENTIAL
        # Worker threads never touch run.state
        on_stage = (lambda state: self._set_state(run, state)) if sequential else (lambda state: None)

        tasks: List[Task] = []
        if self.sweep_enabled:
            tasks.append(("sweep", RunState.SWEEPING, lambda: self._sweep_task(run, now)))
        else:
            self.logger.info("Skipping Sentinel TI cleanup")
        tasks.append(("sync", RunState.FETCHING, lambda: self._sync_task(run, now, on_stage)))

        if sequential:
            errors = self._run_sequential(run, tasks)
        else:
            errors = self._run_concurrent(run, tasks)

        run.finished_at = datetime.now(timezone.utc)
        self._set_state(run, RunState.FAILED if errors else RunState.DONE)

        self.logger.info(f"Finished tasks: {run.counters()}")

        return RunResult(
            success=not errors,
            run=run,
            error=errors[0] if errors else None
        )
