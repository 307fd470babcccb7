"""
Run-scoped bookkeeping for one sync run

Nothing here is persisted; a SyncRun is created at run start and dropped
once the run result has been logged.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set


class RunMode(str, Enum):
    """How the sweep and the fetch+upsert tasks are scheduled"""
    CONCURRENT = "concurrent"
    SEQUENTIAL = "sequential"


class RunState(str, Enum):
    IDLE = "idle"
    SWEEPING = "sweeping"
    FETCHING = "fetching"
    UPSERTING = "upserting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncRun:
    """Configuration snapshot and counters of a single run"""
    days_to_fetch: int
    types_to_fetch: List[str]
    expires_months: int
    mode: RunMode
    started_at: datetime
    state: RunState = RunState.IDLE
    finished_at: Optional[datetime] = None

    fetched: int = 0
    translated: int = 0
    created: int = 0
    skipped_existing: int = 0
    skipped_expired: int = 0
    lookup_errors: int = 0
    deleted: int = 0
    delete_errors: int = 0
    deleted_ids: Set[str] = field(default_factory=set)

    def counters(self) -> Dict[str, int]:
        """Counters only, for the end-of-run summary log"""
        data = asdict(self)
        return {
            name: data[name]
            for name in (
                'fetched', 'translated', 'created', 'skipped_existing',
                'skipped_expired', 'lookup_errors', 'deleted', 'delete_errors'
            )
        }
