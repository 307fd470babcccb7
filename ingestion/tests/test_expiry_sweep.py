"""
Tests for ExpirySweep
"""
import logging
import pytest
import threading
from datetime import datetime, timezone

from pipeline.expiry_sweep import ExpirySweep
from utils.errors import RateLimited, RunCancelled, TransportError
from conftest import FakeSentinelStore, expired_item

CUTOFF = datetime(2024, 5, 31, 12, 0, tzinfo=timezone.utc)


def make_sweep(store, **kwargs):
    kwargs.setdefault("rate_limit_pause", 0)
    return ExpirySweep(store, **kwargs)


@pytest.mark.unit
class TestExpirySweep:

    def test_deletes_all_pages(self):
        store = FakeSentinelStore(expired=[expired_item(n) for n in range(1, 6)])
        sweep = make_sweep(store, page_size=2)

        deleted = sweep.sweep(CUTOFF)

        assert deleted == 5
        assert store.expired == []
        assert store.delete_calls == [f"indicator-{n}" for n in range(1, 6)]
        assert sweep.pages == 3

    def test_query_uses_cutoff_and_page_size(self):
        store = FakeSentinelStore(expired=[expired_item(1)])

        make_sweep(store, page_size=5000).sweep(CUTOFF)

        assert store.query_calls[0] == (CUTOFF, 5000)

    def test_nothing_to_delete(self, caplog):
        store = FakeSentinelStore()

        with caplog.at_level(logging.INFO):
            deleted = make_sweep(store).sweep(CUTOFF)

        assert deleted == 0
        assert store.delete_calls == []
        assert len(store.query_calls) == 1
        assert "No TI indicators to delete" in caplog.text

    def test_rate_limited_delete_is_retried_after_pause(self):
        """Throttled twice, then accepted: one deletion, three attempts"""
        store = FakeSentinelStore(expired=[expired_item(1)])
        store.delete_failures["indicator-1"] = [RateLimited("throttled"), RateLimited("throttled")]
        sweep = make_sweep(store)

        deleted = sweep.sweep(CUTOFF)

        assert deleted == 1
        assert store.delete_calls == ["indicator-1"] * 3
        assert sweep.delete_errors == 0

    def test_pause_length(self, monkeypatch):
        store = FakeSentinelStore(expired=[expired_item(1)])
        store.delete_failures["indicator-1"] = [RateLimited("throttled")]
        sweep = ExpirySweep(store)
        waits = []
        monkeypatch.setattr(sweep.cancel_event, "wait", lambda timeout: waits.append(timeout) or False)

        sweep.sweep(CUTOFF)

        assert waits == [30]

    def test_page_restart_does_not_double_count(self, caplog):
        """A restart re-attempts already deleted items of the page"""
        store = FakeSentinelStore(expired=[expired_item(n) for n in range(1, 4)])
        store.delete_failures["indicator-2"] = [RateLimited("throttled")]
        sweep = make_sweep(store)

        with caplog.at_level(logging.WARNING):
            deleted = sweep.sweep(CUTOFF)

        assert deleted == 3
        assert store.delete_calls == [
            "indicator-1", "indicator-2", "indicator-1", "indicator-2", "indicator-3"
        ]
        assert "previously deleted" in caplog.text
        assert len(sweep.deleted_ids) == 3

    def test_other_delete_errors_are_skipped(self):
        store = FakeSentinelStore(expired=[expired_item(1), expired_item(2)])
        store.delete_failures["indicator-1"] = [TransportError("gone", status_code=404)] * 5
        sweep = make_sweep(store)

        deleted = sweep.sweep(CUTOFF)

        assert deleted == 1
        assert sweep.delete_errors == 2
        assert len(store.query_calls) == 2

    def test_item_without_id_or_name_is_skipped(self, caplog):
        malformed = {"properties": {"displayName": "malware: 10.0.0.99"}}
        store = FakeSentinelStore(expired=[malformed, expired_item(1)])
        sweep = make_sweep(store)

        deleted = sweep.sweep(CUTOFF)

        assert deleted == 1
        assert store.delete_calls == ["indicator-1"]
        assert sweep.delete_errors == 2
        assert "without id or name" in caplog.text

    def test_gives_up_on_page_after_max_retries(self, caplog):
        store = FakeSentinelStore(expired=[expired_item(1)])
        store.delete_failures["indicator-1"] = [RateLimited("throttled")] * 20
        sweep = make_sweep(store, max_page_retries=2)

        deleted = sweep.sweep(CUTOFF)

        assert deleted == 0
        assert len(store.delete_calls) == 3
        assert "Giving up on page" in caplog.text

    def test_query_failure_propagates(self):
        store = FakeSentinelStore(expired=[expired_item(1)])
        store.query_error = TransportError("unauthorized", status_code=401)

        with pytest.raises(TransportError):
            make_sweep(store).sweep(CUTOFF)

    def test_cancelled_sweep_raises(self):
        store = FakeSentinelStore(expired=[expired_item(1)])
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RunCancelled):
            make_sweep(store, cancel_event=cancel).sweep(CUTOFF)

        assert store.delete_calls == []

    def test_cancel_interrupts_pause(self):
        store = FakeSentinelStore(expired=[expired_item(1)])
        cancel = threading.Event()
        original_delete = store.delete

        def throttled(name):
            cancel.set()
            original_delete(name)
            raise RateLimited("throttled")

        store.delete = throttled
        sweep = ExpirySweep(store, rate_limit_pause=3600, cancel_event=cancel)

        with pytest.raises(RunCancelled):
            sweep.sweep(CUTOFF)
