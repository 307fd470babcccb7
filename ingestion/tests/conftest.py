"""
Shared fixtures and in-memory backends for the sync pipeline tests
"""
import json
import os
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests
from tenacity import wait_none

from connectors.base import BaseConnector
from models.misp_attribute import MISPAttribute
from storage.sentinel_client import SentinelClient


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def load_fixture(filename):
    """Load test fixture from file"""
    fixture_path = os.path.join(os.path.dirname(__file__), 'fixtures', filename)
    with open(fixture_path, 'r') as f:
        return json.load(f)


def make_response(payload=None, status_code=200, text=""):
    """Mock requests.Response; raise_for_status raises for 4xx/5xx"""
    response = Mock()
    response.status_code = status_code
    response.text = text or (json.dumps(payload) if payload is not None else "")
    response.content = response.text.encode()
    response.json.return_value = payload

    if status_code >= 400:
        error = requests.exceptions.HTTPError(f"{status_code} Error", response=response)
        response.raise_for_status.side_effect = error
    else:
        response.raise_for_status.return_value = None

    return response


def make_attribute(**overrides) -> MISPAttribute:
    data = {
        "id": "1",
        "event_id": "10",
        "object_id": "0",
        "category": "malware",
        "type": "ip-dst",
        "value": "1.2.3.4",
        "to_ids": True,
        "deleted": False,
        "timestamp": str(int(NOW.timestamp())),
        "last_seen": "2024-06-11T12:00:00+00:00",
        "comment": "seen in honeypot",
        "Event": {"org_id": "1", "info": "Test event", "uuid": "evt-uuid"},
    }
    data.update(overrides)
    return MISPAttribute.model_validate(data)


class FakeSentinelStore:
    """
    In-memory stand-in for SentinelClient

    delete_failures maps an indicator name to a list of exceptions raised by
    successive delete calls for that name.
    """

    def __init__(self, expired=None):
        self.indicators = {}
        self.expired = list(expired or [])
        self.create_calls = []
        self.delete_calls = []
        self.query_calls = []
        self.delete_failures = {}
        self.create_error = None
        self.lookup_error = None
        self.query_error = None

    def get_by_name(self, name):
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.indicators.get(name)

    def create(self, indicator):
        self.create_calls.append(indicator)
        if self.create_error is not None:
            raise self.create_error
        self.indicators[indicator.display_name] = indicator.to_sentinel_payload()
        return self.indicators[indicator.display_name]

    def query_expired(self, max_valid_until, page_size):
        self.query_calls.append((max_valid_until, page_size))
        if self.query_error is not None:
            raise self.query_error

        snapshot = list(self.expired)
        if not snapshot:
            yield []
            return
        for start in range(0, len(snapshot), page_size):
            yield snapshot[start:start + page_size]

    def delete(self, name):
        self.delete_calls.append(name)
        failures = self.delete_failures.get(name)
        if failures:
            raise failures.pop(0)
        self.expired = [item for item in self.expired if item.get("name") != name]


class FakeMISPSource:
    def __init__(self, attributes=None, error=None):
        self.attributes = list(attributes or [])
        self.error = error
        self.calls = []

    def fetch_indicators(self, days_to_fetch, types_to_fetch, now=None):
        self.calls.append((days_to_fetch, list(types_to_fetch)))
        if self.error is not None:
            raise self.error
        return list(self.attributes)


def expired_item(n):
    name = f"indicator-{n}"
    return {
        "id": f"/subscriptions/sub/indicators/{name}",
        "name": name,
        "properties": {"displayName": f"malware: 10.0.0.{n}"},
    }


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Skip tenacity back-off sleeps"""
    monkeypatch.setattr(BaseConnector._send.retry, "wait", wait_none())
    monkeypatch.setattr(SentinelClient._send.retry, "wait", wait_none())


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fake_store():
    return FakeSentinelStore()
