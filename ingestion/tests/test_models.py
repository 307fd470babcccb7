"""
Tests for Pydantic models
"""
import pytest
from datetime import datetime, timezone, timedelta
from pydantic import ValidationError

from models.misp_attribute import MISPAttribute, SeenKind, SeenValue
from models.threat_indicator import ThreatIndicator, format_timestamp
from models.sync_run import RunMode, SyncRun


@pytest.mark.unit
class TestMISPAttribute:

    def test_minimal_attribute(self):
        attribute = MISPAttribute(type="ip-dst", value="1.2.3.4")

        assert attribute.category == ""
        assert attribute.event.info == ""
        assert attribute.last_seen.kind == SeenKind.ABSENT
        assert attribute.to_ids is False

    def test_type_and_value_required(self):
        with pytest.raises(ValidationError):
            MISPAttribute(value="1.2.3.4")

        with pytest.raises(ValidationError):
            MISPAttribute(type="ip-dst")

    def test_event_alias_and_null_event(self):
        with_event = MISPAttribute.model_validate(
            {"type": "sha256", "value": "abc", "Event": {"info": "Campaign", "org_id": 7}}
        )
        null_event = MISPAttribute.model_validate({"type": "sha256", "value": "abc", "Event": None})

        assert with_event.event.info == "Campaign"
        assert with_event.event.org_id == "7"
        assert null_event.event.info == ""

    def test_loose_scalars_are_coerced(self):
        attribute = MISPAttribute.model_validate({
            "id": 55,
            "type": "ip-dst",
            "value": "1.2.3.4",
            "timestamp": 1700000000,
            "comment": None,
            "deleted": None,
        })

        assert attribute.id == "55"
        assert attribute.timestamp == "1700000000"
        assert attribute.comment == ""
        assert attribute.deleted is False

    def test_unknown_fields_are_kept(self):
        attribute = MISPAttribute.model_validate(
            {"type": "ip-dst", "value": "1.2.3.4", "sharing_group_id": "0"}
        )

        assert attribute.model_extra["sharing_group_id"] == "0"


@pytest.mark.unit
class TestSeenValue:

    @pytest.mark.parametrize("raw, kind", [
        (None, SeenKind.ABSENT),
        ("2024-01-01T00:00:00Z", SeenKind.STRING),
        (1704067200, SeenKind.OTHER),
        ({"nested": True}, SeenKind.OTHER),
    ])
    def test_from_raw(self, raw, kind):
        assert SeenValue.from_raw(raw).kind == kind

    def test_text_only_for_strings(self):
        assert SeenValue.from_raw("2024-01-01").text == "2024-01-01"
        assert SeenValue.from_raw(12).text is None
        assert SeenValue.absent().text is None


def make_indicator(**overrides):
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    data = dict(
        display_name="malware: 1.2.3.4",
        pattern="1.2.3.4",
        pattern_type="ip-dst",
        indicator_types=["ip-dst"],
        threat_types=["network-traffic"],
        labels=["info:Test", "category:malware", "type:ip-dst"],
        external_id="1",
        created=ts,
        modified=ts,
        last_updated_time_utc=ts,
        valid_from=ts,
        valid_until=ts + timedelta(days=180),
    )
    data.update(overrides)
    return ThreatIndicator(**data)


@pytest.mark.unit
class TestThreatIndicator:

    def test_sentinel_payload_uses_camel_case(self):
        payload = make_indicator(source="misp.example.com", created_by_ref="misp.example.com").to_sentinel_payload()

        assert payload["kind"] == "indicator"
        properties = payload["properties"]
        assert properties["displayName"] == "malware: 1.2.3.4"
        assert properties["patternType"] == "ip-dst"
        assert properties["threatTypes"] == ["network-traffic"]
        assert properties["createdByRef"] == "misp.example.com"
        assert properties["externalId"] == "1"
        assert properties["validFrom"] == "2024-01-01T00:00:00Z"
        assert properties["validUntil"] == "2024-06-29T00:00:00Z"
        assert properties["lastUpdatedTimeUtc"] == "2024-01-01T00:00:00Z"

    def test_payload_omits_unset_source(self):
        properties = make_indicator().to_sentinel_payload()["properties"]

        assert "source" not in properties
        assert "createdByRef" not in properties

    def test_threat_type_property(self):
        assert make_indicator().threat_type == "network-traffic"
        assert make_indicator(threat_types=[]).threat_type == "Other"

    def test_format_timestamp_converts_to_utc(self):
        local = datetime(2024, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))

        assert format_timestamp(local) == "2024-01-01T00:00:00Z"
        assert format_timestamp(datetime(2024, 1, 1)) == "2024-01-01T00:00:00Z"


@pytest.mark.unit
class TestSyncRun:

    def test_counters_summary(self):
        run = SyncRun(
            days_to_fetch=7,
            types_to_fetch=["ip-dst"],
            expires_months=6,
            mode=RunMode.CONCURRENT,
            started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        run.created = 3
        run.deleted_ids.add("x")

        counters = run.counters()

        assert counters["created"] == 3
        assert "deleted_ids" not in counters
        assert set(counters) == {
            'fetched', 'translated', 'created', 'skipped_existing',
            'skipped_expired', 'lookup_errors', 'deleted', 'delete_errors'
        }
