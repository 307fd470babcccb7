"""
Indicator Translator

Maps MISP attributes to Sentinel threat intelligence indicators
"""
from typing import Iterable, List, Tuple
from datetime import datetime, timezone
import logging

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from models.misp_attribute import MISPAttribute, SeenKind
from models.threat_indicator import ThreatIndicator
from utils.errors import InvalidArgument, ParseError

THREAT_TYPE_FILE = "file"
THREAT_TYPE_NETWORK = "network-traffic"
THREAT_TYPE_EMAIL = "email-addr"
THREAT_TYPE_OTHER = "Other"


class IndicatorTranslator:
    """
    Translate MISP attributes into Sentinel indicators

    Expiry is last_seen plus a number of months. Attributes without a usable
    last_seen expire that many months after the run time instead.
    """

    # MISP attribute type (lowercase) to Sentinel threat type
    THREAT_TYPE_MAP = {
        "ip-dst": THREAT_TYPE_NETWORK,
        "vhash": THREAT_TYPE_FILE,
        "filename": THREAT_TYPE_FILE,
        "sha256": THREAT_TYPE_FILE,
        "attachment": THREAT_TYPE_EMAIL,
    }

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def get_threat_type(self, attribute_type: str) -> str:
        """
        Classify a MISP attribute type

        Args:
            attribute_type: MISP type, matched case-insensitively

        Returns:
            Sentinel threat type, "Other" when the type is not mapped
        """
        return self.THREAT_TYPE_MAP.get(attribute_type.lower(), THREAT_TYPE_OTHER)

    def parse_last_seen(self, attribute: MISPAttribute) -> datetime:
        """
        Parse last_seen as an ISO-8601 timestamp

        Raises:
            ParseError: If last_seen is absent, not a string, or malformed
        """
        seen = attribute.last_seen
        if seen.kind != SeenKind.STRING:
            raise ParseError(f"last_seen is {seen.kind.value}: {seen.raw!r}")

        try:
            return self._as_utc(date_parser.isoparse(seen.text))
        except (ValueError, OverflowError) as e:
            raise ParseError(f"invalid last_seen {seen.text!r}: {e}") from e

    def parse_timestamp(self, attribute: MISPAttribute) -> datetime:
        """
        Parse timestamp as base-10 Unix epoch seconds

        Raises:
            ParseError: If timestamp is not an integer or out of range
        """
        try:
            return datetime.fromtimestamp(int(attribute.timestamp, 10), tz=timezone.utc)
        except (ValueError, OverflowError, OSError) as e:
            raise ParseError(f"invalid timestamp {attribute.timestamp!r}: {e}") from e

    def translate(
        self,
        attribute: MISPAttribute,
        expiry_months: int,
        now: datetime
    ) -> Tuple[ThreatIndicator, bool]:
        """
        Translate one attribute

        Args:
            attribute: Raw MISP attribute
            expiry_months: Months added to last_seen (or to now) for valid_until
            now: Run time

        Returns:
            (indicator, dropped) where dropped is True when valid_until is
            already in the past and the indicator must not be submitted

        Raises:
            InvalidArgument: If expiry_months is negative
        """
        if expiry_months < 0:
            raise InvalidArgument(f"expiry months cannot be negative: {expiry_months}")

        now = self._as_utc(now)
        offset = relativedelta(months=expiry_months)

        try:
            valid_until = self.parse_last_seen(attribute) + offset
        except ParseError as e:
            self.logger.error(
                f"Could not parse last_seen of attribute {attribute.id}: {e}",
                extra={"attr_id": attribute.id, "raw": attribute.last_seen.raw}
            )
            valid_until = now + offset

        try:
            timestamp = self.parse_timestamp(attribute)
        except ParseError as e:
            self.logger.error(
                f"Could not parse timestamp of attribute {attribute.id}: {e}",
                extra={"attr_id": attribute.id, "ts": attribute.timestamp}
            )
            timestamp = now

        threat_type = self.get_threat_type(attribute.type)
        if threat_type == THREAT_TYPE_OTHER:
            self.logger.debug(f"Got attribute type Other for MISP type {attribute.type}")

        indicator = ThreatIndicator(
            display_name=f"{attribute.category}: {attribute.value}",
            pattern=attribute.value,
            pattern_type=attribute.type,
            indicator_types=[attribute.type],
            threat_types=[threat_type],
            labels=[
                f"info:{attribute.event.info}",
                f"category:{attribute.category}",
                f"type:{attribute.type}",
            ],
            description=attribute.comment,
            external_id=attribute.id,
            revoked=attribute.deleted,
            created=timestamp,
            modified=timestamp,
            last_updated_time_utc=timestamp,
            valid_from=timestamp,
            valid_until=valid_until,
        )

        dropped = valid_until < now
        if dropped:
            self.logger.debug(
                f"Skipping expired MISP attribute {attribute.id} "
                f"(expires {valid_until:%Y-%m-%d}, last_seen {attribute.last_seen.raw!r})"
            )

        return indicator, dropped

    def translate_all(
        self,
        attributes: Iterable[MISPAttribute],
        expiry_months: int,
        now: datetime
    ) -> Tuple[List[ThreatIndicator], int]:
        """
        Translate attributes in order, leaving out dropped ones

        Returns:
            (kept indicators, number of dropped attributes)
        """
        kept = []
        dropped_count = 0

        for attribute in attributes:
            indicator, dropped = self.translate(attribute, expiry_months, now)
            if dropped:
                dropped_count += 1
                continue
            kept.append(indicator)

        return kept, dropped_count
