"""
MISP Connector

Fetches published attributes from a MISP instance through attributes/restSearch
"""
from typing import Dict, Iterable, List, Optional
from datetime import datetime, timedelta
import json
import logging

from pydantic import ValidationError

from connectors.base import BaseConnector
from models.misp_attribute import MISPAttribute
from utils.errors import InvalidArgument


class MISPConnector(BaseConnector):
    """
    Connector for the MISP REST API

    Pages through attributes seen in the last N days, skipping decayed,
    false-positive (warninglist), deleted and unpublished attributes.
    """

    # restSearch on large instances is slow
    DEFAULT_TIMEOUT = 300  # seconds
    PAGE_SIZE = 100

    def __init__(self, api_key: str, base_url: str):
        """
        Initialize MISP connector

        Args:
            api_key: MISP automation key
            base_url: MISP instance URL
        """
        if not base_url:
            raise InvalidArgument("no base url provided")
        if not api_key:
            raise InvalidArgument("no access key provided")

        super().__init__(api_key=api_key, base_url=base_url)

    def _get_auth_headers(self) -> Dict[str, str]:
        """
        Return MISP authentication headers

        Returns:
            Dictionary with the authorization header (raw key, no scheme)
        """
        return {"authorization": self.api_key}

    def _build_search_body(self, from_date: str, page: int) -> Dict:
        return {
            "returnFormat": "json",
            "last_seen": from_date,
            "enforceWarninglist": True,
            "excludeDecayed": True,
            "published": True,
            "deleted": False,
            "page": page,
            "limit": self.PAGE_SIZE,
        }

    def fetch_indicators(
        self,
        days_to_fetch: int,
        types_to_fetch: Iterable[str],
        now: Optional[datetime] = None
    ) -> List[MISPAttribute]:
        """
        Fetch MISP attributes seen in the last days_to_fetch days

        Args:
            days_to_fetch: Look-back window in days, must be positive
            types_to_fetch: Attribute types to keep (case-insensitive)
            now: Reference time, defaults to the current time

        Returns:
            Attributes of an allowed type, in the order MISP returned them

        Raises:
            InvalidArgument: If days_to_fetch is 0 or no types are given
            TransportError: If any page request fails; nothing is returned
        """
        if days_to_fetch <= 0:
            raise InvalidArgument("cannot fetch 0 days")

        allowed_types = {t.lower() for t in types_to_fetch}
        if not allowed_types:
            raise InvalidArgument("no attribute types to fetch")

        now = now or datetime.now()
        from_date = (now - timedelta(days=days_to_fetch)).strftime("%Y-%m-%d")

        indicators: List[MISPAttribute] = []
        page = 0

        self.logger.info(f"Fetching MISP attributes (from={from_date}, types={sorted(allowed_types)})")

        while True:
            self.logger.debug(
                "Fetching MISP attributes page",
                extra={
                    "page": page,
                    "limit": self.PAGE_SIZE,
                    "fetched": len(indicators),
                    "from": from_date,
                }
            )

            response = self._make_request(
                "attributes/restSearch",
                method="POST",
                json_body=self._build_search_body(from_date, page)
            )

            attributes = self._extract_attributes(response)

            if len(attributes) > self.PAGE_SIZE:
                self.logger.warning(
                    f"MISP returned more results than expected: {len(attributes)} > {self.PAGE_SIZE}"
                )

            if not attributes:
                self.logger.debug(f"Received all MISP attributes ({len(indicators)})")
                break

            for raw in attributes:
                attribute = self._parse_attribute(raw)
                if attribute is None:
                    continue

                if attribute.type.lower() not in allowed_types:
                    self.logger.debug(
                        f"Skipping attribute {attribute.id} because of type {attribute.type}"
                    )
                    continue

                if self.logger.isEnabledFor(logging.DEBUG):
                    self.logger.debug(
                        f"Adding MISP attribute {attribute.id}: {attribute.value}",
                        extra={"i": len(indicators)}
                    )

                indicators.append(attribute)

            page += 1

        self.logger.info(f"Fetched {len(indicators)} MISP attributes over {page} pages")
        return indicators

    def _extract_attributes(self, response: Dict) -> List[Dict]:
        """
        Pull the attribute list out of a restSearch response

        Args:
            response: Decoded JSON body, {"response": {"Attribute": [...]}}

        Returns:
            List of raw attribute dictionaries (empty if missing)
        """
        if not isinstance(response, dict):
            return []

        body = response.get('response') or {}
        if not isinstance(body, dict):
            return []

        attributes = body.get('Attribute') or []
        return attributes if isinstance(attributes, list) else []

    def _parse_attribute(self, raw: Dict) -> Optional[MISPAttribute]:
        try:
            return MISPAttribute.model_validate(raw)
        except ValidationError as e:
            errors = [
                f"{err['loc'][0] if err['loc'] else 'field'}: {err['msg']}"
                for err in e.errors()
            ]
            raw_id = raw.get('id') if isinstance(raw, dict) else None
            self.logger.warning(f"Skipping malformed MISP attribute {raw_id}: {errors}")
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(json.dumps(raw, default=str))
            return None
