"""
Microsoft Sentinel Threat Intelligence Client

Thin wrapper around the Sentinel threatIntelligence management API:
- Bearer token from an Azure AD app registration (client secret)
- Query of expired indicators, page by page
- Existence check by display name
- Indicator creation and deletion
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, List, Optional
from urllib.parse import parse_qs, quote, urlparse
import logging
import time

import requests
from azure.core.exceptions import AzureError
from azure.identity import ClientSecretCredential
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from connectors.base import _should_retry_exception, describe_http_error
from models.threat_indicator import ThreatIndicator, format_timestamp
from utils.errors import RateLimited, TransportError

# Sentinel puts this in the body of a throttled delete
RATE_LIMIT_MESSAGE = "Number of delete requests for subscription"


@dataclass(frozen=True)
class SentinelCredentials:
    """App registration and workspace addressing"""
    tenant_id: str
    client_id: str
    client_secret: str
    subscription_id: str
    resource_group: str
    workspace_name: str


class SentinelClient:
    """
    Client for one Sentinel workspace's threat intelligence store

    Tokens are fetched lazily and refreshed shortly before they expire.
    """

    MANAGEMENT_URL = "https://management.azure.com"
    TOKEN_SCOPE = "https://management.azure.com/.default"
    DEFAULT_API_VERSION = "2025-03-01"
    DEFAULT_TIMEOUT = 60  # seconds
    TOKEN_REFRESH_MARGIN = 300  # seconds
    LOOKUP_PAGE_SIZE = 100

    def __init__(
        self,
        credentials: SentinelCredentials,
        api_version: str = DEFAULT_API_VERSION,
        token_credential=None
    ):
        """
        Initialize Sentinel client

        Args:
            credentials: Tenant, app and workspace identifiers
            api_version: Management API version
            token_credential: Optional azure-identity credential; a
                ClientSecretCredential is built from credentials otherwise
        """
        self.credentials = credentials
        self.api_version = api_version
        self.base_url = (
            f"{self.MANAGEMENT_URL}/subscriptions/{credentials.subscription_id}"
            f"/resourceGroups/{credentials.resource_group}"
            f"/providers/Microsoft.OperationalInsights/workspaces/{credentials.workspace_name}"
            f"/providers/Microsoft.SecurityInsights/threatIntelligence/main"
        )

        self.session = requests.Session()
        self.session.headers.update({
            "accept": "application/json",
            "content-type": "application/json",
        })

        self._token_credential = token_credential
        self._token_expires_on: Optional[float] = None

        self.logger = logging.getLogger(self.__class__.__name__)

    def _get_token_credential(self):
        if self._token_credential is None:
            self._token_credential = ClientSecretCredential(
                self.credentials.tenant_id,
                self.credentials.client_id,
                self.credentials.client_secret,
            )
        return self._token_credential

    def _ensure_token(self) -> None:
        """Set the Authorization header, fetching a new token if needed"""
        if (
            self._token_expires_on is not None
            and time.time() < self._token_expires_on - self.TOKEN_REFRESH_MARGIN
        ):
            return

        try:
            token = self._get_token_credential().get_token(self.TOKEN_SCOPE)
        except (ValueError, AzureError) as e:
            raise TransportError(f"could not authenticate to MS Sentinel: {e}") from e

        self.session.headers.update({"Authorization": f"Bearer {token.token}"})
        self._token_expires_on = float(token.expires_on)
        self.logger.debug("Refreshed Sentinel access token")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception(_should_retry_exception),
        reraise=True
    )
    def _send(self, method: str, url: str, json_body: Optional[Dict]) -> requests.Response:
        response = self.session.request(
            method,
            url,
            params={"api-version": self.api_version},
            json=json_body,
            timeout=self.DEFAULT_TIMEOUT
        )
        response.raise_for_status()
        return response

    def _request(self, method: str, path: str, json_body: Optional[Dict] = None) -> Optional[Dict]:
        """
        Call the threatIntelligence API

        Args:
            method: HTTP method
            path: Path below .../threatIntelligence/main
            json_body: Optional JSON body

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            RateLimited: If Sentinel reports the delete rate cap was hit
            TransportError: On any other HTTP or network failure
        """
        self._ensure_token()
        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            response = self._send(method, url, json_body)
        except requests.exceptions.RequestException as e:
            message = describe_http_error(e)
            status = e.response.status_code if getattr(e, 'response', None) is not None else None
            if RATE_LIMIT_MESSAGE in message:
                raise RateLimited(message, status_code=status) from e
            raise TransportError(f"{method} {path} failed: {message}", status_code=status) from e

        self.logger.debug(f"Response: {response.status_code} from {method} {path}")

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"could not decode response of {method} {path}: {e}") from e

    @staticmethod
    def _skip_token(next_link: Optional[str]) -> Optional[str]:
        """Extract $skipToken from a nextLink URL"""
        if not next_link:
            return None
        query = parse_qs(urlparse(next_link).query)
        values = query.get('$skipToken') or query.get('skipToken')
        return values[0] if values else None

    def query_expired(self, max_valid_until: datetime, page_size: int) -> Iterator[List[Dict]]:
        """
        Page through enabled indicators whose validity ended before a cutoff

        Args:
            max_valid_until: Only indicators with validUntil before this
            page_size: Items requested per page

        Yields:
            One list of indicator resources per page

        Raises:
            TransportError: If a page request fails
        """
        criteria = {
            "pageSize": page_size,
            "maxValidUntil": format_timestamp(max_valid_until),
            "includeDisabled": False,
        }

        while True:
            response = self._request("POST", "queryIndicators", criteria) or {}
            yield response.get("value") or []

            skip_token = self._skip_token(response.get("nextLink"))
            if not skip_token:
                return
            criteria = {**criteria, "skipToken": skip_token}

    def get_by_name(self, name: str) -> Optional[Dict]:
        """
        Find an indicator by display name

        Sentinel has no lookup by display name, so this runs a keyword
        query and keeps exact matches only. Keyword matches are loose, so
        every page is checked before giving up.

        Args:
            name: Display name to look for

        Returns:
            The indicator resource if one exists, None otherwise
        """
        criteria = {"keywords": name, "pageSize": self.LOOKUP_PAGE_SIZE, "includeDisabled": True}

        while True:
            response = self._request("POST", "queryIndicators", criteria) or {}

            for item in response.get("value") or []:
                properties = item.get("properties") or {}
                if properties.get("displayName") == name:
                    return item

            skip_token = self._skip_token(response.get("nextLink"))
            if not skip_token:
                return None
            criteria = {**criteria, "skipToken": skip_token}

    def create(self, indicator: ThreatIndicator) -> Optional[Dict]:
        """
        Create an indicator

        Raises:
            TransportError: If Sentinel rejects the indicator
        """
        return self._request("POST", "createIndicator", indicator.to_sentinel_payload())

    def delete(self, name: str) -> None:
        """
        Delete an indicator by resource name

        Raises:
            RateLimited: If the subscription's delete rate cap was hit
            TransportError: On any other failure
        """
        self._request("DELETE", f"indicators/{quote(name, safe='')}")
