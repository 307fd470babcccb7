"""
Base connector for threat intelligence sources

This abstract base class provides common functionality for all connectors:
- HTTP session management with authentication
- Automatic retry logic for transient failures
- Structured logging
- Timeout handling
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional
import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception
)
import logging

from utils.errors import TransportError


def _should_retry_exception(exception):
    """
    Determine if exception should trigger a retry

    Retry on:
    - ConnectionError
    - Timeout
    - HTTPError with 5xx status (server errors)

    Do NOT retry on:
    - HTTPError with 4xx status (client errors)
    """
    if isinstance(exception, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True

    if isinstance(exception, requests.exceptions.HTTPError):
        # Only retry if it's a server error (5xx)
        if exception.response is not None and exception.response.status_code >= 500:
            return True
        return False

    return False


def describe_http_error(error: requests.exceptions.RequestException) -> str:
    """
    Error text including the response body when there is one

    Backends put the useful part of the error (e.g. rate limit details) in
    the body, not in the status line.
    """
    response = getattr(error, 'response', None)
    if response is None:
        return str(error)

    body = getattr(response, 'text', None)
    if not isinstance(body, str):
        body = ""

    return f"{error} {body}".strip()


class BaseConnector(ABC):
    """
    Abstract base class for threat intelligence connectors

    Subclasses must implement:
    - _get_auth_headers(): Return authentication headers
    - fetch_indicators(): Fetch and parse indicators from the source
    """

    # Class-level configuration
    DEFAULT_TIMEOUT = 30  # seconds
    MAX_RETRIES = 3
    RETRY_MULTIPLIER = 1
    RETRY_MIN_WAIT = 4  # seconds
    RETRY_MAX_WAIT = 10  # seconds

    def __init__(self, api_key: str, base_url: str):
        """
        Initialize connector with API credentials

        Args:
            api_key: API authentication key
            base_url: Base URL for API endpoints (trailing slash will be removed)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')  # Remove trailing slash if present

        # Initialize HTTP session with authentication
        self.session = requests.Session()
        self.session.headers.update({
            "accept": "application/json",
            "content-type": "application/json",
        })
        self.session.headers.update(self._get_auth_headers())

        # Configure structured logging
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def _get_auth_headers(self) -> Dict[str, str]:
        """
        Return authentication headers for API

        Must be implemented by subclasses to provide API-specific auth

        Returns:
            Dictionary of HTTP headers for authentication

        Example:
            {"authorization": self.api_key}
        """
        pass

    @abstractmethod
    def fetch_indicators(self, days_to_fetch: int, types_to_fetch: Iterable[str]) -> List[Any]:
        """
        Fetch threat indicators from source

        Must be implemented by subclasses to parse API-specific responses

        Args:
            days_to_fetch: Only fetch indicators seen in this many past days
            types_to_fetch: Indicator types to keep

        Returns:
            List of parsed indicator records
        """
        pass

    @retry(
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(
            multiplier=RETRY_MULTIPLIER,
            min=RETRY_MIN_WAIT,
            max=RETRY_MAX_WAIT
        ),
        retry=retry_if_exception(_should_retry_exception),
        reraise=True
    )
    def _send(self, method: str, url: str, params: Optional[Dict], json_body: Optional[Dict]) -> Dict:
        """
        Send one request, retrying on connection errors, timeouts and 5xx
        """
        response = self.session.request(
            method,
            url,
            params=params,
            json=json_body,
            timeout=self.DEFAULT_TIMEOUT
        )

        # Raise exception for 4xx/5xx status codes
        response.raise_for_status()

        self.logger.debug(f"Response: {response.status_code} from {url}")

        return response.json()

    def _make_request(
        self,
        endpoint: str,
        params: Optional[Dict] = None,
        method: str = "GET",
        json_body: Optional[Dict] = None
    ) -> Dict:
        """
        Make API request with automatic retry logic

        Retries on transient failures:
        - Connection errors
        - Timeouts
        - HTTP 5xx errors

        Does NOT retry on:
        - HTTP 4xx errors (client errors like bad requests)

        Args:
            endpoint: API endpoint path (appended to base_url)
            params: Optional query parameters
            method: HTTP method
            json_body: Optional JSON request body

        Returns:
            Parsed JSON response

        Raises:
            TransportError: On request failure after max retries, on a 4xx
                response, or when the body is not valid JSON
        """
        # Build full URL, handling leading slashes
        endpoint = endpoint.lstrip('/')
        url = f"{self.base_url}/{endpoint}"

        self.logger.debug(f"Request: {method} {url}", extra={"params": params})

        try:
            return self._send(method, url, params, json_body)

        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            self.logger.error(f"HTTP error: {method} {url} - {status}")
            raise TransportError(
                f"invalid response code from {url}: {describe_http_error(e)}",
                status_code=status
            ) from e

        except requests.exceptions.RequestException as e:
            self.logger.error(f"Request failed: {url} - {str(e)}")
            raise TransportError(f"could not request {url}: {e}") from e

        except ValueError as e:
            self.logger.error(f"Could not decode response from {url}: {e}")
            raise TransportError(f"could not decode response from {url}: {e}") from e
