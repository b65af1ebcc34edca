"""Shared plumbing for stores that talk to an HTTP API."""

import logging
import threading
import time
from typing import Any, Optional

import httpx

from ..exceptions import (
    RemoteAuthError,
    RemoteError,
    RemoteNetworkError,
    RemoteNotFoundError,
    RemotePermanentError,
    RemoteQuotaError,
    RemoteRateLimitError,
    RemoteTransientError,
)
from ..utils import parse_http_date
from .base import RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    when = parse_http_date(value)
    if when is None:
        return None
    return max(0.0, when - time.time())


def error_for_status(response: httpx.Response, path: Optional[str] = None) -> RemoteError:
    """Map an unsuccessful HTTP response to a RemoteError.

    Args:
        response: Response with a 4xx/5xx status
        path: Remote path the request was about

    Returns:
        Classified exception (not raised)
    """
    status_code = response.status_code
    error_msg = f"Request failed with status {status_code}"

    # Try to extract more details from response body
    try:
        if response.content:
            error_data = response.json()
            if isinstance(error_data, dict):
                msg = error_data.get("error") or error_data.get("message")
                if isinstance(msg, dict):
                    msg = msg.get("message")
                if msg:
                    error_msg = f"{error_msg}: {msg}"
    except ValueError:
        pass

    if status_code == 401:
        return RemoteAuthError(f"Unauthorized: {error_msg}", path)
    if status_code == 403:
        return RemoteQuotaError(f"Access forbidden: {error_msg}", path)
    if status_code == 404:
        return RemoteNotFoundError(f"Not found: {error_msg}", path)
    if status_code == 429:
        return RemoteRateLimitError(
            f"Rate limit exceeded: {error_msg}",
            path,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status_code in (408, 425) or 500 <= status_code < 600:
        return RemoteTransientError(error_msg, path)
    return RemotePermanentError(error_msg, path)


class HttpRemoteStore(RemoteStore):
    """Base class owning a lazily created, thread-safe httpx client."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize HTTP store.

        Args:
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    def _client_headers(self) -> dict[str, str]:
        return {}

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(
                    headers=self._client_headers(),
                    timeout=httpx.Timeout(self.timeout),
                    follow_redirects=True,
                    transport=self._transport,
                )
            return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        with self._client_lock:
            if self._client is not None and not self._client.is_closed:
                self._client.close()
            self._client = None

    def _send(
        self, method: str, url: str, path: Optional[str] = None, **kwargs: Any
    ) -> httpx.Response:
        """Send a request, translating transport failures.

        HTTP error statuses are returned, not raised; callers decide how to
        interpret them.

        Raises:
            RemoteNetworkError: On connection failures and timeouts
        """
        try:
            return self._get_client().request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteNetworkError(f"Timeout talking to {self.name}: {e}", path) from e
        except httpx.RequestError as e:
            raise RemoteNetworkError(f"Network error: {e}", path) from e

    @staticmethod
    def _json(response: httpx.Response, path: Optional[str] = None) -> Any:
        """Decode a JSON body."""
        try:
            return response.json()
        except ValueError as e:
            raise RemoteTransientError(
                f"Invalid JSON response (status {response.status_code})", path
            ) from e
