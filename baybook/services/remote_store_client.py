"""
Remote Store Client

Thin wrapper for the authoritative remote store, covering only what
reconciliation needs:
- list(collection)                 GET   /collections/{c}
- create(collection, record)       POST  /collections/{c}          -> {"key": ...}
- update(collection, key, partial) PATCH /collections/{c}/{key}

Handles:
- Authentication via X-Api-Key header
- Idempotency-Key on create (the record's business id), so a retried create
  whose acknowledgement was lost does not produce a duplicate
- Bounded retries with exponential backoff for network errors, 429 and 5xx
- Structured error mapping
"""

import time
import logging
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass
class RemoteResponse:
    """Wrapper for remote store responses with structured error info"""
    success: bool
    status_code: int
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    should_retry: bool = False
    network_error: bool = False

    @property
    def assigned_key(self) -> Optional[str]:
        if isinstance(self.data, dict):
            key = self.data.get("key")
            return str(key) if key is not None else None
        return None


@dataclass
class RemoteError:
    """Structured error from the remote store"""
    code: str
    message: str
    status_code: int
    retryable: bool = False


ERROR_MAP = {
    400: RemoteError("bad_request", "Malformed request", 400, False),
    401: RemoteError("unauthorized", "Invalid or missing API key", 401, False),
    403: RemoteError("forbidden", "Access denied to this collection", 403, False),
    404: RemoteError("not_found", "Record not found", 404, False),
    409: RemoteError("conflict", "Record already exists", 409, False),
    422: RemoteError("validation_error", "Invalid record data", 422, False),
    429: RemoteError("rate_limited", "Too many requests", 429, True),
    500: RemoteError("server_error", "Remote store error", 500, True),
    502: RemoteError("bad_gateway", "Remote store gateway error", 502, True),
    503: RemoteError("service_unavailable", "Remote store unavailable", 503, True),
}


class RemoteStoreClient:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 20,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        terminal_id: str = "",
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.terminal_id = terminal_id
        self._http = http_client
        self._sleep = sleep

    def _get_headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "baybook/1.0",
        }
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        if self.terminal_id:
            headers["X-Terminal-Id"] = self.terminal_id
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _map_error(self, status_code: int, response_data: Optional[Any]) -> RemoteError:
        """Map HTTP status code to structured error"""
        if status_code in ERROR_MAP:
            error = ERROR_MAP[status_code]
            if isinstance(response_data, dict):
                msg = response_data.get("message") or response_data.get("error")
                if isinstance(msg, str) and msg:
                    return RemoteError(error.code, msg, status_code, error.retryable)
            return error

        if status_code >= 500:
            return RemoteError("server_error", f"Server error: {status_code}", status_code, True)

        return RemoteError("unknown", f"Unknown error: {status_code}", status_code, False)

    def _send(self, method: str, url: str, headers: Dict[str, str], payload: Optional[Dict]) -> httpx.Response:
        if self._http is not None:
            return self._http.request(method, url, headers=headers, json=payload)
        with httpx.Client(timeout=self.timeout) as client:
            return client.request(method, url, headers=headers, json=payload)

    def _make_request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict] = None,
        idempotency_key: Optional[str] = None
    ) -> RemoteResponse:
        """Make an HTTP request with bounded retry and exponential backoff."""
        url = f"{self.base_url}{endpoint}"
        headers = self._get_headers(idempotency_key)

        last_error = None
        last_status = 0
        network_failure = False

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            delay = min(self.base_delay * (2 ** attempt), self.max_delay)

            try:
                response = self._send(method, url, headers, payload)
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                network_failure = True
                logger.warning(f"{method} {endpoint} failed: {last_error} (attempt {attempt + 1}/{self.max_retries})")
                if not is_last:
                    self._sleep(delay)
                continue

            network_failure = False
            status_code = response.status_code
            last_status = status_code

            try:
                data = response.json() if response.content else None
            except ValueError:
                data = None

            if 200 <= status_code < 300:
                return RemoteResponse(success=True, status_code=status_code, data=data)

            error = self._map_error(status_code, data)
            if error.retryable:
                last_error = error.message
                logger.warning(f"{method} {endpoint} returned {status_code}, retrying in {delay}s")
                if not is_last:
                    self._sleep(delay)
                continue

            # Client error - don't retry
            logger.error(f"{method} {endpoint} rejected: {status_code} {error.message}")
            return RemoteResponse(
                success=False,
                status_code=status_code,
                data=data,
                error=error.message,
                error_code=error.code,
                should_retry=False
            )

        # All retries exhausted
        return RemoteResponse(
            success=False,
            status_code=last_status,
            error=f"All retries failed: {last_error}",
            error_code="network_error" if network_failure else "server_error",
            should_retry=True,
            network_error=network_failure
        )

    # ==================
    # Collection Operations
    # ==================

    def list(self, collection: str) -> RemoteResponse:
        """List a collection; data is normalized to a list of records carrying "key"."""
        response = self._make_request("GET", f"/collections/{collection}")
        if response.success:
            response.data = self._normalize_records(response.data)
        return response

    def create(self, collection: str, record: Dict[str, Any]) -> RemoteResponse:
        """Create a record; the business id doubles as the idempotency key."""
        return self._make_request(
            "POST",
            f"/collections/{collection}",
            payload=record,
            idempotency_key=str(record.get("id")) if record.get("id") else None
        )

    def update(self, collection: str, key: str, partial: Dict[str, Any]) -> RemoteResponse:
        return self._make_request("PATCH", f"/collections/{collection}/{key}", payload=partial)

    @staticmethod
    def _normalize_records(data: Any) -> List[Dict[str, Any]]:
        """
        Accepts a list of records, {"records": [...]}, or a key -> record map.
        """
        if data is None:
            return []
        if isinstance(data, dict) and isinstance(data.get("records"), list):
            data = data["records"]
        if isinstance(data, list):
            return [r for r in data if isinstance(r, dict)]
        if isinstance(data, dict):
            records = []
            for key, record in data.items():
                if isinstance(record, dict):
                    records.append({**record, "key": record.get("key", key)})
            return records
        return []


def get_remote_store_client(
    timeout: Optional[float] = None,
    max_retries: Optional[int] = None
) -> Optional[RemoteStoreClient]:
    """
    Client built from settings, or None when no remote store is configured.

    timeout and max_retries override the sync defaults for callers on a
    request path.
    """
    if not settings.remote_enabled:
        return None
    return RemoteStoreClient(
        base_url=settings.remote_store_url,
        api_key=settings.remote_store_api_key,
        timeout=timeout or settings.remote_timeout_seconds,
        max_retries=max_retries or settings.remote_max_retries,
        base_delay=settings.remote_base_delay,
        max_delay=settings.remote_max_delay,
        terminal_id=settings.terminal_id,
    )
