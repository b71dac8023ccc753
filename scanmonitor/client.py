from __future__ import annotations

import logging
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from scanmonitor.models import ScanJob, ScanRequest, ScanResult

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080/api"
DEFAULT_TIMEOUT_SECONDS = 30.0
GENERIC_SUBMISSION_ERROR = "Analysis failed"

_HISTORY_ADAPTER = TypeAdapter(list[ScanJob])


class ReportFormat(str, Enum):
    HTML = "HTML"
    JSON_EXTENDED = "JSON_EXTENDED"
    PDF = "PDF"


class ScanApiError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransientFetchError(ScanApiError):
    pass


class SubmissionError(ScanApiError):
    pass


class NotFoundError(ScanApiError):
    pass


class WriteThroughError(ScanApiError):
    pass


class ReportFetchError(ScanApiError):
    pass


def _segment(scan_id: str, error_cls: type[ScanApiError]) -> str:
    value = str(scan_id)
    if value in {"", ".", ".."}:
        raise error_cls(f"Invalid scan id: {value!r}")
    return quote(value, safe="")


def _error_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("error") or body.get("message") or body.get("detail")
        if isinstance(message, str) and message:
            return message
    return None


class ScanApiClient:
    """Async adapter for the scan server REST API.

    Every method performs exactly one request and maps failures onto the
    ``ScanApiError`` hierarchy; nothing is retried here.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": "scanmonitor/1.0", **(headers or {})},
        )

    async def __aenter__(self) -> "ScanApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, error_cls: type[ScanApiError], **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            LOGGER.warning("%s %s timed out: %s", method, path, exc)
            raise error_cls(f"Request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            LOGGER.warning("%s %s failed: %s", method, path, exc)
            raise error_cls(f"Request failed: {exc}") from exc

    async def submit_scan(self, request: ScanRequest) -> ScanResult:
        try:
            response = await self._http.post("/analysis/scan", json=request.to_payload())
        except httpx.HTTPError as exc:
            LOGGER.warning("Scan submission failed before a response: %s", exc)
            raise SubmissionError(GENERIC_SUBMISSION_ERROR) from exc
        if not response.is_success:
            message = _error_message(response) or GENERIC_SUBMISSION_ERROR
            raise SubmissionError(message, status_code=response.status_code)
        try:
            return ScanResult.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise SubmissionError("Malformed submission response") from exc

    async def list_history(self) -> list[ScanJob]:
        response = await self._request("GET", "/analysis/history", TransientFetchError)
        if not response.is_success:
            raise TransientFetchError(f"Failed to fetch history (HTTP {response.status_code})", response.status_code)
        try:
            return _HISTORY_ADAPTER.validate_python(response.json())
        except (ValueError, ValidationError) as exc:
            raise TransientFetchError("Malformed history payload") from exc

    async def get_result(self, scan_id: str) -> ScanResult:
        segment = _segment(scan_id, TransientFetchError)
        response = await self._request("GET", f"/analysis/history/{segment}/status", TransientFetchError)
        if response.status_code == 404:
            raise NotFoundError(f"Scan {scan_id} not found", 404)
        if not response.is_success:
            raise TransientFetchError(f"Failed to fetch result (HTTP {response.status_code})", response.status_code)
        try:
            return ScanResult.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TransientFetchError("Malformed result payload") from exc

    async def cancel_scan(self, scan_id: str) -> None:
        segment = _segment(scan_id, WriteThroughError)
        response = await self._request("POST", f"/analysis/history/{segment}/cancel", WriteThroughError)
        if not response.is_success:
            message = _error_message(response) or f"Cancel failed (HTTP {response.status_code})"
            raise WriteThroughError(message, response.status_code)

    async def delete_scan(self, scan_id: str) -> None:
        segment = _segment(scan_id, WriteThroughError)
        response = await self._request("DELETE", f"/analysis/history/{segment}", WriteThroughError)
        if not response.is_success:
            message = _error_message(response) or f"Delete failed (HTTP {response.status_code})"
            raise WriteThroughError(message, response.status_code)

    def report_path(self, scan_id: str, report_format: ReportFormat) -> str:
        return f"/reports/{_segment(scan_id, ReportFetchError)}/{ReportFormat(report_format).value}"

    def report_url(self, scan_id: str, report_format: ReportFormat) -> str:
        return f"{self.base_url}{self.report_path(scan_id, report_format)}"

    async def fetch_report(self, scan_id: str, report_format: ReportFormat) -> bytes:
        path = self.report_path(scan_id, report_format)
        response = await self._request("GET", path, ReportFetchError, headers={"Accept": "*/*"})
        if not response.is_success:
            raise ReportFetchError(f"Failed to download report (HTTP {response.status_code})", response.status_code)
        return response.content
