from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from scanmonitor.client import GENERIC_SUBMISSION_ERROR, ScanApiClient, ScanApiError
from scanmonitor.models import ScanOptions, ScanRequest

LOGGER = logging.getLogger(__name__)

DEFAULT_PRESETS: dict[str, dict[str, str]] = {
    "vbank": {
        "name": "VBank API",
        "open_api_url": "https://vbank.open.bankingapi.ru/openapi.json",
        "api_base_url": "https://vbank.open.bankingapi.ru",
    },
    "abank": {
        "name": "ABank API",
        "open_api_url": "https://abank.open.bankingapi.ru/openapi.json",
        "api_base_url": "https://abank.open.bankingapi.ru",
    },
    "sbank": {
        "name": "SBank API",
        "open_api_url": "https://sbank.open.bankingapi.ru/openapi.json",
        "api_base_url": "https://sbank.open.bankingapi.ru",
    },
}


def build_request(
    open_api_url: str,
    api_base_url: str,
    auth_token: str | None = None,
    options: ScanOptions | dict[str, Any] | None = None,
) -> ScanRequest:
    if isinstance(options, dict):
        options = ScanOptions.model_validate(options)
    return ScanRequest(
        open_api_url=open_api_url,
        api_base_url=api_base_url,
        auth_token=auth_token,
        options=options or ScanOptions(),
    )


@dataclass
class Submission:
    scan_id: str
    status: str | None = None

    @property
    def result_location(self) -> str:
        return f"/results/{self.scan_id}"


class ScanSubmitter:
    def __init__(self, client: ScanApiClient) -> None:
        self.client = client
        self.in_flight = False
        self.error: str | None = None
        self.last_submission: Submission | None = None

    @property
    def can_submit(self) -> bool:
        return not self.in_flight

    async def submit(self, request: ScanRequest) -> Submission | None:
        """Send one scan request. Returns None on failure or when a submission is already in flight."""
        if self.in_flight:
            LOGGER.warning("Ignoring scan submission: another one is still in flight")
            return None

        self.in_flight = True
        self.error = None
        self.last_submission = None
        try:
            LOGGER.info("Submitting scan: openApiUrl=%s apiBaseUrl=%s", request.open_api_url, request.api_base_url)
            result = await self.client.submit_scan(request)
        except ScanApiError as exc:
            self.error = exc.message or GENERIC_SUBMISSION_ERROR
            LOGGER.error("Scan submission failed: %s", self.error)
            return None
        finally:
            self.in_flight = False

        if not result.scan_id:
            self.error = GENERIC_SUBMISSION_ERROR
            LOGGER.error("Scan submission response carried no scanId")
            return None
        self.last_submission = Submission(scan_id=result.scan_id, status=result.status)
        LOGGER.info("Scan %s submitted (status=%s)", result.scan_id, result.status)
        return self.last_submission
