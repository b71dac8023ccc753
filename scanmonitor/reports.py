from __future__ import annotations

import logging
import tempfile
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from scanmonitor.client import ReportFetchError, ReportFormat, ScanApiClient

LOGGER = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF"
NAVIGABLE_FORMATS = {ReportFormat.HTML, ReportFormat.JSON_EXTENDED}


@dataclass
class ReportOutcome:
    scan_id: str
    report_format: ReportFormat
    url: str
    path: Path | None = None
    size: int = 0
    empty: bool = False

    @property
    def downloaded(self) -> bool:
        return self.path is not None


class ReportFetcher:
    """Exports a finished scan's report.

    HTML and JSON reports are handed to ``opener`` as a URL and rendered by
    whatever opens it; their failures are not observable here. PDF reports are
    downloaded into ``download_dir`` as ``report-<scan_id>.pdf``.
    """

    def __init__(
        self,
        client: ScanApiClient,
        download_dir: str | Path = ".",
        opener: Callable[[str], object] = webbrowser.open,
    ) -> None:
        self.client = client
        self.download_dir = Path(download_dir)
        self.opener = opener

    async def fetch(self, scan_id: str, report_format: ReportFormat | str) -> ReportOutcome:
        report_format = ReportFormat(report_format)
        # the id becomes part of a file name under download_dir
        if scan_id in {"", ".", ".."} or Path(scan_id).name != scan_id:
            raise ReportFetchError(f"Invalid scan id: {scan_id!r}")
        url = self.client.report_url(scan_id, report_format)
        if report_format in NAVIGABLE_FORMATS:
            LOGGER.info("Opening %s report for scan %s: %s", report_format.value, scan_id, url)
            self.opener(url)
            return ReportOutcome(scan_id=scan_id, report_format=report_format, url=url)

        content = await self.client.fetch_report(scan_id, report_format)
        destination = self._save(scan_id, content)
        if not content:
            LOGGER.warning("PDF report for scan %s is empty", scan_id)
        elif not content.startswith(PDF_SIGNATURE):
            LOGGER.warning("Report for scan %s does not look like a PDF document", scan_id)
        LOGGER.info("Saved PDF report for scan %s to %s (%d bytes)", scan_id, destination, len(content))
        return ReportOutcome(
            scan_id=scan_id,
            report_format=report_format,
            url=url,
            path=destination,
            size=len(content),
            empty=not content,
        )

    def _save(self, scan_id: str, content: bytes) -> Path:
        self.download_dir.mkdir(parents=True, exist_ok=True)
        destination = self.download_dir / f"report-{scan_id}.pdf"
        handle = tempfile.NamedTemporaryFile(
            dir=self.download_dir, prefix=f".report-{scan_id}-", suffix=".part", delete=False
        )
        transient = Path(handle.name)
        try:
            with handle:
                handle.write(content)
            transient.replace(destination)
        finally:
            transient.unlink(missing_ok=True)
        return destination
