"""
Presentation of scan history and scan results: severity ranking, summary
counts and text/HTML rendering.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from scanmonitor.client import NotFoundError, ScanApiClient, ScanApiError
from scanmonitor.duration import DurationEstimator, format_duration
from scanmonitor.models import ContractMismatch, ScanJob, ScanResult, Vulnerability

LOGGER = logging.getLogger(__name__)

SEVERITY_TIERS = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "INFO")
DEFAULT_TIER = "INFO"
_TIER_RANK = {tier: rank for rank, tier in enumerate(SEVERITY_TIERS)}

STATUS_LABELS = {
    "RUNNING": "Running",
    "COMPLETED": "Completed",
    "FAILED": "Failed",
    "CANCELLED": "Cancelled",
    "PENDING": "Pending",
}

TEMPLATES_DIR = Path(__file__).parent / "templates"


def severity_tier(severity: Any) -> str:
    value = str(severity or "").strip().upper()
    return value if value in _TIER_RANK else DEFAULT_TIER


def severity_class(severity: Any) -> str:
    return f"severity-{severity_tier(severity).lower()}"


@dataclass
class VulnerabilityView:
    tier: str
    label: str
    css_class: str
    vulnerability: Vulnerability


@dataclass
class ResultView:
    total_endpoints: int
    vulnerability_count: int
    mismatch_count: int
    duration_label: str
    summary: str | None
    vulnerabilities: list[VulnerabilityView] = field(default_factory=list)
    mismatches: list[ContractMismatch] = field(default_factory=list)
    tier_counts: dict[str, int] = field(default_factory=dict)

    @property
    def no_issues(self) -> bool:
        return not self.vulnerabilities and not self.mismatches


class ResultRenderer:
    def __init__(self, templates_dir: str | Path = TEMPLATES_DIR) -> None:
        self._env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html"]),
        )

    def build(self, result: ScanResult) -> ResultView:
        ranked = sorted(
            enumerate(result.vulnerabilities),
            key=lambda item: (_TIER_RANK[severity_tier(item[1].severity)], item[0]),
        )
        vulnerabilities = []
        tier_counts = {tier: 0 for tier in SEVERITY_TIERS}
        for _, vuln in ranked:
            tier = severity_tier(vuln.severity)
            tier_counts[tier] += 1
            vulnerabilities.append(
                VulnerabilityView(
                    tier=tier,
                    label=vuln.severity or tier,
                    css_class=severity_class(vuln.severity),
                    vulnerability=vuln,
                )
            )
        duration_label = f"{result.duration_ms / 1000:.1f}s" if result.duration_ms else "-"
        return ResultView(
            total_endpoints=result.total_endpoints,
            vulnerability_count=len(result.vulnerabilities),
            mismatch_count=len(result.contract_mismatches),
            duration_label=duration_label,
            summary=result.summary,
            vulnerabilities=vulnerabilities,
            mismatches=list(result.contract_mismatches),
            tier_counts=tier_counts,
        )

    def render_text(self, result: ScanResult) -> str:
        view = self.build(result)
        lines = [
            "Scan results",
            f"  Endpoints:            {view.total_endpoints}",
            f"  Vulnerabilities:      {view.vulnerability_count}",
            f"  Contract mismatches:  {view.mismatch_count}",
            f"  Analysis time:        {view.duration_label}",
        ]
        if view.summary:
            lines.extend(["", view.summary])

        if view.no_issues:
            lines.extend(["", "No issues found.", "The API matches its specification and shows no obvious vulnerabilities."])
            return "\n".join(lines)

        if view.vulnerabilities:
            lines.extend(["", "Vulnerabilities"])
            for item in view.vulnerabilities:
                vuln = item.vulnerability
                header = f"  [{item.label}]"
                if vuln.owasp_category:
                    header += f" {vuln.owasp_category}"
                lines.append(f"{header} {vuln.title}".rstrip())
                if vuln.description:
                    lines.append(f"      {vuln.description}")
                if vuln.endpoint:
                    lines.append(f"      Endpoint: {' '.join(p for p in (vuln.method, vuln.endpoint) if p)}")
                if vuln.evidence:
                    lines.append(f"      Evidence: {vuln.evidence}")
                if vuln.recommendation:
                    lines.append(f"      Recommendation: {vuln.recommendation}")

        if view.mismatches:
            lines.extend(["", "Contract mismatches"])
            for mismatch in view.mismatches:
                lines.append(
                    "  {method} {endpoint} [{type}] expected={expected} actual={actual} {message}".format(
                        method=mismatch.method or "-",
                        endpoint=mismatch.endpoint or "-",
                        type=mismatch.type or "-",
                        expected=mismatch.expected or "-",
                        actual=mismatch.actual or "-",
                        message=mismatch.message or "",
                    ).rstrip()
                )
        return "\n".join(lines)

    def render_html(self, result: ScanResult, scan_id: str | None = None) -> str:
        template = self._env.get_template("result.html")
        return template.render(view=self.build(result), scan_id=scan_id or result.scan_id, tiers=SEVERITY_TIERS)


def _format_start(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def render_history(jobs: list[ScanJob], estimator: DurationEstimator, now: float | None = None) -> str:
    if not jobs:
        return "Scan history is empty"
    rows = [("Started", "Scan ID", "Bank", "Description", "Status", "Duration")]
    for job in jobs:
        rows.append(
            (
                _format_start(job.start_time),
                job.scan_id,
                job.bank_name or "-",
                job.display_description,
                STATUS_LABELS.get(job.status, job.status),
                format_duration(estimator.display_ms(job, now)),
            )
        )
    widths = [max(len(row[col]) for row in rows) for col in range(len(rows[0]))]
    return "\n".join("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip() for row in rows)


class ResultPage:
    """State of one opened result view.

    The result is fetched every time a page is opened and never cached. A page
    closed while its request is outstanding ignores the late response.
    """

    def __init__(self, client: ScanApiClient, scan_id: str) -> None:
        self.client = client
        self.scan_id = scan_id
        self.loading = False
        self.result: ScanResult | None = None
        self.error: str | None = None
        self.not_found = False
        self._closed = False

    @property
    def back_location(self) -> str:
        return "/"

    def close(self) -> None:
        self._closed = True

    async def load(self) -> ScanResult | None:
        if self.not_found:
            return None
        self.loading = True
        try:
            result = await self.client.get_result(self.scan_id)
        except NotFoundError as exc:
            if not self._closed:
                self.not_found = True
                self.error = exc.message
            return None
        except ScanApiError as exc:
            if not self._closed:
                self.error = exc.message
            LOGGER.warning("Failed to load result for scan %s: %s", self.scan_id, exc.message)
            return None
        finally:
            if not self._closed:
                self.loading = False

        if self._closed:
            LOGGER.debug("Result page for scan %s closed; dropping response", self.scan_id)
            return None
        self.result = result
        self.error = None
        return result
