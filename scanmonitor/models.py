from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ScanStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_STATUSES = {ScanStatus.PENDING.value, ScanStatus.RUNNING.value}
TERMINAL_STATUSES = {ScanStatus.COMPLETED.value, ScanStatus.FAILED.value, ScanStatus.CANCELLED.value}

ANALYSIS_LABELS = {
    "enable_static_analysis": "Static analysis",
    "enable_dynamic_testing": "Dynamic testing",
    "enable_contract_validation": "Contract validation",
    "enable_ai_analysis": "AI analysis",
}


class WireModel(BaseModel):
    """Base for payloads exchanged with the scan server (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _as_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    return str(value)


class ScanOptions(WireModel):
    enable_static_analysis: bool = True
    enable_dynamic_testing: bool = True
    enable_contract_validation: bool = True
    enable_ai_analysis: bool = True

    def enabled_labels(self) -> list[str]:
        return [label for name, label in ANALYSIS_LABELS.items() if getattr(self, name)]


class ScanRequest(WireModel):
    open_api_url: str
    api_base_url: str
    auth_token: str | None = None
    options: ScanOptions = Field(default_factory=ScanOptions)

    @field_validator("auth_token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ScanJob(WireModel):
    scan_id: str
    status: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_ms: int | None = None
    bank_name: str | None = None
    description: str | None = None
    open_api_url: str | None = None
    api_base_url: str | None = None
    options: ScanOptions | None = None

    @field_validator("scan_id", mode="before")
    @classmethod
    def _scan_id_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, ScanStatus):
            return value.value
        if isinstance(value, str):
            return value.upper()
        return value

    @property
    def is_running(self) -> bool:
        return self.status == ScanStatus.RUNNING.value

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def display_description(self) -> str:
        if self.description:
            return self.description
        parts = []
        if self.bank_name:
            parts.append(self.bank_name)
        labels = self.options.enabled_labels() if self.options else []
        parts.append(", ".join(labels) if labels else "Basic analysis")
        return " - ".join(parts)


class Vulnerability(WireModel):
    severity: str | None = None
    owasp_category: str | None = None
    title: str = ""
    description: str = ""
    endpoint: str | None = None
    method: str | None = None
    evidence: str | None = None
    recommendation: str | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("title", "description", mode="before")
    @classmethod
    def _missing_text_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ContractMismatch(WireModel):
    endpoint: str | None = None
    method: str | None = None
    type: str | None = None
    field: str | None = None
    expected: str | None = None
    actual: str | None = None
    message: str | None = None
    severity: str | None = None

    @field_validator("expected", "actual", mode="before")
    @classmethod
    def _values_as_text(cls, value: Any) -> Any:
        return _as_text(value)


class ScanResult(WireModel):
    scan_id: str | None = None
    status: str | None = None
    total_endpoints: int = 0
    tested_endpoints: int | None = None
    passed_endpoints: int | None = None
    failed_endpoints: int | None = None
    vulnerabilities: list[Vulnerability] = Field(default_factory=list)
    contract_mismatches: list[ContractMismatch] = Field(default_factory=list)
    vulnerability_counts: dict[str, int] | None = None
    duration_ms: int | None = None
    summary: str | None = None

    @field_validator("scan_id", "status", mode="before")
    @classmethod
    def _ids_as_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("vulnerabilities", "contract_mismatches", mode="before")
    @classmethod
    def _missing_list_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("total_endpoints", mode="before")
    @classmethod
    def _missing_count_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value
