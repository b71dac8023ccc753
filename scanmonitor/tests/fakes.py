"""
In-process fake of the scan server REST API, plus a gated transport for
tests that need to control when history responses arrive.
"""
from __future__ import annotations

import asyncio
import itertools
from io import BytesIO
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

BASE_URL = "http://testserver/api"


def make_pdf(text: str = "Security Scan Report") -> bytes:
    from reportlab.pdfgen import canvas

    buffer = BytesIO()
    pdf = canvas.Canvas(buffer)
    pdf.drawString(72, 720, text)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def job_payload(scan_id: str, status: str = "RUNNING", duration_ms: int | None = 1000, **extra: Any) -> dict[str, Any]:
    payload = {
        "scanId": scan_id,
        "status": status,
        "startTime": "2024-05-01T10:00:00",
        "durationMs": duration_ms,
        "bankName": "VBank",
        "options": {
            "enableStaticAnalysis": True,
            "enableDynamicTesting": False,
            "enableContractValidation": True,
            "enableAiAnalysis": False,
        },
    }
    payload.update(extra)
    return payload


class FakeScanServer:
    def __init__(self) -> None:
        self.jobs: list[dict[str, Any]] = []
        self.results: dict[str, dict[str, Any]] = {}
        self.pdf_reports: dict[str, bytes] = {}
        self.submissions: list[dict[str, Any]] = []
        self.requests: list[tuple[str, str]] = []
        self.history_status = 200
        self.cancel_outcome: str | None = None
        self._ids = itertools.count(100)

    def find(self, scan_id: str) -> dict[str, Any] | None:
        for job in self.jobs:
            if job["scanId"] == scan_id:
                return job
        return None

    def calls(self, method: str) -> list[str]:
        return [path for seen_method, path in self.requests if seen_method == method]


def build_app(server: FakeScanServer) -> FastAPI:
    app = FastAPI()

    @app.middleware("http")
    async def record(request: Request, call_next):
        server.requests.append((request.method, request.url.path))
        return await call_next(request)

    @app.post("/api/analysis/scan")
    async def submit(request: Request):
        body = await request.json()
        server.submissions.append(body)
        if not body.get("openApiUrl"):
            return JSONResponse(status_code=400, content={"error": "OpenAPI URL is required"})
        scan_id = str(next(server._ids))
        server.jobs.insert(0, job_payload(scan_id, status="PENDING", duration_ms=None))
        return {"scanId": scan_id, "status": "PENDING"}

    @app.get("/api/analysis/history")
    async def history():
        if server.history_status != 200:
            return JSONResponse(status_code=server.history_status, content={"error": "boom"})
        return server.jobs

    @app.get("/api/analysis/history/{scan_id}/status")
    async def status(scan_id: str):
        if scan_id not in server.results:
            return Response(status_code=404)
        return server.results[scan_id]

    @app.post("/api/analysis/history/{scan_id}/cancel")
    async def cancel(scan_id: str):
        job = server.find(scan_id)
        if job is None or job["status"] not in {"PENDING", "RUNNING"}:
            return JSONResponse(
                status_code=400,
                content={"status": "error", "message": "Scan not found or already completed"},
            )
        job["status"] = server.cancel_outcome or "CANCELLED"
        return {"status": "cancelled", "scanId": scan_id}

    @app.delete("/api/analysis/history/{scan_id}")
    async def delete(scan_id: str):
        job = server.find(scan_id)
        if job is None:
            return Response(status_code=404)
        server.jobs.remove(job)
        return {"status": "deleted", "scanId": scan_id}

    @app.get("/api/reports/{scan_id}/{report_type}")
    async def report(scan_id: str, report_type: str):
        if report_type == "PDF":
            if scan_id not in server.pdf_reports:
                return Response(status_code=500)
            return Response(content=server.pdf_reports[scan_id], media_type="application/pdf")
        if report_type == "HTML":
            return HTMLResponse(f"<html><body>Report {scan_id}</body></html>")
        return {"scanId": scan_id}

    return app


class GatedHistory:
    """MockTransport handler whose history responses are released by the test."""

    def __init__(self) -> None:
        self.gates: list[asyncio.Event] = []
        self.payloads: list[Any] = []
        self.entered: list[asyncio.Event] = []
        self.client: Any = None

    def expect(self, payload: Any) -> int:
        self.gates.append(asyncio.Event())
        self.entered.append(asyncio.Event())
        self.payloads.append(payload)
        return len(self.payloads) - 1

    async def handler(self, request: httpx.Request) -> httpx.Response:
        index = sum(1 for event in self.entered if event.is_set())
        self.entered[index].set()
        await self.gates[index].wait()
        payload = self.payloads[index]
        if isinstance(payload, Exception):
            raise payload
        return httpx.Response(200, json=payload)

    def release(self, index: int) -> None:
        self.gates[index].set()

