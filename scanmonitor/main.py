from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml

from scanmonitor.client import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS, ReportFetchError, ReportFormat, ScanApiClient, ScanApiError
from scanmonitor.duration import TICK_SECONDS
from scanmonitor.poller import POLL_INTERVAL_SECONDS, InvalidJobStateError, JobHistoryPoller
from scanmonitor.renderer import ResultPage, ResultRenderer, render_history
from scanmonitor.reports import ReportFetcher
from scanmonitor.submitter import DEFAULT_PRESETS, ScanSubmitter, build_request

LOGGER = logging.getLogger(__name__)

ANALYSIS_FLAGS = {
    "static_analysis": "enable_static_analysis",
    "dynamic_testing": "enable_dynamic_testing",
    "contract_validation": "enable_contract_validation",
    "ai_analysis": "enable_ai_analysis",
}


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def load_yaml(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def resolve_settings(path: str | None = None) -> dict[str, Any]:
    settings = load_yaml(path) if path else {}
    settings.setdefault("server", {})
    settings.setdefault("polling", {})
    settings.setdefault("reports", {})
    settings.setdefault("presets", {})
    settings["server"].setdefault("base_url", os.getenv("SCAN_MONITOR_BASE_URL", DEFAULT_BASE_URL))
    settings["server"].setdefault(
        "request_timeout_seconds", float(os.getenv("SCAN_MONITOR_REQUEST_TIMEOUT", str(DEFAULT_TIMEOUT_SECONDS)))
    )
    settings["polling"].setdefault(
        "interval_seconds", float(os.getenv("SCAN_MONITOR_POLL_INTERVAL", str(POLL_INTERVAL_SECONDS)))
    )
    settings["polling"].setdefault("tick_seconds", float(os.getenv("SCAN_MONITOR_TICK_INTERVAL", str(TICK_SECONDS))))
    settings["reports"].setdefault("download_dir", os.getenv("SCAN_MONITOR_DOWNLOAD_DIR", "."))
    for key, preset in DEFAULT_PRESETS.items():
        settings["presets"].setdefault(key, dict(preset))
    return settings


def make_client(settings: dict[str, Any]) -> ScanApiClient:
    return ScanApiClient(
        base_url=str(settings["server"]["base_url"]),
        timeout=float(settings["server"]["request_timeout_seconds"]),
    )


def _confirm_delete(scan_id: str) -> bool:
    answer = input(f"Delete scan {scan_id}? This cannot be undone. [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


async def cmd_submit(args: argparse.Namespace, settings: dict[str, Any]) -> int:
    open_api_url = args.openapi_url
    api_base_url = args.api_base_url
    if args.preset:
        preset = settings["presets"].get(args.preset.lower())
        if preset is None:
            LOGGER.error("Unknown preset: %s", args.preset)
            return 2
        open_api_url = open_api_url or preset["open_api_url"]
        api_base_url = api_base_url or preset["api_base_url"]
    if not open_api_url or not api_base_url:
        LOGGER.error("Both --openapi-url and --api-base-url (or --preset) are required")
        return 2

    options = {field: not getattr(args, f"no_{flag}") for flag, field in ANALYSIS_FLAGS.items()}
    request = build_request(open_api_url, api_base_url, args.auth_token, options)
    async with make_client(settings) as client:
        submitter = ScanSubmitter(client)
        submission = await submitter.submit(request)
        if submission is None:
            print(f"Error: {submitter.error}", file=sys.stderr)
            return 1
        report_url = client.report_url(submission.scan_id, ReportFormat.HTML)

    print(f"Scan ID: {submission.scan_id}")
    if submission.status:
        print(f"Status: {submission.status}")
    print(f"REPORT_URL={report_url}")
    print(f"REPORT_PAGE={submission.result_location}")
    return 0


async def cmd_history(args: argparse.Namespace, settings: dict[str, Any]) -> int:
    def show(poller: JobHistoryPoller) -> None:
        if poller.error:
            print(f"Error: {poller.error}", file=sys.stderr)
        print(render_history(poller.jobs, poller.estimator))
        print()

    async with make_client(settings) as client:
        poller = JobHistoryPoller(
            client,
            interval=float(settings["polling"]["interval_seconds"]),
            tick_interval=float(settings["polling"]["tick_seconds"]),
        )
        if not args.watch:
            await poller.refresh()
            show(poller)
            return 1 if poller.error else 0

        poller.on_change = show
        poller.on_error = show
        poller.on_tick = show
        async with poller:
            if args.duration:
                await asyncio.sleep(args.duration)
            else:
                await asyncio.Event().wait()
    return 0


async def cmd_result(args: argparse.Namespace, settings: dict[str, Any]) -> int:
    renderer = ResultRenderer()
    async with make_client(settings) as client:
        page = ResultPage(client, args.scan_id)
        result = await page.load()
    if page.not_found:
        print(f"Result not found: {page.error}", file=sys.stderr)
        return 1
    if result is None:
        print(f"Error: {page.error}", file=sys.stderr)
        return 1
    print(renderer.render_text(result))
    if args.html:
        output = Path(args.html)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(renderer.render_html(result, args.scan_id), encoding="utf-8")
        print(f"HTML written to {output}")
    return 0


async def cmd_report(args: argparse.Namespace, settings: dict[str, Any]) -> int:
    download_dir = args.output_dir or settings["reports"]["download_dir"]
    async with make_client(settings) as client:
        fetcher = ReportFetcher(client, download_dir=download_dir)
        try:
            outcome = await fetcher.fetch(args.scan_id, args.format)
        except ReportFetchError as exc:
            print(f"Failed to download report: {exc.message}", file=sys.stderr)
            return 1
    if not outcome.downloaded:
        print(f"Opened {outcome.url}")
        return 0
    if outcome.empty:
        print(f"Report for scan {args.scan_id} is empty (saved to {outcome.path})")
        return 0
    print(f"Report saved to {outcome.path}")
    return 0


async def cmd_cancel(args: argparse.Namespace, settings: dict[str, Any]) -> int:
    async with make_client(settings) as client:
        poller = JobHistoryPoller(client)
        await poller.refresh()
        try:
            await poller.cancel(args.scan_id)
        except InvalidJobStateError as exc:
            print(f"Error: {exc.message}", file=sys.stderr)
            return 1
        except ScanApiError as exc:
            print(f"Failed to cancel scan: {exc.message}", file=sys.stderr)
            return 1
    print(f"Cancel requested for scan {args.scan_id}")
    return 0


async def cmd_delete(args: argparse.Namespace, settings: dict[str, Any]) -> int:
    confirm = (lambda scan_id: True) if args.yes else _confirm_delete
    async with make_client(settings) as client:
        poller = JobHistoryPoller(client)
        try:
            deleted = await poller.delete(args.scan_id, confirm)
        except ScanApiError as exc:
            print(f"Failed to delete scan: {exc.message}", file=sys.stderr)
            return 1
    if not deleted:
        print("Aborted")
        return 1
    print(f"Deleted scan {args.scan_id}")
    return 0


COMMANDS = {
    "submit": cmd_submit,
    "history": cmd_history,
    "result": cmd_result,
    "report": cmd_report,
    "cancel": cmd_cancel,
    "delete": cmd_delete,
}


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Monitor API security scan jobs and their results")
    parser.add_argument("--settings", default=os.getenv("SCAN_MONITOR_SETTINGS"), help="Path to settings YAML")
    parser.add_argument("--base-url", help="Scan server API base URL")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "WARNING"), help="Logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Start a new scan")
    submit.add_argument("--openapi-url", help="OpenAPI specification URL")
    submit.add_argument("--api-base-url", help="Base URL of the API under test")
    submit.add_argument("--auth-token", help="Optional bearer token for the API under test")
    submit.add_argument("--preset", help="Named API preset (vbank, abank, sbank or one from settings)")
    for flag in ANALYSIS_FLAGS:
        submit.add_argument(f"--no-{flag.replace('_', '-')}", action="store_true", help=f"Disable {flag.replace('_', ' ')}")

    history = subparsers.add_parser("history", help="Show scan history")
    history.add_argument("--watch", action="store_true", help="Keep polling until interrupted")
    history.add_argument("--duration", type=float, help="Stop watching after this many seconds")

    result = subparsers.add_parser("result", help="Show the result of a finished scan")
    result.add_argument("scan_id")
    result.add_argument("--html", help="Also write the result as an HTML page to this path")

    report = subparsers.add_parser("report", help="Open or download a scan report")
    report.add_argument("scan_id")
    report.add_argument("--format", choices=[item.value for item in ReportFormat], default=ReportFormat.HTML.value)
    report.add_argument("--output-dir", help="Directory for downloaded PDF reports")

    cancel = subparsers.add_parser("cancel", help="Cancel a pending or running scan")
    cancel.add_argument("scan_id")

    delete = subparsers.add_parser("delete", help="Delete a scan")
    delete.add_argument("scan_id")
    delete.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    try:
        settings = resolve_settings(args.settings)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        LOGGER.error("Invalid settings (file=%s): %s", args.settings, exc)
        return 2
    if args.base_url:
        settings["server"]["base_url"] = args.base_url

    try:
        return asyncio.run(COMMANDS[args.command](args, settings))
    except KeyboardInterrupt:
        return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
