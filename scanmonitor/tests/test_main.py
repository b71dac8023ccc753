from __future__ import annotations

import pytest
import yaml

from scanmonitor import main as cli
from scanmonitor.client import DEFAULT_BASE_URL
from scanmonitor.tests.fakes import job_payload, make_pdf

SETTINGS_ENV = (
    "SCAN_MONITOR_BASE_URL",
    "SCAN_MONITOR_REQUEST_TIMEOUT",
    "SCAN_MONITOR_POLL_INTERVAL",
    "SCAN_MONITOR_TICK_INTERVAL",
    "SCAN_MONITOR_DOWNLOAD_DIR",
    "SCAN_MONITOR_SETTINGS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_cli(monkeypatch, make_api_client):
    monkeypatch.setattr(cli, "make_client", make_api_client)


def test_resolve_settings_defaults():
    settings = cli.resolve_settings()

    assert settings["server"]["base_url"] == DEFAULT_BASE_URL
    assert settings["server"]["request_timeout_seconds"] == 30.0
    assert settings["polling"]["interval_seconds"] == 2.0
    assert settings["polling"]["tick_seconds"] == 1.0
    assert settings["reports"]["download_dir"] == "."
    assert {"vbank", "abank", "sbank"} <= set(settings["presets"])


def test_resolve_settings_env_overrides(monkeypatch):
    monkeypatch.setenv("SCAN_MONITOR_BASE_URL", "http://scanner:9000/api")
    monkeypatch.setenv("SCAN_MONITOR_POLL_INTERVAL", "0.5")

    settings = cli.resolve_settings()

    assert settings["server"]["base_url"] == "http://scanner:9000/api"
    assert settings["polling"]["interval_seconds"] == 0.5


def test_resolve_settings_yaml_takes_precedence(tmp_path, monkeypatch):
    """Test that values from the settings file win over the environment."""
    monkeypatch.setenv("SCAN_MONITOR_BASE_URL", "http://from-env/api")
    path = tmp_path / "settings.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "server": {"base_url": "http://from-file/api"},
                "presets": {"local": {"open_api_url": "http://localhost/openapi.json", "api_base_url": "http://localhost"}},
            }
        ),
        encoding="utf-8",
    )

    settings = cli.resolve_settings(str(path))

    assert settings["server"]["base_url"] == "http://from-file/api"
    assert settings["presets"]["local"]["api_base_url"] == "http://localhost"
    assert "vbank" in settings["presets"]


def test_missing_settings_file_is_a_usage_error(tmp_path):
    assert cli.main(["--settings", str(tmp_path / "missing.yaml"), "history"]) == 2


def test_submit_requires_urls(fake_cli, fake_server):
    assert cli.main(["submit"]) == 2
    assert cli.main(["submit", "--preset", "nope"]) == 2
    assert fake_server.submissions == []


def test_submit_with_preset(fake_cli, fake_server, capsys):
    code = cli.main(["submit", "--preset", "vbank", "--no-ai-analysis"])

    out = capsys.readouterr().out
    assert code == 0
    assert "Scan ID: 100" in out
    assert "REPORT_URL=http://testserver/api/reports/100/HTML" in out
    assert "REPORT_PAGE=/results/100" in out
    body = fake_server.submissions[0]
    assert body["openApiUrl"] == "https://vbank.open.bankingapi.ru/openapi.json"
    assert body["options"]["enableAiAnalysis"] is False
    assert body["options"]["enableStaticAnalysis"] is True


def test_history_once(fake_cli, fake_server, capsys):
    fake_server.jobs = [job_payload("1", status="COMPLETED", duration_ms=65_000)]

    code = cli.main(["history"])

    out = capsys.readouterr().out
    assert code == 0
    assert "Completed" in out
    assert "1m 5s" in out


def test_history_failure_exit_code(fake_cli, fake_server, capsys):
    fake_server.history_status = 500

    assert cli.main(["history"]) == 1
    assert "Error:" in capsys.readouterr().err


def test_history_watch_for_a_while(fake_cli, fake_server, capsys, monkeypatch):
    fake_server.jobs = [job_payload("1")]
    monkeypatch.setenv("SCAN_MONITOR_POLL_INTERVAL", "0.01")

    assert cli.main(["history", "--watch", "--duration", "0.1"]) == 0
    assert len(fake_server.calls("GET")) >= 2
    assert "Running" in capsys.readouterr().out


def test_result_not_found(fake_cli, capsys):
    assert cli.main(["result", "9"]) == 1
    assert "Result not found" in capsys.readouterr().err


def test_result_with_html_export(fake_cli, fake_server, tmp_path, capsys):
    fake_server.results["9"] = {
        "scanId": "9",
        "totalEndpoints": 3,
        "vulnerabilities": [{"severity": "CRITICAL", "title": "SQL injection"}],
    }
    output = tmp_path / "out" / "result.html"

    assert cli.main(["result", "9", "--html", str(output)]) == 0

    out = capsys.readouterr().out
    assert "[CRITICAL] SQL injection" in out
    assert "severity-critical" in output.read_text(encoding="utf-8")


def test_report_pdf_download(fake_cli, fake_server, tmp_path, capsys):
    fake_server.pdf_reports["9"] = make_pdf()

    assert cli.main(["report", "9", "--format", "PDF", "--output-dir", str(tmp_path)]) == 0

    assert (tmp_path / "report-9.pdf").read_bytes().startswith(b"%PDF")
    assert "Report saved to" in capsys.readouterr().out


def test_report_pdf_failure(fake_cli, tmp_path):
    assert cli.main(["report", "9", "--format", "PDF", "--output-dir", str(tmp_path)]) == 1


def test_cancel_terminal_scan_fails(fake_cli, fake_server, capsys):
    fake_server.jobs = [job_payload("3", status="COMPLETED")]

    assert cli.main(["cancel", "3"]) == 1
    assert fake_server.calls("POST") == []
    assert "cannot be cancelled" in capsys.readouterr().err


def test_cancel_running_scan(fake_cli, fake_server):
    fake_server.jobs = [job_payload("3")]

    assert cli.main(["cancel", "3"]) == 0
    assert fake_server.calls("POST") == ["/api/analysis/history/3/cancel"]


def test_delete_with_yes(fake_cli, fake_server):
    fake_server.jobs = [job_payload("42", status="COMPLETED")]

    assert cli.main(["delete", "42", "--yes"]) == 0
    assert fake_server.jobs == []


def test_delete_declined_at_prompt(fake_cli, fake_server, monkeypatch, capsys):
    fake_server.jobs = [job_payload("42", status="COMPLETED")]
    monkeypatch.setattr("builtins.input", lambda prompt: "n")

    assert cli.main(["delete", "42"]) == 1
    assert fake_server.calls("DELETE") == []
    assert "Aborted" in capsys.readouterr().out


def test_malformed_env_setting_is_a_usage_error(monkeypatch):
    monkeypatch.setenv("SCAN_MONITOR_POLL_INTERVAL", "soon")

    assert cli.main(["history"]) == 2
