from __future__ import annotations

import json
from pathlib import Path

import pytest

from deploy_checks.main import EXIT_CONFIG_ERROR, EXIT_EXHAUSTED, EXIT_SUCCEEDED, main


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DEPLOY_VERIFY_BASE_URL", "DEPLOY_VERIFY_MAX_ATTEMPTS", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID"):
        monkeypatch.delenv(name, raising=False)


def _json_from_stdout(out: str) -> dict:
    return json.loads(out[out.index("\n{") + 1 :])


def test_run_succeeds_and_writes_artifacts(
    local_server_base_url: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        f"""
base_url: {local_server_base_url}
max_attempts: 3
interval_seconds: 0
timeout_seconds: 5
write_markdown: true
targets:
  - path: /ok
    production_markers: ["v3.0"]
  - path: /api/health
    production_markers: ['"status":"healthy"']
""",
        encoding="utf-8",
    )
    reports = tmp_path / "reports"

    code = main(["run", "--config", str(config), "--report-dir", str(reports), "--no-telegram"])

    assert code == EXIT_SUCCEEDED
    out = capsys.readouterr().out
    assert out.startswith("Deployment verified")
    data = _json_from_stdout(out)
    assert data["terminal_state"] == "succeeded"
    assert data["success_rate"] == 1.0
    assert len(list(reports.glob("verification-report-*.json"))) == 1
    assert len(list(reports.glob("verification-report-*.md"))) == 1


def test_run_unmarked_target_exhausts(
    local_server_base_url: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = main(
        [
            "run",
            "--config",
            str(tmp_path / "missing.yaml"),
            "--base-url",
            local_server_base_url,
            "--target",
            "/ok",
            "--target",
            "/bad_gateway",
            "--once",
            "--no-artifacts",
            "--no-telegram",
        ]
    )

    assert code == EXIT_EXHAUSTED
    data = _json_from_stdout(capsys.readouterr().out)
    assert data["attempts"] == 1
    assert data["state_histogram"]["degraded"] == 1
    assert data["state_histogram"]["error"] == 1
    assert not (tmp_path / "reports").exists()


def test_invalid_config_exits_with_config_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(
        [
            "run",
            "--config",
            str(tmp_path / "missing.yaml"),
            "--base-url",
            "https://svc.example.com",
            "--target",
            "/",
            "--max-attempts",
            "0",
        ]
    )
    assert code == EXIT_CONFIG_ERROR
    assert "Configuration error" in capsys.readouterr().err


def test_no_targets_exits_with_config_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["run", "--config", str(tmp_path / "missing.yaml"), "--no-telegram", "--no-artifacts"])
    assert code == EXIT_CONFIG_ERROR
    assert "At least one probe target" in capsys.readouterr().err


def test_json_flag_prints_only_the_report(
    local_server_base_url: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = main(
        [
            "run",
            "--config",
            str(tmp_path / "missing.yaml"),
            "--base-url",
            local_server_base_url,
            "--target",
            "/bad_gateway",
            "--once",
            "--no-artifacts",
            "--no-telegram",
            "--json",
        ]
    )

    assert code == EXIT_EXHAUSTED
    captured = capsys.readouterr()
    data = json.loads(captured.out)
    assert data["terminal_state"] == "exhausted"
    assert data["state_histogram"]["error"] == 1
    assert "Deployment NOT verified" not in captured.out
    assert "[1/1]" in captured.err
