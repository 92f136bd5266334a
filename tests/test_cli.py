from __future__ import annotations

from pathlib import Path

import pytest

from erp_autologin.cli import describe_failure, main
from erp_autologin.errors import InvalidRollNumber, NoMatchingSecurityAnswer, OtpTimeout


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "state.db"))
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "erp_login.log"))
    monkeypatch.setenv("ERP_ROLL_NUMBER", "21CS10001")
    monkeypatch.setenv("ERP_PASSWORD", "hunter22")
    monkeypatch.setenv("ERP_SECURITY_QUESTIONS", '{"Pet name?": "tommy"}')
    monkeypatch.setenv("GMAIL_ACCESS_TOKEN", "ya29.test")
    return tmp_path


def _run(tmp_path: Path, *args: str) -> int:
    return main(["--env-file", str(tmp_path / "missing.env"), "--config", str(tmp_path / "missing.yaml"), *args])


def test_describe_failure_uses_category_headline() -> None:
    text = describe_failure(InvalidRollNumber("Invalid Roll Number"))
    assert text.startswith("❌ ERP Login Failed: Invalid Roll Number")
    assert "roll number and password" in text

    assert describe_failure(OtpTimeout("OTP not found after 10 attempts")).startswith("❌ OTP Verification Failed")
    assert "Security Questions Issue" in describe_failure(NoMatchingSecurityAnswer("Car?", ["Pet?"]))


def test_save_credentials_then_show_session(cli_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(cli_env, "save-credentials") == 0
    capsys.readouterr()

    # nothing logged in yet
    assert _run(cli_env, "show-session") == 1
    out = capsys.readouterr().out
    assert "Credentials stored: yes" in out
    assert "Mailbox connected:  yes" in out
    assert "Last login:         never" in out
    assert "none (or expired)" in out


def test_save_credentials_rejects_short_password(cli_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ERP_PASSWORD", "abc")
    with pytest.raises(SystemExit, match="at least 6"):
        _run(cli_env, "save-credentials")


def test_clear_session_is_idempotent(cli_env: Path) -> None:
    assert _run(cli_env, "clear-session") == 0
    assert _run(cli_env, "clear-session") == 0
    assert (cli_env / "state.db").exists()
