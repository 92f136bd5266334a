from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, List, Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .credentials import DEFAULT_SESSION_TTL_SECONDS
from .logging_config import DEFAULT_LOG_FILE
from .models import Credentials, SecurityQuestion
from .portal.markers import PortalUrls
from .portal.mfa import DEFAULT_MAX_RESULTS, DEFAULT_OTP_QUERY


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")
_DEFAULT_URLS = PortalUrls()


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _parse_security_questions_env(value: str) -> list[dict[str, str]]:
    """
    Accept either a JSON list (`[{"question": "...", "answer": "..."}]`) or a JSON object
    (`{"question": "answer"}`). Anything else yields no questions.
    """
    s = (value or "").strip()
    if not s:
        return []
    try:
        data = json.loads(s)
    except ValueError:
        return []

    if isinstance(data, dict):
        return [{"question": str(q), "answer": str(a)} for q, a in data.items()]
    if isinstance(data, list):
        out: list[dict[str, str]] = []
        for item in data:
            if isinstance(item, dict) and item.get("question"):
                out.append({"question": str(item["question"]), "answer": str(item.get("answer") or "")})
        return out
    return []


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _default_config_from_env() -> dict:
    """
    Env-only config so most users only need `.env`; a YAML file is an optional override.
    """
    return {
        "portal": {
            "homepage_url": os.getenv("ERP_HOMEPAGE_URL", _DEFAULT_URLS.homepage),
            "login_url": os.getenv("ERP_LOGIN_URL", _DEFAULT_URLS.login),
            "security_question_url": os.getenv("ERP_SECURITY_URL", _DEFAULT_URLS.security_question),
            "otp_url": os.getenv("ERP_OTP_URL", _DEFAULT_URLS.otp),
            "welcome_page_url": os.getenv("ERP_WELCOMEPAGE_URL", _DEFAULT_URLS.welcome_page),
            "dashboard_url": os.getenv("ERP_DASHBOARD_URL", _DEFAULT_URLS.dashboard),
            "timeout_seconds": _env_float("ERP_TIMEOUT_SECONDS", 30.0),
        },
        "credentials": {
            "roll_number": os.getenv("ERP_ROLL_NUMBER", ""),
            "password": os.getenv("ERP_PASSWORD", ""),
            "security_questions": _parse_security_questions_env(os.getenv("ERP_SECURITY_QUESTIONS", "")),
        },
        "gmail": {
            "access_token": os.getenv("GMAIL_ACCESS_TOKEN", ""),
            "email": os.getenv("GMAIL_EMAIL", ""),
            "otp_query": os.getenv("GMAIL_OTP_QUERY", DEFAULT_OTP_QUERY),
            "max_results": int(_env_float("GMAIL_MAX_RESULTS", DEFAULT_MAX_RESULTS)),
        },
        "polling": {
            "max_attempts": int(_env_float("OTP_POLL_ATTEMPTS", 10)),
            "interval_seconds": _env_float("OTP_POLL_INTERVAL_SECONDS", 5.0),
        },
        "login": {
            "max_otp_attempts": int(_env_float("OTP_MAX_SUBMISSIONS", 10)),
            "otp_retry_backoff_seconds": _env_float("OTP_RETRY_BACKOFF_SECONDS", 5.0),
            "session_ttl_seconds": int(_env_float("ERP_SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS)),
        },
        "state": {
            "db_path": os.getenv("STATE_DB_PATH", "data/state.db"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", DEFAULT_LOG_FILE),
        },
    }


class PortalConfig(BaseModel):
    homepage_url: str = _DEFAULT_URLS.homepage
    login_url: str = _DEFAULT_URLS.login
    security_question_url: str = _DEFAULT_URLS.security_question
    otp_url: str = _DEFAULT_URLS.otp
    welcome_page_url: str = _DEFAULT_URLS.welcome_page
    dashboard_url: str = _DEFAULT_URLS.dashboard
    timeout_seconds: float = 30.0

    @field_validator(
        "homepage_url", "login_url", "security_question_url", "otp_url", "welcome_page_url", "dashboard_url"
    )
    @classmethod
    def _require_full_url(cls, value: str) -> str:
        parsed = urlparse((value or "").strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"portal URLs must be full http(s) URLs, got {value!r}")
        return value.strip()

    def urls(self) -> PortalUrls:
        return PortalUrls(
            homepage=self.homepage_url,
            login=self.login_url,
            security_question=self.security_question_url,
            otp=self.otp_url,
            welcome_page=self.welcome_page_url,
            dashboard=self.dashboard_url,
        )


class CredentialsConfig(BaseModel):
    roll_number: str = ""
    password: str = Field(default="", repr=False)
    security_questions: List[SecurityQuestion] = Field(default_factory=list)

    def is_configured(self) -> bool:
        return bool(self.roll_number and self.password)

    def to_credentials(self) -> Credentials:
        return Credentials(
            roll_number=self.roll_number,
            password=self.password,
            security_questions=list(self.security_questions),
        )


class GmailConfig(BaseModel):
    # Token comes from an external OAuth flow; it is never refreshed here.
    access_token: str = Field(default="", repr=False)
    email: str = ""
    otp_query: str = DEFAULT_OTP_QUERY
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1)


class PollingConfig(BaseModel):
    max_attempts: int = Field(default=10, ge=1)
    interval_seconds: float = Field(default=5.0, ge=0)


class LoginConfig(BaseModel):
    max_otp_attempts: int = Field(default=10, ge=1)
    otp_retry_backoff_seconds: float = Field(default=5.0, ge=0)
    session_ttl_seconds: int = Field(default=DEFAULT_SESSION_TTL_SECONDS, ge=1)


class StateConfig(BaseModel):
    db_path: str = "data/state.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = DEFAULT_LOG_FILE


class AppConfig(BaseModel):
    portal: PortalConfig = PortalConfig()
    credentials: CredentialsConfig = CredentialsConfig()
    gmail: GmailConfig = GmailConfig()
    polling: PollingConfig = PollingConfig()
    login: LoginConfig = LoginConfig()
    state: StateConfig = StateConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="before")
    @classmethod
    def _accept_question_mapping(cls, data: Any) -> Any:
        # YAML users often write security questions as a plain `question: answer` mapping.
        if isinstance(data, dict):
            creds = data.get("credentials")
            if isinstance(creds, dict) and isinstance(creds.get("security_questions"), dict):
                creds = dict(creds)
                creds["security_questions"] = [
                    {"question": str(q), "answer": str(a)} for q, a in creds["security_questions"].items()
                ]
                data = {**data, "credentials": creds}
        return data

    def configured_credentials(self) -> Optional[Credentials]:
        return self.credentials.to_credentials() if self.credentials.is_configured() else None


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
