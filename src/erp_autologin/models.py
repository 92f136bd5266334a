from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def security_question_id(question: str) -> str:
    return _NON_ALNUM_RE.sub("", (question or "").lower())[:20]


class SecurityQuestion(BaseModel):
    question: str
    answer: str = Field(repr=False)
    id: str = ""

    @model_validator(mode="after")
    def _default_id(self) -> "SecurityQuestion":
        if not self.id:
            self.id = security_question_id(self.question)
        return self


class Credentials(BaseModel):
    roll_number: str
    password: str = Field(repr=False)
    security_questions: List[SecurityQuestion] = Field(default_factory=list)


class MailboxAccount(BaseModel):
    token: str = Field(repr=False)
    email: str = ""


ProgressStep = Literal["init", "security", "otp", "polling", "credentials", "completed", "error"]
PollStatus = Literal["searching", "extracting", "success", "waiting", "error"]


class PollingStatus(BaseModel):
    message: str
    attempt: int
    max_attempts: int
    timer: str
    status: PollStatus
    error: Optional[str] = None


class LoginProgress(BaseModel):
    step: ProgressStep
    payload: Any = None


class LoginResult(BaseModel):
    success: bool
    session_token: str = ""
    sso_token: Optional[str] = Field(default=None, repr=False)
    welcome_page: bool = False
    message: Optional[str] = None
    cookies: Dict[str, str] = Field(default_factory=dict, repr=False)


class ERPSession(BaseModel):
    session_token: str = Field(repr=False)
    sso_token: Optional[str] = Field(default=None, repr=False)
    cookies: Dict[str, str] = Field(default_factory=dict, repr=False)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) > self.expires_at

    def seconds_remaining(self, now: Optional[datetime] = None) -> float:
        remaining = (self.expires_at - (now or datetime.now(timezone.utc))).total_seconds()
        return max(0.0, remaining)
