from __future__ import annotations

import asyncio
import base64
from typing import Any, Dict, List, Optional

import pytest

from erp_autologin.cancellation import CancelToken
from erp_autologin.errors import LoginCancelled, NetworkError, OtpTimeout
from erp_autologin.models import PollingStatus
from erp_autologin.portal.mfa import MailboxOtpPoller


def _message(text: str) -> Dict[str, Any]:
    data = base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")
    return {"payload": {"mimeType": "text/plain", "body": {"data": data}}}


class FakeMailbox:
    """
    Scripted mailbox: `search_results[i]` is returned on the i-th search (last entry repeats),
    and an Exception instance in the script is raised instead.
    """

    def __init__(self, search_results: List[Any], messages: Optional[Dict[str, Any]] = None) -> None:
        self.search_results = search_results
        self.messages = messages or {}
        self.search_calls: List[tuple[str, int]] = []
        self.fetch_calls: List[str] = []

    async def search(self, query: str, max_results: int) -> List[Dict[str, Any]]:
        idx = min(len(self.search_calls), len(self.search_results) - 1)
        self.search_calls.append((query, max_results))
        result = self.search_results[idx]
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_full(self, message_id: str) -> Dict[str, Any]:
        self.fetch_calls.append(message_id)
        return self.messages[message_id]


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _poller(mailbox: FakeMailbox, sleep: RecordingSleep) -> MailboxOtpPoller:
    return MailboxOtpPoller(mailbox, query="from:erp@example.edu", sleep=sleep, clock=lambda: 0.0)


def test_returns_otp_from_newest_message_on_first_attempt() -> None:
    mailbox = FakeMailbox(
        [[{"id": "new"}, {"id": "old"}]],
        {"new": _message("Your OTP is 482913"), "old": _message("Your OTP is 111111")},
    )
    sleep = RecordingSleep()
    events: List[PollingStatus] = []

    otp = asyncio.run(_poller(mailbox, sleep).await_otp(max_attempts=3, interval_seconds=5, on_progress=events.append))

    assert otp == "482913"
    assert mailbox.search_calls == [("from:erp@example.edu", 5)]
    assert mailbox.fetch_calls == ["new"]
    assert sleep.calls == []
    assert [e.status for e in events] == ["searching", "extracting", "success"]
    assert all(e.max_attempts == 3 and e.attempt == 1 for e in events)
    assert events[0].timer == "0:00"


def test_gives_up_after_exactly_max_attempts_without_match() -> None:
    mailbox = FakeMailbox([[]])
    sleep = RecordingSleep()
    events: List[PollingStatus] = []

    with pytest.raises(OtpTimeout, match="4 attempts"):
        asyncio.run(_poller(mailbox, sleep).await_otp(max_attempts=4, interval_seconds=2.5, on_progress=events.append))

    assert len(mailbox.search_calls) == 4
    # total wait is (max_attempts - 1) * interval
    assert sleep.calls == [2.5, 2.5, 2.5]
    assert [e.status for e in events].count("waiting") == 4


def test_waits_when_latest_email_has_no_otp_yet() -> None:
    mailbox = FakeMailbox(
        [[{"id": "a"}], [{"id": "b"}, {"id": "a"}]],
        {"a": _message("Welcome to the ERP mailing list"), "b": _message("OTP: 904417")},
    )
    sleep = RecordingSleep()
    events: List[PollingStatus] = []

    otp = asyncio.run(_poller(mailbox, sleep).await_otp(max_attempts=5, interval_seconds=1, on_progress=events.append))

    assert otp == "904417"
    assert mailbox.fetch_calls == ["a", "b"]
    assert sleep.calls == [1]
    assert [e.status for e in events] == ["searching", "extracting", "waiting", "searching", "extracting", "success"]


def test_transport_error_is_reported_and_retried() -> None:
    mailbox = FakeMailbox(
        [NetworkError("Gmail API error: 503"), [{"id": "m"}]],
        {"m": _message("Your OTP is 602118")},
    )
    sleep = RecordingSleep()
    events: List[PollingStatus] = []

    otp = asyncio.run(_poller(mailbox, sleep).await_otp(max_attempts=3, interval_seconds=1, on_progress=events.append))

    assert otp == "602118"
    errors = [e for e in events if e.status == "error"]
    assert len(errors) == 1
    assert errors[0].error == "Gmail API error: 503"
    assert errors[0].attempt == 1
    assert sleep.calls == [1]


def test_transport_error_on_final_attempt_is_raised() -> None:
    mailbox = FakeMailbox([[], NetworkError("Gmail API error: 401")])
    sleep = RecordingSleep()

    with pytest.raises(NetworkError, match="401"):
        asyncio.run(_poller(mailbox, sleep).await_otp(max_attempts=2, interval_seconds=1))

    assert len(mailbox.search_calls) == 2
    assert sleep.calls == [1]


def test_cancel_token_stops_polling_between_attempts() -> None:
    cancel = CancelToken()
    mailbox = FakeMailbox([[]])

    async def cancelling_sleep(_seconds: float) -> None:
        cancel.cancel()

    poller = MailboxOtpPoller(mailbox, sleep=cancelling_sleep)
    with pytest.raises(LoginCancelled):
        asyncio.run(poller.await_otp(max_attempts=10, interval_seconds=1, cancel=cancel))

    assert len(mailbox.search_calls) == 1


def test_rejects_non_positive_attempts() -> None:
    with pytest.raises(ValueError):
        asyncio.run(_poller(FakeMailbox([[]]), RecordingSleep()).await_otp(max_attempts=0))


def test_excluded_code_is_treated_as_no_otp_yet() -> None:
    mailbox = FakeMailbox(
        [[{"id": "old"}], [{"id": "new"}, {"id": "old"}]],
        {"old": _message("Your OTP is 482913"), "new": _message("Your OTP is 604217")},
    )
    sleep = RecordingSleep()
    events: List[PollingStatus] = []

    otp = asyncio.run(
        _poller(mailbox, sleep).await_otp(
            max_attempts=3, interval_seconds=1, on_progress=events.append, exclude_codes={"482913"}
        )
    )

    assert otp == "604217"
    assert [e.status for e in events] == ["searching", "extracting", "waiting", "searching", "extracting", "success"]
    assert sleep.calls == [1]
