from __future__ import annotations

import asyncio
import logging
from typing import AbstractSet, Any, Awaitable, Callable, Dict, Optional, Protocol, Set

from ..cancellation import CancelToken
from ..credentials import CredentialStore
from ..errors import ERPLoginError, InvalidOtp, LoginFailed, NoCredentials
from ..models import Credentials, LoginProgress, LoginResult, PollingStatus
from .questions import build_question_map, resolve_security_answer


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Any], None]

DEFAULT_MAX_OTP_ATTEMPTS = 10
DEFAULT_OTP_RETRY_BACKOFF_SECONDS = 5.0
DEFAULT_POLL_ATTEMPTS = 10
DEFAULT_POLL_INTERVAL_SECONDS = 5.0


class PortalTransport(Protocol):
    async def fetch_session_token(self) -> str: ...

    async def fetch_security_question(self, roll_number: str) -> str: ...

    async def request_otp(self, credentials: Credentials, session_token: str, answer: str) -> Dict[str, Any]: ...

    async def submit_login(self, credentials: Credentials, session_token: str, otp: str, answer: str) -> LoginResult: ...

    def cookies(self) -> Dict[str, str]: ...


class OtpSource(Protocol):
    async def await_otp(
        self,
        max_attempts: int = ...,
        interval_seconds: float = ...,
        on_progress: Optional[Callable[[PollingStatus], None]] = ...,
        cancel: Optional[CancelToken] = ...,
        exclude_codes: AbstractSet[str] = ...,
    ) -> str: ...


class ERPLoginFlow:
    """
    One ERP login, start to finish:

        token -> security question -> matched answer -> OTP request -> mailbox poll -> submit
                                                                         ^                 |
                                                                         +--- InvalidOtp --+

    Only `InvalidOtp` is retried (fresh poll after a fixed backoff, bounded by `max_otp_attempts`
    submissions); a rejected code is never submitted twice. Every other failure ends the run.
    Nothing is persisted here.
    """

    def __init__(
        self,
        *,
        portal: PortalTransport,
        otp_source: OtpSource,
        credential_store: Optional[CredentialStore] = None,
        max_otp_attempts: int = DEFAULT_MAX_OTP_ATTEMPTS,
        otp_retry_backoff_seconds: float = DEFAULT_OTP_RETRY_BACKOFF_SECONDS,
        poll_attempts: int = DEFAULT_POLL_ATTEMPTS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._portal = portal
        self._otp_source = otp_source
        self._credential_store = credential_store
        self.max_otp_attempts = max_otp_attempts
        self.otp_retry_backoff_seconds = otp_retry_backoff_seconds
        self.poll_attempts = poll_attempts
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep

    async def run(
        self,
        credentials: Optional[Credentials] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> LoginResult:
        def emit(step: str, payload: Any) -> None:
            event = LoginProgress(step=step, payload=payload)
            if isinstance(payload, str):
                logger.info("[%s] %s", event.step, payload)
            if on_progress is not None:
                on_progress(event.step, event.payload)

        def checkpoint() -> None:
            if cancel is not None:
                cancel.raise_if_cancelled()

        try:
            creds = await self._resolve_credentials(credentials)

            checkpoint()
            emit("init", "Getting session token")
            session_token = await self._portal.fetch_session_token()

            checkpoint()
            emit("security", "Getting security question")
            question = await self._portal.fetch_security_question(creds.roll_number)
            answer = resolve_security_answer(question, build_question_map(creds.security_questions))

            checkpoint()
            emit("otp", "Requesting OTP")
            await self._portal.request_otp(creds, session_token, answer)

            emit("otp", "Retrieving OTP from Gmail")
            result = await self._submit_with_otp_retry(creds, session_token, answer, emit, checkpoint, cancel)
        except ERPLoginError as e:
            logger.error("ERP login failed (%s): %s", e.kind, e)
            emit("error", str(e))
            raise

        final = result.model_copy(update={"session_token": session_token, "cookies": self._portal.cookies()})
        emit("completed", "Login completed successfully")
        return final

    async def _resolve_credentials(self, credentials: Optional[Credentials]) -> Credentials:
        if credentials is not None:
            return credentials
        if self._credential_store is not None:
            stored = await self._credential_store.get_user_data()
            if stored is not None:
                return stored
        raise NoCredentials("No credentials found. Please complete setup first.")

    async def _submit_with_otp_retry(
        self,
        creds: Credentials,
        session_token: str,
        answer: str,
        emit: Callable[[str, Any], None],
        checkpoint: Callable[[], None],
        cancel: Optional[CancelToken],
    ) -> LoginResult:
        def forward(status: PollingStatus) -> None:
            emit("polling", status)

        rejected: Set[str] = set()
        for attempt in range(1, self.max_otp_attempts + 1):
            otp = await self._otp_source.await_otp(
                max_attempts=self.poll_attempts,
                interval_seconds=self.poll_interval_seconds,
                on_progress=forward,
                cancel=cancel,
                exclude_codes=frozenset(rejected),
            )

            checkpoint()
            emit("credentials", f"Submitting login with OTP (attempt {attempt})")
            try:
                return await self._portal.submit_login(creds, session_token, otp, answer)
            except InvalidOtp:
                rejected.add(otp)
                if attempt >= self.max_otp_attempts:
                    break
                emit("otp", f"Invalid OTP, waiting for new one ({attempt}/{self.max_otp_attempts})...")
                await self._sleep(self.otp_retry_backoff_seconds)
                checkpoint()

        raise LoginFailed(f"Login failed after {self.max_otp_attempts} OTP attempts")
