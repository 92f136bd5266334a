from __future__ import annotations

import asyncio
import logging
import time
from typing import AbstractSet, Awaitable, Callable, Optional

from ..cancellation import CancelToken
from ..errors import LoginCancelled, OtpTimeout
from ..mailbox import Mailbox
from ..models import PollingStatus, PollStatus
from .extract import extract_otp_from_message


logger = logging.getLogger(__name__)

DEFAULT_OTP_QUERY = "from:erpkgp@adm.iitkgp.ac.in"
DEFAULT_MAX_RESULTS = 5

PollingCallback = Callable[[PollingStatus], None]


def _format_timer(elapsed_seconds: float) -> str:
    total = int(max(0.0, elapsed_seconds))
    return f"{total // 60}:{total % 60:02d}"


def _mask_code(code: str) -> str:
    return f"{code[:2]}****{code[-2:]}" if len(code) >= 4 else "***"


class MailboxOtpPoller:
    """
    Poll the mailbox for the portal's OTP email.

    Each attempt searches with a fixed query and inspects only the newest match; older matches are
    not scanned. Attempts are spaced `interval_seconds` apart, so an attempt budget that never finds
    a code sleeps exactly `max_attempts - 1` times before giving up with `OtpTimeout`.

    A code listed in `exclude_codes` (one the portal already rejected) counts as "no OTP yet", so a
    retry waits for a newer email instead of resubmitting it.
    """

    def __init__(
        self,
        mailbox: Mailbox,
        *,
        query: str = DEFAULT_OTP_QUERY,
        max_results: int = DEFAULT_MAX_RESULTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._mailbox = mailbox
        self.query = query
        self.max_results = max_results
        self._sleep = sleep
        self._clock = clock

    async def await_otp(
        self,
        max_attempts: int = 10,
        interval_seconds: float = 5.0,
        on_progress: Optional[PollingCallback] = None,
        cancel: Optional[CancelToken] = None,
        exclude_codes: AbstractSet[str] = frozenset(),
    ) -> str:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        started = self._clock()

        def report(attempt: int, status: PollStatus, message: str, error: Optional[str] = None) -> None:
            if on_progress is None:
                return
            on_progress(
                PollingStatus(
                    message=message,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    timer=_format_timer(self._clock() - started),
                    status=status,
                    error=error,
                )
            )

        for attempt in range(1, max_attempts + 1):
            if cancel is not None:
                cancel.raise_if_cancelled()
            logger.debug("Polling for OTP - attempt %d/%d", attempt, max_attempts)

            try:
                report(attempt, "searching", "Retrieving OTP from Gmail...")
                code = await self._try_fetch_code_once(attempt, report)
            except LoginCancelled:
                raise
            except Exception as e:
                logger.warning("OTP poll attempt %d/%d failed: %s", attempt, max_attempts, e)
                report(attempt, "error", "Error occurred while polling", error=str(e))
                if attempt >= max_attempts:
                    raise
                await self._pause(interval_seconds, cancel)
                continue

            if code and code in exclude_codes:
                logger.info("Newest email still carries a rejected OTP (code=%s); waiting for a new one", _mask_code(code))
                code = None

            if code:
                logger.info("Fetched OTP from mailbox (attempt=%d code=%s)", attempt, _mask_code(code))
                report(attempt, "success", "OTP retrieved successfully!")
                return code

            report(attempt, "waiting", f"No OTP yet, retrying in {interval_seconds:g}s...")
            if attempt < max_attempts:
                await self._pause(interval_seconds, cancel)

        raise OtpTimeout(f"OTP not found after {max_attempts} attempts")

    async def _try_fetch_code_once(
        self,
        attempt: int,
        report: Callable[..., None],
    ) -> Optional[str]:
        messages = await self._mailbox.search(self.query, self.max_results)
        logger.debug("Found %d message(s) matching %r", len(messages), self.query)
        if not messages:
            return None

        report(attempt, "extracting", "Found email, extracting OTP...")
        # Newest only
        latest_id = str(messages[0].get("id") or "")
        if not latest_id:
            return None
        message = await self._mailbox.fetch_full(latest_id)
        return extract_otp_from_message(message)

    async def _pause(self, seconds: float, cancel: Optional[CancelToken]) -> None:
        await self._sleep(seconds)
        if cancel is not None:
            cancel.raise_if_cancelled()
