from __future__ import annotations

from .errors import LoginCancelled


class CancelToken:
    """
    Cooperative cancellation flag for one login run.

    The caller flips it with `cancel()`; the orchestrator and the mailbox poller check it between
    network calls and after every sleep. In-flight requests are not aborted, their results are dropped.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise LoginCancelled("Login cancelled")
