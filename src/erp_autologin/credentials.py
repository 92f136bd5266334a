from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from .models import Credentials, ERPSession, LoginResult, MailboxAccount
from .state import KeyValueStore


logger = logging.getLogger(__name__)

USER_DATA_KEY = "user_data"
MAILBOX_DATA_KEY = "gmail_data"
LAST_LOGIN_KEY = "last_login"
ERP_SESSION_KEY = "erp_session"

DEFAULT_SESSION_TTL_SECONDS = 10 * 60

MIN_ROLL_NUMBER_LENGTH = 8
MIN_PASSWORD_LENGTH = 6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """
    Credential, mailbox-token and portal-session records on top of a `KeyValueStore`.

    The login flow only reads credentials from here; saving the resulting session is up to the caller.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self._now = now

    @staticmethod
    def validate_user_data(roll_number: str, password: str) -> bool:
        if not roll_number or not password:
            return False
        return len(roll_number) >= MIN_ROLL_NUMBER_LENGTH and len(password) >= MIN_PASSWORD_LENGTH

    async def save_user_data(self, credentials: Credentials) -> bool:
        record = credentials.model_dump(mode="json")
        record["timestamp"] = self._now().isoformat()
        return await self._store.set(USER_DATA_KEY, record)

    async def get_user_data(self) -> Optional[Credentials]:
        raw = await self._store.get(USER_DATA_KEY)
        if not raw:
            return None
        try:
            return Credentials.model_validate(raw)
        except ValidationError:
            logger.warning("Stored credentials are unreadable; ignoring them.", exc_info=True)
            return None

    async def update_user_data(self, **updates: Any) -> bool:
        existing = await self.get_user_data()
        if existing is None:
            return False
        data = existing.model_dump()
        data.update(updates)
        return await self.save_user_data(Credentials.model_validate(data))

    async def clear_user_data(self) -> bool:
        return await self._store.remove(USER_DATA_KEY)

    async def save_mailbox_account(self, account: MailboxAccount) -> bool:
        return await self._store.set(MAILBOX_DATA_KEY, account.model_dump(mode="json"))

    async def get_mailbox_account(self) -> Optional[MailboxAccount]:
        raw = await self._store.get(MAILBOX_DATA_KEY)
        if not raw or not raw.get("token"):
            return None
        return MailboxAccount.model_validate(raw)

    async def clear_mailbox_account(self) -> bool:
        return await self._store.remove(MAILBOX_DATA_KEY)

    async def set_last_login(self, when: Optional[datetime] = None) -> bool:
        return await self._store.set(LAST_LOGIN_KEY, (when or self._now()).isoformat())

    async def get_last_login(self) -> Optional[datetime]:
        raw = await self._store.get(LAST_LOGIN_KEY)
        if not raw:
            return None
        return datetime.fromisoformat(raw)

    async def save_erp_session(self, result: LoginResult, *, expires_at: Optional[datetime] = None) -> ERPSession:
        now = self._now()
        session = ERPSession(
            session_token=result.session_token,
            sso_token=result.sso_token,
            cookies=dict(result.cookies),
            timestamp=now,
            expires_at=expires_at or (now + self.session_ttl),
        )
        await self._store.set(ERP_SESSION_KEY, session.model_dump(mode="json"))
        return session

    async def get_erp_session(self) -> Optional[ERPSession]:
        """
        Return the stored session, purging it first if it has expired.
        """
        raw = await self._store.get(ERP_SESSION_KEY)
        if not raw:
            return None
        try:
            session = ERPSession.model_validate(raw)
        except ValidationError:
            logger.warning("Stored ERP session is unreadable; discarding it.")
            await self.clear_erp_session()
            return None

        if session.is_expired(self._now()):
            logger.info("Stored ERP session expired at %s; discarding it.", session.expires_at.isoformat())
            await self.clear_erp_session()
            return None
        return session

    async def clear_erp_session(self) -> bool:
        return await self._store.remove(ERP_SESSION_KEY)

    async def is_erp_session_valid(self) -> bool:
        return await self.get_erp_session() is not None

    async def get_session_time_remaining(self) -> float:
        session = await self.get_erp_session()
        if session is None:
            return 0.0
        return session.seconds_remaining(self._now())

    @staticmethod
    def format_time_remaining(seconds: float) -> str:
        total = int(max(0.0, seconds))
        return f"{total // 60}:{total % 60:02d}"

    async def describe(self) -> Dict[str, Any]:
        session = await self.get_erp_session()
        last_login = await self.get_last_login()
        return {
            "has_credentials": (await self.get_user_data()) is not None,
            "mailbox_connected": (await self.get_mailbox_account()) is not None,
            "last_login": last_login.isoformat() if last_login else None,
            "session_active": session is not None,
        }
