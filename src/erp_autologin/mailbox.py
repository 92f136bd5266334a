from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import aiohttp

from .errors import NetworkError


logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
USERINFO_ENDPOINTS = (
    "https://www.googleapis.com/oauth2/v2/userinfo",
    "https://www.googleapis.com/oauth2/v1/userinfo",
)


class Mailbox(Protocol):
    async def search(self, query: str, max_results: int) -> List[Dict[str, Any]]:
        """Return message stubs (`{"id": ...}`), newest first."""
        ...

    async def fetch_full(self, message_id: str) -> Dict[str, Any]:
        """Return the full message resource (`{"payload": {...}}`)."""
        ...


class GmailApiMailbox:
    """
    Gmail REST API adapter authenticated with a bearer token obtained elsewhere.
    """

    def __init__(
        self,
        *,
        token: str,
        session: Optional[aiohttp.ClientSession] = None,
        api_base: str = GMAIL_API_BASE,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not token:
            raise ValueError("Gmail access token is required (connect the mailbox first)")
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "GmailApiMailbox":
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout_seconds))
        return self._session

    async def _get_json(self, op: str, url: str, *, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        session = self._get_session()
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            async with session.get(url, params=params, headers=headers) as resp:
                if resp.status < 200 or resp.status >= 300:
                    detail = await resp.text(errors="replace")
                    raise NetworkError(f"Gmail API error during {op}: {resp.status} - {detail[:300]}", status=resp.status)
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    raise NetworkError(f"Gmail API returned an unreadable response during {op}", status=resp.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Gmail API request failed during {op}: {e}") from e

        if not isinstance(data, dict):
            raise NetworkError(f"Gmail API returned an unreadable response during {op}")
        return data

    async def search(self, query: str, max_results: int) -> List[Dict[str, Any]]:
        data = await self._get_json(
            "search",
            f"{self._api_base}/messages",
            params={"q": query, "maxResults": str(max_results)},
        )
        messages = data.get("messages") or []
        logger.debug("Gmail search q=%r returned %d message(s)", query, len(messages))
        return list(messages)

    async def fetch_full(self, message_id: str) -> Dict[str, Any]:
        return await self._get_json("fetch", f"{self._api_base}/messages/{message_id}", params={"format": "full"})

    async def fetch_user_email(self) -> str:
        """
        Resolve the account address behind the token; tries the v2 then v1 userinfo endpoints.
        """
        last_exc: Optional[NetworkError] = None
        for endpoint in USERINFO_ENDPOINTS:
            try:
                info = await self._get_json("userinfo", endpoint)
            except NetworkError as e:
                logger.debug("Userinfo endpoint failed: %s", endpoint, exc_info=True)
                last_exc = e
                continue
            email = str(info.get("email") or "")
            if email:
                return email
        raise NetworkError("Could not resolve mailbox account email from access token") from last_exc
