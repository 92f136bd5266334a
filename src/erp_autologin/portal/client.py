from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import aiohttp

from ..errors import (
    InvalidOtp,
    InvalidPassword,
    InvalidRollNumber,
    LoginFailed,
    NetworkError,
    OtpRequestFailed,
    SecurityAnswerMismatch,
    TokenNotFound,
)
from ..models import Credentials, LoginResult
from .extract import extract_security_question, extract_session_token, extract_sso_token
from .markers import PortalMarkers, PortalUrls


logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/91.0.4472.124 Safari/537.36"
)
FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "User-Agent": USER_AGENT,
}


@dataclass(frozen=True)
class PortalResponse:
    """
    Snapshot of one HTTP exchange, read fully before the connection is released.
    """

    status: int
    url: str
    body: str
    location: str = ""
    # (status, Location header) for every redirect hop that led here
    redirects: tuple[tuple[int, str], ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _mask(value: Optional[str]) -> str:
    if not value:
        return "-"
    return f"{value[:4]}****" if len(value) > 6 else "****"


class ERPPortalClient:
    """
    HTTP client for the ERP SSO endpoints.

    Every method turns the portal's ad hoc response (HTML, bare text, JSON `msg`, redirect) into
    either a plain value or one of the `erp_autologin.errors` exceptions. Cookies persist on the
    underlying `aiohttp.ClientSession` across calls, which is what ties the four requests together.
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        urls: Optional[PortalUrls] = None,
        markers: Optional[PortalMarkers] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.urls = urls or PortalUrls()
        self.markers = markers or PortalMarkers()
        self._timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ERPPortalClient":
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
                cookie_jar=aiohttp.CookieJar(),
            )
        return self._session

    async def _send(
        self,
        op: str,
        method: str,
        url: str,
        *,
        data: Optional[Mapping[str, str]] = None,
        allow_redirects: bool = True,
    ) -> PortalResponse:
        session = self._get_session()
        headers = dict(FORM_HEADERS) if data is not None else {"User-Agent": USER_AGENT}
        try:
            async with session.request(
                method,
                url,
                data=dict(data) if data is not None else None,
                headers=headers,
                allow_redirects=allow_redirects,
            ) as resp:
                body = await resp.text(errors="replace")
                redirects = tuple((h.status, h.headers.get("Location", "")) for h in resp.history)
                result = PortalResponse(
                    status=resp.status,
                    url=str(resp.url),
                    body=body,
                    location=resp.headers.get("Location", ""),
                    redirects=redirects,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Network connection failed during {op}: {e}") from e

        logger.debug(
            "%s %s -> status=%s final_url=%s redirects=%d body_len=%d",
            method,
            url,
            result.status,
            result.url,
            len(result.redirects),
            len(result.body),
        )
        return result

    def _login_form(self, credentials: Credentials, session_token: str, answer: str) -> Dict[str, str]:
        # Field names and the `typeee` literal are what the portal's own form posts.
        return {
            "user_id": credentials.roll_number,
            "password": credentials.password,
            "answer": answer,
            "typeee": self.markers.login_type,
            "sessionToken": session_token,
            "requestedUrl": self.urls.homepage,
        }

    async def fetch_session_token(self) -> str:
        resp = await self._send("homepage", "GET", self.urls.homepage)
        if not resp.ok:
            raise NetworkError(f"Failed to get homepage - Status: {resp.status}", status=resp.status)

        token = extract_session_token(resp.body)
        if not token:
            raise TokenNotFound("Session token not found in homepage")
        logger.info("Acquired session token (%s)", _mask(token))
        return token

    async def fetch_security_question(self, roll_number: str) -> str:
        resp = await self._send("security question", "POST", self.urls.security_question, data={"user_id": roll_number})
        if not resp.ok:
            raise NetworkError(f"Failed to get security question - Status: {resp.status}", status=resp.status)

        question = extract_security_question(resp.body)
        if question is None:
            raise InvalidRollNumber("Invalid Roll Number")
        logger.info("Portal asked security question %r", question)
        return question

    async def request_otp(self, credentials: Credentials, session_token: str, answer: str) -> Dict[str, Any]:
        resp = await self._send("OTP request", "POST", self.urls.otp, data=self._login_form(credentials, session_token, answer))
        if not resp.ok:
            raise NetworkError(f"Failed to request OTP - Status: {resp.status}", status=resp.status)

        try:
            result = json.loads(resp.body)
        except ValueError as e:
            raise OtpRequestFailed(f"Failed to request OTP: unexpected response {resp.body[:200]!r}") from e
        if not isinstance(result, dict):
            raise OtpRequestFailed(f"Failed to request OTP: unexpected response {resp.body[:200]!r}")

        msg = str(result.get("msg") or "")
        m = self.markers
        if msg == m.otp_answer_mismatch_msg:
            raise SecurityAnswerMismatch("Invalid Security Question Answer")
        if msg == m.otp_password_mismatch_msg:
            raise InvalidPassword("Invalid Password")
        if msg and all(word in msg for word in m.otp_sent_words):
            logger.info("Portal reports OTP sent (%s)", msg)
            return result
        if msg and "sent" not in msg:
            raise OtpRequestFailed(f"Failed to request OTP: {msg}")

        logger.info("OTP request returned msg=%r; assuming sent", msg)
        return result

    async def submit_login(self, credentials: Credentials, session_token: str, otp: str, answer: str) -> LoginResult:
        form = self._login_form(credentials, session_token, answer)
        form["email_otp"] = otp
        resp = await self._send("login", "POST", self.urls.login, data=form, allow_redirects=True)
        return self.classify_login_response(resp, session_token=session_token)

    def classify_login_response(self, resp: PortalResponse, *, session_token: str = "") -> LoginResult:
        m = self.markers

        # a) A redirect hop carrying the SSO token
        hops = list(resp.redirects) + [(resp.status, resp.location)]
        for status, location in hops:
            if status in (301, 302) and "ssoToken=" in (location or ""):
                sso = extract_sso_token(location)
                if sso:
                    logger.info("Login succeeded via redirect (sso=%s)", _mask(sso))
                    return LoginResult(success=True, session_token=session_token, sso_token=sso)

        # b) The final URL after redirects carrying the SSO token
        sso = extract_sso_token(resp.url) if "ssoToken=" in resp.url else None
        if sso:
            logger.info("Login succeeded via final URL (sso=%s)", _mask(sso))
            return LoginResult(success=True, session_token=session_token, sso_token=sso)

        body = resp.body or ""
        if m.login_otp_mismatch in body:
            raise InvalidOtp("Invalid OTP")
        if m.login_password_mismatch in body:
            raise InvalidPassword("Authentication failed - invalid credentials")
        if m.login_answer_mismatch in body:
            raise SecurityAnswerMismatch("Invalid security question answer")

        if not resp.ok:
            raise NetworkError(f"Login request failed - Status: {resp.status}", status=resp.status)

        # c) Landed on a post-login page without a redirect; no SSO token to deep-link with.
        if any(text in body for text in m.login_welcome_texts):
            logger.info("Login succeeded via welcome page (no SSO token)")
            return LoginResult(
                success=True,
                session_token=session_token,
                welcome_page=True,
                message="Login successful",
            )

        raise LoginFailed("Login failed - no success indicators found")

    async def check_session(self) -> bool:
        """
        Probe the dashboard with the current cookies. Any failure counts as "not logged in".
        """
        try:
            resp = await self._send("session check", "GET", self.urls.dashboard)
        except NetworkError:
            logger.debug("Session check failed", exc_info=True)
            return False
        m = self.markers
        return m.session_dead_text not in resp.body and m.session_alive_text in resp.body

    def portal_url(self, sso_token: Optional[str] = None) -> str:
        if not sso_token:
            return self.urls.homepage
        return f"{self.urls.homepage}?ssoToken={sso_token}"

    def cookies(self) -> Dict[str, str]:
        if self._session is None:
            return {}
        return {c.key: c.value for c in self._session.cookie_jar}
