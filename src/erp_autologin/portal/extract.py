from __future__ import annotations

import base64
import binascii
import html as _html
import logging
import re
from typing import Any, Iterable, Mapping, Optional, Sequence


logger = logging.getLogger(__name__)


# Ordered: quoted attribute forms first, script assignment after, bare hex last.
SESSION_TOKEN_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"""id=["']sessionToken["'][^>]*value=["']([^"']+)["']"""),
    re.compile(r"""name=["']sessionToken["'][^>]*value=["']([^"']+)["']"""),
    re.compile(r"""value=["']([^"']+)["'][^>]*(?:id|name)=["']sessionToken["']"""),
    re.compile(r"""sessionToken["'][^>]*value=["']([^"']+)["']"""),
    re.compile(r"""<input[^>]*sessionToken[^>]*value=["']([^"']+)["']""", re.I),
    re.compile(r"""sessionToken["']?\s*[:=]\s*["']([^"']+)["']""", re.I),
)
SESSION_TOKEN_FALLBACK = re.compile(r"[A-F0-9]{32,}")

SSO_TOKEN_RE = re.compile(r"ssoToken=([^&#\s]+)")

OTP_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"OTP[:\s]*(\d{4,8})\b", re.I),
    re.compile(r"verification\s+code[:\s]*(\d{4,8})\b", re.I),
    re.compile(r"code[:\s]*(\d{4,8})\b", re.I),
    re.compile(r"\bis[:\s]*(\d{6})\b", re.I),
    re.compile(r"OTP\s+is\s+(\d{6})\b", re.I),
)
OTP_FALLBACK = re.compile(r"\b(\d{6})\b")

INVALID_ROLL_NUMBER_BODY = "FALSE"


def extract_session_token(
    page_html: str,
    *,
    patterns: Sequence[re.Pattern[str]] = SESSION_TOKEN_PATTERNS,
    fallback: Optional[re.Pattern[str]] = SESSION_TOKEN_FALLBACK,
) -> Optional[str]:
    text = page_html or ""
    for r in patterns:
        m = r.search(text)
        if m and m.group(1):
            return m.group(1)
    if fallback is not None:
        m = fallback.search(text)
        if m:
            return m.group(0)
    return None


def extract_sso_token(url_or_location: Optional[str]) -> Optional[str]:
    if not url_or_location:
        return None
    m = SSO_TOKEN_RE.search(url_or_location)
    return m.group(1) if m else None


def extract_security_question(body: str) -> Optional[str]:
    """
    The security-question endpoint answers with the bare question text, or the literal `FALSE`
    when the roll number is unknown.
    """
    question = (body or "").strip()
    if question == INVALID_ROLL_NUMBER_BODY:
        return None
    return question


def is_valid_otp(candidate: str) -> bool:
    return 4 <= len(candidate) <= 8 and candidate.isdigit()


def extract_otp(
    text: str,
    *,
    patterns: Sequence[re.Pattern[str]] = OTP_PATTERNS,
    fallback: re.Pattern[str] = OTP_FALLBACK,
) -> Optional[str]:
    body = text or ""

    # 1) Labelled patterns on the raw body, then on a tag-free rendering of it.
    plain = _strip_html_to_text(body)
    for candidate_text in (body, plain):
        for r in patterns:
            for m in r.finditer(candidate_text):
                code = m.group(1)
                if is_valid_otp(code):
                    return code

    # 2) Bare 6-digit fallback, skipping CSS hex colours like "#265179".
    for m in fallback.finditer(plain):
        start = m.start(1)
        if start > 0 and plain[start - 1] == "#":
            continue
        code = m.group(1)
        if is_valid_otp(code):
            return code

    return None


def decode_base64url(data: str) -> str:
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError):
        logger.debug("Skipping undecodable message part (len=%d)", len(data))
        return ""
    return raw.decode("utf-8", errors="replace")


def _walk_parts(part: Mapping[str, Any]) -> Iterable[Mapping[str, Any]]:
    yield part
    for child in part.get("parts") or []:
        yield from _walk_parts(child)


def message_body_text(message: Mapping[str, Any]) -> str:
    """
    Decode the text of a Gmail API `format=full` message.

    Single-part messages carry the text in `payload.body.data`. Multipart messages are walked
    recursively and every `text/plain` part is concatenated; `text/html` parts are only used
    when no plain-text part exists.
    """
    payload = message.get("payload") or {}
    data = (payload.get("body") or {}).get("data")
    if data:
        return decode_base64url(data)

    plain: list[str] = []
    html_parts: list[str] = []
    for part in _walk_parts(payload):
        part_data = (part.get("body") or {}).get("data")
        if not part_data:
            continue
        mime = (part.get("mimeType") or "").lower()
        if mime == "text/plain":
            plain.append(decode_base64url(part_data))
        elif mime == "text/html":
            html_parts.append(decode_base64url(part_data))
    return "\n".join(plain or html_parts)


def extract_otp_from_message(message: Mapping[str, Any]) -> Optional[str]:
    return extract_otp(message_body_text(message))


def _strip_html_to_text(s: str) -> str:
    # Remove style/script blocks and comments
    s = re.sub(r"(?is)<style[^>]*>.*?</style>", " ", s)
    s = re.sub(r"(?is)<script[^>]*>.*?</script>", " ", s)
    s = re.sub(r"(?is)<!--.*?-->", " ", s)
    # Remove tags
    s = re.sub(r"(?is)<[^>]+>", " ", s)
    s = _html.unescape(s)
    s = re.sub(r"\s+", " ", s).strip()
    return s
