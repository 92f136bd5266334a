from __future__ import annotations

import base64

import pytest

from erp_autologin.portal.extract import (
    _strip_html_to_text,
    extract_otp,
    extract_otp_from_message,
    extract_security_question,
    extract_session_token,
    extract_sso_token,
    message_body_text,
)


def _b64url(text: str) -> str:
    # Gmail strips padding from base64url payloads
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


TOKEN = "9F2C1A7B3D4E5F60718293A4B5C6D7E8"


@pytest.mark.parametrize(
    "page",
    [
        f'<input type="hidden" id="sessionToken" name="x" value="{TOKEN}">',
        f"<input type='hidden' name='sessionToken' value='{TOKEN}'/>",
        f'<input value="{TOKEN}" type="hidden" name="sessionToken">',
        f'<INPUT TYPE="hidden" data-role="sessionToken" VALUE="{TOKEN}">',
        f'<script>var sessionToken = "{TOKEN}";</script>',
    ],
)
def test_extract_session_token_supported_forms(page: str) -> None:
    html = f"<html><body><form>{page}</form></body></html>"
    assert extract_session_token(html) == TOKEN


def test_extract_session_token_prefers_attribute_over_hex_fallback() -> None:
    other_hex = "A" * 40
    html = f'<p>{other_hex}</p><input id="sessionToken" value="tok-123">'
    assert extract_session_token(html) == "tok-123"


def test_extract_session_token_falls_back_to_bare_hex() -> None:
    html = f"<div data-x='{TOKEN}'>hi</div>"
    assert extract_session_token(html) == TOKEN


def test_extract_session_token_returns_none_when_missing() -> None:
    assert extract_session_token("<html><body>maintenance</body></html>") is None


def test_extract_sso_token_from_location_and_url() -> None:
    assert extract_sso_token("https://erp.example/IIT_ERP3/?ssoToken=abc123&x=1") == "abc123"
    assert extract_sso_token("/IIT_ERP3/?ssoToken=zz9") == "zz9"
    assert extract_sso_token("https://erp.example/IIT_ERP3/welcome.jsp") is None
    assert extract_sso_token(None) is None


def test_extract_security_question() -> None:
    assert extract_security_question("  What is your pet's name?\n") == "What is your pet's name?"
    assert extract_security_question(" FALSE \n") is None


@pytest.mark.parametrize(
    "body,expected",
    [
        ("Your OTP is 482913", "482913"),
        ("OTP: 1234", "1234"),
        ("Your verification code 55667788 expires soon", "55667788"),
        ("Login code:903112", "903112"),
        ("Please use 771204 to continue", "771204"),
    ],
)
def test_extract_otp_patterns(body: str, expected: str) -> None:
    assert extract_otp(body) == expected


def test_extract_otp_is_idempotent() -> None:
    body = "Dear student, your OTP is 482913. Do not share it."
    first = extract_otp(body)
    assert first == "482913"
    assert all(extract_otp(body) == first for _ in range(5))


def test_extract_otp_returns_none_without_numeric_candidate() -> None:
    assert extract_otp("No code here, only 12 and 123.") is None
    assert extract_otp("") is None


def test_extract_otp_ignores_css_hex_like_numbers() -> None:
    body = "<html><head><style>p { color: #265179; }</style></head><body>Hello</body></html>"
    assert extract_otp(body) is None
    assert extract_otp("Primary color is #265179. No OTP here.") is None


def test_extract_otp_reads_through_html_tags() -> None:
    body = "<div>OTP:<b> 604217</b></div>"
    assert extract_otp(body) == "604217"


def test_strip_html_to_text_removes_style_and_tags_and_unescapes() -> None:
    html = """
    <html>
      <head>
        <style>
          body { color: #265179; }
        </style>
        <script>console.log('x')</script>
      </head>
      <body>
        Hello&nbsp;<b>World</b>
        <!-- comment -->
      </body>
    </html>
    """
    text = _strip_html_to_text(html)
    assert "265179" not in text
    assert "console.log" not in text
    assert "comment" not in text
    assert text == "Hello World"


def test_message_body_text_single_part() -> None:
    message = {"payload": {"mimeType": "text/plain", "body": {"data": _b64url("Your OTP is 482913")}}}
    assert message_body_text(message) == "Your OTP is 482913"
    assert extract_otp_from_message(message) == "482913"


def test_message_body_text_multipart_prefers_plain_parts() -> None:
    message = {
        "payload": {
            "mimeType": "multipart/alternative",
            "body": {"size": 0},
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64url("<p>OTP: 111111</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64url("OTP: 222222")}},
            ],
        }
    }
    assert extract_otp_from_message(message) == "222222"


def test_message_body_text_nested_html_only() -> None:
    message = {
        "payload": {
            "mimeType": "multipart/mixed",
            "parts": [
                {
                    "mimeType": "multipart/related",
                    "parts": [{"mimeType": "text/html", "body": {"data": _b64url("<b>Your OTP is 390211</b>")}}],
                },
                {"mimeType": "application/pdf", "body": {"attachmentId": "x"}},
            ],
        }
    }
    assert extract_otp_from_message(message) == "390211"


def test_extract_otp_from_message_tolerates_garbage() -> None:
    assert extract_otp_from_message({"payload": {"body": {"data": "@@@not-base64@@@"}}}) is None
    assert extract_otp_from_message({}) is None
