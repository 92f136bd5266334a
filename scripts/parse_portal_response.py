#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _read_text(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise SystemExit(f"File not found: {p}")
    return p.read_text(encoding="utf-8", errors="replace")


def _emit(payload: dict, out: str) -> None:
    out_json = json.dumps(payload, indent=2, sort_keys=False)
    if out:
        Path(out).write_text(out_json, encoding="utf-8")
    else:
        print(out_json)


def main(argv: list[str] | None = None) -> int:
    _ensure_src_on_path()

    from erp_autologin.config import load_config
    from erp_autologin.errors import ERPLoginError
    from erp_autologin.portal.client import ERPPortalClient, PortalResponse
    from erp_autologin.portal.extract import extract_otp, extract_otp_from_message, extract_session_token
    from erp_autologin.portal.questions import build_question_map, find_security_answer

    p = argparse.ArgumentParser(
        prog="parse_portal_response",
        description=(
            "Run the ERP response parsers over saved pages/emails and print JSON.\n"
            "This is intended for debugging parsing regressions offline (no network, no secrets)."
        ),
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    home = sub.add_parser("homepage", help="Extract the session token from a saved homepage HTML file")
    home.add_argument("--file", required=True)
    home.add_argument("--out", default="", help="Optional output JSON path (otherwise prints to stdout)")

    login = sub.add_parser("login", help="Classify a saved login-submit response body")
    login.add_argument("--file", required=True)
    login.add_argument("--url", default="", help="Final URL the response was served from")
    login.add_argument("--status", type=int, default=200)
    login.add_argument("--out", default="")

    email = sub.add_parser("email", help="Extract the OTP from a saved Gmail message (.json) or raw body")
    email.add_argument("--file", required=True)
    email.add_argument("--out", default="")

    question = sub.add_parser("question", help="Match a security question against the configured answers")
    question.add_argument("--text", required=True, help="Question text as the portal shows it")
    question.add_argument("--config", default="config.yaml")
    question.add_argument("--out", default="")

    args = p.parse_args(argv)

    if args.cmd == "homepage":
        token = extract_session_token(_read_text(args.file))
        _emit({"session_token_found": token is not None, "session_token_length": len(token or "")}, args.out)
        return 0

    if args.cmd == "login":
        # Construct a client only to reuse its classifier. No request is sent.
        client = ERPPortalClient()
        resp = PortalResponse(status=args.status, url=args.url, body=_read_text(args.file))
        try:
            result = client.classify_login_response(resp)
            payload = {"outcome": "success", "has_sso_token": bool(result.sso_token), "welcome_page": result.welcome_page}
        except ERPLoginError as e:
            payload = {"outcome": e.kind, "category": e.category, "message": str(e)}
        _emit(payload, args.out)
        return 0

    if args.cmd == "email":
        text = _read_text(args.file)
        if args.file.endswith(".json"):
            otp = extract_otp_from_message(json.loads(text))
        else:
            otp = extract_otp(text)
        _emit({"otp": otp}, args.out)
        return 0

    if args.cmd == "question":
        cfg = load_config(args.config)
        qmap = build_question_map(cfg.credentials.security_questions)
        answer = find_security_answer(args.text, qmap)
        _emit({"question": args.text, "matched": answer is not None, "known_questions": list(qmap)}, args.out)
        return 0

    raise AssertionError("Unhandled command")


if __name__ == "__main__":
    raise SystemExit(main())
