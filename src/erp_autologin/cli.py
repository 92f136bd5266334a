from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Any, List, Optional

import aiohttp
from dotenv import load_dotenv

from .config import AppConfig, load_config
from .credentials import CredentialStore
from .errors import ERPLoginError
from .logging_config import configure_logging
from .mailbox import GmailApiMailbox
from .models import MailboxAccount, PollingStatus
from .portal.client import ERPPortalClient
from .portal.login import ERPLoginFlow
from .portal.mfa import MailboxOtpPoller
from .state import SqliteKeyValueStore


logger = logging.getLogger("erp_autologin")

# category -> (headline, what the user should do)
FAILURE_MESSAGES = {
    "credentials": ("ERP Login Failed", "Check your roll number and password. Ensure your account is active."),
    "security_question": (
        "Security Questions Issue",
        "Your security questions/answers may be incorrect. Update them and save credentials again.",
    ),
    "otp": ("OTP Verification Failed", "No usable OTP arrived. Check the mailbox connection and try again."),
    "network": ("Network Problem", "The ERP portal or the mail API could not be reached. Try again later."),
    "setup": ("Setup Incomplete", "Run `erp-autologin save-credentials` after setting ERP_* values in .env."),
    "cancelled": ("Login Cancelled", ""),
}


def describe_failure(error: ERPLoginError) -> str:
    headline, details = FAILURE_MESSAGES.get(error.category, ("An unexpected error occurred", ""))
    lines = [f"❌ {headline}: {error}"]
    if details:
        lines.append(f"   {details}")
    return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="erp-autologin")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )
    p.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml, optional)")

    sub = p.add_subparsers(dest="cmd", required=True)

    login = sub.add_parser("login", help="Log into the ERP portal (security question + emailed OTP)")
    login.add_argument("--no-save", action="store_true", help="Do not store the resulting session locally")

    sub.add_parser(
        "preflight",
        help="Validate configuration and external dependencies (mail API token, portal homepage token).",
    )
    sub.add_parser(
        "save-credentials",
        help="Validate the configured roll number/password/security questions and store them locally.",
    )
    sub.add_parser("show-session", help="Show the locally stored ERP session, if it has not expired")
    sub.add_parser("check-session", help="Ask the portal whether the stored session cookies are still logged in")
    sub.add_parser("clear-session", help="Forget the locally stored ERP session")

    return p


def _credential_store(cfg: AppConfig) -> CredentialStore:
    store = SqliteKeyValueStore(cfg.state.db_path)
    return CredentialStore(store, session_ttl_seconds=cfg.login.session_ttl_seconds)


async def _mailbox_token(cfg: AppConfig, cred_store: CredentialStore) -> str:
    if cfg.gmail.access_token:
        return cfg.gmail.access_token
    account = await cred_store.get_mailbox_account()
    if account is None:
        raise SystemExit("No Gmail access token. Set GMAIL_ACCESS_TOKEN in your .env (then run save-credentials).")
    return account.token


def _print_progress(step: str, payload: Any) -> None:
    if isinstance(payload, PollingStatus):
        print(f"  [polling {payload.attempt}/{payload.max_attempts} {payload.timer}] {payload.status}: {payload.message}")
        return
    print(f"[{step}] {payload}")


async def _login(cfg: AppConfig, *, save: bool) -> int:
    cred_store = _credential_store(cfg)
    token = await _mailbox_token(cfg, cred_store)

    async with ERPPortalClient(urls=cfg.portal.urls(), timeout_seconds=cfg.portal.timeout_seconds) as portal:
        async with GmailApiMailbox(token=token, timeout_seconds=cfg.portal.timeout_seconds) as mailbox:
            poller = MailboxOtpPoller(mailbox, query=cfg.gmail.otp_query, max_results=cfg.gmail.max_results)
            flow = ERPLoginFlow(
                portal=portal,
                otp_source=poller,
                credential_store=cred_store,
                max_otp_attempts=cfg.login.max_otp_attempts,
                otp_retry_backoff_seconds=cfg.login.otp_retry_backoff_seconds,
                poll_attempts=cfg.polling.max_attempts,
                poll_interval_seconds=cfg.polling.interval_seconds,
            )
            try:
                result = await flow.run(cfg.configured_credentials(), on_progress=_print_progress)
            except ERPLoginError as e:
                print(describe_failure(e))
                return 1

        if save:
            session = await cred_store.save_erp_session(result)
            await cred_store.set_last_login()
            remaining = CredentialStore.format_time_remaining(session.seconds_remaining())
            logger.info("Saved ERP session (expires in %s)", remaining)

        print("✅ Login successful")
        if result.welcome_page:
            print("   Reached the welcome page without an SSO token; direct portal links are unavailable.")
        print(f"   Portal: {portal.portal_url(result.sso_token)}")
    return 0


async def _preflight(cfg: AppConfig) -> None:
    cred_store = _credential_store(cfg)
    token = await _mailbox_token(cfg, cred_store)

    async with GmailApiMailbox(token=token, timeout_seconds=cfg.portal.timeout_seconds) as mailbox:
        try:
            email = await mailbox.fetch_user_email()
        except ERPLoginError as e:
            raise RuntimeError("Gmail preflight failed. The access token is missing scopes or has expired.") from e
    logger.info("Gmail preflight OK (account=%r)", email)

    async with ERPPortalClient(urls=cfg.portal.urls(), timeout_seconds=cfg.portal.timeout_seconds) as portal:
        try:
            await portal.fetch_session_token()
        except ERPLoginError as e:
            raise RuntimeError(f"ERP preflight failed: could not read a session token from {cfg.portal.homepage_url}") from e
    logger.info("ERP preflight OK (homepage=%s)", cfg.portal.homepage_url)

    if cfg.configured_credentials() is None and await cred_store.get_user_data() is None:
        logger.warning("No ERP credentials configured or stored; `login` will fail until you add them.")


async def _save_credentials(cfg: AppConfig) -> int:
    creds = cfg.configured_credentials()
    if creds is None:
        raise SystemExit("Missing ERP credentials. Set ERP_ROLL_NUMBER and ERP_PASSWORD in your .env.")
    if not CredentialStore.validate_user_data(creds.roll_number, creds.password):
        raise SystemExit("Invalid credentials: roll number needs at least 8 characters and password at least 6.")
    if not creds.security_questions:
        logger.warning("No security questions configured; login will fail at the security-question step.")

    cred_store = _credential_store(cfg)
    await cred_store.save_user_data(creds)
    if cfg.gmail.access_token:
        await cred_store.save_mailbox_account(MailboxAccount(token=cfg.gmail.access_token, email=cfg.gmail.email))
    logger.info(
        "Stored credentials for %s (%d security question(s))",
        creds.roll_number,
        len(creds.security_questions),
    )
    return 0


async def _show_session(cfg: AppConfig) -> int:
    cred_store = _credential_store(cfg)
    status = await cred_store.describe()
    session = await cred_store.get_erp_session()

    print(f"Credentials stored: {'yes' if status['has_credentials'] else 'no'}")
    print(f"Mailbox connected:  {'yes' if status['mailbox_connected'] else 'no'}")
    print(f"Last login:         {status['last_login'] or 'never'}")
    if session is None:
        print("Session:            none (or expired)")
        return 1

    remaining = CredentialStore.format_time_remaining(session.seconds_remaining())
    portal = ERPPortalClient(urls=cfg.portal.urls())
    print(f"Session:            from {session.timestamp.isoformat()} (expires in {remaining})")
    print(f"Portal:             {portal.portal_url(session.sso_token)}")
    return 0


async def _check_session(cfg: AppConfig) -> int:
    cred_store = _credential_store(cfg)
    session = await cred_store.get_erp_session()
    if session is None:
        print("No stored ERP session.")
        return 1

    timeout = aiohttp.ClientTimeout(total=cfg.portal.timeout_seconds)
    async with aiohttp.ClientSession(cookies=session.cookies, timeout=timeout) as http:
        portal = ERPPortalClient(session=http, urls=cfg.portal.urls())
        alive = await portal.check_session()
    print("Session is active." if alive else "Session is no longer logged in.")
    return 0 if alive else 1


async def _clear_session(cfg: AppConfig) -> int:
    await _credential_store(cfg).clear_erp_session()
    logger.info("Cleared stored ERP session")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)

    if args.cmd == "login":
        logger.info("Starting ERP login (save=%s)", not args.no_save)
        return asyncio.run(_login(cfg, save=not args.no_save))

    if args.cmd == "preflight":
        logger.info("Starting preflight checks")
        asyncio.run(_preflight(cfg))
        logger.info("Preflight OK")
        return 0

    if args.cmd == "save-credentials":
        return asyncio.run(_save_credentials(cfg))

    if args.cmd == "show-session":
        return asyncio.run(_show_session(cfg))

    if args.cmd == "check-session":
        return asyncio.run(_check_session(cfg))

    if args.cmd == "clear-session":
        return asyncio.run(_clear_session(cfg))

    raise AssertionError("Unhandled command")


if __name__ == "__main__":
    raise SystemExit(main())
