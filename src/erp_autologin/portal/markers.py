from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PortalUrls:
    homepage: str = "https://erp.iitkgp.ac.in/IIT_ERP3/"
    login: str = "https://erp.iitkgp.ac.in/SSOAdministration/auth.htm"
    security_question: str = "https://erp.iitkgp.ac.in/SSOAdministration/getSecurityQues.htm"
    otp: str = "https://erp.iitkgp.ac.in/SSOAdministration/getEmilOTP.htm"
    welcome_page: str = "https://erp.iitkgp.ac.in/IIT_ERP3/welcome.jsp"
    dashboard: str = "https://erp.iitkgp.ac.in/IIT_ERP3/home.jsp"


@dataclass(frozen=True)
class PortalMarkers:
    """
    The ERP portal has no structured API; outcomes are signalled by strings inside HTML/JSON bodies.
    Keep every such string here so the rules can be updated when the portal changes.
    """

    # JSON `msg` codes from the OTP-request endpoint
    otp_answer_mismatch_msg: str = "ANSWER_MISMATCH"
    otp_password_mismatch_msg: str = "PASSWORD_MISMATCH"
    otp_sent_words: tuple[str, ...] = ("OTP", "sent")

    # Login-submit body markers (checked in this order)
    login_otp_mismatch: str = "ERROR:Email OTP mismatch"
    login_password_mismatch: str = "Unable to send OTP due to password mismatch"
    login_answer_mismatch: str = "Unable to send OTP due to security question's answare mismatch"
    login_welcome_texts: tuple[str, ...] = ("Welcome to ERP", "welcome.jsp", "home.jsp", "dashboard")

    # Dashboard probe for a still-alive session
    session_alive_text: str = "welcome"
    session_dead_text: str = "login"

    # Form literal the portal expects on both OTP and login requests
    login_type: str = "SI"
