from __future__ import annotations

from typing import Iterable, Optional


class ERPLoginError(RuntimeError):
    """
    Base class for every failure the login flow can surface.

    `kind` is the stable machine-readable name (the class name) and `category` is the coarse
    bucket a front end uses to pick a user-facing message.
    """

    category: str = "unknown"

    @property
    def kind(self) -> str:
        return type(self).__name__


class NetworkError(ERPLoginError):
    category = "network"

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class TokenNotFound(ERPLoginError):
    category = "network"


class InvalidRollNumber(ERPLoginError):
    category = "credentials"


class InvalidPassword(ERPLoginError):
    category = "credentials"


class SecurityAnswerMismatch(ERPLoginError):
    category = "security_question"


class NoMatchingSecurityAnswer(ERPLoginError):
    """
    Raised when none of the stored questions can be matched to the one the portal asked.
    """

    category = "security_question"

    def __init__(self, question: str, known_questions: Iterable[str]) -> None:
        self.question = question
        self.known_questions = list(known_questions)
        known = ", ".join(self.known_questions) or "(none)"
        super().__init__(f'No answer found for security question: "{question}". Available questions: {known}')


class InvalidOtp(ERPLoginError):
    category = "otp"


class OtpTimeout(ERPLoginError):
    category = "otp"


class OtpRequestFailed(ERPLoginError):
    category = "otp"


class LoginFailed(ERPLoginError):
    category = "credentials"


class NoCredentials(ERPLoginError):
    category = "setup"


class LoginCancelled(ERPLoginError):
    category = "cancelled"
