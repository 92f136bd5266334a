from .client import ERPPortalClient, PortalResponse
from .login import ERPLoginFlow
from .markers import PortalMarkers, PortalUrls
from .mfa import MailboxOtpPoller

__all__ = [
    "ERPLoginFlow",
    "ERPPortalClient",
    "MailboxOtpPoller",
    "PortalMarkers",
    "PortalResponse",
    "PortalUrls",
]
