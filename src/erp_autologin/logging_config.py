import logging
import os
import re
from pathlib import Path
from typing import Optional


DEFAULT_LOG_FILE = "data/erp_login.log"

# Query/form parameters that carry a live credential when a URL or request body gets logged.
_SECRET_PARAM_RE = re.compile(r"\b(ssoToken|sessionToken|email_otp|password|answer)=([^&\s\"']+)")


class RedactSecretsFilter(logging.Filter):
    """
    Mask credential-bearing parameters (`ssoToken=...`, `email_otp=...`, ...) in any record,
    including records from aiohttp that format whole URLs.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET_PARAM_RE.sub(r"\1=****", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = "INFO", file_path: Optional[str] = None) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    redact = RedactSecretsFilter()
    for handler in handlers:
        handler.addFilter(redact)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,  # the CLI reconfigures once the config file is loaded
    )

    # aiohttp logs every connection at DEBUG
    for noisy in ("aiohttp", "asyncio"):
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING"))
