from __future__ import annotations

import logging
from typing import Callable, Optional


logger = logging.getLogger(__name__)

# Returned when nobody can read the image; the portal will reject it.
CAPTCHA_SENTINEL = "0000"


def solve_captcha(image: bytes, manual_entry: Optional[Callable[[bytes], str]] = None) -> str:
    """
    Captcha solving is not supported. Hand the image to `manual_entry` (e.g. a prompt) when one
    is available, otherwise return `CAPTCHA_SENTINEL`.
    """
    if manual_entry is not None:
        answer = (manual_entry(image) or "").strip()
        if answer:
            return answer
    logger.warning("Captcha solving is not supported; returning sentinel %r", CAPTCHA_SENTINEL)
    return CAPTCHA_SENTINEL
