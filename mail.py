from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import urlencode

logger = logging.getLogger(__name__)


class Emailer(Protocol):
    async def reset_password(self, to: str, token: str) -> None: ...


def reset_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/reset?{urlencode({'token': token})}"


class LoggingEmailer:
    """Writes outgoing mail to the log instead of delivering it.

    Stands in wherever no mail transport is configured; the reset link is
    logged at info level so an operator can hand it over.
    """

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url

    async def reset_password(self, to: str, token: str) -> None:
        logger.info("password reset mail to=%s url=%s", to, reset_url(self.base_url, token))
