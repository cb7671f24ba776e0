"""
Per-client-IP rate limiting.

Fixed-window counters from the ``limits`` package, kept in process memory.
Each operation scope has its own window, and reviewer links count apart from
signer links, so a burst of page views never eats into a submit budget.
"""

from typing import Dict, Optional
import logging

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from signdesk.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."

storage = MemoryStorage()
limiter = FixedWindowRateLimiter(storage)


class RateLimitExceeded(Exception):
    """Raised by the route dependency; rendered as a 429 envelope"""

    def __init__(self, scope: str, retry_after: int):
        super().__init__(RATE_LIMITED_MESSAGE)
        self.scope = scope
        self.retry_after = retry_after


def scope_limits(settings: Optional[Settings] = None) -> Dict[str, int]:
    s = settings or get_settings()
    return {
        "contract-send": s.RATE_LIMIT_SEND,
        "contract-view": s.RATE_LIMIT_VIEW,
        "contract-sign": s.RATE_LIMIT_SIGN,
        "contract-review-view": s.RATE_LIMIT_REVIEW_VIEW,
        "contract-review-approve": s.RATE_LIMIT_REVIEW_APPROVE,
        "admin-read": s.RATE_LIMIT_ADMIN_READ,
        "admin-write": s.RATE_LIMIT_ADMIN_WRITE,
    }


def hit(scope: str, client_ip: str, settings: Optional[Settings] = None) -> bool:
    """Count one request; False once the scope's window is exhausted."""
    s = settings or get_settings()
    item = RateLimitItemPerSecond(scope_limits(s)[scope], s.RATE_LIMIT_WINDOW_SECONDS)
    allowed = limiter.hit(item, scope, client_ip)
    if not allowed:
        logger.warning(f"Rate limit hit: {scope} from {client_ip}")
    return allowed


def reset() -> None:
    storage.reset()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def rate_limit(scope: str):
    """Route dependency enforcing the named scope before the handler runs"""

    async def dependency(request: Request) -> None:
        s = get_settings()
        if not hit(scope, client_ip(request), s):
            raise RateLimitExceeded(scope, s.RATE_LIMIT_WINDOW_SECONDS)

    return dependency
