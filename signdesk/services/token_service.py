# =====================================================
# FILE: signdesk/services/token_service.py
# Single-use bearer tokens for reviewer and signer links
# =====================================================

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
import secrets

from signdesk.core.config import settings
from signdesk.utils.datetime_helpers import utcnow

TOKEN_BYTES = 32  # 256 bits -> 64 hex characters


class TokenRole(str, Enum):
    REVIEWER = "reviewer"
    SIGNER = "signer"


@dataclass(frozen=True)
class IssuedToken:
    value: str
    expires_at: datetime

    @property
    def prefix(self) -> str:
        """Loggable prefix; full tokens never go to the logs."""
        return self.value[:8]


class TokenService:
    """Issues and checks opaque access tokens"""

    @staticmethod
    def issue(now: Optional[datetime] = None, ttl_days: Optional[int] = None) -> IssuedToken:
        issued_at = now or utcnow()
        days = settings.TOKEN_TTL_DAYS if ttl_days is None else ttl_days
        return IssuedToken(
            value=secrets.token_hex(TOKEN_BYTES),
            expires_at=issued_at + timedelta(days=days),
        )

    @staticmethod
    def is_well_formed(token: str) -> bool:
        """Exactly 64 lowercase hex characters."""
        if not token or len(token) != TOKEN_BYTES * 2:
            return False
        return all(c in "0123456789abcdef" for c in token)

    @staticmethod
    def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        if expires_at is None:
            return False
        return expires_at < (now or utcnow())
