"""Security utilities: admin bearer tokens and signed retrieval URLs."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import hashlib
import hmac
import time

from jose import JWTError, jwt

from signdesk.core.config import settings
import logging

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=12))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_admin_token(email: str, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": email, "role": ADMIN_ROLE}, expires_delta)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None


def _url_signature(path: str, expires: int, secret: str) -> str:
    message = f"{path}:{expires}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_path(path: str, ttl_seconds: int, now: Optional[float] = None) -> Dict[str, Any]:
    """Return the query parameters that authorise reading `path` until expiry."""
    expires = int((now if now is not None else time.time()) + ttl_seconds)
    return {"expires": expires, "signature": _url_signature(path, expires, settings.SECRET_KEY)}


def verify_signed_path(path: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
    """Constant-time check of a signed retrieval URL."""
    if not signature:
        return False
    if expires < (now if now is not None else time.time()):
        return False
    expected = _url_signature(path, expires, settings.SECRET_KEY)
    return hmac.compare_digest(expected, signature)
