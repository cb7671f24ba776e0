"""API dependencies: admin authentication, caller info and service wiring."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from signdesk.core.database import get_db
from signdesk.core.email import MailSettings, NotificationGateway
from signdesk.core.rate_limit import client_ip
from signdesk.core.security import ADMIN_ROLE, decode_access_token
from signdesk.services.contract_email_service import ContractEmailService
from signdesk.services.contract_service import ContractService
from signdesk.services.lifecycle_engine import ClientInfo, LifecycleEngine
from signdesk.services.storage_service import StorageService
import logging

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AdminPrincipal:
    email: str


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AdminPrincipal:
    """
    Resolve the administrator from the bearer JWT.
    401 when the token is missing or invalid, 403 when it lacks the admin role.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        logger.warning("Auth Failed: Invalid or expired token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if payload.get("role") != ADMIN_ROLE:
        logger.warning(f"Auth Failed: {payload.get('sub')} is not an administrator")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required"
        )

    return AdminPrincipal(email=payload["sub"])


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or "unknown",
    )


def get_storage() -> StorageService:
    return StorageService()


def get_mail_settings() -> MailSettings:
    """Mail configuration, resolved once for the current request"""
    return MailSettings.from_settings()


def get_email_service() -> ContractEmailService:
    return ContractEmailService(NotificationGateway())


def get_lifecycle_engine(
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    emails: ContractEmailService = Depends(get_email_service),
    mail: MailSettings = Depends(get_mail_settings),
) -> LifecycleEngine:
    return LifecycleEngine(db, storage, emails, mail)


def get_contract_service(
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
) -> ContractService:
    return ContractService(db, storage)
