# =====================================================
# FILE: signdesk/models/__init__.py
# =====================================================

from signdesk.core.database import Base

from signdesk.models.company import Company
from signdesk.models.contract import (
    Contract,
    ContractStatus,
    RoutingMode,
    BillingInterval,
    RetiredToken,
    TERMINAL_STATUSES,
    assert_legal_state,
)
from signdesk.models.audit import ContractAuditEvent, AuditEventType, SYSTEM_ACTOR

__all__ = [
    "Base",
    "Company",
    "Contract",
    "ContractStatus",
    "RoutingMode",
    "BillingInterval",
    "RetiredToken",
    "TERMINAL_STATUSES",
    "assert_legal_state",
    "ContractAuditEvent",
    "AuditEventType",
    "SYSTEM_ACTOR",
]
