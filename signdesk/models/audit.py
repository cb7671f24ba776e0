# =====================================================
# FILE: signdesk/models/audit.py
# Append-only contract audit trail
# =====================================================

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text, JSON, event
from sqlalchemy.orm import relationship
from enum import Enum

from signdesk.core.database import Base
from signdesk.utils.datetime_helpers import utcnow


class AuditEventType(str, Enum):
    CREATED = "created"
    SENT_TO_REVIEWER = "sent_to_reviewer"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    SENT = "sent"
    RESENT = "resent"
    VIEWED = "viewed"
    SIGNED = "signed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


SYSTEM_ACTOR = "system"


class AuditImmutabilityError(Exception):
    pass


class ContractAuditEvent(Base):
    __tablename__ = "contract_audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)
    actor = Column(String(255), nullable=False, default=SYSTEM_ACTOR)
    ip_address = Column(String(45))
    user_agent = Column(Text)
    document_hash = Column(String(64))
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    contract = relationship("Contract", back_populates="audit_events")

    def __repr__(self) -> str:
        return f"<ContractAuditEvent {self.event_type} contract={self.contract_id}>"


@event.listens_for(ContractAuditEvent, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditImmutabilityError(
        f"Audit event {target.id} ({target.event_type}) is immutable and cannot be updated"
    )


@event.listens_for(ContractAuditEvent, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditImmutabilityError(
        f"Audit event {target.id} ({target.event_type}) is immutable and cannot be deleted"
    )
