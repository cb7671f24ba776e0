# =====================================================
# FILE: signdesk/services/audit_service.py
# Service Layer for the Contract Audit Trail
# =====================================================

from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List
import logging

from signdesk.models.audit import ContractAuditEvent, AuditEventType, SYSTEM_ACTOR
from signdesk.utils.datetime_helpers import utcnow, format_datetime_to_iso

logger = logging.getLogger(__name__)


class AuditService:
    """
    Appends contract audit events.

    Events are added to the caller's session and committed together with the
    state change they describe; the service never commits on its own.
    """

    def __init__(self, db: Session):
        self.db = db

    def log_event(
        self,
        contract_id: str,
        event_type: AuditEventType,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        document_hash: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ContractAuditEvent:
        """
        Stage an audit event in the current transaction

        Returns:
            The pending ContractAuditEvent (id assigned when the transaction flushes)
        """
        audit_event = ContractAuditEvent(
            contract_id=contract_id,
            event_type=AuditEventType(event_type).value,
            actor=actor or SYSTEM_ACTOR,
            ip_address=ip_address,
            user_agent=user_agent,
            document_hash=document_hash,
            event_metadata=dict(metadata or {}),
            created_at=utcnow(),
        )
        self.db.add(audit_event)

        logger.info(f"Audit event staged: {audit_event.event_type} on contract {contract_id} by {audit_event.actor}")
        return audit_event

    def get_trail(self, contract_id: str) -> List[ContractAuditEvent]:
        """All events for a contract, oldest first"""
        return (
            self.db.query(ContractAuditEvent)
            .filter(ContractAuditEvent.contract_id == contract_id)
            .order_by(ContractAuditEvent.created_at, ContractAuditEvent.id)
            .all()
        )


def serialize_audit_event(audit_event: ContractAuditEvent) -> Dict[str, Any]:
    return {
        "id": audit_event.id,
        "contract_id": audit_event.contract_id,
        "event_type": audit_event.event_type,
        "actor": audit_event.actor,
        "ip_address": audit_event.ip_address,
        "user_agent": audit_event.user_agent,
        "document_hash": audit_event.document_hash,
        "metadata": audit_event.event_metadata or {},
        "created_at": format_datetime_to_iso(audit_event.created_at),
    }
