# =====================================================
# FILE: signdesk/models/contract.py
# Subscription agreement and its lifecycle state
# =====================================================

from sqlalchemy import (
    Column, String, DateTime, Date, Integer, ForeignKey, Numeric, JSON, event
)
from sqlalchemy.orm import relationship, Session
from enum import Enum
import uuid

from signdesk.core.database import Base
from signdesk.core.results import ContractStateError
from signdesk.utils.datetime_helpers import utcnow


class ContractStatus(str, Enum):
    DRAFT = "draft"
    SENT_TO_REVIEWER = "sent_to_reviewer"
    REVIEWED = "reviewed"
    SENT = "sent"
    VIEWED = "viewed"
    SIGNED = "signed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ContractStatus.SIGNED, ContractStatus.EXPIRED, ContractStatus.CANCELLED
})

REVIEW_PHASE = frozenset({ContractStatus.SENT_TO_REVIEWER, ContractStatus.REVIEWED})
SIGNING_PHASE = frozenset({ContractStatus.SENT, ContractStatus.VIEWED})


class RoutingMode(str, Enum):
    """How Send dispatches a draft: straight to the signer, or via a reviewer first."""
    DIRECT = "direct"
    WITH_REVIEW = "with_review"


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    contract_number = Column(String(32), unique=True, nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)

    # Commercial terms
    tier = Column(String(100), nullable=False)
    annual_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="SEK")
    billing_interval = Column(String(20), nullable=False, default=BillingInterval.ANNUAL.value)
    vat_rate_pct = Column(Numeric(5, 2), nullable=False, default=25)
    contract_start_date = Column(Date, nullable=False)
    contract_duration_months = Column(Integer, nullable=False, default=12)
    custom_terms = Column(JSON, nullable=False, default=dict)

    # Parties
    signer_name = Column(String(255), nullable=False)
    signer_email = Column(String(255), nullable=False)
    signer_title = Column(String(255))
    reviewer_name = Column(String(255))
    reviewer_email = Column(String(255))
    reviewer_title = Column(String(255))

    # Lifecycle
    routing = Column(String(20), nullable=False, default=RoutingMode.DIRECT.value)
    status = Column(String(30), nullable=False, default=ContractStatus.DRAFT.value, index=True)

    # Bearer tokens
    reviewer_token = Column(String(64), unique=True, index=True)
    reviewer_token_expires_at = Column(DateTime)
    signing_token = Column(String(64), unique=True, index=True)
    token_expires_at = Column(DateTime)

    # Integrity
    document_hash = Column(String(64))
    signed_document_hash = Column(String(64))

    # Storage handles
    unsigned_pdf_path = Column(String(500))
    signed_pdf_path = Column(String(500))
    signature_image_path = Column(String(500))

    # Timestamps
    sent_at = Column(DateTime)
    reviewed_at = Column(DateTime)
    viewed_at = Column(DateTime)
    signed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    company = relationship("Company", lazy="joined")
    audit_events = relationship(
        "ContractAuditEvent",
        back_populates="contract",
        order_by="ContractAuditEvent.id",
        passive_deletes="all",
    )

    @property
    def has_reviewer(self) -> bool:
        return bool(self.reviewer_email)

    def __repr__(self) -> str:
        return f"<Contract {self.contract_number}: {self.status}>"


def assert_legal_state(contract: Contract) -> None:
    """
    Reject any status/token/hash combination the lifecycle can never produce.
    Raises ContractStateError.
    """
    try:
        status = ContractStatus(contract.status)
    except ValueError:
        raise ContractStateError(f"Unknown contract status '{contract.status}'")

    reviewer_token = contract.reviewer_token
    signing_token = contract.signing_token
    label = contract.contract_number or contract.id

    if reviewer_token and signing_token:
        raise ContractStateError(f"{label}: reviewer and signing tokens cannot both be set")

    if status in (ContractStatus.DRAFT, ContractStatus.SIGNED, ContractStatus.CANCELLED):
        if reviewer_token or signing_token:
            raise ContractStateError(f"{label}: no access token may be set while {status.value}")

    if status in REVIEW_PHASE and (not reviewer_token or signing_token):
        raise ContractStateError(f"{label}: {status.value} requires exactly the reviewer token")

    if status in SIGNING_PHASE and (not signing_token or reviewer_token):
        raise ContractStateError(f"{label}: {status.value} requires exactly the signing token")

    if status == ContractStatus.SIGNED:
        if not contract.signed_document_hash:
            raise ContractStateError(f"{label}: signed contract has no signed document hash")
        if contract.signed_document_hash == contract.document_hash:
            raise ContractStateError(f"{label}: signed document hash equals the unsigned hash")
    elif contract.signed_document_hash:
        raise ContractStateError(f"{label}: signed document hash set while {status.value}")


@event.listens_for(Session, "before_flush")
def _validate_contracts_before_flush(session, flush_context, instances):
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, Contract):
            assert_legal_state(obj)


class RetiredToken(Base):
    """
    Digest of a bearer token that was consumed, superseded or revoked.
    Lets a replayed link resolve to its contract without the token itself
    being stored once it stops granting access.
    """
    __tablename__ = "retired_tokens"

    token_digest = Column(String(64), primary_key=True)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    reason = Column(String(30), nullable=False)
    retired_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<RetiredToken {self.role} {self.reason} contract={self.contract_id}>"
