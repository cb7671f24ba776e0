# =====================================================
# FILE: signdesk/services/contract_service.py
# Administrator operations on subscription agreements
# =====================================================

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from signdesk.core.results import DependencyError, ErrorKind, Failure, Result, Success
from signdesk.models.audit import AuditEventType
from signdesk.models.company import Company
from signdesk.models.contract import Contract, ContractStatus, RoutingMode
from signdesk.services.audit_service import AuditService, serialize_audit_event
from signdesk.services.contract_pdf import generate_contract_pdf, params_from_contract
from signdesk.services.storage_service import StorageService
from signdesk.utils.datetime_helpers import format_datetime_to_iso, utcnow
from signdesk.utils.hashing import digests_match, sha256_hex

logger = logging.getLogger(__name__)

CONTRACT_NUMBER_ATTEMPTS = 3

EDITABLE_FIELDS = (
    "company_id", "tier", "annual_price", "currency", "billing_interval", "vat_rate_pct",
    "contract_start_date", "contract_duration_months", "custom_terms",
    "signer_name", "signer_email", "signer_title",
    "reviewer_name", "reviewer_email", "reviewer_title",
)

# NOT NULL columns; an edit may change them but never clear them
REQUIRED_ON_UPDATE = (
    "tier", "annual_price", "currency", "billing_interval", "vat_rate_pct",
    "contract_start_date", "contract_duration_months", "custom_terms",
    "signer_name", "signer_email",
)


def next_contract_number(db: Session, now: Optional[datetime] = None) -> str:
    """Next sequential number of the form SS-YYYY-NNN"""
    prefix = f"SS-{(now or utcnow()).year}-"
    last = (
        db.query(Contract.contract_number)
        .filter(Contract.contract_number.like(f"{prefix}%"))
        .order_by(Contract.contract_number.desc())
        .first()
    )
    next_num = 1
    if last:
        try:
            next_num = int(last[0].replace(prefix, "")) + 1
        except ValueError:
            pass
    return f"{prefix}{next_num:03d}"


def routing_for(reviewer_email: Optional[str]) -> str:
    return (RoutingMode.WITH_REVIEW if reviewer_email else RoutingMode.DIRECT).value


def serialize_contract(contract: Contract) -> Dict[str, Any]:
    """Administrator view; bearer tokens are never exposed."""
    company = contract.company
    return {
        "id": contract.id,
        "contract_number": contract.contract_number,
        "company_id": contract.company_id,
        "company": {
            "company_name": company.company_name,
            "org_number": company.org_number,
        } if company else None,
        "tier": contract.tier,
        "annual_price": float(contract.annual_price),
        "currency": contract.currency,
        "billing_interval": contract.billing_interval,
        "vat_rate_pct": float(contract.vat_rate_pct),
        "contract_start_date": contract.contract_start_date.isoformat(),
        "contract_duration_months": contract.contract_duration_months,
        "custom_terms": dict(contract.custom_terms or {}),
        "signer_name": contract.signer_name,
        "signer_email": contract.signer_email,
        "signer_title": contract.signer_title,
        "reviewer_name": contract.reviewer_name,
        "reviewer_email": contract.reviewer_email,
        "reviewer_title": contract.reviewer_title,
        "routing": contract.routing,
        "status": contract.status,
        "reviewer_token_expires_at": format_datetime_to_iso(contract.reviewer_token_expires_at),
        "token_expires_at": format_datetime_to_iso(contract.token_expires_at),
        "document_hash": contract.document_hash,
        "signed_document_hash": contract.signed_document_hash,
        "has_unsigned_pdf": bool(contract.unsigned_pdf_path),
        "has_signed_pdf": bool(contract.signed_pdf_path),
        "sent_at": format_datetime_to_iso(contract.sent_at),
        "reviewed_at": format_datetime_to_iso(contract.reviewed_at),
        "viewed_at": format_datetime_to_iso(contract.viewed_at),
        "signed_at": format_datetime_to_iso(contract.signed_at),
        "cancelled_at": format_datetime_to_iso(contract.cancelled_at),
        "created_at": format_datetime_to_iso(contract.created_at),
        "updated_at": format_datetime_to_iso(contract.updated_at),
    }


class ContractService:
    """Drafting, listing and document access for administrators"""

    def __init__(self, db: Session, storage: StorageService):
        self.db = db
        self.storage = storage
        self.audit = AuditService(db)

    def _render_unsigned(self, contract: Contract) -> None:
        """Render, store and hash the unsigned baseline document."""
        pdf_bytes = generate_contract_pdf(params_from_contract(contract))
        contract.unsigned_pdf_path = self.storage.upload_contract_pdf(
            contract.company_id, contract.id, "unsigned.pdf", pdf_bytes)
        contract.document_hash = sha256_hex(pdf_bytes)

    def _check_company(self, company_id: Optional[int]) -> Optional[Failure]:
        if company_id is not None and self.db.get(Company, company_id) is None:
            return Failure(ErrorKind.VALIDATION, f"Company {company_id} does not exist")
        return None

    def create(self, data: Dict[str, Any], actor: str, ip_address: Optional[str] = None) -> Result:
        """Create a draft, render its unsigned PDF and record the baseline hash."""
        failure = self._check_company(data.get("company_id"))
        if failure:
            return failure

        for attempt in range(CONTRACT_NUMBER_ATTEMPTS):
            contract = Contract(**{k: v for k, v in data.items() if k in EDITABLE_FIELDS})
            contract.contract_number = next_contract_number(self.db)
            contract.routing = routing_for(contract.reviewer_email)
            contract.status = ContractStatus.DRAFT.value
            self.db.add(contract)
            try:
                self.db.flush()
                self.db.refresh(contract)
                break
            except IntegrityError:
                self.db.rollback()
                logger.warning(f"Contract number {contract.contract_number} taken, retrying")
        else:
            return Failure(ErrorKind.DEPENDENCY, "Could not allocate a contract number")

        try:
            self._render_unsigned(contract)
        except DependencyError as e:
            self.db.rollback()
            logger.error(f"Create of {contract.contract_number} failed: {e}")
            return Failure(ErrorKind.DEPENDENCY, "Failed to generate the contract document")

        self.audit.log_event(
            contract.id,
            AuditEventType.CREATED,
            actor=actor,
            ip_address=ip_address,
            document_hash=contract.document_hash,
            metadata={"contract_number": contract.contract_number, "routing": contract.routing},
        )
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"Contract {contract.contract_number} created by {actor}")
        return Success(serialize_contract(contract))

    def update_draft(self, contract_id: str, changes: Dict[str, Any]) -> Result:
        """Edit a draft; the unsigned PDF and its hash are regenerated."""
        contract = self.db.get(Contract, contract_id, populate_existing=True)
        if contract is None:
            return Failure(ErrorKind.NOT_FOUND, "Contract not found")
        if contract.status != ContractStatus.DRAFT.value:
            return Failure(ErrorKind.INVALID_STATE, "Only draft contracts can be edited")

        cleared = [key for key in REQUIRED_ON_UPDATE if key in changes and changes[key] is None]
        if cleared:
            return Failure(ErrorKind.VALIDATION, f"Required fields cannot be cleared: {', '.join(cleared)}")

        if "company_id" in changes:
            failure = self._check_company(changes["company_id"])
            if failure:
                return failure

        # Holds the row while it is re-rendered; a concurrent Send waits or wins first
        locked = self.db.execute(
            update(Contract)
            .where(Contract.id == contract.id, Contract.status == ContractStatus.DRAFT.value)
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount
        if locked != 1:
            self.db.rollback()
            return Failure(ErrorKind.INVALID_STATE, "Only draft contracts can be edited")

        for key, value in changes.items():
            if key in EDITABLE_FIELDS:
                setattr(contract, key, value)
        contract.routing = routing_for(contract.reviewer_email)
        self.db.flush()
        self.db.refresh(contract)

        try:
            self._render_unsigned(contract)
        except DependencyError as e:
            self.db.rollback()
            logger.error(f"Update of {contract.contract_number} failed: {e}")
            return Failure(ErrorKind.DEPENDENCY, "Failed to regenerate the contract document")

        self.db.commit()
        logger.info(f"Draft {contract.contract_number} updated: {sorted(changes)}")
        return Success(serialize_contract(contract))

    def list_contracts(self, status: Optional[str] = None, company_id: Optional[int] = None) -> List[Dict[str, Any]]:
        query = self.db.query(Contract)
        if status:
            query = query.filter(Contract.status == status)
        if company_id:
            query = query.filter(Contract.company_id == company_id)
        return [serialize_contract(c) for c in query.order_by(Contract.created_at.desc()).all()]

    def get(self, contract_id: str) -> Result:
        contract = self.db.get(Contract, contract_id, populate_existing=True)
        if contract is None:
            return Failure(ErrorKind.NOT_FOUND, "Contract not found")
        data = serialize_contract(contract)
        data["audit_trail"] = [serialize_audit_event(e) for e in self.audit.get_trail(contract.id)]
        return Success(data)

    def download(self, contract_id: str, kind: str = "unsigned") -> Result:
        """PDF bytes of the unsigned baseline or the signed artifact."""
        contract = self.db.get(Contract, contract_id)
        if contract is None:
            return Failure(ErrorKind.NOT_FOUND, "Contract not found")
        path = contract.signed_pdf_path if kind == "signed" else contract.unsigned_pdf_path
        if not path:
            return Failure(ErrorKind.NOT_FOUND, f"No {kind} document for this contract")
        try:
            content = self.storage.get_bytes(path)
        except DependencyError as e:
            logger.error(f"Download of {contract.contract_number} ({kind}) failed: {e}")
            return Failure(ErrorKind.DEPENDENCY, "Failed to read the contract document")
        return Success({
            "content": content,
            "filename": f"{contract.contract_number}-{kind}.pdf",
        })

    def verify_document(self, contract_id: str, content: bytes) -> Result:
        """Compare an uploaded file against both stored digests."""
        contract = self.db.get(Contract, contract_id)
        if contract is None:
            return Failure(ErrorKind.NOT_FOUND, "Contract not found")
        if not content:
            return Failure(ErrorKind.VALIDATION, "Uploaded file is empty")

        digest = sha256_hex(content)
        if digests_match(content, contract.signed_document_hash):
            matched = "signed"
        elif digests_match(content, contract.document_hash):
            matched = "unsigned"
        else:
            matched = None

        logger.info(f"Verification of {contract.contract_number}: {matched or 'no match'}")
        return Success({
            "contract_number": contract.contract_number,
            "computed_hash": digest,
            "document_hash": contract.document_hash,
            "signed_document_hash": contract.signed_document_hash,
            "matches": matched,
            "verified": matched is not None,
        })
