# =====================================================
# FILE: signdesk/services/lifecycle_engine.py
# Contract lifecycle: Send, View, Act and Cancel
# =====================================================

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from signdesk.core.config import settings
from signdesk.core.email import MailSettings
from signdesk.core.results import (
    DependencyError, ErrorKind, Failure, NotificationError, Result, Success
)
from signdesk.models.audit import AuditEventType, SYSTEM_ACTOR
from signdesk.models.contract import (
    Contract, ContractStatus, RetiredToken, RoutingMode, REVIEW_PHASE, SIGNING_PHASE,
    TERMINAL_STATUSES,
)
from signdesk.services.audit_service import AuditService
from signdesk.services.contract_email_service import ContractEmailService
from signdesk.services.contract_pdf import (
    generate_contract_pdf, params_from_contract, validate_signature_image
)
from signdesk.services.storage_service import StorageService, decode_image_payload
from signdesk.services.token_service import IssuedToken, TokenRole, TokenService
from signdesk.utils.datetime_helpers import format_datetime_to_iso, utcnow
from signdesk.utils.hashing import sha256_hex

logger = logging.getLogger(__name__)

MIN_SIGNATURE_IMAGE_LENGTH = 100

INVALID_LINK = "Invalid or expired link"
ALREADY_SIGNED = "This agreement has already been signed"
CANCELLED = "This agreement has been cancelled"
EXPIRED_LINK = {
    TokenRole.REVIEWER: "This review link has expired",
    TokenRole.SIGNER: "This signing link has expired",
}
ALREADY_FORWARDED = "Contract has already been forwarded or signed"
CANNOT_SIGN = "Contract cannot be signed in current status"
CANNOT_SEND = "Contract cannot be sent in current status"
LINK_REPLACED = "This link has been replaced by a newer one"

RESENDABLE = frozenset({ContractStatus.SENT, ContractStatus.SENT_TO_REVIEWER})
APPROVABLE = REVIEW_PHASE
SIGNABLE = SIGNING_PHASE


@dataclass(frozen=True)
class ClientInfo:
    """Caller attribution recorded on audit events"""
    ip_address: str = "unknown"
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class SignaturePayload:
    signer_name: str
    signer_title: Optional[str]
    image_bytes: bytes


def parse_signature_payload(payload: Optional[Dict[str, Any]]) -> Union[SignaturePayload, Failure]:
    """Validate a raw signing payload into name, title and decoded raster."""
    payload = payload or {}
    signer_name = (payload.get("signer_name") or "").strip()
    if not signer_name:
        return Failure(ErrorKind.VALIDATION, "signer_name is required")

    signer_title = payload.get("signer_title")
    if signer_title is not None:
        signer_title = str(signer_title).strip() or None

    image = payload.get("signature_image") or ""
    if len(image) < MIN_SIGNATURE_IMAGE_LENGTH:
        return Failure(ErrorKind.VALIDATION, "signature_image must be a base64-encoded image")
    try:
        image_bytes = decode_image_payload(image)
        validate_signature_image(image_bytes)
    except ValueError as e:
        return Failure(ErrorKind.VALIDATION, str(e))

    return SignaturePayload(signer_name=signer_name, signer_title=signer_title, image_bytes=image_bytes)


class LifecycleEngine:
    """
    Owns every write to contract status, token and hash columns.

    Each transition is a single compare-and-swap UPDATE guarded by the legal
    predecessor states; the affected row count decides a race. The audit event
    for a transition is committed in the same transaction. Mail goes out only
    after commit and never undoes a transition.
    """

    def __init__(
        self,
        db: Session,
        storage: StorageService,
        emails: ContractEmailService,
        mail: MailSettings,
        base_url: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.storage = storage
        self.emails = emails
        self.mail = mail
        self.base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.clock = clock
        self.audit = AuditService(db)

    # -------------------------------------------------
    # Helpers
    # -------------------------------------------------

    def review_url(self, token: str) -> str:
        return f"{self.base_url}/review/{token}"

    def sign_url(self, token: str) -> str:
        return f"{self.base_url}/sign/{token}"

    def _compare_and_swap(
        self,
        contract_id: str,
        allowed: Iterable[ContractStatus],
        values: Dict[str, Any],
        **expected: Any,
    ) -> bool:
        """UPDATE ... WHERE id AND status IN allowed [AND column = expected]; True if this caller won."""
        stmt = (
            update(Contract)
            .where(Contract.id == contract_id)
            .where(Contract.status.in_([ContractStatus(s).value for s in allowed]))
        )
        for column, value in expected.items():
            stmt = stmt.where(getattr(Contract, column) == value)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        return self.db.execute(stmt).rowcount == 1

    def _retire(self, token: Optional[str], contract_id: str, role: TokenRole, reason: str) -> None:
        if token:
            self.db.add(RetiredToken(
                token_digest=sha256_hex(token.encode("utf-8")),
                contract_id=contract_id,
                role=role.value,
                reason=reason,
                retired_at=self.clock(),
            ))

    def _reload(self, contract: Contract) -> Contract:
        self.db.refresh(contract)
        return contract

    def _lookup(self, token: str, role: TokenRole) -> Optional[Contract]:
        column = Contract.reviewer_token if role == TokenRole.REVIEWER else Contract.signing_token
        return self.db.query(Contract).populate_existing().filter(column == token).first()

    def _retired_failure(self, token: str, role: TokenRole) -> Failure:
        retired = self.db.get(RetiredToken, sha256_hex(token.encode("utf-8")))
        if retired is None or retired.role != role.value:
            return Failure(ErrorKind.NOT_FOUND, INVALID_LINK)

        contract = self.db.get(Contract, retired.contract_id, populate_existing=True)
        logger.warning(f"Retired {role.value} token {token[:8]} presented for contract {retired.contract_id}")
        if contract.status == ContractStatus.SIGNED.value:
            return Failure(ErrorKind.TERMINAL, ALREADY_SIGNED)
        if contract.status == ContractStatus.CANCELLED.value:
            return Failure(ErrorKind.TERMINAL, CANCELLED)
        if role == TokenRole.REVIEWER and retired.reason == "consumed":
            return Failure(ErrorKind.INVALID_STATE, ALREADY_FORWARDED)
        return Failure(ErrorKind.TERMINAL, LINK_REPLACED)

    def _expire(self, contract: Contract, token: str, role: TokenRole, client: ClientInfo) -> Failure:
        """Flip a token-bearing contract to expired; only the first caller writes the audit event."""
        phase = REVIEW_PHASE if role == TokenRole.REVIEWER else SIGNING_PHASE
        token_column = "reviewer_token" if role == TokenRole.REVIEWER else "signing_token"
        now = self.clock()
        won = self._compare_and_swap(
            contract.id,
            phase,
            {"status": ContractStatus.EXPIRED.value, "updated_at": now},
            **{token_column: token},
        )
        if won:
            self.audit.log_event(
                contract.id,
                AuditEventType.EXPIRED,
                actor=SYSTEM_ACTOR,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                document_hash=contract.document_hash,
                metadata={"role": role.value, "detected_on_access": True},
            )
            self.db.commit()
            logger.warning(f"Contract {contract.contract_number} expired ({role.value} token {token[:8]})")
        else:
            self.db.rollback()
        return Failure(ErrorKind.EXPIRED, EXPIRED_LINK[role])

    def _resolve(self, token: str, role: TokenRole, client: ClientInfo) -> Union[Contract, Failure]:
        """Exact-match token lookup with lazy expiry."""
        if not TokenService.is_well_formed(token):
            return Failure(ErrorKind.NOT_FOUND, INVALID_LINK)

        contract = self._lookup(token, role)
        if contract is None:
            return self._retired_failure(token, role)

        status = ContractStatus(contract.status)
        if status == ContractStatus.EXPIRED:
            return Failure(ErrorKind.EXPIRED, EXPIRED_LINK[role])
        if status == ContractStatus.SIGNED:
            return Failure(ErrorKind.TERMINAL, ALREADY_SIGNED)
        if status == ContractStatus.CANCELLED:
            return Failure(ErrorKind.TERMINAL, CANCELLED)

        expires_at = contract.reviewer_token_expires_at if role == TokenRole.REVIEWER else contract.token_expires_at
        if TokenService.is_expired(expires_at, self.clock()):
            return self._expire(contract, token, role, client)

        return contract

    async def _notify(self, send, contract: Contract, what: str) -> bool:
        try:
            await send()
            return True
        except NotificationError as e:
            logger.error(f"{what} for {contract.contract_number} not delivered: {e}")
            return False

    # -------------------------------------------------
    # Send
    # -------------------------------------------------

    async def send(self, contract_id: str, actor: str, client: ClientInfo) -> Result:
        """
        Dispatch a draft (directly to the signer or via the reviewer) or resend
        a fresh signing link.
        """
        contract = self.db.get(Contract, contract_id, populate_existing=True)
        if contract is None:
            return Failure(ErrorKind.NOT_FOUND, "Contract not found")

        status = ContractStatus(contract.status)
        if status != ContractStatus.DRAFT and status not in RESENDABLE:
            return Failure(ErrorKind.INVALID_STATE, CANNOT_SEND)

        if not self.mail.is_configured:
            logger.error(f"Send of {contract.contract_number} refused: email not configured")
            return Failure(ErrorKind.DEPENDENCY, "Email not configured")

        now = self.clock()
        issued = TokenService.issue(now)

        if status == ContractStatus.DRAFT and contract.routing == RoutingMode.WITH_REVIEW.value:
            return await self._send_with_review(contract, actor, client, issued, now)
        if status == ContractStatus.DRAFT:
            return await self._send_direct(contract, actor, client, issued, now)
        return await self._resend(contract, actor, client, issued, now)

    async def _send_with_review(self, contract: Contract, actor: str, client: ClientInfo,
                                issued: IssuedToken, now: datetime) -> Result:
        won = self._compare_and_swap(contract.id, [ContractStatus.DRAFT], {
            "status": ContractStatus.SENT_TO_REVIEWER.value,
            "reviewer_token": issued.value,
            "reviewer_token_expires_at": issued.expires_at,
            "sent_at": now,
            "updated_at": now,
        })
        if not won:
            self.db.rollback()
            return Failure(ErrorKind.INVALID_STATE, CANNOT_SEND)

        self.audit.log_event(
            contract.id,
            AuditEventType.SENT_TO_REVIEWER,
            actor=actor,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            document_hash=contract.document_hash,
            metadata={
                "reviewer_email": contract.reviewer_email,
                "token_expires_at": format_datetime_to_iso(issued.expires_at),
            },
        )
        self.db.commit()
        contract = self._reload(contract)
        logger.info(f"Contract {contract.contract_number} sent to reviewer {contract.reviewer_email} "
                    f"(token {issued.prefix})")

        email_sent = await self._notify(
            lambda: self.emails.send_review_request(
                self.mail, contract, self.review_url(issued.value), issued.expires_at),
            contract, "Review request",
        )
        return Success({
            "status": contract.status,
            "sent_to": contract.reviewer_email,
            "token_expires_at": format_datetime_to_iso(issued.expires_at),
            "email_sent": email_sent,
        })

    async def _send_direct(self, contract: Contract, actor: str, client: ClientInfo,
                           issued: IssuedToken, now: datetime) -> Result:
        won = self._compare_and_swap(contract.id, [ContractStatus.DRAFT], {
            "status": ContractStatus.SENT.value,
            "signing_token": issued.value,
            "token_expires_at": issued.expires_at,
            "sent_at": now,
            "updated_at": now,
        })
        if not won:
            self.db.rollback()
            return Failure(ErrorKind.INVALID_STATE, CANNOT_SEND)

        self.audit.log_event(
            contract.id,
            AuditEventType.SENT,
            actor=actor,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            document_hash=contract.document_hash,
            metadata={
                "signer_email": contract.signer_email,
                "token_expires_at": format_datetime_to_iso(issued.expires_at),
            },
        )
        self.db.commit()
        contract = self._reload(contract)
        logger.info(f"Contract {contract.contract_number} sent to signer {contract.signer_email} "
                    f"(token {issued.prefix})")

        email_sent = await self._notify(
            lambda: self.emails.send_signing_request(
                self.mail, contract, self.sign_url(issued.value), issued.expires_at),
            contract, "Signing request",
        )
        return Success({
            "status": contract.status,
            "sent_to": contract.signer_email,
            "token_expires_at": format_datetime_to_iso(issued.expires_at),
            "email_sent": email_sent,
        })

    async def _resend(self, contract: Contract, actor: str, client: ClientInfo,
                      issued: IssuedToken, now: datetime) -> Result:
        previous_status = contract.status
        old_reviewer_token = contract.reviewer_token
        old_signing_token = contract.signing_token

        won = self._compare_and_swap(
            contract.id,
            RESENDABLE,
            {
                "status": ContractStatus.SENT.value,
                "reviewer_token": None,
                "reviewer_token_expires_at": None,
                "signing_token": issued.value,
                "token_expires_at": issued.expires_at,
                "sent_at": now,
                "updated_at": now,
            },
            reviewer_token=old_reviewer_token,
            signing_token=old_signing_token,
        )
        if not won:
            self.db.rollback()
            return Failure(ErrorKind.INVALID_STATE, CANNOT_SEND)

        self._retire(old_reviewer_token, contract.id, TokenRole.REVIEWER, "superseded")
        self._retire(old_signing_token, contract.id, TokenRole.SIGNER, "superseded")
        self.audit.log_event(
            contract.id,
            AuditEventType.RESENT,
            actor=actor,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            document_hash=contract.document_hash,
            metadata={
                "signer_email": contract.signer_email,
                "token_expires_at": format_datetime_to_iso(issued.expires_at),
                "previous_status": previous_status,
            },
        )
        self.db.commit()
        contract = self._reload(contract)
        logger.info(f"Contract {contract.contract_number} resent to {contract.signer_email} "
                    f"(token {issued.prefix}, was {previous_status})")

        email_sent = await self._notify(
            lambda: self.emails.send_signing_request(
                self.mail, contract, self.sign_url(issued.value), issued.expires_at),
            contract, "Signing request",
        )
        return Success({
            "status": contract.status,
            "sent_to": contract.signer_email,
            "token_expires_at": format_datetime_to_iso(issued.expires_at),
            "email_sent": email_sent,
        })

    # -------------------------------------------------
    # View
    # -------------------------------------------------

    async def view(self, token: str, role: TokenRole, client: ClientInfo) -> Result:
        """Role projection of the contract; the first view records reviewed/viewed."""
        resolved = self._resolve(token, role, client)
        if isinstance(resolved, Failure):
            return resolved
        contract = resolved

        if role == TokenRole.REVIEWER:
            first, to, stamp, event, actor = (
                ContractStatus.SENT_TO_REVIEWER, ContractStatus.REVIEWED, "reviewed_at",
                AuditEventType.REVIEWED, contract.reviewer_email,
            )
        else:
            first, to, stamp, event, actor = (
                ContractStatus.SENT, ContractStatus.VIEWED, "viewed_at",
                AuditEventType.VIEWED, contract.signer_email,
            )

        if contract.status == first.value:
            now = self.clock()
            token_column = "reviewer_token" if role == TokenRole.REVIEWER else "signing_token"
            won = self._compare_and_swap(
                contract.id, [first],
                {"status": to.value, stamp: now, "updated_at": now},
                **{token_column: token},
            )
            if won:
                self.audit.log_event(
                    contract.id,
                    event,
                    actor=actor,
                    ip_address=client.ip_address,
                    user_agent=client.user_agent,
                    document_hash=contract.document_hash,
                )
                self.db.commit()
                logger.info(f"Contract {contract.contract_number} first {event.value} by {actor}")
            else:
                self.db.rollback()
            contract = self._reload(contract)

        return Success(self._projection(contract, role))

    def _projection(self, contract: Contract, role: TokenRole) -> Dict[str, Any]:
        data = {
            "role": role.value,
            "contract_number": contract.contract_number,
            "status": contract.status,
            "tier": contract.tier,
            "annual_price": float(contract.annual_price),
            "currency": contract.currency,
            "billing_interval": contract.billing_interval,
            "vat_rate_pct": float(contract.vat_rate_pct),
            "contract_start_date": contract.contract_start_date.isoformat(),
            "contract_duration_months": contract.contract_duration_months,
            "signer_name": contract.signer_name,
            "signer_email": contract.signer_email,
            "company_name": contract.company.company_name if contract.company else None,
            "document_hash": contract.document_hash,
            "pdf_url": self.storage.presign_get(contract.unsigned_pdf_path) if contract.unsigned_pdf_path else None,
        }
        if role == TokenRole.REVIEWER:
            data.update({
                "reviewer_name": contract.reviewer_name,
                "reviewer_email": contract.reviewer_email,
                "reviewer_title": contract.reviewer_title,
                "expires_at": format_datetime_to_iso(contract.reviewer_token_expires_at),
            })
        else:
            data.update({
                "signer_title": contract.signer_title,
                "custom_terms": dict(contract.custom_terms or {}),
                "expires_at": format_datetime_to_iso(contract.token_expires_at),
            })
        return data

    # -------------------------------------------------
    # Act
    # -------------------------------------------------

    async def act(self, token: str, role: TokenRole, payload: Optional[Dict[str, Any]],
                  client: ClientInfo) -> Result:
        """Reviewer tokens approve (payload ignored); signing tokens sign."""
        if role == TokenRole.REVIEWER:
            return await self.approve(token, client)
        return await self.sign(token, payload, client)

    async def approve(self, token: str, client: ClientInfo) -> Result:
        resolved = self._resolve(token, TokenRole.REVIEWER, client)
        if isinstance(resolved, Failure):
            return resolved
        contract = resolved

        if ContractStatus(contract.status) not in APPROVABLE:
            return Failure(ErrorKind.INVALID_STATE, ALREADY_FORWARDED)
        if not self.mail.is_configured:
            logger.error(f"Approval of {contract.contract_number} refused: email not configured")
            return Failure(ErrorKind.DEPENDENCY, "Email not configured")

        now = self.clock()
        issued = TokenService.issue(now)
        won = self._compare_and_swap(
            contract.id,
            APPROVABLE,
            {
                "status": ContractStatus.SENT.value,
                "reviewer_token": None,
                "reviewer_token_expires_at": None,
                "signing_token": issued.value,
                "token_expires_at": issued.expires_at,
                "sent_at": now,
                "updated_at": now,
            },
            reviewer_token=token,
        )
        if not won:
            self.db.rollback()
            logger.warning(f"Lost approval race on {contract.contract_number} (token {token[:8]})")
            return Failure(ErrorKind.INVALID_STATE, ALREADY_FORWARDED)

        self._retire(token, contract.id, TokenRole.REVIEWER, "consumed")
        self.audit.log_event(
            contract.id,
            AuditEventType.APPROVED,
            actor=contract.reviewer_email,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            document_hash=contract.document_hash,
            metadata={"forwarded_to": contract.signer_email},
        )
        self.audit.log_event(
            contract.id,
            AuditEventType.SENT,
            actor=SYSTEM_ACTOR,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            document_hash=contract.document_hash,
            metadata={
                "signer_email": contract.signer_email,
                "token_expires_at": format_datetime_to_iso(issued.expires_at),
                "triggered_by": "reviewer_approval",
            },
        )
        self.db.commit()
        contract = self._reload(contract)
        logger.info(f"Contract {contract.contract_number} approved by {contract.reviewer_email}, "
                    f"forwarded to {contract.signer_email} (token {issued.prefix})")

        email_sent = await self._notify(
            lambda: self.emails.send_signing_request(
                self.mail, contract, self.sign_url(issued.value), issued.expires_at,
                reviewed_by=contract.reviewer_name or contract.reviewer_email),
            contract, "Signing request",
        )
        return Success({
            "status": contract.status,
            "forwarded_to": contract.signer_email,
            "email_sent": email_sent,
        })

    async def sign(self, token: str, payload: Optional[Dict[str, Any]], client: ClientInfo) -> Result:
        """
        Capture the signature.

        The status flip and the token nulling happen first as one CAS, so a
        concurrent second signer loses before any document work starts. The
        signed PDF is then rendered and stored inside the same transaction;
        a storage or render failure rolls the flip back.
        """
        resolved = self._resolve(token, TokenRole.SIGNER, client)
        if isinstance(resolved, Failure):
            return resolved
        contract = resolved

        if ContractStatus(contract.status) not in SIGNABLE:
            return Failure(ErrorKind.INVALID_STATE, CANNOT_SIGN)

        signature = parse_signature_payload(payload)
        if isinstance(signature, Failure):
            return signature

        signed_at = self.clock()
        won = self._compare_and_swap(
            contract.id,
            SIGNABLE,
            {
                "status": ContractStatus.SIGNED.value,
                "signing_token": None,
                "signed_at": signed_at,
                "updated_at": signed_at,
            },
            signing_token=token,
        )
        if not won:
            self.db.rollback()
            logger.warning(f"Lost signing race on {contract.contract_number} (token {token[:8]})")
            return Failure(ErrorKind.INVALID_STATE, CANNOT_SIGN)

        contract = self._reload(contract)
        original_hash = contract.document_hash
        stored: List[str] = []
        try:
            signature_path = self.storage.upload_signature_image(
                contract.company_id, contract.id, signature.image_bytes)
            stored.append(signature_path)

            pdf_bytes = generate_contract_pdf(params_from_contract(
                contract,
                signer_name=signature.signer_name,
                signer_title=signature.signer_title or contract.signer_title,
                signed=True,
                signature_image=signature.image_bytes,
                signed_at=signed_at,
                signer_ip=client.ip_address,
                document_hash=original_hash,
            ))
            signed_hash = sha256_hex(pdf_bytes)
            signed_path = self.storage.upload_contract_pdf(
                contract.company_id, contract.id, "signed.pdf", pdf_bytes)
            stored.append(signed_path)
        except DependencyError as e:
            self.db.rollback()
            self._discard(stored)
            logger.error(f"Signing of {contract.contract_number} rolled back: {e}")
            return Failure(ErrorKind.DEPENDENCY, "Failed to finalize the signed agreement")

        contract.signed_document_hash = signed_hash
        contract.signed_pdf_path = signed_path
        contract.signature_image_path = signature_path
        contract.signer_name = signature.signer_name
        contract.signer_title = signature.signer_title or contract.signer_title
        self._retire(token, contract.id, TokenRole.SIGNER, "consumed")
        self.audit.log_event(
            contract.id,
            AuditEventType.SIGNED,
            actor=contract.signer_email,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            document_hash=signed_hash,
            metadata={
                "signer_name": signature.signer_name,
                "signer_title": signature.signer_title,
                "original_hash": original_hash,
            },
        )
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._discard(stored)
            raise
        logger.info(f"Contract {contract.contract_number} signed by {signature.signer_name} "
                    f"from {client.ip_address}; hash {signed_hash[:16]}")

        if self.mail.is_configured:
            email_sent = await self.emails.send_signed_notifications(self.mail, contract, client.ip_address)
        else:
            logger.warning(f"Signed notifications for {contract.contract_number} skipped: email not configured")
            email_sent = False

        return Success({
            "status": contract.status,
            "signed_at": format_datetime_to_iso(signed_at),
            "signed_document_hash": signed_hash,
            "email_sent": email_sent,
        })

    def _discard(self, paths: List[str]) -> None:
        for path in paths:
            try:
                self.storage.delete(path)
            except DependencyError as e:
                logger.error(f"Could not remove orphaned blob {path}: {e}")

    # -------------------------------------------------
    # Cancel
    # -------------------------------------------------

    def cancel(self, contract_id: str, actor: str, client: ClientInfo,
               reason: Optional[str] = None) -> Result:
        """Cancel from any non-terminal state; every outstanding link stops working."""
        contract = self.db.get(Contract, contract_id, populate_existing=True)
        if contract is None:
            return Failure(ErrorKind.NOT_FOUND, "Contract not found")
        if ContractStatus(contract.status) in TERMINAL_STATUSES:
            return Failure(ErrorKind.INVALID_STATE, f"Contract is already {contract.status}")

        previous_status = contract.status
        old_reviewer_token = contract.reviewer_token
        old_signing_token = contract.signing_token
        now = self.clock()
        live = [s for s in ContractStatus if s not in TERMINAL_STATUSES]

        won = self._compare_and_swap(
            contract.id,
            live,
            {
                "status": ContractStatus.CANCELLED.value,
                "reviewer_token": None,
                "reviewer_token_expires_at": None,
                "signing_token": None,
                "token_expires_at": None,
                "cancelled_at": now,
                "updated_at": now,
            },
            reviewer_token=old_reviewer_token,
            signing_token=old_signing_token,
        )
        if not won:
            self.db.rollback()
            return Failure(ErrorKind.INVALID_STATE, "Contract changed while cancelling, please retry")

        self._retire(old_reviewer_token, contract.id, TokenRole.REVIEWER, "revoked")
        self._retire(old_signing_token, contract.id, TokenRole.SIGNER, "revoked")
        self.audit.log_event(
            contract.id,
            AuditEventType.CANCELLED,
            actor=actor,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            document_hash=contract.document_hash,
            metadata={"previous_status": previous_status, "reason": reason},
        )
        self.db.commit()
        contract = self._reload(contract)
        logger.info(f"Contract {contract.contract_number} cancelled by {actor} (was {previous_status})")
        return Success({"status": contract.status, "cancelled_at": format_datetime_to_iso(now)})
