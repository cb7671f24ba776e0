"""Persistence guards: legal status/token matrix and immutable audit rows."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from signdesk.core.results import ContractStateError
from signdesk.models.audit import AuditEventType, AuditImmutabilityError, ContractAuditEvent
from signdesk.models.contract import Contract, ContractStatus, assert_legal_state
from signdesk.utils.datetime_helpers import utcnow

TOKEN_A = "a" * 64
TOKEN_B = "b" * 64


def build_contract(**overrides):
    fields = dict(
        contract_number="SS-2026-900",
        tier="Starter",
        annual_price=Decimal("6000"),
        currency="SEK",
        billing_interval="annual",
        vat_rate_pct=Decimal("25"),
        contract_start_date=date(2026, 1, 1),
        contract_duration_months=12,
        custom_terms={},
        signer_name="Anna Lindqvist",
        signer_email="anna@kundbolaget.se",
        status=ContractStatus.DRAFT.value,
        document_hash="1" * 64,
    )
    fields.update(overrides)
    return Contract(**fields)


class TestLegalStateMatrix:

    def test_draft_without_tokens_is_legal(self):
        assert_legal_state(build_contract())

    def test_review_phase_requires_reviewer_token_only(self):
        assert_legal_state(build_contract(status="sent_to_reviewer", reviewer_token=TOKEN_A))
        assert_legal_state(build_contract(status="reviewed", reviewer_token=TOKEN_A))
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="sent_to_reviewer"))
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="reviewed", signing_token=TOKEN_A))

    def test_signing_phase_requires_signing_token_only(self):
        assert_legal_state(build_contract(status="sent", signing_token=TOKEN_A))
        assert_legal_state(build_contract(status="viewed", signing_token=TOKEN_A))
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="viewed"))

    def test_both_tokens_never_coexist(self):
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="sent", signing_token=TOKEN_A, reviewer_token=TOKEN_B))

    def test_signed_has_no_token_and_a_distinct_hash(self):
        assert_legal_state(build_contract(status="signed", signed_document_hash="2" * 64))
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="signed", signed_document_hash="2" * 64, signing_token=TOKEN_A))
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="signed"))
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="signed", signed_document_hash="1" * 64))

    def test_signed_hash_only_when_signed(self):
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="viewed", signing_token=TOKEN_A, signed_document_hash="2" * 64))

    def test_expired_keeps_its_token(self):
        assert_legal_state(build_contract(status="expired", signing_token=TOKEN_A))

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ContractStateError):
            assert_legal_state(build_contract(status="archived"))


class TestFlushValidation:

    def test_illegal_row_is_never_persisted(self, db):
        db.add(build_contract(status="signed", signing_token=TOKEN_A, signed_document_hash="2" * 64))
        with pytest.raises(ContractStateError):
            db.commit()
        db.rollback()
        assert db.query(Contract).count() == 0

    def test_illegal_update_is_refused(self, db):
        contract = build_contract()
        db.add(contract)
        db.commit()

        contract.status = ContractStatus.SENT.value
        with pytest.raises(ContractStateError):
            db.commit()
        db.rollback()
        db.refresh(contract)
        assert contract.status == ContractStatus.DRAFT.value


class TestAuditImmutability:

    def _event(self, db):
        contract = build_contract()
        db.add(contract)
        db.flush()
        event = ContractAuditEvent(
            contract_id=contract.id,
            event_type=AuditEventType.CREATED.value,
            actor="admin@signdesk.se",
            created_at=utcnow(),
        )
        db.add(event)
        db.commit()
        return event

    def test_update_is_refused(self, db):
        event = self._event(db)
        event.actor = "someone-else@signdesk.se"
        with pytest.raises(AuditImmutabilityError):
            db.commit()
        db.rollback()
        db.refresh(event)
        assert event.actor == "admin@signdesk.se"

    def test_delete_is_refused(self, db):
        event = self._event(db)
        db.delete(event)
        with pytest.raises(AuditImmutabilityError):
            db.commit()
        db.rollback()
        assert db.query(ContractAuditEvent).count() == 1

    def test_created_at_defaults(self, db):
        event = self._event(db)
        assert utcnow() - event.created_at < timedelta(minutes=1)
