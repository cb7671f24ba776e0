"""
HTTP surface: envelope, status mapping, admin auth and rate limiting.
"""

from urllib.parse import parse_qs, urlsplit

import pytest

from signdesk.core.security import create_access_token
from signdesk.models.contract import Contract
from tests.conftest import REVIEWER, png_data_url, png_header


def create_body(company_id, **overrides):
    body = {
        "company_id": company_id,
        "tier": "Professional",
        "annual_price": "12000.00",
        "currency": "sek",
        "billing_interval": "annual",
        "vat_rate_pct": "25",
        "contract_start_date": "2026-01-01",
        "contract_duration_months": 12,
        "custom_terms": {"support": "Priority support"},
        "signer_name": "Anna Lindqvist",
        "signer_email": "anna@kundbolaget.se",
        "signer_title": "CEO",
    }
    body.update(overrides)
    return body


def token_for(db, contract_id, column):
    return getattr(db.get(Contract, contract_id, populate_existing=True), column)


@pytest.fixture
def created(client, admin_headers, company):
    response = client.post("/api/contracts", json=create_body(company.id), headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.fixture
def sent(client, admin_headers, created):
    response = client.post(f"/api/contracts/{created['id']}/send", headers=admin_headers)
    assert response.status_code == 200, response.text
    return created


def sign_body(signature_png):
    return {"signer_name": "Anna Lindqvist", "signer_title": "CEO", "signature_image": signature_png}


class TestAdminAuth:

    def test_missing_token_is_401(self, client):
        response = client.get("/api/contracts")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}
        assert response.headers["www-authenticate"] == "Bearer"

    def test_garbage_token_is_401(self, client):
        response = client.get("/api/contracts", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid or expired token"

    def test_non_admin_token_is_403(self, client):
        token = create_access_token({"sub": "user@kundbolaget.se", "role": "user"})
        response = client.get("/api/contracts", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "Administrator access required"}

    def test_public_routes_need_no_token(self, client):
        response = client.get(f"/api/contracts/sign/{'a' * 64}")
        assert response.status_code == 404


class TestAdminContracts:

    def test_create_returns_draft_envelope(self, created):
        assert created["status"] == "draft"
        assert created["currency"] == "SEK"
        assert created["routing"] == "direct"
        assert created["contract_number"].startswith("SS-")
        assert len(created["document_hash"]) == 64
        assert "signing_token" not in created and "reviewer_token" not in created

    def test_create_rejects_invalid_payload(self, client, admin_headers, company):
        response = client.post("/api/contracts", json=create_body(company.id, signer_email="not-an-email"),
                               headers=admin_headers)
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "signer_email" in body["error"]

    def test_create_rejects_unknown_company(self, client, admin_headers):
        response = client.post("/api/contracts", json=create_body(9999), headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Company 9999 does not exist"

    def test_list_and_filter(self, client, admin_headers, created, company):
        client.post("/api/contracts", json=create_body(company.id, **REVIEWER), headers=admin_headers)
        client.post(f"/api/contracts/{created['id']}/send", headers=admin_headers)

        everything = client.get("/api/contracts", headers=admin_headers).json()["data"]
        drafts = client.get("/api/contracts?status=draft", headers=admin_headers).json()["data"]

        assert everything["total"] == 2
        assert drafts["total"] == 1
        assert drafts["contracts"][0]["routing"] == "with_review"

    def test_get_includes_audit_trail(self, client, admin_headers, sent):
        response = client.get(f"/api/contracts/{sent['id']}", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "sent"
        assert [e["event_type"] for e in data["audit_trail"]] == ["created", "sent"]
        assert data["audit_trail"][1]["ip_address"] == "testclient"

    def test_get_unknown_contract(self, client, admin_headers):
        response = client.get("/api/contracts/does-not-exist", headers=admin_headers)
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Contract not found"}

    def test_update_draft_regenerates_hash(self, client, admin_headers, created):
        response = client.put(f"/api/contracts/{created['id']}", json={"annual_price": "15000"},
                              headers=admin_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["annual_price"] == 15000.0
        assert data["document_hash"] != created["document_hash"]

    @pytest.mark.parametrize("field", [
        "signer_name", "signer_email", "tier", "annual_price", "currency", "billing_interval",
        "vat_rate_pct", "contract_start_date", "contract_duration_months", "custom_terms",
    ])
    def test_update_cannot_null_required_field(self, client, admin_headers, created, field):
        response = client.put(f"/api/contracts/{created['id']}", json={field: None}, headers=admin_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert field in body["error"]
        after = client.get(f"/api/contracts/{created['id']}", headers=admin_headers).json()["data"]
        assert after[field] == created[field]
        assert after["document_hash"] == created["document_hash"]

    def test_update_can_clear_reviewer(self, client, admin_headers, company):
        draft = client.post("/api/contracts", json=create_body(company.id, **REVIEWER),
                            headers=admin_headers).json()["data"]

        response = client.put(f"/api/contracts/{draft['id']}",
                              json={"reviewer_name": None, "reviewer_email": None, "reviewer_title": None},
                              headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["data"]["routing"] == "direct"
        assert response.json()["data"]["reviewer_email"] is None

    def test_update_after_send_is_refused(self, client, admin_headers, sent):
        response = client.put(f"/api/contracts/{sent['id']}", json={"tier": "Enterprise"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Only draft contracts can be edited"

    def test_cancel_with_and_without_reason(self, client, admin_headers, sent):
        first = client.post(f"/api/contracts/{sent['id']}/cancel", json={"reason": "Duplicate"},
                            headers=admin_headers)
        again = client.post(f"/api/contracts/{sent['id']}/cancel", headers=admin_headers)

        assert first.status_code == 200
        assert first.json()["data"]["status"] == "cancelled"
        assert again.status_code == 400


class TestSigningFlowOverHttp:

    def test_review_then_sign(self, client, admin_headers, company, db, gateway, signature_png):
        created = client.post("/api/contracts", json=create_body(company.id, **REVIEWER),
                              headers=admin_headers).json()["data"]
        send = client.post(f"/api/contracts/{created['id']}/send", headers=admin_headers)
        assert send.json()["data"]["status"] == "sent_to_reviewer"

        reviewer_token = token_for(db, created["id"], "reviewer_token")
        review = client.get(f"/api/contracts/review/{reviewer_token}")
        assert review.status_code == 200
        assert review.json()["data"]["status"] == "reviewed"

        approve = client.post(f"/api/contracts/review/{reviewer_token}")
        assert approve.status_code == 200
        assert approve.json()["data"] == {
            "status": "sent", "forwarded_to": "anna@kundbolaget.se", "email_sent": True,
        }

        signing_token = token_for(db, created["id"], "signing_token")
        assert client.get(f"/api/contracts/sign/{signing_token}").json()["data"]["status"] == "viewed"

        signed = client.post(f"/api/contracts/sign/{signing_token}", json=sign_body(signature_png),
                             headers={"User-Agent": "Mozilla/5.0", "X-Forwarded-For": "198.51.100.20, 10.0.0.1"})
        assert signed.status_code == 200
        assert signed.json()["data"]["status"] == "signed"

        trail = client.get(f"/api/contracts/{created['id']}", headers=admin_headers).json()["data"]["audit_trail"]
        signed_event = trail[-1]
        assert signed_event["event_type"] == "signed"
        assert signed_event["ip_address"] == "198.51.100.20"
        assert signed_event["user_agent"] == "Mozilla/5.0"

    def test_replayed_signature_is_410(self, client, db, sent, signature_png):
        token = token_for(db, sent["id"], "signing_token")
        assert client.post(f"/api/contracts/sign/{token}", json=sign_body(signature_png)).status_code == 200

        replay = client.post(f"/api/contracts/sign/{token}", json=sign_body(signature_png))

        assert replay.status_code == 410
        assert replay.json() == {"success": False, "error": "This agreement has already been signed"}

    def test_short_signature_image_is_400(self, client, db, sent):
        token = token_for(db, sent["id"], "signing_token")
        response = client.post(f"/api/contracts/sign/{token}",
                               json={"signer_name": "Anna", "signature_image": "data:image/png;base64,AAAA"})
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert token_for(db, sent["id"], "status") == "sent"

    def test_oversized_signature_raster_is_400(self, client, db, sent):
        token = token_for(db, sent["id"], "signing_token")

        response = client.post(f"/api/contracts/sign/{token}", json={
            "signer_name": "Anna Lindqvist", "signature_image": png_data_url(png_header(20000, 20000)),
        })

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "too large" in response.json()["error"]
        assert token_for(db, sent["id"], "status") == "sent"
        assert token_for(db, sent["id"], "signing_token") == token

    def test_unknown_token_is_404(self, client):
        response = client.get(f"/api/contracts/review/{'0' * 64}")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Invalid or expired link"}

    def test_send_with_unconfigured_mail_is_500(self, app, client, admin_headers, created, unconfigured_mail):
        from signdesk.core.dependencies import get_mail_settings
        app.dependency_overrides[get_mail_settings] = lambda: unconfigured_mail

        response = client.post(f"/api/contracts/{created['id']}/send", headers=admin_headers)

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Email not configured"}


class TestDocuments:

    def test_download_and_verify(self, client, admin_headers, created):
        download = client.get(f"/api/contracts/{created['id']}/pdf", headers=admin_headers)
        assert download.status_code == 200
        assert download.headers["content-type"] == "application/pdf"
        assert download.content.startswith(b"%PDF")

        verify = client.post(
            f"/api/contracts/{created['id']}/verify",
            files={"file": ("agreement.pdf", download.content, "application/pdf")},
            headers=admin_headers,
        )
        data = verify.json()["data"]
        assert data["verified"] is True
        assert data["matches"] == "unsigned"
        assert data["computed_hash"] == created["document_hash"]

    def test_signed_pdf_missing_before_signing(self, client, admin_headers, created):
        response = client.get(f"/api/contracts/{created['id']}/pdf?kind=signed", headers=admin_headers)
        assert response.status_code == 404

    def test_tampered_document_does_not_verify(self, client, admin_headers, created):
        response = client.post(
            f"/api/contracts/{created['id']}/verify",
            files={"file": ("agreement.pdf", b"%PDF-1.4 not the agreement", "application/pdf")},
            headers=admin_headers,
        )
        assert response.json()["data"]["verified"] is False

    def test_presigned_pdf_url(self, client, db, sent):
        token = token_for(db, sent["id"], "signing_token")
        pdf_url = client.get(f"/api/contracts/sign/{token}").json()["data"]["pdf_url"]
        parts = urlsplit(pdf_url)

        ok = client.get(f"{parts.path}?{parts.query}")
        query = parse_qs(parts.query)
        tampered = client.get(parts.path, params={"expires": query["expires"][0], "signature": "0" * 64})

        assert ok.status_code == 200
        assert ok.content.startswith(b"%PDF")
        assert tampered.status_code == 403
        assert tampered.json()["error"] == "Invalid or expired link"


class TestRateLimiting:

    def test_eleventh_view_is_throttled(self, client, db, sent):
        token = token_for(db, sent["id"], "signing_token")
        responses = [client.get(f"/api/contracts/sign/{token}") for _ in range(11)]

        assert all(r.status_code == 200 for r in responses[:10])
        assert responses[10].status_code == 429
        assert responses[10].json() == {"success": False, "error": "Too many requests. Please try again later."}
        assert responses[10].headers["retry-after"] == "60"

    def test_limits_are_per_client_ip(self, client, db, sent):
        token = token_for(db, sent["id"], "signing_token")
        for _ in range(10):
            client.get(f"/api/contracts/sign/{token}", headers={"X-Forwarded-For": "192.0.2.1"})

        other = client.get(f"/api/contracts/sign/{token}", headers={"X-Forwarded-For": "192.0.2.2"})
        assert other.status_code == 200

    def test_exhausted_views_leave_signing_open(self, client, db, sent, signature_png):
        token = token_for(db, sent["id"], "signing_token")
        views = [client.get(f"/api/contracts/sign/{token}") for _ in range(11)]
        assert views[-1].status_code == 429

        signed = client.post(f"/api/contracts/sign/{token}", json=sign_body(signature_png))

        assert signed.status_code == 200
        assert signed.json()["data"]["status"] == "signed"

    def test_fourth_signature_in_window_is_throttled_without_effect(self, client, admin_headers, db, sent,
                                                                   signature_png):
        token = token_for(db, sent["id"], "signing_token")
        bad = {"signer_name": "Anna", "signature_image": "data:image/png;base64,AAAA"}
        assert [client.post(f"/api/contracts/sign/{token}", json=bad).status_code for _ in range(3)] == [400] * 3
        trail_before = client.get(f"/api/contracts/{sent['id']}", headers=admin_headers).json()["data"]["audit_trail"]

        throttled = client.post(f"/api/contracts/sign/{token}", json=sign_body(signature_png))

        assert throttled.status_code == 429
        assert throttled.json()["error"] == "Too many requests. Please try again later."
        after = client.get(f"/api/contracts/{sent['id']}", headers=admin_headers).json()["data"]
        assert after["status"] == "sent"
        assert after["signed_at"] is None
        assert after["audit_trail"] == trail_before
        assert "signed" not in [e["event_type"] for e in after["audit_trail"]]
        assert token_for(db, sent["id"], "signing_token") == token

    def test_reviewer_traffic_does_not_spend_signer_budget(self, client, admin_headers, company, db, sent,
                                                          signature_png):
        draft = client.post("/api/contracts", json=create_body(company.id, **REVIEWER),
                            headers=admin_headers).json()["data"]
        client.post(f"/api/contracts/{draft['id']}/send", headers=admin_headers)
        reviewer_token = token_for(db, draft["id"], "reviewer_token")

        review_views = [client.get(f"/api/contracts/review/{reviewer_token}") for _ in range(11)]
        approvals = [client.post(f"/api/contracts/review/{reviewer_token}") for _ in range(4)]
        assert review_views[-1].status_code == 429
        assert approvals[0].status_code == 200
        assert approvals[-1].status_code == 429

        signing_token = token_for(db, sent["id"], "signing_token")
        assert client.get(f"/api/contracts/sign/{signing_token}").status_code == 200
        signed = client.post(f"/api/contracts/sign/{signing_token}", json=sign_body(signature_png))
        assert signed.status_code == 200


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.json()["data"]["status"] == "running"
