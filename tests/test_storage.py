"""Storage bucket and signed retrieval URLs."""

from urllib.parse import parse_qs, urlparse

import pytest

from signdesk.core.results import StorageError
from signdesk.core.security import sign_path, verify_signed_path
from signdesk.services.storage_service import contract_path, decode_image_payload


class TestStorageService:

    def test_put_and_get_round_trip(self, storage):
        path = storage.upload_contract_pdf(7, "c-1", "unsigned.pdf", b"%PDF-1.4 body")
        assert path == "7/c-1/unsigned.pdf"
        assert storage.exists(path)
        assert storage.get_bytes(path) == b"%PDF-1.4 body"

    def test_paths_are_scoped_to_company_and_contract(self):
        assert contract_path(3, "abc", "signed.pdf") == "3/abc/signed.pdf"
        assert contract_path(None, "abc", "signature.png") == "no-company/abc/signature.png"

    def test_path_traversal_is_refused(self, storage):
        with pytest.raises(StorageError):
            storage.put_bytes("../outside.pdf", b"x")
        assert not storage.exists("../../etc/passwd")

    def test_missing_file_raises_storage_error(self, storage):
        with pytest.raises(StorageError):
            storage.get_bytes("1/none/unsigned.pdf")

    def test_delete(self, storage):
        path = storage.upload_signature_image(1, "c-2", b"png")
        assert storage.delete(path)
        assert not storage.exists(path)
        assert not storage.delete(path)


class TestSignedUrls:

    def test_presigned_url_verifies(self, storage):
        url = storage.presign_get("1/c-1/unsigned.pdf")
        parsed = urlparse(url)
        assert parsed.path == "/api/files/1/c-1/unsigned.pdf"
        query = parse_qs(parsed.query)
        assert verify_signed_path("1/c-1/unsigned.pdf", int(query["expires"][0]), query["signature"][0])

    def test_signature_is_bound_to_path(self):
        params = sign_path("1/c-1/unsigned.pdf", 3600)
        assert not verify_signed_path("1/c-1/signed.pdf", params["expires"], params["signature"])

    def test_expired_url_is_refused(self):
        params = sign_path("1/c-1/unsigned.pdf", 60, now=1_000_000)
        assert verify_signed_path("1/c-1/unsigned.pdf", params["expires"], params["signature"], now=1_000_030)
        assert not verify_signed_path("1/c-1/unsigned.pdf", params["expires"], params["signature"], now=1_000_061)

    def test_tampered_expiry_is_refused(self):
        params = sign_path("1/c-1/unsigned.pdf", 60)
        assert not verify_signed_path("1/c-1/unsigned.pdf", params["expires"] + 3600, params["signature"])


class TestImagePayload:

    def test_data_url_prefix_is_optional(self, signature_png):
        raw = signature_png.split(",", 1)[1]
        assert decode_image_payload(signature_png) == decode_image_payload(raw)

    def test_invalid_base64_raises_value_error(self):
        with pytest.raises(ValueError):
            decode_image_payload("data:image/png;base64,@@not-base64@@")
