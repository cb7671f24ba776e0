"""
Shared fixtures: a throwaway SQLite file per test, a temporary storage
bucket, a recording mail gateway and a TestClient wired to all of them.
"""

import asyncio
import base64
import struct
import zlib
from dataclasses import replace
from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw
from sqlalchemy.orm import sessionmaker

from signdesk.core import rate_limit
from signdesk.core.database import build_engine, get_db, init_db
from signdesk.core.dependencies import (
    get_email_service, get_mail_settings, get_storage
)
from signdesk.core.email import MailSettings, NotificationGateway
from signdesk.core.results import NotificationError
from signdesk.core.security import create_admin_token
from signdesk.models.company import Company
from signdesk.services.contract_email_service import ContractEmailService
from signdesk.services.contract_service import ContractService
from signdesk.services.lifecycle_engine import ClientInfo, LifecycleEngine
from signdesk.services.storage_service import StorageService

ADMIN_EMAIL = "admin@signdesk.se"
BASE_URL = "http://testserver"


class RecordingGateway(NotificationGateway):
    """Captures outgoing mail instead of talking to SMTP"""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, mail, to, subject, html):
        if self.fail:
            raise NotificationError("SMTP unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})

    def recipients(self):
        return [m["to"] for m in self.sent]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    rate_limit.reset()
    yield
    rate_limit.reset()


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'signdesk-test.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage(tmp_path):
    return StorageService(root=str(tmp_path / "bucket"), base_url=BASE_URL, url_ttl_seconds=3600)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def emails(gateway):
    return ContractEmailService(gateway)


@pytest.fixture
def mail_settings():
    return MailSettings(
        server=None,
        port=587,
        username="",
        password="",
        from_email="noreply@signdesk.se",
        from_name="SignDesk",
        starttls=False,
        ssl_tls=False,
        suppress_send=True,
        owner_email="owner@signdesk.se",
    )


@pytest.fixture
def unconfigured_mail(mail_settings):
    return replace(mail_settings, from_email=None)


@pytest.fixture
def client_info():
    return ClientInfo(ip_address="203.0.113.7", user_agent="pytest-browser/1.0")


@pytest.fixture
def make_engine(db, storage, emails, mail_settings):
    def factory(session=None, mail=None, clock=None):
        kwargs = {"base_url": BASE_URL}
        if clock is not None:
            kwargs["clock"] = clock
        return LifecycleEngine(session or db, storage, emails, mail or mail_settings, **kwargs)
    return factory


@pytest.fixture
def lifecycle(make_engine):
    return make_engine()


@pytest.fixture
def company(db):
    company = Company(company_name="Kundbolaget AB", org_number="556677-8899",
                      address="Storgatan 1, 111 22 Stockholm", email="info@kundbolaget.se")
    db.add(company)
    db.commit()
    return company


def contract_payload(**overrides):
    data = {
        "company_id": None,
        "tier": "Professional",
        "annual_price": Decimal("12000.00"),
        "currency": "SEK",
        "billing_interval": "annual",
        "vat_rate_pct": Decimal("25"),
        "contract_start_date": date(2026, 1, 1),
        "contract_duration_months": 12,
        "custom_terms": {"support": "Priority support with a four hour response time."},
        "signer_name": "Anna Lindqvist",
        "signer_email": "anna@kundbolaget.se",
        "signer_title": "CEO",
    }
    data.update(overrides)
    return data


REVIEWER = {
    "reviewer_name": "Erik Berg",
    "reviewer_email": "erik@kundbolaget.se",
    "reviewer_title": "Legal Counsel",
}


@pytest.fixture
def create_contract(db, storage, company):
    """Create a draft through the admin service and return its id"""
    def factory(with_reviewer=False, **overrides):
        data = contract_payload(company_id=company.id, **overrides)
        if with_reviewer:
            data.update(REVIEWER)
        result = ContractService(db, storage).create(data, actor=ADMIN_EMAIL, ip_address="198.51.100.1")
        assert result.ok, result
        return result.data["id"]
    return factory


@pytest.fixture
def signature_png():
    """Base64 data URL of a small hand-drawn looking PNG"""
    image = Image.new("RGBA", (300, 100), (255, 255, 255, 0))
    draw = ImageDraw.Draw(image)
    draw.line([(10, 70), (60, 20), (110, 80), (160, 25), (210, 75), (280, 30)], fill=(17, 24, 39, 255), width=4)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return png_data_url(buffer.getvalue())


def png_header(width, height):
    """
    A 1-bit PNG that declares `width` x `height` but carries an empty IDAT.
    Pillow reads the size from IHDR without decoding, so huge dimensions
    cost nothing to build.
    """
    def chunk(kind, data):
        crc = zlib.crc32(kind + data) & 0xFFFFFFFF
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", crc)

    ihdr = struct.pack(">IIBBBBB", width, height, 1, 0, 0, 0, 0)
    return (b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr)
            + chunk(b"IDAT", zlib.compress(b"")) + chunk(b"IEND", b""))


def png_data_url(image_bytes):
    return "data:image/png;base64," + base64.b64encode(image_bytes).decode("ascii")


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_admin_token(ADMIN_EMAIL)}"}


@pytest.fixture
def app(session_factory, storage, emails, mail_settings):
    from signdesk.main import create_app

    application = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_storage] = lambda: storage
    application.dependency_overrides[get_email_service] = lambda: emails
    application.dependency_overrides[get_mail_settings] = lambda: mail_settings
    return application


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)
