# =====================================================
# FILE: signdesk/services/contract_pdf.py
# Subscription agreement PDF renderer (unsigned and signed)
# =====================================================

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from io import BytesIO
from typing import Any, Dict, Optional
import logging

from PIL import Image as PILImage, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Image, Table, TableStyle
from xml.sax.saxutils import escape

from signdesk.core.config import settings
from signdesk.core.results import RenderError
from signdesk.utils.datetime_helpers import format_date_se, format_datetime_to_iso

logger = logging.getLogger(__name__)

PRIMARY = colors.HexColor("#111827")
SECONDARY = colors.HexColor("#6b7280")
ACCENT = colors.HexColor("#2563eb")
BORDER = colors.HexColor("#e5e7eb")
MUTED = colors.HexColor("#9ca3af")
PANEL = colors.HexColor("#f9fafb")

# Signature pad exports are a few hundred pixels wide
MAX_SIGNATURE_BYTES = 2 * 1024 * 1024
MAX_SIGNATURE_PIXELS = 4_000_000

INTERVAL_LABELS = {
    "monthly": "Monthly",
    "quarterly": "Quarterly",
    "annual": "Annually",
}

SIGNED_FOOTER = "Digitally signed - Simple Electronic Signature (SES) per eIDAS"
UNSIGNED_FOOTER = "UNSIGNED DRAFT"


@dataclass
class ContractPdfParams:
    contract_number: str
    tier: str
    annual_price: Decimal
    currency: str
    billing_interval: str
    vat_rate_pct: Decimal
    contract_start_date: date
    contract_duration_months: int
    signer_name: str
    signer_email: str
    signer_title: Optional[str] = None
    custom_terms: Dict[str, Any] = field(default_factory=dict)
    company_name: Optional[str] = None
    company_org_number: Optional[str] = None
    company_address: Optional[str] = None
    # Signature block (signed version only)
    signed: bool = False
    signature_image: Optional[bytes] = None
    signed_at: Optional[datetime] = None
    signer_ip: Optional[str] = None
    document_hash: Optional[str] = None


def format_currency(amount: Decimal, currency: str) -> str:
    """Swedish grouping: 12 000,00 SEK"""
    quantized = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    grouped = f"{quantized:,.2f}".replace(",", " ").replace(".", ",")
    return f"{grouped} {currency}"


def format_percent(value: Decimal) -> str:
    normalized = Decimal(value).normalize()
    return f"{normalized:f}"


def validate_signature_image(image_bytes: bytes) -> None:
    """
    Raise ValueError unless the bytes are a readable raster image of
    signature size. Dimensions are checked from the header, before any
    pixel data is decoded.
    """
    if not image_bytes:
        raise ValueError("Signature image is empty")
    if len(image_bytes) > MAX_SIGNATURE_BYTES:
        raise ValueError("Signature image is too large")
    try:
        with PILImage.open(BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > MAX_SIGNATURE_PIXELS:
                raise ValueError(f"Signature image is too large ({width}x{height})")
            img.verify()
    except PILImage.DecompressionBombError as e:
        raise ValueError(f"Signature image is too large: {e}")
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValueError(f"Signature image is not a readable image: {e}")


def _styles():
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("title", parent=base["Normal"], fontName="Helvetica-Bold",
                                fontSize=18, leading=22, textColor=PRIMARY),
        "number": ParagraphStyle("number", parent=base["Normal"], fontName="Helvetica",
                                 fontSize=10, textColor=ACCENT),
        "date": ParagraphStyle("date", parent=base["Normal"], fontName="Helvetica",
                               fontSize=9, textColor=SECONDARY, alignment=TA_RIGHT),
        "section": ParagraphStyle("section", parent=base["Normal"], fontName="Helvetica-Bold",
                                  fontSize=11, leading=14, textColor=PRIMARY,
                                  spaceBefore=14, spaceAfter=6),
        "paragraph": ParagraphStyle("paragraph", parent=base["Normal"], fontName="Helvetica",
                                    fontSize=9, leading=13.5, textColor=PRIMARY, spaceAfter=6),
        "label": ParagraphStyle("label", parent=base["Normal"], fontName="Helvetica",
                                fontSize=8, textColor=SECONDARY, spaceAfter=4),
        "name": ParagraphStyle("name", parent=base["Normal"], fontName="Helvetica-Bold",
                               fontSize=10, textColor=PRIMARY, spaceAfter=2),
        "detail": ParagraphStyle("detail", parent=base["Normal"], fontName="Helvetica",
                                 fontSize=8, textColor=SECONDARY, spaceAfter=2),
        "cell_label": ParagraphStyle("cell_label", parent=base["Normal"], fontName="Helvetica",
                                     fontSize=9, textColor=SECONDARY),
        "cell_value": ParagraphStyle("cell_value", parent=base["Normal"], fontName="Helvetica-Bold",
                                     fontSize=9, textColor=PRIMARY),
    }


def _p(text, style) -> Paragraph:
    return Paragraph(escape(str(text)), style)


def _terms_table(rows, styles) -> Table:
    data = [[_p(label, styles["cell_label"]), _p(value, styles["cell_value"])] for label, value in rows]
    table = Table(data, colWidths=[70 * mm, 100 * mm])
    table.setStyle(TableStyle([
        ("LINEBELOW", (0, 0), (-1, -1), 0.5, BORDER),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
    ]))
    return table


def _box(flowables, width) -> Table:
    table = Table([[flowables]], colWidths=[width])
    table.setStyle(TableStyle([
        ("BOX", (0, 0), (-1, -1), 0.5, BORDER),
        ("BACKGROUND", (0, 0), (-1, -1), PANEL),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("TOPPADDING", (0, 0), (-1, -1), 8),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
        ("LEFTPADDING", (0, 0), (-1, -1), 8),
    ]))
    return table


def _side_by_side(left, right) -> Table:
    table = Table([[left, right]], colWidths=[85 * mm, 85 * mm])
    table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
    ]))
    return table


def _subscriber_signature(params: ContractPdfParams, styles):
    block = [_p("SUBSCRIBER", styles["label"])]
    if params.signed and params.signature_image:
        block.append(Image(BytesIO(params.signature_image), width=150, height=60, kind="proportional"))
        block.append(_p(params.signer_name, styles["name"]))
        if params.signer_title:
            block.append(_p(params.signer_title, styles["detail"]))
        block.append(_p(f"Date: {format_datetime_to_iso(params.signed_at) or ''}", styles["detail"]))
        block.append(_p(f"IP: {params.signer_ip or ''}", styles["detail"]))
    else:
        block.append(Spacer(1, 30))
        block.append(_p("Name: ___________________________", styles["detail"]))
        block.append(_p("Title: ___________________________", styles["detail"]))
        block.append(_p("Date: ___________________________", styles["detail"]))
    return block


def _build_story(params: ContractPdfParams):
    styles = _styles()
    vat_amount = Decimal(params.annual_price) * Decimal(params.vat_rate_pct) / Decimal(100)
    total_with_vat = Decimal(params.annual_price) + vat_amount

    header_right = [_p(f"Date: {format_date_se(params.contract_start_date)}", styles["date"])]
    if params.signed and params.signed_at:
        header_right.append(_p(f"Signed: {format_date_se(params.signed_at)}", styles["date"]))

    story = [
        _side_by_side(
            [_p("Subscription Agreement", styles["title"]), _p(params.contract_number, styles["number"])],
            header_right,
        ),
        Spacer(1, 16),
    ]

    # 1. Parties
    provider = [
        _p("SERVICE PROVIDER", styles["label"]),
        _p(settings.PROVIDER_NAME, styles["name"]),
        _p(settings.PROVIDER_DESCRIPTION, styles["detail"]),
    ]
    subscriber = [
        _p("SUBSCRIBER", styles["label"]),
        _p(params.company_name or "N/A", styles["name"]),
    ]
    if params.company_org_number:
        subscriber.append(_p(f"Org. no.: {params.company_org_number}", styles["detail"]))
    if params.company_address:
        subscriber.append(_p(params.company_address, styles["detail"]))
    subscriber.append(_p(f"Contact: {params.signer_name}", styles["detail"]))
    subscriber.append(_p(params.signer_email, styles["detail"]))

    story.append(_p("1. Parties", styles["section"]))
    story.append(_side_by_side(_box(provider, 80 * mm), _box(subscriber, 80 * mm)))

    # 2. Service description
    story.append(_p("2. Service Description", styles["section"]))
    story.append(_p(
        f"The Service Provider grants the Subscriber access to the {settings.PROVIDER_NAME} platform "
        f"under the {params.tier} tier, including all features and services associated with "
        f"this subscription level.",
        styles["paragraph"],
    ))

    # 3. Pricing
    story.append(_p("3. Pricing & Payment", styles["section"]))
    story.append(_terms_table([
        ("Subscription Tier", params.tier),
        ("Annual Price (excl. VAT)", format_currency(params.annual_price, params.currency)),
        (f"VAT ({format_percent(params.vat_rate_pct)}%)", format_currency(vat_amount, params.currency)),
        ("Total (incl. VAT)", format_currency(total_with_vat, params.currency)),
        ("Billing Interval", INTERVAL_LABELS.get(params.billing_interval, params.billing_interval)),
    ], styles))

    # 4. Duration
    story.append(_p("4. Contract Duration", styles["section"]))
    story.append(_terms_table([
        ("Start Date", format_date_se(params.contract_start_date)),
        ("Duration", f"{params.contract_duration_months} months"),
    ], styles))
    story.append(Spacer(1, 6))
    story.append(_p(
        "This agreement automatically renews for successive periods of equal duration unless "
        "either party provides written notice of termination at least 30 days before the end "
        "of the current period.",
        styles["paragraph"],
    ))

    # 5. General terms
    story.append(_p("5. General Terms", styles["section"]))
    for clause in (
        "5.1 Data Processing: The Service Provider processes personal data in accordance with "
        "GDPR and applicable Swedish data protection legislation.",
        "5.2 Termination: Either party may terminate this agreement with 30 days written notice. "
        "In case of material breach, termination is effective immediately upon written notice.",
        "5.3 Governing Law: This agreement is governed by Swedish law. Disputes shall be resolved "
        "by the Swedish courts.",
    ):
        story.append(_p(clause, styles["paragraph"]))

    # 6. Custom terms, in key order so output is stable
    if params.custom_terms:
        story.append(_p("6. Additional Terms", styles["section"]))
        for key in sorted(params.custom_terms):
            story.append(_p(params.custom_terms[key], styles["paragraph"]))

    # Signatures
    provider_signature = [
        _p("SERVICE PROVIDER", styles["label"]),
        _p(settings.PROVIDER_NAME, styles["name"]),
        _p("Authorized Representative", styles["detail"]),
        _p(f"Date: {format_date_se(params.contract_start_date)}", styles["detail"]),
    ]
    story.append(Spacer(1, 24))
    story.append(_side_by_side(
        _box(provider_signature, 80 * mm),
        _box(_subscriber_signature(params, styles), 80 * mm),
    ))
    return story


def _footer(params: ContractPdfParams):
    def draw(canvas, doc):
        canvas.saveState()
        width, _ = A4
        y = 30
        canvas.setStrokeColor(BORDER)
        canvas.setLineWidth(0.5)
        canvas.line(doc.leftMargin, y + 10, width - doc.rightMargin, y + 10)
        canvas.setFont("Helvetica", 7)
        canvas.setFillColor(MUTED)
        canvas.drawString(doc.leftMargin, y, params.contract_number)
        canvas.drawCentredString(width / 2, y, SIGNED_FOOTER if params.signed else UNSIGNED_FOOTER)
        if params.document_hash:
            canvas.drawRightString(width - doc.rightMargin, y, f"SHA-256: {params.document_hash[:16]}...")
        canvas.restoreState()
    return draw


def generate_contract_pdf(params: ContractPdfParams) -> bytes:
    """
    Render the agreement to PDF bytes.

    Output is byte-identical for identical params: the document is built in
    invariant mode (fixed creation date and file id) and every variable part,
    including signing time and IP, comes from params.
    """
    try:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=50,
            rightMargin=50,
            topMargin=50,
            bottomMargin=60,
            title=f"Subscription Agreement {params.contract_number}",
            author=settings.PROVIDER_NAME,
            creator=settings.PROVIDER_NAME,
            invariant=1,
        )
        on_page = _footer(params)
        doc.build(_build_story(params), onFirstPage=on_page, onLaterPages=on_page)
        pdf_bytes = buffer.getvalue()
    except Exception as e:
        logger.error(f"Error rendering contract {params.contract_number}: {str(e)}")
        raise RenderError(f"Failed to render contract PDF: {str(e)}")

    logger.info(f"Rendered {'signed' if params.signed else 'unsigned'} PDF for "
                f"{params.contract_number} ({len(pdf_bytes)} bytes)")
    return pdf_bytes


def params_from_contract(contract, **signature) -> ContractPdfParams:
    """Render parameters for a stored contract; signature fields override the row."""
    company = contract.company
    params = ContractPdfParams(
        contract_number=contract.contract_number,
        tier=contract.tier,
        annual_price=Decimal(contract.annual_price),
        currency=contract.currency,
        billing_interval=contract.billing_interval,
        vat_rate_pct=Decimal(contract.vat_rate_pct),
        contract_start_date=contract.contract_start_date,
        contract_duration_months=contract.contract_duration_months,
        signer_name=contract.signer_name,
        signer_email=contract.signer_email,
        signer_title=contract.signer_title,
        custom_terms=dict(contract.custom_terms or {}),
        company_name=company.company_name if company else None,
        company_org_number=company.org_number if company else None,
        company_address=company.address if company else None,
    )
    for key, value in signature.items():
        setattr(params, key, value)
    return params
