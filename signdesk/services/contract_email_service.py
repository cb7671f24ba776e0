# =====================================================
# FILE: signdesk/services/contract_email_service.py
# Contract workflow email notifications
# =====================================================

from datetime import datetime
from html import escape
from typing import List, Optional, Tuple
import logging

from signdesk.core.email import MailSettings, NotificationGateway
from signdesk.core.results import NotificationError
from signdesk.models.contract import Contract
from signdesk.services.contract_pdf import format_currency
from signdesk.utils.datetime_helpers import format_date_se, format_datetime_to_iso

logger = logging.getLogger(__name__)

FONT_STACK = "-apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif"


def _company_name(contract: Contract) -> str:
    return contract.company.company_name if contract.company else "N/A"


def _summary_table(rows: List[Tuple[str, str]]) -> str:
    cells = "".join(
        f'<tr><td style="padding: 4px 0; color: #6b7280;">{escape(label)}</td>'
        f'<td style="padding: 4px 0; font-weight: 600;">{escape(str(value))}</td></tr>'
        for label, value in rows
    )
    return f"""
        <div style="background: #f9fafb; border-radius: 8px; padding: 20px; margin: 24px 0;">
          <table style="width: 100%; font-size: 14px; color: #111827;">{cells}</table>
        </div>"""


def _button(url: str, label: str) -> str:
    return f"""
        <div style="text-align: center; margin: 32px 0;">
          <a href="{escape(url)}" style="display: inline-block; background: #111827; color: #ffffff; padding: 12px 32px; border-radius: 8px; text-decoration: none; font-weight: 600; font-size: 14px;">
            {escape(label)}
          </a>
        </div>"""


def _wrap(title: str, body: str) -> str:
    return f"""
      <div style="font-family: {FONT_STACK}; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #111827; margin-bottom: 8px;">{escape(title)}</h2>
        {body}
      </div>"""


def _expiry_note(expires_at: datetime, extra: str = "") -> str:
    return (f'<p style="color: #9ca3af; font-size: 12px; text-align: center;">'
            f'This link expires on {format_date_se(expires_at)}.{extra}</p>')


class ContractEmailService:
    """Renders and dispatches the lifecycle emails"""

    def __init__(self, gateway: NotificationGateway):
        self.gateway = gateway

    async def send_review_request(self, mail: MailSettings, contract: Contract,
                                  review_url: str, expires_at: datetime) -> None:
        """Email to the reviewer when a draft is sent for review"""
        subject = f"Agreement Ready for Review — {contract.contract_number}"
        body = (
            f'<p style="color: #6b7280; font-size: 14px;">Hello {escape(contract.reviewer_name or contract.reviewer_email)}, '
            f'agreement {escape(contract.contract_number)} has been prepared for '
            f'{escape(contract.signer_name)}. Please review it and approve it for signing.</p>'
            + _summary_table([
                ("Organization", _company_name(contract)),
                ("Tier", contract.tier),
                ("Annual Price", format_currency(contract.annual_price, contract.currency)),
                ("Signer", f"{contract.signer_name} ({contract.signer_email})"),
            ])
            + _button(review_url, "Review Agreement")
            + _expiry_note(expires_at, "<br/>If you did not expect this email, please disregard it.")
        )
        await self.gateway.send(mail, contract.reviewer_email, subject, _wrap("Subscription Agreement", body))
        logger.info(f"Review request for {contract.contract_number} sent to {contract.reviewer_email}")

    async def send_signing_request(self, mail: MailSettings, contract: Contract, sign_url: str,
                                   expires_at: datetime, reviewed_by: Optional[str] = None) -> None:
        """Email to the signer, either directly or after reviewer approval"""
        subject = f"Agreement Ready for Signing — {contract.contract_number}"
        rows = [
            ("Organization", _company_name(contract)),
            ("Tier", contract.tier),
            ("Annual Price", format_currency(contract.annual_price, contract.currency)),
        ]
        if reviewed_by:
            intro = (f"Agreement {escape(contract.contract_number)} has been reviewed and approved. "
                     f"It is now ready for your signature.")
            rows.append(("Reviewed by", reviewed_by))
        else:
            intro = f"Agreement {escape(contract.contract_number)} is ready for your review and signature."
            rows.append(("Duration", f"{contract.contract_duration_months} months"))

        body = (
            f'<p style="color: #6b7280; font-size: 14px;">{intro}</p>'
            + _summary_table(rows)
            + _button(sign_url, "Review and Sign Agreement")
            + _expiry_note(expires_at, "<br/>If you did not expect this email, please disregard it.")
        )
        await self.gateway.send(mail, contract.signer_email, subject, _wrap("Subscription Agreement", body))
        logger.info(f"Signing request for {contract.contract_number} sent to {contract.signer_email}")

    async def send_signed_confirmation(self, mail: MailSettings, contract: Contract) -> None:
        """Confirmation to the signer"""
        subject = f"Agreement Signed — {contract.contract_number}"
        body = (
            f'<p style="color: #6b7280;">Your subscription agreement '
            f'<strong>{escape(contract.contract_number)}</strong> has been signed.</p>'
            f'<p style="color: #6b7280;">A copy of the signed agreement will be provided by the service administrator.</p>'
            f'<p style="color: #9ca3af; font-size: 12px; margin-top: 24px;">'
            f'Document hash: {escape((contract.signed_document_hash or "")[:16])}...</p>'
        )
        await self.gateway.send(mail, contract.signer_email, subject, _wrap("Agreement Signed Successfully", body))

    async def send_owner_signed_notice(self, mail: MailSettings, contract: Contract, signer_ip: str) -> None:
        """Notice to the owning administrator"""
        if not mail.owner_email:
            return
        subject = f"Contract Signed: {contract.contract_number}"
        body = (
            f'<p style="color: #6b7280;"><strong>{escape(contract.signer_name)}</strong> '
            f'({escape(contract.signer_email)}) has signed contract '
            f'<strong>{escape(contract.contract_number)}</strong>.</p>'
            f'<p style="color: #6b7280;">IP: {escape(signer_ip or "unknown")} | '
            f'Time: {format_datetime_to_iso(contract.signed_at)}</p>'
            f'<p style="color: #6b7280;">View the signed contract in the admin panel.</p>'
        )
        await self.gateway.send(mail, mail.owner_email, subject, _wrap("Contract Signed", body))

    async def send_signed_notifications(self, mail: MailSettings, contract: Contract, signer_ip: str) -> bool:
        """
        Both post-signing emails. Failures are logged and reported, never raised:
        the signature is already committed.
        """
        delivered = True
        for send in (
            lambda: self.send_signed_confirmation(mail, contract),
            lambda: self.send_owner_signed_notice(mail, contract, signer_ip),
        ):
            try:
                await send()
            except NotificationError as e:
                delivered = False
                logger.error(f"Post-signing email for {contract.contract_number} failed: {e}")
        return delivered
