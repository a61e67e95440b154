"""
Invoice status email templates
Plain-text body plus an MJML layout compiled to responsive HTML
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from html import unescape
from typing import Optional, Union

from mjml import mjml_to_html

from . import config
from .domain.status.transitions import EntityKind, InvoiceStatus, parse_status
from .utils.sanitization import sanitize_text

logger = logging.getLogger(__name__)

# App theme colors - Slate color scheme
THEME = {
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#333333",
    "text_muted": "#666666",
    "border": "#eeeeee",
}

# Per-status accent colors for the invoice details panel
STATUS_STYLES: dict[InvoiceStatus, dict[str, str]] = {
    InvoiceStatus.DRAFT: {"color": "#4b5563", "background": "#f3f4f6"},
    InvoiceStatus.PENDING: {"color": "#2563eb", "background": "#dbeafe"},
    InvoiceStatus.OVERDUE: {"color": "#dc2626", "background": "#fee2e2"},
    InvoiceStatus.PAID: {"color": "#16a34a", "background": "#dcfce7"},
    InvoiceStatus.CANCELLED: {"color": "#4b5563", "background": "#f3f4f6"},
}
DEFAULT_STATUS_STYLE = {"color": "#4b5563", "background": "#f3f4f6"}


@dataclass(frozen=True)
class EmailBranding:
    """Company and bank details injected into every rendered email"""

    company_name: str
    company_email: str
    company_phone: str
    company_logo: Optional[str] = None
    bank_name: str = "Example Bank"
    bank_account_name: str = "Business Solution"
    bank_account_number: str = "XXXX-XXXX-XXXX"

    @classmethod
    def from_config(cls) -> "EmailBranding":
        return cls(
            company_name=config.COMPANY_NAME,
            company_email=config.COMPANY_EMAIL,
            company_phone=config.COMPANY_PHONE,
            company_logo=config.COMPANY_LOGO,
            bank_name=config.BANK_NAME,
            bank_account_name=config.BANK_ACCOUNT_NAME,
            bank_account_number=config.BANK_ACCOUNT_NUMBER,
        )


@dataclass(frozen=True)
class EmailRenderContext:
    entity_number: str
    status: Union[InvoiceStatus, str]
    customer_name: str
    total_amount: float
    due_date: Optional[date]
    company_name: str


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    text: str
    html: str


def format_currency(amount: float) -> str:
    """1234.56 -> $1,234.56"""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_long_date(value: Union[date, datetime]) -> str:
    """2024-12-31 -> Tuesday, December 31, 2024"""
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def status_label(status: Union[InvoiceStatus, str]) -> str:
    """PENDING -> Pending"""
    raw = getattr(status, "value", status) or ""
    return raw[:1].upper() + raw[1:].lower()


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        if result.errors:
            logger.warning(f"MJML compilation warnings: {result.errors}")
        return result.html
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise Exception(f"Failed to compile MJML template: {str(e)}") from e


def _status_copy(status: Optional[InvoiceStatus], invoice_number: str, due_date) -> tuple[str, str]:
    """Return (status message, call to action) for the four customer-facing statuses"""
    if status is InvoiceStatus.PENDING:
        message = (
            f"We have issued invoice #{invoice_number} for your recent purchase. "
            "Please process the payment before the due date to maintain your good standing."
        )
        if due_date:
            action = (
                f"The payment is due by {format_long_date(due_date)}. "
                "Early payment is appreciated."
            )
        else:
            action = "Please process the payment at your earliest convenience."
        return message, action
    if status is InvoiceStatus.OVERDUE:
        return (
            f"This is a reminder that invoice #{invoice_number} is past its due date "
            "and requires immediate attention.",
            "To avoid any service interruptions, please process the payment as soon as possible. "
            "If you have already made the payment, please disregard this notice and provide us "
            "with the payment details.",
        )
    if status is InvoiceStatus.PAID:
        return (
            f"We have received your payment for invoice #{invoice_number}. "
            "Thank you for your prompt payment.",
            "Your account has been credited, and this invoice is now marked as paid. "
            "We appreciate your business.",
        )
    if status is InvoiceStatus.CANCELLED:
        return (
            f"Invoice #{invoice_number} has been cancelled as requested.",
            "No further action is required regarding this invoice. "
            "Please contact us if you have any questions.",
        )
    return "", ""


def _payment_reference(invoice_number: str) -> str:
    return invoice_number if invoice_number.startswith("INV-") else f"INV-{invoice_number}"


def _payment_instructions_section(
    status: Optional[InvoiceStatus], invoice_number: str, branding: EmailBranding
) -> str:
    """Bank details block, only for invoices that still need paying"""
    if status is InvoiceStatus.PENDING:
        heading, heading_color, background = "Payment Instructions", THEME["text_primary"], "#f8fafc"
    elif status is InvoiceStatus.OVERDUE:
        heading, heading_color, background = "Urgent Payment Required", "#991b1b", "#fee2e2"
    else:
        return ""

    return f"""
        <mj-section background-color="{THEME['card_bg']}" padding="0 40px 20px 40px">
          <mj-column background-color="{background}" border-radius="5px" padding="15px">
            <mj-text font-size="16px" font-weight="700" color="{heading_color}" padding="0 0 8px 0">
              {heading}
            </mj-text>
            <mj-text padding="0">
              Bank: {branding.bank_name}<br/>
              Account Name: {branding.bank_account_name}<br/>
              Account Number: {branding.bank_account_number}<br/>
              Reference: {_payment_reference(invoice_number)}
            </mj-text>
          </mj-column>
        </mj-section>
    """


def invoice_status_text_template(context: EmailRenderContext, branding: EmailBranding) -> str:
    status = parse_status(EntityKind.INVOICE, context.status)
    message, action = _status_copy(status, context.entity_number, context.due_date)
    raw_status = getattr(context.status, "value", context.status)

    lines = [
        f"Dear {context.customer_name},",
        "",
        message,
        "",
        "Invoice Details:",
        f"- Invoice Number: {context.entity_number}",
        f"- Status: {raw_status}",
        f"- Total Amount: {format_currency(context.total_amount)}",
    ]
    if context.due_date:
        lines.append(f"- Due Date: {format_long_date(context.due_date)}")
    lines += [
        "",
        action,
        "",
    ]
    if status in (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE):
        lines += [
            "Payment Instructions:" if status is InvoiceStatus.PENDING else "Urgent Payment Required:",
            f"- Bank: {branding.bank_name}",
            f"- Account Name: {branding.bank_account_name}",
            f"- Account Number: {branding.bank_account_number}",
            f"- Reference: {_payment_reference(context.entity_number)}",
            "",
        ]
    lines += [
        "If you have any questions or concerns, please don't hesitate to contact our finance department.",
        "",
        "Best regards,",
        context.company_name,
        branding.company_email,
        branding.company_phone,
    ]
    return "\n".join(lines) + "\n"


def invoice_status_mjml_template(context: EmailRenderContext, branding: EmailBranding) -> str:
    status = parse_status(EntityKind.INVOICE, context.status)
    message, action = _status_copy(status, context.entity_number, context.due_date)
    style = STATUS_STYLES.get(status, DEFAULT_STATUS_STYLE) if status else DEFAULT_STATUS_STYLE
    raw_status = getattr(context.status, "value", context.status)

    logo_section = ""
    if branding.company_logo:
        logo_section = f"""
        <mj-section background-color="{THEME['card_bg']}" padding="32px 20px 0 20px">
          <mj-column>
            <mj-image src="{branding.company_logo}" alt="{context.company_name}" width="200px" padding="0" />
          </mj-column>
        </mj-section>
        """

    due_date_line = ""
    if context.due_date:
        due_date_line = f"<br/>Due Date: <strong>{format_long_date(context.due_date)}</strong>"

    return f"""
    <mjml>
      <mj-head>
        <mj-title>Invoice Status Update</mj-title>
        <mj-preview>Invoice {context.entity_number} - {status_label(context.status)}</mj-preview>
        <mj-attributes>
          <mj-all font-family="Arial, sans-serif" />
          <mj-text font-size="15px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}" width="600px">
        {logo_section}
        <mj-section background-color="{THEME['card_bg']}" padding="20px 40px 0 40px">
          <mj-column>
            <mj-text font-size="22px" font-weight="600" color="#2c3e50" padding="0 0 20px 0">
              Invoice Status Update
            </mj-text>
            <mj-text padding="0 0 20px 0">Dear {context.customer_name},</mj-text>
            <mj-text padding="0 0 20px 0">{message}</mj-text>
          </mj-column>
        </mj-section>

        <mj-section background-color="{THEME['card_bg']}" padding="0 40px 20px 40px">
          <mj-column background-color="{style['background']}" border-radius="5px" padding="20px">
            <mj-text font-size="17px" font-weight="700" color="{style['color']}" padding="0 0 8px 0">
              Invoice Details
            </mj-text>
            <mj-text padding="0">
              Invoice Number: <strong>{context.entity_number}</strong><br/>
              Status: <strong style="color: {style['color']};">{raw_status}</strong><br/>
              Total Amount: <strong>{format_currency(context.total_amount)}</strong>{due_date_line}
            </mj-text>
          </mj-column>
        </mj-section>

        <mj-section background-color="{THEME['card_bg']}" padding="0 40px 20px 40px">
          <mj-column>
            <mj-text padding="0">{action}</mj-text>
          </mj-column>
        </mj-section>

        {_payment_instructions_section(status, context.entity_number, branding)}

        <mj-section background-color="{THEME['card_bg']}" padding="0 40px 40px 40px">
          <mj-column>
            <mj-text padding="0 0 20px 0">
              If you have any questions or concerns, please don't hesitate to contact our finance department.
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="20px 0" />
            <mj-text padding="0">
              Best regards,<br/>
              <strong>{context.company_name}</strong><br/>
              <span style="color: {THEME['text_muted']};">{branding.company_email}</span><br/>
              <span style="color: {THEME['text_muted']};">{branding.company_phone}</span>
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def render_invoice_status_email(
    entity_number: str,
    status: Union[InvoiceStatus, str],
    customer_name: str,
    total: float,
    due_date: Optional[Union[date, datetime]] = None,
    company_name: Optional[str] = None,
    branding: Optional[EmailBranding] = None,
) -> RenderedEmail:
    """
    Render the customer-facing email for an invoice status change.

    Args:
        entity_number: Invoice number shown to the customer
        status: New invoice status; unknown values render without status copy
        customer_name: Customer-supplied name, stripped of markup before use
        total: Invoice total
        due_date: Optional due date, omitted from both bodies when None
        company_name: Overrides the configured company name
        branding: Company/bank details (defaults to configuration)

    Returns:
        RenderedEmail with subject, plain-text and HTML bodies
    """
    branding = branding or EmailBranding.from_config()
    context = EmailRenderContext(
        entity_number=sanitize_text(entity_number) or "",
        status=status,
        customer_name=sanitize_text(customer_name) or "",
        total_amount=float(total),
        due_date=due_date,
        company_name=company_name or branding.company_name,
    )

    # Subject and text part are not HTML, so they get the unescaped values
    plain_context = replace(
        context,
        entity_number=unescape(context.entity_number),
        customer_name=unescape(context.customer_name),
    )

    subject = f"Invoice {plain_context.entity_number} - {status_label(status)} Status Update"
    text = invoice_status_text_template(plain_context, branding)
    html = compile_mjml_to_html(invoice_status_mjml_template(context, branding))

    return RenderedEmail(subject=subject, text=text, html=html)


__all__ = [
    "THEME",
    "STATUS_STYLES",
    "EmailBranding",
    "EmailRenderContext",
    "RenderedEmail",
    "format_currency",
    "format_long_date",
    "status_label",
    "compile_mjml_to_html",
    "render_invoice_status_email",
]
