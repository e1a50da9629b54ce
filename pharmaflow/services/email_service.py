import smtplib
import os
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, List
import logging

from pharmaflow.models.purchase import PurchaseOrder

logger = logging.getLogger(__name__)


@dataclass
class PurchaseOrderEmail:
    """Message handed to the email collaborator when a PO is sent."""
    to: List[str]
    subject: str
    html_body: str
    cc: List[str] = field(default_factory=list)
    from_email: Optional[str] = None
    attachment_path: Optional[str] = None


class EmailService:
    """Email service for sending purchase orders to principals via SMTP."""

    def __init__(
        self,
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "",
        from_name: str = "PharmaFlow Purchasing",
        enabled: bool = True,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.enabled = enabled

    def send_email(
        self,
        to: List[str],
        subject: str,
        html_content: str,
        cc: Optional[List[str]] = None,
        from_email: Optional[str] = None,
        attachment_path: Optional[str] = None,
    ) -> bool:
        """
        Send an email over SMTP.

        Returns:
            True if email sent successfully, False otherwise
        """
        if not self.enabled:
            logger.info("PO email dispatch disabled, skipping send")
            return False

        if not self.smtp_user or not self.smtp_password:
            logger.warning("Email not configured. SMTP credentials missing.")
            return False

        if not to:
            logger.warning(f"No recipients for email '{subject}'")
            return False

        sender = from_email or self.from_email
        cc = cc or []

        try:
            msg = MIMEMultipart('mixed')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{sender}>"
            msg['To'] = ", ".join(to)
            if cc:
                msg['Cc'] = ", ".join(cc)

            msg.attach(MIMEText(html_content, 'html'))

            if attachment_path:
                with open(attachment_path, "rb") as fh:
                    part = MIMEApplication(fh.read(), Name=os.path.basename(attachment_path))
                part['Content-Disposition'] = f'attachment; filename="{os.path.basename(attachment_path)}"'
                msg.attach(part)

            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.sendmail(sender, to + cc, msg.as_string())

            logger.info(f"Email sent successfully to {', '.join(to)}")
            return True

        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP Authentication failed. Check email credentials.")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {e}")
            return False
        except TimeoutError:
            logger.error("SMTP connection timed out")
            return False
        except OSError as e:
            logger.error(f"Network error sending email: {e}")
            return False

    def send_purchase_order(self, message: PurchaseOrderEmail) -> bool:
        return self.send_email(
            to=message.to,
            subject=message.subject,
            html_content=message.html_body,
            cc=message.cc,
            from_email=message.from_email,
            attachment_path=message.attachment_path,
        )


def build_purchase_order_email(
    po: PurchaseOrder,
    to: List[str],
    cc: Optional[List[str]] = None,
    principal_name: str = "",
    attachment_dir: Optional[str] = None,
) -> PurchaseOrderEmail:
    """Compose the PO email. The rendered PDF, if any, is picked up from attachment_dir."""
    rows = "".join(
        f"<tr><td>{item.product_code or ''}</td><td>{item.product_name or ''}</td>"
        f"<td style='text-align:right'>{item.quantity}</td>"
        f"<td style='text-align:right'>{item.foc or 0}</td>"
        f"<td style='text-align:right'>{item.unit_price}</td>"
        f"<td style='text-align:right'>{item.total_cost}</td></tr>"
        for item in po.items
    )

    html_body = f"""
    <html>
    <body style="font-family: Arial, sans-serif; color: #333;">
        <p>Dear {principal_name or 'Sir/Madam'},</p>
        <p>Please find below our purchase order <strong>{po.po_number}</strong>
           dated {po.po_date.strftime('%d %b %Y') if po.po_date else ''}.</p>
        <table border="1" cellpadding="6" cellspacing="0" style="border-collapse: collapse;">
            <tr><th>Code</th><th>Product</th><th>Qty</th><th>FOC</th><th>Rate</th><th>Amount</th></tr>
            {rows}
        </table>
        <p><strong>Grand Total: {po.grand_total}</strong></p>
        {f'<p>{po.terms}</p>' if po.terms else ''}
        <p>Regards,<br>Purchasing Team</p>
    </body>
    </html>
    """

    attachment_path = None
    if attachment_dir:
        candidate = os.path.join(attachment_dir, f"{po.po_number.replace('/', '_')}.pdf")
        if os.path.exists(candidate):
            attachment_path = candidate

    return PurchaseOrderEmail(
        to=list(to),
        cc=list(cc or []),
        from_email=po.from_email,
        subject=f"Purchase Order {po.po_number}",
        html_body=html_body,
        attachment_path=attachment_path,
    )


def get_email_service() -> EmailService:
    """Get email service instance configured from settings."""
    from pharmaflow.config import settings

    return EmailService(
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        from_email=settings.SMTP_FROM_EMAIL,
        from_name=settings.SMTP_FROM_NAME,
        enabled=settings.PO_EMAIL_ENABLED,
    )
