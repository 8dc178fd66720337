"""
Email sending service using SMTP.
"""
import html
import smtplib
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional
import logging
from tfd_reports.core.config import (
    SMTP_HOST,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USE_SSL,
    SMTP_USERNAME,
    SMTP_PASSWORD,
    SMTP_FROM_EMAIL,
    SMTP_FROM_NAME,
)
from tfd_reports.services.reports.base import ReportAttachment, ReportMailer

logger = logging.getLogger(__name__)


def build_message(
    to_emails: List[str],
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
    attachments: Optional[List[ReportAttachment]] = None,
) -> MIMEMultipart:
    """Build a multipart message with alternative bodies and optional attachments."""
    msg = MIMEMultipart('mixed')
    msg['Subject'] = subject
    msg['From'] = f"{SMTP_FROM_NAME} <{SMTP_FROM_EMAIL}>"
    msg['To'] = ", ".join(to_emails)

    body = MIMEMultipart('alternative')
    if text_body:
        body.attach(MIMEText(text_body, 'plain', 'utf-8'))
    body.attach(MIMEText(html_body, 'html', 'utf-8'))
    msg.attach(body)

    for attachment in attachments or []:
        maintype, _, subtype = attachment.content_type.partition('/')
        part = MIMEBase(maintype or 'application', subtype or 'octet-stream')
        part.set_payload(attachment.content)
        encoders.encode_base64(part)
        part.add_header('Content-Disposition', 'attachment', filename=attachment.filename)
        msg.attach(part)

    return msg


def _connect() -> smtplib.SMTP:
    if SMTP_USE_SSL:
        return smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, timeout=10)
    server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10)
    if SMTP_USE_TLS:
        server.starttls()
    return server


def send_email(
    to_emails: List[str],
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
    attachments: Optional[List[ReportAttachment]] = None,
) -> bool:
    """
    Send an email via SMTP.

    Args:
        to_emails: Recipient email addresses
        subject: Email subject
        html_body: HTML email body
        text_body: Plain text email body (optional)
        attachments: Files to attach (optional)

    Returns:
        True if email sent successfully, False otherwise
    """
    if not SMTP_HOST or not SMTP_USERNAME or not SMTP_PASSWORD:
        logger.error("SMTP configuration is missing. Cannot send email.")
        return False

    try:
        msg = build_message(to_emails, subject, html_body, text_body, attachments)

        server = _connect()
        try:
            server.login(SMTP_USERNAME, SMTP_PASSWORD)
            server.send_message(msg)
        finally:
            server.quit()

        logger.info(f"Email sent successfully to {', '.join(to_emails)}")
        return True

    except Exception as e:
        logger.error(f"Failed to send email to {', '.join(to_emails)}: {str(e)}", exc_info=True)
        return False


class SmtpReportMailer(ReportMailer):
    """Delivers generated reports as email attachments over SMTP."""

    def send(self, recipients, subject, body, attachment) -> bool:
        html_body = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <p>{html.escape(body).replace(chr(10), '<br>')}</p>
    <p style="font-size: 12px; color: #666;">Este é um email automático, por favor não responda.</p>
</body>
</html>"""
        return send_email(
            to_emails=list(recipients),
            subject=subject,
            html_body=html_body,
            text_body=body,
            attachments=[attachment],
        )
