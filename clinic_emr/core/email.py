import aiosmtplib
from html import escape
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from clinic_emr.config import settings
from clinic_emr.core.logging import logger
from typing import Any, Dict, List, Optional


HTML_FIELDS = ("patient_name", "specialist_name", "specialty", "reason")


async def send_email(
    to: List[str],
    subject: str,
    body: str,
    html_body: Optional[str] = None
) -> bool:
    """
    Send an email over SMTP.

    Args:
        to: List of recipient email addresses
        subject: Email subject
        body: Plain text email body
        html_body: Optional HTML email body

    Returns:
        bool: True if email sent successfully
    """
    logger.info(f"📧 Sending email to {', '.join(to)}")
    logger.debug(f"SMTP: {settings.SMTP_HOST}:{settings.SMTP_PORT}, User: {settings.SMTP_USER}")

    try:
        message = MIMEMultipart("alternative")
        message["From"] = settings.EMAIL_FROM
        message["To"] = ", ".join(to)
        message["Subject"] = subject

        message.attach(MIMEText(body, "plain"))
        if html_body:
            message.attach(MIMEText(html_body, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USER or None,
                password=settings.SMTP_PASSWORD or None,
                start_tls=True,
            )
            logger.info(f"✅ Email sent successfully to {', '.join(to)}")
            return True
        except aiosmtplib.SMTPAuthenticationError as e:
            logger.error(f"❌ SMTP Authentication failed: {str(e)}")
            logger.error(f"   SMTP User: {settings.SMTP_USER}")
            logger.error(f"   SMTP Host: {settings.SMTP_HOST}:{settings.SMTP_PORT}")
            return False
        except aiosmtplib.SMTPException as e:
            logger.error(f"❌ SMTP error sending email to {to}: {str(e)}")
            logger.error(f"   Error type: {type(e).__name__}")
            return False
    except Exception as e:
        logger.error(f"❌ Failed to send email to {to}: {type(e).__name__}: {str(e)}")
        return False


async def send_referral_notification_email(referral: Dict[str, Any]) -> bool:
    """
    Notify the specialist (or the clinic fallback address) about a new referral.

    Args:
        referral: Snapshot of the referral taken at creation time

    Returns:
        bool: True if email sent successfully, False if sending failed or nobody is to be notified
    """
    if not settings.REFERRAL_NOTIFICATIONS_ENABLED:
        logger.debug(f"Referral notifications disabled, skipping referral {referral.get('id')}")
        return False

    recipient = referral.get("specialist_email") or settings.REFERRAL_NOTIFICATION_EMAIL
    if not recipient:
        logger.warning(f"No recipient for referral {referral.get('id')} notification")
        return False

    urgency = referral.get("urgency", "Routine")
    referred_by = referral.get("referring_provider") or "the clinic"

    subject = f"[{urgency}] New referral to {referral['specialty']} - {referral['patient_name']}"

    body = f"""
    Hello,

    A new referral has been created by {referred_by}.

    Patient: {referral['patient_name']}
    Specialist: {referral['specialist_name']} ({referral['specialty']})
    Urgency: {urgency}
    Reason: {referral['reason']}

    Best regards,
    {settings.APP_NAME}
    """

    # Free-text fields come from users; escape them for the HTML part
    safe = {key: escape(str(referral.get(key) or "")) for key in HTML_FIELDS}

    html_body = f"""
    <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <h2 style="color: #0ea5e9;">New Referral</h2>
                <p>A new referral has been created by {escape(referred_by)}.</p>
                <table style="width: 100%;">
                    <tr><td style="padding: 6px 0; color: #64748b;">Patient:</td><td>{safe['patient_name']}</td></tr>
                    <tr><td style="padding: 6px 0; color: #64748b;">Specialist:</td><td>{safe['specialist_name']} ({safe['specialty']})</td></tr>
                    <tr><td style="padding: 6px 0; color: #64748b;">Urgency:</td><td><strong>{escape(urgency)}</strong></td></tr>
                    <tr><td style="padding: 6px 0; color: #64748b;">Reason:</td><td>{safe['reason']}</td></tr>
                </table>
                <hr style="border: none; border-top: 1px solid #e2e8f0; margin: 30px 0;">
                <p style="color: #94a3b8; font-size: 12px;">
                    Best regards,<br>
                    <strong>{settings.APP_NAME}</strong>
                </p>
            </div>
        </body>
    </html>
    """

    return await send_email([recipient], subject, body, html_body)
