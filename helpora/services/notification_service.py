from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from flask import current_app
import logging
import smtplib

logger = logging.getLogger(__name__)


def _mail_configured(config) -> bool:
    return bool(
        config.get('MAIL_SERVER')
        and config.get('MAIL_USERNAME')
        and config.get('MAIL_PASSWORD')
    )


def send_email(to_email, subject, body) -> bool:
    """Best-effort send. Never raises into a request handler.

    In dev mode, or without SMTP credentials, the message is only logged
    and counted as sent.
    """
    if not to_email:
        logger.warning("Email '%s' skipped: no recipient", subject)
        return False

    config = current_app.config
    if config.get('MAIL_DEV_MODE') or not _mail_configured(config):
        logger.info(
            "Email (dev mode) to=%s subject=%s body=%s",
            to_email,
            subject,
            body,
        )
        return True

    sender = config['MAIL_USERNAME']
    try:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = formataddr(
            (config.get('MAIL_SENDER_NAME', 'Helpora'), sender))
        msg['To'] = to_email
        msg.attach(MIMEText(body, 'plain', 'utf-8'))

        with smtplib.SMTP(
                config['MAIL_SERVER'],
                config.get('MAIL_PORT', 587),
                timeout=10) as server:
            server.starttls()
            server.login(sender, config['MAIL_PASSWORD'])
            server.sendmail(sender, [to_email], msg.as_string())
        logger.info("Email sent to=%s subject=%s", to_email, subject)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.warning(f"Email to {to_email} failed: {e}")
        return False


def admin_address():
    config = current_app.config
    return (
        config.get('ADMIN_EMAIL')
        or config.get('NOTIFICATION_EMAIL')
        or config.get('MAIL_USERNAME')
    )


def notify_admin(subject, body) -> bool:
    return send_email(admin_address(), subject, body)


def notify_user(user, subject, body) -> bool:
    if user is None or not user.email:
        return False
    return send_email(user.email, subject, body)


def request_summary(service_request) -> str:
    scheduled = (
        service_request.scheduled_date.isoformat()
        if service_request.scheduled_date
        else 'Not specified'
    )
    return (
        f"Request ID: {service_request.id}\n"
        f"- Name: {service_request.user_name}\n"
        f"- Contact: {service_request.contact}\n"
        f"- Category: {service_request.service_category or 'Not specified'}\n"
        f"- Location: {service_request.service_location or 'Not specified'}\n"
        f"- Message: {service_request.message}\n"
        f"- Urgency: {service_request.urgency_level.value}\n"
        f"- Scheduled: {scheduled} {service_request.scheduled_time or ''}"
    )
