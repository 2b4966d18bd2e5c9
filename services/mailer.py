"""
Outbound email. Sending is best effort: failures are logged and reported
as ``False`` so the operation that triggered the email still succeeds.
"""
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from flask import current_app, render_template

logger = logging.getLogger(__name__)

TEMPLATES = {
    'verification': ('Verify your Cricket Tournament account', 'email/verification.html'),
    'welcome': ('Welcome to the Cricket Tournament', 'email/welcome.html'),
    'password_reset_request': ('Reset your password', 'email/password_reset_request.html'),
    'password_reset_success': ('Your password was changed', 'email/password_reset_success.html'),
    'team_created': ('Your team has been registered', 'email/team_created.html'),
    'login_verification': ('Your login verification code', 'email/login_verification.html'),
}


def outbox() -> list[dict]:
    """Messages captured while delivery is suppressed or SMTP is unconfigured."""
    return current_app.extensions.setdefault('email_outbox', [])


def _smtp_configured() -> bool:
    config = current_app.config
    return bool(config.get('SMTP_HOST') and config.get('SMTP_USER') and config.get('SMTP_PASSWORD'))


def send(recipient: str, template: str, variables: dict | None = None) -> bool:
    if template not in TEMPLATES:
        raise ValueError(f'Unknown email template: {template}')

    subject, path = TEMPLATES[template]
    context = dict(variables or {})
    context.setdefault('frontend_url', current_app.config.get('FRONTEND_URL', ''))
    html_body = render_template(path, **context)

    config = current_app.config
    if config.get('MAIL_SUPPRESS_SEND') or not _smtp_configured():
        logger.info("Email delivery disabled; captured %s email to %s", template, recipient)
        outbox().append({'to': recipient, 'template': template, 'subject': subject, 'variables': context})
        return True

    message = EmailMessage()
    message['From'] = formataddr((config.get('MAIL_FROM_NAME', ''), config['MAIL_FROM']))
    message['To'] = recipient
    message['Subject'] = subject
    message.set_content(f'{subject}\n\nPlease view this message in an HTML capable email client.')
    message.add_alternative(html_body, subtype='html')

    try:
        with smtplib.SMTP(config['SMTP_HOST'], config['SMTP_PORT'], timeout=10) as server:
            server.starttls()
            server.login(config['SMTP_USER'], config['SMTP_PASSWORD'])
            server.send_message(message)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send %s email to %s", template, recipient)
        return False

    logger.info("Sent %s email to %s", template, recipient)
    return True
