"""
Email sending utility with pluggable backends.
Default 'console' backend prints notifications to stdout for dev/testing.
"""
import os
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from abc import ABC, abstractmethod
from markupsafe import Markup, escape

logger = logging.getLogger(__name__)


class EmailBackend(ABC):
    """Abstract base class for email backends."""

    @abstractmethod
    def send(self, to_email, subject, body_text, body_html=None):
        """Send an email."""
        pass


class ConsoleBackend(EmailBackend):
    """Console backend that prints emails to stdout (for development/testing)."""

    def send(self, to_email, subject, body_text, body_html=None):
        message = (
            f"\n{'='*50}\n"
            f"[EMAIL] To: {to_email}\n"
            f"Subject: {subject}\n"
            f"{'='*50}\n"
            f"{body_text}\n"
            f"{'='*50}\n"
        )
        print(message)
        logger.info("Email sent via console backend to %s", to_email)


class SMTPBackend(EmailBackend):
    """SMTP backend with TLS support."""

    def __init__(self):
        self.host = os.getenv('SMTP_HOST')
        self.port = int(os.getenv('SMTP_PORT', '587'))
        self.user = os.getenv('SMTP_USER')
        self.password = os.getenv('SMTP_PASS')
        self.from_email = os.getenv('SMTP_FROM_EMAIL', self.user)
        self.use_tls = os.getenv('SMTP_USE_TLS', 'true').lower() == 'true'
        self.timeout = int(os.getenv('SMTP_TIMEOUT', '10'))

        if not all([self.host, self.user, self.password]):
            raise ValueError(
                "SMTP backend requires SMTP_HOST, SMTP_USER, and SMTP_PASS environment variables"
            )

    def send(self, to_email, subject, body_text, body_html=None):
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = self.from_email
        msg['To'] = to_email

        msg.attach(MIMEText(body_text, 'plain'))
        if body_html:
            msg.attach(MIMEText(body_html, 'html'))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                server.login(self.user, self.password)
                server.sendmail(self.from_email, to_email, msg.as_string())
            logger.info("Email sent via SMTP to %s", to_email)
        except smtplib.SMTPException as e:
            logger.error("SMTP error sending email to %s: %s", to_email, str(e))
            raise


def get_email_backend():
    """Get the configured email backend instance."""
    backend_name = os.getenv('EMAIL_BACKEND', 'console').lower()

    if backend_name == 'console':
        return ConsoleBackend()
    elif backend_name == 'smtp':
        return SMTPBackend()
    else:
        raise ValueError(f"Unknown EMAIL_BACKEND: {backend_name}")


def send_email(to_email, subject, body_text, body_html=None):
    """Send an email using the configured backend."""
    backend = get_email_backend()
    backend.send(to_email, subject, body_text, body_html)


def _layout(title, color, paragraphs, facts=None):
    """Render a notification email. Plain strings are escaped; pass ``Markup`` for trusted HTML."""
    rows = ''.join(
        f'<tr><td style="padding: 4px 12px 4px 0; color: #666;">{escape(label)}</td>'
        f'<td style="padding: 4px 0;"><strong>{escape(value)}</strong></td></tr>'
        for label, value in (facts or [])
    )
    body = ''.join(f'<p>{escape(p)}</p>' for p in paragraphs)
    table = (f'<table style="background: #f5f5f5; padding: 15px; margin: 20px 0;">{rows}</table>'
             if rows else '')
    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: {color};">{escape(title)}</h2>
        {body}
        {table}
    </body>
    </html>
    """


def send_suspension_email(to_email, project_name, cap_type, current_value, limit):
    """Tell a project owner their project was suspended."""
    subject = f"Project {project_name} has been suspended"
    body_text = (
        f"Your project {project_name} was suspended because it exceeded a hard cap.\n\n"
        f"Cap: {cap_type}\n"
        f"Current usage: {current_value}\n"
        f"Limit: {limit}\n\n"
        f"Contact support if you believe this is a mistake."
    )
    body_html = _layout(
        'Project Suspended', '#dc3545',
        [Markup('Your project <strong>{}</strong> was suspended because it exceeded a hard cap.')
         .format(project_name),
         'Contact support if you believe this is a mistake.'],
        [('Cap', cap_type), ('Current usage', current_value), ('Limit', limit)],
    )
    send_email(to_email, subject, body_text, body_html)
    logger.info("Suspension email sent to %s", to_email)


def send_unsuspension_email(to_email, project_name, reason=None):
    """Tell a project owner their project is serving traffic again."""
    subject = f"Project {project_name} has been restored"
    body_text = f"Your project {project_name} is active again."
    if reason:
        body_text += f"\n\nReason: {reason}"
    body_html = _layout(
        'Project Restored', '#28a745',
        [Markup('Your project <strong>{}</strong> is active again.').format(project_name)],
        [('Reason', reason)] if reason else None,
    )
    send_email(to_email, subject, body_text, body_html)
    logger.info("Unsuspension email sent to %s", to_email)


def send_usage_alert_email(to_email, subject, body_text, facts):
    """Spike and quota warnings share one layout."""
    body_html = _layout(subject, '#fd7e14', body_text.split('\n\n'), facts)
    send_email(to_email, subject, body_text, body_html)
    logger.info("Usage alert email sent to %s", to_email)
