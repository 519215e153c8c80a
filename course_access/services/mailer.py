import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app

logger = logging.getLogger(__name__)


class MailSendError(Exception):
    """Raised when the SMTP service cannot send a message."""


class SmtpMailer:
    """Sends mail through the configured SMTP relay (Gmail by default in production)."""

    def __init__(self, host: str, port: int, sender: str, username: str | None = None,
                 password: str | None = None, use_tls: bool = True, timeout: int = 10):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username or sender
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'SmtpMailer':
        return cls(
            host=config.get('SMTP_HOST', ''),
            port=config.get('SMTP_PORT', 587),
            sender=config.get('MAIL_FROM', ''),
            username=config.get('SMTP_USERNAME'),
            password=config.get('SMTP_PASSWORD'),
            use_tls=config.get('SMTP_USE_TLS', True),
            timeout=config.get('SMTP_TIMEOUT', 10),
        )

    def send(self, to: str, subject: str, text: str, html: str | None = None) -> None:
        if not to:
            raise MailSendError('Recipient email is required.')
        if not self.host:
            raise MailSendError('SMTP host is not configured.')
        if not self.sender:
            raise MailSendError('Mail sender address is not configured.')

        msg = MIMEMultipart('alternative')
        msg['From'] = self.sender
        msg['To'] = to
        msg['Subject'] = subject
        msg.attach(MIMEText(text, 'plain'))
        if html:
            msg.attach(MIMEText(html, 'html'))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.sender, [to], msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            raise MailSendError(f'SMTP authentication failed: {exc.smtp_code}') from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise MailSendError(f'SMTP error: {exc.__class__.__name__}') from exc
        logger.info('mail sent subject=%r', subject)


def get_mailer():
    return current_app.extensions['mailer']


def send_link_email(to: str, link_url: str, ttl_seconds: int) -> None:
    minutes = max(1, ttl_seconds // 60)
    text = (
        'Thanks for your purchase.\n\n'
        f'Your secure access link (valid for {minutes} minutes, one use only):\n'
        f'{link_url}\n\n'
        'If you did not request this, you can ignore this email.'
    )
    html = (
        '<p>Thanks for your purchase. Your secure access link is below. '
        f'It expires in {minutes} minutes and works once.</p>'
        f'<p><a href="{link_url}">Access your guide</a></p>'
        '<p>If you did not request this, you can ignore this email.</p>'
    )
    get_mailer().send(to, 'Your secure access link', text, html)


def send_otp_email(to: str, otp: str, ttl_minutes: int) -> None:
    text = f'Your one-time code is {otp}. It expires in {ttl_minutes} minutes.'
    html = f'<p>Your one-time code is <b>{otp}</b>. It expires in {ttl_minutes} minutes.</p>'
    get_mailer().send(to, 'Your one-time code', text, html)
