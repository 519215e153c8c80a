import logging
import re
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..models import utcnow
from . import audit
from .errors import InvalidRequest
from .mailer import MailSendError, send_link_email
from .store import get_store
from .tokens import build_link, generate_secret, hash_secret

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


@dataclass(frozen=True)
class IssuedLink:
    credential_id: int
    link_url: str
    email_sent: bool


def normalize_email(email) -> str:
    return (email or '').strip().lower()


def clean_request(email, content_ref) -> tuple[str, str]:
    email = normalize_email(email)
    content_ref = (content_ref or '').strip()
    if not email or not _EMAIL_RE.match(email):
        raise InvalidRequest('A valid email is required.')
    if not content_ref:
        raise InvalidRequest('contentRef is required.')
    return email, content_ref


def issue(email, content_ref, *, payment_id=None, order_id=None, now=None) -> IssuedLink:
    """Create a single-use credential for ``email`` and mail it the access link.

    Only the hash of the link secret is persisted. A mail failure is logged
    and audited but never undoes the issuance: the caller gets the link back
    and an operator can forward it.
    """
    email, content_ref = clean_request(email, content_ref)

    cfg = current_app.config
    now = now or utcnow()
    secret = generate_secret()
    cred = get_store().create(
        secret_hash=hash_secret(secret),
        email=email,
        content_ref=content_ref,
        expires_at=now + timedelta(seconds=cfg['TOKEN_TTL_SECONDS']),
        max_otp_attempts=cfg['MAX_OTP_ATTEMPTS'],
        payment_id=payment_id,
        order_id=order_id,
    )
    credential_id = cred.id
    audit.record('credential_issued', credential_id, content_ref=content_ref,
                 payment_id=payment_id)

    link_url = build_link(secret)
    email_sent = True
    try:
        send_link_email(email, link_url, cfg['TOKEN_TTL_SECONDS'])
    except MailSendError as exc:
        email_sent = False
        logger.error('access link email failed credential=%s: %s', credential_id, exc)
        audit.record('link_email_failed', credential_id, reason=str(exc))

    return IssuedLink(credential_id=credential_id, link_url=link_url, email_sent=email_sent)
