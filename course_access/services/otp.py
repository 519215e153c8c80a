"""Email OTP step-up bound to a single credential.

Only the redemption gate calls into this module. ``verify_otp`` spends an
attempt durably *before* the comparison result is acted on, so a crash after
the compare can never hand back an unspent attempt.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..models import AccessCredential
from . import audit
from .mailer import MailSendError, send_otp_email
from .store import CredentialStore
from .tokens import generate_otp, hash_otp, hashes_match

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpCheck:
    ok: bool
    attempts: int
    max_attempts: int
    supplied_hash: str

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


def issue_otp(store: CredentialStore, cred: AccessCredential, *, binding, now):
    """Mint a fresh OTP, replacing any live one, and mail it.

    Returns ``(started, email_sent)``; ``started`` is False when the
    conditional update lost (credential no longer open or link expired).
    """
    ttl = current_app.config['OTP_TTL_MINUTES']
    otp = generate_otp()
    started = store.begin_otp(
        cred.id,
        otp_hash=hash_otp(cred.id, otp),
        otp_expires_at=now + timedelta(minutes=ttl),
        binding=binding,
        now=now,
    )
    if not started:
        return False, False

    audit.record('otp_issued', cred.id)
    try:
        send_otp_email(cred.email, otp, ttl)
    except MailSendError as exc:
        logger.error('otp email failed credential=%s: %s', cred.id, exc)
        audit.record('otp_email_failed', cred.id, reason=str(exc))
        return True, False
    return True, True


def verify_otp(store: CredentialStore, cred: AccessCredential, supplied, *, now) -> OtpCheck | None:
    """Spend one attempt and compare ``supplied`` against the live OTP.

    Returns None when no attempt could be recorded (no live OTP, cap reached,
    credential closed or expired); the caller re-reads state to explain why.
    """
    snap = store.record_attempt(cred.id, now=now)
    if snap is None:
        return None
    supplied_hash = hash_otp(cred.id, str(supplied or '').strip())
    ok = hashes_match(snap.otp_hash, supplied_hash)
    return OtpCheck(ok=ok, attempts=snap.attempts, max_attempts=snap.max_attempts,
                    supplied_hash=supplied_hash)
