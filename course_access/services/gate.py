"""Redemption gate: the only component that moves a credential through its states.

    issued -> otp_pending -> (otp_verified) -> used
    issued | otp_pending -> expired | blocked

``otp_verified`` is never stored on its own. Verifying the OTP and marking
the credential used is one conditional update, so two racing requests with
the right code cannot both redeem it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from ..models import AccessCredential, State, utcnow
from . import audit
from .binding import differs
from .errors import (AccessError, AlreadyUsed, InvalidOtp, InvalidToken, LinkExpired,
                     OtpExpired, TooManyAttempts)
from .issuer import normalize_email
from .otp import issue_otp, verify_otp
from .store import CredentialStore, get_store
from .tokens import hash_secret, hashes_match, is_well_formed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisitResult:
    credential_id: int
    email: str
    otp_expires_at: datetime
    email_sent: bool


@dataclass(frozen=True)
class Redemption:
    credential_id: int
    email: str
    content_ref: str
    delivered: bool


def mask_email(email: str) -> str:
    name, _, domain = email.partition('@')
    if len(name) <= 2:
        return f"{name[:1]}***@{domain}"
    return f"{name[0]}***{name[-1]}@{domain}"


class RedemptionGate:
    def __init__(self, store: CredentialStore | None = None):
        self.store = store or get_store()

    def lookup(self, secret) -> AccessCredential:
        """Resolve a raw link secret. Every miss looks the same to the caller."""
        if not is_well_formed(secret):
            raise InvalidToken()
        computed = hash_secret(secret)
        cred = self.store.find_by_secret_hash(computed)
        if cred is None or not hashes_match(cred.secret_hash, computed):
            raise InvalidToken()
        return cred

    def explain(self, cred: AccessCredential | None, now: datetime, *, otp_phase: bool = False) -> AccessError:
        """Turn the current stored state into the rejection for a lost transition."""
        if cred is None:
            return InvalidToken()
        if cred.state == State.USED:
            return AlreadyUsed()
        if cred.state == State.BLOCKED:
            return TooManyAttempts()
        if cred.state == State.EXPIRED:
            return LinkExpired()
        if now >= cred.expires_at:
            if self.store.expire(cred.id, now=now):
                audit.record('credential_expired', cred.id)
            return LinkExpired()
        if otp_phase:
            if cred.otp_hash is None or cred.otp_expires_at is None or now >= cred.otp_expires_at:
                return OtpExpired()
            if cred.otp_attempts >= cred.max_otp_attempts:
                return self._block(cred.id, now)
            # OTP rotated by a concurrent link visit
            return InvalidOtp(remaining=cred.max_otp_attempts - cred.otp_attempts)
        return InvalidToken()

    def check_binding(self, cred: AccessCredential, context: dict | None, now: datetime) -> bool:
        """Flag (never deny) a request whose network/UA signature moved."""
        if not differs(cred.binding_context, context):
            return False
        logger.warning('binding anomaly credential=%s', cred.id)
        if not cred.binding_anomaly:
            self.store.flag_binding_anomaly(cred.id, now=now)
            audit.record('binding_anomaly', cred.id, ip=(context or {}).get('ip'))
        return True

    def _block(self, credential_id: int, now: datetime) -> TooManyAttempts:
        if self.store.block(credential_id, now=now):
            logger.warning('credential blocked after too many otp attempts credential=%s', credential_id)
            audit.record('credential_blocked', credential_id)
        return TooManyAttempts()

    def visit_link(self, secret, context: dict | None = None, *, now: datetime | None = None) -> VisitResult:
        """Handle a click on the emailed link: mint and mail a fresh OTP."""
        now = now or utcnow()
        cred = self.lookup(secret)
        if cred.state not in State.OPEN or now >= cred.expires_at:
            raise self.explain(cred, now)

        self.check_binding(cred, context, now)
        started, email_sent = issue_otp(self.store, cred, binding=context, now=now)
        if not started:
            raise self.explain(self.store.get(cred.id), now)

        fresh = self.store.get(cred.id)
        return VisitResult(
            credential_id=fresh.id,
            email=fresh.email,
            otp_expires_at=fresh.otp_expires_at,
            email_sent=email_sent,
        )

    def submit_otp(self, secret, otp, context: dict | None = None, *, email=None,
                   deliver: bool = True, now: datetime | None = None) -> Redemption:
        """Verify the OTP and, in the same conditional write, mark the credential used.

        With ``deliver`` the content reference is released in that same write;
        otherwise it waits for the one-shot content view.
        """
        now = now or utcnow()
        cred = self.lookup(secret)
        if email is not None and normalize_email(email) != cred.email:
            raise InvalidToken()
        if cred.state != State.OTP_PENDING:
            raise self.explain(cred, now, otp_phase=True)

        self.check_binding(cred, context, now)
        check = verify_otp(self.store, cred, otp, now=now)
        if check is None:
            raise self.explain(self.store.get(cred.id), now, otp_phase=True)

        if check.exhausted:
            raise self._block(cred.id, now)
        if not check.ok:
            audit.record('otp_rejected', cred.id, attempts=check.attempts)
            raise InvalidOtp(remaining=check.remaining)

        if not self.store.redeem(cred.id, otp_hash=check.supplied_hash, deliver=deliver, now=now):
            raise self.explain(self.store.get(cred.id), now, otp_phase=True)

        audit.record('credential_redeemed', cred.id)
        if deliver:
            audit.record('content_delivered', cred.id)
        fresh = self.store.get(cred.id)
        return Redemption(
            credential_id=fresh.id,
            email=fresh.email,
            content_ref=fresh.content_ref,
            delivered=deliver,
        )
