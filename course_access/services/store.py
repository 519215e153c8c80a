"""Durable credential storage.

Every state change is a single conditional ``UPDATE``; callers learn whether
their transition won from the affected row count and re-read the row to
explain a loss. Nothing here decides *which* transition to attempt: that is
the redemption gate's job.
"""
import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import and_, delete, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..models import db, AccessCredential, PaymentClaim, State
from .errors import StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptSnapshot:
    """Row values captured in the same transaction as an attempt increment."""
    attempts: int
    max_attempts: int
    otp_hash: str | None


def _storage_guard(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error('credential store failure in %s: %s', fn.__name__, exc.__class__.__name__)
            raise StorageUnavailable() from exc
    return wrapper


class CredentialStore(ABC):
    """Persistence contract for access credentials."""

    @abstractmethod
    def create(self, *, secret_hash: str, email: str, content_ref: str, expires_at: datetime,
               max_otp_attempts: int, payment_id: str | None = None,
               order_id: str | None = None) -> AccessCredential: ...

    @abstractmethod
    def get(self, credential_id: int) -> AccessCredential | None: ...

    @abstractmethod
    def find_by_secret_hash(self, secret_hash: str) -> AccessCredential | None: ...

    @abstractmethod
    def claim_payment(self, payment_id: str, *, order_id: str, email: str) -> bool: ...

    @abstractmethod
    def attach_payment(self, payment_id: str, credential_id: int) -> None: ...

    @abstractmethod
    def begin_otp(self, credential_id: int, *, otp_hash: str, otp_expires_at: datetime,
                  binding: dict | None, now: datetime) -> bool: ...

    @abstractmethod
    def record_attempt(self, credential_id: int, *, now: datetime) -> AttemptSnapshot | None: ...

    @abstractmethod
    def redeem(self, credential_id: int, *, otp_hash: str, deliver: bool, now: datetime) -> bool: ...

    @abstractmethod
    def block(self, credential_id: int, *, now: datetime) -> bool: ...

    @abstractmethod
    def expire(self, credential_id: int, *, now: datetime) -> bool: ...

    @abstractmethod
    def mark_delivered(self, credential_id: int, *, now: datetime) -> bool: ...

    @abstractmethod
    def flag_binding_anomaly(self, credential_id: int, *, now: datetime) -> None: ...

    @abstractmethod
    def purge_closed(self, cutoff: datetime) -> int: ...


class SqlCredentialStore(CredentialStore):
    """SQLAlchemy-backed store; works on any backend with row-level UPDATE atomicity."""

    @_storage_guard
    def create(self, *, secret_hash, email, content_ref, expires_at, max_otp_attempts,
               payment_id=None, order_id=None):
        cred = AccessCredential(
            secret_hash=secret_hash,
            email=email,
            content_ref=content_ref,
            state=State.ISSUED,
            expires_at=expires_at,
            max_otp_attempts=max_otp_attempts,
            payment_id=payment_id,
            order_id=order_id,
        )
        db.session.add(cred)
        db.session.commit()
        return cred

    @_storage_guard
    def get(self, credential_id):
        return db.session.get(AccessCredential, credential_id, populate_existing=True)

    @_storage_guard
    def find_by_secret_hash(self, secret_hash):
        return (AccessCredential.query
                .filter_by(secret_hash=secret_hash)
                .populate_existing()
                .first())

    @_storage_guard
    def claim_payment(self, payment_id, *, order_id, email):
        db.session.add(PaymentClaim(payment_id=payment_id, order_id=order_id, email=email))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return False
        return True

    @_storage_guard
    def attach_payment(self, payment_id, credential_id):
        db.session.execute(update(PaymentClaim)
                           .where(PaymentClaim.payment_id == payment_id)
                           .values(credential_id=credential_id)
                           .execution_options(synchronize_session=False))
        db.session.commit()

    def _update(self, credential_id, *conditions, **values) -> int:
        stmt = (update(AccessCredential)
                .where(AccessCredential.id == credential_id, *conditions)
                .values(**values)
                .execution_options(synchronize_session=False))
        res = db.session.execute(stmt)
        db.session.commit()
        return res.rowcount

    @_storage_guard
    def begin_otp(self, credential_id, *, otp_hash, otp_expires_at, binding, now):
        values = dict(
            state=State.OTP_PENDING,
            otp_hash=otp_hash,
            otp_expires_at=otp_expires_at,
            otp_attempts=0,
            otp_sent_count=AccessCredential.otp_sent_count + 1,
            last_seen_at=now,
        )
        conditions = [
            AccessCredential.state.in_(State.OPEN),
            AccessCredential.expires_at > now,
        ]
        if binding is not None:
            # first visit only; later visits keep the original context
            cred = self.get(credential_id)
            if cred is not None and cred.binding_context is None:
                values['binding_context'] = binding
        return self._update(credential_id, *conditions, **values) == 1

    @_storage_guard
    def record_attempt(self, credential_id, *, now):
        stmt = (update(AccessCredential)
                .where(AccessCredential.id == credential_id,
                       AccessCredential.state == State.OTP_PENDING,
                       AccessCredential.otp_attempts < AccessCredential.max_otp_attempts,
                       AccessCredential.otp_hash.isnot(None),
                       AccessCredential.otp_expires_at > now,
                       AccessCredential.expires_at > now)
                .values(otp_attempts=AccessCredential.otp_attempts + 1, last_seen_at=now)
                .execution_options(synchronize_session=False))
        res = db.session.execute(stmt)
        if res.rowcount != 1:
            db.session.rollback()
            return None
        cred = db.session.get(AccessCredential, credential_id, populate_existing=True)
        snap = AttemptSnapshot(cred.otp_attempts, cred.max_otp_attempts, cred.otp_hash)
        db.session.commit()
        return snap

    @_storage_guard
    def redeem(self, credential_id, *, otp_hash, deliver, now):
        values = dict(
            state=State.USED,
            used_at=now,
            closed_at=now,
            last_seen_at=now,
            otp_hash=None,
            otp_expires_at=None,
        )
        if deliver:
            values['delivered_at'] = now
        return self._update(
            credential_id,
            AccessCredential.state == State.OTP_PENDING,
            AccessCredential.otp_hash == otp_hash,
            AccessCredential.otp_attempts < AccessCredential.max_otp_attempts,
            AccessCredential.otp_expires_at > now,
            AccessCredential.expires_at > now,
            **values,
        ) == 1

    @_storage_guard
    def block(self, credential_id, *, now):
        return self._update(
            credential_id,
            AccessCredential.state.in_(State.OPEN),
            state=State.BLOCKED, closed_at=now, last_seen_at=now,
            otp_hash=None, otp_expires_at=None,
        ) == 1

    @_storage_guard
    def expire(self, credential_id, *, now):
        return self._update(
            credential_id,
            AccessCredential.state.in_(State.OPEN),
            state=State.EXPIRED, closed_at=now, last_seen_at=now,
            otp_hash=None, otp_expires_at=None,
        ) == 1

    @_storage_guard
    def mark_delivered(self, credential_id, *, now):
        return self._update(
            credential_id,
            AccessCredential.state == State.USED,
            AccessCredential.delivered_at.is_(None),
            delivered_at=now, last_seen_at=now,
        ) == 1

    @_storage_guard
    def flag_binding_anomaly(self, credential_id, *, now):
        self._update(credential_id, binding_anomaly=True, last_seen_at=now)

    @_storage_guard
    def purge_closed(self, cutoff):
        stmt = (delete(AccessCredential)
                .where(or_(
                    AccessCredential.closed_at < cutoff,
                    and_(AccessCredential.state.in_(State.OPEN),
                         AccessCredential.expires_at < cutoff),
                ))
                .execution_options(synchronize_session=False))
        res = db.session.execute(stmt)
        db.session.commit()
        return res.rowcount


def get_store() -> CredentialStore:
    return current_app.extensions['credential_store']
