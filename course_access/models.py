from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy
import time, os


def _gen_bigint_id():
    """Generate a sortable 64-bit int: millis timestamp << 16 | 16 bits randomness."""
    return (int(time.time() * 1000) << 16) | int.from_bytes(os.urandom(2), 'big')


def utcnow() -> datetime:
    # Naive UTC so comparisons behave the same on SQLite and Postgres
    return datetime.now(timezone.utc).replace(tzinfo=None)


db = SQLAlchemy()


class State:
    ISSUED = 'issued'
    OTP_PENDING = 'otp_pending'
    OTP_VERIFIED = 'otp_verified'
    USED = 'used'
    EXPIRED = 'expired'
    BLOCKED = 'blocked'

    OPEN = (ISSUED, OTP_PENDING)
    TERMINAL = (USED, EXPIRED, BLOCKED)


class AccessCredential(db.Model):
    __tablename__ = 'access_credential'

    id = db.Column(db.BigInteger, primary_key=True, default=_gen_bigint_id)
    secret_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(320), nullable=False, index=True)
    content_ref = db.Column(db.String(255), nullable=False)
    state = db.Column(db.String(32), nullable=False, default=State.ISSUED)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    otp_hash = db.Column(db.String(64))
    otp_expires_at = db.Column(db.DateTime)
    otp_attempts = db.Column(db.Integer, nullable=False, default=0)
    max_otp_attempts = db.Column(db.Integer, nullable=False, default=5)
    otp_sent_count = db.Column(db.Integer, nullable=False, default=0)

    binding_context = db.Column(db.JSON)
    binding_anomaly = db.Column(db.Boolean, nullable=False, default=False)

    payment_id = db.Column(db.String(64), index=True)
    order_id = db.Column(db.String(64))

    used_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)
    closed_at = db.Column(db.DateTime, index=True)
    last_seen_at = db.Column(db.DateTime)

    def summary(self) -> dict:
        """Operator view of the credential. Hashes are never included."""
        def iso(dt):
            return dt.isoformat() + 'Z' if dt else None
        return {
            'id': self.id,
            'email': self.email,
            'contentRef': self.content_ref,
            'state': self.state,
            'createdAt': iso(self.created_at),
            'expiresAt': iso(self.expires_at),
            'otpLive': self.otp_hash is not None,
            'otpExpiresAt': iso(self.otp_expires_at),
            'otpAttempts': self.otp_attempts,
            'maxOtpAttempts': self.max_otp_attempts,
            'otpSentCount': self.otp_sent_count,
            'bindingAnomaly': bool(self.binding_anomaly),
            'paymentId': self.payment_id,
            'orderId': self.order_id,
            'usedAt': iso(self.used_at),
            'deliveredAt': iso(self.delivered_at),
            'closedAt': iso(self.closed_at),
            'lastSeenAt': iso(self.last_seen_at),
        }


class AuditLog(db.Model):
    id = db.Column(db.BigInteger, primary_key=True, default=_gen_bigint_id)
    ts = db.Column(db.DateTime, default=utcnow)
    actor_type = db.Column(db.String(32))
    actor_id = db.Column(db.String(64))
    event_type = db.Column(db.String(64))
    payload_json = db.Column(db.JSON)


class PaymentClaim(db.Model):
    """One row per verified payment; a payment can issue access only once. Never reaped."""
    __tablename__ = 'payment_claim'
    payment_id = db.Column(db.String(64), primary_key=True)
    order_id = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(254), nullable=False)
    credential_id = db.Column(db.BigInteger)
    claimed_at = db.Column(db.DateTime, nullable=False, default=utcnow)
