"""Razorpay collaborator: order creation and checkout signature verification.

Checkout returns ``{order_id, payment_id, signature}`` to the browser; the
signature is HMAC-SHA256 of ``"{order_id}|{payment_id}"`` under the key
secret. Without this check anyone could claim a payment succeeded.
"""
import hashlib
import hmac
import logging

from flask import current_app

from .errors import PaymentVerificationFailed

logger = logging.getLogger(__name__)


def _client():
    import razorpay
    cfg = current_app.config
    return razorpay.Client(auth=(cfg['RAZORPAY_KEY_ID'], cfg['RAZORPAY_KEY_SECRET']))


def create_order(receipt: str | None = None) -> dict:
    """Create an order for the configured price.

    ``PAYMENT_AMOUNT`` is in the currency's smallest unit (paise for INR). Clients
    never choose the price.
    """
    cfg = current_app.config
    data = {
        'amount': int(cfg['PAYMENT_AMOUNT']),
        'currency': cfg['PAYMENT_CURRENCY'],
        'payment_capture': 1,
    }
    if receipt:
        data['receipt'] = receipt
    return _client().order.create(data=data)


def verify_signature(order_id: str, payment_id: str, signature: str) -> None:
    secret = current_app.config.get('RAZORPAY_KEY_SECRET')
    if not secret:
        raise PaymentVerificationFailed('Payments are not configured.')
    if not (order_id and payment_id and signature):
        raise PaymentVerificationFailed()
    expected = hmac.new(secret.encode(), f'{order_id}|{payment_id}'.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        logger.warning('payment signature mismatch order=%s', order_id)
        raise PaymentVerificationFailed()
