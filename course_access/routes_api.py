import logging
from flask import Blueprint, current_app, jsonify, make_response, redirect, request, url_for
from .responses import wants_json
from .routes_admin import require_admin_key
from .services import audit
from .services.binding import current_context
from .services.errors import InvalidRequest, PaymentVerificationFailed
from .services.gate import RedemptionGate
from .services.issuer import clean_request, issue
from .services.payments import create_order, verify_signature
from .services.rate_limit import limit_request
from .services.store import get_store
from .services.tokens import sign_guide_session

logger = logging.getLogger(__name__)

bp = Blueprint('api', __name__)


def _body() -> dict:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


@bp.post('/tokens')
def create_token():
    require_admin_key()
    data = _body()
    link = issue(data.get('email'), data.get('contentRef') or data.get('content_ref'))
    return jsonify({
        'linkUrl': link.link_url,
        'emailSent': link.email_sent,
    }), 201


@bp.post('/otp/verify')
def verify_otp():
    limit_request('verify')
    data = _body()
    secret = data.get('secret') or data.get('token') or ''
    otp = data.get('otp')
    if not secret or not otp:
        raise InvalidRequest('Missing link or code.')
    email = data.get('email') or None
    cfg = current_app.config
    handoff = bool(cfg.get('GUIDE_DOMAIN') and cfg.get('GUIDE_JWT_SECRET'))

    if wants_json():
        redemption = RedemptionGate().submit_otp(secret, otp, current_context(), email=email, deliver=True)
        return jsonify({'ok': True, 'contentRef': redemption.content_ref}), 200, {'Cache-Control': 'no-store'}

    redemption = RedemptionGate().submit_otp(secret, otp, current_context(), email=email, deliver=handoff)
    if not handoff:
        return redirect(url_for('public.content_view', t=secret), code=303)

    session = sign_guide_session(redemption.email, redemption.content_ref,
                                 request.headers.get('User-Agent', ''))
    resp = make_response(redirect(f"https://{cfg['GUIDE_DOMAIN']}/", code=303))
    resp.set_cookie('sc_session', session, max_age=86400, httponly=True, secure=True,
                    samesite='None', domain=f".{cfg['GUIDE_DOMAIN']}", path='/')
    return resp


@bp.post('/payments/order')
def payment_order():
    order = create_order()
    return jsonify({
        'orderId': order['id'],
        'amount': order['amount'],
        'currency': order['currency'],
        'keyId': current_app.config.get('RAZORPAY_KEY_ID'),
    })


@bp.post('/payments/verify')
def payment_verify():
    data = _body()
    order_id = data.get('razorpay_order_id') or data.get('orderId')
    payment_id = data.get('razorpay_payment_id') or data.get('paymentId')
    signature = data.get('razorpay_signature') or data.get('signature')
    try:
        verify_signature(order_id, payment_id, signature)
    except PaymentVerificationFailed:
        audit.record('payment_rejected', order_id=order_id, payment_id=payment_id)
        raise
    audit.record('payment_verified', order_id=order_id, payment_id=payment_id)

    email, content_ref = clean_request(
        data.get('email'), data.get('contentRef') or current_app.config['DEFAULT_CONTENT_REF'])
    store = get_store()
    if not store.claim_payment(payment_id, order_id=order_id, email=email):
        logger.warning('payment already claimed payment=%s', payment_id)
        audit.record('payment_replayed', order_id=order_id, payment_id=payment_id)
        return jsonify({
            'ok': True,
            'emailSent': False,
            'message': 'This payment was already used. Check your email for your access link.',
        })

    link = issue(email, content_ref, payment_id=payment_id, order_id=order_id)
    store.attach_payment(payment_id, link.credential_id)
    # The link itself only travels by email
    return jsonify({
        'ok': True,
        'emailSent': link.email_sent,
        'message': 'Payment verified. Check your email for your access link.',
    })
