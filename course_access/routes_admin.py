import hmac
from flask import Blueprint, jsonify, request, current_app
from .models import State
from .services.errors import InvalidRequest, InvalidToken, Unauthorized
from .services.issuer import issue
from .services.reaper import reap
from .services.store import get_store

bp = Blueprint('admin', __name__)


def require_admin_key():
    # Simple API-key auth
    api_key = request.headers.get('X-Admin-Key') or ''
    expected = current_app.config.get('ADMIN_API_KEY') or ''
    if not expected or not hmac.compare_digest(api_key.encode(), expected.encode()):
        raise Unauthorized()


@bp.before_request
def _guard():
    require_admin_key()


@bp.get('/ping')
def ping():
    return jsonify({'admin': 'ok'})


@bp.get('/credentials/<int:credential_id>')
def credential(credential_id: int):
    cred = get_store().get(credential_id)
    if cred is None:
        raise InvalidToken('No such credential.')
    return jsonify(cred.summary())


@bp.post('/credentials/<int:credential_id>/reissue')
def reissue(credential_id: int):
    """Operator remedy for a blocked or expired link: mail a fresh credential."""
    cred = get_store().get(credential_id)
    if cred is None:
        raise InvalidToken('No such credential.')
    if cred.state not in (State.BLOCKED, State.EXPIRED):
        raise InvalidRequest(f'Credential is {cred.state}; only blocked or expired links are reissued.')
    link = issue(cred.email, cred.content_ref, payment_id=cred.payment_id, order_id=cred.order_id)
    return jsonify({
        'ok': True,
        'replaces': credential_id,
        'credentialId': link.credential_id,
        'linkUrl': link.link_url,
        'emailSent': link.email_sent,
    }), 201


@bp.post('/reap')
def run_reaper():
    return jsonify({'ok': True, 'removed': reap()})
