from flask import Blueprint, Response, render_template, request, jsonify
from .responses import wants_json
from .services.binding import current_context
from .services.delivery import resolve_content_path, view
from .services.gate import RedemptionGate, mask_email
from .services.rate_limit import limit_request

bp = Blueprint('public', __name__)

NO_STORE = {'Cache-Control': 'no-store', 'Referrer-Policy': 'no-referrer'}


@bp.get('/')
def home():
    return render_template('home.html')


def _visit(secret):
    limit_request('visit')
    result = RedemptionGate().visit_link(secret, current_context())
    masked = mask_email(result.email)
    if wants_json():
        return jsonify({
            'otpSent': result.email_sent,
            'otpExpiresAt': result.otp_expires_at.isoformat() + 'Z',
            'email': masked,
        }), 200, NO_STORE
    return render_template('otp.html', secret=secret, email=masked,
                           email_sent=result.email_sent), 200, NO_STORE


@bp.get('/tokens/access')
def visit_link():
    return _visit(request.args.get('t', ''))


@bp.get('/tokens/<secret>')
def visit_link_path(secret):
    return _visit(secret)


@bp.get('/content/view')
def content_view():
    limit_request('view')
    delivered = view(request.args.get('t', ''), current_context())
    if wants_json():
        return jsonify({'ok': True, 'contentRef': delivered.content_ref}), 200, NO_STORE
    path = resolve_content_path(delivered.content_ref)
    if path:
        with open(path, 'r', encoding='utf-8') as f:
            return Response(f.read(), mimetype='text/html', headers=NO_STORE)
    return render_template('content.html', email=delivered.email,
                           content_ref=delivered.content_ref), 200, NO_STORE
