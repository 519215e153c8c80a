import hashlib
import hmac
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from course_access.models import AccessCredential, PaymentClaim, State, db, utcnow
from course_access.services import otp as otp_module
from course_access.services import payments
from course_access.services.store import SqlCredentialStore, _storage_guard

from .conftest import ADMIN_KEY, GUIDE_SECRET, RAZORPAY_SECRET, decode_guide_session, secret_from_link

JSON = {'Accept': 'application/json'}


@pytest.fixture(autouse=True)
def fixed_otp(monkeypatch):
    codes = iter(['482913', '771204', '390015'])
    monkeypatch.setattr(otp_module, 'generate_otp', lambda: next(codes))


def _issue(client, email='a@x.com', content_ref='guide-1'):
    r = client.post('/tokens', json={'email': email, 'contentRef': content_ref},
                    headers={'X-Admin-Key': ADMIN_KEY})
    assert r.status_code == 201
    return secret_from_link(r.get_json()['linkUrl'])


def _credential(app, email='a@x.com'):
    with app.app_context():
        cred = AccessCredential.query.filter_by(email=email).populate_existing().first()
        db.session.expunge(cred)
        return cred


def test_health(client):
    assert client.get('/health').get_json() == {'ok': True}


def test_create_token_requires_admin_key(client):
    r = client.post('/tokens', json={'email': 'a@x.com', 'contentRef': 'guide-1'})
    assert r.status_code == 401
    assert r.get_json()['error'] == 'unauthorized'
    r = client.post('/tokens', json={'email': 'a@x.com', 'contentRef': 'guide-1'},
                    headers={'X-Admin-Key': 'wrong'})
    assert r.status_code == 401


def test_create_token_validates_body(client, admin_headers):
    r = client.post('/tokens', json={'email': 'nope', 'contentRef': 'guide-1'}, headers=admin_headers)
    assert r.status_code == 400
    assert r.get_json()['error'] == 'invalid_request'


def test_scenario_a_end_to_end(client, app, mailer):
    secret = _issue(client)
    assert mailer.sent[0]['to'] == 'a@x.com'

    r = client.get(f'/tokens/access?t={secret}', headers=JSON)
    assert r.status_code == 200
    body = r.get_json()
    assert body['otpSent'] is True
    assert body['email'] == 'a***@x.com'
    assert r.headers['Cache-Control'] == 'no-store'
    assert mailer.last_otp() == '482913'

    r = client.post('/otp/verify', json={'secret': secret, 'otp': '482913'})
    assert r.status_code == 200
    assert r.get_json() == {'ok': True, 'contentRef': 'guide-1'}
    assert _credential(app).state == State.USED

    r = client.get(f'/content/view?t={secret}', headers=JSON)
    assert r.status_code == 410
    assert r.get_json()['error'] == 'already_used'
    r = client.post('/otp/verify', json={'secret': secret, 'otp': '482913'})
    assert r.get_json()['error'] == 'already_used'
    r = client.get(f'/tokens/access?t={secret}', headers=JSON)
    assert r.get_json()['error'] == 'already_used'


def test_scenario_b_end_to_end(client, app, mailer):
    secret = _issue(client)
    client.get(f'/tokens/access?t={secret}', headers=JSON)

    with app.app_context():
        db.session.query(AccessCredential).update(
            {'otp_expires_at': utcnow() - timedelta(seconds=1)})
        db.session.commit()

    r = client.post('/otp/verify', json={'secret': secret, 'otp': '482913'})
    assert r.status_code == 400
    assert r.get_json()['error'] == 'otp_expired'

    client.get(f'/tokens/access?t={secret}', headers=JSON)
    assert mailer.last_otp() == '771204'
    r = client.post('/otp/verify', json={'secret': secret, 'otp': '771204'})
    assert r.status_code == 200
    assert r.get_json()['contentRef'] == 'guide-1'


def test_scenario_c_end_to_end(client, app):
    secret = _issue(client)
    client.get(f'/tokens/access?t={secret}', headers=JSON)

    statuses = []
    for _ in range(5):
        r = client.post('/otp/verify', json={'secret': secret, 'otp': '000000'})
        statuses.append((r.status_code, r.get_json()['error']))
    assert statuses[:4] == [(401, 'invalid_otp')] * 4
    assert statuses[4] == (423, 'too_many_attempts')
    assert _credential(app).state == State.BLOCKED

    r = client.post('/otp/verify', json={'secret': secret, 'otp': '482913'})
    assert r.status_code == 423
    r = client.get(f'/tokens/access?t={secret}', headers=JSON)
    assert r.status_code == 423


def test_invalid_otp_reports_remaining(client):
    secret = _issue(client)
    client.get(f'/tokens/access?t={secret}', headers=JSON)
    r = client.post('/otp/verify', json={'secret': secret, 'otp': '000000'})
    assert r.status_code == 401
    assert r.get_json()['remainingAttempts'] == 4


def test_verify_requires_secret_and_otp(client):
    r = client.post('/otp/verify', json={'otp': '123456'})
    assert r.status_code == 400
    assert r.get_json()['error'] == 'invalid_request'


def test_unknown_link(client):
    r = client.get('/tokens/access?t=' + 'x' * 43, headers=JSON)
    assert r.status_code == 404
    assert r.get_json()['error'] == 'invalid_token'
    r = client.get('/tokens/access?t=' + 'x' * 43)
    assert r.status_code == 404
    assert b'This link is not valid.' in r.data


def test_path_style_link(client, mailer):
    secret = _issue(client)
    r = client.get(f'/tokens/{secret}', headers=JSON)
    assert r.status_code == 200
    assert mailer.last_otp() == '482913'


def test_browser_form_flow_delivers_once(client, app):
    secret = _issue(client, content_ref='guide-1')
    r = client.get(f'/tokens/access?t={secret}')
    assert r.status_code == 200
    assert secret.encode() in r.data
    assert b'name="otp"' in r.data

    r = client.post('/otp/verify', data={'secret': secret, 'otp': '482913'})
    assert r.status_code == 303
    assert '/content/view?t=' in r.headers['Location']
    assert _credential(app).delivered_at is None

    r = client.get(f'/content/view?t={secret}')
    assert r.status_code == 200
    assert b'guide-1' in r.data
    assert r.headers['Cache-Control'] == 'no-store'

    r = client.get(f'/content/view?t={secret}')
    assert r.status_code == 410
    assert b'already been used' in r.data


def test_content_page_served_from_content_dir(client, tmp_path):
    (tmp_path / 'guide-1.html').write_text('<h1>The Guide</h1>')
    secret = _issue(client)
    client.get(f'/tokens/access?t={secret}')
    client.post('/otp/verify', data={'secret': secret, 'otp': '482913'})
    r = client.get(f'/content/view?t={secret}')
    assert r.status_code == 200
    assert r.data == b'<h1>The Guide</h1>'


def test_content_view_before_verify(client):
    secret = _issue(client)
    r = client.get(f'/content/view?t={secret}', headers=JSON)
    assert r.status_code == 401
    assert r.get_json()['error'] == 'otp_required'


def test_guide_domain_handoff_sets_session_cookie(client, app):
    app.config['GUIDE_DOMAIN'] = 'guide.example.com'
    app.config['GUIDE_JWT_SECRET'] = GUIDE_SECRET
    secret = _issue(client)
    client.get(f'/tokens/access?t={secret}')

    r = client.post('/otp/verify', data={'secret': secret, 'otp': '482913'},
                    headers={'User-Agent': 'UA/1.0'})
    assert r.status_code == 303
    assert r.headers['Location'] == 'https://guide.example.com/'
    cookie = next(c for c in r.headers.getlist('Set-Cookie') if c.startswith('sc_session='))
    token = cookie.split(';', 1)[0].split('=', 1)[1]
    claims = decode_guide_session(token)
    assert claims['email'] == 'a@x.com'
    assert claims['ua'] == hashlib.sha256(b'UA/1.0').hexdigest()

    # delivered in the same write, so the content view is already spent
    r = client.get(f'/content/view?t={secret}', headers=JSON)
    assert r.status_code == 410


def test_admin_credential_summary_hides_hashes(client, app, admin_headers):
    secret = _issue(client)
    cred_id = _credential(app).id
    r = client.get(f'/admin/credentials/{cred_id}', headers=admin_headers)
    assert r.status_code == 200
    body = r.get_json()
    assert body['state'] == 'issued'
    assert 'secretHash' not in body and 'otpHash' not in body
    assert secret not in r.get_data(as_text=True)

    assert client.get(f'/admin/credentials/{cred_id}').status_code == 401
    assert client.get('/admin/credentials/1', headers=admin_headers).status_code == 404


def test_admin_reissues_blocked_credential(client, app, admin_headers, mailer):
    secret = _issue(client)
    client.get(f'/tokens/access?t={secret}', headers=JSON)
    cred_id = _credential(app).id

    r = client.post(f'/admin/credentials/{cred_id}/reissue', headers=admin_headers)
    assert r.status_code == 400

    for _ in range(5):
        client.post('/otp/verify', json={'secret': secret, 'otp': '000000'})
    r = client.post(f'/admin/credentials/{cred_id}/reissue', headers=admin_headers)
    assert r.status_code == 201
    body = r.get_json()
    assert body['replaces'] == cred_id
    assert body['credentialId'] != cred_id
    new_secret = secret_from_link(body['linkUrl'])
    assert mailer.last_link() == body['linkUrl']

    r = client.get(f'/tokens/access?t={new_secret}', headers=JSON)
    assert r.status_code == 200


def test_admin_reap(client, app, admin_headers):
    secret = _issue(client)
    with app.app_context():
        db.session.query(AccessCredential).update({
            'state': State.USED,
            'closed_at': utcnow() - timedelta(hours=1),
        })
        db.session.commit()
    r = client.post('/admin/reap', headers=admin_headers)
    assert r.get_json() == {'ok': True, 'removed': 1}
    r = client.get(f'/tokens/access?t={secret}', headers=JSON)
    assert r.status_code == 404


def _sign(order_id, payment_id):
    return hmac.new(RAZORPAY_SECRET.encode(), f'{order_id}|{payment_id}'.encode(),
                    hashlib.sha256).hexdigest()


def test_payment_verify_issues_link_by_email_only(client, app, mailer):
    r = client.post('/payments/verify', json={
        'razorpay_order_id': 'order_1',
        'razorpay_payment_id': 'pay_1',
        'razorpay_signature': _sign('order_1', 'pay_1'),
        'email': 'Buyer@X.com',
    })
    assert r.status_code == 200
    body = r.get_json()
    assert body['ok'] and body['emailSent']
    assert 'linkUrl' not in body
    assert mailer.sent[-1]['to'] == 'buyer@x.com'

    cred = _credential(app, 'buyer@x.com')
    assert cred.payment_id == 'pay_1'
    assert cred.order_id == 'order_1'
    assert cred.content_ref == app.config['DEFAULT_CONTENT_REF']


def test_payment_can_only_be_redeemed_once(client, app, mailer):
    signed = {
        'razorpay_order_id': 'order_1',
        'razorpay_payment_id': 'pay_1',
        'razorpay_signature': _sign('order_1', 'pay_1'),
    }
    first = client.post('/payments/verify', json={**signed, 'email': 'a@x.com'})
    assert first.get_json()['emailSent']

    for email in ('b@x.com', 'c@x.com'):
        r = client.post('/payments/verify', json={**signed, 'email': email})
        assert r.status_code == 200
        assert r.get_json()['emailSent'] is False

    assert [m['to'] for m in mailer.sent] == ['a@x.com']
    with app.app_context():
        creds = AccessCredential.query.filter_by(payment_id='pay_1').all()
        assert len(creds) == 1
        claim = db.session.get(PaymentClaim, 'pay_1')
        assert claim.credential_id == creds[0].id
        assert claim.email == 'a@x.com'


def test_payment_with_bad_email_is_not_claimed(client, app):
    signed = {
        'razorpay_order_id': 'order_2',
        'razorpay_payment_id': 'pay_2',
        'razorpay_signature': _sign('order_2', 'pay_2'),
    }
    r = client.post('/payments/verify', json={**signed, 'email': 'not-an-email'})
    assert r.status_code == 400
    r = client.post('/payments/verify', json={**signed, 'email': 'buyer@x.com'})
    assert r.get_json()['emailSent']


def test_payment_verify_rejects_bad_signature(client, app):
    r = client.post('/payments/verify', json={
        'razorpay_order_id': 'order_1',
        'razorpay_payment_id': 'pay_1',
        'razorpay_signature': _sign('order_1', 'pay_2'),
        'email': 'buyer@x.com',
    })
    assert r.status_code == 400
    assert r.get_json()['error'] == 'payment_verification_failed'
    with app.app_context():
        assert AccessCredential.query.count() == 0


@pytest.fixture
def razorpay_orders(monkeypatch):
    created = {}

    class FakeOrders:
        def create(self, data):
            created.update(data)
            return {'id': 'order_9', 'amount': data['amount'], 'currency': data['currency']}

    class FakeClient:
        order = FakeOrders()

    monkeypatch.setattr(payments, '_client', lambda: FakeClient())
    return created


def test_payment_order(client, razorpay_orders):
    created = razorpay_orders
    r = client.post('/payments/order', json={})
    assert r.status_code == 200
    assert r.get_json() == {'orderId': 'order_9', 'amount': 49900, 'currency': 'INR',
                            'keyId': 'rzp_test_key'}
    assert created['payment_capture'] == 1


def test_payment_order_price_is_set_by_server(client, razorpay_orders):
    r = client.post('/payments/order', json={'amount': 1, 'currency': 'USD'})
    assert r.status_code == 200
    assert razorpay_orders['amount'] == 49900
    assert razorpay_orders['currency'] == 'INR'
    assert r.get_json()['amount'] == 49900


def test_storage_failure_is_503(client, app):
    class BrokenStore(SqlCredentialStore):
        @_storage_guard
        def find_by_secret_hash(self, secret_hash):
            raise OperationalError('SELECT', {}, Exception('database is down'))

    app.extensions['credential_store'] = BrokenStore()
    r = client.get('/tokens/access?t=' + 'x' * 43, headers=JSON)
    assert r.status_code == 503
    assert r.get_json()['error'] == 'storage_unavailable'


def test_rate_limit(client, app):
    app.config['RATE_LIMIT_PER_MINUTE'] = 2
    url = '/tokens/access?t=' + 'x' * 43
    assert client.get(url, headers=JSON).status_code == 404
    assert client.get(url, headers=JSON).status_code == 404
    r = client.get(url, headers=JSON)
    assert r.status_code == 429
    assert r.get_json()['error'] == 'rate_limited'
