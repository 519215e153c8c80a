import re
from urllib.parse import parse_qs, urlparse

import jwt
import pytest

from course_access import create_app
from course_access.models import db
from course_access.services import rate_limit
from course_access.services.issuer import issue
from course_access.services.mailer import MailSendError

ADMIN_KEY = 'test-admin-key'
RAZORPAY_SECRET = 'rzp_test_secret'
GUIDE_SECRET = 'guide-secret-guide-secret-guide-secret'


class RecordingMailer:
    """Captures outgoing mail instead of talking to SMTP."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, text, html=None):
        if self.fail:
            raise MailSendError('SMTP error: ConnectionRefusedError')
        self.sent.append({'to': to, 'subject': subject, 'text': text, 'html': html})

    def last_otp(self):
        for mail in reversed(self.sent):
            m = re.search(r'code is (\d{6})', mail['text'])
            if m:
                return m.group(1)
        return None

    def last_link(self):
        for mail in reversed(self.sent):
            m = re.search(r'(https?://\S+/tokens/access\?t=\S+)', mail['text'])
            if m:
                return m.group(1)
        return None


@pytest.fixture
def app(tmp_path):
    rate_limit.reset()
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'USE_REDIS': False,
        'ADMIN_API_KEY': ADMIN_KEY,
        'BASE_URL': 'http://testserver',
        'OTP_PEPPER': 'test-pepper',
        'RATE_LIMIT_PER_MINUTE': 0,
        'GUIDE_DOMAIN': '',
        'GUIDE_JWT_SECRET': '',
        'RAZORPAY_KEY_ID': 'rzp_test_key',
        'RAZORPAY_KEY_SECRET': RAZORPAY_SECRET,
        'CONTENT_DIR': str(tmp_path),
        'SMTP_HOST': '',
    })
    app.extensions['mailer'] = RecordingMailer()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
    rate_limit.reset()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def mailer(app):
    return app.extensions['mailer']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {'X-Admin-Key': ADMIN_KEY}


def secret_from_link(link_url: str) -> str:
    return parse_qs(urlparse(link_url).query)['t'][0]


def decode_guide_session(token: str) -> dict:
    """Verify an ``sc_session`` cookie the way the guide domain does."""
    return jwt.decode(token, GUIDE_SECRET, algorithms=['HS256'])


@pytest.fixture
def issued(ctx):
    """Issue a credential and return ``(credential_id, raw_secret)``."""
    def _issue(email='a@x.com', content_ref='guide-1', now=None):
        link = issue(email, content_ref, now=now)
        return link.credential_id, secret_from_link(link.link_url)
    return _issue
