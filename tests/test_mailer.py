import smtplib

import pytest

from course_access.services.mailer import MailSendError, SmtpMailer


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.calls = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append('starttls')

    def login(self, user, password):
        self.calls.append(('login', user))

    def sendmail(self, sender, to, msg):
        self.calls.append(('sendmail', sender, tuple(to), msg))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(smtplib, 'SMTP', FakeSMTP)
    return FakeSMTP


def test_send_over_smtp(fake_smtp):
    mailer = SmtpMailer('smtp.example.com', 587, 'shop@example.com', password='pw')
    mailer.send('a@x.com', 'Hello', 'plain body', '<p>html</p>')

    smtp = fake_smtp.instances[0]
    assert (smtp.host, smtp.port) == ('smtp.example.com', 587)
    assert smtp.calls[0] == 'starttls'
    assert smtp.calls[1] == ('login', 'shop@example.com')
    _, sender, to, raw = smtp.calls[2]
    assert sender == 'shop@example.com'
    assert to == ('a@x.com',)
    assert 'Subject: Hello' in raw


def test_missing_configuration_raises(fake_smtp):
    with pytest.raises(MailSendError):
        SmtpMailer('', 587, 'shop@example.com').send('a@x.com', 's', 't')
    with pytest.raises(MailSendError):
        SmtpMailer('smtp.example.com', 587, '').send('a@x.com', 's', 't')
    with pytest.raises(MailSendError):
        SmtpMailer('smtp.example.com', 587, 'shop@example.com').send('', 's', 't')
    assert fake_smtp.instances == []


def test_smtp_errors_become_mail_send_error(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError()

    monkeypatch.setattr(smtplib, 'SMTP', refuse)
    with pytest.raises(MailSendError):
        SmtpMailer('smtp.example.com', 587, 'shop@example.com').send('a@x.com', 's', 't')


def test_from_config(app):
    app.config.update(SMTP_HOST='smtp.gmail.com', SMTP_PORT=465, MAIL_FROM='shop@example.com',
                      SMTP_USERNAME='user', SMTP_PASSWORD='pw', SMTP_USE_TLS=False)
    mailer = SmtpMailer.from_config(app.config)
    assert mailer.host == 'smtp.gmail.com'
    assert mailer.port == 465
    assert mailer.username == 'user'
    assert not mailer.use_tls
