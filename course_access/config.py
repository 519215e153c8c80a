import os


def _bool(name, default='0'):
    return os.environ.get(name, default).lower() not in ('0', 'false', 'no', '')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///local.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    USE_REDIS = _bool('USE_REDIS', '1')
    BASE_URL = os.environ.get('BASE_URL', 'http://localhost:5000')
    ADMIN_API_KEY = os.environ.get('ADMIN_API_KEY')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Credential lifecycle
    TOKEN_TTL_SECONDS = int(os.environ.get('TOKEN_TTL_SECONDS', '600'))
    OTP_TTL_MINUTES = int(os.environ.get('OTP_TTL_MINUTES', '10'))
    MAX_OTP_ATTEMPTS = int(os.environ.get('MAX_OTP_ATTEMPTS', '5'))
    OTP_PEPPER = os.environ.get('OTP_PEPPER', 'pepper')
    DELIVERY_WINDOW_SECONDS = int(os.environ.get('DELIVERY_WINDOW_SECONDS', '300'))
    RETENTION_MINUTES = int(os.environ.get('RETENTION_MINUTES', '15'))
    RATE_LIMIT_PER_MINUTE = int(os.environ.get('RATE_LIMIT_PER_MINUTE', '30'))

    # Content
    CONTENT_DIR = os.environ.get('CONTENT_DIR', 'content')
    DEFAULT_CONTENT_REF = os.environ.get('DEFAULT_CONTENT_REF', 'guide')
    GUIDE_DOMAIN = os.environ.get('GUIDE_DOMAIN', '').strip()
    GUIDE_JWT_SECRET = os.environ.get('GUIDE_JWT_SECRET', '').strip()

    # Outbound mail
    MAIL_FROM = os.environ.get('MAIL_FROM', 'no-reply@example.com')
    SMTP_HOST = os.environ.get('SMTP_HOST', '')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', '587'))
    SMTP_USERNAME = os.environ.get('SMTP_USERNAME') or os.environ.get('SMTP_USER')
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD') or os.environ.get('SMTP_PASS')
    SMTP_USE_TLS = _bool('SMTP_USE_TLS', '1')
    SMTP_TIMEOUT = int(os.environ.get('SMTP_TIMEOUT', '10'))

    # Payments
    RAZORPAY_KEY_ID = os.environ.get('RAZORPAY_KEY_ID')
    RAZORPAY_KEY_SECRET = os.environ.get('RAZORPAY_KEY_SECRET')
    PAYMENT_AMOUNT = int(os.environ.get('PAYMENT_AMOUNT', '49900'))  # paise
    PAYMENT_CURRENCY = os.environ.get('PAYMENT_CURRENCY', 'INR')

    def __init__(self):
        # Optional fallbacks to support Secret Files on Render (/etc/secrets)
        for attr, name in (
            ('SECRET_KEY', 'secret_key'),
            ('OTP_PEPPER', 'otp_pepper'),
            ('SMTP_PASSWORD', 'smtp_password'),
            ('RAZORPAY_KEY_SECRET', 'razorpay_key_secret'),
            ('GUIDE_JWT_SECRET', 'guide_jwt_secret'),
        ):
            current = getattr(self, attr)
            if current and current not in ('dev', 'pepper'):
                continue
            try:
                with open(f'/etc/secrets/{name}', 'r') as f:
                    setattr(self, attr, f.read().strip())
            except OSError:
                continue
