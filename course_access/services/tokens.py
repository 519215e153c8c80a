import base64, hashlib, hmac, re, secrets, time
from urllib.parse import urlencode
import jwt
from flask import current_app

SECRET_BYTES = 32
OTP_DIGITS = 6
GUIDE_SESSION_TTL = 86400

_SECRET_RE = re.compile(r'^[A-Za-z0-9_-]{32,128}$')


# Link secret (raw value only ever travels in the emailed URL)
def generate_secret(nbytes: int = SECRET_BYTES) -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(nbytes)).rstrip(b'=').decode()

def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()

def is_well_formed(secret) -> bool:
    return isinstance(secret, str) and bool(_SECRET_RE.match(secret))

def hashes_match(stored: str | None, computed: str) -> bool:
    if not stored:
        return False
    return hmac.compare_digest(stored.encode(), computed.encode())

def build_link(secret: str) -> str:
    base = current_app.config['BASE_URL'].rstrip('/')
    return f"{base}/tokens/access?{urlencode({'t': secret})}"


# OTP (bound to one credential, peppered)
def generate_otp(digits: int = OTP_DIGITS) -> str:
    return str(secrets.randbelow(10 ** digits)).zfill(digits)

def hash_otp(credential_id: int, otp: str) -> str:
    pepper = current_app.config['OTP_PEPPER'].encode()
    msg = f"{credential_id}:{otp}".encode()
    return hmac.new(pepper, msg, hashlib.sha256).hexdigest()


# Guide session cookie (HS256), used when content lives on a separate domain
def sign_guide_session(email: str, content_ref: str, user_agent: str) -> str:
    payload = {
        'email': email,
        'contentRef': content_ref,
        'ua': hashlib.sha256(user_agent.encode()).hexdigest(),
        'exp': int(time.time()) + GUIDE_SESSION_TTL,
    }
    return jwt.encode(payload, current_app.config['GUIDE_JWT_SECRET'], algorithm='HS256')
