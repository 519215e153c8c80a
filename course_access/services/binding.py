import hashlib
from flask import request


def current_context() -> dict:
    """Network/user-agent signature of the current request.

    Advisory only: both values are client-controlled, so a mismatch is
    flagged for operators but never denies access.
    """
    ua = request.headers.get('User-Agent', '')
    return {
        'ip': request.remote_addr or '0.0.0.0',
        'ua_hash': hashlib.sha256(ua.encode()).hexdigest()[:32],
    }


def differs(recorded: dict | None, seen: dict | None) -> bool:
    if not recorded or not seen:
        return False
    return recorded.get('ip') != seen.get('ip') or recorded.get('ua_hash') != seen.get('ua_hash')
