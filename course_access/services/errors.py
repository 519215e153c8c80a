"""Error kinds surfaced by the redemption flow.

Each error carries a stable ``code`` for API clients, an HTTP ``status`` and
a public ``message``. Messages must not reveal whether a credential exists.
"""


class AccessError(Exception):
    code = 'access_error'
    status = 400
    message = 'Request could not be completed.'

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}


class InvalidRequest(AccessError):
    code = 'invalid_request'
    status = 400
    message = 'Invalid request.'


class InvalidToken(AccessError):
    code = 'invalid_token'
    status = 404
    message = 'This link is not valid.'


class LinkExpired(AccessError):
    code = 'link_expired'
    status = 410
    message = 'This link has expired.'


class OtpExpired(AccessError):
    code = 'otp_expired'
    status = 400
    message = 'Your code has expired. Re-open the link from your email to get a new one.'


class OtpRequired(AccessError):
    code = 'otp_required'
    status = 401
    message = 'Verify the code sent to your email first.'


class InvalidOtp(AccessError):
    code = 'invalid_otp'
    status = 401
    message = 'Incorrect code.'

    def __init__(self, remaining: int):
        super().__init__(f'Incorrect code. {remaining} attempt(s) remaining.')
        self.remaining = remaining

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['remainingAttempts'] = self.remaining
        return data


class TooManyAttempts(AccessError):
    code = 'too_many_attempts'
    status = 423
    message = 'Too many incorrect codes. This link is locked; contact support for a new one.'


class AlreadyUsed(AccessError):
    code = 'already_used'
    status = 410
    message = 'This link has already been used.'


class RateLimited(AccessError):
    code = 'rate_limited'
    status = 429
    message = 'Too many requests. Try again in a minute.'


class Unauthorized(AccessError):
    code = 'unauthorized'
    status = 401
    message = 'Unauthorized.'


class PaymentVerificationFailed(AccessError):
    code = 'payment_verification_failed'
    status = 400
    message = 'Payment verification failed.'


class StorageUnavailable(AccessError):
    code = 'storage_unavailable'
    status = 503
    message = 'Service temporarily unavailable.'
