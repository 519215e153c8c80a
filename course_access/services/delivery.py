import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..models import State, utcnow
from . import audit
from .errors import AlreadyUsed, OtpRequired
from .gate import RedemptionGate
from .store import CredentialStore

logger = logging.getLogger(__name__)

_REF_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$')


@dataclass(frozen=True)
class DeliveredContent:
    credential_id: int
    email: str
    content_ref: str


def deliver(store: CredentialStore, credential_id: int, *, now: datetime | None = None) -> str:
    """Release the content reference of a just-redeemed credential, once."""
    now = now or utcnow()
    if not store.mark_delivered(credential_id, now=now):
        raise AlreadyUsed()
    cred = store.get(credential_id)
    audit.record('content_delivered', credential_id)
    return cred.content_ref


def view(secret, context: dict | None = None, *, now: datetime | None = None,
         gate: RedemptionGate | None = None) -> DeliveredContent:
    """One-shot content view following a verify that did not deliver inline."""
    now = now or utcnow()
    gate = gate or RedemptionGate()
    cred = gate.lookup(secret)
    if cred.state != State.USED:
        if cred.state in State.OPEN and now < cred.expires_at:
            raise OtpRequired()
        raise gate.explain(cred, now)

    window = timedelta(seconds=current_app.config['DELIVERY_WINDOW_SECONDS'])
    if cred.delivered_at is not None or cred.used_at is None or now > cred.used_at + window:
        raise AlreadyUsed()

    gate.check_binding(cred, context, now)
    content_ref = deliver(gate.store, cred.id, now=now)
    return DeliveredContent(credential_id=cred.id, email=cred.email, content_ref=content_ref)


def resolve_content_path(content_ref: str) -> str | None:
    """Map a content reference to a page under CONTENT_DIR, if one exists."""
    if not content_ref or not _REF_RE.match(content_ref) or '..' in content_ref:
        return None
    root = os.path.abspath(current_app.config['CONTENT_DIR'])
    path = os.path.join(root, f'{content_ref}.html')
    return path if os.path.isfile(path) else None
