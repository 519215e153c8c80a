import logging
from datetime import timedelta
from flask import current_app
from ..models import utcnow
from . import audit
from .store import get_store

logger = logging.getLogger(__name__)


def reap(now=None, retention_minutes=None) -> int:
    """Delete credentials that closed (or lapsed unredeemed) before the retention window."""
    now = now or utcnow()
    if retention_minutes is None:
        retention_minutes = current_app.config['RETENTION_MINUTES']
    cutoff = now - timedelta(minutes=retention_minutes)
    removed = get_store().purge_closed(cutoff)
    if removed:
        audit.record('credentials_reaped', count=removed)
    logger.info('reaped %d credential(s) closed before %s', removed, cutoff.isoformat())
    return removed
