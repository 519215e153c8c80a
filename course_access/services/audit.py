import logging
from sqlalchemy.exc import SQLAlchemyError
from ..models import db, AuditLog

logger = logging.getLogger(__name__)


def record(event_type: str, credential_id=None, actor_type: str = 'system', **payload):
    """Append an operator-facing audit event. Never pass secrets, OTPs or hashes.

    Audit rows are written after the state change they describe has committed,
    so a failed write is logged and dropped instead of failing the request.
    """
    entry = AuditLog(
        actor_type=actor_type,
        actor_id=str(credential_id) if credential_id is not None else None,
        event_type=event_type,
        payload_json=payload or None,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception('audit write failed event=%s credential=%s', event_type, credential_id)
        return None
    logger.info('audit %s credential=%s', event_type, credential_id)
    return entry
