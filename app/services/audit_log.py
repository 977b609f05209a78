"""Append-only audit log service. Never update or delete - immutable audit trail."""
from __future__ import annotations

import enum
import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.models.audit_log import AuditLog

log = logging.getLogger("uvicorn.error")

CATEGORY_ACCOUNT_CREATED = "account_created"
CATEGORY_PROVISIONING_FAILED = "provisioning_failed"
CATEGORY_ORPHANED_IDENTITY = "orphaned_identity"
CATEGORY_SIGNUP_CLEANUP = "signup_cleanup"

# Column limits (match model)
_CATEGORY_LEN = 32
_TITLE_LEN = 255
_ACTOR_EMAIL_LEN = 255
_IP_LEN = 64
_MESSAGE_LEN = 100_000  # avoid unbounded Text blobs


def _sanitize_meta_value(v: Any) -> Any:
    """Convert to JSON-serializable value so meta never raises on INSERT."""
    if v is None:
        return None
    if isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if isinstance(v, enum.Enum):
        return getattr(v, "value", str(v))
    if isinstance(v, dict):
        return {str(k): _sanitize_meta_value(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_sanitize_meta_value(x) for x in v]
    return str(v)


def _sanitize_meta(meta: dict[str, Any] | None) -> dict[str, Any] | None:
    if meta is None:
        return None
    return {str(k): _sanitize_meta_value(v) for k, v in meta.items()}


def create_log(
    db: Session,
    category: str,
    title: str,
    message: str,
    *,
    actor_user_id: str | None = None,
    actor_email: str | None = None,
    ip_address: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    """Append one immutable audit log record. All timestamps are UTC (server_default).
    String fields are truncated to column limits; meta is sanitized for JSON."""
    cat = (category or "")[: _CATEGORY_LEN].strip() or CATEGORY_ACCOUNT_CREATED
    tit = (title or "")[: _TITLE_LEN].strip() or "-"
    msg = (message or "")[: _MESSAGE_LEN].strip() or "-"
    actor_em = (actor_email[: _ACTOR_EMAIL_LEN] if actor_email else None) or None
    ip = (ip_address[: _IP_LEN] if ip_address else None) or None

    entry = AuditLog(
        category=cat,
        title=tit,
        message=msg,
        actor_user_id=actor_user_id,
        actor_email=actor_em,
        ip_address=ip,
        meta=_sanitize_meta(meta),
    )
    db.add(entry)
    db.flush()  # get entry.id if caller needs it; commit remains with caller
    return entry


class AuditTrail:
    """Writes audit entries in their own short session, outside any failed transaction."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(self, category: str, title: str, message: str, **kwargs: Any) -> bool:
        db = self.session_factory()
        try:
            create_log(db, category, title, message, **kwargs)
            db.commit()
            return True
        except SQLAlchemyError:
            db.rollback()
            log.exception("[Audit] Could not record %s entry: %s", category, title)
            return False
        finally:
            db.close()
