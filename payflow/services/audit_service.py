import uuid, json
from typing import Any
from sqlalchemy.orm import Session
from payflow.models.audit_log import AuditLog

# Keys that may show up in gateway requests/responses and must not be persisted.
_SECRET_KEYS = frozenset({"sign", "crc", "apiKey", "api_key"})


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items() if k not in _SECRET_KEYS}
    if isinstance(value, list):
        return [_scrub(v) for v in value]
    return value


def log_audit(db: Session, actor_user_id: str, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    """Queue an audit row on ``db``; the caller's commit persists it."""
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(_scrub(details or {}), ensure_ascii=False, default=str),
    ))
