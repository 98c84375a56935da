from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopfloor.db.models.security_audit import AuditLog

LOGGER = logging.getLogger(__name__)


def audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    payload: dict | None = None,
) -> bool:
    """Write an append-only audit record in its own transaction.

    The sink is fire-and-forget: a failed write is logged and reported as
    False, never raised, so the caller's already committed change stands.
    """
    safe_payload: dict[str, Any] = payload or {}
    try:
        # Ensure it can roundtrip to JSON (avoids runtime errors on commit)
        safe_payload = json.loads(json.dumps(safe_payload, default=str))
    except (TypeError, ValueError):
        safe_payload = {"_payload_error": "non_json", "_payload_repr": repr(payload)}

    try:
        with Session(bind=db.get_bind(), future=True) as audit_db:
            audit_db.add(
                AuditLog(
                    actor=actor,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    payload=safe_payload,
                )
            )
            audit_db.commit()
    except SQLAlchemyError as exc:
        LOGGER.warning("Audit write failed for %s %s/%s: %s", action, entity_type, entity_id, exc)
        return False
    return True
