from __future__ import annotations
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity
from quantum_crm import get_db
from quantum_crm.models.activity import ActivityLog


def add_activity(entity_type: str, entity_id: Any = None, action: str = 'UPDATE', description: Optional[str] = None,
                 meta: Optional[Dict[str, Any]] = None, performed_by: Optional[int] = None):
    """Persist an activity log entry within the current DB session.

    Parameters:
      entity_type: entity label, e.g. USER, USER_PERMISSION, LEAD
      entity_id: optional primary key (stored as string)
      action: short action code, e.g. CREATE, UPDATE, RESET, DELETE
      description: human readable summary shown in the activity feed
      meta: additional JSON-safe dictionary (shallow copied)
      performed_by: actor user id; defaults to the JWT identity of the request
    """
    if performed_by is None:
        try:
            ident = get_jwt_identity()
        except RuntimeError:
            # no verified JWT in this context
            ident = None
        performed_by = int(ident) if ident is not None else 0
    log = ActivityLog(
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        action=action,
        description=description,
        performed_by_id=performed_by,
        meta=dict(meta or {}),
    )
    get_db().add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
