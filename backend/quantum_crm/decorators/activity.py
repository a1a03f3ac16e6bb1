from __future__ import annotations
"""Activity log decorator for route handlers that mutate CRM entities.

Usage:

@activity_log('LEAD', 'CREATE', entity_id_key='id', meta_keys=['name', 'status'])
def create_lead():
    ... return {'success': True, 'data': {...}}, 201

@activity_log('USER', 'UPDATE', entity_id_arg='user_id', diff_keys=['role'],
              pre_fetch=lambda args, kwargs: _user_snapshot(kwargs['user_id']))
def update_role(user_id): ...

Parameters:
  entity_type / action: activity codes stored on the log row.
  entity_id_key: key in the returned ``data`` object whose value becomes entity_id.
  entity_id_arg: view argument used for entity_id when the key is absent.
  description: static text, or a callable receiving (data, args, kwargs).
  meta_keys: keys projected from ``data`` into meta.
  diff_keys + pre_fetch: record ``{'before', 'after'}`` for keys that changed.

Only successful responses (status < 400) are logged. Handlers answer
``{'success': True, 'data': {...}}``; the ``data`` object is what gets inspected.
"""

import logging
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional, Union

from quantum_crm import get_db
from quantum_crm.services.activity import add_activity

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return (data, status) for a view return value."""
    status = 200
    body = rv
    if isinstance(rv, tuple) and rv:
        body = rv[0]
        if len(rv) > 1 and isinstance(rv[1], int):
            status = rv[1]
    elif hasattr(rv, 'status_code'):
        status = rv.status_code
        body = rv.get_json(silent=True)
    if isinstance(body, dict) and isinstance(body.get('data'), dict):
        body = body['data']
    return body, status


def activity_log(
    entity_type: str,
    action: str,
    *,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    description: Union[str, Callable[[dict, tuple, dict], str], None] = None,
    meta_keys: Optional[Iterable[str]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data, status = _extract_payload(rv)
            if status >= 400:
                return rv
            if not isinstance(data, dict):
                data = {}
            entity_id = data.get(entity_id_key) if entity_id_key else None
            if entity_id is None and entity_id_arg:
                entity_id = kwargs.get(entity_id_arg)
            text = description(data, args, kwargs) if callable(description) else description
            meta = {k: data.get(k) for k in (meta_keys or ()) if k in data}
            if diff_keys and isinstance(before, dict):
                changes = {
                    k: {'before': before.get(k), 'after': data.get(k)}
                    for k in diff_keys
                    if k in before and k in data and before.get(k) != data.get(k)
                }
                if changes:
                    meta['changes'] = changes
            add_activity(entity_type, entity_id, action, text, meta)
            try:
                get_db().commit()
            except Exception:
                # The mutation is already committed; a lost activity row must not fail the response
                logger.exception('Failed to persist activity %s.%s for %s', entity_type, action, entity_id)
                get_db().rollback()
            return rv
        return wrapper
    return outer
