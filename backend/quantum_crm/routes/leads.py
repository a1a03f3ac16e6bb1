from flask import Blueprint, request, abort
from quantum_crm import get_db
from quantum_crm.config.pagination import normalize_pagination, build_list_payload
from quantum_crm.decorators.activity import activity_log
from quantum_crm.decorators.auth import require_permission, current_user, enforce_resource_access
from quantum_crm.models.lead import Lead
from quantum_crm.services.permissions import get_scope, scope_filter

leads_bp = Blueprint('leads', __name__)

EDITABLE_FIELDS = ('name', 'email', 'phone', 'status', 'assigned_to_id', 'country_id')


def _serialize(lead: Lead) -> dict:
    return {
        'id': lead.id,
        'name': lead.name,
        'email': lead.email,
        'phone': lead.phone,
        'status': lead.status,
        'assigned_to_id': lead.assigned_to_id,
        'country_id': lead.country_id,
        'created_by': lead.created_by,
    }


def _get_lead(lead_id: int) -> Lead:
    lead = get_db().get(Lead, lead_id)
    if lead is None:
        abort(404, description='Lead no encontrado')
    return lead


def _validate_status(status):
    if status not in Lead.ALL_STATUSES:
        abort(400, description=f"status debe ser uno de {', '.join(Lead.ALL_STATUSES)}")


def _lead_snapshot(args, kwargs):
    lead = get_db().get(Lead, kwargs['lead_id'])
    return _serialize(lead) if lead else {}


@leads_bp.get('')
@require_permission('leads', 'view')
def list_leads():
    user = current_user()
    session = get_db()
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    q = session.query(Lead)
    status = request.args.get('status')
    if status:
        _validate_status(status)
        q = q.filter(Lead.status==status)
    q = scope_filter(q, get_scope(user, 'leads', 'view'), user, Lead.assigned_to_id, Lead.country_id)
    total = q.count()
    rows = q.order_by(Lead.id.desc()).offset(offset).limit(limit).all()
    return build_list_payload([_serialize(l) for l in rows], total, limit, offset)


@leads_bp.post('')
@require_permission('leads', 'create')
@activity_log('LEAD', 'CREATE', entity_id_key='id', meta_keys=['name', 'status', 'assigned_to_id'],
              description=lambda data, a, kw: f"Lead {data.get('name')} creado")
def create_lead():
    user = current_user()
    data = request.json or {}
    name = data.get('name')
    if not name:
        abort(400, description='name requerido')
    status = data.get('status', Lead.STATUS_NEW)
    _validate_status(status)
    # New leads default to the creator and the creator's country
    assigned_to_id = data.get('assigned_to_id', user.id)
    country_id = data.get('country_id', user.country_id)
    enforce_resource_access('leads', 'create', assigned_to_id, country_id)
    lead = Lead(
        name=name,
        email=data.get('email'),
        phone=data.get('phone'),
        status=status,
        assigned_to_id=assigned_to_id,
        country_id=country_id,
        created_by=user.id,
    )
    session = get_db()
    session.add(lead)
    session.commit()
    return {'success': True, 'data': _serialize(lead)}, 201


@leads_bp.get('/<int:lead_id>')
@require_permission('leads', 'view')
def get_lead(lead_id: int):
    lead = _get_lead(lead_id)
    enforce_resource_access('leads', 'view', lead.assigned_to_id, lead.country_id)
    return {'success': True, 'data': _serialize(lead)}


@leads_bp.put('/<int:lead_id>')
@require_permission('leads', 'edit')
@activity_log('LEAD', 'UPDATE', entity_id_arg='lead_id', diff_keys=['status', 'assigned_to_id', 'country_id'],
              pre_fetch=_lead_snapshot, description=lambda data, a, kw: f"Lead {data.get('name')} actualizado")
def update_lead(lead_id: int):
    lead = _get_lead(lead_id)
    enforce_resource_access('leads', 'edit', lead.assigned_to_id, lead.country_id)
    data = request.json or {}
    if 'name' in data and not data['name']:
        abort(400, description='name requerido')
    if 'status' in data:
        _validate_status(data['status'])
    if 'assigned_to_id' in data or 'country_id' in data:
        # the edit scope must also cover the lead's new owner and country
        enforce_resource_access('leads', 'edit',
                                data.get('assigned_to_id', lead.assigned_to_id),
                                data.get('country_id', lead.country_id))
    for field in EDITABLE_FIELDS:
        if field in data:
            setattr(lead, field, data[field])
    get_db().commit()
    return {'success': True, 'data': _serialize(lead)}


@leads_bp.delete('/<int:lead_id>')
@require_permission('leads', 'delete')
@activity_log('LEAD', 'DELETE', entity_id_arg='lead_id',
              description=lambda data, a, kw: f"Lead {data.get('name')} eliminado")
def delete_lead(lead_id: int):
    lead = _get_lead(lead_id)
    enforce_resource_access('leads', 'delete', lead.assigned_to_id, lead.country_id)
    session = get_db()
    payload = {'id': lead.id, 'name': lead.name}
    session.delete(lead)
    session.commit()
    return {'success': True, 'data': payload}
