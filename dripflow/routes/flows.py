"""
Flows API - Administração de flows e entrada de contatos

Endpoints:
- POST /api/v1/flows/:id/activate - Valida e ativa o flow
- POST /api/v1/flows/:id/deactivate - Pausa o flow (enrollments congelados)
- PUT /api/v1/flows/:id/definition - Substitui a definição (sem enrollments vivos)
- GET /api/v1/flows/:id/stats - Contadores e enrollments por status
- POST /api/v1/flows/:id/enrollments - Inscreve um ou vários contatos
"""

from flask import Blueprint, current_app, jsonify, request
from uuid import UUID
import logging

from dripflow.exceptions import FlowLockedError, FlowValidationError
from dripflow.services.flow_service import FlowService

logger = logging.getLogger(__name__)

flows_bp = Blueprint('flows', __name__, url_prefix='/api/v1/flows')


def parse_uuid(value):
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _service() -> FlowService:
    return FlowService(config=current_app.config)


def _load_flow(service: FlowService, flow_id):
    key = parse_uuid(flow_id)
    return service.get(key) if key else None


@flows_bp.route('/<flow_id>/activate', methods=['POST'])
def activate_flow(flow_id):
    service = _service()
    flow = _load_flow(service, flow_id)
    if not flow:
        return jsonify({'error': 'Flow not found'}), 404

    try:
        service.activate(flow)
    except FlowValidationError as e:
        return jsonify({'error': str(e), 'problems': e.problems}), 400

    return jsonify(flow.to_dict()), 200


@flows_bp.route('/<flow_id>/deactivate', methods=['POST'])
def deactivate_flow(flow_id):
    service = _service()
    flow = _load_flow(service, flow_id)
    if not flow:
        return jsonify({'error': 'Flow not found'}), 404

    service.deactivate(flow)
    return jsonify(flow.to_dict()), 200


@flows_bp.route('/<flow_id>/definition', methods=['PUT'])
def update_definition(flow_id):
    """
    Body:
        {"definition": {...}, "encoding": "graph" | "linear"}
    """
    service = _service()
    flow = _load_flow(service, flow_id)
    if not flow:
        return jsonify({'error': 'Flow not found'}), 404

    data = request.get_json(silent=True) or {}
    definition = data.get('definition')
    if not isinstance(definition, dict):
        return jsonify({'error': 'definition is required'}), 400

    try:
        service.update_definition(flow, definition, encoding=data.get('encoding'))
    except FlowLockedError as e:
        return jsonify({'error': str(e), 'live_enrollments': e.live_enrollments}), 409
    except FlowValidationError as e:
        return jsonify({'error': str(e), 'problems': e.problems}), 400

    return jsonify(flow.to_dict(include_definition=True)), 200


@flows_bp.route('/<flow_id>/stats', methods=['GET'])
def flow_stats(flow_id):
    service = _service()
    flow = _load_flow(service, flow_id)
    if not flow:
        return jsonify({'error': 'Flow not found'}), 404

    return jsonify(service.stats(flow)), 200


@flows_bp.route('/<flow_id>/enrollments', methods=['POST'])
def enroll_contacts(flow_id):
    """
    Body:
        {"subject_id": "uuid"} ou {"subject_ids": ["uuid", ...]}
    """
    service = _service()
    flow = _load_flow(service, flow_id)
    if not flow:
        return jsonify({'error': 'Flow not found'}), 404

    data = request.get_json(silent=True) or {}
    raw_ids = data.get('subject_ids')
    if raw_ids is None and data.get('subject_id'):
        raw_ids = [data['subject_id']]
    if not raw_ids or not isinstance(raw_ids, list):
        return jsonify({'error': 'subject_id or subject_ids is required'}), 400

    subject_ids = [parse_uuid(value) for value in raw_ids]
    invalid = [raw for raw, parsed in zip(raw_ids, subject_ids) if parsed is None]
    if invalid:
        return jsonify({'error': 'Invalid subject id(s)', 'invalid': invalid}), 400

    created = service.enroll(flow, subject_ids)
    logger.info(f"Manual enrollment in flow {flow.id}: {created}/{len(subject_ids)} created")

    return jsonify({
        'flow_id': str(flow.id),
        'requested': len(subject_ids),
        'created': created,
    }), 201 if created else 200
