"""
Enrollments API - Controle externo de enrollments

Endpoints:
- GET /api/v1/enrollments?ids=a,b - Status de vários enrollments
- POST /api/v1/enrollments/:id/pause - Pausa
- POST /api/v1/enrollments/:id/resume - Retoma
- POST /api/v1/enrollments/:id/unsubscribe - Remove o contato do fluxo (terminal)
- DELETE /api/v1/enrollments/:id - Apaga o enrollment
- GET /api/v1/enrollments/:id/events - Histórico de steps
"""

from flask import Blueprint, current_app, jsonify, request
import logging

from dripflow.exceptions import EnrollmentStateError
from dripflow.routes.flows import parse_uuid
from dripflow.services.enrollment_store import EnrollmentStore

logger = logging.getLogger(__name__)

enrollments_bp = Blueprint('enrollments', __name__, url_prefix='/api/v1/enrollments')


def _store() -> EnrollmentStore:
    return EnrollmentStore.from_config(current_app.config)


def _load(store: EnrollmentStore, enrollment_id):
    key = parse_uuid(enrollment_id)
    return store.get(key) if key else None


@enrollments_bp.route('', methods=['GET'])
def get_statuses():
    raw = request.args.get('ids', '')
    ids = [parse_uuid(value.strip()) for value in raw.split(',') if value.strip()]
    ids = [value for value in ids if value is not None]
    if not ids:
        return jsonify({'error': 'ids query parameter is required'}), 400

    return jsonify({'enrollments': _store().get_statuses(ids)}), 200


def _transition(enrollment_id, action):
    store = _store()
    enrollment = _load(store, enrollment_id)
    if not enrollment:
        return jsonify({'error': 'Enrollment not found'}), 404

    try:
        getattr(store, action)(enrollment)
    except EnrollmentStateError as e:
        return jsonify({'error': str(e)}), 409

    return jsonify(enrollment.to_dict()), 200


@enrollments_bp.route('/<enrollment_id>/pause', methods=['POST'])
def pause_enrollment(enrollment_id):
    return _transition(enrollment_id, 'pause')


@enrollments_bp.route('/<enrollment_id>/resume', methods=['POST'])
def resume_enrollment(enrollment_id):
    return _transition(enrollment_id, 'resume')


@enrollments_bp.route('/<enrollment_id>/unsubscribe', methods=['POST'])
def unsubscribe_enrollment(enrollment_id):
    return _transition(enrollment_id, 'unsubscribe')


@enrollments_bp.route('/<enrollment_id>', methods=['DELETE'])
def delete_enrollment(enrollment_id):
    store = _store()
    enrollment = _load(store, enrollment_id)
    if not enrollment:
        return jsonify({'error': 'Enrollment not found'}), 404

    store.remove(enrollment)
    return jsonify({'deleted': True, 'id': enrollment_id}), 200


@enrollments_bp.route('/<enrollment_id>/events', methods=['GET'])
def enrollment_events(enrollment_id):
    store = _store()
    enrollment = _load(store, enrollment_id)
    if not enrollment:
        return jsonify({'error': 'Enrollment not found'}), 404

    events = store.events(enrollment.id)
    return jsonify({
        'enrollment': enrollment.to_dict(),
        'events': [e.to_dict() for e in events],
        'count': len(events),
    }), 200
