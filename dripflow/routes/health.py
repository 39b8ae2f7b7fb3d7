"""
Health check - banco acessível e estado do engine.

GET /api/v1/health
    200 {'status': 'healthy', 'engine': {'ready': 3, 'claimed': 1, 'last_step_at': '...'}}
    503 {'status': 'unhealthy', 'error': '...'} quando o banco não responde
"""
from datetime import datetime

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from dripflow.database import db
from dripflow.models.enrollment_event import EnrollmentEvent
from dripflow.services.enrollment_store import EnrollmentStore

bp = Blueprint('health', __name__, url_prefix='/api/v1')


@bp.route('/health', methods=['GET'])
def health_check():
    now = datetime.utcnow()
    store = EnrollmentStore.from_config(current_app.config)
    try:
        backlog = store.backlog(now)
        last_step_at = db.session.query(func.max(EnrollmentEvent.timestamp)).scalar()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'status': 'unhealthy', 'error': str(e), 'timestamp': now.isoformat()}), 503

    return jsonify({
        'status': 'healthy',
        'timestamp': now.isoformat(),
        'engine': {
            **backlog,
            'last_step_at': last_step_at.isoformat() if last_step_at else None,
        },
    }), 200
