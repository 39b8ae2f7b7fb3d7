"""
Engine API - Execução manual de um tick

Endpoints:
- POST /api/v1/engine/tick - Roda um tick imediatamente e retorna o resumo
"""

from flask import Blueprint, current_app, jsonify
import logging

from dripflow.flow_engine.executor import ExecutionLoop

logger = logging.getLogger(__name__)

engine_bp = Blueprint('engine', __name__, url_prefix='/api/v1/engine')


def build_execution_loop(app) -> ExecutionLoop:
    """ExecutionLoop com os colaboradores registrados no app"""
    extensions = app.extensions.get('dripflow', {})
    return ExecutionLoop(
        app.config,
        messaging=extensions.get('messaging'),
        segments=extensions.get('segments'),
        http_transport=extensions.get('http_transport'),
    )


@engine_bp.route('/tick', methods=['POST'])
async def run_tick():
    loop = build_execution_loop(current_app)
    summary = await loop.run_tick()
    return jsonify(summary.to_dict()), 200
