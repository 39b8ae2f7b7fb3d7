"""
Activities do Temporal - Unidades de trabalho executadas pelo Worker.

- run_tick_activity: roda um tick do execution loop e devolve o resumo
"""
import logging
from typing import Any, Dict

from temporalio import activity

logger = logging.getLogger(__name__)


@activity.defn
async def run_tick_activity() -> Dict[str, Any]:
    """
    Executa um tick completo (triggers, batch de enrollments, estatísticas).

    Returns:
        TickSummary serializado
    """
    from flask import current_app
    from dripflow.routes.engine import build_execution_loop

    app = current_app._get_current_object()
    with app.app_context():
        loop = build_execution_loop(app)
        summary = await loop.run_tick()

    activity.logger.info(f"Tick concluído: {summary.to_dict()}")
    return summary.to_dict()


# Lista de todas as activities para registrar no Worker
ALL_ACTIVITIES = [
    run_tick_activity,
]
