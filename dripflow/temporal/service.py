"""
Temporal Service - Controle do workflow de tick.

Uso:
    from dripflow.temporal.service import ensure_tick_workflow
    await ensure_tick_workflow(client)
"""
import logging
from typing import Optional

from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError

from .config import get_config, SignalNames, TemporalConfig
from .workflows import EnrollmentTickWorkflow

logger = logging.getLogger(__name__)


async def ensure_tick_workflow(client: Client, config: Optional[TemporalConfig] = None) -> str:
    """
    Inicia o EnrollmentTickWorkflow se ainda não estiver rodando.

    Returns:
        ID do workflow
    """
    config = config or get_config()
    try:
        await client.start_workflow(
            EnrollmentTickWorkflow.run,
            args=[config.tick_interval_seconds, config.tick_timeout, config.ticks_per_run],
            id=config.tick_workflow_id,
            task_queue=config.task_queue,
        )
        logger.info(f"EnrollmentTickWorkflow iniciado: {config.tick_workflow_id}")
    except WorkflowAlreadyStartedError:
        logger.info(f"EnrollmentTickWorkflow já está rodando: {config.tick_workflow_id}")
    return config.tick_workflow_id


async def stop_tick_workflow(client: Client, config: Optional[TemporalConfig] = None) -> None:
    """Envia o signal de parada; o tick em andamento termina antes."""
    config = config or get_config()
    handle = client.get_workflow_handle(config.tick_workflow_id)
    await handle.signal(SignalNames.STOP)
    logger.info(f"Signal de parada enviado para {config.tick_workflow_id}")

