"""
Worker Temporal - Executa o workflow de tick e suas activities.

Para executar:
    python -m dripflow.temporal.worker

Para parar o workflow de tick:
    python -m dripflow.temporal.worker stop
"""
import asyncio
import logging
import sys

from temporalio.client import Client
from temporalio.worker import Worker

from .config import get_config
from .workflows import EnrollmentTickWorkflow
from .activities import ALL_ACTIVITIES
from .service import ensure_tick_workflow, stop_tick_workflow

# Configurar logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_worker(app=None):
    """
    Inicia o worker Temporal e garante que o workflow de tick está rodando.

    Args:
        app: Flask app (opcional, para contexto)
    """
    config = get_config()

    logger.info(f"Conectando ao Temporal Server: {config.address}")
    logger.info(f"Namespace: {config.namespace}")
    logger.info(f"Task Queue: {config.task_queue}")

    client = await Client.connect(
        config.address,
        namespace=config.namespace
    )

    logger.info("Conexão estabelecida com sucesso!")

    if app is None:
        from dripflow import create_app
        app = create_app()

    async with Worker(
        client,
        task_queue=config.task_queue,
        workflows=[EnrollmentTickWorkflow],
        activities=ALL_ACTIVITIES,
    ):
        logger.info(f"Worker iniciado na task queue: {config.task_queue}")
        logger.info(f"Activities registradas: {len(ALL_ACTIVITIES)}")

        await ensure_tick_workflow(client, config)

        # Manter worker rodando
        await asyncio.Future()


async def stop():
    """Sinaliza o EnrollmentTickWorkflow para parar após o tick em andamento"""
    config = get_config()
    client = await Client.connect(config.address, namespace=config.namespace)
    await stop_tick_workflow(client, config)


def main():
    """Entry point para execução via CLI"""
    from dotenv import load_dotenv
    load_dotenv()

    if len(sys.argv) > 1 and sys.argv[1] == 'stop':
        asyncio.run(stop())
        return

    from dripflow import create_app
    app = create_app()

    # Rodar worker dentro do contexto Flask
    with app.app_context():
        try:
            asyncio.run(run_worker(app))
        except KeyboardInterrupt:
            logger.info("Worker interrompido pelo usuário")
        except Exception as e:
            logger.exception(f"Erro no worker: {e}")
            sys.exit(1)


if __name__ == "__main__":
    main()
