"""
Scheduler local - Roda o execution loop em intervalo fixo sem Temporal.

Para executar:
    python -m dripflow.scheduler

Com TEMPORAL_ENABLED=true o agendamento fica com o worker Temporal
(python -m dripflow.temporal.worker) e este módulo apenas avisa e sai.
"""
import asyncio
import logging
import sys
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_scheduler(app, interval_seconds: Optional[int] = None, max_ticks: Optional[int] = None) -> int:
    """
    Roda ticks em sequência (nunca sobrepostos) até max_ticks.

    Um tick que falha por erro de banco é registrado e o próximo segue;
    enrollments não processados continuam prontos.

    Returns:
        Quantidade de ticks executados
    """
    from dripflow.database import db
    from dripflow.routes.engine import build_execution_loop

    interval = interval_seconds if interval_seconds is not None else app.config.get('TICK_INTERVAL_SECONDS', 300)
    ticks = 0

    while max_ticks is None or ticks < max_ticks:
        with app.app_context():
            loop = build_execution_loop(app)
            try:
                summary = await loop.run_tick()
                logger.info(f"Tick {ticks + 1}: {summary.to_dict()}")
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Tick {ticks + 1} falhou: {e}")
        ticks += 1

        if max_ticks is not None and ticks >= max_ticks:
            break
        await asyncio.sleep(interval)

    return ticks


def main():
    """Entry point para execução via CLI"""
    from dotenv import load_dotenv
    load_dotenv()

    from dripflow.temporal.config import get_config
    if get_config().enabled:
        logger.warning("TEMPORAL_ENABLED=true: use python -m dripflow.temporal.worker")
        sys.exit(1)

    from dripflow import create_app
    app = create_app()

    try:
        asyncio.run(run_scheduler(app))
    except KeyboardInterrupt:
        logger.info("Scheduler interrompido pelo usuário")


if __name__ == "__main__":
    main()
