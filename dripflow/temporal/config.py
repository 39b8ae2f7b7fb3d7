"""
Configurações do Temporal.
"""
import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class TemporalConfig:
    """Configurações do Temporal Server"""

    enabled: bool = os.getenv('TEMPORAL_ENABLED', 'false').lower() == 'true'

    # Endereço do Temporal Server (gRPC)
    address: str = os.getenv('TEMPORAL_ADDRESS', 'localhost:7233')

    # Namespace (default para desenvolvimento)
    namespace: str = os.getenv('TEMPORAL_NAMESPACE', 'default')

    task_queue: str = os.getenv('TEMPORAL_TASK_QUEUE', 'dripflow-engine')

    # Um único workflow de tick por deployment
    tick_workflow_id: str = os.getenv('TEMPORAL_TICK_WORKFLOW_ID', 'dripflow-enrollment-tick')

    # Intervalo entre ticks (em segundos)
    tick_interval_seconds: int = int(os.getenv('TICK_INTERVAL_SECONDS', '300'))  # 5 min

    # Timeout do tick (em segundos)
    tick_timeout: int = int(os.getenv('TEMPORAL_ACTIVITY_TIMEOUT', '240'))  # 4 min

    # Ticks antes de continue_as_new (limita o histórico do workflow)
    ticks_per_run: int = int(os.getenv('TEMPORAL_TICKS_PER_RUN', '500'))

    @classmethod
    def from_env(cls) -> 'TemporalConfig':
        """Cria config a partir de variáveis de ambiente"""
        return cls()


class SignalNames:
    """Nomes dos signals usados nos workflows"""
    STOP = 'stop'


class WorkflowNames:
    """Nomes dos workflows"""
    ENROLLMENT_TICK = 'EnrollmentTickWorkflow'


# Singleton da config
_config: Optional[TemporalConfig] = None


def get_config() -> TemporalConfig:
    """Retorna singleton da configuração"""
    global _config
    if _config is None:
        _config = TemporalConfig.from_env()
    return _config
