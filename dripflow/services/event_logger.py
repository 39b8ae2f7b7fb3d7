"""
EnrollmentEventLogger Service - Registro append-only das tentativas de step.
"""
import logging
from typing import Optional

from dripflow.database import db
from dripflow.models.enrollment_event import EnrollmentEvent, EnrollmentEventType

logger = logging.getLogger(__name__)


class EnrollmentEventLogger:
    """
    Helper para registrar EnrollmentEvents durante o processamento.

    Uso:
        events = EnrollmentEventLogger(enrollment_id)
        events.exited('step-1', outcome.to_dict())          # commit junto com o outcome
        events.failed('step-2', {'error': '...'}, commit=True)
    """

    def __init__(self, enrollment_id):
        self.enrollment_id = enrollment_id

    def entered(self, step_id: str, payload: Optional[dict] = None, commit: bool = False):
        return self._log(EnrollmentEventType.ENTERED.value, step_id, payload, commit)

    def exited(self, step_id: str, payload: Optional[dict] = None, commit: bool = False):
        return self._log(EnrollmentEventType.EXITED.value, step_id, payload, commit)

    def failed(self, step_id: str, payload: Optional[dict] = None, commit: bool = False):
        return self._log(EnrollmentEventType.FAILED.value, step_id, payload, commit)

    def _log(self, event_type: str, step_id: str, payload: Optional[dict], commit: bool):
        """
        Adiciona o evento na sessão.

        Sem commit o evento entra na mesma transação do outcome; com commit a
        falha de persistência é registrada no logger do processo.
        """
        event = EnrollmentEvent(
            enrollment_id=self.enrollment_id,
            step_id=step_id or 'unknown',
            event_type=event_type,
            payload=payload or {},
        )
        db.session.add(event)

        if commit:
            try:
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(
                    f"[EnrollmentEventLogger] Failed to persist event: {e} "
                    f"(enrollment_id={self.enrollment_id}, step_id={step_id}, type={event_type}, payload={payload})"
                )
                return None
        return event
