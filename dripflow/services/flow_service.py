"""
Flow Service - Operações administrativas sobre flows.

- Ativação (com validação da definição)
- Desativação (enrollments ficam congelados até reativar)
- Edição da definição (recusada enquanto houver enrollments vivos)
- Estatísticas (por flow e por step)
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import distinct, func

from dripflow.database import db
from dripflow.exceptions import FlowLockedError, FlowValidationError
from dripflow.flow_engine.flow_model import resolve, resolve_definition, validate
from dripflow.models.enrollment import LIVE_STATUSES, Enrollment, EnrollmentStatus
from dripflow.models.enrollment_event import EnrollmentEvent, EnrollmentEventType
from dripflow.models.flow import Flow, FlowEncoding, FlowStatus, TriggerKind
from dripflow.services.enrollment_store import EnrollmentStore

logger = logging.getLogger(__name__)


class FlowService:
    """
    Usage:
        service = FlowService(store, config=current_app.config)
        service.activate(flow)
        service.update_definition(flow, {'nodes': [...], 'edges': [...]})
    """

    def __init__(self, store: Optional[EnrollmentStore] = None, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.store = store or EnrollmentStore.from_config(self.config)

    def get(self, flow_id) -> Optional[Flow]:
        return db.session.get(Flow, flow_id)

    def validate(self, flow: Flow):
        """
        Raises:
            FlowValidationError: definição inválida
        """
        resolved = resolve_definition(flow.encoding, flow.definition)
        validate(resolved, str(flow.id))
        return resolved

    def activate(self, flow: Flow, now: Optional[datetime] = None) -> Flow:
        if flow.status == FlowStatus.ARCHIVED.value:
            raise FlowValidationError(str(flow.id), ['archived flows cannot be activated'])
        self.validate(flow)
        self._check_trigger(flow)

        flow.status = FlowStatus.ACTIVE.value
        flow.activated_at = now or datetime.utcnow()
        db.session.commit()
        logger.info(f"Flow {flow.id} activated (version {flow.version})")
        return flow

    def deactivate(self, flow: Flow) -> Flow:
        if flow.status == FlowStatus.ACTIVE.value:
            flow.status = FlowStatus.PAUSED.value
            db.session.commit()
            logger.info(f"Flow {flow.id} deactivated")
        return flow

    def update_definition(
        self,
        flow: Flow,
        definition: Dict[str, Any],
        encoding: Optional[str] = None,
    ) -> Flow:
        """
        Substitui a definição e incrementa a versão.

        Raises:
            FlowLockedError: existem enrollments ACTIVE/WAITING/PAUSED
            FlowValidationError: flow ativo com definição inválida
        """
        live = self.store.live_count(flow.id)
        if live:
            raise FlowLockedError(str(flow.id), live)

        if encoding:
            if encoding not in (FlowEncoding.GRAPH.value, FlowEncoding.LINEAR.value):
                raise FlowValidationError(str(flow.id), [f"unknown encoding: {encoding}"])
            new_encoding = encoding
        else:
            new_encoding = flow.encoding

        if flow.status == FlowStatus.ACTIVE.value:
            validate(resolve_definition(new_encoding, definition), str(flow.id))

        flow.encoding = new_encoding
        flow.definition = definition
        flow.version = (flow.version or 0) + 1
        db.session.commit()
        logger.info(f"Flow {flow.id} definition updated to version {flow.version}")
        return flow

    def enroll(self, flow: Flow, subject_ids: Iterable, now: Optional[datetime] = None) -> int:
        return self.store.create_many(flow, subject_ids, now)

    def stats(self, flow: Flow) -> Dict[str, Any]:
        self.store.recompute_stats([flow.id])
        counts = dict(
            db.session.query(Enrollment.status, func.count(Enrollment.id))
            .filter(Enrollment.flow_id == flow.id)
            .group_by(Enrollment.status)
            .all()
        )
        return {
            'flow_id': str(flow.id),
            'version': flow.version,
            'total_entered': flow.total_entered,
            'currently_active': flow.currently_active,
            'total_completed': flow.total_completed,
            'by_status': {status.value: counts.get(status.value, 0) for status in EnrollmentStatus},
            'steps': self.step_stats(flow),
        }

    def step_stats(self, flow: Flow) -> Dict[str, Dict[str, int]]:
        """
        Contadores por step.

        passed: enrollments que já saíram do step (evento EXITED)
        current: enrollments vivos parados no step agora
        """
        resolved = resolve(flow)

        passed = dict(
            db.session.query(EnrollmentEvent.step_id, func.count(distinct(EnrollmentEvent.enrollment_id)))
            .join(Enrollment, Enrollment.id == EnrollmentEvent.enrollment_id)
            .filter(
                Enrollment.flow_id == flow.id,
                EnrollmentEvent.event_type == EnrollmentEventType.EXITED.value,
            )
            .group_by(EnrollmentEvent.step_id)
            .all()
        )

        current = {}
        rows = (
            db.session.query(Enrollment.current_step_id, func.count(Enrollment.id))
            .filter(Enrollment.flow_id == flow.id, Enrollment.status.in_(LIVE_STATUSES))
            .group_by(Enrollment.current_step_id)
            .all()
        )
        for step_id, count in rows:
            # Ainda não rodou nenhum step: está no step de entrada
            step_id = step_id or resolved.entry_step_id
            if step_id:
                current[step_id] = current.get(step_id, 0) + count

        step_ids = list(resolved.order)
        step_ids += sorted((set(passed) | set(current)) - set(step_ids))
        return {
            step_id: {'passed': passed.get(step_id, 0), 'current': current.get(step_id, 0)}
            for step_id in step_ids
        }

    def _check_trigger(self, flow: Flow):
        if flow.trigger_kind != TriggerKind.SCHEDULED_DATE.value:
            return
        trigger_config = flow.trigger_config or {}
        if not trigger_config.get('dateField'):
            raise FlowValidationError(str(flow.id), ['scheduled date trigger requires dateField'])

        window = int(trigger_config.get('windowMinutes') or self.config.get('SCHEDULED_DATE_WINDOW_MINUTES', 30))
        tick_minutes = int(self.config.get('TICK_INTERVAL_SECONDS', 300)) / 60.0
        if 2 * window < tick_minutes and not trigger_config.get('yearlyRecurring'):
            logger.warning(
                f"Flow {flow.id}: date window ±{window}min is shorter than the tick interval "
                f"({tick_minutes:.0f}min); some contacts may never match"
            )
