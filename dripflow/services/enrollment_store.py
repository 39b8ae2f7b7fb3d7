"""
Enrollment Store - Progresso durável de cada (flow, contato).

Responsabilidades:
- Criação idempotente (um enrollment por flow/contato)
- Seleção dos enrollments prontos para o próximo tick
- Claim/lease com compare-and-set na coluna version
- Aplicação atômica do Outcome de um step
- Transições administrativas (pause, resume, unsubscribe, remove)
- Recontagem das estatísticas do flow
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, func, inspect, or_
from sqlalchemy.exc import IntegrityError

from dripflow.database import db
from dripflow.exceptions import EnrollmentStateError
from dripflow.flow_engine.flow_model import END, ResolvedFlow, Step
from dripflow.flow_engine.outcome import UPDATABLE_POINTERS, Outcome
from dripflow.models.contact import Contact
from dripflow.models.enrollment import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    Enrollment,
    EnrollmentStatus,
)
from dripflow.models.enrollment_event import EnrollmentEvent
from dripflow.models.flow import Flow, FlowStatus

logger = logging.getLogger(__name__)


@dataclass
class Transition:
    """Resultado da aplicação de um Outcome"""
    enrollment_id: str
    from_step: Optional[str]
    to_step: Optional[str]
    status: str
    removed: bool = False

    @property
    def can_continue(self) -> bool:
        """O loop síncrono pode executar o próximo step agora?"""
        return (
            not self.removed
            and self.status == EnrollmentStatus.ACTIVE.value
            and self.to_step is not None
            and self.to_step != self.from_step
        )


class EnrollmentStore:
    """
    Store de enrollments sobre Flask-SQLAlchemy.

    Usage:
        store = EnrollmentStore(lease_seconds=300, failure_limit=3)
        enrollment = store.create(flow, contact.id)
        if store.claim(enrollment, 'worker-1', now):
            ...
            store.release(enrollment, 'worker-1')
    """

    def __init__(self, lease_seconds: int = 300, failure_limit: int = 3):
        self.lease_seconds = lease_seconds
        self.failure_limit = failure_limit

    @classmethod
    def from_config(cls, config) -> 'EnrollmentStore':
        return cls(
            lease_seconds=int(config.get('CLAIM_LEASE_SECONDS', 300)),
            failure_limit=int(config.get('STEP_FAILURE_LIMIT', 3)),
        )

    # === Criação ===

    def _add(self, flow: Flow, subject_id, now: datetime) -> Optional[Enrollment]:
        existing = Enrollment.query.filter_by(flow_id=flow.id, subject_id=subject_id).first()
        if existing:
            return None

        contact = db.session.get(Contact, subject_id)
        if contact is None or contact.unsubscribed:
            logger.info(f"Skipping enrollment of contact {subject_id} in flow {flow.id}: missing or unsubscribed")
            return None

        enrollment = Enrollment(
            flow_id=flow.id,
            subject_id=subject_id,
            flow_version=flow.version,
            status=EnrollmentStatus.ACTIVE.value,
            variables={},
            created_at=now,
            updated_at=now,
        )
        try:
            with db.session.begin_nested():
                db.session.add(enrollment)
        except IntegrityError:
            # Outro processo criou o mesmo (flow, contato)
            logger.info(f"Enrollment for contact {subject_id} in flow {flow.id} already exists")
            return None

        flow.total_entered = (flow.total_entered or 0) + 1
        flow.currently_active = (flow.currently_active or 0) + 1
        return enrollment

    def create(self, flow: Flow, subject_id, now: Optional[datetime] = None) -> Optional[Enrollment]:
        """
        Cria enrollment para o contato; None se já existe.
        """
        enrollment = self._add(flow, subject_id, now or datetime.utcnow())
        db.session.commit()
        if enrollment:
            logger.info(f"Enrolled contact {subject_id} in flow {flow.id}")
        return enrollment

    def create_many(self, flow: Flow, subject_ids: Iterable, now: Optional[datetime] = None) -> int:
        """
        Cria enrollments em lote (idempotente).

        Returns:
            Quantidade efetivamente criada
        """
        now = now or datetime.utcnow()
        created = 0
        for subject_id in subject_ids:
            if self._add(flow, subject_id, now):
                created += 1
        db.session.commit()
        if created:
            logger.info(f"Enrolled {created} contact(s) in flow {flow.id}")
        return created

    # === Seleção e claim ===

    @staticmethod
    def _ready(now: datetime):
        """Pronto para rodar: ACTIVE, ou WAITING vencido, sem lease vivo"""
        return and_(
            or_(
                Enrollment.status == EnrollmentStatus.ACTIVE.value,
                and_(
                    Enrollment.status == EnrollmentStatus.WAITING.value,
                    Enrollment.wait_until <= now,
                ),
            ),
            or_(Enrollment.claimed_until.is_(None), Enrollment.claimed_until < now),
        )

    def load_ready(self, now: datetime, limit: int) -> List[Enrollment]:
        """
        ACTIVE, ou WAITING com wait_until vencido, de flows ACTIVE e sem lease vivo.
        """
        return Enrollment.query.join(Flow, Flow.id == Enrollment.flow_id).filter(
            Flow.status == FlowStatus.ACTIVE.value,
            self._ready(now),
        ).order_by(Enrollment.updated_at.asc()).limit(limit).all()

    def backlog(self, now: datetime) -> Dict[str, int]:
        """Enrollments prontos aguardando um tick e enrollments com lease vivo"""
        ready = Enrollment.query.join(Flow, Flow.id == Enrollment.flow_id).filter(
            Flow.status == FlowStatus.ACTIVE.value,
            self._ready(now),
        ).count()
        claimed = Enrollment.query.filter(Enrollment.claimed_until >= now).count()
        return {'ready': ready, 'claimed': claimed}

    def claim(self, enrollment: Enrollment, worker_id: str, now: datetime) -> bool:
        """
        Claim atômico: UPDATE condicional em (id, version), ainda pronto e sem lease vivo.

        Returns:
            True se este worker passou a deter o enrollment
        """
        rowcount = Enrollment.query.filter(
            Enrollment.id == enrollment.id,
            Enrollment.version == enrollment.version,
            self._ready(now),
        ).update({
            Enrollment.claimed_by: worker_id,
            Enrollment.claimed_until: now + timedelta(seconds=self.lease_seconds),
            Enrollment.version: Enrollment.version + 1,
        }, synchronize_session=False)
        db.session.commit()

        if rowcount != 1:
            logger.debug(f"Enrollment {enrollment.id} already claimed or changed; skipping")
            return False

        db.session.refresh(enrollment)
        return True

    def release(self, enrollment: Enrollment, worker_id: str):
        """Libera o lease se ainda pertence a este worker"""
        Enrollment.query.filter(
            Enrollment.id == enrollment.id,
            Enrollment.claimed_by == worker_id,
        ).update({
            Enrollment.claimed_by: None,
            Enrollment.claimed_until: None,
        }, synchronize_session=False)
        db.session.commit()

    # === Outcome ===

    def _resolve_target(self, resolved: ResolvedFlow, step: Step, outcome: Outcome) -> Optional[str]:
        if outcome.finish:
            return END
        if outcome.branch is not None:
            target = step.branches.get(outcome.branch)
            if target:
                return target
            return resolved.fallthrough(step)
        return step.next

    def apply_outcome(
        self,
        enrollment: Enrollment,
        step: Step,
        outcome: Outcome,
        resolved: ResolvedFlow,
        now: datetime,
    ) -> Transition:
        """
        Persiste ponteiro, status, variáveis e ponteiros de mensagem num único commit.
        """
        # Identity key não dispara load (o registro pode ter sido removido)
        enrollment_id = inspect(enrollment).identity[0]
        with db.session.no_autoflush:
            current_status = db.session.query(Enrollment.status).filter(
                Enrollment.id == enrollment_id
            ).scalar()
        if current_status is None:
            db.session.rollback()
            logger.info(f"Enrollment {enrollment_id} removed while step {step.id} was in flight")
            return Transition(str(enrollment_id), step.id, None, 'REMOVED', removed=True)

        if current_status != enrollment.status:
            enrollment.status = current_status
        externally_held = current_status in (EnrollmentStatus.PAUSED.value,) + TERMINAL_STATUSES

        enrollment.merge_variables(outcome.variables)
        for key, value in (outcome.updates or {}).items():
            if key in UPDATABLE_POINTERS:
                setattr(enrollment, key, value)
        if outcome.action_at is not None:
            enrollment.last_action_at = outcome.action_at

        to_step = step.id

        if outcome.failed:
            enrollment.last_error = outcome.error
            enrollment.wait_until = None
            enrollment.current_step_id = step.id
            if outcome.transient:
                enrollment.step_failures = (enrollment.step_failures or 0) + 1
                exhausted = enrollment.step_failures >= self.failure_limit
            else:
                exhausted = True

            if exhausted and current_status not in TERMINAL_STATUSES:
                enrollment.status = EnrollmentStatus.FAILED.value
                enrollment.failure_reason = outcome.error
                enrollment.failed_at = now
            elif not externally_held:
                enrollment.status = EnrollmentStatus.ACTIVE.value

        elif outcome.is_waiting:
            enrollment.step_failures = 0
            enrollment.last_error = None
            enrollment.current_step_id = step.id
            if not externally_held:
                enrollment.status = EnrollmentStatus.WAITING.value
                enrollment.wait_until = outcome.wait_until

        else:
            enrollment.step_failures = 0
            enrollment.last_error = None
            enrollment.wait_until = None
            target = self._resolve_target(resolved, step, outcome)

            if target is None or target == END:
                enrollment.current_step_id = step.id
                if current_status not in TERMINAL_STATUSES:
                    enrollment.status = EnrollmentStatus.COMPLETED.value
                    enrollment.completed_at = now
                to_step = None
            else:
                enrollment.current_step_id = target
                to_step = target
                if not externally_held:
                    enrollment.status = EnrollmentStatus.ACTIVE.value

        enrollment.version = (enrollment.version or 0) + 1
        enrollment.updated_at = now
        db.session.commit()

        return Transition(str(enrollment_id), step.id, to_step, enrollment.status)

    def mark_completed(self, enrollment: Enrollment, now: datetime):
        """Flow sem próximo step: encerra o enrollment"""
        enrollment.status = EnrollmentStatus.COMPLETED.value
        enrollment.wait_until = None
        enrollment.completed_at = now
        enrollment.version = (enrollment.version or 0) + 1
        enrollment.updated_at = now
        db.session.commit()

    def mark_failed(self, enrollment: Enrollment, error: str, now: datetime):
        """Falha inesperada fora de um step (definição inválida, exceção não tratada)"""
        enrollment.status = EnrollmentStatus.FAILED.value
        enrollment.failure_reason = error
        enrollment.last_error = error
        enrollment.wait_until = None
        enrollment.failed_at = now
        enrollment.version = (enrollment.version or 0) + 1
        db.session.commit()

    # === Transições administrativas ===

    def get(self, enrollment_id) -> Optional[Enrollment]:
        return db.session.get(Enrollment, enrollment_id)

    def pause(self, enrollment: Enrollment, now: Optional[datetime] = None) -> Enrollment:
        if enrollment.status == EnrollmentStatus.PAUSED.value:
            return enrollment
        if enrollment.status not in (EnrollmentStatus.ACTIVE.value, EnrollmentStatus.WAITING.value):
            raise EnrollmentStateError(str(enrollment.id), enrollment.status, 'pause')

        enrollment.status = EnrollmentStatus.PAUSED.value
        enrollment.wait_until = None
        enrollment.paused_at = now or datetime.utcnow()
        enrollment.version = (enrollment.version or 0) + 1
        db.session.commit()
        logger.info(f"Enrollment {enrollment.id} paused")
        return enrollment

    def resume(self, enrollment: Enrollment, now: Optional[datetime] = None) -> Enrollment:
        """Volta para ACTIVE; um Delay pendente recalcula a espera a partir da âncora"""
        if enrollment.status != EnrollmentStatus.PAUSED.value:
            raise EnrollmentStateError(str(enrollment.id), enrollment.status, 'resume')

        enrollment.status = EnrollmentStatus.ACTIVE.value
        enrollment.paused_at = None
        enrollment.updated_at = now or datetime.utcnow()
        enrollment.version = (enrollment.version or 0) + 1
        db.session.commit()
        logger.info(f"Enrollment {enrollment.id} resumed")
        return enrollment

    def unsubscribe(self, enrollment: Enrollment, now: Optional[datetime] = None) -> Enrollment:
        if enrollment.status == EnrollmentStatus.UNSUBSCRIBED.value:
            return enrollment
        if enrollment.status in TERMINAL_STATUSES:
            raise EnrollmentStateError(str(enrollment.id), enrollment.status, 'unsubscribe')

        enrollment.status = EnrollmentStatus.UNSUBSCRIBED.value
        enrollment.wait_until = None
        enrollment.completed_at = now or datetime.utcnow()
        enrollment.version = (enrollment.version or 0) + 1
        db.session.commit()
        logger.info(f"Enrollment {enrollment.id} unsubscribed")
        return enrollment

    def remove(self, enrollment: Enrollment):
        enrollment_id, flow_id = enrollment.id, enrollment.flow_id
        db.session.delete(enrollment)
        db.session.commit()
        logger.info(f"Enrollment {enrollment_id} removed from flow {flow_id}")
        self.recompute_stats([flow_id])

    def get_statuses(self, enrollment_ids: Iterable) -> Dict[str, dict]:
        ids = list(enrollment_ids)
        if not ids:
            return {}
        rows = Enrollment.query.filter(Enrollment.id.in_(ids)).all()
        return {
            str(e.id): {
                'status': e.status,
                'current_step_id': e.current_step_id,
                'wait_until': e.wait_until.isoformat() if e.wait_until else None,
            }
            for e in rows
        }

    def events(self, enrollment_id) -> List[EnrollmentEvent]:
        return EnrollmentEvent.query.filter_by(enrollment_id=enrollment_id).order_by(
            EnrollmentEvent.timestamp.asc()
        ).all()

    def live_count(self, flow_id) -> int:
        return Enrollment.query.filter(
            Enrollment.flow_id == flow_id,
            Enrollment.status.in_(LIVE_STATUSES),
        ).count()

    # === Estatísticas ===

    def recompute_stats(self, flow_ids: Iterable):
        """Recalcula contadores do flow a partir dos enrollments"""
        for flow_id in set(flow_ids):
            flow = db.session.get(Flow, flow_id)
            if flow is None:
                continue

            counts = dict(
                db.session.query(Enrollment.status, func.count(Enrollment.id))
                .filter(Enrollment.flow_id == flow_id)
                .group_by(Enrollment.status)
                .all()
            )
            flow.currently_active = sum(counts.get(status, 0) for status in LIVE_STATUSES)
            flow.total_completed = counts.get(EnrollmentStatus.COMPLETED.value, 0)
            flow.total_entered = max(flow.total_entered or 0, sum(counts.values()))
        db.session.commit()
