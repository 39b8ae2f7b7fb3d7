"""
Execution Loop - One polling tick over every active flow

Responsibilities:
- Evaluate triggers and enroll newly eligible contacts
- Load a bounded batch of ready enrollments
- Claim each enrollment (lease) before touching it
- Advance it synchronously through non-waiting steps (bounded)
- Append one EnrollmentEvent per step attempt and persist the Outcome
- Recompute flow statistics
"""

import logging
import os
import socket
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from dripflow.database import db
from dripflow.flow_engine.flow_model import END, resolve
from dripflow.flow_engine.outcome import Outcome
from dripflow.flow_engine.processors import ProcessorContext, ProcessorRegistry
from dripflow.flow_engine.triggers import TriggerEvaluator
from dripflow.models.enrollment import EnrollmentStatus
from dripflow.models.flow import Flow, FlowStatus
from dripflow.services.enrollment_store import EnrollmentStore, Transition
from dripflow.services.event_logger import EnrollmentEventLogger

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


@dataclass
class TickSummary:
    enrolled: int = 0
    processed: int = 0
    advanced: int = 0
    waiting: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class ExecutionLoop:
    """
    Polling runner for enrollments.

    Usage:
        loop = ExecutionLoop(app.config, messaging=HttpMessagingClient.from_config(app.config))
        summary = await loop.run_tick()
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        messaging=None,
        segments=None,
        registry: Optional[ProcessorRegistry] = None,
        store: Optional[EnrollmentStore] = None,
        triggers: Optional[TriggerEvaluator] = None,
        http_transport=None,
        worker_id: Optional[str] = None,
    ):
        self.config = config or {}
        self.messaging = messaging
        self.segments = segments
        self.registry = registry or ProcessorRegistry.default()
        self.store = store or EnrollmentStore.from_config(self.config)
        self.triggers = triggers or TriggerEvaluator(self.config, segments=segments)
        self.http_transport = http_transport
        self.worker_id = worker_id or default_worker_id()
        self.batch_size = int(self.config.get('TICK_BATCH_SIZE', 100))
        self.max_sync_steps = int(self.config.get('MAX_SYNC_STEPS', 25))

    async def run_tick(self, now: Optional[datetime] = None) -> TickSummary:
        """
        Execute one tick.

        Returns:
            TickSummary with counts for this tick
        """
        now = now or datetime.utcnow()
        summary = TickSummary()

        # 1. Triggers
        active_flows = Flow.query.filter_by(status=FlowStatus.ACTIVE.value).all()
        flow_ids = {flow.id for flow in active_flows}
        for flow in active_flows:
            try:
                subject_ids = self.triggers.evaluate(flow, now)
                if subject_ids:
                    summary.enrolled += self.store.create_many(flow, subject_ids, now)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Trigger evaluation failed for flow {flow.id}: {e}")

        # 2. Ready batch
        ready = self.store.load_ready(now, self.batch_size)
        logger.info(f"Tick {now.isoformat()}: {len(ready)} ready enrollment(s), {summary.enrolled} new")

        for enrollment in ready:
            flow_ids.add(enrollment.flow_id)
            await self.process_enrollment(enrollment, now=now, summary=summary)

        # 3. Statistics
        try:
            self.store.recompute_stats(flow_ids)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to recompute flow statistics: {e}")

        logger.info(f"Tick finished: {summary.to_dict()}")
        return summary

    async def process_enrollment(
        self,
        enrollment,
        now: Optional[datetime] = None,
        summary: Optional[TickSummary] = None,
    ) -> Optional[Transition]:
        """
        Claim and advance one enrollment.

        Returns:
            Last Transition, or None when the enrollment could not be claimed
            or failed unexpectedly
        """
        now = now or datetime.utcnow()
        summary = summary if summary is not None else TickSummary()
        enrollment_id = enrollment.id

        if not self.store.claim(enrollment, self.worker_id, now):
            summary.skipped += 1
            return None

        summary.processed += 1
        step_id = enrollment.current_step_id
        try:
            transition = await self._advance(enrollment, now, summary)
        except Exception as e:
            db.session.rollback()
            logger.exception(f"Enrollment {enrollment_id} failed during tick")
            EnrollmentEventLogger(enrollment_id).failed(
                step_id or 'unknown',
                {'error': str(e), 'unexpected': True},
                commit=True,
            )
            summary.failed += 1
            return None
        finally:
            try:
                self.store.release(enrollment, self.worker_id)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Failed to release claim on enrollment {enrollment_id}: {e}")

        if transition is not None and not transition.removed:
            if transition.status == EnrollmentStatus.WAITING.value:
                summary.waiting += 1
            elif transition.status == EnrollmentStatus.COMPLETED.value:
                summary.completed += 1
            elif transition.status == EnrollmentStatus.FAILED.value:
                summary.failed += 1
        return transition

    async def _advance(self, enrollment, now: datetime, summary: TickSummary) -> Optional[Transition]:
        flow = enrollment.flow
        resolved = resolve(flow)
        if enrollment.flow_version != flow.version:
            logger.warning(
                f"Enrollment {enrollment.id} pinned to flow version {enrollment.flow_version}, "
                f"running version {flow.version}"
            )

        events = EnrollmentEventLogger(enrollment.id)
        transition = None

        for _ in range(self.max_sync_steps):
            step_id = enrollment.current_step_id or resolved.entry_step_id
            if step_id is None or step_id == END:
                logger.info(f"Enrollment {enrollment.id}: flow has no step left to run; completing")
                self.store.mark_completed(enrollment, now)
                return Transition(str(enrollment.id), None, None, EnrollmentStatus.COMPLETED.value)

            step = resolved.get(step_id)
            if step is None:
                error = f"Step not found in flow definition: {step_id}"
                events.failed(step_id or 'unknown', {'error': error})
                self.store.mark_failed(enrollment, error, now)
                return Transition(str(enrollment.id), step_id, None, EnrollmentStatus.FAILED.value)

            outcome = await self._run_step(enrollment, step, flow, resolved, now)

            payload = outcome.to_dict()
            if outcome.failed:
                events.failed(step.id, payload)
            elif outcome.is_waiting:
                events.entered(step.id, payload)
            else:
                events.exited(step.id, payload)

            transition = self.store.apply_outcome(enrollment, step, outcome, resolved, now)
            if outcome.completed:
                summary.advanced += 1

            if not transition.can_continue:
                return transition
        else:
            logger.warning(
                f"Enrollment {enrollment.id} reached {self.max_sync_steps} steps in one tick; "
                f"continuing next tick"
            )

        return transition

    async def _run_step(self, enrollment, step, flow, resolved, now) -> Outcome:
        handler = self.registry.get(step.kind)
        if handler is None:
            return Outcome.fail(f"No processor for step kind '{step.kind or step.raw_type}'")

        ctx = ProcessorContext(
            config=self.config,
            now=now,
            flow=flow,
            resolved=resolved,
            messaging=self.messaging,
            segments=self.segments,
            http_transport=self.http_transport,
        )
        logger.debug(f"Running step {step.id} ({step.kind}) for enrollment {enrollment.id}")
        try:
            return await handler.process(ctx, enrollment, step)
        except SQLAlchemyError:
            raise
        except Exception as e:
            logger.exception(f"Step {step.id} raised for enrollment {enrollment.id}")
            return Outcome.fail(str(e) or e.__class__.__name__)
