"""
Engagement Event Source - Consultas sobre eventos de engajamento.
"""
import logging
from datetime import datetime
from typing import Optional, Set

from dripflow.database import db
from dripflow.models.engagement import EngagementEvent, EngagementType

logger = logging.getLogger(__name__)


def record_engagement(
    subject_id,
    event_type: str,
    enrollment_id=None,
    step_id: Optional[str] = None,
    message_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    details: Optional[dict] = None,
) -> EngagementEvent:
    """Adiciona o evento na sessão (commit fica com o chamador)"""
    event = EngagementEvent(
        subject_id=subject_id,
        enrollment_id=enrollment_id,
        step_id=step_id,
        event_type=event_type,
        message_id=message_id,
        occurred_at=occurred_at or datetime.utcnow(),
        details=details,
    )
    db.session.add(event)
    return event


def event_types_for_step(enrollment_id, step_id: str) -> Set[str]:
    """Tipos de evento registrados para a mensagem de um step"""
    rows = db.session.query(EngagementEvent.event_type).filter(
        EngagementEvent.enrollment_id == enrollment_id,
        EngagementEvent.step_id == step_id,
    ).distinct().all()
    return {row[0] for row in rows}


def latest_sent_step(enrollment_id) -> Optional[str]:
    """Step da última mensagem enviada pelo enrollment"""
    event = EngagementEvent.query.filter_by(
        enrollment_id=enrollment_id,
        event_type=EngagementType.SENT.value,
    ).order_by(EngagementEvent.occurred_at.desc()).first()
    return event.step_id if event else None


def has_engagement_since(subject_id, event_type: str, since: Optional[datetime]) -> bool:
    """O contato teve evento do tipo desde `since` (início do enrollment)?"""
    query = EngagementEvent.query.filter(
        EngagementEvent.subject_id == subject_id,
        EngagementEvent.event_type == event_type,
    )
    if since is not None:
        query = query.filter(EngagementEvent.occurred_at >= since)
    return db.session.query(query.exists()).scalar()
