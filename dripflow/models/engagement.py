"""
EngagementEvent Model - Fonte de eventos de engajamento.

SENT é gravado pelo Message step; OPENED/CLICKED/REPLIED chegam pela camada
de tracking (fora deste core), correlacionados a (enrollment_id, step_id).
"""
import uuid
from datetime import datetime
from enum import Enum
from dripflow.database import db, JSONType


class EngagementType(str, Enum):
    SENT = 'SENT'
    OPENED = 'OPENED'
    CLICKED = 'CLICKED'
    REPLIED = 'REPLIED'


class EngagementEvent(db.Model):
    __tablename__ = 'engagement_events'

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    subject_id = db.Column(
        db.Uuid(as_uuid=True),
        db.ForeignKey('contacts.id', ondelete='CASCADE'),
        nullable=False
    )
    enrollment_id = db.Column(
        db.Uuid(as_uuid=True),
        db.ForeignKey('enrollments.id', ondelete='SET NULL'),
        nullable=True
    )
    step_id = db.Column(db.String(255), nullable=True)

    event_type = db.Column(db.String(20), nullable=False)
    message_id = db.Column(db.String(255))
    details = db.Column(JSONType)

    occurred_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('idx_engagement_enrollment_step', 'enrollment_id', 'step_id', 'event_type'),
        db.Index('idx_engagement_subject', 'subject_id', 'event_type', 'occurred_at'),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'subject_id': str(self.subject_id),
            'enrollment_id': str(self.enrollment_id) if self.enrollment_id else None,
            'step_id': self.step_id,
            'event_type': self.event_type,
            'message_id': self.message_id,
            'details': self.details,
            'occurred_at': self.occurred_at.isoformat() if self.occurred_at else None,
        }
