"""
EnrollmentEvent Model - Registro append-only de cada tentativa de step.

- ENTERED: step iniciou espera (Delay pendente)
- EXITED: step concluído (avança, ramifica ou finaliza)
- FAILED: step falhou
"""
import uuid
from datetime import datetime
from enum import Enum
from dripflow.database import db, JSONType


class EnrollmentEventType(str, Enum):
    ENTERED = 'ENTERED'
    EXITED = 'EXITED'
    FAILED = 'FAILED'


class EnrollmentEvent(db.Model):
    __tablename__ = 'enrollment_events'

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    enrollment_id = db.Column(
        db.Uuid(as_uuid=True),
        db.ForeignKey('enrollments.id', ondelete='CASCADE'),
        nullable=False
    )

    step_id = db.Column(db.String(255), nullable=False)
    event_type = db.Column(db.String(20), nullable=False)

    # Outcome serializado
    payload = db.Column(JSONType)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    enrollment = db.relationship(
        'Enrollment',
        backref=db.backref('events', lazy='dynamic', cascade='all, delete-orphan')
    )

    __table_args__ = (
        db.Index('idx_enrollment_events_enrollment', 'enrollment_id', 'timestamp'),
        db.Index('idx_enrollment_events_step', 'enrollment_id', 'step_id'),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'enrollment_id': str(self.enrollment_id),
            'step_id': self.step_id,
            'event_type': self.event_type,
            'payload': self.payload,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }
