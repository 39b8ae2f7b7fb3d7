"""
Flow Models - Definição de fluxos de automação por contato.

Um Flow guarda a definição (grafo de nodes/edges ou lista linear de steps),
o tipo de trigger de entrada e contadores agregados de enrollments.
"""
from dripflow.database import db, JSONType
from datetime import datetime
import uuid
from enum import Enum


class FlowStatus(str, Enum):
    """Flow status"""
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"


class FlowEncoding(str, Enum):
    """Formato da definição"""
    GRAPH = "graph"  # {nodes: [...], edges: [...]}
    LINEAR = "linear"  # {steps: [...]}


class TriggerKind(str, Enum):
    """Tipos de trigger de entrada"""
    NEW_SUBJECT = "NEW_SUBJECT"
    ATTRIBUTE_SEGMENT = "ATTRIBUTE_SEGMENT"
    SCHEDULED_DATE = "SCHEDULED_DATE"
    EXTERNAL = "EXTERNAL"
    MANUAL = "MANUAL"


class Flow(db.Model):
    """
    Flow - Workflow definition executed per contact.

    definition (graph):
        {'nodes': [{'id': 'n1', 'type': 'email', 'data': {...}}],
         'edges': [{'source': 'n1', 'target': 'n2', 'sourceHandle': 'true'}]}

    definition (linear):
        {'steps': [{'id': 's1', 'type': 'email', 'subject': 'Hi'}, ...]}
    """
    __tablename__ = 'flows'

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)

    status = db.Column(db.String(50), default=FlowStatus.DRAFT.value, nullable=False)

    # Definição
    encoding = db.Column(db.String(20), default=FlowEncoding.GRAPH.value, nullable=False)
    definition = db.Column(JSONType, nullable=False, default=dict)

    # Incrementado a cada edição da definição; enrollments guardam a versão de entrada
    version = db.Column(db.Integer, default=1, nullable=False)

    # Trigger
    trigger_kind = db.Column(db.String(50), default=TriggerKind.MANUAL.value, nullable=False)
    trigger_config = db.Column(JSONType)

    # Estatísticas (eventualmente consistentes, não usadas para controle)
    total_entered = db.Column(db.Integer, default=0, nullable=False)
    currently_active = db.Column(db.Integer, default=0, nullable=False)
    total_completed = db.Column(db.Integer, default=0, nullable=False)

    activated_at = db.Column(db.DateTime)

    # Relationships
    enrollments = db.relationship('Enrollment', back_populates='flow', lazy='dynamic', cascade='all, delete-orphan')

    __table_args__ = (
        db.Index('idx_flows_status', 'status'),
    )

    @property
    def is_active(self) -> bool:
        return self.status == FlowStatus.ACTIVE.value

    def to_dict(self, include_definition=False):
        result = {
            'id': str(self.id),
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'encoding': self.encoding,
            'version': self.version,
            'trigger_kind': self.trigger_kind,
            'trigger_config': self.trigger_config,
            'total_entered': self.total_entered,
            'currently_active': self.currently_active,
            'total_completed': self.total_completed,
            'activated_at': self.activated_at.isoformat() if self.activated_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

        if include_definition:
            result['definition'] = self.definition

        return result
