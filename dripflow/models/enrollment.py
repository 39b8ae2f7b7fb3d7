import uuid
from datetime import datetime
from enum import Enum
from dripflow.database import db, JSONType


class EnrollmentStatus(str, Enum):
    """
    Estados possíveis de um enrollment.

    Fluxo típico:
    active → (waiting → active)* → completed

    Ou em caso de erro:
    active → failed

    Controle externo:
    active/waiting ↔ paused, qualquer não-terminal → unsubscribed
    """
    ACTIVE = 'ACTIVE'               # Pronto para o próximo step
    WAITING = 'WAITING'             # Aguardando wait_until (Delay)
    PAUSED = 'PAUSED'               # Pausado manualmente
    COMPLETED = 'COMPLETED'         # Fluxo concluído
    FAILED = 'FAILED'               # Erro irrecuperável
    UNSUBSCRIBED = 'UNSUBSCRIBED'   # Contato saiu do fluxo


TERMINAL_STATUSES = (
    EnrollmentStatus.COMPLETED.value,
    EnrollmentStatus.FAILED.value,
    EnrollmentStatus.UNSUBSCRIBED.value,
)

LIVE_STATUSES = (
    EnrollmentStatus.ACTIVE.value,
    EnrollmentStatus.WAITING.value,
    EnrollmentStatus.PAUSED.value,
)


class Enrollment(db.Model):
    """
    Progresso de um contato (subject) em um flow.

    Exatamente um enrollment por (flow_id, subject_id). Apenas o execution
    loop altera current_step_id/status, e somente enquanto detém o claim
    (claimed_by/claimed_until).
    """
    __tablename__ = 'enrollments'

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    flow_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey('flows.id', ondelete='CASCADE'), nullable=False)
    subject_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False)

    # Versão do flow no momento da entrada
    flow_version = db.Column(db.Integer, default=1, nullable=False)

    status = db.Column(db.String(20), default=EnrollmentStatus.ACTIVE.value, nullable=False)

    # Ponteiro; None = ainda não iniciado (começa no entry step)
    current_step_id = db.Column(db.String(255), nullable=True)
    wait_until = db.Column(db.DateTime, nullable=True)

    # Resultados acumulados de Action/ExternalCall (merge, nunca remove chaves)
    variables = db.Column(JSONType, default=dict)

    # === Ponteiros do Messaging Collaborator (continuação de thread) ===
    last_message_sent_at = db.Column(db.DateTime)
    thread_id = db.Column(db.String(255))
    last_message_id = db.Column(db.String(255))
    thread_subject = db.Column(db.Text)            # Assunto da primeira mensagem da thread
    thread_message_header = db.Column(db.Text)     # Message-ID da mensagem original (cache)

    # Âncora para Delay steps
    last_action_at = db.Column(db.DateTime)

    # === Erros ===
    step_failures = db.Column(db.Integer, default=0, nullable=False)
    last_error = db.Column(db.Text)
    failure_reason = db.Column(db.Text)

    # === Claim/lease ===
    claimed_by = db.Column(db.String(100))
    claimed_until = db.Column(db.DateTime)
    # Compare-and-set
    version = db.Column(db.Integer, default=1, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    failed_at = db.Column(db.DateTime)
    paused_at = db.Column(db.DateTime)

    # Relationships
    flow = db.relationship('Flow', back_populates='enrollments')
    subject = db.relationship('Contact', foreign_keys=[subject_id])

    __table_args__ = (
        db.UniqueConstraint('flow_id', 'subject_id', name='unique_flow_subject'),
        db.Index('idx_enrollments_ready', 'status', 'wait_until'),
        db.Index('idx_enrollments_flow_status', 'flow_id', 'status'),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def merge_variables(self, patch: dict):
        """Aplica patch em variables (reatribui para o JSON ser detectado como alterado)"""
        if not patch:
            return
        self.variables = {**(self.variables or {}), **patch}

    def to_dict(self):
        return {
            'id': str(self.id),
            'flow_id': str(self.flow_id),
            'subject_id': str(self.subject_id),
            'flow_version': self.flow_version,
            'status': self.status,
            'current_step_id': self.current_step_id,
            'wait_until': self.wait_until.isoformat() if self.wait_until else None,
            'variables': self.variables or {},
            'last_message_sent_at': self.last_message_sent_at.isoformat() if self.last_message_sent_at else None,
            'thread_id': self.thread_id,
            'last_message_id': self.last_message_id,
            'step_failures': self.step_failures,
            'last_error': self.last_error,
            'failure_reason': self.failure_reason,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'failed_at': self.failed_at.isoformat() if self.failed_at else None,
            'paused_at': self.paused_at.isoformat() if self.paused_at else None,
        }
