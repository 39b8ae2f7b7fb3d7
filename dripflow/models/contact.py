"""
Contact Models - Lado do contato consumido pelo engine.

O CRUD destes models pertence à camada de cadastro (fora deste core); o
engine lê atributos para templates/condições e o Action step altera tags,
listas e alguns campos livres.
"""
import uuid
from datetime import datetime
from dripflow.database import db, JSONType

# Campos que o Action step pode sobrescrever
UPDATABLE_FIELDS = ['first_name', 'last_name', 'company', 'notes', 'phone']

# Aliases aceitos na configuração dos steps (formato camelCase do editor)
FIELD_ALIASES = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'createdAt': 'created_at',
    'updatedAt': 'updated_at',
}


class Contact(db.Model):
    __tablename__ = 'contacts'

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(255))
    last_name = db.Column(db.String(255))
    company = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    notes = db.Column(db.Text)

    tags = db.Column(JSONType, default=list)
    # Campos customizados (birthday, plan, ...)
    attributes = db.Column(JSONType, default=dict)

    unsubscribed = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    memberships = db.relationship('ContactListMembership', backref='contact', lazy='dynamic', cascade='all, delete-orphan')

    __table_args__ = (
        db.Index('idx_contacts_created_at', 'created_at'),
        db.Index('idx_contacts_updated_at', 'updated_at'),
    )

    def to_template_context(self) -> dict:
        """Dados do contato para substituição de variáveis e condições"""
        data = {
            'id': str(self.id),
            'email': self.email or '',
            'first_name': self.first_name or '',
            'last_name': self.last_name or '',
            'company': self.company or '',
            'phone': self.phone or '',
            'notes': self.notes or '',
            'tags': list(self.tags or []),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        # camelCase para compatibilidade com os templates do editor
        data['firstName'] = data['first_name']
        data['lastName'] = data['last_name']
        data['attributes'] = dict(self.attributes or {})
        for key, value in (self.attributes or {}).items():
            data.setdefault(key, value)
        return data

    def to_dict(self):
        return {
            'id': str(self.id),
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'company': self.company,
            'phone': self.phone,
            'notes': self.notes,
            'tags': self.tags or [],
            'attributes': self.attributes or {},
            'unsubscribed': self.unsubscribed,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class ContactList(db.Model):
    __tablename__ = 'contact_lists'

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(255), nullable=False)
    subscriber_count = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    memberships = db.relationship('ContactListMembership', backref='contact_list', lazy='dynamic', cascade='all, delete-orphan')


class ContactListMembership(db.Model):
    __tablename__ = 'contact_list_memberships'

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contact_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False)
    list_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey('contact_lists.id', ondelete='CASCADE'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('contact_id', 'list_id', name='unique_contact_list'),
    )


class MessageTemplate(db.Model):
    __tablename__ = 'message_templates'

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.Text, nullable=False, default='')
    html_content = db.Column(db.Text)
    text_content = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
