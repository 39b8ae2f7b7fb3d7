"""
Action step - Mutates contact-level state.

Config:
    {'actionType': 'add_tag', 'target': 'vip'}
    {'actionType': 'add_to_list', 'target': '<list uuid>'}
    {'actionType': 'update_field', 'target': 'company', 'value': '{{variables.lookup.data.company}}'}
    {'actionType': 'add_tag', 'target': 'vip', 'variableName': 'tagged'}   # records the result

Every action is idempotent: repeating it leaves the contact unchanged.
"""

import logging
import uuid
from datetime import datetime

from dripflow.database import db
from dripflow.flow_engine.flow_model import StepKind
from dripflow.flow_engine.outcome import Outcome
from dripflow.flow_engine.processors.base import StepHandler, first_present
from dripflow.models.contact import (
    FIELD_ALIASES,
    UPDATABLE_FIELDS,
    Contact,
    ContactList,
    ContactListMembership,
)

logger = logging.getLogger(__name__)


class ActionError(Exception):
    pass


class ActionHandler(StepHandler):
    kind = StepKind.ACTION.value

    async def process(self, ctx, enrollment, step) -> Outcome:
        config = step.config
        action_type = first_present(config, 'actionType', 'action')
        resolver = ctx.resolver_for(enrollment)
        target = resolver.resolve(first_present(config, 'target', 'tag', 'listId', 'field'))

        contact = db.session.get(Contact, enrollment.subject_id)
        if contact is None:
            return Outcome.fail('Contact not found')

        handlers = {
            'add_tag': self._add_tag,
            'remove_tag': self._remove_tag,
            'add_to_list': self._add_to_list,
            'remove_from_list': self._remove_from_list,
            'update_field': self._update_field,
        }
        handler = handlers.get(action_type)
        if handler is None:
            return Outcome.fail(f"Unknown action type: {action_type}")

        try:
            if action_type == 'update_field':
                changed = handler(contact, target, resolver.resolve(config.get('value')))
            else:
                changed = handler(contact, target)
        except ActionError as e:
            return Outcome.fail(str(e))

        logger.info(f"Action {action_type}({target}) on contact {contact.id}: changed={changed}")

        variables = {}
        if config.get('variableName'):
            variables[config['variableName']] = {
                'action': action_type,
                'target': target,
                'changed': changed,
                'timestamp': ctx.now.isoformat(),
            }
        return Outcome.done(variables=variables)

    def _add_tag(self, contact, tag) -> bool:
        if not tag:
            raise ActionError('Tag is required')
        tags = list(contact.tags or [])
        if tag in tags:
            return False
        contact.tags = tags + [tag]
        contact.updated_at = datetime.utcnow()
        return True

    def _remove_tag(self, contact, tag) -> bool:
        tags = list(contact.tags or [])
        if tag not in tags:
            return False
        contact.tags = [t for t in tags if t != tag]
        contact.updated_at = datetime.utcnow()
        return True

    def _get_list(self, list_id):
        try:
            key = list_id if isinstance(list_id, uuid.UUID) else uuid.UUID(str(list_id))
        except (TypeError, ValueError):
            raise ActionError(f"Invalid list id: {list_id}")
        contact_list = db.session.get(ContactList, key)
        if contact_list is None:
            raise ActionError('Contact list not found')
        return contact_list

    def _add_to_list(self, contact, list_id) -> bool:
        contact_list = self._get_list(list_id)
        existing = ContactListMembership.query.filter_by(
            contact_id=contact.id, list_id=contact_list.id
        ).first()
        if existing:
            return False
        db.session.add(ContactListMembership(contact_id=contact.id, list_id=contact_list.id))
        contact_list.subscriber_count = (contact_list.subscriber_count or 0) + 1
        return True

    def _remove_from_list(self, contact, list_id) -> bool:
        contact_list = self._get_list(list_id)
        deleted = ContactListMembership.query.filter_by(
            contact_id=contact.id, list_id=contact_list.id
        ).delete(synchronize_session=False)
        if deleted:
            contact_list.subscriber_count = max((contact_list.subscriber_count or 0) - deleted, 0)
        return bool(deleted)

    def _update_field(self, contact, field, value) -> bool:
        if value is None or value == '':
            raise ActionError('Value is required for update field action')
        field = FIELD_ALIASES.get(field, field)
        if field not in UPDATABLE_FIELDS:
            raise ActionError(f"Field '{field}' cannot be updated via automation")
        if getattr(contact, field) == value:
            return False
        setattr(contact, field, str(value))
        contact.updated_at = datetime.utcnow()
        return True
