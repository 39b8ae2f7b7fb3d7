"""
Segment Collaborator - Avalia predicados de segmento sobre um contato.

Predicado:
    {'type': 'and', 'rules': [{'field': 'plan', 'operator': 'equals', 'value': 'pro'},
                              {'type': 'or', 'rules': [...]}]}
"""
import logging
from typing import Any, Dict

from dripflow.database import db
from dripflow.flow_engine.conditions import evaluate_operator
from dripflow.flow_engine.variable_resolver import VariableResolver
from dripflow.models.contact import Contact

logger = logging.getLogger(__name__)


class SegmentMatcher:
    """Interface do Segment Collaborator"""

    def matches(self, subject_id, predicate: Dict[str, Any]) -> bool:
        raise NotImplementedError


class AttributeSegmentMatcher(SegmentMatcher):
    """Avalia regras contra campos e atributos customizados do contato"""

    def matches(self, subject_id, predicate):
        if not predicate:
            return True
        contact = db.session.get(Contact, subject_id)
        if contact is None:
            logger.warning(f"Segment check for unknown contact {subject_id}")
            return False
        resolver = VariableResolver(contact=contact.to_template_context())
        return self._evaluate(resolver, predicate)

    def _evaluate(self, resolver: VariableResolver, group: Dict[str, Any]) -> bool:
        rules = group.get('rules') or []
        if not rules:
            return True

        results = []
        for rule in rules:
            if 'rules' in rule:
                results.append(self._evaluate(resolver, rule))
            else:
                actual = resolver.lookup('contact', rule.get('field'))
                results.append(evaluate_operator(actual, rule.get('operator'), rule.get('value')))

        if str(group.get('type', 'and')).lower() == 'or':
            return any(results)
        return all(results)
