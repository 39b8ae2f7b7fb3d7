"""
Variable Resolver - Resolves {{contact.field}} and {{variables.name}} references

Supports:
- {{contact.field}} - Contact attributes (email, first_name, custom attributes)
- {{variables.name}} - Enrollment variables written by Action/ExternalCall steps
- {{flow.field}} - Flow metadata (id, name)
- {{firstName}} - Legacy bare contact fields
- Nested paths: {{variables.api.data.items[0].id}}
"""

import re
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class VariableResolver:
    """
    Resolves variable references in step configuration.

    Examples:
        {{contact.email}} -> "user@example.com"
        {{firstName}} -> "John"
        {{variables.lookup.data.plan}} -> "pro"
        {{variables.lookup.status}} -> 200 (int, when the whole string is one reference)
    """

    # Pattern to match {{variable.path}}
    VARIABLE_PATTERN = re.compile(r'\{\{([^}]+)\}\}')

    def __init__(self, contact: Optional[Dict[str, Any]] = None,
                 variables: Optional[Dict[str, Any]] = None,
                 flow: Optional[Dict[str, Any]] = None):
        self.sources = {
            'contact': contact or {},
            'variables': variables or {},
            'flow': flow or {},
        }

    @classmethod
    def for_enrollment(cls, enrollment, flow=None) -> 'VariableResolver':
        contact = enrollment.subject.to_template_context() if enrollment.subject else {}
        flow = flow or enrollment.flow
        flow_meta = {'id': str(flow.id), 'name': flow.name} if flow else {}
        return cls(contact=contact, variables=dict(enrollment.variables or {}), flow=flow_meta)

    def resolve(self, value: Any) -> Any:
        """
        Resolve variables in value (recursively handles dicts, lists, strings).
        """
        if isinstance(value, str):
            return self._resolve_string(value)
        elif isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve(item) for item in value]
        else:
            return value

    def resolve_text(self, text: Optional[str]) -> str:
        """Always returns a string (message subjects and bodies)."""
        if not text:
            return ''
        result = self._resolve_string(text)
        return '' if result is None else str(result)

    def _resolve_string(self, text: str) -> Any:
        """
        If the ENTIRE string is a single variable reference, return the actual value.
        Otherwise, do string replacement.
        """
        match = self.VARIABLE_PATTERN.fullmatch(text)
        if match:
            return self._resolve_path(match.group(1).strip())

        def replace_var(match):
            value = self._resolve_path(match.group(1).strip())
            return str(value) if value is not None else ''

        return self.VARIABLE_PATTERN.sub(replace_var, text)

    def _resolve_path(self, path: str) -> Any:
        parts = path.split('.')
        source_name = parts[0]

        if source_name in self.sources and len(parts) > 1:
            current = self.sources[source_name]
            rest = parts[1:]
        elif source_name in self.sources['contact']:
            # Legacy {{firstName}} style
            current = self.sources['contact']
            rest = parts
        else:
            logger.debug(f"Unknown source in path: {path}")
            return None

        for part in rest:
            if '[' in part and part.endswith(']'):
                field_name, index_str = part.split('[', 1)
                index_str = index_str.rstrip(']')

                if isinstance(current, dict) and field_name in current:
                    current = current[field_name]
                else:
                    return None

                try:
                    index = int(index_str)
                except ValueError:
                    logger.debug(f"Invalid array index: {index_str}")
                    return None
                if isinstance(current, list) and 0 <= index < len(current):
                    current = current[index]
                else:
                    return None
            else:
                if isinstance(current, dict):
                    current = current.get(part)
                    if current is None:
                        return None
                else:
                    return None

        return current

    def lookup(self, source: str, path: str) -> Any:
        """Dotted lookup in one source (used by Condition steps)."""
        if not path:
            return None
        return self._resolve_path(f"{source}.{path}")
