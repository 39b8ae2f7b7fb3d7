"""
Outcome - Result of one step attempt.

Exactly one of completed / wait_until / failed describes what happened;
branch, finish and skipped refine a completed outcome.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

# Enrollment columns a processor may update through Outcome.updates
UPDATABLE_POINTERS = (
    'thread_id',
    'last_message_id',
    'last_message_sent_at',
    'thread_subject',
    'thread_message_header',
)


@dataclass
class Outcome:
    completed: bool = False
    branch: Optional[str] = None
    wait_until: Optional[datetime] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    failed: bool = False
    error: Optional[str] = None
    transient: bool = False
    finish: bool = False
    skipped: bool = False
    action_at: Optional[datetime] = None
    updates: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def done(cls, **kwargs) -> 'Outcome':
        return cls(completed=True, **kwargs)

    @classmethod
    def take_branch(cls, label: str, **kwargs) -> 'Outcome':
        return cls(completed=True, branch=label, **kwargs)

    @classmethod
    def wait(cls, until: datetime) -> 'Outcome':
        return cls(wait_until=until)

    @classmethod
    def fail(cls, error: str, transient: bool = False, **kwargs) -> 'Outcome':
        return cls(failed=True, error=error, transient=transient, **kwargs)

    @property
    def is_waiting(self) -> bool:
        return not self.completed and not self.failed and self.wait_until is not None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe payload stored on EnrollmentEvent"""
        def _ts(value):
            return value.isoformat() if isinstance(value, datetime) else value

        result = {'completed': self.completed}
        if self.branch is not None:
            result['branch'] = self.branch
        if self.wait_until is not None:
            result['wait_until'] = _ts(self.wait_until)
        if self.variables:
            result['variables'] = self.variables
        if self.failed:
            result['failed'] = True
            result['error'] = self.error
            result['transient'] = self.transient
        if self.finish:
            result['finish'] = True
        if self.skipped:
            result['skipped'] = True
        if self.action_at is not None:
            result['action_at'] = _ts(self.action_at)
        if self.updates:
            result['updates'] = {k: _ts(v) for k, v in self.updates.items()}
        return result
