"""
Domain exceptions for the enrollment engine.
"""
from typing import List, Optional


class FlowValidationError(Exception):
    """Raised when a flow definition cannot be activated"""
    def __init__(self, flow_id: Optional[str], problems: List[str]):
        self.flow_id = flow_id
        self.problems = problems
        message = "Invalid flow definition"
        if flow_id:
            message += f" ({flow_id})"
        message += ": " + "; ".join(problems)
        super().__init__(message)


class FlowLockedError(Exception):
    """Raised when editing a flow that still has live enrollments"""
    def __init__(self, flow_id: str, live_enrollments: int):
        self.flow_id = flow_id
        self.live_enrollments = live_enrollments
        super().__init__(
            f"Flow {flow_id} has {live_enrollments} live enrollment(s) and cannot be edited"
        )


class EnrollmentStateError(Exception):
    """Raised when an administrative transition is not allowed"""
    def __init__(self, enrollment_id: str, status: str, action: str):
        self.enrollment_id = enrollment_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} enrollment {enrollment_id} in status {status}")


class TransientDependencyError(Exception):
    """Timeout, network error or 5xx from a collaborator. Retried on a later tick."""
    pass


class PermanentStepError(Exception):
    """Step cannot succeed as configured (unknown kind, missing config)."""
    pass
