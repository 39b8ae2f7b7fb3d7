"""
Flow Engine - Enrollment execution for contact workflows

Normalizes flow definitions, evaluates triggers and advances each
enrollment through its steps on a polling tick.
"""

from dripflow.flow_engine.executor import ExecutionLoop, TickSummary
from dripflow.flow_engine.flow_model import END, ResolvedFlow, Step, StepKind, resolve, validate
from dripflow.flow_engine.outcome import Outcome
from dripflow.flow_engine.variable_resolver import VariableResolver

__all__ = [
    'ExecutionLoop',
    'TickSummary',
    'END',
    'ResolvedFlow',
    'Step',
    'StepKind',
    'resolve',
    'validate',
    'Outcome',
    'VariableResolver',
]
