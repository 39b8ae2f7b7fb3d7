"""
Step processor base - Shared context and contract for all step kinds.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from dripflow.flow_engine.flow_model import ResolvedFlow, Step
from dripflow.flow_engine.outcome import Outcome
from dripflow.flow_engine.variable_resolver import VariableResolver

logger = logging.getLogger(__name__)


@dataclass
class ProcessorContext:
    """
    Everything a processor may use besides the enrollment and the step.

    Processors never commit: the loop persists the Outcome together with
    any pending writes (tags, memberships, engagement rows) in one transaction.
    """
    config: Dict[str, Any]
    now: datetime
    flow: Any
    resolved: ResolvedFlow
    messaging: Any = None
    segments: Any = None
    http_transport: Optional[httpx.AsyncBaseTransport] = None

    def resolver_for(self, enrollment) -> VariableResolver:
        return VariableResolver.for_enrollment(enrollment, self.flow)


class StepHandler:
    """
    Contract for step processors.

    Subclasses return an Outcome and convert their own errors into failed
    Outcomes; anything that escapes is treated as a permanent failure by the loop.
    """

    kind: str = ''

    async def process(self, ctx: ProcessorContext, enrollment, step: Step) -> Outcome:
        raise NotImplementedError


def first_present(config: Dict[str, Any], *keys, default=None):
    """First key with a non-empty value (config aliases)."""
    for key in keys:
        value = config.get(key)
        if value is not None and value != '':
            return value
    return default
