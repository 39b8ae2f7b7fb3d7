"""
Step processors - one stateless handler per step kind.
"""

from typing import Dict, Iterable, Optional

from dripflow.flow_engine.processors.action import ActionHandler
from dripflow.flow_engine.processors.base import ProcessorContext, StepHandler
from dripflow.flow_engine.processors.condition import ConditionHandler
from dripflow.flow_engine.processors.delay import DelayHandler
from dripflow.flow_engine.processors.external_call import ExternalCallHandler
from dripflow.flow_engine.processors.message import MessageHandler


class ProcessorRegistry:
    """Maps StepKind values to handlers"""

    def __init__(self, handlers: Optional[Iterable[StepHandler]] = None):
        self._handlers: Dict[str, StepHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: StepHandler):
        self._handlers[handler.kind] = handler

    def get(self, kind: Optional[str]) -> Optional[StepHandler]:
        if not kind:
            return None
        return self._handlers.get(kind)

    @classmethod
    def default(cls) -> 'ProcessorRegistry':
        return cls([MessageHandler(), DelayHandler(), ConditionHandler(),
                    ActionHandler(), ExternalCallHandler()])


__all__ = [
    'ProcessorContext',
    'ProcessorRegistry',
    'StepHandler',
    'MessageHandler',
    'DelayHandler',
    'ConditionHandler',
    'ActionHandler',
    'ExternalCallHandler',
]
