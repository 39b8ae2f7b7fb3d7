"""
Condition step - Evaluates one predicate and picks the 'true' or 'false' branch.

Config:
    {'dataSource': 'contact', 'field': 'company', 'operator': 'equals', 'value': 'Acme'}
    {'dataSource': 'variable', 'field': 'lookup.data.plan', 'operator': 'in', 'value': ['pro']}
    {'dataSource': 'segment', 'segment': {'type': 'and', 'rules': [...]}}
    {'operator': 'opened', 'stepId': 'welcome-email'}

Linear steps may nest the same keys under 'condition', where the predicate
may also be given as 'type' and the reference step as 'referenceStep':
    {'type': 'condition', 'condition': {'type': 'opened', 'referenceStep': 'm1'}}
"""

import logging

from dripflow.flow_engine.conditions import evaluate_engagement, evaluate_operator, is_engagement_predicate
from dripflow.flow_engine.flow_model import StepKind
from dripflow.flow_engine.outcome import Outcome
from dripflow.flow_engine.processors.base import StepHandler, first_present
from dripflow.services import engagement

logger = logging.getLogger(__name__)


def condition_config(step) -> dict:
    config = dict(step.config)
    nested = config.get('condition')
    if isinstance(nested, dict):
        config.update({k: v for k, v in nested.items() if v is not None and k != 'type'})
    return config


def condition_operator(step, config) -> str:
    operator = first_present(config, 'operator', 'conditionType')
    if operator is None:
        nested = step.config.get('condition')
        if isinstance(nested, dict):
            operator = nested.get('type')
    return operator


class ConditionHandler(StepHandler):
    kind = StepKind.CONDITION.value

    async def process(self, ctx, enrollment, step) -> Outcome:
        config = condition_config(step)
        operator = condition_operator(step, config)

        if is_engagement_predicate(operator):
            result = self._engagement(ctx, enrollment, step, config, operator)
        else:
            result = self._value(ctx, enrollment, config, operator)

        label = 'true' if result else 'false'
        logger.info(f"Condition {step.id} for enrollment {enrollment.id} -> {label}")
        return Outcome.take_branch(label)

    def _value(self, ctx, enrollment, config, operator) -> bool:
        source = str(config.get('dataSource') or 'contact').lower()
        field = config.get('field')

        if source == 'segment':
            if ctx.segments is None:
                logger.warning("Segment condition without a segment matcher; evaluating false")
                return False
            predicate = first_present(config, 'segment', 'predicate', default={})
            return bool(ctx.segments.matches(enrollment.subject_id, predicate))

        resolver = ctx.resolver_for(enrollment)
        if source == 'contact':
            actual = resolver.lookup('contact', field)
        elif source in ('variable', 'variables'):
            actual = resolver.lookup('variables', field)
        elif source == 'static':
            actual = resolver.resolve(field)
        else:
            logger.warning(f"Unknown condition data source: {source}")
            actual = None

        return evaluate_operator(actual, operator, resolver.resolve(config.get('value')))

    def _reference_step(self, ctx, enrollment, step):
        """Nearest Message step up a single-predecessor chain, else the latest sent"""
        current = step.id
        seen = {current}
        while ctx.resolved.encoding == 'graph':
            predecessors = ctx.resolved.predecessors(current)
            if len(predecessors) != 1 or predecessors[0] in seen:
                break
            current = predecessors[0]
            seen.add(current)
            if ctx.resolved.steps[current].kind == StepKind.MESSAGE.value:
                return current
        return engagement.latest_sent_step(enrollment.id)

    def _engagement(self, ctx, enrollment, step, config, predicate) -> bool:
        reference = first_present(config, 'stepId', 'referenceStep', 'referenceStepId', 'emailStepId')
        if not reference:
            reference = self._reference_step(ctx, enrollment, step)

        if not reference:
            logger.debug(f"No sent message to evaluate '{predicate}' for enrollment {enrollment.id}")
            observed = set()
        else:
            observed = engagement.event_types_for_step(enrollment.id, reference)
        return evaluate_engagement(predicate, observed)
