"""
Delay step - Waits a duration measured from the enrollment's last action.

Config forms:
    {'duration': 2, 'unit': 'days'}
    {'delayValue': 2, 'delayType': 'days'}
    {'delay': {'value': 2, 'unit': 'days'}}
    {'days': 1, 'hours': 12}  /  {'delayDays': 1, 'delayHours': 12}
"""

import logging
from datetime import timedelta

from dripflow.flow_engine.flow_model import StepKind
from dripflow.flow_engine.outcome import Outcome
from dripflow.flow_engine.processors.base import StepHandler, first_present

logger = logging.getLogger(__name__)

UNIT_SECONDS = {
    'minute': 60,
    'minutes': 60,
    'hour': 3600,
    'hours': 3600,
    'day': 86400,
    'days': 86400,
    'week': 604800,
    'weeks': 604800,
}


class InvalidDelayError(ValueError):
    pass


def _number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        raise InvalidDelayError(f"Invalid delay value: {value!r}")


def parse_delay(config: dict) -> timedelta:
    """
    Delay duration from any of the accepted config forms.

    Raises:
        InvalidDelayError: unknown unit or non-numeric value
    """
    nested = config.get('delay') if isinstance(config.get('delay'), dict) else {}
    value = first_present(config, 'duration', 'delayValue')
    unit = first_present(config, 'unit', 'delayType')
    if value is None and nested:
        value = nested.get('value')
        unit = nested.get('unit', unit)

    if value is not None:
        unit = str(unit or 'days').strip().lower()
        if unit not in UNIT_SECONDS:
            raise InvalidDelayError(f"Invalid delay unit: {unit}")
        return timedelta(seconds=_number(value) * UNIT_SECONDS[unit])

    # Legacy sequence steps
    days = _number(first_present(config, 'days', 'delayDays', default=0))
    hours = _number(first_present(config, 'hours', 'delayHours', default=0))
    minutes = _number(first_present(config, 'minutes', 'delayMinutes', default=0))
    return timedelta(days=days, hours=hours, minutes=minutes)


def delay_anchor(enrollment):
    """last_action_at, else last_message_sent_at, else created_at"""
    return enrollment.last_action_at or enrollment.last_message_sent_at or enrollment.created_at


class DelayHandler(StepHandler):
    """
    Re-evaluating a pending Delay is idempotent: the deadline is always
    anchor + delay, so repeated ticks (or a pause/resume) never extend it.
    """

    kind = StepKind.DELAY.value

    async def process(self, ctx, enrollment, step) -> Outcome:
        try:
            delay = parse_delay(step.config)
        except InvalidDelayError as e:
            return Outcome.fail(str(e))

        if delay.total_seconds() <= 0:
            return Outcome.done()

        anchor = delay_anchor(enrollment) or ctx.now
        deadline = anchor + delay

        if deadline <= ctx.now:
            logger.debug(f"Delay {step.id} elapsed for enrollment {enrollment.id}")
            return Outcome.done(action_at=deadline)

        return Outcome.wait(deadline)
