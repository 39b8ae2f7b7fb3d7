"""
Trigger Evaluator - Finds contacts newly eligible for a flow.

Per trigger kind:
- NEW_SUBJECT: contacts created in the last `lookbackMinutes`
- ATTRIBUTE_SEGMENT: contacts updated in the last `lookbackMinutes`,
  filtered by the segment `predicate` when configured
- SCHEDULED_DATE: `dateField` within ±`windowMinutes` of now + offset;
  `yearlyRecurring` matches month/day only
- EXTERNAL, MANUAL: enrolled through the admin API, never by polling

Contacts that are unsubscribed or already enrolled in the flow are excluded.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional

from sqlalchemy import select

from dripflow.models.contact import Contact
from dripflow.models.enrollment import Enrollment
from dripflow.models.flow import TriggerKind

logger = logging.getLogger(__name__)

DATE_COLUMNS = {
    'created_at': Contact.created_at,
    'createdAt': Contact.created_at,
    'updated_at': Contact.updated_at,
    'updatedAt': Contact.updated_at,
}


def parse_date_value(value: Any) -> Optional[datetime]:
    """ISO date or datetime (attributes are stored as strings) -> naive UTC datetime"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip().replace('Z', '+00:00')
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class TriggerEvaluator:
    """
    Usage:
        evaluator = TriggerEvaluator(config, segments=AttributeSegmentMatcher())
        subject_ids = evaluator.evaluate(flow, now)
    """

    def __init__(self, config=None, segments=None):
        config = config or {}
        self.default_lookback = int(config.get('NEW_SUBJECT_LOOKBACK_MINUTES', 10))
        self.default_window = int(config.get('SCHEDULED_DATE_WINDOW_MINUTES', 30))
        self.segments = segments

    def evaluate(self, flow, now: datetime) -> List:
        kind = flow.trigger_kind
        trigger_config = flow.trigger_config or {}

        if kind == TriggerKind.NEW_SUBJECT.value:
            return self._new_subjects(flow, trigger_config, now)
        elif kind == TriggerKind.ATTRIBUTE_SEGMENT.value:
            return self._segment(flow, trigger_config, now)
        elif kind == TriggerKind.SCHEDULED_DATE.value:
            return self._scheduled_date(flow, trigger_config, now)
        elif kind in (TriggerKind.EXTERNAL.value, TriggerKind.MANUAL.value):
            return []

        logger.warning(f"Unknown trigger kind '{kind}' on flow {flow.id}")
        return []

    def _candidates(self, flow):
        enrolled = select(Enrollment.subject_id).where(Enrollment.flow_id == flow.id)
        return Contact.query.filter(
            Contact.unsubscribed.is_(False),
            Contact.id.not_in(enrolled),
        )

    def _lookback(self, trigger_config) -> timedelta:
        return timedelta(minutes=int(trigger_config.get('lookbackMinutes') or self.default_lookback))

    def _new_subjects(self, flow, trigger_config, now):
        since = now - self._lookback(trigger_config)
        contacts = self._candidates(flow).filter(
            Contact.created_at >= since,
            Contact.created_at <= now,
        ).order_by(Contact.created_at.asc()).all()
        return [c.id for c in contacts]

    def _segment(self, flow, trigger_config, now):
        since = now - self._lookback(trigger_config)
        contacts = self._candidates(flow).filter(
            Contact.updated_at >= since,
        ).order_by(Contact.updated_at.asc()).all()

        predicate = trigger_config.get('predicate') or trigger_config.get('segment')
        if not predicate:
            return [c.id for c in contacts]
        if self.segments is None:
            logger.warning(f"Flow {flow.id} has a segment predicate but no segment matcher")
            return []
        return [c.id for c in contacts if self.segments.matches(c.id, predicate)]

    def _scheduled_date(self, flow, trigger_config, now):
        date_field = trigger_config.get('dateField')
        if not date_field:
            logger.warning(f"Date based trigger for flow {flow.id} missing date field configuration")
            return []

        target = now + timedelta(
            days=float(trigger_config.get('offsetDays') or 0),
            hours=float(trigger_config.get('offsetHours') or 0),
        )
        window = timedelta(minutes=int(trigger_config.get('windowMinutes') or self.default_window))
        yearly = bool(trigger_config.get('yearlyRecurring'))

        column = DATE_COLUMNS.get(date_field)
        if column is not None and not yearly:
            contacts = self._candidates(flow).filter(
                column >= target - window,
                column <= target + window,
            ).all()
            return [c.id for c in contacts]

        matches = []
        for contact in self._candidates(flow).all():
            if column is not None:
                value = getattr(contact, column.key)
            else:
                value = (contact.attributes or {}).get(date_field)
            parsed = parse_date_value(value)
            if parsed is None:
                continue
            if yearly:
                if (parsed.month, parsed.day) == (target.month, target.day):
                    matches.append(contact.id)
            elif target - window <= parsed <= target + window:
                matches.append(contact.id)
        return matches
