from .contact import Contact, ContactList, ContactListMembership, MessageTemplate
from .flow import Flow, FlowStatus, FlowEncoding, TriggerKind
from .enrollment import Enrollment, EnrollmentStatus, TERMINAL_STATUSES, LIVE_STATUSES
from .enrollment_event import EnrollmentEvent, EnrollmentEventType
from .engagement import EngagementEvent, EngagementType

__all__ = [
    'Contact',
    'ContactList',
    'ContactListMembership',
    'MessageTemplate',
    'Flow',
    'FlowStatus',
    'FlowEncoding',
    'TriggerKind',
    'Enrollment',
    'EnrollmentStatus',
    'TERMINAL_STATUSES',
    'LIVE_STATUSES',
    'EnrollmentEvent',
    'EnrollmentEventType',
    'EngagementEvent',
    'EngagementType',
]
