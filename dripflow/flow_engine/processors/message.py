"""
Message step - Sends one message through the Messaging Collaborator.

Content comes inline ('subject', 'content' / 'htmlContent' / 'textContent',
or a nested 'emailTemplate') or from a MessageTemplate via 'templateId'.

Suppression:
- sendOnlyIfNoReply: contact replied since enrollment start -> finish the flow
- sendOnlyIfNoOpen: contact opened since enrollment start -> skip, keep going

Threading: a step continues the enrollment's thread only when 'continueThread'
or 'replyToThread' is set. A thread without fetchable history is still
continued; only the quoted context is missing.
"""

import logging
import uuid

from dripflow.database import db
from dripflow.exceptions import PermanentStepError, TransientDependencyError
from dripflow.flow_engine.flow_model import StepKind
from dripflow.flow_engine.outcome import Outcome
from dripflow.flow_engine.processors.base import StepHandler, first_present
from dripflow.models.contact import MessageTemplate
from dripflow.models.engagement import EngagementType
from dripflow.services import engagement

logger = logging.getLogger(__name__)


def reply_subject(first_subject: str) -> str:
    if first_subject.lower().startswith('re:'):
        return first_subject
    return f"Re: {first_subject}"


class MessageHandler(StepHandler):
    kind = StepKind.MESSAGE.value

    async def process(self, ctx, enrollment, step) -> Outcome:
        config = step.config
        contact = enrollment.subject
        if contact is None:
            return Outcome.fail('Contact not found')
        if ctx.messaging is None:
            return Outcome.fail('Messaging collaborator not configured')

        since = enrollment.created_at
        if config.get('sendOnlyIfNoReply') and engagement.has_engagement_since(
                contact.id, EngagementType.REPLIED.value, since):
            logger.info(f"Enrollment {enrollment.id}: contact replied, finishing before step {step.id}")
            return Outcome.done(finish=True, skipped=True)

        if config.get('sendOnlyIfNoOpen') and engagement.has_engagement_since(
                contact.id, EngagementType.OPENED.value, since):
            logger.info(f"Enrollment {enrollment.id}: contact opened, skipping step {step.id}")
            return Outcome.done(skipped=True)

        try:
            subject, html, text = self._content(config)
        except PermanentStepError as e:
            return Outcome.fail(str(e))

        resolver = ctx.resolver_for(enrollment)
        subject = resolver.resolve_text(subject)
        html = resolver.resolve_text(html)
        text = resolver.resolve_text(text) if text else None

        try:
            return await self._send(ctx, enrollment, step, contact, subject, html, text)
        except TransientDependencyError as e:
            logger.warning(f"Message step {step.id} transient failure for enrollment {enrollment.id}: {e}")
            return Outcome.fail(str(e), transient=True)
        except PermanentStepError as e:
            logger.error(f"Message step {step.id} failed for enrollment {enrollment.id}: {e}")
            return Outcome.fail(str(e))

    def _content(self, config):
        """(subject, html, text) before variable substitution"""
        template_id = config.get('templateId')
        use_template = config.get('sendFromTemplate', bool(template_id))
        if template_id and use_template:
            try:
                key = uuid.UUID(str(template_id))
            except ValueError:
                raise PermanentStepError(f"Invalid template id: {template_id}")
            template = db.session.get(MessageTemplate, key)
            if template is None:
                raise PermanentStepError('Message template not found')
            return template.subject or '', template.html_content or template.text_content or '', template.text_content

        nested = config.get('emailTemplate') if isinstance(config.get('emailTemplate'), dict) else {}
        subject = first_present(nested, 'subject') or first_present(config, 'subject', default='')
        html = (
            first_present(nested, 'content', 'htmlContent')
            or first_present(config, 'htmlContent', 'content', default='')
        )
        text = first_present(nested, 'textContent') or config.get('textContent')
        if not subject and not html and not text:
            raise PermanentStepError('Message has no content')
        return subject, html, text

    async def _send(self, ctx, enrollment, step, contact, subject, html, text) -> Outcome:
        messaging = ctx.messaging
        continue_thread = first_present(step.config, 'continueThread', 'replyToThread', default=False)

        updates = {}
        thread_id = None
        reply_to = None

        if continue_thread and enrollment.thread_id:
            context = await messaging.fetch_thread_context(contact.id, enrollment.thread_id)
            if context is None:
                logger.info(f"Thread {enrollment.thread_id} has no history available; replying without it")
                context = {}

            thread_id = enrollment.thread_id
            reply_to = enrollment.thread_message_header
            if not reply_to:
                original_id = context.get('first_message_id') or enrollment.last_message_id
                if original_id:
                    reply_to = await messaging.resolve_message_identifier_header(contact.id, original_id)
                    if reply_to:
                        updates['thread_message_header'] = reply_to
            first_subject = enrollment.thread_subject or context.get('subject') or subject
            subject = reply_subject(first_subject)

        content = {
            'to': contact.email,
            'subject': subject,
            'html': html,
            'text': text,
        }
        if reply_to:
            content['headers'] = {'In-Reply-To': reply_to, 'References': reply_to}

        result = await messaging.send_message(
            contact.id,
            content,
            thread_id=thread_id,
            reply_to_message_id=reply_to,
        )
        message_id = result.get('message_id')

        updates.update({
            'thread_id': result.get('thread_id') or thread_id,
            'last_message_id': message_id,
            'last_message_sent_at': ctx.now,
        })
        if thread_id is None:
            # Nova thread: esta mensagem passa a ser a original
            updates['thread_subject'] = subject
            updates['thread_message_header'] = None

        engagement.record_engagement(
            subject_id=contact.id,
            event_type=EngagementType.SENT.value,
            enrollment_id=enrollment.id,
            step_id=step.id,
            message_id=message_id,
            occurred_at=ctx.now,
            details={'subject': subject, 'thread_id': updates['thread_id']},
        )

        logger.info(f"Message step {step.id} sent to {contact.email} (message_id={message_id})")
        return Outcome.done(
            action_at=ctx.now,
            updates=updates,
            variables={'lastEmail': {
                'subject': subject,
                'sentAt': ctx.now.isoformat(),
                'messageId': message_id,
            }},
        )
