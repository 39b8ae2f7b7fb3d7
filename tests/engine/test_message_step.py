"""
Tests for the Message step
"""

import pytest
from datetime import timedelta

from conftest import NOW, linear
from dripflow.database import db
from dripflow.exceptions import PermanentStepError, TransientDependencyError
from dripflow.flow_engine.processors.message import MessageHandler, reply_subject
from dripflow.models import EngagementEvent, MessageTemplate
from dripflow.services.engagement import record_engagement


@pytest.fixture
def setup(make_contact, make_flow, store, step_context):
    def _setup(**step_config):
        step_config.setdefault('subject', 'Welcome {{firstName}}')
        step_config.setdefault('content', '<p>Hi {{contact.first_name}}</p>')
        contact = make_contact()
        flow = make_flow(linear({'id': 'm1', 'type': 'email', **step_config}))
        enrollment = store.create(flow, contact.id, now=NOW)
        ctx = step_context(flow)
        return ctx, enrollment, ctx.resolved.get('m1')
    return _setup


def test_reply_subject():
    """Test reply subject prefix"""
    assert reply_subject('Welcome') == 'Re: Welcome'
    assert reply_subject('RE: Welcome') == 'RE: Welcome'


class TestFirstMessage:
    """Test the first message of a flow"""

    @pytest.mark.asyncio
    async def test_sends_new_thread(self, setup, messaging):
        """Test the first message opens a new thread"""
        ctx, enrollment, step = setup()

        outcome = await MessageHandler().process(ctx, enrollment, step)

        assert outcome.completed
        assert messaging.sent[0]['thread_id'] is None
        assert messaging.sent[0]['content']['subject'] == 'Welcome Ana'
        assert messaging.sent[0]['content']['html'] == '<p>Hi Ana</p>'
        assert outcome.updates['thread_id'] == 'thread-1'
        assert outcome.updates['last_message_id'] == 'msg-1'
        assert outcome.updates['thread_subject'] == 'Welcome Ana'
        assert outcome.action_at == NOW
        assert outcome.variables['lastEmail']['messageId'] == 'msg-1'

    @pytest.mark.asyncio
    async def test_records_sent_engagement(self, setup):
        """Test a sent engagement is recorded"""
        ctx, enrollment, step = setup()

        await MessageHandler().process(ctx, enrollment, step)

        event = EngagementEvent.query.filter_by(enrollment_id=enrollment.id).one()
        assert event.event_type == 'SENT'
        assert event.step_id == 'm1'
        assert event.message_id == 'msg-1'

    @pytest.mark.asyncio
    async def test_template_content(self, setup, messaging):
        """Test subject and body templates are resolved"""
        template = MessageTemplate(name='Promo', subject='Offer for {{firstName}}', html_content='<b>50%</b>')
        db.session.add(template)
        db.session.commit()
        ctx, enrollment, step = setup(templateId=str(template.id), subject=None, content=None)

        outcome = await MessageHandler().process(ctx, enrollment, step)

        assert outcome.completed
        assert messaging.sent[0]['content']['subject'] == 'Offer for Ana'
        assert messaging.sent[0]['content']['html'] == '<b>50%</b>'

    @pytest.mark.asyncio
    async def test_no_content_is_permanent_failure(self, setup, messaging):
        """Test a message without content fails permanently"""
        ctx, enrollment, step = setup(subject='', content='')

        outcome = await MessageHandler().process(ctx, enrollment, step)

        assert outcome.failed
        assert not outcome.transient
        assert messaging.sent == []


class TestThreading:
    """Test thread continuation"""

    def _continue(self, enrollment, messaging):
        enrollment.thread_id = 'thread-1'
        enrollment.last_message_id = 'msg-1'
        enrollment.thread_subject = 'Welcome Ana'
        messaging.threads['thread-1'] = {'subject': 'Welcome Ana', 'first_message_id': 'msg-1'}
        messaging.sent.append({'content': {'subject': 'Welcome Ana'}})

    @pytest.mark.asyncio
    async def test_follow_up_continues_thread(self, setup, messaging):
        """continueThread replies in the enrollment's thread with the first subject"""
        ctx, enrollment, step = setup(subject='Follow up', continueThread=True)
        self._continue(enrollment, messaging)

        outcome = await MessageHandler().process(ctx, enrollment, step)

        sent = messaging.sent[-1]
        assert sent['thread_id'] == 'thread-1'
        assert sent['content']['subject'] == 'Re: Welcome Ana'
        assert sent['reply_to_message_id'] == '<msg-1@mail.test>'
        assert sent['content']['headers']['In-Reply-To'] == '<msg-1@mail.test>'
        assert outcome.updates['thread_message_header'] == '<msg-1@mail.test>'
        assert outcome.updates['thread_id'] == 'thread-1'
        assert 'thread_subject' not in outcome.updates

    @pytest.mark.asyncio
    async def test_follow_up_without_continuation_is_sent_as_written(self, setup, messaging):
        """Later messages do not reply unless the step asks for it"""
        ctx, enrollment, step = setup(subject='Follow up')
        self._continue(enrollment, messaging)

        outcome = await MessageHandler().process(ctx, enrollment, step)

        assert messaging.sent[-1]['thread_id'] is None
        assert messaging.sent[-1]['reply_to_message_id'] is None
        assert messaging.sent[-1]['content']['subject'] == 'Follow up'
        assert outcome.updates['thread_subject'] == 'Follow up'

    @pytest.mark.asyncio
    async def test_continue_thread_disabled(self, setup, messaging):
        """continueThread false wins over replyToThread"""
        ctx, enrollment, step = setup(subject='Fresh start', continueThread=False, replyToThread=True)
        self._continue(enrollment, messaging)

        await MessageHandler().process(ctx, enrollment, step)

        assert messaging.sent[-1]['thread_id'] is None
        assert messaging.sent[-1]['content']['subject'] == 'Fresh start'

    @pytest.mark.asyncio
    async def test_thread_without_history_is_still_continued(self, setup, messaging):
        """No thread context means no quoted history, not a lost thread"""
        ctx, enrollment, step = setup(subject='Follow up', replyToThread=True)
        enrollment.thread_id = 'thread-1'
        enrollment.last_message_id = 'msg-0'
        enrollment.thread_subject = 'Welcome Ana'

        outcome = await MessageHandler().process(ctx, enrollment, step)

        sent = messaging.sent[-1]
        assert outcome.completed
        assert sent['thread_id'] == 'thread-1'
        assert sent['reply_to_message_id'] == '<msg-0@mail.test>'
        assert sent['content']['subject'] == 'Re: Welcome Ana'
        assert outcome.updates['thread_message_header'] == '<msg-0@mail.test>'
        assert 'thread_subject' not in outcome.updates


class TestSuppression:
    """Test suppression when the contact already engaged"""

    @pytest.mark.asyncio
    async def test_reply_since_enrollment_finishes_flow(self, setup, messaging):
        """Test a reply since enrollment finishes the flow"""
        ctx, enrollment, step = setup(sendOnlyIfNoReply=True)
        record_engagement(enrollment.subject_id, 'REPLIED', occurred_at=NOW + timedelta(minutes=5))

        outcome = await MessageHandler().process(ctx, enrollment, step)

        assert outcome.completed
        assert outcome.finish
        assert outcome.skipped
        assert messaging.sent == []

    @pytest.mark.asyncio
    async def test_open_since_enrollment_skips_step(self, setup, messaging):
        """Test an open since enrollment skips the step"""
        ctx, enrollment, step = setup(sendOnlyIfNoOpen=True)
        record_engagement(enrollment.subject_id, 'OPENED', occurred_at=NOW + timedelta(minutes=5))

        outcome = await MessageHandler().process(ctx, enrollment, step)

        assert outcome.completed
        assert outcome.skipped
        assert not outcome.finish
        assert messaging.sent == []

    @pytest.mark.asyncio
    async def test_reply_before_enrollment_does_not_suppress(self, setup, messaging):
        """Test a reply before enrollment does not suppress"""
        ctx, enrollment, step = setup(sendOnlyIfNoReply=True)
        record_engagement(enrollment.subject_id, 'REPLIED', occurred_at=NOW - timedelta(days=1))

        await MessageHandler().process(ctx, enrollment, step)

        assert len(messaging.sent) == 1


class TestFailures:
    """Test messaging failures"""

    @pytest.mark.asyncio
    async def test_transient_messaging_error(self, setup, messaging):
        """Test transient messaging error"""
        ctx, enrollment, step = setup()
        messaging.fail_with = TransientDependencyError('Messaging timeout')

        outcome = await MessageHandler().process(ctx, enrollment, step)

        assert outcome.failed
        assert outcome.transient
        assert EngagementEvent.query.count() == 0

    @pytest.mark.asyncio
    async def test_permanent_messaging_error(self, setup, messaging):
        """Test permanent messaging error"""
        ctx, enrollment, step = setup()
        messaging.fail_with = PermanentStepError('rejected')

        outcome = await MessageHandler().process(ctx, enrollment, step)

        assert outcome.failed
        assert not outcome.transient

    @pytest.mark.asyncio
    async def test_without_messaging_collaborator(self, setup):
        """Test message step without a messaging client"""
        ctx, enrollment, step = setup()
        ctx.messaging = None

        outcome = await MessageHandler().process(ctx, enrollment, step)
        assert outcome.failed
