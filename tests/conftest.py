"""
Pytest fixtures shared by the engine, service and route tests
"""

import inspect
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import event

from dripflow import create_app
from dripflow.config import TestConfig
from dripflow.database import db
from dripflow.flow_engine import flow_model
from dripflow.flow_engine.executor import ExecutionLoop
from dripflow.flow_engine.flow_model import resolve
from dripflow.flow_engine.processors import ProcessorContext
from dripflow.models import Contact, Flow
from dripflow.models.flow import FlowStatus, TriggerKind
from dripflow.services.enrollment_store import EnrollmentStore
from dripflow.services.messaging import MessagingClient
from dripflow.services.segments import AttributeSegmentMatcher

NOW = datetime(2026, 1, 5, 12, 0, 0)


class FakeMessaging(MessagingClient):
    """
    In-memory Messaging Collaborator.

    Every send gets message id msg-N; a send without thread_id opens thread-N
    whose context is {'subject', 'first_message_id'}.
    """

    def __init__(self):
        self.sent = []
        self.threads = {}
        self.fail_with = None
        self.on_send = None

    async def send_message(self, subject_id, content, thread_id=None, reply_to_message_id=None):
        if self.fail_with is not None:
            raise self.fail_with
        if self.on_send is not None:
            result = self.on_send(subject_id, content)
            if inspect.isawaitable(result):
                await result

        n = len(self.sent) + 1
        message_id = f'msg-{n}'
        thread = thread_id or f'thread-{n}'
        self.sent.append({
            'subject_id': subject_id,
            'content': content,
            'thread_id': thread_id,
            'reply_to_message_id': reply_to_message_id,
            'message_id': message_id,
        })
        self.threads.setdefault(thread, {'subject': content['subject'], 'first_message_id': message_id})
        return {'message_id': message_id, 'thread_id': thread}

    async def fetch_thread_context(self, subject_id, thread_id):
        return self.threads.get(thread_id)

    async def resolve_message_identifier_header(self, subject_id, message_id):
        return f'<{message_id}@mail.test>'

    @property
    def subjects(self):
        return [m['content']['subject'] for m in self.sent]


def _enable_sqlite_savepoints(engine):
    """pysqlite needs explicit BEGIN for SAVEPOINT to behave"""
    @event.listens_for(engine, 'connect')
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def do_begin(conn):
        conn.exec_driver_sql('BEGIN')


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        _enable_sqlite_savepoints(db.engine)
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    flow_model.clear_cache()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def messaging():
    return FakeMessaging()


@pytest.fixture
def store(app):
    return EnrollmentStore.from_config(app.config)


@pytest.fixture
def make_contact(app):
    def _make(email='ana@example.com', **kwargs):
        kwargs.setdefault('first_name', 'Ana')
        kwargs.setdefault('created_at', NOW - timedelta(days=30))
        kwargs.setdefault('updated_at', kwargs['created_at'])
        contact = Contact(email=email, **kwargs)
        db.session.add(contact)
        db.session.commit()
        return contact
    return _make


@pytest.fixture
def make_flow(app):
    def _make(definition, encoding='linear', status=FlowStatus.ACTIVE.value,
              trigger_kind=TriggerKind.MANUAL.value, trigger_config=None, name='Onboarding'):
        flow = Flow(
            name=name,
            encoding=encoding,
            definition=definition,
            status=status,
            trigger_kind=trigger_kind,
            trigger_config=trigger_config,
        )
        db.session.add(flow)
        db.session.commit()
        return flow
    return _make


@pytest.fixture
def execution_loop(app, messaging):
    def _make(**kwargs):
        config = dict(app.config)
        config.update(kwargs.pop('config', {}))
        kwargs.setdefault('messaging', messaging)
        kwargs.setdefault('segments', AttributeSegmentMatcher())
        kwargs.setdefault('worker_id', 'worker-test')
        return ExecutionLoop(config, **kwargs)
    return _make


@pytest.fixture
def step_context(app, messaging):
    """ProcessorContext for running a single handler against a flow"""
    def _make(flow, now=NOW, **kwargs):
        kwargs.setdefault('messaging', messaging)
        kwargs.setdefault('segments', AttributeSegmentMatcher())
        return ProcessorContext(
            config=dict(app.config),
            now=now,
            flow=flow,
            resolved=resolve(flow),
            **kwargs,
        )
    return _make


def linear(*steps):
    return {'steps': list(steps)}


def bare_enrollment(**kwargs):
    """Enrollment stand-in for handlers that only read timestamps"""
    kwargs.setdefault('id', 'enr-1')
    kwargs.setdefault('last_action_at', None)
    kwargs.setdefault('last_message_sent_at', None)
    kwargs.setdefault('created_at', NOW)
    return SimpleNamespace(**kwargs)
