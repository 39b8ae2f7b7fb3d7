"""
Tests for the HTTP API
"""

from datetime import timedelta
import uuid

import pytest

from conftest import NOW, linear
from dripflow.database import db
from dripflow.models import Enrollment
from dripflow.models.flow import FlowStatus
from dripflow.services.event_logger import EnrollmentEventLogger

VALID = linear({'id': 'a1', 'type': 'action', 'actionType': 'add_tag', 'target': 'api'})


@pytest.fixture
def flow(make_flow):
    return make_flow(VALID, status=FlowStatus.DRAFT.value)


class TestHealth:
    """Health check reports the engine backlog"""

    def test_empty_engine(self, client):
        """Healthy with nothing to run"""
        response = client.get('/api/v1/health')

        data = response.get_json()
        assert response.status_code == 200
        assert data['status'] == 'healthy'
        assert data['engine'] == {'ready': 0, 'claimed': 0, 'last_step_at': None}

    def test_ready_enrollments_are_counted(self, client, make_flow, make_contact, store):
        """Enrollments of active flows waiting for a tick show up as ready"""
        active = make_flow(VALID)
        draft = make_flow(VALID, status=FlowStatus.DRAFT.value, name='Draft')
        store.create(active, make_contact('a@example.com').id, now=NOW)
        store.create(draft, make_contact('b@example.com').id, now=NOW)
        EnrollmentEventLogger(Enrollment.query.first().id).exited('a1', commit=True)

        data = client.get('/api/v1/health').get_json()

        assert data['engine']['ready'] == 1
        assert data['engine']['claimed'] == 0
        assert data['engine']['last_step_at'] is not None


class TestFlowRoutes:
    """Test flow endpoints"""

    def test_activate(self, client, flow):
        """Test activating a valid flow"""
        response = client.post(f'/api/v1/flows/{flow.id}/activate')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'ACTIVE'

    def test_activate_invalid(self, client, make_flow):
        """Test activation errors are returned with every problem"""
        flow = make_flow(linear({'id': 'x', 'type': 'sms'}), status=FlowStatus.DRAFT.value)

        response = client.post(f'/api/v1/flows/{flow.id}/activate')

        assert response.status_code == 400
        assert response.get_json()['problems']

    def test_unknown_flow(self, client):
        """Test unknown flow id returns 404"""
        assert client.post(f'/api/v1/flows/{uuid.uuid4()}/activate').status_code == 404
        assert client.post('/api/v1/flows/not-a-uuid/activate').status_code == 404

    def test_deactivate(self, client, flow):
        """Test deactivating a flow"""
        client.post(f'/api/v1/flows/{flow.id}/activate')
        response = client.post(f'/api/v1/flows/{flow.id}/deactivate')
        assert response.get_json()['status'] == 'PAUSED'

    def test_enroll_is_idempotent(self, client, flow, make_contact):
        """Test enrolling the same contacts twice creates nothing new"""
        contact = make_contact()

        first = client.post(f'/api/v1/flows/{flow.id}/enrollments', json={'subject_id': str(contact.id)})
        second = client.post(f'/api/v1/flows/{flow.id}/enrollments', json={'subject_ids': [str(contact.id)]})

        assert first.status_code == 201
        assert first.get_json()['created'] == 1
        assert second.status_code == 200
        assert second.get_json()['created'] == 0

    def test_enroll_validates_ids(self, client, flow):
        """Test enroll requires a list of contact ids"""
        response = client.post(f'/api/v1/flows/{flow.id}/enrollments', json={'subject_ids': ['nope']})

        assert response.status_code == 400
        assert response.get_json()['invalid'] == ['nope']
        assert client.post(f'/api/v1/flows/{flow.id}/enrollments', json={}).status_code == 400

    def test_update_definition(self, client, flow):
        """Test definition update bumps the version"""
        response = client.put(f'/api/v1/flows/{flow.id}/definition', json={'definition': VALID})

        assert response.status_code == 200
        assert response.get_json()['version'] == 2
        assert response.get_json()['definition'] == VALID

    def test_update_definition_locked(self, client, flow, make_contact, store):
        """Test definition update is refused while enrollments are live"""
        store.create(flow, make_contact().id, now=NOW)

        response = client.put(f'/api/v1/flows/{flow.id}/definition', json={'definition': VALID})

        assert response.status_code == 409
        assert response.get_json()['live_enrollments'] == 1

    def test_update_definition_requires_body(self, client, flow):
        """Test definition update without a definition"""
        assert client.put(f'/api/v1/flows/{flow.id}/definition', json={}).status_code == 400

    def test_stats(self, client, flow, make_contact, store):
        """Test flow stats with per-step counters"""
        store.create(flow, make_contact().id, now=NOW)

        data = client.get(f'/api/v1/flows/{flow.id}/stats').get_json()

        assert data['currently_active'] == 1
        assert data['by_status']['ACTIVE'] == 1
        assert data['steps'] == {'a1': {'passed': 0, 'current': 1}}


class TestEnrollmentRoutes:
    """Test enrollment endpoints"""

    @pytest.fixture
    def enrollment(self, flow, make_contact, store):
        return store.create(flow, make_contact().id, now=NOW)

    def test_statuses(self, client, enrollment):
        """Test status lookup for a set of enrollments"""
        response = client.get(f'/api/v1/enrollments?ids={enrollment.id},bogus')

        assert response.status_code == 200
        assert response.get_json()['enrollments'][str(enrollment.id)]['status'] == 'ACTIVE'

    def test_statuses_requires_ids(self, client):
        """Test status lookup without ids"""
        assert client.get('/api/v1/enrollments').status_code == 400

    def test_pause_resume(self, client, enrollment):
        """Test pausing and resuming an enrollment"""
        assert client.post(f'/api/v1/enrollments/{enrollment.id}/pause').get_json()['status'] == 'PAUSED'
        assert client.post(f'/api/v1/enrollments/{enrollment.id}/resume').get_json()['status'] == 'ACTIVE'

    def test_invalid_transition(self, client, enrollment):
        """Test resuming an enrollment that is not paused"""
        response = client.post(f'/api/v1/enrollments/{enrollment.id}/resume')
        assert response.status_code == 409

    def test_unsubscribe(self, client, enrollment):
        """Test unsubscribing an enrollment"""
        response = client.post(f'/api/v1/enrollments/{enrollment.id}/unsubscribe')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'UNSUBSCRIBED'

    def test_delete(self, client, enrollment):
        """Test removing an enrollment"""
        enrollment_id = enrollment.id

        response = client.delete(f'/api/v1/enrollments/{enrollment_id}')

        assert response.status_code == 200
        assert db.session.get(Enrollment, enrollment_id) is None
        assert client.delete(f'/api/v1/enrollments/{enrollment_id}').status_code == 404

    def test_events(self, client, enrollment):
        """Test listing the event log of an enrollment"""
        EnrollmentEventLogger(enrollment.id).exited('a1', {'completed': True}, commit=True)
        response = client.get(f'/api/v1/enrollments/{enrollment.id}/events')

        assert response.status_code == 200
        assert response.get_json()['count'] == 1
        assert response.get_json()['events'][0]['event_type'] == 'EXITED'


def test_tick_endpoint(client, make_flow, make_contact, store):
    """Test manual tick runs the execution loop once"""
    flow = make_flow(VALID)
    enrollment = store.create(flow, make_contact(created_at=NOW - timedelta(days=1)).id)

    response = client.post('/api/v1/engine/tick')

    assert response.status_code == 200
    assert response.get_json()['completed'] == 1
    db.session.expire_all()
    assert db.session.get(Enrollment, enrollment.id).status == 'COMPLETED'
