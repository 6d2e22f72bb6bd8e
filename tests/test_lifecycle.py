from datetime import datetime, timedelta

import pytest

from helpora.errors import LifecycleError
from helpora.models import RequestStatus, ServiceRequest
from helpora.services import lifecycle


def make_request(status=RequestStatus.REQUESTED, deadline=None):
    now = datetime.utcnow()
    return ServiceRequest(
        user_name='Asha',
        contact='asha@example.com',
        message='Leaking tap',
        volunteer_id=1,
        status=status,
        created_at=now,
        cancel_deadline=deadline or now + timedelta(hours=2),
    )


def test_transition_table_terminal_states():
    assert lifecycle.TERMINAL_STATUSES == {
        RequestStatus.PAID,
        RequestStatus.CANCELLED,
        RequestStatus.DECLINED,
    }


@pytest.mark.parametrize('current,target', [
    (RequestStatus.REQUESTED, RequestStatus.ACCEPTED),
    (RequestStatus.REQUESTED, RequestStatus.COMPLETED),
    (RequestStatus.ACCEPTED, RequestStatus.IN_PROGRESS),
    (RequestStatus.IN_PROGRESS, RequestStatus.COMPLETED),
    (RequestStatus.COMPLETED, RequestStatus.PAID),
    (RequestStatus.PAID, RequestStatus.PAID),
])
def test_allowed_moves(current, target):
    assert lifecycle.can_transition(current, target)


@pytest.mark.parametrize('current,target', [
    (RequestStatus.PAID, RequestStatus.REQUESTED),
    (RequestStatus.CANCELLED, RequestStatus.ACCEPTED),
    (RequestStatus.DECLINED, RequestStatus.COMPLETED),
    (RequestStatus.COMPLETED, RequestStatus.IN_PROGRESS),
    (RequestStatus.IN_PROGRESS, RequestStatus.REQUESTED),
])
def test_refused_moves(current, target):
    assert not lifecycle.can_transition(current, target)


def test_parse_status_rejects_unknown_value():
    assert lifecycle.parse_status('In_Progress') == RequestStatus.IN_PROGRESS
    with pytest.raises(LifecycleError) as exc:
        lifecycle.parse_status('rescheduled')
    assert exc.value.message == 'Invalid status value'


def test_transition_appends_history(app_ctx):
    req = make_request()
    lifecycle.transition(req, 'accepted', updated_by='Ravi')
    lifecycle.transition(req, RequestStatus.IN_PROGRESS, 'Ravi', 'On my way')

    assert req.status == RequestStatus.IN_PROGRESS
    assert [e.status for e in req.status_history] == [
        RequestStatus.ACCEPTED,
        RequestStatus.IN_PROGRESS,
    ]
    assert req.status_history[0].notes == 'Status changed to accepted'
    assert req.status_history[1].notes == 'On my way'
    assert req.status_history[1].updated_by == 'Ravi'


def test_refused_transition_leaves_request_untouched(app_ctx):
    req = make_request(RequestStatus.PAID)
    with pytest.raises(LifecycleError) as exc:
        lifecycle.transition(req, RequestStatus.REQUESTED)
    assert exc.value.message == 'Cannot change status from paid to requested'
    assert req.status == RequestStatus.PAID
    assert req.status_history == []


def test_forced_transition_sets_admin_override(app_ctx):
    req = make_request(RequestStatus.CANCELLED)
    lifecycle.transition(req, RequestStatus.ACCEPTED, 'admin', force=True)
    assert req.status == RequestStatus.ACCEPTED
    assert req.admin_override is True


@pytest.mark.parametrize('status', [
    RequestStatus.REQUESTED,
    RequestStatus.ACCEPTED,
    RequestStatus.IN_PROGRESS,
    RequestStatus.PAID,
    RequestStatus.DECLINED,
])
def test_cancel_within_deadline(app_ctx, status):
    req = make_request(status)
    lifecycle.cancel(req)
    assert req.status == RequestStatus.CANCELLED
    assert req.status_history[-1].notes == 'Cancelled by user'


@pytest.mark.parametrize('status', [
    RequestStatus.COMPLETED,
    RequestStatus.CANCELLED,
])
def test_cancel_refused_for_completed_or_cancelled(app_ctx, status):
    req = make_request(status)
    with pytest.raises(LifecycleError) as exc:
        lifecycle.cancel(req)
    assert exc.value.message == (
        'Cannot cancel completed or already cancelled request')


def test_cancel_refused_after_deadline(app_ctx):
    req = make_request(deadline=datetime.utcnow() - timedelta(minutes=1))
    with pytest.raises(LifecycleError) as exc:
        lifecycle.cancel(req)
    assert exc.value.message == 'Cancel period expired'
    assert req.status == RequestStatus.REQUESTED


def test_cancel_on_deadline_is_allowed(app_ctx):
    deadline = datetime.utcnow() + timedelta(hours=1)
    req = make_request(deadline=deadline)
    lifecycle.cancel(req, now=deadline)
    assert req.status == RequestStatus.CANCELLED


def test_default_cancel_deadline_uses_window(app_ctx):
    created = datetime(2024, 5, 1, 10, 0)
    assert lifecycle.default_cancel_deadline(created) == datetime(
        2024, 5, 1, 12, 0)


def test_confirmation_requires_helper_flag(app_ctx):
    req = make_request()
    with pytest.raises(LifecycleError) as exc:
        lifecycle.confirm_completion(req)
    assert exc.value.message == 'Helper has not marked as completed yet'

    lifecycle.mark_completed_by_helper(req)
    lifecycle.confirm_completion(req)
    assert req.is_confirmed_by_user is True
    assert req.release_date is not None
    # Neither flag moves the lifecycle
    assert req.status == RequestStatus.REQUESTED

    with pytest.raises(LifecycleError) as exc:
        lifecycle.confirm_completion(req)
    assert exc.value.message == 'Already confirmed'


def test_helper_flag_and_dispute_are_one_way(app_ctx):
    req = make_request()
    lifecycle.mark_completed_by_helper(req)
    with pytest.raises(LifecycleError):
        lifecycle.mark_completed_by_helper(req)

    lifecycle.raise_dispute(req)
    with pytest.raises(LifecycleError) as exc:
        lifecycle.raise_dispute(req)
    assert exc.value.message == 'Dispute already raised'
