"""Service request lifecycle.

All status moves of a ServiceRequest go through this module so the
transition table below is the only place that says which moves are
allowed. Every move appends a RequestStatusEntry; callers commit.
"""
from datetime import datetime, timedelta
import logging

from flask import current_app

from helpora.errors import LifecycleError
from helpora.models import RequestStatus, RequestStatusEntry

logger = logging.getLogger(__name__)

TRANSITIONS = {
    RequestStatus.REQUESTED: {
        RequestStatus.ACCEPTED,
        RequestStatus.IN_PROGRESS,
        # Fast path used when work is reported done without acceptance
        RequestStatus.COMPLETED,
        RequestStatus.CANCELLED,
        RequestStatus.DECLINED,
    },
    RequestStatus.ACCEPTED: {
        RequestStatus.REQUESTED,
        RequestStatus.IN_PROGRESS,
        RequestStatus.COMPLETED,
        RequestStatus.CANCELLED,
        RequestStatus.DECLINED,
    },
    RequestStatus.IN_PROGRESS: {
        RequestStatus.COMPLETED,
        RequestStatus.CANCELLED,
        RequestStatus.DECLINED,
    },
    RequestStatus.COMPLETED: {
        RequestStatus.PAID,
        RequestStatus.CANCELLED,
    },
    RequestStatus.PAID: set(),
    RequestStatus.CANCELLED: set(),
    RequestStatus.DECLINED: set(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets)

# Cancellation is refused from these regardless of the deadline
NON_CANCELLABLE = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED})


def parse_status(value) -> RequestStatus:
    if isinstance(value, RequestStatus):
        return value
    try:
        return RequestStatus((value or '').strip().lower())
    except (ValueError, AttributeError):
        raise LifecycleError('Invalid status value')


def can_transition(current, target) -> bool:
    if current == target:
        return True
    return target in TRANSITIONS.get(current, set())


def default_cancel_deadline(created_at=None):
    hours = current_app.config.get('CANCEL_WINDOW_HOURS', 2)
    return (created_at or datetime.utcnow()) + timedelta(hours=hours)


def record_status(service_request, target, updated_by='System', notes=None):
    entry = RequestStatusEntry(
        status=target,
        updated_at=datetime.utcnow(),
        updated_by=updated_by or 'System',
        notes=notes or f'Status changed to {target.value}',
    )
    service_request.status = target
    service_request.status_history.append(entry)
    return entry


def transition(
        service_request,
        target,
        updated_by='System',
        notes=None,
        force=False):
    target = parse_status(target)
    current = service_request.status
    allowed = can_transition(current, target)

    if not allowed:
        if not force:
            raise LifecycleError(
                f'Cannot change status from {current.value} '
                f'to {target.value}')
        service_request.admin_override = True
        logger.warning(
            "Forced request %s from %s to %s by %s",
            service_request.id,
            current.value,
            target.value,
            updated_by,
        )

    return record_status(service_request, target, updated_by, notes)


def cancel(service_request, updated_by='User', notes=None, now=None):
    now = now or datetime.utcnow()
    deadline = service_request.cancel_deadline or default_cancel_deadline(
        service_request.created_at)

    if service_request.status in NON_CANCELLABLE:
        raise LifecycleError(
            'Cannot cancel completed or already cancelled request')
    if now > deadline:
        raise LifecycleError('Cancel period expired')

    return record_status(
        service_request,
        RequestStatus.CANCELLED,
        updated_by,
        notes or 'Cancelled by user',
    )


def mark_viewed(service_request):
    service_request.viewed_by_helper = True


def mark_completed_by_helper(service_request):
    if service_request.is_completed_by_helper:
        raise LifecycleError('Already marked as completed')
    service_request.is_completed_by_helper = True


def confirm_completion(service_request, now=None):
    if not service_request.is_completed_by_helper:
        raise LifecycleError('Helper has not marked as completed yet')
    if service_request.is_confirmed_by_user:
        raise LifecycleError('Already confirmed')
    service_request.is_confirmed_by_user = True
    service_request.release_date = now or datetime.utcnow()


def raise_dispute(service_request):
    if service_request.dispute_raised:
        raise LifecycleError('Dispute already raised')
    service_request.dispute_raised = True
