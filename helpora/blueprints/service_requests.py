from flask import Blueprint, request, jsonify, abort, current_app
from flask_login import login_required, current_user
from helpora.extensions import db
from helpora.errors import AuthorizationError
from helpora.models import (
    AccountStatus,
    ServiceRequest,
    RequestStatus,
    RequestPaymentStatus,
    UrgencyLevel,
    User,
    UserRole,
)
from helpora.middleware import role_required
from helpora.services import lifecycle, notification_service
from helpora.services.audit_service import log_audit
from helpora.services.escrow_service import attempt_release_for_request
from helpora.utils import (
    paginate_query,
    parse_date,
    parse_enum,
    request_to_dict,
)
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('service_requests', __name__)

STATUS_MESSAGES = {
    RequestStatus.ACCEPTED: 'Your request has been accepted by the volunteer.',
    RequestStatus.COMPLETED: (
        'Your service request has been marked as completed.'),
    RequestStatus.CANCELLED: 'Your service request has been cancelled.',
    RequestStatus.DECLINED: (
        'Unfortunately, the volunteer is unable to fulfill your request '
        'at this time.'),
}


def get_request_or_404(request_id):
    service_request = db.session.get(ServiceRequest, request_id)
    if service_request is None:
        abort(404, description='Request not found')
    return service_request


def check_party(service_request, *parties):
    """Allow admins, plus the listed parties ('user', 'volunteer')."""
    if current_user.role == UserRole.ADMIN:
        return
    if 'user' in parties and service_request.user_id == current_user.id:
        return
    if ('volunteer' in parties
            and service_request.volunteer_id == current_user.id):
        return
    logger.warning(
        "User %s attempted to access request %s",
        current_user.id,
        service_request.id,
    )
    raise AuthorizationError('No permission to access this request')


def _audit(action, service_request, payload=None):
    log_audit(action, 'SERVICE_REQUEST', service_request.id, payload)


def _notify_status_change(service_request, notes=None):
    status = service_request.status
    summary = notification_service.request_summary(service_request)
    extra = f"\n\nAdditional Notes:\n{notes}" if notes else ''
    results = {'volunteer': False, 'user': False}

    volunteer = service_request.volunteer
    if volunteer is not None:
        results['volunteer'] = notification_service.notify_user(
            volunteer,
            f'Service Request Status Updated: {status.value.upper()}',
            f"Hello {volunteer.name},\n\n"
            f"The status of service request #{service_request.id} has "
            f"been updated to \"{status.value}\".\n\n{summary}{extra}",
        )

    user = service_request.user
    if user is not None:
        message = STATUS_MESSAGES.get(
            status,
            f'Your request status has been updated to "{status.value}".')
        results['user'] = notification_service.notify_user(
            user,
            f'Update on Your Service Request: {status.value.upper()}',
            f"Hello {user.name},\n\n{message}\n\n{summary}{extra}",
        )
    return results


@bp.route('/api/requests', methods=['POST'])
def create_request():
    data = request.get_json(silent=True) or {}
    user_name = (data.get('user_name') or '').strip()
    contact = (data.get('contact') or '').strip()
    message = (data.get('message') or '').strip()

    if not user_name or not contact or not message:
        return jsonify({
            'error': (
                'Missing required fields: user_name, contact, '
                'and message are required')
        }), 400

    volunteer = None
    try:
        volunteer_id = int(data.get('volunteer_id'))
        volunteer = db.session.get(User, volunteer_id)
    except (TypeError, ValueError):
        pass
    if (volunteer is None or volunteer.role != UserRole.VOLUNTEER
            or volunteer.status != AccountStatus.ACTIVE):
        return jsonify({'error': 'Volunteer not found'}), 400

    user_id = None
    if current_user.is_authenticated:
        user_id = current_user.id

    now = datetime.utcnow()
    service_request = ServiceRequest(
        user_id=user_id,
        volunteer_id=volunteer.id,
        user_name=user_name,
        contact=contact,
        message=message,
        service_category=(data.get('service_category') or '').strip(),
        service_location=(data.get('service_location') or '').strip(),
        scheduled_date=parse_date(data.get('scheduled_date')),
        scheduled_time=(data.get('scheduled_time') or '').strip(),
        urgency_level=parse_enum(
            UrgencyLevel, data.get('urgency_level'), UrgencyLevel.MEDIUM),
        status=RequestStatus.REQUESTED,
        payment_status=RequestPaymentStatus.PENDING,
        currency=current_app.config.get('DEFAULT_CURRENCY', 'INR'),
        created_at=now,
        cancel_deadline=lifecycle.default_cancel_deadline(now),
    )
    lifecycle.record_status(
        service_request,
        RequestStatus.REQUESTED,
        user_name,
        'Request submitted',
    )
    db.session.add(service_request)
    db.session.commit()

    _audit('REQUEST_CREATE', service_request, {
        'volunteer_id': volunteer.id,
        'anonymous': user_id is None,
    })

    email_sent = notification_service.send_email(
        volunteer.email,
        'New Service Request Assigned',
        f"Hello {volunteer.name},\n\n"
        f"A new service request has been assigned to you:\n\n"
        f"{notification_service.request_summary(service_request)}\n\n"
        f"Please log in to your volunteer dashboard to accept or decline "
        f"this request.",
    )

    response_message = 'Request submitted successfully'
    if not email_sent:
        response_message += ' but email notification failed'

    return jsonify({
        'message': response_message,
        'request_id': service_request.id,
        'email_sent': email_sent,
        'request': request_to_dict(service_request),
    }), 201


@bp.route('/api/requests', methods=['GET'])
@login_required
@role_required('admin')
def list_requests():
    query = ServiceRequest.query.order_by(ServiceRequest.created_at.desc())
    status = request.args.get('status')
    if status:
        query = query.filter(
            ServiceRequest.status == lifecycle.parse_status(status))
    page = request.args.get('page', 1, type=int)
    per_page = current_app.config.get('ITEMS_PER_PAGE', 20)
    result = paginate_query(query, page=page, per_page=per_page)
    result['items'] = [
        request_to_dict(r, include_history=False) for r in result['items']
    ]
    return jsonify(result)


@bp.route('/api/requests/user', methods=['GET'])
@login_required
def my_requests():
    requests_ = ServiceRequest.query.filter_by(
        user_id=current_user.id
    ).order_by(ServiceRequest.created_at.desc()).all()
    return jsonify({'requests': [request_to_dict(r) for r in requests_]})


@bp.route('/api/requests/helper', methods=['GET'])
@login_required
@role_required('volunteer')
def helper_requests():
    query = ServiceRequest.query.filter_by(volunteer_id=current_user.id)
    status = request.args.get('status')
    if status:
        query = query.filter(
            ServiceRequest.status == lifecycle.parse_status(status))
    requests_ = query.order_by(ServiceRequest.created_at.desc()).all()
    return jsonify({'requests': [request_to_dict(r) for r in requests_]})


@bp.route('/api/requests/user-stats', methods=['GET'])
@login_required
def user_stats():
    base = ServiceRequest.query.filter_by(user_id=current_user.id)
    total = base.count()
    completed = base.filter(
        ServiceRequest.status == RequestStatus.COMPLETED).count()
    return jsonify({
        'total_requests': total,
        'completed_requests': completed,
        'pending_requests': total - completed,
    })


@bp.route('/api/requests/<int:request_id>', methods=['GET'])
@login_required
def get_request(request_id):
    service_request = get_request_or_404(request_id)
    check_party(service_request, 'user', 'volunteer')
    return jsonify({'request': request_to_dict(service_request)})


@bp.route('/api/requests/<int:request_id>', methods=['PUT'])
@login_required
def update_request(request_id):
    data = request.get_json(silent=True) or {}
    if not data.get('status'):
        return jsonify({'error': 'Status is required'}), 400
    target = lifecycle.parse_status(data.get('status'))

    service_request = get_request_or_404(request_id)
    check_party(service_request, 'user', 'volunteer')

    notes = (data.get('notes') or '').strip() or None
    previous = service_request.status
    status_changed = previous != target

    lifecycle.transition(
        service_request,
        target,
        updated_by=current_user.name,
        notes=notes,
    )

    if target == RequestStatus.COMPLETED:
        rating = data.get('rating')
        if rating is not None:
            try:
                service_request.rating = max(1, min(5, int(rating)))
            except (TypeError, ValueError):
                return jsonify({'error': 'Invalid rating'}), 400
        if status_changed and service_request.volunteer is not None:
            service_request.volunteer.services_completed += 1

    db.session.commit()

    _audit('REQUEST_STATUS_UPDATE', service_request, {
        'from': previous.value,
        'to': target.value,
    })

    # The status change above stands whatever the release outcome is.
    payment_release = None
    if (target == RequestStatus.COMPLETED
            and service_request.payment_status
            == RequestPaymentStatus.HELD):
        payment_release = attempt_release_for_request(
            service_request,
            current_user,
            data.get('admin_password'),
        )
        if payment_release['released']:
            db.session.commit()
            _audit('PAYMENT_AUTO_RELEASE', service_request, payment_release)
        else:
            db.session.rollback()

    email_results = {'volunteer': False, 'user': False}
    if status_changed:
        email_results = _notify_status_change(service_request, notes)

    return jsonify({
        'request': request_to_dict(service_request),
        'status_changed': status_changed,
        'email_results': email_results,
        'payment_release': payment_release,
    })


@bp.route('/api/requests/<int:request_id>/viewed', methods=['PATCH'])
@login_required
def mark_viewed(request_id):
    service_request = get_request_or_404(request_id)
    check_party(service_request, 'volunteer')
    lifecycle.mark_viewed(service_request)
    db.session.commit()
    return jsonify({'ok': True, 'request': request_to_dict(service_request)})


@bp.route('/api/requests/<int:request_id>/cancel', methods=['PATCH'])
@login_required
def cancel_request(request_id):
    service_request = get_request_or_404(request_id)
    check_party(service_request, 'user')

    data = request.get_json(silent=True) or {}
    lifecycle.cancel(
        service_request,
        updated_by=current_user.name,
        notes=(data.get('reason') or '').strip() or None,
    )
    db.session.commit()

    _audit('REQUEST_CANCEL', service_request)

    volunteer = service_request.volunteer
    notification_service.notify_user(
        volunteer,
        'Service Request Cancelled',
        f"Hello {volunteer.name},\n\n"
        f"Service request #{service_request.id} has been cancelled by "
        f"the user.\n\n"
        f"{notification_service.request_summary(service_request)}",
    )

    return jsonify({
        'message': 'Request cancelled successfully',
        'request': request_to_dict(service_request),
    })


@bp.route('/api/requests/<int:request_id>/mark-completed',
          methods=['PATCH'])
@login_required
def mark_completed(request_id):
    service_request = get_request_or_404(request_id)
    check_party(service_request, 'volunteer')

    lifecycle.mark_completed_by_helper(service_request)
    db.session.commit()

    _audit('REQUEST_MARK_COMPLETED', service_request)

    notification_service.notify_user(
        service_request.user,
        'Helper marked your request as completed',
        f"Hello {service_request.user_name},\n\n"
        f"The helper has marked request #{service_request.id} as "
        f"completed. Please log in and confirm completion so the payment "
        f"can be released.",
    )

    return jsonify({
        'message': 'Marked as completed',
        'request': request_to_dict(service_request),
    })


@bp.route('/api/requests/<int:request_id>/confirm-completion',
          methods=['PATCH'])
@login_required
def confirm_completion(request_id):
    service_request = get_request_or_404(request_id)
    check_party(service_request, 'user')

    lifecycle.confirm_completion(service_request)
    db.session.commit()

    _audit('REQUEST_CONFIRM_COMPLETION', service_request)

    notification_service.notify_admin(
        'Request completion confirmed',
        f"The user confirmed completion of request #{service_request.id}. "
        f"The held payment can now be released.\n\n"
        f"{notification_service.request_summary(service_request)}",
    )

    return jsonify({
        'message': 'Completion confirmed',
        'request': request_to_dict(service_request),
    })


@bp.route('/api/requests/<int:request_id>/raise-dispute',
          methods=['PATCH'])
@login_required
def raise_dispute(request_id):
    service_request = get_request_or_404(request_id)
    check_party(service_request, 'user', 'volunteer')

    data = request.get_json(silent=True) or {}
    reason = (data.get('reason') or '').strip() or 'Not specified'

    lifecycle.raise_dispute(service_request)
    db.session.commit()

    _audit('REQUEST_RAISE_DISPUTE', service_request, {'reason': reason})

    notification_service.notify_admin(
        'Dispute raised',
        f"{current_user.name} raised a dispute on request "
        f"#{service_request.id}.\n\nReason: {reason}\n\n"
        f"{notification_service.request_summary(service_request)}",
    )

    return jsonify({
        'message': 'Dispute raised',
        'request': request_to_dict(service_request),
    })
