from flask import Blueprint, request, jsonify, abort, current_app
from flask_login import login_required, current_user
from helpora.extensions import db
from helpora.models import (
    AccountStatus,
    Payment,
    PaymentStatus,
    RequestPaymentStatus,
    RequestStatus,
    Review,
    ReviewStatus,
    ServiceRequest,
    User,
    UserRole,
)
from helpora.middleware import role_required, admin_password_required
from helpora.services import escrow_service, lifecycle, notification_service
from helpora.services.audit_service import log_audit
from helpora.services.rating_service import recompute_provider_rating
from helpora.blueprints.service_requests import get_request_or_404
from helpora.utils import (
    paginate_query,
    parse_enum,
    request_to_dict,
    review_to_dict,
    user_to_dict,
)
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__)


@bp.route('/api/admin/requests', methods=['GET'])
@login_required
@role_required('admin')
def list_requests():
    query = ServiceRequest.query

    status = (request.args.get('status') or '').strip()
    if status and status != 'all':
        query = query.filter(
            ServiceRequest.status == lifecycle.parse_status(status))

    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(db.or_(
            ServiceRequest.user_name.ilike(pattern),
            ServiceRequest.contact.ilike(pattern),
            ServiceRequest.message.ilike(pattern),
        ))

    page = request.args.get('page', 1, type=int)
    per_page = request.args.get(
        'per_page', current_app.config.get('ITEMS_PER_PAGE', 20), type=int)
    result = paginate_query(
        query.order_by(ServiceRequest.created_at.desc()),
        page=page,
        per_page=per_page,
    )
    result['items'] = [
        request_to_dict(r, include_history=False) for r in result['items']
    ]
    return jsonify(result)


@bp.route('/api/admin/requests/<int:request_id>/status', methods=['PUT'])
@login_required
@role_required('admin')
def update_request_status(request_id):
    data = request.get_json(silent=True) or {}
    target = lifecycle.parse_status(data.get('status'))
    service_request = get_request_or_404(request_id)

    previous = service_request.status
    notes = (data.get('notes') or '').strip() or (
        f'Status updated to {target.value} by admin')
    lifecycle.transition(
        service_request,
        target,
        updated_by='admin',
        notes=notes,
        force=True,
    )
    db.session.commit()

    log_audit('ADMIN_REQUEST_STATUS', 'SERVICE_REQUEST', service_request.id, {
        'from': previous.value,
        'to': target.value,
        'override': service_request.admin_override,
    })

    payment_release = None
    if (target == RequestStatus.COMPLETED
            and service_request.payment_status
            == RequestPaymentStatus.HELD):
        payment_release = escrow_service.attempt_release_for_request(
            service_request,
            current_user,
            data.get('admin_password'),
        )
        if payment_release['released']:
            db.session.commit()
            log_audit(
                'PAYMENT_AUTO_RELEASE',
                'SERVICE_REQUEST',
                service_request.id,
                payment_release,
            )
        else:
            db.session.rollback()

    return jsonify({
        'request': request_to_dict(service_request),
        'payment_release': payment_release,
    })


@bp.route('/api/admin/requests/<int:request_id>/reassign', methods=['PUT'])
@login_required
@role_required('admin')
def reassign_request(request_id):
    data = request.get_json(silent=True) or {}
    if not data.get('volunteer_id'):
        return jsonify({'error': 'Volunteer ID is required'}), 400

    try:
        volunteer = db.session.get(User, int(data['volunteer_id']))
    except (TypeError, ValueError):
        volunteer = None
    if volunteer is None or volunteer.role != UserRole.VOLUNTEER:
        msg = 'Invalid volunteer ID or user is not a volunteer'
        return jsonify({'error': msg}), 400

    service_request = get_request_or_404(request_id)
    previous_volunteer_id = service_request.volunteer_id
    service_request.volunteer_id = volunteer.id
    service_request.viewed_by_helper = False

    # Money not yet paid out follows the request
    open_payments = service_request.payments.filter(
        Payment.status.in_([PaymentStatus.PENDING, PaymentStatus.ESCROW]))
    for payment in open_payments:
        payment.volunteer_id = volunteer.id

    lifecycle.record_status(
        service_request,
        service_request.status,
        'admin',
        (data.get('notes') or '').strip()
        or f'Request reassigned to {volunteer.name} by admin',
    )
    db.session.commit()

    log_audit(
        'ADMIN_REQUEST_REASSIGN',
        'SERVICE_REQUEST',
        service_request.id,
        {
            'from_volunteer_id': previous_volunteer_id,
            'to_volunteer_id': volunteer.id,
        },
    )

    notification_service.send_email(
        volunteer.email,
        'New Service Request Assigned',
        f"Hello {volunteer.name},\n\n"
        f"A service request has been reassigned to you:\n\n"
        f"{notification_service.request_summary(service_request)}",
    )

    return jsonify({'request': request_to_dict(service_request)})


@bp.route('/api/admin/requests/<int:request_id>/flag', methods=['PUT'])
@login_required
@role_required('admin')
def flag_request(request_id):
    data = request.get_json(silent=True) or {}
    if 'is_flagged' not in data:
        return jsonify({'error': 'is_flagged field is required'}), 400

    service_request = get_request_or_404(request_id)
    service_request.is_flagged = bool(data.get('is_flagged'))
    service_request.flag_reason = (
        (data.get('flag_reason') or '').strip() or None
        if service_request.is_flagged else None)
    db.session.commit()

    log_audit('ADMIN_REQUEST_FLAG', 'SERVICE_REQUEST', service_request.id, {
        'is_flagged': service_request.is_flagged,
        'reason': service_request.flag_reason,
    })

    return jsonify({'request': request_to_dict(service_request)})


@bp.route('/api/admin/requests', methods=['DELETE'])
@login_required
@role_required('admin')
def delete_requests():
    data = request.get_json(silent=True) or {}
    query = ServiceRequest.query
    status = (data.get('status') or request.args.get('status') or '').strip()
    if status and status != 'all':
        query = query.filter(
            ServiceRequest.status == lifecycle.parse_status(status))

    # Row by row so history and payments cascade
    deleted = 0
    for service_request in query.all():
        db.session.delete(service_request)
        deleted += 1
    db.session.commit()

    logger.warning(
        "Admin %s bulk deleted %s requests (status=%s)",
        current_user.id,
        deleted,
        status or 'all',
    )
    log_audit('ADMIN_REQUEST_BULK_DELETE', 'SERVICE_REQUEST', None, {
        'status': status or 'all',
        'deleted_count': deleted,
    })

    return jsonify({
        'message': f'Deleted {deleted} requests',
        'deleted_count': deleted,
    })


@bp.route('/api/admin/payment/release/<int:request_id>', methods=['POST'])
@login_required
@role_required('admin')
@admin_password_required
def release_request_payment(request_id):
    data = request.get_json(silent=True) or {}
    service_request = get_request_or_404(request_id)

    fee, payout = escrow_service.release_request(
        service_request,
        by='admin',
        note=(data.get('notes') or '').strip() or None,
    )
    db.session.commit()

    log_audit('ADMIN_PAYMENT_RELEASE', 'SERVICE_REQUEST', service_request.id, {
        'fee': fee,
        'payout': payout,
    })

    notification_service.notify_user(
        service_request.volunteer,
        'Payment released',
        f"Hello {service_request.volunteer.name},\n\n"
        f"The payment for request #{service_request.id} has been released "
        f"by an administrator.",
    )

    return jsonify({
        'success': True,
        'message': 'Payment manually released by admin',
        'fee': float(fee) if fee is not None else None,
        'payout': float(payout) if payout is not None else None,
        'request': request_to_dict(service_request),
    })


@bp.route('/api/admin/payment/refund/<int:request_id>', methods=['POST'])
@login_required
@role_required('admin')
@admin_password_required
def refund_request_payment(request_id):
    data = request.get_json(silent=True) or {}
    service_request = get_request_or_404(request_id)

    escrow_service.refund_request(
        service_request,
        by='admin',
        note=(data.get('notes') or '').strip() or None,
    )
    db.session.commit()

    log_audit('ADMIN_PAYMENT_REFUND', 'SERVICE_REQUEST', service_request.id, {
        'amount': service_request.amount,
    })

    notification_service.notify_user(
        service_request.user,
        'Payment refunded',
        f"Hello {service_request.user_name},\n\n"
        f"Your payment for request #{service_request.id} has been "
        f"refunded by an administrator.",
    )

    return jsonify({
        'success': True,
        'message': 'Payment refunded by admin',
        'request': request_to_dict(service_request),
    })


@bp.route('/api/admin/reviews/<int:review_id>/status', methods=['PUT'])
@login_required
@role_required('admin')
def moderate_review(review_id):
    data = request.get_json(silent=True) or {}
    status = parse_enum(ReviewStatus, data.get('status'))
    if status is None:
        return jsonify({'error': 'Invalid status value'}), 400

    review = db.session.get(Review, review_id)
    if review is None:
        abort(404, description='Review not found')

    previous = review.status
    review.status = status
    db.session.flush()
    recompute_provider_rating(review.provider_id)
    db.session.commit()

    log_audit('ADMIN_REVIEW_STATUS', 'REVIEW', review.id, {
        'from': previous.value,
        'to': status.value,
    })

    return jsonify({'review': review_to_dict(review)})


@bp.route('/api/admin/users', methods=['GET'])
@login_required
@role_required('admin')
def list_users():
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get(
        'per_page', current_app.config.get('ITEMS_PER_PAGE', 20), type=int)

    query = User.query
    role_filter = parse_enum(UserRole, request.args.get('role'))
    if role_filter is not None:
        query = query.filter_by(role=role_filter)
    status_filter = parse_enum(AccountStatus, request.args.get('status'))
    if status_filter is not None:
        query = query.filter_by(status=status_filter)

    result = paginate_query(
        query.order_by(User.created_at.desc()),
        page=page,
        per_page=per_page,
    )
    result['items'] = [user_to_dict(u) for u in result['items']]
    return jsonify(result)


@bp.route('/api/admin/users/<int:user_id>/status', methods=['PUT'])
@login_required
@role_required('admin')
def update_user_status(user_id):
    if user_id == current_user.id:
        return jsonify({'error': 'You cannot change your own status'}), 400

    data = request.get_json(silent=True) or {}
    status = parse_enum(AccountStatus, data.get('status'))
    if status is None:
        return jsonify({'error': 'Invalid status value.'}), 400

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({'error': 'User not found.'}), 404

    previous = user.status
    user.status = status
    user.is_active = status != AccountStatus.SUSPENDED
    db.session.commit()

    log_audit('ADMIN_USER_STATUS', 'USER', user.id, {
        'from': previous.value,
        'to': status.value,
    })

    return jsonify({'ok': True, 'user': user_to_dict(user)})


@bp.route('/api/admin/users/<int:user_id>/verify', methods=['PUT'])
@login_required
@role_required('admin')
def verify_volunteer(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({'error': 'User not found.'}), 404
    if user.role != UserRole.VOLUNTEER:
        return jsonify({'error': 'Only volunteers can be verified.'}), 400

    user.is_verified_provider = True
    user.verified_at = datetime.utcnow()
    db.session.commit()

    log_audit('ADMIN_USER_VERIFY', 'USER', user.id)

    notification_service.notify_user(
        user,
        'Your helper profile is verified',
        f"Hello {user.name},\n\nYour helper profile has been verified.",
    )

    return jsonify({'ok': True, 'user': user_to_dict(user)})


@bp.route('/api/admin/users/<int:user_id>/role', methods=['PUT'])
@login_required
@role_required('admin')
def update_user_role(user_id):
    if user_id == current_user.id:
        return jsonify({'error': 'You cannot change your own role'}), 400

    data = request.get_json(silent=True) or {}
    role = parse_enum(UserRole, data.get('role'))
    if role is None:
        return jsonify({'error': 'Invalid role value.'}), 400

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({'error': 'User not found.'}), 404

    previous = user.role
    user.role = role
    db.session.commit()

    log_audit('ADMIN_USER_ROLE', 'USER', user.id, {
        'from': previous.value,
        'to': role.value,
    })

    return jsonify({'ok': True, 'user': user_to_dict(user)})


@bp.route('/api/admin/users/<int:user_id>', methods=['DELETE'])
@login_required
@role_required('admin')
def delete_user(user_id):
    if user_id == current_user.id:
        return jsonify({'error': 'You cannot delete your own account'}), 400

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({'error': 'User not found.'}), 404

    # Requests and payments need a helper; reassign before deleting one
    assigned = ServiceRequest.query.filter_by(volunteer_id=user.id).count()
    if assigned:
        return jsonify({
            'error': 'User has assigned requests, reassign them first.',
            'assigned_requests': assigned,
        }), 400

    provider_ids = {
        r.provider_id
        for r in Review.query.filter_by(user_id=user.id)
    }
    Review.query.filter(db.or_(
        Review.user_id == user.id,
        Review.provider_id == user.id,
    )).delete(synchronize_session=False)
    ServiceRequest.query.filter_by(user_id=user.id).update(
        {'user_id': None}, synchronize_session=False)
    Payment.query.filter_by(user_id=user.id).update(
        {'user_id': None}, synchronize_session=False)

    snapshot = {'email': user.email, 'role': user.role.value}
    db.session.delete(user)
    db.session.flush()
    for provider_id in provider_ids - {user_id}:
        recompute_provider_rating(provider_id)
    db.session.commit()

    log_audit('ADMIN_USER_DELETE', 'USER', user_id, snapshot)

    return jsonify({'message': 'User deleted successfully.'})
