from flask import Blueprint, request, jsonify, abort, current_app
from flask_login import login_required, current_user
from helpora.extensions import db
from helpora.errors import AuthorizationError
from helpora.models import (
    Payment,
    PaymentProcessor,
    PaymentStatus,
    ServiceRequest,
    UserRole,
)
from helpora.middleware import role_required, admin_password_required
from helpora.services import escrow_service, notification_service
from helpora.services.audit_service import log_audit
from helpora.blueprints.service_requests import (
    get_request_or_404,
    check_party,
)
from helpora.utils import payment_to_dict, parse_enum, parse_date
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from urllib.parse import urlencode
import logging
import secrets

logger = logging.getLogger(__name__)

bp = Blueprint('payments', __name__)

# Payments counted as money the helper has earned
EARNED_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.RELEASED)
PENDING_STATUSES = (PaymentStatus.PENDING, PaymentStatus.ESCROW)


def get_payment_or_404(payment_id):
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        abort(404, description='Payment not found')
    return payment


def _payment_from_body(data):
    try:
        payment_id = int(data.get('payment_id'))
    except (TypeError, ValueError):
        abort(400, description='payment_id is required')
    return get_payment_or_404(payment_id)


def _request_from_body(data):
    try:
        request_id = int(data.get('request_id'))
    except (TypeError, ValueError):
        abort(400, description='request_id is required')
    return get_request_or_404(request_id)


def _can_view(payment) -> bool:
    if current_user.role == UserRole.ADMIN:
        return True
    if current_user.id in (payment.user_id, payment.volunteer_id):
        return True
    service_request = payment.service_request
    return (
        service_request is not None
        and service_request.user_id == current_user.id
    )


def _audit(action, payment, payload=None):
    log_audit(action, 'PAYMENT', payment.id, payload)


def _held(payment, client_secret=None):
    """Audit a new escrow hold, tell the helper, build the 201 reply."""
    service_request = payment.service_request
    _audit('PAYMENT_ESCROW', payment, {
        'request_id': service_request.id,
        'amount': payment.amount,
        'method': payment.payment_method.value,
        'processor': payment.processor.value,
    })

    notification_service.notify_user(
        service_request.volunteer,
        'Payment held in escrow',
        f"Hello {service_request.volunteer.name},\n\n"
        f"A payment of {payment.amount} {payment.currency} for request "
        f"#{service_request.id} is held in escrow and will be released "
        f"once the work is confirmed.",
    )

    return jsonify({
        'success': True,
        'escrow': True,
        'payment': payment_to_dict(payment),
        'client_secret': client_secret,
    }), 201


@bp.route('/api/payments', methods=['POST'])
@login_required
def create_payment():
    data = request.get_json(silent=True) or {}
    service_request = _request_from_body(data)
    check_party(service_request, 'user')

    amount = escrow_service.parse_amount(data.get('amount'))
    method = escrow_service.parse_payment_method(data.get('payment_method'))

    payment = escrow_service.create_payment(
        service_request,
        amount,
        method,
        payer=current_user,
        notes=(data.get('notes') or '').strip() or None,
    )
    db.session.commit()

    _audit('PAYMENT_CREATE', payment, {'amount': amount})

    return jsonify({'payment': payment_to_dict(payment)}), 201


@bp.route('/api/payments', methods=['GET'])
@login_required
def list_payments():
    query = Payment.query
    if current_user.role == UserRole.ADMIN:
        user_id = request.args.get('user_id', type=int)
        if user_id:
            query = query.join(ServiceRequest).filter(
                ServiceRequest.user_id == user_id)
    else:
        query = query.filter(db.or_(
            Payment.user_id == current_user.id,
            Payment.volunteer_id == current_user.id,
        ))
    payments = query.order_by(Payment.created_at.desc()).all()
    return jsonify({'payments': [payment_to_dict(p) for p in payments]})


@bp.route('/api/payments/me', methods=['GET'])
@login_required
@role_required('volunteer')
def my_payments():
    payments = Payment.query.filter_by(
        volunteer_id=current_user.id
    ).order_by(Payment.created_at.desc()).all()
    return jsonify({'payments': [payment_to_dict(p) for p in payments]})


@bp.route('/api/payments/volunteer/<int:volunteer_id>', methods=['GET'])
@login_required
def volunteer_payments(volunteer_id):
    if (current_user.role != UserRole.ADMIN
            and current_user.id != volunteer_id):
        raise AuthorizationError('No permission to access these payments')
    payments = Payment.query.filter_by(
        volunteer_id=volunteer_id
    ).order_by(Payment.created_at.desc()).all()
    return jsonify({'payments': [payment_to_dict(p) for p in payments]})


@bp.route('/api/payments/stats/me', methods=['GET'])
@login_required
@role_required('volunteer')
def my_payment_stats():
    payments = Payment.query.filter_by(volunteer_id=current_user.id).all()
    six_months_ago = datetime.utcnow() - timedelta(days=183)

    total_earnings = Decimal('0')
    pending_amount = Decimal('0')
    fees_paid = Decimal('0')
    by_method = defaultdict(lambda: {'count': 0, 'amount': Decimal('0')})
    monthly = defaultdict(Decimal)

    for p in payments:
        if p.status in PENDING_STATUSES:
            pending_amount += p.amount
            continue
        if p.status not in EARNED_STATUSES:
            continue
        earned = (
            p.payout_amount if p.payout_amount is not None else p.amount)
        total_earnings += earned
        fees_paid += p.admin_fee or 0
        stats = by_method[p.payment_method.value]
        stats['count'] += 1
        stats['amount'] += earned
        if p.created_at >= six_months_ago:
            monthly[(p.created_at.year, p.created_at.month)] += earned

    return jsonify({
        'total_earnings': float(total_earnings),
        'pending_amount': float(pending_amount),
        'fees_paid': float(fees_paid),
        'payment_method_stats': [
            {
                'method': method,
                'count': stats['count'],
                'amount': float(stats['amount']),
            }
            for method, stats in sorted(by_method.items())
        ],
        'monthly_earnings': [
            {'year': year, 'month': month, 'earnings': float(value)}
            for (year, month), value in sorted(monthly.items())
        ],
    })


@bp.route('/api/payments/config', methods=['GET'])
def payment_config():
    config = current_app.config
    return jsonify({
        'stripe_publishable_key': config.get('STRIPE_PUBLISHABLE_KEY'),
        'razorpay_key_id': config.get('RAZORPAY_KEY_ID'),
        'currency': config.get('DEFAULT_CURRENCY', 'INR'),
        'platform_fee_rate': float(config.get('PLATFORM_FEE_RATE', '0.10')),
    })


@bp.route('/api/payments/<int:payment_id>', methods=['GET'])
@login_required
def get_payment(payment_id):
    payment = get_payment_or_404(payment_id)
    if not _can_view(payment):
        raise AuthorizationError('No permission to access this payment')
    return jsonify({'payment': payment_to_dict(payment)})


@bp.route('/api/payments/<int:payment_id>', methods=['PUT'])
@login_required
@role_required('admin')
def update_payment(payment_id):
    payment = get_payment_or_404(payment_id)
    data = request.get_json(silent=True) or {}

    previous = payment.status
    if data.get('status'):
        status = parse_enum(PaymentStatus, data.get('status'))
        if status is None:
            return jsonify({'error': 'Invalid payment status'}), 400
        escrow_service.override_status(payment, status, current_user.name)
    if data.get('transaction_id'):
        payment.transaction_id = str(data['transaction_id']).strip()
    payment_date = parse_date(data.get('payment_date'))
    if payment_date:
        payment.payment_date = datetime.combine(
            payment_date, datetime.min.time())
    db.session.commit()

    logger.warning(
        "Payment %s updated directly by %s: %s -> %s",
        payment.id,
        current_user.id,
        previous.value,
        payment.status.value,
    )
    _audit('PAYMENT_UPDATE', payment, {
        'from': previous.value,
        'to': payment.status.value,
    })

    return jsonify({'payment': payment_to_dict(payment)})


@bp.route('/api/payments/<int:payment_id>', methods=['DELETE'])
@login_required
@role_required('admin')
def delete_payment(payment_id):
    payment = get_payment_or_404(payment_id)
    snapshot = {
        'request_id': payment.request_id,
        'status': payment.status.value,
        'amount': payment.amount,
    }
    db.session.delete(payment)
    db.session.commit()

    log_audit('PAYMENT_DELETE', 'PAYMENT', payment_id, snapshot)
    return jsonify({'message': 'Payment removed'})


@bp.route('/api/payments/intent', methods=['POST'])
@login_required
def create_intent():
    data = request.get_json(silent=True) or {}
    service_request = _request_from_body(data)
    check_party(service_request, 'user')
    amount = escrow_service.parse_amount(data.get('amount'))

    intent_id, client_secret = escrow_service.hold_on_request(
        service_request,
        amount,
        data.get('currency'),
        by=current_user.name,
    )
    db.session.commit()

    log_audit('PAYMENT_INTENT', 'SERVICE_REQUEST', service_request.id, {
        'amount': amount,
        'intent_id': intent_id,
    })

    return jsonify({
        'payment_intent_id': intent_id,
        'client_secret': client_secret,
        'status': service_request.payment_status.value,
    })


@bp.route('/api/payments/escrow', methods=['POST'])
@login_required
def create_escrow():
    data = request.get_json(silent=True) or {}
    service_request = _request_from_body(data)
    check_party(service_request, 'user')

    amount = escrow_service.parse_amount(data.get('amount'))
    method = escrow_service.parse_payment_method(data.get('payment_method'))
    processor = parse_enum(
        PaymentProcessor, data.get('processor'), PaymentProcessor.MANUAL)

    payment, client_secret = escrow_service.hold_payment(
        service_request,
        amount,
        method,
        payer=current_user,
        processor=processor,
        processor_payment_id=(
            (data.get('processor_payment_id') or '').strip() or None),
    )
    db.session.commit()

    return _held(payment, client_secret)


@bp.route('/api/payments/stripe-confirm', methods=['POST'])
@login_required
def confirm_stripe_payment():
    data = request.get_json(silent=True) or {}
    service_request = _request_from_body(data)
    check_party(service_request, 'user')

    intent_id = (data.get('payment_intent_id') or '').strip()
    if not intent_id:
        return jsonify({'error': 'payment_intent_id is required'}), 400

    payment = escrow_service.confirm_stripe_checkout(
        service_request, intent_id, current_user)
    db.session.commit()

    return _held(payment)


@bp.route('/api/payments/razorpay-order', methods=['POST'])
@login_required
def create_razorpay_order():
    data = request.get_json(silent=True) or {}
    service_request = _request_from_body(data)
    check_party(service_request, 'user')
    amount = escrow_service.parse_amount(data.get('amount'))

    order = escrow_service.open_razorpay_order(
        service_request, amount, current_user)

    log_audit('PAYMENT_ORDER', 'SERVICE_REQUEST', service_request.id, {
        'amount': amount,
        'order_id': order.get('id'),
    })

    return jsonify({
        'order_id': order.get('id'),
        'razorpay_key_id': current_app.config.get('RAZORPAY_KEY_ID'),
        'amount': float(amount),
        'currency': order.get('currency'),
    })


@bp.route('/api/payments/razorpay-verify', methods=['POST'])
@login_required
def verify_razorpay_payment():
    data = request.get_json(silent=True) or {}
    service_request = _request_from_body(data)
    check_party(service_request, 'user')

    fields = ('razorpay_order_id', 'razorpay_payment_id', 'razorpay_signature')
    missing = [f for f in fields if not data.get(f)]
    if missing:
        return jsonify({
            'error': 'Missing Razorpay checkout fields',
            'missing_fields': missing,
        }), 400

    payment = escrow_service.confirm_razorpay_checkout(
        service_request,
        data['razorpay_order_id'],
        data['razorpay_payment_id'],
        data['razorpay_signature'],
        current_user,
    )
    db.session.commit()

    return _held(payment)


@bp.route('/api/payments/upi-initiate', methods=['POST'])
@login_required
def initiate_upi_payment():
    data = request.get_json(silent=True) or {}
    service_request = _request_from_body(data)
    check_party(service_request, 'user')
    amount = escrow_service.parse_amount(data.get('amount'))
    escrow_service.check_can_hold(service_request)

    config = current_app.config
    transaction_ref = (
        f'UP{int(datetime.utcnow().timestamp() * 1000)}'
        f'{secrets.randbelow(1000):03d}')
    upi_id = (data.get('upi_id') or '').strip() or config['DEFAULT_UPI_ID']
    note = (data.get('note') or '').strip() or (
        f'Service request #{service_request.id}')
    upi_url = 'upi://pay?' + urlencode({
        'pa': upi_id,
        'pn': config['UPI_MERCHANT_NAME'],
        'am': str(amount),
        'cu': config.get('DEFAULT_CURRENCY', 'INR'),
        'tr': transaction_ref,
        'tn': note,
    })

    return jsonify({
        'transaction_ref': transaction_ref,
        'amount': float(amount),
        'upi_id': upi_id,
        'merchant_name': config['UPI_MERCHANT_NAME'],
        'note': note,
        'upi_url': upi_url,
    })


@bp.route('/api/payments/upi-verify', methods=['POST'])
@login_required
def verify_upi_payment():
    data = request.get_json(silent=True) or {}
    service_request = _request_from_body(data)
    check_party(service_request, 'user')

    transaction_id = str(data.get('transaction_id') or '').strip()
    if not transaction_id:
        return jsonify({'error': 'Transaction ID is required'}), 400
    amount = escrow_service.parse_amount(data.get('amount'))

    payment = escrow_service.confirm_upi_payment(
        service_request,
        transaction_id,
        amount,
        current_user,
        upi_id=(data.get('upi_id') or '').strip() or None,
    )
    db.session.commit()

    return _held(payment)


@bp.route('/api/payments/release', methods=['POST'])
@login_required
@role_required('admin')
@admin_password_required
def release_payment():
    data = request.get_json(silent=True) or {}
    payment = _payment_from_body(data)

    fee, payout = escrow_service.release_payment(
        payment, by=current_user.name)
    db.session.commit()

    _audit('PAYMENT_RELEASE', payment, {'fee': fee, 'payout': payout})

    notification_service.notify_user(
        payment.volunteer,
        'Payment released',
        f"Hello {payment.volunteer.name},\n\n"
        f"The payment for request #{payment.request_id} has been "
        f"released. Payout: {payout} {payment.currency} "
        f"(platform fee {fee}).",
    )

    return jsonify({
        'success': True,
        'fee': float(fee),
        'payout': float(payout),
        'payment': payment_to_dict(payment),
    })


@bp.route('/api/payments/refund', methods=['POST'])
@login_required
@role_required('admin')
@admin_password_required
def refund_payment():
    data = request.get_json(silent=True) or {}
    payment = _payment_from_body(data)

    escrow_service.refund_payment(payment, by=current_user.name)
    db.session.commit()

    _audit('PAYMENT_REFUND', payment, {'amount': payment.amount})

    notification_service.notify_user(
        payment.payer,
        'Payment refunded',
        f"Hello {payment.payer.name if payment.payer else ''},\n\n"
        f"Your payment of {payment.amount} {payment.currency} for request "
        f"#{payment.request_id} has been refunded.",
    )

    return jsonify({'success': True, 'payment': payment_to_dict(payment)})
