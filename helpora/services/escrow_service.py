"""Escrow payments: hold, release, refund and processor-driven updates.

Payment.status and ServiceRequest.payment_status are both written here,
from the OUTCOMES table, and nowhere else. Request status moves go
through the lifecycle module. Processor events never move the request.
Callers commit the session.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from flask import current_app
import logging

from helpora.errors import EscrowError, HelporaError
from helpora.extensions import db
from helpora.models import (
    Payment,
    PaymentMethod,
    PaymentProcessor,
    PaymentStatus,
    PaymentTimelineEntry,
    RequestPaymentStatus,
    RequestStatus,
)
from helpora.services import lifecycle, payment_gateway

logger = logging.getLogger(__name__)

HOLD = 'hold'
RELEASE = 'release'
REFUND = 'refund'
FAIL = 'fail'

# outcome -> (Payment.status, Request.payment_status, Request.status)
OUTCOMES = {
    HOLD: (PaymentStatus.ESCROW, RequestPaymentStatus.HELD, None),
    RELEASE: (
        PaymentStatus.RELEASED,
        RequestPaymentStatus.RELEASED,
        RequestStatus.PAID),
    REFUND: (
        PaymentStatus.REFUNDED,
        RequestPaymentStatus.REFUNDED,
        RequestStatus.CANCELLED),
    FAIL: (PaymentStatus.CANCELLED, RequestPaymentStatus.FAILED, None),
}

TIMELINE_ACTIONS = {
    HOLD: 'Funds held in escrow',
    RELEASE: 'Payment released to helper',
    REFUND: 'Payment refunded to user',
    FAIL: 'Payment failed',
}


def compute_fee(amount, rate=None):
    amount = Decimal(str(amount))
    if rate is None:
        rate = current_app.config.get('PLATFORM_FEE_RATE', '0.10')
    fee = (amount * Decimal(str(rate))).quantize(
        Decimal('1'), rounding=ROUND_HALF_UP)
    return fee, amount - fee


def parse_payment_method(value) -> PaymentMethod:
    try:
        return PaymentMethod((value or '').strip().lower())
    except (ValueError, AttributeError):
        raise EscrowError('Invalid payment method')


def parse_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (ArithmeticError, ValueError, TypeError):
        raise EscrowError('Please enter a valid amount')
    if not amount.is_finite() or amount <= 0:
        raise EscrowError('Please enter a valid amount')
    return amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _uses_stripe(payment) -> bool:
    return (
        payment.processor == PaymentProcessor.STRIPE
        and bool(payment.processor_payment_id)
        and payment_gateway.stripe_enabled()
    )


def apply_outcome(payment, outcome, by='System', note=None,
                  move_request=True):
    payment.status = OUTCOMES[outcome][0]
    payment.escrow = outcome == HOLD
    if outcome == RELEASE:
        payment.released = True
    elif outcome == REFUND:
        payment.refunded = True
    payment.timeline.append(PaymentTimelineEntry(
        action=note or TIMELINE_ACTIONS[outcome],
        date=datetime.utcnow(),
        by=by,
    ))

    if payment.service_request is not None:
        _apply_to_request(
            payment.service_request, outcome, by, note, move_request)
    return payment


def _apply_to_request(service_request, outcome, by, note=None,
                      move_request=True):
    _, request_payment_status, request_status = OUTCOMES[outcome]
    service_request.payment_status = request_payment_status
    if outcome == RELEASE:
        service_request.release_date = datetime.utcnow()
    if not move_request or request_status is None:
        return
    if service_request.status != request_status:
        # Release and refund are admin decisions and may leave the table
        lifecycle.transition(
            service_request,
            request_status,
            by,
            note or TIMELINE_ACTIONS[outcome],
            force=True,
        )


def check_can_hold(service_request):
    if service_request.status in lifecycle.TERMINAL_STATUSES:
        raise EscrowError(
            f'Cannot hold payment for a '
            f'{service_request.status.value} request')


def create_payment(service_request, amount, payment_method, payer=None,
                   notes=None, status=PaymentStatus.PENDING):
    payment = Payment(
        request_id=service_request.id,
        volunteer_id=service_request.volunteer_id,
        user_id=payer.id if payer is not None else service_request.user_id,
        amount=amount,
        currency=(
            service_request.currency
            or current_app.config.get('DEFAULT_CURRENCY', 'INR')),
        payment_method=payment_method,
        status=status,
        notes=notes,
    )
    payment.service_request = service_request
    db.session.add(payment)
    payment.timeline.append(PaymentTimelineEntry(
        action='Payment created',
        date=datetime.utcnow(),
        by=payer.name if payer is not None else 'System',
    ))
    return payment


def hold_payment(
        service_request,
        amount,
        payment_method,
        payer=None,
        processor=PaymentProcessor.MANUAL,
        processor_payment_id=None):
    """Open an escrow Payment for the request.

    With processor=STRIPE and no processor id, a manual-capture
    PaymentIntent is created and its client secret returned.
    """
    check_can_hold(service_request)
    client_secret = None
    currency = (
        service_request.currency
        or current_app.config.get('DEFAULT_CURRENCY', 'INR'))

    if (processor == PaymentProcessor.STRIPE
            and not processor_payment_id):
        if not payment_gateway.stripe_enabled():
            raise EscrowError('Stripe is not configured')
        processor_payment_id, client_secret = payment_gateway.create_hold(
            amount,
            currency,
            metadata={
                'request_id': str(service_request.id),
                'volunteer_id': str(service_request.volunteer_id),
            },
        )

    payment = create_payment(service_request, amount, payment_method, payer)
    payment.processor = processor
    payment.processor_payment_id = processor_payment_id
    payment.payment_date = datetime.utcnow()

    service_request.amount = amount
    service_request.currency = currency
    if processor_payment_id:
        service_request.payment_intent_id = processor_payment_id

    by = payer.name if payer is not None else 'System'
    apply_outcome(payment, HOLD, by)
    return payment, client_secret


def release_payment(payment, by='admin'):
    if payment.status != PaymentStatus.ESCROW:
        raise EscrowError('Payment not in escrow')

    fee, payout = compute_fee(payment.amount)
    if _uses_stripe(payment):
        payment_gateway.capture(payment.processor_payment_id)

    payment.admin_fee = fee
    payment.payout_amount = payout
    apply_outcome(payment, RELEASE, by)
    logger.info(
        "Released payment %s amount=%s fee=%s payout=%s",
        payment.id,
        payment.amount,
        fee,
        payout,
    )
    return fee, payout


def refund_payment(payment, by='admin'):
    if payment.status == PaymentStatus.REFUNDED:
        raise EscrowError('Payment already refunded')
    if payment.status == PaymentStatus.RELEASED:
        raise EscrowError('Payment already released to helper')

    if _uses_stripe(payment):
        refund_id = payment_gateway.void_or_refund(
            payment.processor_payment_id)
        if refund_id:
            payment.refund_id = refund_id

    apply_outcome(payment, REFUND, by)
    logger.info("Refunded payment %s amount=%s", payment.id, payment.amount)
    return payment


def apply_processor_event(payment, outcome, by, refund_id=None):
    # No status preconditions: provider events are applied as delivered.
    # They only touch the payment side of the request.
    if outcome == RELEASE and payment.payout_amount is None:
        payment.admin_fee, payment.payout_amount = compute_fee(
            payment.amount)
    if outcome == REFUND and refund_id:
        payment.refund_id = refund_id
    return apply_outcome(payment, outcome, by, move_request=False)


def escrow_payment_for(service_request):
    return service_request.payments.filter_by(
        status=PaymentStatus.ESCROW
    ).order_by(Payment.created_at.desc(), Payment.id.desc()).first()


def attempt_release_for_request(service_request, actor, admin_password):
    """Try to release the held payment after a move to completed.

    Failures are logged and reported, never raised, so the status change
    that triggered the attempt stands.
    """
    from helpora.middleware import verify_admin_password

    payment = escrow_payment_for(service_request)
    if payment is None:
        logger.warning(
            "Request %s is held but has no escrow payment",
            service_request.id,
        )
        return {
            'attempted': True,
            'released': False,
            'error': 'No escrow payment found for this request',
        }

    try:
        verify_admin_password(actor, admin_password)
        fee, payout = release_payment(payment, by=actor.name)
    except HelporaError as e:
        logger.error(
            "Error releasing payment %s for request %s: %s",
            payment.id,
            service_request.id,
            e.message,
        )
        return {
            'attempted': True,
            'released': False,
            'payment_id': payment.id,
            'error': e.message,
        }

    return {
        'attempted': True,
        'released': True,
        'payment_id': payment.id,
        'fee': float(fee),
        'payout': float(payout),
    }


def hold_on_request(service_request, amount, currency=None, by='System'):
    """Hold funds against the request itself, without a Payment row."""
    check_can_hold(service_request)
    currency = (
        currency
        or service_request.currency
        or current_app.config.get('DEFAULT_CURRENCY', 'INR'))
    if payment_gateway.stripe_enabled():
        intent_id, client_secret = payment_gateway.create_hold(
            amount,
            currency,
            metadata={'request_id': str(service_request.id)},
        )
    else:
        intent_id = f'simulated_intent_{int(datetime.utcnow().timestamp())}'
        client_secret = None

    service_request.payment_intent_id = intent_id
    service_request.amount = amount
    service_request.currency = currency.upper()
    _apply_to_request(service_request, HOLD, by)
    logger.info(
        "Request %s funds held intent=%s by %s",
        service_request.id,
        intent_id,
        by,
    )
    return intent_id, client_secret


def override_status(payment, status, by='System'):
    """Raw status write from the payment update route.

    Statuses that correspond to an escrow outcome are applied through
    the outcome table; the rest only touch the payment.
    """
    for outcome, (payment_status, _, _) in OUTCOMES.items():
        if payment_status == status:
            return apply_outcome(
                payment, outcome, by, f'Status set to {status.value}')

    payment.status = status
    payment.timeline.append(PaymentTimelineEntry(
        action=f'Status set to {status.value}',
        date=datetime.utcnow(),
        by=by,
    ))
    return payment


def _has_live_intent(service_request) -> bool:
    intent_id = service_request.payment_intent_id or ''
    return (
        payment_gateway.stripe_enabled()
        and intent_id.startswith('pi_')
    )


def _check_request_payment(service_request, payment):
    if service_request.payment_status == RequestPaymentStatus.REFUNDED:
        raise EscrowError('Payment already refunded')
    if service_request.payment_status == RequestPaymentStatus.RELEASED:
        raise EscrowError('Payment already released to helper')
    if payment is None and not service_request.payment_intent_id:
        raise EscrowError('No payment associated with this request')


def release_request(service_request, by='admin', note=None):
    """Manual release at request level.

    Goes through the request's escrow payment when there is one,
    otherwise through the hold recorded on the request itself.
    """
    payment = escrow_payment_for(service_request)
    _check_request_payment(service_request, payment)

    if payment is not None:
        fee, payout = release_payment(payment, by)
    else:
        if _has_live_intent(service_request):
            payment_gateway.capture(service_request.payment_intent_id)
        fee = payout = None
        if service_request.amount:
            fee, payout = compute_fee(service_request.amount)
        _apply_to_request(
            service_request,
            RELEASE,
            by,
            note or 'Payment manually released by admin',
        )

    service_request.admin_override = True
    return fee, payout


def refund_request(service_request, by='admin', note=None):
    payment = escrow_payment_for(service_request)
    _check_request_payment(service_request, payment)

    if payment is not None:
        refund_payment(payment, by)
    else:
        if _has_live_intent(service_request):
            payment_gateway.void_or_refund(service_request.payment_intent_id)
        _apply_to_request(
            service_request,
            REFUND,
            by,
            note or 'Payment refunded by admin',
        )

    service_request.admin_override = True
    return service_request


def _check_not_recorded(processor_payment_id):
    if Payment.query.filter_by(
            processor_payment_id=processor_payment_id).first():
        raise EscrowError('Payment already recorded')


def _check_order_request(service_request, request_id):
    if request_id and str(request_id) != str(service_request.id):
        raise EscrowError('Payment does not belong to this request')


def confirm_stripe_checkout(service_request, intent_id, payer):
    """Hold a PaymentIntent the client already confirmed."""
    if not payment_gateway.stripe_enabled():
        raise EscrowError('Stripe is not configured')
    check_can_hold(service_request)
    _check_not_recorded(intent_id)

    intent = payment_gateway.retrieve_intent(intent_id)
    # Holds are manual-capture, so an authorised intent waits for capture
    if intent.status != 'requires_capture':
        raise EscrowError('Payment has not been completed successfully')
    _check_order_request(
        service_request, (intent.metadata or {}).get('request_id'))

    payment, _ = hold_payment(
        service_request,
        payment_gateway.from_minor_units(intent.amount),
        PaymentMethod.CREDIT_CARD,
        payer=payer,
        processor=PaymentProcessor.STRIPE,
        processor_payment_id=intent.id,
    )
    payment.notes = 'Service payment via Stripe'
    return payment


def open_razorpay_order(service_request, amount, payer):
    if not payment_gateway.razorpay_enabled():
        raise EscrowError('Razorpay is not configured')
    check_can_hold(service_request)
    currency = (
        service_request.currency
        or current_app.config.get('DEFAULT_CURRENCY', 'INR'))
    stamp = int(datetime.utcnow().timestamp())
    return payment_gateway.create_razorpay_order(
        amount,
        currency,
        receipt=f'request_{service_request.id}_{stamp}',
        notes={
            'request_id': str(service_request.id),
            'user_id': str(payer.id),
            'volunteer_id': str(service_request.volunteer_id),
        },
    )


def confirm_razorpay_checkout(
        service_request, order_id, payment_id, signature, payer):
    """Verify a completed Razorpay checkout and hold its amount."""
    check_can_hold(service_request)
    payment_gateway.verify_razorpay_checkout(order_id, payment_id, signature)
    _check_not_recorded(payment_id)

    order = payment_gateway.fetch_razorpay_order(order_id)
    _check_order_request(
        service_request, (order.get('notes') or {}).get('request_id'))

    payment, _ = hold_payment(
        service_request,
        payment_gateway.from_minor_units(order['amount']),
        PaymentMethod.RAZORPAY,
        payer=payer,
        processor=PaymentProcessor.RAZORPAY,
        processor_payment_id=payment_id,
    )
    payment.transaction_id = order_id
    payment.notes = 'Service payment via Razorpay'
    return payment


def confirm_upi_payment(
        service_request, transaction_id, amount, payer, upi_id=None):
    # UPI transfers have no provider callback; the reference is taken as
    # reported by the payer and an admin checks it before release
    check_can_hold(service_request)
    _check_not_recorded(transaction_id)

    payment, _ = hold_payment(
        service_request,
        amount,
        PaymentMethod.UPI,
        payer=payer,
        processor=PaymentProcessor.MANUAL,
        processor_payment_id=transaction_id,
    )
    payment.transaction_id = transaction_id
    payment.notes = f'Service payment via UPI ({upi_id or "Not provided"})'
    return payment
