"""Payment processor callbacks.

Events are applied as delivered. There is no de-duplication, so a replayed
event re-applies its outcome and appends another timeline entry.
"""
from flask import Blueprint, request, jsonify
from helpora.extensions import db
from helpora.models import Payment
from helpora.services import escrow_service, notification_service
from helpora.services.audit_service import log_audit
from helpora.services.payment_gateway import (
    parse_stripe_event,
    parse_razorpay_event,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('webhooks', __name__)

STRIPE_OUTCOMES = {
    'payment_intent.succeeded': escrow_service.HOLD,
    'payment_intent.captured': escrow_service.RELEASE,
    'payment_intent.canceled': escrow_service.FAIL,
    'payment_intent.payment_failed': escrow_service.FAIL,
    'charge.refunded': escrow_service.REFUND,
}

RAZORPAY_OUTCOMES = {
    'payment.authorized': escrow_service.HOLD,
    'payment.captured': escrow_service.RELEASE,
    'payment.failed': escrow_service.FAIL,
    'refund.processed': escrow_service.REFUND,
}

EMAILS = {
    escrow_service.HOLD: (
        'Payment Held in Escrow',
        'Your payment for request #{request_id} is securely held in escrow.'),
    escrow_service.RELEASE: (
        'Payment Released',
        'The payment for request #{request_id} has been released.'),
    escrow_service.FAIL: (
        'Payment Failed',
        'Your payment for request #{request_id} could not be completed.'),
    escrow_service.REFUND: (
        'Refund Processed',
        'Your payment for request #{request_id} has been refunded.'),
}


def _stripe_target(event):
    """Return (processor payment id, refund id) for a Stripe event."""
    obj = (event.get('data') or {}).get('object') or {}
    if event.get('type') == 'charge.refunded':
        refunds = (obj.get('refunds') or {}).get('data') or []
        refund_id = refunds[0].get('id') if refunds else None
        return obj.get('payment_intent'), refund_id
    return obj.get('id'), None


def _razorpay_target(event):
    payload = event.get('payload') or {}
    if event.get('event') == 'refund.processed':
        refund = (payload.get('refund') or {}).get('entity') or {}
        return refund.get('payment_id'), refund.get('id')
    payment = (payload.get('payment') or {}).get('entity') or {}
    return payment.get('id'), None


def _apply(processor, event_type, outcome, processor_payment_id, refund_id):
    if outcome is None:
        logger.info("%s webhook: unhandled event type %s",
                    processor, event_type)
        return jsonify({'received': True})

    payment = None
    if processor_payment_id:
        payment = Payment.query.filter_by(
            processor_payment_id=processor_payment_id
        ).order_by(Payment.id.desc()).first()
    if payment is None:
        logger.info(
            "%s webhook %s: no payment for %s",
            processor,
            event_type,
            processor_payment_id,
        )
        return jsonify({'received': True})

    previous = payment.status
    escrow_service.apply_processor_event(
        payment,
        outcome,
        by=f'{processor} webhook',
        refund_id=refund_id,
    )
    db.session.commit()

    log_audit(
        f'WEBHOOK_{processor.upper()}',
        'PAYMENT',
        payment.id,
        {
            'event': event_type,
            'from': previous.value,
            'to': payment.status.value,
        },
        actor_role='SYSTEM',
    )

    subject, body = EMAILS[outcome]
    recipient = (
        payment.volunteer if outcome == escrow_service.RELEASE
        else payment.payer)
    notification_service.notify_user(
        recipient, subject, body.format(request_id=payment.request_id))

    return jsonify({'received': True})


@bp.route('/api/stripe/webhook', methods=['POST'])
def stripe_webhook():
    payload = request.get_data()
    event = parse_stripe_event(
        payload, request.headers.get('Stripe-Signature'))
    event_type = event.get('type')
    processor_payment_id, refund_id = _stripe_target(event)
    return _apply(
        'stripe',
        event_type,
        STRIPE_OUTCOMES.get(event_type),
        processor_payment_id,
        refund_id,
    )


@bp.route('/api/razorpay/webhook', methods=['POST'])
def razorpay_webhook():
    payload = request.get_data()
    event = parse_razorpay_event(
        payload, request.headers.get('X-Razorpay-Signature'))
    event_type = event.get('event')
    processor_payment_id, refund_id = _razorpay_target(event)
    return _apply(
        'razorpay',
        event_type,
        RAZORPAY_OUTCOMES.get(event_type),
        processor_payment_id,
        refund_id,
    )
