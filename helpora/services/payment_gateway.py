from decimal import Decimal, ROUND_HALF_UP
from flask import current_app
import hashlib
import hmac
import json
import logging

import stripe

from helpora.errors import PaymentGatewayError

logger = logging.getLogger(__name__)

# Stripe PaymentIntent states where the hold can still be voided
CANCELABLE_INTENT_STATES = (
    'requires_payment_method',
    'requires_capture',
    'requires_confirmation',
    'requires_action',
    'processing',
)


def stripe_enabled() -> bool:
    return bool(current_app.config.get('STRIPE_SECRET_KEY'))


def _configure_stripe():
    stripe.api_key = current_app.config.get('STRIPE_SECRET_KEY')


def to_minor_units(amount) -> int:
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def create_hold(amount, currency, metadata=None):
    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=(currency or 'INR').lower(),
            capture_method='manual',
            metadata=metadata or {},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe hold failed: {e}", exc_info=True)
        raise PaymentGatewayError(f'Payment processor error: {e}')
    logger.info("Stripe hold created intent=%s", intent.id)
    return intent.id, intent.client_secret


def capture(intent_id):
    _configure_stripe()
    try:
        stripe.PaymentIntent.capture(intent_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe capture failed for {intent_id}: {e}")
        raise PaymentGatewayError(f'Payment processor error: {e}')


def void_or_refund(intent_id):
    """Cancel an uncaptured hold, or refund a captured charge.

    Returns the Stripe refund id when a refund was issued.
    """
    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.retrieve(intent_id)
        if intent.status in CANCELABLE_INTENT_STATES:
            stripe.PaymentIntent.cancel(intent_id)
            return None
        refund = stripe.Refund.create(payment_intent=intent_id)
        return refund.id
    except stripe.StripeError as e:
        logger.error(f"Stripe refund failed for {intent_id}: {e}")
        raise PaymentGatewayError(f'Payment processor error: {e}')


def retrieve_intent(intent_id):
    _configure_stripe()
    try:
        return stripe.PaymentIntent.retrieve(intent_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe lookup failed for {intent_id}: {e}")
        raise PaymentGatewayError(f'Payment processor error: {e}')


def parse_stripe_event(payload: bytes, sig_header):
    secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
    if not secret:
        logger.error("Stripe webhook received but no secret is configured")
        raise PaymentGatewayError(
            'Webhook Error: signing secret not configured', 400)
    if not sig_header:
        raise PaymentGatewayError('Webhook Error: missing signature', 400)
    try:
        return stripe.Webhook.construct_event(payload, sig_header, secret)
    except stripe.SignatureVerificationError as e:
        raise PaymentGatewayError(f'Webhook Error: {e}', 400)
    except ValueError as e:
        raise PaymentGatewayError(f'Webhook Error: {e}', 400)


def razorpay_signature(payload: bytes, secret) -> str:
    return hmac.new(
        secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()


def parse_razorpay_event(payload: bytes, signature):
    secret = current_app.config.get('RAZORPAY_WEBHOOK_SECRET')
    if not secret:
        logger.error("Razorpay webhook received but no secret is configured")
        raise PaymentGatewayError(
            'Webhook Error: signing secret not configured', 400)
    expected = razorpay_signature(payload, secret)
    if not signature or not hmac.compare_digest(expected, signature):
        raise PaymentGatewayError(
            'Webhook Error: signature verification failed', 400)
    try:
        return json.loads(payload)
    except ValueError as e:
        raise PaymentGatewayError(f'Webhook Error: {e}', 400)


def from_minor_units(value) -> Decimal:
    return (Decimal(str(value)) / 100).quantize(Decimal('0.01'))


def razorpay_enabled() -> bool:
    config = current_app.config
    return bool(
        config.get('RAZORPAY_KEY_ID') and config.get('RAZORPAY_KEY_SECRET'))


def _razorpay_orders():
    """Return the Razorpay orders resource and the errors it raises.

    The SDK is imported on use so the app starts without it configured.
    """
    import razorpay
    from razorpay.errors import BadRequestError, GatewayError, ServerError

    client = razorpay.Client(auth=(
        current_app.config.get('RAZORPAY_KEY_ID'),
        current_app.config.get('RAZORPAY_KEY_SECRET'),
    ))
    return client.order, (BadRequestError, GatewayError, ServerError)


def create_razorpay_order(amount, currency, receipt, notes=None):
    orders, errors = _razorpay_orders()
    try:
        order = orders.create(data={
            'amount': to_minor_units(amount),
            'currency': (currency or 'INR').upper(),
            'receipt': receipt,
            'notes': notes or {},
        })
    except errors as e:
        logger.error(f"Razorpay order failed: {e}", exc_info=True)
        raise PaymentGatewayError('Failed to create Razorpay order')
    logger.info("Razorpay order created order=%s", order.get('id'))
    return order


def fetch_razorpay_order(order_id):
    orders, errors = _razorpay_orders()
    try:
        return orders.fetch(order_id)
    except errors as e:
        logger.error(f"Razorpay order lookup failed for {order_id}: {e}")
        raise PaymentGatewayError(f'Payment processor error: {e}')


def verify_razorpay_checkout(order_id, payment_id, signature):
    """Check the checkout signature, HMAC-SHA256 of 'order_id|payment_id'."""
    secret = current_app.config.get('RAZORPAY_KEY_SECRET')
    if not secret:
        raise PaymentGatewayError('Razorpay is not configured', 400)
    message = f'{order_id}|{payment_id}'.encode('utf-8')
    expected = razorpay_signature(message, secret)
    if not signature or not hmac.compare_digest(expected, signature):
        logger.warning(
            "Razorpay checkout signature mismatch for order %s", order_id)
        raise PaymentGatewayError('Payment verification failed', 400)
