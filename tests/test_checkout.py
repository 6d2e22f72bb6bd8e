import hashlib
import hmac
from decimal import Decimal
from types import SimpleNamespace

import pytest

from conftest import (
    RAZORPAY_KEY_SECRET,
    create_request,
    load_payment,
    load_request,
)
from helpora.services import payment_gateway


def checkout_signature(order_id, payment_id, secret=RAZORPAY_KEY_SECRET):
    return hmac.new(
        secret.encode('utf-8'),
        f'{order_id}|{payment_id}'.encode('utf-8'),
        hashlib.sha256,
    ).hexdigest()


@pytest.fixture
def request_id(customer_client, volunteer_id):
    return create_request(customer_client, volunteer_id)


@pytest.fixture
def razorpay_order(monkeypatch, request_id):
    order = {
        'id': 'order_1',
        'amount': 75000,
        'currency': 'INR',
        'notes': {'request_id': str(request_id)},
    }
    monkeypatch.setattr(
        payment_gateway, 'fetch_razorpay_order', lambda order_id: order)
    return order


def verify_body(request_id, **overrides):
    body = {
        'request_id': request_id,
        'razorpay_order_id': 'order_1',
        'razorpay_payment_id': 'pay_1',
        'razorpay_signature': checkout_signature('order_1', 'pay_1'),
    }
    body.update(overrides)
    return body


def test_razorpay_order_is_created_for_request(
        app, monkeypatch, customer_client, request_id):
    calls = []

    def fake_create(amount, currency, receipt, notes=None):
        calls.append((amount, currency, notes))
        return {'id': 'order_1', 'currency': currency}

    monkeypatch.setattr(payment_gateway, 'create_razorpay_order', fake_create)

    resp = customer_client.post('/api/payments/razorpay-order', json={
        'request_id': request_id,
        'amount': '750',
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['order_id'] == 'order_1'
    assert body['razorpay_key_id'] == 'rzp_test_key'
    assert body['amount'] == 750.0

    amount, currency, notes = calls[0]
    assert amount == Decimal('750.00')
    assert currency == 'INR'
    assert notes['request_id'] == str(request_id)


def test_razorpay_order_needs_configuration(app, customer_client, request_id):
    app.config['RAZORPAY_KEY_SECRET'] = ''
    resp = customer_client.post('/api/payments/razorpay-order', json={
        'request_id': request_id,
        'amount': 750,
    })
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Razorpay is not configured'


def test_razorpay_checkout_holds_order_amount(
        app, customer_client, request_id, razorpay_order):
    resp = customer_client.post(
        '/api/payments/razorpay-verify', json=verify_body(request_id))
    assert resp.status_code == 201
    payment = resp.get_json()['payment']
    assert payment['status'] == 'escrow'
    assert payment['amount'] == 750.0
    assert payment['payment_method'] == 'razorpay'
    assert payment['processor'] == 'razorpay'
    assert payment['processor_payment_id'] == 'pay_1'
    assert payment['transaction_id'] == 'order_1'
    assert load_request(app, request_id)['payment_status'] == 'held'

    resp = customer_client.post(
        '/api/payments/razorpay-verify', json=verify_body(request_id))
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Payment already recorded'


def test_razorpay_checkout_rejects_bad_signature(
        app, customer_client, request_id, razorpay_order):
    resp = customer_client.post(
        '/api/payments/razorpay-verify',
        json=verify_body(request_id, razorpay_signature='forged'))
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Payment verification failed'
    assert load_request(app, request_id)['payment_status'] == 'pending'


def test_razorpay_checkout_requires_fields(customer_client, request_id):
    resp = customer_client.post(
        '/api/payments/razorpay-verify',
        json=verify_body(request_id, razorpay_signature=''))
    assert resp.status_code == 400
    assert resp.get_json()['missing_fields'] == ['razorpay_signature']


def test_razorpay_order_for_other_request(
        customer_client, volunteer_id, razorpay_order):
    other_id = create_request(customer_client, volunteer_id)
    resp = customer_client.post(
        '/api/payments/razorpay-verify', json=verify_body(other_id))
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'Payment does not belong to this request')


def test_upi_initiate_returns_collect_details(customer_client, request_id):
    resp = customer_client.post('/api/payments/upi-initiate', json={
        'request_id': request_id,
        'amount': 300,
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['transaction_ref'].startswith('UP')
    assert body['upi_id'] == 'services@ybl'
    assert body['merchant_name'] == 'Helpora'
    assert body['upi_url'].startswith('upi://pay?pa=services%40ybl')
    assert 'am=300.00' in body['upi_url']

    resp = customer_client.post('/api/payments/upi-initiate', json={
        'request_id': request_id,
        'amount': 0,
    })
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Please enter a valid amount'


def test_upi_verify_holds_reported_transfer(app, customer_client, request_id):
    resp = customer_client.post('/api/payments/upi-verify', json={
        'request_id': request_id,
        'amount': 300,
    })
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Transaction ID is required'

    body = {
        'request_id': request_id,
        'transaction_id': 'UPI123456',
        'amount': 300,
        'upi_id': 'asha@okbank',
    }
    resp = customer_client.post('/api/payments/upi-verify', json=body)
    assert resp.status_code == 201
    payment = resp.get_json()['payment']
    assert payment['payment_method'] == 'upi'
    assert payment['processor'] == 'manual'
    assert payment['notes'] == 'Service payment via UPI (asha@okbank)'
    assert load_payment(app, payment['id'])['status'] == 'escrow'

    resp = customer_client.post('/api/payments/upi-verify', json=body)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Payment already recorded'


@pytest.fixture
def stripe_intent(app, monkeypatch, request_id):
    app.config['STRIPE_SECRET_KEY'] = 'sk_test_helpora'
    intent = SimpleNamespace(
        id='pi_confirmed',
        status='requires_capture',
        amount=120050,
        metadata={'request_id': str(request_id)},
    )
    monkeypatch.setattr(
        payment_gateway, 'retrieve_intent', lambda intent_id: intent)
    return intent


def test_stripe_confirm_holds_authorised_intent(
        app, customer_client, request_id, stripe_intent):
    body = {'request_id': request_id, 'payment_intent_id': 'pi_confirmed'}
    resp = customer_client.post('/api/payments/stripe-confirm', json=body)
    assert resp.status_code == 201
    payment = resp.get_json()['payment']
    assert payment['amount'] == 1200.5
    assert payment['processor'] == 'stripe'
    assert payment['processor_payment_id'] == 'pi_confirmed'
    assert load_request(app, request_id)['payment_status'] == 'held'

    resp = customer_client.post('/api/payments/stripe-confirm', json=body)
    assert resp.get_json()['error'] == 'Payment already recorded'


def test_stripe_confirm_requires_authorised_intent(
        customer_client, request_id, stripe_intent):
    stripe_intent.status = 'requires_payment_method'
    resp = customer_client.post('/api/payments/stripe-confirm', json={
        'request_id': request_id,
        'payment_intent_id': 'pi_confirmed',
    })
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'Payment has not been completed successfully')


@pytest.mark.parametrize('path,body', [
    ('/api/payments/upi-verify', {'transaction_id': 'UPI9', 'amount': 50}),
    ('/api/payments/upi-initiate', {'amount': 50}),
    ('/api/payments/escrow', {'amount': 50, 'payment_method': 'cash'}),
    ('/api/payments/intent', {'amount': 50}),
])
def test_no_hold_on_cancelled_request(
        app, customer_client, request_id, path, body):
    assert customer_client.patch(
        f'/api/requests/{request_id}/cancel').status_code == 200

    resp = customer_client.post(path, json=dict(body, request_id=request_id))
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'Cannot hold payment for a cancelled request')

    state = load_request(app, request_id)
    assert state['status'] == 'cancelled'
    assert state['payment_status'] == 'pending'
