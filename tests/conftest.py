"""Shared fixtures for the Helpora test suite.

Each test gets a fresh in-memory database. Requests go through the Flask
test client; database checks open their own app context so that every
request loads its user from the session cookie.
"""
from datetime import datetime

import pytest

from helpora import create_app
from helpora.config import Config
from helpora.extensions import db
from helpora.models import (
    AccountStatus,
    Payment,
    ServiceRequest,
    User,
    UserRole,
)

PASSWORD = 'secret123'
STRIPE_WEBHOOK_SECRET = 'whsec_test_secret'
RAZORPAY_WEBHOOK_SECRET = 'rzp_test_secret'
RAZORPAY_KEY_SECRET = 'rzp_key_secret'


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    MAIL_DEV_MODE = True
    STRIPE_SECRET_KEY = ''
    STRIPE_PUBLISHABLE_KEY = 'pk_test_helpora'
    STRIPE_WEBHOOK_SECRET = STRIPE_WEBHOOK_SECRET
    RAZORPAY_KEY_ID = 'rzp_test_key'
    RAZORPAY_KEY_SECRET = RAZORPAY_KEY_SECRET
    RAZORPAY_WEBHOOK_SECRET = RAZORPAY_WEBHOOK_SECRET
    ADMIN_EMAIL = 'ops@example.com'
    CANCEL_WINDOW_HOURS = 2
    PLATFORM_FEE_RATE = '0.10'


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


def make_user(app, email, role=UserRole.CUSTOMER, name=None,
              status=AccountStatus.ACTIVE, password=PASSWORD):
    with app.app_context():
        user = User(
            name=name or email.split('@')[0].title(),
            email=email,
            role=role,
            status=status,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user.id


@pytest.fixture
def admin_id(app):
    return make_user(app, 'admin@example.com', UserRole.ADMIN, 'Admin')


@pytest.fixture
def customer_id(app):
    return make_user(app, 'customer@example.com', UserRole.CUSTOMER, 'Asha')


@pytest.fixture
def volunteer_id(app):
    return make_user(app, 'helper@example.com', UserRole.VOLUNTEER, 'Ravi')


def login(client, email, password=PASSWORD):
    resp = client.post(
        '/api/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def admin_client(app, admin_id):
    return login(app.test_client(), 'admin@example.com')


@pytest.fixture
def customer_client(app, customer_id):
    return login(app.test_client(), 'customer@example.com')


@pytest.fixture
def volunteer_client(app, volunteer_id):
    return login(app.test_client(), 'helper@example.com')


def create_request(client, volunteer_id, **overrides):
    body = {
        'user_name': 'Asha',
        'contact': 'asha@example.com',
        'message': 'Kitchen sink is leaking',
        'volunteer_id': volunteer_id,
        'service_category': 'plumbing',
    }
    body.update(overrides)
    resp = client.post('/api/requests', json=body)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['request_id']


def escrow(client, request_id, amount=1000, **overrides):
    body = {
        'request_id': request_id,
        'amount': amount,
        'payment_method': 'credit_card',
    }
    body.update(overrides)
    resp = client.post('/api/payments/escrow', json=body)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['payment']['id']


def load_request(app, request_id):
    with app.app_context():
        service_request = db.session.get(ServiceRequest, request_id)
        return {
            'status': service_request.status.value,
            'payment_status': service_request.payment_status.value,
            'admin_override': service_request.admin_override,
            'history': [e.status.value
                        for e in service_request.status_history],
        }


def load_payment(app, payment_id):
    with app.app_context():
        payment = db.session.get(Payment, payment_id)
        if payment is None:
            return None
        return {
            'status': payment.status.value,
            'admin_fee': payment.admin_fee,
            'payout_amount': payment.payout_amount,
            'refund_id': payment.refund_id,
            'timeline': [t.action for t in payment.timeline],
        }


def expire_cancel_window(app, request_id):
    with app.app_context():
        service_request = db.session.get(ServiceRequest, request_id)
        service_request.cancel_deadline = datetime(2000, 1, 1)
        db.session.commit()
