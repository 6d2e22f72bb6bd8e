from conftest import (
    PASSWORD,
    create_request,
    escrow,
    load_payment,
    load_request,
    make_user,
)
from helpora.extensions import db
from helpora.models import Review, ServiceRequest, User, UserRole


def test_forced_status_sets_override(app, customer_client, admin_client,
                                     volunteer_id):
    request_id = create_request(customer_client, volunteer_id)
    customer_client.patch(f'/api/requests/{request_id}/cancel')

    resp = admin_client.put(
        f'/api/admin/requests/{request_id}/status',
        json={'status': 'accepted'})
    assert resp.status_code == 200
    req = resp.get_json()['request']
    assert req['status'] == 'accepted'
    assert req['admin_override'] is True
    assert req['status_history'][-1]['updated_by'] == 'admin'
    assert req['status_history'][-1]['notes'] == (
        'Status updated to accepted by admin')


def test_admin_completion_without_password_keeps_hold(
        app, customer_client, admin_client, volunteer_id):
    request_id = create_request(customer_client, volunteer_id)
    payment_id = escrow(customer_client, request_id)

    resp = admin_client.put(
        f'/api/admin/requests/{request_id}/status',
        json={'status': 'completed'})
    assert resp.status_code == 200
    result = resp.get_json()['payment_release']
    assert result['released'] is False
    assert result['error'] == 'Admin password required.'

    state = load_request(app, request_id)
    assert state['status'] == 'completed'
    assert state['payment_status'] == 'held'
    assert load_payment(app, payment_id)['status'] == 'escrow'


def test_reassign_moves_open_payments(app, customer_client, admin_client,
                                      volunteer_id):
    other_id = make_user(
        app, 'helper2@example.com', UserRole.VOLUNTEER, 'Meera')
    request_id = create_request(customer_client, volunteer_id)
    payment_id = escrow(customer_client, request_id)

    resp = admin_client.put(
        f'/api/admin/requests/{request_id}/reassign',
        json={'volunteer_id': other_id})
    assert resp.status_code == 200
    req = resp.get_json()['request']
    assert req['volunteer_id'] == other_id
    assert req['viewed_by_helper'] is False
    assert req['status_history'][-1]['notes'] == (
        'Request reassigned to Meera by admin')

    payment = admin_client.get(f'/api/payments/{payment_id}').get_json()
    assert payment['payment']['volunteer_id'] == other_id


def test_reassign_validation(app, customer_client, admin_client,
                             volunteer_id, customer_id):
    request_id = create_request(customer_client, volunteer_id)
    url = f'/api/admin/requests/{request_id}/reassign'

    resp = admin_client.put(url, json={})
    assert resp.get_json()['error'] == 'Volunteer ID is required'
    resp = admin_client.put(url, json={'volunteer_id': customer_id})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'Invalid volunteer ID or user is not a volunteer')


def test_flag_request(customer_client, admin_client, volunteer_id):
    request_id = create_request(customer_client, volunteer_id)
    url = f'/api/admin/requests/{request_id}/flag'

    assert admin_client.put(url, json={}).status_code == 400

    resp = admin_client.put(
        url, json={'is_flagged': True, 'flag_reason': 'Spam'})
    req = resp.get_json()['request']
    assert req['is_flagged'] is True
    assert req['flag_reason'] == 'Spam'

    resp = admin_client.put(url, json={'is_flagged': False})
    assert resp.get_json()['request']['flag_reason'] is None


def test_search_and_bulk_delete(app, customer_client, admin_client,
                                volunteer_id):
    keep = create_request(
        customer_client, volunteer_id, message='Garden hedge trimming')
    gone = create_request(customer_client, volunteer_id)
    customer_client.patch(f'/api/requests/{gone}/cancel')

    page = admin_client.get(
        '/api/admin/requests?search=hedge').get_json()
    assert [r['id'] for r in page['items']] == [keep]
    page = admin_client.get(
        '/api/admin/requests?status=all').get_json()
    assert page['total'] == 2

    resp = admin_client.delete(
        '/api/admin/requests', json={'status': 'cancelled'})
    assert resp.get_json()['deleted_count'] == 1

    page = admin_client.get('/api/admin/requests').get_json()
    assert [r['id'] for r in page['items']] == [keep]
    assert load_request(app, keep)['status'] == 'requested'


def test_request_level_release(app, customer_client, admin_client,
                               volunteer_id):
    request_id = create_request(customer_client, volunteer_id)
    payment_id = escrow(customer_client, request_id, amount=1000)
    url = f'/api/admin/payment/release/{request_id}'

    assert admin_client.post(url, json={}).status_code == 400

    resp = admin_client.post(url, json={'admin_password': PASSWORD})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['fee'] == 100.0
    assert body['payout'] == 900.0
    assert body['request']['admin_override'] is True
    assert load_payment(app, payment_id)['status'] == 'released'

    resp = admin_client.post(url, json={'admin_password': PASSWORD})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Payment already released to helper'


def test_request_level_refund_of_intent_hold(
        app, customer_client, admin_client, volunteer_id):
    request_id = create_request(customer_client, volunteer_id)
    url = f'/api/admin/payment/refund/{request_id}'

    resp = admin_client.post(url, json={'admin_password': PASSWORD})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'No payment associated with this request')

    resp = customer_client.post('/api/payments/intent', json={
        'request_id': request_id,
        'amount': 450,
        'currency': 'inr',
    })
    assert resp.status_code == 200
    assert resp.get_json()['payment_intent_id'].startswith(
        'simulated_intent_')
    assert resp.get_json()['status'] == 'held'

    resp = admin_client.post(url, json={'admin_password': PASSWORD})
    assert resp.status_code == 200
    state = load_request(app, request_id)
    assert state['status'] == 'cancelled'
    assert state['payment_status'] == 'refunded'
    assert state['admin_override'] is True


def test_user_management(app, admin_client, admin_id, customer_id,
                         volunteer_id):
    resp = admin_client.put(
        f'/api/admin/users/{admin_id}/status', json={'status': 'suspended'})
    assert resp.get_json()['error'] == 'You cannot change your own status'

    resp = admin_client.put(
        f'/api/admin/users/{customer_id}/status', json={'status': 'gone'})
    assert resp.get_json()['error'] == 'Invalid status value.'

    resp = admin_client.put(
        f'/api/admin/users/{customer_id}/status',
        json={'status': 'suspended'})
    assert resp.get_json()['user']['is_active'] is False

    resp = app.test_client().post('/api/auth/login', json={
        'email': 'customer@example.com', 'password': PASSWORD})
    assert resp.status_code == 403

    page = admin_client.get('/api/admin/users?role=volunteer').get_json()
    assert [u['id'] for u in page['items']] == [volunteer_id]

    resp = admin_client.put(f'/api/admin/users/{customer_id}/verify')
    assert resp.get_json()['error'] == 'Only volunteers can be verified.'
    resp = admin_client.put(f'/api/admin/users/{volunteer_id}/verify')
    assert resp.get_json()['user']['is_verified_provider'] is True


def test_change_user_role(admin_client, admin_id, customer_id):
    resp = admin_client.put(
        f'/api/admin/users/{admin_id}/role', json={'role': 'customer'})
    assert resp.get_json()['error'] == 'You cannot change your own role'

    resp = admin_client.put(
        f'/api/admin/users/{customer_id}/role', json={'role': 'owner'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid role value.'

    resp = admin_client.put(
        '/api/admin/users/999/role', json={'role': 'volunteer'})
    assert resp.status_code == 404

    resp = admin_client.put(
        f'/api/admin/users/{customer_id}/role', json={'role': 'volunteer'})
    assert resp.status_code == 200
    assert resp.get_json()['user']['role'] == 'volunteer'


def test_delete_user(app, admin_client, admin_id, customer_client,
                     customer_id, volunteer_id):
    request_id = create_request(customer_client, volunteer_id)
    resp = customer_client.post('/api/reviews', json={
        'provider_id': volunteer_id,
        'rating': 4,
        'comment': 'Fixed it quickly',
        'service_type': 'plumbing',
    })
    assert resp.status_code == 201

    resp = admin_client.delete(f'/api/admin/users/{admin_id}')
    assert resp.status_code == 400

    # The helper still has a request assigned
    resp = admin_client.delete(f'/api/admin/users/{volunteer_id}')
    assert resp.status_code == 400
    assert resp.get_json()['assigned_requests'] == 1

    resp = admin_client.delete(f'/api/admin/users/{customer_id}')
    assert resp.get_json() == {'message': 'User deleted successfully.'}
    assert admin_client.delete(
        f'/api/admin/users/{customer_id}').status_code == 404

    with app.app_context():
        assert db.session.get(User, customer_id) is None
        assert db.session.get(ServiceRequest, request_id).user_id is None
        helper = db.session.get(User, volunteer_id)
        assert helper.review_count == 0
        assert helper.average_rating == 0.0
        assert Review.query.count() == 0


def test_admin_routes_need_admin(customer_client):
    assert customer_client.get('/api/admin/requests').status_code == 403
    assert customer_client.get('/api/admin/users').status_code == 403
