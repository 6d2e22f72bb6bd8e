import pytest

from conftest import login, make_user


@pytest.fixture
def reviewers(app):
    clients = []
    for n in range(3):
        email = f'reviewer{n}@example.com'
        make_user(app, email)
        clients.append(login(app.test_client(), email))
    return clients


def post_review(client, provider_id, rating, **overrides):
    body = {
        'provider_id': provider_id,
        'rating': rating,
        'comment': 'Fixed it quickly',
        'service_type': 'plumbing',
    }
    body.update(overrides)
    return client.post('/api/reviews', json=body)


def provider_summary(app, provider_id):
    resp = app.test_client().get(f'/api/reviews/provider/{provider_id}')
    assert resp.status_code == 200
    return resp.get_json()


def test_rating_aggregate_follows_reviews(app, reviewers, volunteer_id):
    review_ids = []
    for client, rating in zip(reviewers, [5, 4, 3]):
        resp = post_review(client, volunteer_id, rating)
        assert resp.status_code == 201
        review_ids.append(resp.get_json()['review']['id'])

    summary = provider_summary(app, volunteer_id)
    assert summary['average_rating'] == 4.0
    assert summary['review_count'] == 3
    assert len(summary['reviews']) == 3

    resp = reviewers[2].delete(f'/api/reviews/{review_ids[2]}')
    assert resp.get_json() == {'message': 'Review deleted successfully'}

    summary = provider_summary(app, volunteer_id)
    assert summary['average_rating'] == 4.5
    assert summary['review_count'] == 2


def test_average_is_rounded_to_one_decimal(app, reviewers, volunteer_id):
    for client, rating in zip(reviewers, [5, 5, 4]):
        post_review(client, volunteer_id, rating)
    assert provider_summary(app, volunteer_id)['average_rating'] == 4.7


def test_rating_is_clamped(app, reviewers, volunteer_id):
    resp = post_review(reviewers[0], volunteer_id, 9)
    assert resp.get_json()['review']['rating'] == 5
    resp = post_review(reviewers[1], volunteer_id, -2)
    assert resp.get_json()['review']['rating'] == 1


def test_one_review_per_provider(reviewers, volunteer_id):
    assert post_review(reviewers[0], volunteer_id, 4).status_code == 201
    resp = post_review(reviewers[0], volunteer_id, 2)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'You have already reviewed this provider')


@pytest.mark.parametrize('provider,overrides,status,error', [
    (None, {'comment': ''}, 400, 'Please provide all required fields'),
    (999, {}, 404, 'Service provider not found'),
    ('abc', {}, 404, 'Service provider not found'),
])
def test_create_review_validation(
        reviewers, volunteer_id, provider, overrides, status, error):
    resp = post_review(
        reviewers[0], provider or volunteer_id, 4, **overrides)
    assert resp.status_code == status
    assert resp.get_json()['error'] == error


def test_only_volunteers_can_be_reviewed(app, reviewers, customer_id):
    resp = post_review(reviewers[0], customer_id, 4)
    assert resp.status_code == 404


def test_cannot_review_yourself(volunteer_client, volunteer_id):
    resp = post_review(volunteer_client, volunteer_id, 5)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'You cannot review yourself'


def test_update_review_recomputes(app, reviewers, volunteer_id):
    review_id = post_review(reviewers[0], volunteer_id, 2).get_json()[
        'review']['id']

    resp = reviewers[1].put(f'/api/reviews/{review_id}', json={'rating': 5})
    assert resp.status_code == 403

    resp = reviewers[0].put(f'/api/reviews/{review_id}', json={'rating': 5})
    assert resp.status_code == 200
    assert provider_summary(app, volunteer_id)['average_rating'] == 5.0


def test_moderation_excludes_rejected_reviews(
        app, reviewers, admin_client, volunteer_id):
    ids = [
        post_review(c, volunteer_id, r).get_json()['review']['id']
        for c, r in zip(reviewers, [5, 4, 1])
    ]

    resp = admin_client.put(
        f'/api/admin/reviews/{ids[2]}/status', json={'status': 'rejected'})
    assert resp.status_code == 200
    assert resp.get_json()['review']['status'] == 'rejected'

    summary = provider_summary(app, volunteer_id)
    assert summary['average_rating'] == 4.5
    assert summary['review_count'] == 2
    assert ids[2] not in [r['id'] for r in summary['reviews']]

    admin_client.put(
        f'/api/admin/reviews/{ids[2]}/status', json={'status': 'approved'})
    assert provider_summary(app, volunteer_id)['review_count'] == 3


def test_admin_can_delete_any_review(app, reviewers, admin_client,
                                     volunteer_id):
    review_id = post_review(reviewers[0], volunteer_id, 3).get_json()[
        'review']['id']
    assert reviewers[1].delete(
        f'/api/reviews/{review_id}').status_code == 403
    assert admin_client.delete(
        f'/api/reviews/{review_id}').status_code == 200

    summary = provider_summary(app, volunteer_id)
    assert summary['average_rating'] == 0.0
    assert summary['review_count'] == 0


def test_my_reviews(reviewers, volunteer_id):
    post_review(reviewers[0], volunteer_id, 4)
    resp = reviewers[0].get('/api/reviews/user')
    assert [r['rating'] for r in resp.get_json()['reviews']] == [4]
