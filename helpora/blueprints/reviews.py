import logging

from flask import Blueprint, request, jsonify, abort
from flask_login import login_required, current_user

from helpora.extensions import db
from helpora.models import Review, ReviewStatus, User, UserRole
from helpora.services.audit_service import log_audit
from helpora.services.rating_service import (
    clamp_rating,
    recompute_provider_rating,
)
from helpora.utils import review_to_dict

logger = logging.getLogger(__name__)
bp = Blueprint('reviews', __name__)


def _get_review_or_404(review_id):
    review = db.session.get(Review, review_id)
    if review is None:
        abort(404, description='Review not found')
    return review


@bp.route('/api/reviews', methods=['POST'])
@login_required
def create_review():
    data = request.get_json(silent=True) or {}
    provider_id = data.get('provider_id')
    rating = data.get('rating')
    comment = (data.get('comment') or '').strip()
    service_type = (data.get('service_type') or '').strip()

    if not provider_id or not rating or not comment or not service_type:
        msg = 'Please provide all required fields'
        return jsonify({'error': msg}), 400

    try:
        provider = db.session.get(User, int(provider_id))
    except (TypeError, ValueError):
        provider = None
    if provider is None or provider.role != UserRole.VOLUNTEER:
        return jsonify({'error': 'Service provider not found'}), 404

    if provider.id == current_user.id:
        return jsonify({'error': 'You cannot review yourself'}), 400

    rating = clamp_rating(rating)
    if not rating:
        return jsonify({'error': 'Rating must be between 1 and 5'}), 400

    # Check if already reviewed.
    existing = Review.query.filter_by(
        user_id=current_user.id,
        provider_id=provider.id
    ).first()
    if existing:
        msg = 'You have already reviewed this provider'
        return jsonify({'error': msg}), 400

    review = Review(
        user_id=current_user.id,
        provider_id=provider.id,
        rating=rating,
        comment=comment,
        service_type=service_type,
        status=ReviewStatus.APPROVED,
    )
    db.session.add(review)
    db.session.flush()
    recompute_provider_rating(provider.id)
    db.session.commit()

    log_audit('REVIEW_CREATE', 'REVIEW', review.id, {
        'provider_id': provider.id,
        'rating': rating,
    })

    return jsonify({'ok': True, 'review': review_to_dict(review)}), 201


@bp.route('/api/reviews/provider/<int:provider_id>', methods=['GET'])
def provider_reviews(provider_id):
    provider = db.session.get(User, provider_id)
    if provider is None:
        return jsonify({'error': 'Service provider not found'}), 404

    reviews = Review.query.filter_by(
        provider_id=provider_id,
        status=ReviewStatus.APPROVED
    ).order_by(Review.created_at.desc()).all()

    return jsonify({
        'provider_id': provider_id,
        'average_rating': provider.average_rating,
        'review_count': provider.review_count,
        'reviews': [review_to_dict(r) for r in reviews],
    })


@bp.route('/api/reviews/user', methods=['GET'])
@login_required
def my_reviews():
    reviews = Review.query.filter_by(
        user_id=current_user.id
    ).order_by(Review.created_at.desc()).all()
    return jsonify({'reviews': [review_to_dict(r) for r in reviews]})


@bp.route('/api/reviews/<int:review_id>', methods=['PUT'])
@login_required
def update_review(review_id):
    data = request.get_json(silent=True) or {}
    rating = data.get('rating')
    comment = (data.get('comment') or '').strip()

    if not rating and not comment:
        msg = 'Please provide rating or comment to update'
        return jsonify({'error': msg}), 400

    review = _get_review_or_404(review_id)
    if review.user_id != current_user.id:
        return jsonify({'error': 'Not authorized to update this review'}), 403

    if rating:
        rating = clamp_rating(rating)
        if not rating:
            return jsonify({'error': 'Rating must be between 1 and 5'}), 400
        review.rating = rating
    if comment:
        review.comment = comment

    db.session.flush()
    recompute_provider_rating(review.provider_id)
    db.session.commit()

    log_audit(
        'REVIEW_UPDATE', 'REVIEW', review.id, {'rating': review.rating})

    return jsonify({'ok': True, 'review': review_to_dict(review)})


@bp.route('/api/reviews/<int:review_id>', methods=['DELETE'])
@login_required
def delete_review(review_id):
    review = _get_review_or_404(review_id)
    if (review.user_id != current_user.id
            and current_user.role != UserRole.ADMIN):
        return jsonify({'error': 'Not authorized to delete this review'}), 403

    provider_id = review.provider_id
    db.session.delete(review)
    db.session.flush()
    recompute_provider_rating(provider_id)
    db.session.commit()

    log_audit(
        'REVIEW_DELETE', 'REVIEW', review_id, {'provider_id': provider_id})

    return jsonify({'message': 'Review deleted successfully'})
