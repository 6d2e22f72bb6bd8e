from sqlalchemy import func
import logging

from helpora.extensions import db
from helpora.models import Review, ReviewStatus, User

logger = logging.getLogger(__name__)


def clamp_rating(value) -> int:
    try:
        rating = int(value)
    except (TypeError, ValueError):
        return 0
    return max(1, min(5, rating))


def recompute_provider_rating(provider_id):
    """Recompute average_rating and review_count from approved reviews.

    Reads every approved review of the provider on each call. Callers
    commit the session.
    """
    provider = db.session.get(User, provider_id)
    if provider is None:
        return None

    avg_rating, count = db.session.query(
        func.avg(Review.rating),
        func.count(Review.id)
    ).filter(
        Review.provider_id == provider_id,
        Review.status == ReviewStatus.APPROVED
    ).one()

    provider.review_count = int(count or 0)
    provider.average_rating = (
        round(float(avg_rating), 1) if count else 0.0
    )
    logger.info(
        "Provider %s rating recomputed avg=%s count=%s",
        provider_id,
        provider.average_rating,
        provider.review_count,
    )
    return provider
