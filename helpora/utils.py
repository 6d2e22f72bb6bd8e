from datetime import date, datetime
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)


def paginate_query(query, page=1, per_page=20):
    pagination = query.paginate(
        page=page,
        per_page=per_page,
        error_out=False
    )
    return {
        'items': pagination.items,
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }


def _iso(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return None


def _money(value):
    if value is None:
        return None
    if isinstance(value, Decimal):
        return float(value)
    return value


def _enum(value):
    return value.value if value is not None else None


def parse_date(value):
    if not value:
        return None
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        return None


def parse_enum(enum_class, value, default=None):
    if value is None or value == '':
        return default
    try:
        return enum_class(str(value).strip().lower())
    except ValueError:
        return default


def user_to_dict(user, public=False):
    if user is None:
        return None
    data = {
        'id': user.id,
        'name': user.name,
        'role': user.role.value,
        'location': user.location,
        'bio': user.bio,
        'skills': [s.strip() for s in (user.skills or '').split(',')
                   if s.strip()],
        'is_available': user.is_available,
        'is_verified_provider': user.is_verified_provider,
        'average_rating': user.average_rating,
        'review_count': user.review_count,
        'services_completed': user.services_completed,
    }
    if not public:
        data.update({
            'email': user.email,
            'phone': user.phone,
            'status': user.status.value,
            'is_active': user.is_active,
            'created_at': _iso(user.created_at),
            'last_login_at': _iso(user.last_login_at),
        })
    return data


def request_to_dict(service_request, include_history=True):
    volunteer = service_request.volunteer
    data = {
        'id': service_request.id,
        'user_id': service_request.user_id,
        'volunteer_id': service_request.volunteer_id,
        'volunteer_name': volunteer.name if volunteer else None,
        'user_name': service_request.user_name,
        'contact': service_request.contact,
        'message': service_request.message,
        'service_category': service_request.service_category,
        'service_location': service_request.service_location,
        'scheduled_date': _iso(service_request.scheduled_date),
        'scheduled_time': service_request.scheduled_time,
        'urgency_level': _enum(service_request.urgency_level),
        'status': _enum(service_request.status),
        'payment_status': _enum(service_request.payment_status),
        'payment_intent_id': service_request.payment_intent_id,
        'amount': _money(service_request.amount),
        'currency': service_request.currency,
        'refund_requested': service_request.refund_requested,
        'admin_override': service_request.admin_override,
        'is_completed_by_helper': service_request.is_completed_by_helper,
        'is_confirmed_by_user': service_request.is_confirmed_by_user,
        'dispute_raised': service_request.dispute_raised,
        'viewed_by_helper': service_request.viewed_by_helper,
        'is_flagged': service_request.is_flagged,
        'flag_reason': service_request.flag_reason,
        'release_date': _iso(service_request.release_date),
        'cancel_deadline': _iso(service_request.cancel_deadline),
        'rating': service_request.rating,
        'feedback': service_request.feedback,
        'created_at': _iso(service_request.created_at),
        'updated_at': _iso(service_request.updated_at),
    }
    if include_history:
        data['status_history'] = [
            {
                'status': entry.status.value,
                'updated_at': _iso(entry.updated_at),
                'updated_by': entry.updated_by,
                'notes': entry.notes,
            }
            for entry in service_request.status_history
        ]
    return data


def payment_to_dict(payment):
    return {
        'id': payment.id,
        'request_id': payment.request_id,
        'volunteer_id': payment.volunteer_id,
        'user_id': payment.user_id,
        'amount': _money(payment.amount),
        'currency': payment.currency,
        'status': _enum(payment.status),
        'payment_method': _enum(payment.payment_method),
        'processor': _enum(payment.processor),
        'processor_payment_id': payment.processor_payment_id,
        'transaction_id': payment.transaction_id,
        'refund_id': payment.refund_id,
        'receipt_url': payment.receipt_url,
        'notes': payment.notes,
        'payment_date': _iso(payment.payment_date),
        'escrow': payment.escrow,
        'released': payment.released,
        'refunded': payment.refunded,
        'admin_fee': _money(payment.admin_fee),
        'payout_amount': _money(payment.payout_amount),
        'created_at': _iso(payment.created_at),
        'updated_at': _iso(payment.updated_at),
        'timeline': [
            {'action': t.action, 'date': _iso(t.date), 'by': t.by}
            for t in payment.timeline
        ],
    }


def review_to_dict(review):
    author = review.author
    return {
        'id': review.id,
        'user_id': review.user_id,
        'user_name': author.name if author else None,
        'provider_id': review.provider_id,
        'rating': review.rating,
        'comment': review.comment,
        'service_type': review.service_type,
        'status': review.status.value,
        'created_at': _iso(review.created_at),
        'updated_at': _iso(review.updated_at),
    }
