from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from helpora.extensions import db
from helpora.models import User, UserRole, AccountStatus
from helpora.services import notification_service
from helpora.services.audit_service import log_audit
from helpora.utils import user_to_dict
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('volunteers', __name__)


def _split_list(value):
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value or '').split(',')
    return [str(item).strip() for item in items if str(item).strip()]


@bp.route('/api/helpers', methods=['POST'])
@login_required
def apply_as_helper():
    if current_user.role == UserRole.VOLUNTEER:
        return jsonify({'error': 'You have already applied as a helper.'}), 400
    if current_user.role == UserRole.ADMIN:
        return jsonify({'error': 'Admins cannot apply as helpers.'}), 400

    data = request.get_json(silent=True) or {}
    skills = _split_list(data.get('skills'))
    phone = (data.get('phone') or current_user.phone or '').strip()
    location = (data.get('location') or current_user.location or '').strip()

    missing = []
    if not phone:
        missing.append('phone')
    if not location:
        missing.append('location')
    if not skills:
        missing.append('skills')
    if missing:
        return jsonify({
            'error': 'Missing or invalid required fields',
            'missing_fields': missing,
        }), 400

    current_user.role = UserRole.VOLUNTEER
    # Stays pending until an admin activates the account
    current_user.status = AccountStatus.PENDING
    current_user.phone = phone
    current_user.location = location
    current_user.skills = ','.join(skills)
    current_user.bio = (data.get('bio') or '').strip() or current_user.bio
    db.session.commit()

    log_audit('HELPER_APPLY', 'USER', current_user.id, {'skills': skills})

    notification_service.notify_admin(
        'New helper application',
        f"{current_user.name} ({current_user.email}) applied as a helper.\n"
        f"Skills: {', '.join(skills)}\nLocation: {location}",
    )

    return jsonify({
        'message': 'Helper application submitted successfully',
        'user': user_to_dict(current_user),
    }), 201


@bp.route('/api/volunteers', methods=['GET'])
def list_volunteers():
    query = User.query.filter_by(
        role=UserRole.VOLUNTEER,
        status=AccountStatus.ACTIVE,
        is_active=True,
        is_available=True,
    )
    skill = (request.args.get('skill') or '').strip()
    if skill:
        query = query.filter(User.skills.ilike(f'%{skill}%'))
    location = (request.args.get('location') or '').strip()
    if location:
        query = query.filter(User.location.ilike(f'%{location}%'))

    volunteers = query.order_by(
        User.average_rating.desc(),
        User.review_count.desc(),
    ).all()
    return jsonify({
        'volunteers': [user_to_dict(v, public=True) for v in volunteers]
    })


@bp.route('/api/volunteers/<int:volunteer_id>', methods=['GET'])
def get_volunteer(volunteer_id):
    volunteer = db.session.get(User, volunteer_id)
    if (volunteer is None
            or volunteer.role != UserRole.VOLUNTEER
            or volunteer.status != AccountStatus.ACTIVE):
        return jsonify({'error': 'Volunteer not found'}), 404
    return jsonify({'volunteer': user_to_dict(volunteer, public=True)})
