from flask import Blueprint, request, jsonify
from flask_login import (
    login_user,
    logout_user,
    login_required,
    current_user,
)
from helpora.extensions import db
from helpora.models import User, UserRole, AccountStatus
from helpora.services.audit_service import log_audit
from helpora.utils import user_to_dict
from datetime import datetime
import logging
import re

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)

EMAIL_RE = re.compile(r'[^@\s]+@[^@\s]+\.[^@\s]+')


@bp.route('/api/auth/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'error': 'Email and password cannot be empty'}), 400

    user = User.query.filter_by(email=email).first()

    if user and user.check_password(password):
        if user.status == AccountStatus.SUSPENDED or not user.is_active:
            log_audit('LOGIN_FAILED', 'USER', user.id,
                      {'reason': 'suspended'}, actor=user)
            return jsonify({'error': 'Account suspended'}), 403

        login_user(user, remember=True)
        user.last_login_at = datetime.utcnow()
        db.session.commit()

        log_audit('LOGIN_SUCCESS', 'USER', user.id, actor=user)

        return jsonify(
            {'ok': True, 'role': user.role.value, 'user_id': user.id})

    reason = 'invalid_credentials' if user else 'user_not_found'
    log_audit('LOGIN_FAILED', 'USER', payload={'reason': reason})

    return jsonify({'error': 'Invalid email or password'}), 401


@bp.route('/api/auth/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not name or not email or not password:
        return jsonify(
            {'error': 'Name, email and password cannot be empty'}), 400
    if not EMAIL_RE.fullmatch(email):
        return jsonify({'error': 'Invalid email address'}), 400
    if len(password) < 6:
        return jsonify(
            {'error': 'Password must be at least 6 characters'}), 400

    # Check if email already exists
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already registered'}), 400

    # Self-registration always creates a customer.
    # Helpers apply through /api/helpers, admins are seeded.
    user = User(
        name=name,
        email=email,
        phone=(data.get('phone') or '').strip() or None,
        location=(data.get('location') or '').strip() or None,
        role=UserRole.CUSTOMER,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    log_audit('REGISTER', 'USER', user.id, actor=user)

    # Auto login
    login_user(user, remember=True)

    return jsonify(
        {'ok': True, 'role': user.role.value, 'user_id': user.id}), 201


@bp.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    log_audit('LOGOUT', 'USER', current_user.id)

    logout_user()
    return jsonify({'ok': True})


@bp.route('/api/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': user_to_dict(current_user)})
