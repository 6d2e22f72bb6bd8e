"""Audit trail for state-changing actions.

Every action gets an AuditLog row and an AUDIT line in app.log. Lifecycle,
money and webhook actions are mirrored to the major_events logger, whose
file handler is attached by setup_major_events_log.
"""
from flask import has_request_context, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError
import json
import logging

from helpora.extensions import db
from helpora.models import AuditLog

logger = logging.getLogger(__name__)
major_logger = logging.getLogger('major_events')

MAJOR_ACTION_PREFIXES = (
    'LOGIN',
    'REGISTER',
    'REQUEST_',
    'PAYMENT_',
    'WEBHOOK_',
    'ADMIN_',
)

PAYLOAD_BRIEF_LIMIT = 600


def setup_major_events_log(app):
    if major_logger.handlers:
        return
    handler = logging.FileHandler(
        app.config.get('MAJOR_EVENTS_LOG', 'major_events.log'))
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'))
    major_logger.addHandler(handler)
    major_logger.setLevel(logging.INFO)
    major_logger.propagate = False


def actor_fields(user):
    """Return (actor_id, actor_role) for a Flask-Login user or None."""
    if user is None or not getattr(user, 'is_authenticated', False):
        return None, 'ANONYMOUS'
    return user.id, user.role.value.upper()


def _payload_brief(payload):
    if payload is None:
        return None
    try:
        brief = json.dumps(
            payload, ensure_ascii=False, default=str, separators=(',', ':'))
    except (TypeError, ValueError):
        return None
    if len(brief) > PAYLOAD_BRIEF_LIMIT:
        brief = brief[:PAYLOAD_BRIEF_LIMIT] + '...'
    return brief


def log_audit(action, target_type=None, target_id=None, payload=None,
              actor=None, actor_role=None):
    """Record one action and commit it.

    The actor defaults to the logged-in user. actor_role overrides the
    role label, e.g. 'SYSTEM' for processor callbacks. A failed write is
    logged and rolled back; the action it describes has already been
    committed by the caller.
    """
    if actor is None and has_request_context():
        actor = current_user
    actor_id, role = actor_fields(actor)
    role = actor_role or role

    ip = user_agent = path = method = None
    if has_request_context():
        ip = request.remote_addr
        user_agent = request.headers.get('User-Agent')
        path = request.path
        method = request.method

    audit = AuditLog(
        actor_id=actor_id,
        actor_role=role,
        action=action,
        target_type=target_type,
        target_id=target_id,
        ip=ip,
        user_agent=user_agent,
    )
    if payload:
        audit.set_payload(payload)

    try:
        db.session.add(audit)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Failed to log audit {action}: {e}", exc_info=True)
        db.session.rollback()
        return None

    line = (
        f"action={action} actor_role={role} actor_id={actor_id} "
        f"target_type={target_type} target_id={target_id} "
        f"method={method} path={path} payload={_payload_brief(payload)}"
    )
    logger.info("AUDIT %s", line)
    if action.startswith(MAJOR_ACTION_PREFIXES):
        major_logger.info(line)
    return audit
