from flask import Flask, jsonify
from flask_migrate import Migrate
from flask_login import LoginManager
from werkzeug.exceptions import HTTPException
from helpora.extensions import db
from helpora.config import Config
from helpora.errors import HelporaError
from helpora.middleware import setup_auth_middleware
from helpora.services.audit_service import setup_major_events_log
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('app.log'),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

migrate = Migrate()
login_manager = LoginManager()


def register_error_handlers(app):

    @app.errorhandler(HelporaError)
    def handle_helpora_error(e):
        db.session.rollback()
        return jsonify({'error': e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return jsonify({'error': 'Server error', 'details': str(e)}), 500


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Setup user loader
    from helpora.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Not logged in',
                        'login_required': True}), 401

    # Register blueprints
    from helpora.blueprints import (
        admin,
        auth,
        payments,
        reviews,
        service_requests,
        volunteers,
        webhooks,
    )

    # Blueprints use absolute routes.
    # Using url_prefix here would double the path.
    app.register_blueprint(auth.bp, url_prefix='/')
    app.register_blueprint(service_requests.bp, url_prefix='/')
    app.register_blueprint(payments.bp, url_prefix='/')
    app.register_blueprint(webhooks.bp, url_prefix='/')
    app.register_blueprint(reviews.bp, url_prefix='/')
    app.register_blueprint(volunteers.bp, url_prefix='/')
    app.register_blueprint(admin.bp, url_prefix='/')

    # Setup authentication middleware (site-wide login protection)
    setup_auth_middleware(app)
    register_error_handlers(app)
    setup_major_events_log(app)

    # Note: Database tables are managed via Flask-Migrate
    # Use 'flask db upgrade' to create/update tables

    logger.info("Flask application initialized")
    return app
