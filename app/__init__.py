import logging

from flask import Flask
from config import Config


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Tests install an in-memory store instead
    if not app.config.get('TESTING'):
        from app.firebase_init import init_firebase
        init_firebase(app.config)

    from app.errors import register_error_handlers
    register_error_handlers(app)

    from app.decorators import load_current_user

    @app.before_request
    def before_request():
        load_current_user()

    # Register blueprints
    from app.routes import groups, lessons, notifications
    app.register_blueprint(groups.bp)
    app.register_blueprint(lessons.bp)
    app.register_blueprint(notifications.bp)

    return app
