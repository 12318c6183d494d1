"""Flask application factory."""
import logging
import os

from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException

from pdv.database import init_db


def _configure_logging(app):
    """Root logger for service modules; app.logger follows the same level."""
    level = app.config.get('LOG_LEVEL', 'INFO')
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(level)


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # CSRF protection: JSON clients send the token in the X-CSRFToken header
    CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'Sessão expirada. Recarregue a página.'}), 400

    # Sentry error tracking in production only
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache (degrades to no cache when unavailable)
    from pdv.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from pdv.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust X-Forwarded-* from the reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    init_db(app)

    from pdv.middleware import load_current_user

    @app.before_request
    def before_request_handler():
        load_current_user()

    # Error Handlers
    from pdv.exceptions import PdvError

    @app.errorhandler(PdvError)
    def handle_pdv_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"PdvError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"PdvError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception on {request.path}: {error}", exc_info=True)
        return jsonify({'status': 'error', 'message': 'Erro interno do servidor'}), 500

    # Register blueprints
    from pdv.blueprints.main import main_bp
    from pdv.blueprints.comandas import comandas_bp
    from pdv.blueprints.sales import sales_bp
    from pdv.blueprints.coupons import coupons_bp
    from pdv.blueprints.products import products_bp
    from pdv.blueprints.metrics import metrics_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(comandas_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(metrics_bp)

    from pdv.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
