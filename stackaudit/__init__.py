import os
import logging
from typing import Optional

from flask import Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from .exceptions import StackAuditException, error_response, make_error_response
from .settings import Settings, load_settings

_LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def _configure_logging():
    level_name = os.environ.get('STACKAUDIT_LOG_LEVEL', 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    # Optional rotating file handler for persistent logs (useful in production)
    log_file = os.environ.get('STACKAUDIT_LOG_FILE')
    if log_file:
        from logging.handlers import RotatingFileHandler
        try:
            max_bytes = int(os.environ.get('STACKAUDIT_LOG_MAX_BYTES', str(5 * 1024 * 1024)))
            backup = int(os.environ.get('STACKAUDIT_LOG_BACKUP_COUNT', '5'))
            fh = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup)
        except (OSError, ValueError) as e:
            logging.getLogger(__name__).warning('failed attaching RotatingFileHandler for %s err=%s', log_file, e)
        else:
            fh.setLevel(level)
            fh.setFormatter(logging.Formatter(_LOG_FORMAT))
            logging.getLogger().addHandler(fh)
            logging.getLogger(__name__).info(
                'RotatingFileHandler attached path=%s max_bytes=%d backups=%d',
                log_file, max_bytes, backup)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger(__name__).info('Logging initialized at level %s', level_name)


def create_app(settings: Optional[Settings] = None, analyzer_transport=None):
    """Application factory.

    ``settings`` defaults to the environment; ``analyzer_transport`` swaps the
    HTTP call to the analyzer backend (tests pass a fake).
    """
    from .catalog import get_catalog
    from .engine import Engine

    app = Flask(__name__)
    _configure_logging()
    settings = settings or load_settings()

    # A corrupt signature catalog must stop the process here, not on the first request.
    catalog = get_catalog(settings.catalog_dir)
    app.extensions['stackaudit.engine'] = Engine(settings, catalog, transport=analyzer_transport)
    logging.getLogger(__name__).info(
        'engine ready signatures=%d analyzer=%s model=%s',
        len(catalog), 'on' if settings.ai_enabled else 'off', settings.ai_model)

    # Rate limiting configuration
    limiter = Limiter(key_func=get_remote_address, app=app, default_limits=[settings.rate_limit],
                      storage_uri='memory://')
    # Expose limiter for blueprints to use specific limits
    app.extensions['limiter'] = limiter

    from .routes.analyze import bp as analyze_bp
    from .routes.system import system_bp
    app.register_blueprint(analyze_bp)
    app.register_blueprint(system_bp)

    @app.errorhandler(StackAuditException)
    def _handle_stackaudit_error(exc):
        body, status = error_response(exc)
        if status >= 500:
            logging.getLogger('stackaudit.api').error('request failed code=%s err=%s', exc.error_code, exc.message)
        return jsonify(body), status

    @app.errorhandler(429)
    def _handle_rate_limited(exc):
        body = make_error_response('RATE_LIMITED', f'rate limit exceeded: {exc.description}', 429)
        return jsonify(body), 429

    app.config['STACKAUDIT_VERSION'] = settings.version
    return app
