"""
Project Feedback API - Flask Application
JSON API for collecting project feedback: CRUD routes, paginated listings and
rating statistics, served by a long-running process or a serverless function
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from time import perf_counter

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

from config import Config
from services.database import DatabaseSettings, QueryError, build_adapter, init_schema
from services.feedback_repository import FeedbackRepository, InvalidSortField, SORT_FIELDS

SERVICE_NAME = 'project-feedback-api'
CORS_METHODS = ['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS']
CORS_HEADERS = ['Content-Type', 'Authorization']
LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'

feedback_api = Blueprint('feedback_api', __name__)
WRITE_ENDPOINTS = ('feedback_api.create_feedback', 'feedback_api.update_feedback', 'feedback_api.delete_feedback')


class ApiError(Exception):
    """A request the API refuses, rendered as an error envelope."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _repository():
    return current_app.extensions['feedback_repository']


def _write_limit():
    return current_app.config['RATELIMIT_WRITE']


def _positive_int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ApiError(f'{name} must be an integer')
    if value < 1:
        raise ApiError(f'{name} must be at least 1')
    return value


def _pagination_args():
    page = _positive_int_arg('page', 1)
    limit = _positive_int_arg('limit', 10)
    max_size = current_app.config.get('MAX_PAGE_SIZE', 100)
    if limit > max_size:
        raise ApiError(f'limit must not exceed {max_size}')
    return page, limit


def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


# ===== FEEDBACK ROUTES =====

@feedback_api.route('/health')
def health():
    return jsonify({
        'status': 'OK',
        'message': 'Project Feedback API is running',
        'backend': current_app.extensions['db_adapter'].backend,
    }), 200


@feedback_api.route('/feedback', methods=['GET'])
def list_feedback():
    page, limit = _pagination_args()
    sort_by = request.args.get('sortBy') or 'createdAt'
    order = request.args.get('order') or 'desc'
    try:
        result = _repository().list(page=page, limit=limit, sort_by=sort_by, order=order)
    except InvalidSortField:
        raise ApiError(f"Invalid sortBy field: {sort_by}. Allowed: {', '.join(SORT_FIELDS)}")
    return jsonify({'success': True, 'data': result.items, 'pagination': result.pagination()})


@feedback_api.route('/feedback/stats/summary', methods=['GET'])
def feedback_stats():
    return jsonify({'success': True, 'data': _repository().stats()})


@feedback_api.route('/feedback/project/<project_type>', methods=['GET'])
def feedback_by_project(project_type):
    page, limit = _pagination_args()
    result = _repository().list_by_project(project_type, page=page, limit=limit)
    return jsonify({'success': True, 'data': result.items, 'pagination': result.pagination()})


@feedback_api.route('/feedback/<int:feedback_id>', methods=['GET'])
def get_feedback(feedback_id):
    entry = _repository().get(feedback_id)
    if entry is None:
        raise ApiError('Feedback not found', 404)
    return jsonify({'success': True, 'data': entry})


@feedback_api.route('/feedback', methods=['POST'])
def create_feedback():
    body = _json_body()
    project_type = body.get('projectType')
    rating = body.get('rating')

    if not project_type or not rating:
        raise ApiError('Project type and rating are required')

    entry = _repository().create(
        project_type,
        rating,
        innovation=body.get('innovation'),
        comments=body.get('comments'),
    )
    return jsonify({
        'success': True,
        'message': 'Feedback submitted successfully',
        'data': entry,
    }), 201


@feedback_api.route('/feedback/<int:feedback_id>', methods=['PUT'])
def update_feedback(feedback_id):
    body = _json_body()
    entry = _repository().update(
        feedback_id,
        project_type=body.get('projectType'),
        rating=body.get('rating'),
        innovation=body.get('innovation'),
        comments=body.get('comments'),
    )
    if entry is None:
        raise ApiError('Feedback not found', 404)
    return jsonify({
        'success': True,
        'message': 'Feedback updated successfully',
        'data': entry,
    })


@feedback_api.route('/feedback/<int:feedback_id>', methods=['DELETE'])
def delete_feedback(feedback_id):
    if not _repository().delete(feedback_id):
        raise ApiError('Feedback not found', 404)
    return jsonify({'success': True, 'message': 'Feedback deleted successfully'})


# ===== SERVICE ROUTES =====

def index():
    prefix = current_app.config.get('API_PREFIX') or ''
    return jsonify({
        'message': 'Welcome to the Project Feedback API',
        'service': SERVICE_NAME,
        'backend': current_app.extensions['db_adapter'].backend,
        'endpoints': {
            'health': f'{prefix}/health',
            'feedback': {
                'getAll': f'GET {prefix}/feedback',
                'getOne': f'GET {prefix}/feedback/:id',
                'create': f'POST {prefix}/feedback',
                'update': f'PUT {prefix}/feedback/:id',
                'delete': f'DELETE {prefix}/feedback/:id',
                'getByProject': f'GET {prefix}/feedback/project/:projectType',
                'getStats': f'GET {prefix}/feedback/stats/summary',
            },
        },
    })


def metrics():
    counters = current_app.extensions['request_metrics']
    total = counters['requests_total']
    avg_latency = (counters['latency_ms_total'] / total) if total else 0.0
    return jsonify({
        'requests_total': total,
        'errors_total': counters['errors_total'],
        'avg_latency_ms': round(avg_latency, 2),
    }), 200


def _metrics_before_request():
    request._start_ts = perf_counter()


def _metrics_after_request(response):
    started = getattr(request, '_start_ts', None)
    if started is not None:
        counters = current_app.extensions['request_metrics']
        counters['requests_total'] += 1
        counters['latency_ms_total'] += (perf_counter() - started) * 1000.0
        if response.status_code >= 400:
            counters['errors_total'] += 1
    return response


# ===== ERROR HANDLERS =====

def _api_error(error):
    return jsonify({'success': False, 'error': error.message}), error.status_code


def _query_error(error):
    current_app.logger.error('Query failed on %s %s: %s', request.method, request.path, error)
    return jsonify({'success': False, 'error': str(error)}), 500


def _http_error(error):
    message = error.name
    if error.code == 429:
        message = f'Too many requests: {error.description}'
    return jsonify({'success': False, 'error': message}), error.code


def _unhandled_error(error):
    current_app.logger.exception('Unhandled error on %s %s', request.method, request.path)
    return jsonify({'success': False, 'error': 'Something went wrong!'}), 500


# ===== APPLICATION FACTORY =====

def _configure_logging(app):
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    logging.getLogger('services').setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    log_dir = app.config.get('LOG_DIR')
    if not log_dir:
        return
    os.makedirs(log_dir, exist_ok=True)
    for logger in (app.logger, logging.getLogger('services')):
        if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(file_handler)


def _init_rate_limits(app):
    """One limiter per app, so building a second app never reconfigures the first."""
    limiter = Limiter(key_func=get_remote_address, app=app)
    write_limit = limiter.limit(_write_limit, override_defaults=False)
    for endpoint in WRITE_ENDPOINTS:
        app.view_functions[endpoint] = write_limit(app.view_functions[endpoint])
    return limiter


def _cors_origins(value):
    if not value or value.strip() == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def create_app(config_object=None, adapter=None, **overrides):
    """Build the Flask app.

    ``config_object`` defaults to :class:`config.Config`; keyword overrides are
    applied on top. Passing ``adapter`` skips backend selection, which is
    otherwise done once here from the config's database settings.
    """
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    app.config.update(overrides)
    app.json.sort_keys = False

    _configure_logging(app)

    if app.config.get('SENTRY_DSN'):
        sentry_sdk.init(
            dsn=app.config.get('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=app.config.get('SENTRY_TRACES_SAMPLE_RATE', 0.1),
        )

    if adapter is None:
        adapter = build_adapter(DatabaseSettings.from_config(app.config))
    init_schema(adapter)
    app.extensions['db_adapter'] = adapter
    app.extensions['feedback_repository'] = FeedbackRepository(adapter)
    app.extensions['request_metrics'] = {
        'requests_total': 0,
        'errors_total': 0,
        'latency_ms_total': 0.0,
    }

    # before the limiter so rejected requests are timed too
    app.before_request(_metrics_before_request)
    app.after_request(_metrics_after_request)

    CORS(
        app,
        origins=_cors_origins(app.config.get('CORS_ORIGINS')),
        methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )

    app.add_url_rule('/', 'index', index)
    app.add_url_rule('/metrics', 'metrics', metrics)
    app.register_blueprint(feedback_api, url_prefix=app.config.get('API_PREFIX') or None)
    # wraps the registered write views, so it runs after the blueprint
    app.extensions['rate_limiter'] = _init_rate_limits(app)

    app.register_error_handler(ApiError, _api_error)
    app.register_error_handler(QueryError, _query_error)
    app.register_error_handler(HTTPException, _http_error)
    app.register_error_handler(Exception, _unhandled_error)

    app.logger.info(
        'Project Feedback API ready (backend=%s, prefix=%r)',
        adapter.backend,
        app.config.get('API_PREFIX') or '',
    )
    return app


# ===== APPLICATION ENTRY POINT =====

if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=app.config['DEBUG'])
