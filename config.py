"""
Configuration classes for the Project Feedback API
Loads settings from environment variables
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default='0'):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Server process configuration"""

    APP_ENV = os.environ.get('APP_ENV', 'production')
    DEBUG = os.environ.get('FLASK_ENV') == 'development' or os.environ.get('FLASK_DEBUG') == '1'

    # Database: 'sqlite' or 'd1'. Left empty, D1 is picked when its credentials are set.
    DATABASE_BACKEND = os.environ.get('DATABASE_BACKEND', '').strip().lower()
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or os.environ.get('DB_PATH') or 'database.sqlite'

    # Cloudflare D1 (HTTP query API)
    D1_ACCOUNT_ID = os.environ.get('D1_ACCOUNT_ID')
    D1_DATABASE_ID = os.environ.get('D1_DATABASE_ID')
    D1_API_TOKEN = os.environ.get('D1_API_TOKEN')
    D1_API_BASE = os.environ.get('D1_API_BASE', 'https://api.cloudflare.com/client/v4')
    D1_TIMEOUT = float(os.environ.get('D1_TIMEOUT', '30'))

    # HTTP surface
    API_PREFIX = os.environ.get('API_PREFIX', '/api')
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', 'http://localhost:3000')
    MAX_PAGE_SIZE = int(os.environ.get('MAX_PAGE_SIZE', '100'))

    # Rate limiting
    RATELIMIT_ENABLED = _env_flag('RATELIMIT_ENABLED', '1')
    RATELIMIT_DEFAULT = os.environ.get('RATELIMIT_DEFAULT', '200 per hour')
    RATELIMIT_WRITE = os.environ.get('RATELIMIT_WRITE', '30 per hour')
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')

    # Monitoring / logging
    SENTRY_DSN = os.environ.get('SENTRY_DSN')
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE', '0.1'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR', 'logs')


class ServerlessConfig(Config):
    """Serverless function configuration.

    The function filesystem is read-only apart from /tmp, so file logging is
    off unless LOG_DIR is set explicitly, and the SQLite fallback lives in /tmp.
    """

    API_PREFIX = os.environ.get('SERVERLESS_API_PREFIX', '')
    CORS_ORIGINS = os.environ.get('SERVERLESS_CORS_ORIGINS', '*')
    LOG_DIR = os.environ.get('SERVERLESS_LOG_DIR', '')
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or '/tmp/database.sqlite'


class TestingConfig(Config):
    TESTING = True
    DATABASE_BACKEND = 'sqlite'
    DATABASE_PATH = ':memory:'
    RATELIMIT_ENABLED = False
    LOG_DIR = ''
    SENTRY_DSN = None
