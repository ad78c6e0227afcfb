import os
from dotenv import load_dotenv

load_dotenv() # Load environment variables from .env file


def _database_uri():
    database_url = os.getenv('DATABASE_URL')
    if database_url and database_url.startswith("postgres://"):
        # Hosted providers hand out postgres://... but SQLAlchemy needs postgresql://...
        return database_url.replace("postgres://", "postgresql://", 1)
    if database_url:
        return database_url
    # Fallback to local .env configuration for development
    DB_USER = os.getenv('DB_USER', 'postgres')
    DB_PASSWORD = os.getenv('DB_PASSWORD', 'password')
    DB_HOST = os.getenv('DB_HOST', 'localhost')
    DB_NAME = os.getenv('DB_NAME', 'artmarket')
    return f'postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}'


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'a-default-dev-secret-key-that-is-not-secure')

    SQLALCHEMY_DATABASE_URI = _database_uri()
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,        # Detect dead connections
        "pool_recycle": 280,
        "pool_size": 5,
        "max_overflow": 10,
    }
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens are issued by the identity service with the same secret.
    TOKEN_MAX_AGE = int(os.getenv('TOKEN_MAX_AGE', 7 * 24 * 3600))

    DEFAULT_BID_INCREMENT = float(os.getenv('DEFAULT_BID_INCREMENT', 10))
    ENFORCE_BID_INCREMENT = os.getenv('ENFORCE_BID_INCREMENT', 'false').lower() in ('1', 'true', 'yes')
    AUCTION_SWEEP_INTERVAL = int(os.getenv('AUCTION_SWEEP_INTERVAL', 0))

    CACHE_TYPE = os.getenv('CACHE_TYPE', 'FileSystemCache')
    CACHE_DIR = os.getenv('CACHE_DIR', '/tmp')
    CACHE_DEFAULT_TIMEOUT = 300

    # None lets Flask-SocketIO pick eventlet when it is installed and patched.
    SOCKETIO_ASYNC_MODE = os.getenv('SOCKETIO_ASYNC_MODE') or None
    SOCKETIO_MESSAGE_QUEUE = os.getenv('SOCKETIO_MESSAGE_QUEUE') or None
    CORS_ALLOWED_ORIGINS = os.getenv(
        'CORS_ALLOWED_ORIGINS',
        'http://localhost:5173,http://localhost:5174,http://localhost:3000').split(',')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    CACHE_TYPE = 'NullCache'
    SOCKETIO_ASYNC_MODE = 'threading'
    SOCKETIO_MESSAGE_QUEUE = None
    AUCTION_SWEEP_INTERVAL = 0
    ENFORCE_BID_INCREMENT = False
    LOG_LEVEL = 'DEBUG'
