import os
import re

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

_DURATION_UNITS = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400}


def parse_duration(value, default_seconds: int = 3600) -> int:
    """Convert ``"3600"``, ``"15m"``, ``"1h"`` or ``"7d"`` into seconds."""
    if value is None or value == '':
        return default_seconds
    if isinstance(value, (int, float)):
        return int(value)

    match = re.fullmatch(r'\s*(\d+)\s*([smhd]?)\s*', str(value).lower())
    if not match:
        raise ValueError(f'Unsupported duration: {value!r}')
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS.get(unit or 's')


def _database_url() -> str:
    url = os.environ.get('DATABASE_URL')
    if url:
        # Heroku PostgreSQL URL fix (postgres:// → postgresql://)
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql://', 1)
        return url

    default_sqlite_dir = os.path.join(BASE_DIR, 'instance')
    sqlite_path = os.environ.get('SQLITE_PATH', os.path.join(default_sqlite_dir, 'cricket.db'))
    return f'sqlite:///{sqlite_path}'


def engine_options(database_uri: str, timeout_seconds: int) -> dict:
    """Pool options that bound how long one call may wait on storage."""
    if database_uri.startswith('sqlite'):
        return {'connect_args': {'timeout': timeout_seconds}}

    options = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
        'pool_timeout': timeout_seconds,
        'connect_args': {
            'connect_timeout': timeout_seconds,
            'options': f'-c statement_timeout={timeout_seconds * 1000}',
        },
    }
    return options


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me-for-production')
    TOKEN_SECRET = os.environ.get('TOKEN_SECRET') or SECRET_KEY
    ACCESS_TOKEN_EXPIRES = parse_duration(os.environ.get('ACCESS_TOKEN_EXPIRES', '1h'))
    REFRESH_TOKEN_EXPIRES_DAYS = int(os.environ.get('REFRESH_TOKEN_EXPIRES_DAYS', '30'))

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    STORAGE_TIMEOUT_SECONDS = int(os.environ.get('STORAGE_TIMEOUT_SECONDS', '5'))

    SMTP_HOST = os.environ.get('SMTP_HOST')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', '587'))
    SMTP_USER = os.environ.get('SMTP_USER')
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD')
    MAIL_FROM = os.environ.get('MAIL_FROM', 'noreply@crickettournament.com')
    MAIL_FROM_NAME = os.environ.get('MAIL_FROM_NAME', 'Cricket Tournament')
    MAIL_SUPPRESS_SEND = os.environ.get('MAIL_SUPPRESS_SEND', '').lower() in ('1', 'true', 'yes')

    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:3000')

    OTP_LENGTH = int(os.environ.get('OTP_LENGTH', '6'))
    OTP_MAX_ATTEMPTS = int(os.environ.get('OTP_MAX_ATTEMPTS', '3'))

    ENFORCE_BALL_SEQUENCE = os.environ.get('ENFORCE_BALL_SEQUENCE', 'true').lower() not in ('0', 'false', 'no')
    BALL_RECORD_MAX_RETRIES = int(os.environ.get('BALL_RECORD_MAX_RETRIES', '3'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
