from flask import g, request
from functools import wraps

from errors import ForbiddenError, InvalidTokenError, UnauthorizedError
from models import db, Player, Role
from services import tokens


def bearer_token() -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def device_info() -> dict:
    """Client metadata stored alongside issued tokens."""
    return {
        'ip': request.headers.get('X-Forwarded-For', request.remote_addr),
        'userAgent': request.headers.get('User-Agent'),
        'deviceId': request.headers.get('X-Device-Id'),
    }


def load_current_player():
    """Resolve the bearer token into g.current_player"""
    token = bearer_token()
    if not token:
        raise InvalidTokenError('Authentication failed: no token provided')

    claims = tokens.validate_access(token)
    player = db.session.get(Player, claims['id'])
    if not player:
        raise InvalidTokenError('Authentication failed: player not found')
    if not player.is_active:
        raise UnauthorizedError('Account is inactive')
    if not player.is_verified:
        raise UnauthorizedError('Account is not verified')

    g.current_player = player
    g.access_token = token
    return player


def require_auth(f):
    """Require a valid access token"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        load_current_player()
        return f(*args, **kwargs)
    return decorated_function


def require_roles(*roles):
    """Require a valid access token whose player holds one of ``roles``"""
    allowed = {Role(role).value for role in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            player = load_current_player()
            if player.role not in allowed:
                raise ForbiddenError('You do not have permission to perform this action')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


require_player = require_roles(Role.PLAYER, Role.CAPTAIN)
require_admin = require_roles(Role.ADMIN)
