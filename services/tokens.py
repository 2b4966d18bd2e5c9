"""
Access/refresh credential issuance, validation, rotation and revocation.

Access tokens are signed with itsdangerous and also persisted so they can be
revoked before they expire. Refresh tokens are opaque random strings that
only exist as database rows.
"""
import logging
import secrets
from datetime import datetime, timedelta

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from errors import InvalidTokenError, UnauthorizedError
from models import db, current_time, Player, TokenRecord, TokenType

logger = logging.getLogger(__name__)

ACCESS_TOKEN_SALT = 'access-token'
_EPOCH = datetime(1970, 1, 1)


def _serializer() -> URLSafeTimedSerializer:
    secret = current_app.config.get('TOKEN_SECRET') or current_app.config['SECRET_KEY']
    return URLSafeTimedSerializer(secret, salt=ACCESS_TOKEN_SALT)


def _access_ttl() -> int:
    return int(current_app.config.get('ACCESS_TOKEN_EXPIRES', 3600))


def _refresh_ttl() -> timedelta:
    return timedelta(days=int(current_app.config.get('REFRESH_TOKEN_EXPIRES_DAYS', 30)))


def _persist(player_id: int, token: str, token_type: TokenType, expires_at, device_info: dict | None) -> TokenRecord:
    device_info = device_info or {}
    record = TokenRecord(
        player_id=player_id,
        token=token,
        type=token_type.value,
        expires_at=expires_at,
        ip_address=device_info.get('ip'),
        user_agent=device_info.get('userAgent'),
        device_id=device_info.get('deviceId'),
    )
    db.session.add(record)
    return record


def issue_access(player: Player, device_info: dict | None = None) -> str:
    """Sign an access token carrying identity and role, and persist it."""
    expires_at = current_time() + timedelta(seconds=_access_ttl())
    payload = {
        'id': player.id,
        'email': player.email,
        'role': player.role,
        'exp': int((expires_at - _EPOCH).total_seconds()),
        # unique per issue so two tokens minted in the same second still differ
        'jti': secrets.token_hex(8),
    }
    token = _serializer().dumps(payload)
    _persist(player.id, token, TokenType.ACCESS, expires_at, device_info)
    return token


def issue_refresh(player_id: int, device_info: dict | None = None) -> str:
    token = secrets.token_hex(40)
    _persist(player_id, token, TokenType.REFRESH, current_time() + _refresh_ttl(), device_info)
    return token


def issue_pair(player: Player, device_info: dict | None = None) -> dict:
    """Issue and commit an access/refresh pair for a fresh login."""
    pair = {
        'accessToken': issue_access(player, device_info),
        'refreshToken': issue_refresh(player.id, device_info),
    }
    db.session.commit()
    logger.info("Issued token pair for player %s", player.id)
    return pair


def validate_access(token: str) -> dict:
    """Return the claims of a valid, live, unrevoked access token."""
    if not token:
        raise InvalidTokenError('Authentication failed: no token provided')

    try:
        claims = _serializer().loads(token, max_age=_access_ttl())
    except SignatureExpired:
        raise InvalidTokenError('Token expired')
    except BadSignature:
        raise InvalidTokenError('Invalid token')

    if not isinstance(claims, dict) or 'id' not in claims:
        raise InvalidTokenError('Invalid token')
    if claims.get('exp') is not None and claims['exp'] <= (current_time() - _EPOCH).total_seconds():
        raise InvalidTokenError('Token expired')

    record = TokenRecord.live().filter_by(token=token, type=TokenType.ACCESS.value).first()
    if not record:
        raise InvalidTokenError('Token has been revoked or expired')
    return claims


def rotate_refresh(refresh_token: str, player: Player, device_info: dict | None = None) -> dict:
    """Exchange a live refresh token for a new pair; the old one is revoked."""
    record = (
        TokenRecord.live()
        .filter_by(token=refresh_token, player_id=player.id, type=TokenType.REFRESH.value)
        .first()
    )
    if not record:
        raise InvalidTokenError('Invalid refresh token')
    if not player.is_active:
        raise UnauthorizedError('Account is inactive')

    record.is_revoked = True
    device_info = device_info or record.device_info()
    pair = {
        'accessToken': issue_access(player, device_info),
        'refreshToken': issue_refresh(player.id, device_info),
    }
    db.session.commit()
    logger.info("Rotated refresh token for player %s", player.id)
    return pair


def revoke(token: str) -> bool:
    record = TokenRecord.query.filter_by(token=token).first()
    if not record or record.is_revoked:
        return False
    record.is_revoked = True
    db.session.commit()
    return True


def revoke_all(player_id: int, commit: bool = True) -> int:
    """Revoke every live token of a player. Returns how many were revoked."""
    count = (
        TokenRecord.query
        .filter(TokenRecord.player_id == player_id, TokenRecord.is_revoked.is_(False))
        .update({TokenRecord.is_revoked: True}, synchronize_session=False)
    )
    if commit:
        db.session.commit()
    logger.info("Revoked %d tokens for player %s", count, player_id)
    return count


def active_sessions(player_id: int) -> list[dict]:
    """Live refresh tokens grouped by device, newest first."""
    records = (
        TokenRecord.live()
        .filter_by(player_id=player_id, type=TokenType.REFRESH.value)
        .order_by(TokenRecord.created_at.desc(), TokenRecord.id.desc())
        .all()
    )
    sessions: dict[str, dict] = {}
    for record in records:
        key = record.device_id or record.user_agent or f'token-{record.id}'
        if key in sessions:
            continue
        sessions[key] = {
            'deviceId': record.device_id,
            'ip': record.ip_address,
            'userAgent': record.user_agent,
            'lastUsed': record.created_at.isoformat() if record.created_at else None,
            'expiresAt': record.expires_at.isoformat(),
        }
    return list(sessions.values())


def purge_expired() -> int:
    """Delete expired or revoked token rows; lookups already ignore them."""
    count = TokenRecord.query.filter(
        db.or_(TokenRecord.expires_at <= current_time(), TokenRecord.is_revoked.is_(True))
    ).delete(synchronize_session=False)
    db.session.commit()
    if count:
        logger.info("Purged %d expired tokens", count)
    return count


