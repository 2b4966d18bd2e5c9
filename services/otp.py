"""One-time codes for verification, password reset and login confirmation."""
import logging
import secrets
from datetime import timedelta

from flask import current_app

from models import db, current_time, OtpRecord, OtpType

logger = logging.getLogger(__name__)

OTP_TTL_MINUTES = {
    OtpType.ACCOUNT_VERIFICATION: 30,
    OtpType.PASSWORD_RESET: 60,
    OtpType.LOGIN_VERIFICATION: 15,
    OtpType.EMAIL_CHANGE: 30,
}


def _max_attempts() -> int:
    return int(current_app.config.get('OTP_MAX_ATTEMPTS', 3))


def generate_code(length: int | None = None) -> str:
    length = length or int(current_app.config.get('OTP_LENGTH', 6))
    return str(secrets.randbelow(10 ** length)).zfill(length)


def _owner_filter(query, player_id=None, email=None):
    if player_id is not None:
        return query.filter(OtpRecord.player_id == player_id)
    return query.filter(OtpRecord.email == (email or '').strip().lower())


def generate(player_id: int, email: str, otp_type, ttl_minutes: int | None = None, length: int | None = None) -> OtpRecord:
    """Create a fresh code, invalidating any unused one of the same type.

    The caller owns the transaction so the code can be committed together
    with whatever prompted it.
    """
    otp_type = OtpType(otp_type)
    email = (email or '').strip().lower()
    (
        OtpRecord.query
        .filter(
            db.or_(OtpRecord.player_id == player_id, OtpRecord.email == email),
            OtpRecord.type == otp_type.value,
            OtpRecord.is_used.is_(False),
        )
        .update({OtpRecord.is_used: True}, synchronize_session=False)
    )

    ttl_minutes = ttl_minutes or OTP_TTL_MINUTES[otp_type]
    record = OtpRecord(
        player_id=player_id,
        email=email,
        code=generate_code(length),
        type=otp_type.value,
        expires_at=current_time() + timedelta(minutes=ttl_minutes),
    )
    db.session.add(record)
    db.session.flush()
    logger.info("Generated %s code for player %s", otp_type.value, player_id)
    return record


def find_active(otp_type, player_id: int | None = None, email: str | None = None) -> OtpRecord | None:
    """Newest unused, unexpired code of ``otp_type`` for a player or email."""
    return (
        _owner_filter(OtpRecord.live(), player_id, email)
        .filter(OtpRecord.type == OtpType(otp_type).value)
        .order_by(OtpRecord.created_at.desc(), OtpRecord.id.desc())
        .first()
    )


def verify(code: str, otp_type, player_id: int | None = None, email: str | None = None) -> bool:
    """Consume a matching live code.

    Every failed check counts against the newest live code; the code is
    burned once the attempt limit is reached. Commits its own bookkeeping.
    """
    otp_type = OtpType(otp_type)
    latest = find_active(otp_type, player_id, email)
    if not latest:
        logger.info("No live %s code for %s", otp_type.value, player_id or email)
        return False

    latest.attempts += 1
    if code is not None and secrets.compare_digest(latest.code, str(code)):
        latest.is_used = True
        db.session.commit()
        return True

    if latest.attempts >= _max_attempts():
        latest.is_used = True
        logger.warning("Code %s for %s locked after %d failed attempts", latest.id, player_id or email, latest.attempts)
    db.session.commit()
    return False


def invalidate_all(player_id: int, otp_type=None) -> int:
    query = OtpRecord.query.filter(OtpRecord.player_id == player_id, OtpRecord.is_used.is_(False))
    if otp_type is not None:
        query = query.filter(OtpRecord.type == OtpType(otp_type).value)
    return query.update({OtpRecord.is_used: True}, synchronize_session=False)


def purge_expired() -> int:
    count = OtpRecord.query.filter(
        db.or_(OtpRecord.expires_at <= current_time(), OtpRecord.is_used.is_(True))
    ).delete(synchronize_session=False)
    db.session.commit()
    if count:
        logger.info("Purged %d expired or used codes", count)
    return count
