"""
Player identity: registration, verification, login, password lifecycle,
profile completion, team ownership and account deactivation.
"""
import logging

from flask import current_app

from errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from models import (
    db,
    OtpType,
    Player,
    RegistrationStatus,
    Role,
    Team,
    TeamPlayer,
    TeamRole,
    University,
)
from services import mailer, otp, tokens

logger = logging.getLogger(__name__)

PROTECTED_PROFILE_KEYS = ('email', 'password', 'passwordHash', 'role', 'isActive', 'isVerified', 'registrationStatus')


def _notify(player: Player, template: str, **variables) -> bool:
    variables.setdefault('name', player.full_name)
    return mailer.send(player.email, template, variables)


def get_player(player_id: int) -> Player:
    player = db.session.get(Player, player_id)
    if not player:
        raise NotFoundError('Player not found')
    return player


def find_by_email(email: str) -> Player | None:
    return Player.query.filter_by(email=(email or '').strip().lower()).first()


def _require_university(university_id) -> int:
    try:
        university_id = int(university_id)
    except (TypeError, ValueError):
        raise ValidationError('Invalid university id')
    if not db.session.get(University, university_id):
        raise ValidationError('University does not exist')
    return university_id


def _send_verification(player: Player, record) -> bool:
    frontend = current_app.config.get('FRONTEND_URL', '')
    return _notify(
        player,
        'verification',
        otp=record.code,
        verify_url=f"{frontend}/verify/{player.id}/{record.code}",
        expires_minutes=otp.OTP_TTL_MINUTES[OtpType.ACCOUNT_VERIFICATION],
    )


def register(data: dict) -> Player:
    errors = Player.validate_registration(data)
    if errors:
        raise ValidationError('Validation failed', errors=errors)

    email = data['email'].strip().lower()
    if find_by_email(email):
        raise ConflictError('Email already registered')

    player = Player(
        first_name=data['firstName'].strip(),
        last_name=data['lastName'].strip(),
        email=email,
        role=Role.PLAYER.value,
        is_active=True,
        is_verified=False,
    )
    player.set_password(data['password'])
    for key in ('imageUrl', 'age', 'jerseyNumber', 'battingStyle', 'bowlingStyle', 'phone'):
        if data.get(key) not in (None, ''):
            setattr(player, Player.PROFILE_FIELDS[key], data[key])
    if data.get('universityId') not in (None, ''):
        player.university_id = _require_university(data['universityId'])
    player.refresh_registration_status()

    db.session.add(player)
    db.session.flush()
    record = otp.generate(player.id, player.email, OtpType.ACCOUNT_VERIFICATION)
    db.session.commit()
    logger.info("Registered player %s (%s)", player.id, player.email)

    if not _send_verification(player, record):
        logger.warning("Verification email to %s was not delivered", player.email)
    return player


def verify_account(player_id: int, code: str) -> Player:
    player = db.session.get(Player, player_id)
    if not player or not otp.verify(code, OtpType.ACCOUNT_VERIFICATION, player_id=player.id):
        raise ValidationError('Invalid or expired verification code')

    player.is_verified = True
    db.session.commit()
    logger.info("Player %s verified", player.id)
    _notify(player, 'welcome')
    return player


def resend_verification(email: str) -> bool:
    player = find_by_email(email)
    if not player:
        raise NotFoundError('Player not found')
    if player.is_verified:
        raise InvalidStateError('Account is already verified')

    record = otp.generate(player.id, player.email, OtpType.ACCOUNT_VERIFICATION)
    db.session.commit()
    return _send_verification(player, record)


def authenticate(email: str, password: str) -> Player:
    """Check credentials. Every failure looks the same to the caller."""
    player = find_by_email(email)
    if not player:
        logger.info("Login failed for %s: unknown email", email)
        raise UnauthorizedError()
    if not player.is_active:
        logger.info("Login failed for player %s: account inactive", player.id)
        raise UnauthorizedError()
    if not player.is_verified:
        logger.info("Login failed for player %s: account not verified", player.id)
        raise UnauthorizedError()
    if not player.check_password(password):
        logger.info("Login failed for player %s: wrong password", player.id)
        raise UnauthorizedError()
    return player


def login(email: str, password: str, device_info: dict | None = None) -> tuple[Player, dict]:
    player = authenticate(email, password)
    pair = tokens.issue_pair(player, device_info)
    logger.info("Player %s logged in", player.id)
    return player, pair


def logout(player_id: int) -> int:
    return tokens.revoke_all(player_id)


def forgot_password(email: str) -> None:
    player = find_by_email(email)
    if not player:
        raise NotFoundError('Player not found')

    record = otp.generate(player.id, player.email, OtpType.PASSWORD_RESET)
    db.session.commit()
    frontend = current_app.config.get('FRONTEND_URL', '')
    _notify(
        player,
        'password_reset_request',
        otp=record.code,
        reset_url=f"{frontend}/reset-password/{player.email}/{record.code}",
        expires_minutes=otp.OTP_TTL_MINUTES[OtpType.PASSWORD_RESET],
    )


def _check_new_password(password: str) -> None:
    if not password or len(password) < 6:
        raise ValidationError('Password must be at least 6 characters long')


def reset_password(email: str, code: str, new_password: str) -> bool:
    _check_new_password(new_password)
    player = find_by_email(email)
    if not player or not otp.verify(code, OtpType.PASSWORD_RESET, player_id=player.id):
        raise ValidationError('Invalid or expired reset code')

    player.set_password(new_password)
    tokens.revoke_all(player.id, commit=False)
    db.session.commit()
    logger.info("Password reset for player %s", player.id)
    _notify(player, 'password_reset_success')
    return True


def change_password(player_id: int, current_password: str, new_password: str) -> bool:
    player = get_player(player_id)
    if not player.check_password(current_password):
        raise ValidationError('Current password is incorrect')
    _check_new_password(new_password)

    player.set_password(new_password)
    otp.invalidate_all(player.id)
    db.session.commit()
    logger.info("Password changed for player %s", player.id)
    return True


def check_jersey_available(university_id, jersey_number, exclude_player_id: int | None = None) -> bool:
    if university_id is None or jersey_number is None:
        return True
    query = Player.query.filter(
        Player.university_id == university_id,
        Player.jersey_number == jersey_number,
    )
    if exclude_player_id is not None:
        query = query.filter(Player.id != exclude_player_id)
    return query.first() is None


def update_profile(player_id: int, patch: dict) -> Player:
    player = get_player(player_id)
    patch = {key: value for key, value in (patch or {}).items() if key not in PROTECTED_PROFILE_KEYS}

    unknown = sorted(set(patch) - set(Player.PROFILE_FIELDS))
    if unknown:
        raise ValidationError('Unknown profile fields', errors=[f'{key} cannot be updated' for key in unknown])

    university_id = player.university_id
    if patch.get('universityId') not in (None, ''):
        university_id = _require_university(patch['universityId'])
    jersey_number = player.jersey_number
    if 'jerseyNumber' in patch:
        jersey_number = player.validate_non_negative('jersey_number', patch['jerseyNumber'])

    if not check_jersey_available(university_id, jersey_number, exclude_player_id=player.id):
        raise ConflictError('Jersey number already taken in this university')

    for key, attr in Player.PROFILE_FIELDS.items():
        if key not in patch:
            continue
        value = patch[key]
        if key == 'universityId':
            value = university_id
        elif isinstance(value, str):
            value = value.strip()
        setattr(player, attr, value)

    if player.refresh_registration_status():
        logger.info("Player %s completed registration", player.id)
    db.session.commit()
    return player


def request_login_code(player: Player) -> bool:
    record = otp.generate(player.id, player.email, OtpType.LOGIN_VERIFICATION)
    db.session.commit()
    return _notify(
        player,
        'login_verification',
        otp=record.code,
        expires_minutes=otp.OTP_TTL_MINUTES[OtpType.LOGIN_VERIFICATION],
    )


def confirm_login_code(player: Player, code: str) -> bool:
    if not otp.verify(code, OtpType.LOGIN_VERIFICATION, player_id=player.id):
        raise ValidationError('Invalid or expired verification code')
    return True


def create_team(player_id: int, data: dict) -> Team:
    player = get_player(player_id)
    if player.registration_status != RegistrationStatus.COMPLETED.value:
        raise InvalidStateError('Please complete your profile before creating a team')
    if not player.university_id:
        raise InvalidStateError('Player must be associated with a university to create a team')

    name = str(data.get('name') or '').strip()
    if not name:
        raise ValidationError('Team name is required')
    if Team.query.filter_by(name=name).first():
        raise ConflictError('Team name already exists')

    team = Team(
        name=name,
        captain_id=player.id,
        university_id=player.university_id,
        logo_url=str(data.get('logoUrl') or '').strip(),
        budget=data.get('budget', 0) or 0,
    )
    team.members.append(TeamPlayer(player_id=player.id, role=TeamRole.CAPTAIN.value))
    if player.role == Role.PLAYER.value:
        player.role = Role.CAPTAIN.value

    db.session.add(team)
    db.session.commit()
    logger.info("Team %s created by player %s", team.id, player.id)
    _notify(player, 'team_created', team_name=team.name)
    return team


def join_team(player_id: int, team_id, role) -> TeamPlayer:
    player = get_player(player_id)
    if player.registration_status != RegistrationStatus.COMPLETED.value:
        raise InvalidStateError('Please complete your profile before joining a team')

    team = db.session.get(Team, team_id)
    if not team:
        raise NotFoundError('Team not found')
    if team.university_id != player.university_id:
        raise ValidationError('Players can only join teams from their own university')
    if TeamPlayer.query.filter_by(team_id=team.id, player_id=player.id).first():
        raise ConflictError('Player is already a member of this team')

    membership = TeamPlayer(team_id=team.id, player_id=player.id, role=role or TeamRole.BATSMAN.value)
    db.session.add(membership)
    db.session.commit()
    logger.info("Player %s joined team %s as %s", player.id, team.id, membership.role)
    return membership


def _captained_team(player: Player, team_id) -> Team:
    team = db.session.get(Team, team_id)
    if not team:
        raise NotFoundError('Team not found')
    if team.captain_id != player.id:
        raise ForbiddenError('Only the team captain can manage the budget')
    return team


def record_team_expense(player: Player, team_id, description: str, amount) -> Team:
    team = _captained_team(player, team_id)
    team.add_expense(description, amount)
    db.session.commit()
    logger.info("Team %s recorded expense of %s", team.id, amount)
    return team


def add_team_funds(player: Player, team_id, amount) -> Team:
    team = _captained_team(player, team_id)
    team.add_funds(amount)
    db.session.commit()
    return team


def deactivate(player_id: int) -> Player:
    player = get_player(player_id)
    otp.invalidate_all(player.id)
    tokens.revoke_all(player.id, commit=False)
    player.is_active = False
    db.session.commit()
    logger.info("Player %s deactivated", player.id)
    return player
