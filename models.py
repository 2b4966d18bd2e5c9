from datetime import datetime
import enum
import re

import pytz

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import validates
from werkzeug.security import generate_password_hash, check_password_hash

from errors import ValidationError, InvalidStateError

db = SQLAlchemy()

UTC = pytz.utc

BALLS_PER_OVER = 6
MAX_WICKETS = 10
DEFAULT_TOTAL_OVERS = 20
DEFAULT_INNINGS_PER_TEAM = 1

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
PHONE_PATTERN = r'\+?[0-9\s-]{7,15}'


def current_time():
    """Naive UTC timestamp; every datetime column is stored in UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


class Role(str, enum.Enum):
    PLAYER = 'player'
    CAPTAIN = 'captain'
    ADMIN = 'admin'


class RegistrationStatus(str, enum.Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'


class BattingStyle(str, enum.Enum):
    LEFT_HANDED = 'Left Handed'
    RIGHT_HANDED = 'Right Handed'


class BowlingStyle(str, enum.Enum):
    FAST = 'Fast'
    MEDIUM = 'Medium'
    SPIN = 'Spin'
    NONE = 'None'


class TeamRole(str, enum.Enum):
    BATSMAN = 'batsman'
    BOWLER = 'bowler'
    ALL_ROUNDER = 'all-rounder'
    WICKET_KEEPER = 'wicket-keeper'
    CAPTAIN = 'captain'


class TokenType(str, enum.Enum):
    ACCESS = 'access'
    REFRESH = 'refresh'
    RESET = 'reset'
    VERIFY = 'verify'


class OtpType(str, enum.Enum):
    ACCOUNT_VERIFICATION = 'account_verification'
    PASSWORD_RESET = 'password_reset'
    LOGIN_VERIFICATION = 'login_verification'
    EMAIL_CHANGE = 'email_change'


class MatchStatus(str, enum.Enum):
    UPCOMING = 'upcoming'
    ONGOING = 'ongoing'
    FINISHED = 'finished'
    CANCELLED = 'cancelled'
    POSTPONED = 'postponed'


class InningsStatus(str, enum.Enum):
    NOT_STARTED = 'not_started'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class TossDecision(str, enum.Enum):
    BAT = 'bat'
    BOWL = 'bowl'


class ExtraType(str, enum.Enum):
    WIDE = 'wide'
    NO_BALL = 'no-ball'
    BYE = 'bye'
    LEG_BYE = 'leg-bye'


class DismissalType(str, enum.Enum):
    BOWLED = 'bowled'
    CAUGHT = 'caught'
    LBW = 'lbw'
    RUN_OUT = 'run out'
    STUMPED = 'stumped'
    HIT_WICKET = 'hit wicket'
    OBSTRUCTING_THE_FIELD = 'obstructing the field'
    TIMED_OUT = 'timed out'
    RETIRED_HURT = 'retired hurt'


class BallOutcome(str, enum.Enum):
    DOT = 'dot'
    SINGLE = 'single'
    DOUBLE = 'double'
    TRIPLE = 'triple'
    FOUR = 'four'
    SIX = 'six'
    WICKET = 'wicket'
    WIDE = 'wide'
    NO_BALL = 'no-ball'
    BYE = 'bye'
    LEG_BYE = 'leg-bye'


class PerformanceType(str, enum.Enum):
    BATTING = 'batting'
    BOWLING = 'bowling'
    FIELDING = 'fielding'


BOWLER_CREDITED_DISMISSALS = frozenset({
    DismissalType.BOWLED,
    DismissalType.CAUGHT,
    DismissalType.LBW,
    DismissalType.STUMPED,
    DismissalType.HIT_WICKET,
})

MATCH_TRANSITIONS = {
    MatchStatus.UPCOMING: {MatchStatus.ONGOING, MatchStatus.CANCELLED, MatchStatus.POSTPONED},
    MatchStatus.POSTPONED: {MatchStatus.UPCOMING, MatchStatus.CANCELLED},
    MatchStatus.ONGOING: {MatchStatus.FINISHED, MatchStatus.CANCELLED, MatchStatus.POSTPONED},
    MatchStatus.FINISHED: set(),
    MatchStatus.CANCELLED: set(),
}


def enum_value(enum_cls, value, field: str):
    """Normalise ``value`` to the plain string of a member of ``enum_cls``."""
    if value is None:
        return None
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(f'Invalid {field}: {value!r} (expected one of: {allowed})')


def _isoformat(value):
    return value.isoformat() if value else None


class University(db.Model):
    __tablename__ = 'university'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    location = db.Column(db.String(150), nullable=False)
    logo_url = db.Column(db.String(255), default='')
    contact_email = db.Column(db.String(120), nullable=False)
    contact_phone = db.Column(db.String(20), nullable=False)
    address = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    players = db.relationship('Player', backref='university', lazy=True)
    teams = db.relationship('Team', backref='university', lazy=True)

    EDITABLE_FIELDS = {
        'name': 'name',
        'location': 'location',
        'logoUrl': 'logo_url',
        'contactEmail': 'contact_email',
        'contactPhone': 'contact_phone',
        'address': 'address',
    }

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<University {self.id} {self.name}>"

    @staticmethod
    def validate_format(data: dict, partial: bool = False) -> list[str]:
        errors: list[str] = []
        required = ('name', 'location', 'contactEmail', 'contactPhone', 'address')
        if not partial:
            for field in required:
                if not str(data.get(field) or '').strip():
                    errors.append(f'{field} is required')

        email = data.get('contactEmail')
        if email and not re.match(EMAIL_PATTERN, email):
            errors.append('Please provide a valid contact email address')
        return errors

    def apply(self, data: dict) -> None:
        for key, attr in self.EDITABLE_FIELDS.items():
            if key in data and data[key] is not None:
                value = data[key]
                setattr(self, attr, value.strip() if isinstance(value, str) else value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'location': self.location,
            'logoUrl': self.logo_url,
            'contactEmail': self.contact_email,
            'contactPhone': self.contact_phone,
            'address': self.address,
            'createdAt': _isoformat(self.created_at),
            'updatedAt': _isoformat(self.updated_at),
        }


class Player(db.Model):
    """Registered players; also the login identity for captains and admins."""

    __tablename__ = 'player'

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.String(255), default='')
    age = db.Column(db.Integer)
    university_id = db.Column(db.Integer, db.ForeignKey('university.id'))
    jersey_number = db.Column(db.Integer)
    batting_style = db.Column(db.String(20), default=BattingStyle.RIGHT_HANDED.value)
    bowling_style = db.Column(db.String(20), default=BowlingStyle.NONE.value)
    phone = db.Column(db.String(20))
    role = db.Column(db.String(20), nullable=False, default=Role.PLAYER.value)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    registration_status = db.Column(db.String(20), nullable=False, default=RegistrationStatus.PENDING.value)
    created_at = db.Column(db.DateTime, default=current_time)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    __table_args__ = (
        db.UniqueConstraint('university_id', 'jersey_number', name='uq_player_university_jersey'),
    )

    memberships = db.relationship('TeamPlayer', back_populates='player', lazy=True, cascade='all, delete-orphan')

    PROFILE_FIELDS = {
        'firstName': 'first_name',
        'lastName': 'last_name',
        'imageUrl': 'image_url',
        'age': 'age',
        'universityId': 'university_id',
        'jerseyNumber': 'jersey_number',
        'battingStyle': 'batting_style',
        'bowlingStyle': 'bowling_style',
        'phone': 'phone',
    }

    def __init__(self, **kwargs):
        kwargs.setdefault('role', Role.PLAYER.value)
        kwargs.setdefault('is_active', True)
        kwargs.setdefault('is_verified', False)
        kwargs.setdefault('registration_status', RegistrationStatus.PENDING.value)
        super().__init__(**kwargs)

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Player {self.id} {self.email} role={self.role}>"

    @validates('email')
    def validate_email(self, key, value):
        value = (value or '').strip().lower()
        if not re.match(EMAIL_PATTERN, value):
            raise ValidationError('Please provide a valid email address')
        return value

    @validates('role')
    def validate_role(self, key, value):
        return enum_value(Role, value, 'role')

    @validates('batting_style')
    def validate_batting_style(self, key, value):
        return enum_value(BattingStyle, value, 'batting style')

    @validates('bowling_style')
    def validate_bowling_style(self, key, value):
        return enum_value(BowlingStyle, value, 'bowling style')

    @validates('phone')
    def validate_phone(self, key, value):
        value = str(value).strip() if value is not None else ''
        if not value:
            return None
        if not re.fullmatch(PHONE_PATTERN, value):
            raise ValidationError('Phone number must contain 7-15 digits and may include + or -')
        return value

    @validates('age', 'jersey_number')
    def validate_non_negative(self, key, value):
        if value is None:
            return None
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f'{key} must be a whole number')
        if value < 0:
            raise ValidationError(f'{key} must be non-negative')
        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not password or not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def profile_complete(self) -> bool:
        return (
            self.age is not None
            and self.university_id is not None
            and self.jersey_number is not None
            and bool(self.phone)
        )

    def refresh_registration_status(self) -> bool:
        """Promote to completed once the profile is complete. Never demotes."""
        if self.registration_status == RegistrationStatus.COMPLETED.value:
            return False
        if self.profile_complete:
            self.registration_status = RegistrationStatus.COMPLETED.value
            return True
        return False

    @staticmethod
    def validate_registration(data: dict) -> list[str]:
        """Validate registration payload format without touching the database."""
        errors: list[str] = []

        for field in ('firstName', 'lastName'):
            if not str(data.get(field) or '').strip():
                errors.append(f'{field} is required')

        email = str(data.get('email') or '').strip()
        if not email or not re.match(EMAIL_PATTERN, email):
            errors.append('Valid email required')

        password = data.get('password') or ''
        if len(password) < 6:
            errors.append('Password must be at least 6 characters long')

        phone = data.get('phone')
        if phone and not re.fullmatch(PHONE_PATTERN, str(phone).strip()):
            errors.append('Phone number must contain 7-15 digits and may include + or -')

        return errors

    def to_dict(self, summary: bool = False) -> dict:
        payload = {
            'id': self.id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'email': self.email,
            'role': self.role,
        }
        if summary:
            return payload
        payload.update({
            'imageUrl': self.image_url,
            'age': self.age,
            'universityId': self.university_id,
            'jerseyNumber': self.jersey_number,
            'battingStyle': self.batting_style,
            'bowlingStyle': self.bowling_style,
            'phone': self.phone,
            'isActive': self.is_active,
            'isVerified': self.is_verified,
            'registrationStatus': self.registration_status,
            'createdAt': _isoformat(self.created_at),
        })
        return payload


class Team(db.Model):
    __tablename__ = 'team'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    captain_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    university_id = db.Column(db.Integer, db.ForeignKey('university.id'), nullable=False)
    logo_url = db.Column(db.String(255), default='')
    points = db.Column(db.Integer, default=0, nullable=False)
    budget = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, default=current_time)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    captain = db.relationship('Player', foreign_keys=[captain_id])
    expenses = db.relationship(
        'TeamExpense',
        backref='team',
        lazy=True,
        cascade='all, delete-orphan',
        order_by='TeamExpense.id',
    )
    members = db.relationship('TeamPlayer', back_populates='team', lazy=True, cascade='all, delete-orphan')

    def __init__(self, **kwargs):
        kwargs.setdefault('points', 0)
        kwargs.setdefault('budget', 0.0)
        super().__init__(**kwargs)

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Team {self.id} {self.name}>"

    @validates('budget')
    def validate_budget(self, key, value):
        try:
            value = round(float(value), 2)
        except (TypeError, ValueError):
            raise ValidationError('Budget must be a number')
        if value < 0:
            raise ValidationError('Budget cannot be negative')
        return value

    @property
    def total_expenses(self) -> float:
        return round(sum(expense.amount for expense in self.expenses), 2)

    def add_expense(self, description: str, amount) -> 'TeamExpense':
        """Debit the budget; an expense above the current budget is rejected untouched."""
        amount = _positive_amount(amount, 'Expense amount must be positive')
        if not description or not str(description).strip():
            raise ValidationError('Expense description is required')
        if amount > self.budget:
            raise ValidationError('Insufficient budget for this expense')

        expense = TeamExpense(description=str(description).strip(), amount=amount, spent_at=current_time())
        self.expenses.append(expense)
        self.budget = self.budget - amount
        return expense

    def add_funds(self, amount) -> float:
        amount = _positive_amount(amount, 'Amount must be positive')
        self.budget = self.budget + amount
        return self.budget

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'captainId': self.captain_id,
            'universityId': self.university_id,
            'logoUrl': self.logo_url,
            'points': self.points,
            'budget': self.budget,
            'totalExpenses': self.total_expenses,
            'expenses': [expense.to_dict() for expense in self.expenses],
            'createdAt': _isoformat(self.created_at),
        }


def _positive_amount(amount, message: str) -> float:
    try:
        amount = round(float(amount), 2)
    except (TypeError, ValueError):
        raise ValidationError(message)
    if amount <= 0:
        raise ValidationError(message)
    return amount


class TeamExpense(db.Model):
    __tablename__ = 'team_expense'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    spent_at = db.Column(db.DateTime, default=current_time)

    def to_dict(self) -> dict:
        return {
            'description': self.description,
            'amount': self.amount,
            'date': _isoformat(self.spent_at),
        }


class TeamPlayer(db.Model):
    """Membership of a player in a team, with career counters for that team."""

    __tablename__ = 'team_player'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    full_score = db.Column(db.Integer, default=0)
    full_wickets = db.Column(db.Integer, default=0)
    full_catches = db.Column(db.Integer, default=0)
    allrounder_points = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=current_time)

    __table_args__ = (db.UniqueConstraint('team_id', 'player_id', name='uq_team_player'),)

    team = db.relationship('Team', back_populates='members')
    player = db.relationship('Player', back_populates='memberships')

    @validates('role')
    def validate_role(self, key, value):
        return enum_value(TeamRole, value, 'team role')

    def to_dict(self) -> dict:
        return {
            'teamId': self.team_id,
            'playerId': self.player_id,
            'role': self.role,
            'fullScore': self.full_score,
            'fullWickets': self.full_wickets,
            'fullCatches': self.full_catches,
        }


class TokenRecord(db.Model):
    """Persisted access/refresh credential. Invisible to lookups once expired."""

    __tablename__ = 'token_record'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False)
    token = db.Column(db.String(512), unique=True, nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    is_revoked = db.Column(db.Boolean, default=False, nullable=False)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
    device_id = db.Column(db.String(128))
    created_at = db.Column(db.DateTime, default=current_time)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    __table_args__ = (db.Index('ix_token_record_player_type', 'player_id', 'type'),)

    @validates('type')
    def validate_type(self, key, value):
        return enum_value(TokenType, value, 'token type')

    @classmethod
    def live(cls):
        """Query of records that are neither revoked nor past expiry."""
        return cls.query.filter(cls.is_revoked.is_(False), cls.expires_at > current_time())

    def device_info(self) -> dict:
        return {
            'ip': self.ip_address,
            'userAgent': self.user_agent,
            'deviceId': self.device_id,
        }


class OtpRecord(db.Model):
    __tablename__ = 'otp_record'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(12), nullable=False)
    type = db.Column(db.String(30), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    is_used = db.Column(db.Boolean, default=False, nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)

    __table_args__ = (
        db.Index('ix_otp_record_player_type', 'player_id', 'type'),
        db.Index('ix_otp_record_email_type', 'email', 'type'),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('is_used', False)
        kwargs.setdefault('attempts', 0)
        super().__init__(**kwargs)

    @validates('type')
    def validate_type(self, key, value):
        return enum_value(OtpType, value, 'OTP type')

    @validates('email')
    def validate_email(self, key, value):
        return (value or '').strip().lower()

    @classmethod
    def live(cls):
        return cls.query.filter(cls.is_used.is_(False), cls.expires_at > current_time())


class Match(db.Model):
    """A fixture between two teams. Written as one unit together with its innings."""

    __tablename__ = 'match'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(150), nullable=False)
    team1_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    team2_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    time = db.Column(db.String(10), nullable=False)
    location = db.Column(db.String(150), nullable=False)
    total_overs = db.Column(db.Integer, nullable=False, default=DEFAULT_TOTAL_OVERS)
    innings_per_team = db.Column(db.Integer, nullable=False, default=DEFAULT_INNINGS_PER_TEAM)
    toss_winner_id = db.Column(db.Integer, db.ForeignKey('team.id'))
    toss_decision = db.Column(db.String(10))
    current_innings_number = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(20), nullable=False, default=MatchStatus.UPCOMING.value)
    winner_team_id = db.Column(db.Integer, db.ForeignKey('team.id'))
    man_of_the_match_id = db.Column(db.Integer, db.ForeignKey('player.id'))
    is_timeout = db.Column(db.Boolean, default=False, nullable=False)
    is_drinks_break = db.Column(db.Boolean, default=False, nullable=False)
    is_lunch_break = db.Column(db.Boolean, default=False, nullable=False)
    is_powerplay = db.Column(db.Boolean, default=False, nullable=False)
    current_message = db.Column(db.String(255), default='')
    version_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    __mapper_args__ = {'version_id_col': version_id}

    team1 = db.relationship('Team', foreign_keys=[team1_id])
    team2 = db.relationship('Team', foreign_keys=[team2_id])
    winner = db.relationship('Team', foreign_keys=[winner_team_id])
    innings = db.relationship(
        'Innings',
        backref='match',
        lazy=True,
        cascade='all, delete-orphan',
        order_by='Innings.inning_number',
    )

    STATE_FLAGS = {
        'isTimeout': 'is_timeout',
        'isDrinkBreak': 'is_drinks_break',
        'isLunchBreak': 'is_lunch_break',
        'isPowerPlay': 'is_powerplay',
    }

    def __init__(self, **kwargs):
        kwargs.setdefault('total_overs', DEFAULT_TOTAL_OVERS)
        kwargs.setdefault('innings_per_team', DEFAULT_INNINGS_PER_TEAM)
        kwargs.setdefault('current_innings_number', 1)
        kwargs.setdefault('status', MatchStatus.UPCOMING.value)
        super().__init__(**kwargs)

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Match {self.id} {self.title} status={self.status}>"

    @validates('team1_id', 'team2_id')
    def validate_teams(self, key, value):
        other = self.team2_id if key == 'team1_id' else self.team1_id
        if value is not None and other is not None and int(value) == int(other):
            raise ValidationError('Teams in a match must be different')
        return value

    @validates('total_overs')
    def validate_total_overs(self, key, value):
        if value is None or int(value) < 1:
            raise ValidationError('Total overs must be at least 1')
        return int(value)

    @validates('innings_per_team')
    def validate_innings_per_team(self, key, value):
        if value is None or int(value) not in (1, 2):
            raise ValidationError('Innings per team must be 1 or 2')
        return int(value)

    @validates('status')
    def validate_status(self, key, value):
        return enum_value(MatchStatus, value, 'match status')

    @validates('toss_decision')
    def validate_toss_decision(self, key, value):
        return enum_value(TossDecision, value, 'toss decision')

    @property
    def total_innings(self) -> int:
        return self.innings_per_team * 2

    def involves(self, team_id) -> bool:
        return team_id in (self.team1_id, self.team2_id)

    def opponent_of(self, team_id):
        if team_id == self.team1_id:
            return self.team2_id
        if team_id == self.team2_id:
            return self.team1_id
        return None

    def get_innings(self, inning_number: int):
        for inning in self.innings:
            if inning.inning_number == inning_number:
                return inning
        return None

    @property
    def current_innings(self):
        return self.get_innings(self.current_innings_number)

    def total_extras(self, inning_number: int) -> int:
        inning = self.get_innings(inning_number)
        return inning.total_extras if inning else 0

    def team_total(self, team_id, before_inning: int | None = None) -> int:
        return sum(
            inning.runs
            for inning in self.innings
            if inning.batting_team_id == team_id
            and (before_inning is None or inning.inning_number < before_inning)
        )

    def target_for(self, inning) -> int | None:
        """Runs needed to win when ``inning`` is the final innings, else None."""
        if inning.inning_number != self.total_innings:
            return None
        opponent_runs = self.team_total(inning.bowling_team_id)
        earlier_runs = self.team_total(inning.batting_team_id, before_inning=inning.inning_number)
        return opponent_runs - earlier_runs + 1

    def transition_to(self, new_status) -> None:
        new_status = MatchStatus(enum_value(MatchStatus, new_status, 'match status'))
        current = MatchStatus(self.status)
        if new_status == current:
            return
        if new_status not in MATCH_TRANSITIONS[current]:
            raise InvalidStateError(f'Cannot move match from {current.value} to {new_status.value}')
        self.status = new_status.value

    def start_innings(self, inning_number: int, batting_team_id: int) -> 'Innings':
        bowling_team_id = self.opponent_of(batting_team_id)
        if bowling_team_id is None:
            raise ValidationError('Batting team is not playing in this match')
        inning = Innings(
            inning_number=inning_number,
            batting_team_id=batting_team_id,
            bowling_team_id=bowling_team_id,
            status=InningsStatus.IN_PROGRESS.value,
        )
        self.innings.append(inning)
        self.current_innings_number = inning_number
        return inning

    def settle_result(self) -> None:
        """Finish the match and pick the winner once the final innings is done."""
        final = self.get_innings(self.total_innings)
        if final is None or final.status != InningsStatus.COMPLETED.value:
            return
        team1_runs = self.team_total(self.team1_id)
        team2_runs = self.team_total(self.team2_id)
        if team1_runs > team2_runs:
            self.winner_team_id = self.team1_id
        elif team2_runs > team1_runs:
            self.winner_team_id = self.team2_id
        else:
            self.winner_team_id = None
        self.transition_to(MatchStatus.FINISHED)

    def state_dict(self) -> dict:
        payload = {key: getattr(self, attr) for key, attr in self.STATE_FLAGS.items()}
        payload['currentMessage'] = self.current_message or ''
        return payload

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'team1Id': self.team1_id,
            'team2Id': self.team2_id,
            'date': _isoformat(self.date),
            'time': self.time,
            'location': self.location,
            'matchFormat': {
                'totalOvers': self.total_overs,
                'inningsPerTeam': self.innings_per_team,
            },
            'tossWonBy': self.toss_winner_id,
            'tossDecision': self.toss_decision,
            'currentInningsNumber': self.current_innings_number,
            'innings': [inning.to_dict() for inning in self.innings],
            'status': self.status,
            'winnerTeamId': self.winner_team_id,
            'manOfTheMatch': self.man_of_the_match_id,
            'currentMatchState': self.state_dict(),
            'version': self.version_id,
        }


class Innings(db.Model):
    """One side's turn to bat. Owned by its match and never addressed on its own."""

    __tablename__ = 'innings'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id', ondelete='CASCADE'), nullable=False)
    inning_number = db.Column(db.Integer, nullable=False)
    batting_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    bowling_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    runs = db.Column(db.Integer, nullable=False, default=0)
    wickets = db.Column(db.Integer, nullable=False, default=0)
    overs = db.Column(db.Integer, nullable=False, default=0)
    balls_in_current_over = db.Column(db.Integer, nullable=False, default=0)
    wides = db.Column(db.Integer, nullable=False, default=0)
    no_balls = db.Column(db.Integer, nullable=False, default=0)
    byes = db.Column(db.Integer, nullable=False, default=0)
    leg_byes = db.Column(db.Integer, nullable=False, default=0)
    penalties = db.Column(db.Integer, nullable=False, default=0)
    current_batsmen = db.Column(db.JSON, default=list)
    current_bowler_id = db.Column(db.Integer, db.ForeignKey('player.id'))
    status = db.Column(db.String(20), nullable=False, default=InningsStatus.NOT_STARTED.value)

    __table_args__ = (db.UniqueConstraint('match_id', 'inning_number', name='uq_match_inning'),)

    _COUNTERS = (
        'runs', 'wickets', 'overs', 'balls_in_current_over',
        'wides', 'no_balls', 'byes', 'leg_byes', 'penalties',
    )

    def __init__(self, **kwargs):
        for field in self._COUNTERS:
            kwargs.setdefault(field, 0)
        kwargs.setdefault('current_batsmen', [])
        kwargs.setdefault('status', InningsStatus.NOT_STARTED.value)
        super().__init__(**kwargs)

    @validates('status')
    def validate_status(self, key, value):
        return enum_value(InningsStatus, value, 'innings status')

    @property
    def total_extras(self) -> int:
        return self.wides + self.no_balls + self.byes + self.leg_byes + self.penalties

    @property
    def legal_balls(self) -> int:
        return self.overs * BALLS_PER_OVER + self.balls_in_current_over

    @property
    def is_in_progress(self) -> bool:
        return self.status == InningsStatus.IN_PROGRESS.value

    def complete(self) -> None:
        self.status = InningsStatus.COMPLETED.value

    def apply_delivery(
        self,
        runs: int,
        extra_type: str | None,
        extra_runs: int,
        penalty_runs: int,
        is_wicket: bool,
        total_overs: int,
    ) -> bool:
        """Apply one delivery to the innings totals.

        Wides and no-balls cost one run plus any runs taken off them and do
        not advance the ball count. Byes and leg-byes are legal deliveries
        whose runs are credited to extras. Returns True when the delivery
        completed an over.
        """
        if not self.is_in_progress:
            raise InvalidStateError('Innings is not in progress')

        self.runs += runs

        if is_wicket:
            self.wickets = min(self.wickets + 1, MAX_WICKETS)
            if self.wickets >= MAX_WICKETS:
                self.complete()

        over_completed = False
        if extra_type in (ExtraType.WIDE.value, ExtraType.NO_BALL.value):
            illegal_runs = 1 + extra_runs
            if extra_type == ExtraType.WIDE.value:
                self.wides += illegal_runs
            else:
                self.no_balls += illegal_runs
            self.runs += illegal_runs
        else:
            if extra_type == ExtraType.BYE.value:
                self.byes += extra_runs
                self.runs += extra_runs
            elif extra_type == ExtraType.LEG_BYE.value:
                self.leg_byes += extra_runs
                self.runs += extra_runs
            self.balls_in_current_over += 1
            if self.balls_in_current_over == BALLS_PER_OVER:
                self.overs += 1
                self.balls_in_current_over = 0
                over_completed = True

        if penalty_runs:
            self.penalties += penalty_runs
            self.runs += penalty_runs

        if self.wickets >= MAX_WICKETS or self.overs >= total_overs:
            self.complete()

        return over_completed

    def update_crease(self, striker_id, non_striker_id=None, dismissed_id=None) -> None:
        batsmen = [pid for pid in (self.current_batsmen or []) if pid is not None]
        if non_striker_id is not None:
            batsmen = [striker_id, non_striker_id]
        elif striker_id not in batsmen:
            batsmen = (batsmen + [striker_id])[-2:]
        if dismissed_id is not None:
            batsmen = [pid for pid in batsmen if pid != dismissed_id]
        self.current_batsmen = batsmen

    def to_dict(self) -> dict:
        return {
            'inningNumber': self.inning_number,
            'battingTeamId': self.batting_team_id,
            'bowlingTeamId': self.bowling_team_id,
            'runs': self.runs,
            'wickets': self.wickets,
            'overs': self.overs,
            'ballsInCurrentOver': self.balls_in_current_over,
            'oversDisplay': f"{self.overs}.{self.balls_in_current_over}",
            'extras': {
                'wides': self.wides,
                'noBalls': self.no_balls,
                'byes': self.byes,
                'legByes': self.leg_byes,
                'penalties': self.penalties,
            },
            'totalExtras': self.total_extras,
            'currentBatsmen': list(self.current_batsmen or []),
            'currentBowler': self.current_bowler_id,
            'status': self.status,
        }


class BallEvent(db.Model):
    """Immutable ball-by-ball log entry."""

    __tablename__ = 'ball_event'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id', ondelete='CASCADE'), nullable=False)
    innings_number = db.Column(db.Integer, nullable=False, default=1)
    over_number = db.Column(db.Integer, nullable=False)
    ball_number = db.Column(db.Integer, nullable=False)
    attempt = db.Column(db.Integer, nullable=False, default=1)
    batsman_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    non_striker_id = db.Column(db.Integer, db.ForeignKey('player.id'))
    bowler_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    batting_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    bowling_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    runs_scored = db.Column(db.Integer, nullable=False, default=0)
    extra_runs = db.Column(db.Integer, nullable=False, default=0)
    extra_type = db.Column(db.String(10))
    penalty_runs = db.Column(db.Integer, nullable=False, default=0)
    is_wicket = db.Column(db.Boolean, nullable=False, default=False)
    dismissal_type = db.Column(db.String(30))
    player_out_id = db.Column(db.Integer, db.ForeignKey('player.id'))
    fielder_ids = db.Column(db.JSON, default=list)
    outcome = db.Column(db.String(10), nullable=False)
    commentary = db.Column(db.Text, default='')
    timestamp = db.Column(db.DateTime, default=current_time)

    __table_args__ = (
        db.UniqueConstraint(
            'match_id', 'innings_number', 'over_number', 'ball_number', 'attempt',
            name='uq_ball_event_delivery',
        ),
    )

    @validates('extra_type')
    def validate_extra_type(self, key, value):
        return enum_value(ExtraType, value, 'extra type')

    @validates('dismissal_type')
    def validate_dismissal_type(self, key, value):
        return enum_value(DismissalType, value, 'dismissal type')

    @validates('ball_number')
    def validate_ball_number(self, key, value):
        if value is None or not 1 <= int(value) <= BALLS_PER_OVER:
            raise ValidationError('Ball number must be between 1 and 6')
        return int(value)

    @validates('over_number')
    def validate_over_number(self, key, value):
        if value is None or int(value) < 0:
            raise ValidationError('Over number must be non-negative')
        return int(value)

    @property
    def is_legal(self) -> bool:
        return self.extra_type not in (ExtraType.WIDE.value, ExtraType.NO_BALL.value)

    @property
    def bowler_runs(self) -> int:
        """Runs charged to the bowler: bat runs plus wides and no-balls."""
        if self.is_legal:
            return self.runs_scored
        return self.runs_scored + 1 + self.extra_runs

    @staticmethod
    def derive_outcome(runs: int, extra_type: str | None, is_wicket: bool) -> str:
        if is_wicket:
            return BallOutcome.WICKET.value
        if extra_type:
            return BallOutcome(extra_type).value
        if runs == 6:
            return BallOutcome.SIX.value
        if runs == 4:
            return BallOutcome.FOUR.value
        # five off the bat (overthrows) is run, not hit, so it is tagged as running runs
        return {
            0: BallOutcome.DOT,
            1: BallOutcome.SINGLE,
            2: BallOutcome.DOUBLE,
        }.get(runs, BallOutcome.TRIPLE).value

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'matchId': self.match_id,
            'inningsNumber': self.innings_number,
            'overNumber': self.over_number,
            'ballNumber': self.ball_number,
            'attempt': self.attempt,
            'batsmanId': self.batsman_id,
            'nonStrikerId': self.non_striker_id,
            'bowlerId': self.bowler_id,
            'teamBattingId': self.batting_team_id,
            'teamBowlingId': self.bowling_team_id,
            'runsScored': self.runs_scored,
            'extraRuns': self.extra_runs,
            'extraType': self.extra_type,
            'penaltyRuns': self.penalty_runs,
            'isWicket': self.is_wicket,
            'dismissalType': self.dismissal_type,
            'playerOutId': self.player_out_id,
            'fielderIds': list(self.fielder_ids or []),
            'ballOutcome': self.outcome,
            'commentary': self.commentary or '',
            'timestamp': _isoformat(self.timestamp),
        }


class PlayerMatchStats(db.Model):
    """Per-player counters for one match. Rates are derived on read, never stored."""

    __tablename__ = 'player_match_stats'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id', ondelete='CASCADE'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    performance_types = db.Column(db.JSON, default=list)

    runs_scored = db.Column(db.Integer, nullable=False, default=0)
    balls_faced = db.Column(db.Integer, nullable=False, default=0)
    fours = db.Column(db.Integer, nullable=False, default=0)
    sixes = db.Column(db.Integer, nullable=False, default=0)
    is_out = db.Column(db.Boolean, nullable=False, default=False)
    dismissal_type = db.Column(db.String(30))
    dismissed_by_id = db.Column(db.Integer, db.ForeignKey('player.id'))
    caught_by_id = db.Column(db.Integer, db.ForeignKey('player.id'))

    balls_bowled = db.Column(db.Integer, nullable=False, default=0)
    runs_conceded = db.Column(db.Integer, nullable=False, default=0)
    wickets_taken = db.Column(db.Integer, nullable=False, default=0)
    maidens = db.Column(db.Integer, nullable=False, default=0)
    no_balls = db.Column(db.Integer, nullable=False, default=0)
    wides = db.Column(db.Integer, nullable=False, default=0)

    catches = db.Column(db.Integer, nullable=False, default=0)
    runouts = db.Column(db.Integer, nullable=False, default=0)
    stumpings = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=current_time)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    __table_args__ = (db.UniqueConstraint('match_id', 'player_id', name='uq_match_player_stats'),)

    _COUNTERS = (
        'runs_scored', 'balls_faced', 'fours', 'sixes',
        'balls_bowled', 'runs_conceded', 'wickets_taken', 'maidens', 'no_balls', 'wides',
        'catches', 'runouts', 'stumpings',
    )

    def __init__(self, **kwargs):
        for field in self._COUNTERS:
            kwargs.setdefault(field, 0)
        kwargs.setdefault('is_out', False)
        kwargs.setdefault('performance_types', [])
        super().__init__(**kwargs)

    def mark(self, performance: PerformanceType) -> None:
        kinds = set(self.performance_types or [])
        if performance.value not in kinds:
            kinds.add(performance.value)
            # reassign so the JSON column is flagged dirty
            self.performance_types = sorted(kinds)

    @property
    def strike_rate(self) -> float:
        if not self.balls_faced:
            return 0.0
        return round(self.runs_scored / self.balls_faced * 100, 2)

    @property
    def economy_rate(self) -> float:
        if not self.balls_bowled:
            return 0.0
        return round(self.runs_conceded / (self.balls_bowled / BALLS_PER_OVER), 2)

    @property
    def overs_bowled(self) -> str:
        return f"{self.balls_bowled // BALLS_PER_OVER}.{self.balls_bowled % BALLS_PER_OVER}"

    def to_dict(self) -> dict:
        return {
            'matchId': self.match_id,
            'playerId': self.player_id,
            'teamId': self.team_id,
            'performanceType': list(self.performance_types or []),
            'battingStats': {
                'runsScored': self.runs_scored,
                'ballsFaced': self.balls_faced,
                'fours': self.fours,
                'sixes': self.sixes,
                'isOut': self.is_out,
                'dismissalType': self.dismissal_type,
                'dismissedBy': self.dismissed_by_id,
                'caughtBy': self.caught_by_id,
                'strikeRate': self.strike_rate,
            },
            'bowlingStats': {
                'oversBowled': self.overs_bowled,
                'runsConceded': self.runs_conceded,
                'wicketsTaken': self.wickets_taken,
                'maidens': self.maidens,
                'noBalls': self.no_balls,
                'wides': self.wides,
                'economyRate': self.economy_rate,
            },
            'fieldingStats': {
                'catches': self.catches,
                'runouts': self.runouts,
                'stumpings': self.stumpings,
            },
        }


def ensure_admin(email: str, password: str, first_name: str = 'Tournament', last_name: str = 'Admin') -> Player:
    """Create (or promote) the administrator account used for university and match management."""
    admin = Player.query.filter_by(email=email.strip().lower()).first()
    if not admin:
        admin = Player(
            first_name=first_name,
            last_name=last_name,
            email=email,
            role=Role.ADMIN.value,
            is_verified=True,
        )
        admin.set_password(password)
        db.session.add(admin)
    else:
        admin.role = Role.ADMIN.value
        admin.is_verified = True
        admin.is_active = True
    db.session.commit()
    return admin
