"""
Match lifecycle and ball-by-ball scoring.

A match and its innings are written as one unit. Every write bumps the
match's version counter, so two deliveries recorded against the same
match at the same time cannot both apply to stale totals: the loser gets
a StaleDataError on commit and is retried from a fresh read.
"""
import logging
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from errors import ApiError, ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import (
    db,
    current_time,
    BallEvent,
    DismissalType,
    ExtraType,
    InningsStatus,
    Match,
    MatchStatus,
    Player,
    Team,
    TossDecision,
    enum_value,
)
from services import stats

logger = logging.getLogger(__name__)


def _int_field(data: dict, key: str, default=None, minimum: int | None = 0) -> int | None:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValidationError(f'{key} must be a whole number')
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{key} must be a whole number')
    if minimum is not None and value < minimum:
        raise ValidationError(f'{key} must be at least {minimum}')
    return value


def _id_list(values) -> list[int]:
    try:
        return [int(value) for value in (values or []) if value is not None]
    except (TypeError, ValueError):
        raise ValidationError('Player ids must be whole numbers')


def get_match(match_id: int) -> Match:
    match = db.session.get(Match, match_id)
    if not match:
        raise NotFoundError('Match not found')
    return match


def _load_match(match_id: int) -> Match:
    """Load the match with its row re-read, so a retry sees the winner's version."""
    match = db.session.get(Match, match_id, populate_existing=True)
    if not match:
        raise NotFoundError('Match not found')
    return match


def create_match(data: dict) -> Match:
    errors = []
    for field in ('title', 'team1Id', 'team2Id', 'date', 'time', 'location'):
        if data.get(field) in (None, ''):
            errors.append(f'{field} is required')
    if errors:
        raise ValidationError('Validation failed', errors=errors)

    team1_id = _int_field(data, 'team1Id', minimum=1)
    team2_id = _int_field(data, 'team2Id', minimum=1)
    for team_id in (team1_id, team2_id):
        if not db.session.get(Team, team_id):
            raise ValidationError(f'Team {team_id} does not exist')

    try:
        match_date = datetime.strptime(str(data['date']), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError('Date must be in YYYY-MM-DD format')

    match_format = data.get('matchFormat') or {}
    match = Match(
        title=str(data['title']).strip(),
        team1_id=team1_id,
        team2_id=team2_id,
        date=match_date,
        time=str(data['time']).strip(),
        location=str(data['location']).strip(),
        total_overs=_int_field(match_format, 'totalOvers', default=20, minimum=1),
        innings_per_team=_int_field(match_format, 'inningsPerTeam', default=1, minimum=1),
    )
    db.session.add(match)
    db.session.commit()
    logger.info("Match %s created: %s", match.id, match.title)
    return match


def start_match(match_id: int, data: dict) -> Match:
    """Record the toss, open the first innings and move the match to ongoing."""
    match = get_match(match_id)
    if match.status != MatchStatus.UPCOMING.value:
        raise InvalidStateError('Only upcoming matches can be started')

    toss_winner_id = _int_field(data, 'tossWonBy', minimum=1)
    if toss_winner_id is None or not match.involves(toss_winner_id):
        raise ValidationError('Toss winner must be one of the two teams')
    decision = enum_value(TossDecision, data.get('tossDecision'), 'toss decision')
    if decision is None:
        raise ValidationError('tossDecision is required')

    match.toss_winner_id = toss_winner_id
    match.toss_decision = decision
    batting_team_id = toss_winner_id if decision == TossDecision.BAT.value else match.opponent_of(toss_winner_id)

    match.transition_to(MatchStatus.ONGOING)
    inning = match.start_innings(1, batting_team_id)
    _open_crease(inning, data)
    db.session.commit()
    logger.info("Match %s started, team %s batting first", match.id, batting_team_id)
    return match


def _open_crease(inning, data: dict) -> None:
    openers = [pid for pid in (data.get('openingBatsmen') or []) if pid is not None]
    if len(openers) > 2:
        raise ValidationError('At most two batsmen can be at the crease')
    inning.current_batsmen = _id_list(openers)
    if data.get('openingBowler') is not None:
        inning.current_bowler_id = _int_field(data, 'openingBowler', minimum=1)


def start_next_innings(match_id: int, data: dict | None = None) -> Match:
    data = data or {}
    match = get_match(match_id)
    if match.status != MatchStatus.ONGOING.value:
        raise InvalidStateError('Match is not in progress')

    previous = match.current_innings
    if previous is None or previous.status != InningsStatus.COMPLETED.value:
        raise InvalidStateError('Current innings is still in progress')
    next_number = match.current_innings_number + 1
    if next_number > match.total_innings:
        raise InvalidStateError('All innings have been played')

    batting_team_id = _int_field(data, 'battingTeamId', default=previous.bowling_team_id, minimum=1)
    inning = match.start_innings(next_number, batting_team_id)
    _open_crease(inning, data)
    db.session.commit()
    logger.info("Match %s innings %s started", match.id, next_number)
    return match


def end_innings(match_id: int) -> Match:
    """Close the current innings early, e.g. on a declaration."""
    match = get_match(match_id)
    inning = match.current_innings
    if inning is None or not inning.is_in_progress:
        raise InvalidStateError('Innings is not in progress')
    inning.complete()
    match.settle_result()
    db.session.commit()
    return match


def _parse_delivery(data: dict) -> dict:
    extra_type = enum_value(ExtraType, data.get('extraType') or None, 'extra type')
    flagged = [
        flag_type for key, flag_type in (('isWide', ExtraType.WIDE.value), ('isNoBall', ExtraType.NO_BALL.value))
        if data.get(key)
    ]
    contradictory = len(flagged) > 1 or (extra_type is not None and bool(flagged) and flagged[0] != extra_type)
    if extra_type is None and flagged:
        extra_type = flagged[0]

    dismissal_type = enum_value(DismissalType, data.get('dismissalType') or None, 'dismissal type')
    is_wicket = bool(data.get('isWicket')) or dismissal_type is not None

    delivery = {
        'over_number': _int_field(data, 'overNumber'),
        'ball_number': _int_field(data, 'ballNumber', minimum=1),
        'attempt': _int_field(data, 'attempt', default=1, minimum=1),
        'batsman_id': _int_field(data, 'batsmanId', minimum=1),
        'non_striker_id': _int_field(data, 'nonStrikerId', minimum=1),
        'bowler_id': _int_field(data, 'bowlerId', minimum=1),
        'runs_scored': _int_field(data, 'runs', default=_int_field(data, 'runsScored', default=0)),
        'extra_runs': _int_field(data, 'extraRuns', default=0),
        'extra_type': extra_type,
        'penalty_runs': _int_field(data, 'penaltyRuns', default=0),
        'is_wicket': is_wicket,
        'dismissal_type': dismissal_type,
        'player_out_id': _int_field(data, 'playerOutId', minimum=1),
        'fielder_ids': _id_list(data.get('fielderIds')),
        'commentary': str(data.get('commentary') or ''),
    }

    errors = [
        f'{key} is required'
        for key in ('overNumber', 'ballNumber', 'batsmanId', 'bowlerId')
        if data.get(key) is None
    ]
    if contradictory:
        errors.append('extraType does not match isWide/isNoBall')
    if extra_type is None and delivery['extra_runs']:
        errors.append('extraRuns require an extraType')
    if delivery['runs_scored'] is not None and delivery['runs_scored'] > 7:
        errors.append('runs off the bat cannot exceed 7')
    if extra_type == ExtraType.WIDE.value and delivery['runs_scored']:
        errors.append('A wide cannot have runs off the bat')
    if extra_type in (ExtraType.BYE.value, ExtraType.LEG_BYE.value) and delivery['runs_scored']:
        errors.append('Byes and leg-byes cannot have runs off the bat')
    if delivery['batsman_id'] is not None and delivery['batsman_id'] == delivery['bowler_id']:
        errors.append('Batsman and bowler must be different players')
    if errors:
        raise ValidationError('Invalid ball data', errors=errors)
    return delivery


def _check_sequence(inning, ball: BallEvent) -> None:
    expected_over = inning.overs
    expected_ball = inning.balls_in_current_over + 1
    if (ball.over_number, ball.ball_number) != (expected_over, expected_ball):
        raise ValidationError(
            f'Out of sequence delivery: expected over {expected_over} ball {expected_ball}, '
            f'got over {ball.over_number} ball {ball.ball_number}'
        )

    earlier = BallEvent.query.filter(
        BallEvent.match_id == ball.match_id,
        BallEvent.innings_number == ball.innings_number,
        BallEvent.over_number == ball.over_number,
        BallEvent.ball_number == ball.ball_number,
        BallEvent.id != ball.id,
    ).count()
    if ball.attempt != earlier + 1:
        raise ValidationError(f'Expected attempt {earlier + 1} for this delivery, got {ball.attempt}')


def _require_players(delivery: dict) -> None:
    ids = {
        delivery[key]
        for key in ('batsman_id', 'non_striker_id', 'bowler_id', 'player_out_id')
        if delivery[key] is not None
    }
    ids.update(delivery['fielder_ids'])
    known = {player.id for player in Player.query.filter(Player.id.in_(ids))}
    missing = sorted(ids - known)
    if missing:
        raise ValidationError(
            'Invalid ball data',
            errors=[f'Player {player_id} does not exist' for player_id in missing],
        )


def _already_recorded(match_id: int, ball: BallEvent) -> bool:
    return BallEvent.query.filter_by(
        match_id=match_id,
        innings_number=ball.innings_number,
        over_number=ball.over_number,
        ball_number=ball.ball_number,
        attempt=ball.attempt,
    ).first() is not None


def _close_if_done(match: Match, inning) -> None:
    target = match.target_for(inning)
    if target is not None and inning.runs >= target:
        inning.complete()
    if inning.status == InningsStatus.COMPLETED.value:
        logger.info("Match %s innings %s completed at %s/%s", match.id, inning.inning_number, inning.runs, inning.wickets)
        match.settle_result()


def _apply_ball(match_id: int, delivery: dict) -> BallEvent:
    match = _load_match(match_id)
    if match.status != MatchStatus.ONGOING.value:
        raise InvalidStateError('Match is not in progress')

    inning = match.current_innings
    if inning is None:
        raise NotFoundError('Current innings not found')
    if not inning.is_in_progress:
        raise InvalidStateError('Innings is not in progress')

    _require_players(delivery)
    ball = BallEvent(
        match_id=match.id,
        innings_number=inning.inning_number,
        batting_team_id=inning.batting_team_id,
        bowling_team_id=inning.bowling_team_id,
        outcome=BallEvent.derive_outcome(delivery['runs_scored'], delivery['extra_type'], delivery['is_wicket']),
        **delivery,
    )
    db.session.add(ball)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        if _already_recorded(match_id, ball):
            raise ConflictError('This delivery has already been recorded')
        raise ValidationError('Ball data references a record that does not exist')

    if current_app.config.get('ENFORCE_BALL_SEQUENCE', True):
        _check_sequence(inning, ball)

    over_completed = inning.apply_delivery(
        runs=ball.runs_scored,
        extra_type=ball.extra_type,
        extra_runs=ball.extra_runs,
        penalty_runs=ball.penalty_runs,
        is_wicket=ball.is_wicket,
        total_overs=match.total_overs,
    )
    inning.current_bowler_id = ball.bowler_id
    inning.update_crease(
        ball.batsman_id,
        ball.non_striker_id,
        dismissed_id=(ball.player_out_id or ball.batsman_id) if ball.is_wicket else None,
    )

    stats.apply_ball(ball, over_completed)
    _close_if_done(match, inning)
    # dirty the match row so the version check covers innings-only changes
    match.updated_at = current_time()
    return ball


def record_ball(match_id: int, data: dict) -> BallEvent:
    """Validate and apply one delivery, its log entry and its stats atomically."""
    delivery = _parse_delivery(data)
    retries = max(1, int(current_app.config.get('BALL_RECORD_MAX_RETRIES', 3)))

    for attempt in range(1, retries + 1):
        try:
            ball = _apply_ball(match_id, delivery)
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            logger.warning("Concurrent update on match %s, retry %d/%d", match_id, attempt, retries)
            continue
        except ApiError:
            db.session.rollback()
            raise
        logger.info(
            "Recorded ball %s.%s (attempt %s) for match %s: %s",
            ball.over_number, ball.ball_number, ball.attempt, match_id, ball.outcome,
        )
        return ball

    raise ConflictError('Match was updated concurrently, please retry')


def update_state(match_id: int, data: dict) -> Match:
    match = get_match(match_id)
    for key, attr in Match.STATE_FLAGS.items():
        if key in data:
            setattr(match, attr, bool(data[key]))
    if 'currentMessage' in data:
        match.current_message = str(data['currentMessage'] or '')[:255]
    db.session.commit()
    return match


def set_status(match_id: int, status: str) -> Match:
    match = get_match(match_id)
    if status == MatchStatus.FINISHED.value:
        raise InvalidStateError('A match finishes when its final innings is completed')
    if status == MatchStatus.ONGOING.value:
        raise InvalidStateError('Use the start endpoint to begin a match')
    match.transition_to(status)
    db.session.commit()
    logger.info("Match %s status set to %s", match.id, match.status)
    return match


def set_man_of_the_match(match_id: int, player_id) -> Match:
    match = get_match(match_id)
    if match.status != MatchStatus.FINISHED.value:
        raise InvalidStateError('Man of the match can only be named for a finished match')
    player_id = _int_field({'playerId': player_id}, 'playerId', minimum=1)
    if player_id is None or not db.session.get(Player, player_id):
        raise ValidationError('Player does not exist')
    match.man_of_the_match_id = player_id
    db.session.commit()
    return match


def ball_log(match_id: int, innings_number: int | None = None) -> list[BallEvent]:
    get_match(match_id)
    query = BallEvent.query.filter_by(match_id=match_id)
    if innings_number is not None:
        query = query.filter_by(innings_number=innings_number)
    return query.order_by(
        BallEvent.innings_number, BallEvent.over_number, BallEvent.ball_number, BallEvent.attempt
    ).all()


def scorecard(match_id: int) -> dict:
    match = get_match(match_id)
    return {
        'match': match.to_dict(),
        'playerStats': [row.to_dict() for row in stats.match_stats(match.id)],
    }
