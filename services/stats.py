"""Per-player, per-match counters derived from accepted deliveries."""
import logging

from models import (
    db,
    BallEvent,
    BOWLER_CREDITED_DISMISSALS,
    DismissalType,
    ExtraType,
    PerformanceType,
    PlayerMatchStats,
)

logger = logging.getLogger(__name__)


def stats_for(match_id: int, player_id: int, team_id: int) -> PlayerMatchStats:
    """Fetch the stats row for a player in a match, creating it on first use."""
    stats = PlayerMatchStats.query.filter_by(match_id=match_id, player_id=player_id).first()
    if stats is None:
        stats = PlayerMatchStats(match_id=match_id, player_id=player_id, team_id=team_id)
        db.session.add(stats)
    return stats


def _dismissal(ball: BallEvent) -> DismissalType | None:
    if not ball.is_wicket or not ball.dismissal_type:
        return None
    return DismissalType(ball.dismissal_type)


def _record_batting(ball: BallEvent, dismissal: DismissalType | None) -> None:
    striker = stats_for(ball.match_id, ball.batsman_id, ball.batting_team_id)
    striker.mark(PerformanceType.BATTING)
    striker.runs_scored += ball.runs_scored
    if ball.extra_type != ExtraType.WIDE.value:
        striker.balls_faced += 1
    if ball.runs_scored == 4:
        striker.fours += 1
    elif ball.runs_scored == 6:
        striker.sixes += 1

    if not ball.is_wicket:
        return

    out = stats_for(ball.match_id, ball.player_out_id or ball.batsman_id, ball.batting_team_id)
    out.mark(PerformanceType.BATTING)
    out.is_out = True
    out.dismissal_type = dismissal.value if dismissal else None
    if dismissal in BOWLER_CREDITED_DISMISSALS:
        out.dismissed_by_id = ball.bowler_id
    if dismissal == DismissalType.CAUGHT and ball.fielder_ids:
        out.caught_by_id = ball.fielder_ids[0]


def _is_maiden(ball: BallEvent) -> bool:
    over = BallEvent.query.filter_by(
        match_id=ball.match_id,
        innings_number=ball.innings_number,
        over_number=ball.over_number,
    ).all()
    if any(event.bowler_id != ball.bowler_id for event in over):
        return False
    return sum(event.bowler_runs for event in over) == 0


def _record_bowling(ball: BallEvent, dismissal: DismissalType | None, over_completed: bool) -> None:
    bowler = stats_for(ball.match_id, ball.bowler_id, ball.bowling_team_id)
    bowler.mark(PerformanceType.BOWLING)
    bowler.runs_conceded += ball.bowler_runs

    if ball.extra_type == ExtraType.WIDE.value:
        bowler.wides += 1
    elif ball.extra_type == ExtraType.NO_BALL.value:
        bowler.no_balls += 1
    else:
        bowler.balls_bowled += 1

    if dismissal in BOWLER_CREDITED_DISMISSALS:
        bowler.wickets_taken += 1

    if over_completed and _is_maiden(ball):
        bowler.maidens += 1


def _record_fielding(ball: BallEvent, dismissal: DismissalType | None) -> None:
    fielders = [fid for fid in (ball.fielder_ids or []) if fid is not None]
    if not fielders:
        return

    if dismissal == DismissalType.CAUGHT:
        credited = [(fielders[0], 'catches')]
    elif dismissal == DismissalType.RUN_OUT:
        credited = [(fid, 'runouts') for fid in fielders]
    elif dismissal == DismissalType.STUMPED:
        credited = [(fielders[0], 'stumpings')]
    else:
        return

    for fielder_id, counter in credited:
        fielder = stats_for(ball.match_id, fielder_id, ball.bowling_team_id)
        fielder.mark(PerformanceType.FIELDING)
        setattr(fielder, counter, getattr(fielder, counter) + 1)


def apply_ball(ball: BallEvent, over_completed: bool = False) -> None:
    """Fold one accepted delivery into the batsman, bowler and fielder rows.

    Runs inside the caller's transaction so a rejected delivery never
    leaves partial counters behind.
    """
    dismissal = _dismissal(ball)
    _record_batting(ball, dismissal)
    _record_bowling(ball, dismissal, over_completed)
    _record_fielding(ball, dismissal)
    logger.debug("Stats updated for ball %s.%s of match %s", ball.over_number, ball.ball_number, ball.match_id)


def match_stats(match_id: int) -> list[PlayerMatchStats]:
    return (
        PlayerMatchStats.query
        .filter_by(match_id=match_id)
        .order_by(PlayerMatchStats.team_id, PlayerMatchStats.id)
        .all()
    )


def player_stats(match_id: int, player_id: int) -> PlayerMatchStats | None:
    return PlayerMatchStats.query.filter_by(match_id=match_id, player_id=player_id).first()
