"""
Tests for the match lifecycle and ball-by-ball scoring state machine
"""
import pytest
from datetime import date
from sqlalchemy import text

from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import db, BallEvent, InningsStatus, Match, MatchStatus, PlayerMatchStats
from services import scoring


def delivery(squad, over, ball, **extra):
    data = {
        'overNumber': over,
        'ballNumber': ball,
        'batsmanId': squad['striker'].id,
        'nonStrikerId': squad['non_striker'].id,
        'bowlerId': squad['bowler'].id,
        'runs': 0,
    }
    data.update(extra)
    return data


def bowl_over(match_id, squad, over, runs=0, **extra):
    for ball in range(1, 7):
        scoring.record_ball(match_id, delivery(squad, over, ball, runs=runs, **extra))


def innings(match_id, number=None):
    match = db.session.get(Match, match_id)
    return match.get_innings(number) if number else match.current_innings


@pytest.fixture
def one_over_match(teams, squad):
    """A started single-over match so innings finish quickly"""
    team_a, team_b = teams
    match = scoring.create_match({
        'title': 'Super Over',
        'team1Id': team_a.id,
        'team2Id': team_b.id,
        'date': '2026-04-01',
        'time': '10:00',
        'location': 'Nets',
        'matchFormat': {'totalOvers': 1, 'inningsPerTeam': 1},
    })
    return scoring.start_match(match.id, {'tossWonBy': team_a.id, 'tossDecision': 'bat'})


class TestMatchSetup:
    """Tests for scheduling and starting matches"""

    def test_teams_must_differ(self, teams):
        team_a, _ = teams
        with pytest.raises(ValidationError):
            Match(
                title='Mirror',
                team1_id=team_a.id,
                team2_id=team_a.id,
                date=date(2026, 1, 1),
                time='10:00',
                location='Anywhere',
            )

    def test_create_match_rejects_same_team(self, teams):
        team_a, _ = teams
        with pytest.raises(ValidationError):
            scoring.create_match({
                'title': 'Mirror', 'team1Id': team_a.id, 'team2Id': team_a.id,
                'date': '2026-01-01', 'time': '10:00', 'location': 'Anywhere',
            })

    def test_create_match_defaults_to_t20(self, teams):
        team_a, team_b = teams
        match = scoring.create_match({
            'title': 'Final', 'team1Id': team_a.id, 'team2Id': team_b.id,
            'date': '2026-05-05', 'time': '15:00', 'location': 'Stadium',
        })
        assert match.total_overs == 20
        assert match.innings_per_team == 1
        assert match.status == MatchStatus.UPCOMING.value

    def test_create_match_rejects_bad_date(self, teams):
        team_a, team_b = teams
        with pytest.raises(ValidationError):
            scoring.create_match({
                'title': 'Final', 'team1Id': team_a.id, 'team2Id': team_b.id,
                'date': '05/05/2026', 'time': '15:00', 'location': 'Stadium',
            })

    def test_start_match_opens_first_innings(self, live_match, teams, squad):
        team_a, team_b = teams
        inning = live_match.current_innings

        assert live_match.status == MatchStatus.ONGOING.value
        assert inning.inning_number == 1
        assert inning.status == InningsStatus.IN_PROGRESS.value
        assert inning.batting_team_id == team_a.id
        assert inning.bowling_team_id == team_b.id
        assert inning.current_batsmen == [squad['striker'].id, squad['non_striker'].id]

    def test_toss_winner_choosing_to_bowl(self, scheduled_match, teams):
        team_a, team_b = teams
        match = scoring.start_match(scheduled_match.id, {'tossWonBy': team_a.id, 'tossDecision': 'bowl'})
        assert match.current_innings.batting_team_id == team_b.id

    def test_toss_winner_must_play(self, scheduled_match):
        with pytest.raises(ValidationError):
            scoring.start_match(scheduled_match.id, {'tossWonBy': 999, 'tossDecision': 'bat'})

    def test_cannot_start_twice(self, live_match, teams):
        team_a, _ = teams
        with pytest.raises(InvalidStateError):
            scoring.start_match(live_match.id, {'tossWonBy': team_a.id, 'tossDecision': 'bat'})


class TestRecordBall:
    """Tests for applying deliveries to the innings"""

    def test_runs_off_the_bat(self, live_match, squad):
        ball = scoring.record_ball(live_match.id, delivery(squad, 0, 1, runs=4))

        inning = innings(live_match.id)
        assert inning.runs == 4
        assert inning.balls_in_current_over == 1
        assert ball.outcome == 'four'

    def test_wide_adds_one_and_does_not_advance(self, live_match, squad):
        ball = scoring.record_ball(live_match.id, delivery(squad, 0, 1, extraType='wide'))

        inning = innings(live_match.id)
        assert inning.runs == 1
        assert inning.wides == 1
        assert inning.total_extras == 1
        assert inning.balls_in_current_over == 0
        assert ball.outcome == 'wide'

    def test_no_ball_adds_one_and_does_not_advance(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, isNoBall=True))

        inning = innings(live_match.id)
        assert inning.runs == 1
        assert inning.no_balls == 1
        assert inning.balls_in_current_over == 0

    def test_no_ball_with_runs_off_the_bat(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, extraType='no-ball', runs=4))

        inning = innings(live_match.id)
        assert inning.runs == 5
        assert inning.no_balls == 1

    def test_byes_are_legal_extras(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, extraType='bye', extraRuns=2))

        inning = innings(live_match.id)
        assert inning.runs == 2
        assert inning.byes == 2
        assert inning.balls_in_current_over == 1

    def test_penalty_runs(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, penaltyRuns=5))

        inning = innings(live_match.id)
        assert inning.penalties == 5
        assert inning.runs == 5
        assert live_match.total_extras(1) == 5

    def test_rebowled_delivery_uses_next_attempt(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, extraType='wide'))
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, attempt=2, runs=1))

        inning = innings(live_match.id)
        assert inning.runs == 2
        assert inning.balls_in_current_over == 1

    def test_six_legal_balls_complete_an_over(self, live_match, squad):
        bowl_over(live_match.id, squad, 0, runs=1)

        inning = innings(live_match.id)
        assert inning.overs == 1
        assert inning.balls_in_current_over == 0
        assert inning.runs == 6
        assert inning.current_bowler_id == squad['bowler'].id

    def test_tenth_wicket_completes_innings(self, live_match, squad):
        inning = innings(live_match.id)
        inning.wickets = 9
        db.session.commit()

        scoring.record_ball(live_match.id, delivery(squad, 0, 1, isWicket=True, dismissalType='bowled'))

        inning = innings(live_match.id)
        assert inning.wickets == 10
        assert inning.status == InningsStatus.COMPLETED.value
        assert inning.overs == 0

    def test_wicket_removes_batsman_from_crease(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, dismissalType='lbw'))

        inning = innings(live_match.id)
        assert inning.wickets == 1
        assert inning.current_batsmen == [squad['non_striker'].id]

    def test_completed_overs_complete_innings(self, one_over_match, squad):
        bowl_over(one_over_match.id, squad, 0)

        assert innings(one_over_match.id).status == InningsStatus.COMPLETED.value

    def test_ball_after_innings_completed_rejected(self, one_over_match, squad):
        bowl_over(one_over_match.id, squad, 0)

        with pytest.raises(InvalidStateError):
            scoring.record_ball(one_over_match.id, delivery(squad, 1, 1))

    def test_ball_before_start_rejected(self, scheduled_match, squad):
        with pytest.raises(InvalidStateError):
            scoring.record_ball(scheduled_match.id, delivery(squad, 0, 1))

    def test_unknown_match(self, flask_app, squad):
        with pytest.raises(NotFoundError):
            scoring.record_ball(4242, delivery(squad, 0, 1))

    @pytest.mark.parametrize('overrides', [
        {'extraType': 'wide', 'runs': 2},
        {'extraType': 'leg-bye', 'runs': 1},
        {'extraType': 'beamer'},
        {'dismissalType': 'hit the ball twice'},
        {'ballNumber': 7},
        {'runs': -1},
        {'extraRuns': 3},
        {'isWide': True, 'extraType': 'bye'},
        {'isNoBall': True, 'extraType': 'wide'},
        {'isWide': True, 'isNoBall': True},
    ])
    def test_invalid_ball_data(self, live_match, squad, overrides):
        with pytest.raises(ValidationError):
            scoring.record_ball(live_match.id, delivery(squad, 0, 1, **overrides))
        assert BallEvent.query.count() == 0

    def test_extra_runs_without_type_leave_totals_untouched(self, live_match, squad):
        with pytest.raises(ValidationError) as excinfo:
            scoring.record_ball(live_match.id, delivery(squad, 0, 1, extraRuns=3))
        assert 'extraRuns require an extraType' in excinfo.value.errors

        inning = innings(live_match.id)
        assert inning.runs == 0
        assert inning.total_extras == 0

    def test_wide_flag_agreeing_with_extra_type(self, live_match, squad):
        ball = scoring.record_ball(live_match.id, delivery(squad, 0, 1, isWide=True, extraType='wide', extraRuns=1))
        assert ball.extra_type == 'wide'
        assert innings(live_match.id).runs == 2

    @pytest.mark.parametrize('field', ['bowlerId', 'nonStrikerId', 'playerOutId', 'fielderIds'])
    def test_unknown_player_rejected(self, live_match, squad, field):
        value = [99999] if field == 'fielderIds' else 99999
        extra = {'dismissalType': 'caught'} if field in ('playerOutId', 'fielderIds') else {}

        with pytest.raises(ValidationError) as excinfo:
            scoring.record_ball(live_match.id, delivery(squad, 0, 1, **{field: value}, **extra))

        assert excinfo.value.errors == ['Player 99999 does not exist']
        assert BallEvent.query.count() == 0
        assert PlayerMatchStats.query.count() == 0

    def test_replay_is_still_a_conflict(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1))
        with pytest.raises(ConflictError) as excinfo:
            scoring.record_ball(live_match.id, delivery(squad, 0, 1))
        assert excinfo.value.message == 'This delivery has already been recorded'


class TestReplayAndOrdering:
    """Tests for duplicate protection and sequence enforcement"""

    def test_duplicate_delivery_conflicts_without_double_counting(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, runs=2))

        with pytest.raises(ConflictError):
            scoring.record_ball(live_match.id, delivery(squad, 0, 1, runs=2))

        inning = innings(live_match.id)
        assert inning.runs == 2
        assert inning.balls_in_current_over == 1
        assert BallEvent.query.count() == 1
        striker = PlayerMatchStats.query.filter_by(match_id=live_match.id, player_id=squad['striker'].id).one()
        assert striker.runs_scored == 2
        assert striker.balls_faced == 1

    def test_out_of_sequence_ball_rejected(self, live_match, squad):
        with pytest.raises(ValidationError):
            scoring.record_ball(live_match.id, delivery(squad, 0, 3))
        assert BallEvent.query.count() == 0

    def test_skipped_attempt_rejected(self, live_match, squad):
        with pytest.raises(ValidationError):
            scoring.record_ball(live_match.id, delivery(squad, 0, 1, attempt=2))

    def test_sequence_check_can_be_disabled(self, live_match, squad, flask_app):
        flask_app.config['ENFORCE_BALL_SEQUENCE'] = False

        scoring.record_ball(live_match.id, delivery(squad, 3, 4, runs=1))

        assert innings(live_match.id).balls_in_current_over == 1


class TestConcurrency:
    """Optimistic version checks on the match row"""

    def _racing_loader(self, monkeypatch, times):
        original = scoring._load_match
        calls = {'n': 0}

        def racing_load(match_id):
            match = original(match_id)
            calls['n'] += 1
            if calls['n'] <= times:
                # another writer commits between our read and our write
                db.session.execute(
                    text('UPDATE match SET version_id = version_id + 1 WHERE id = :id'),
                    {'id': match_id},
                )
            return match

        monkeypatch.setattr(scoring, '_load_match', racing_load)
        return calls

    def test_stale_write_is_retried(self, live_match, squad, monkeypatch):
        calls = self._racing_loader(monkeypatch, times=1)

        scoring.record_ball(live_match.id, delivery(squad, 0, 1, runs=3))

        assert calls['n'] == 2
        assert innings(live_match.id).runs == 3
        assert BallEvent.query.count() == 1

    def test_gives_up_after_max_retries(self, live_match, squad, monkeypatch, flask_app):
        flask_app.config['BALL_RECORD_MAX_RETRIES'] = 2
        calls = self._racing_loader(monkeypatch, times=99)

        with pytest.raises(ConflictError):
            scoring.record_ball(live_match.id, delivery(squad, 0, 1, runs=3))

        assert calls['n'] == 2
        assert innings(live_match.id).runs == 0
        assert BallEvent.query.count() == 0

    def test_reload_sees_changes_committed_elsewhere(self, live_match):
        db.session.execute(
            text("UPDATE match SET current_message = 'Rain delay' WHERE id = :id"),
            {'id': live_match.id},
        )
        assert scoring._load_match(live_match.id).current_message == 'Rain delay'

    def test_each_ball_bumps_version(self, live_match, squad):
        before = live_match.version_id
        scoring.record_ball(live_match.id, delivery(squad, 0, 1))
        assert db.session.get(Match, live_match.id).version_id == before + 1


class TestInningsProgression:
    """Tests for moving between innings and deciding the result"""

    def test_next_innings_requires_completion(self, live_match):
        with pytest.raises(InvalidStateError):
            scoring.start_next_innings(live_match.id)

    def test_chase_wins_match(self, one_over_match, squad, teams):
        team_a, team_b = teams
        bowl_over(one_over_match.id, squad, 0, runs=1)

        match = scoring.start_next_innings(one_over_match.id)
        assert match.current_innings.batting_team_id == team_b.id

        scoring.record_ball(match.id, delivery(squad, 0, 1, runs=4))
        scoring.record_ball(match.id, delivery(squad, 0, 2, runs=4))

        match = db.session.get(Match, one_over_match.id)
        assert match.current_innings.status == InningsStatus.COMPLETED.value
        assert match.status == MatchStatus.FINISHED.value
        assert match.winner_team_id == team_b.id

    def test_defended_total_wins_match(self, one_over_match, squad, teams):
        team_a, _ = teams
        bowl_over(one_over_match.id, squad, 0, runs=2)
        scoring.start_next_innings(one_over_match.id)
        bowl_over(one_over_match.id, squad, 0, runs=1)

        match = db.session.get(Match, one_over_match.id)
        assert match.status == MatchStatus.FINISHED.value
        assert match.winner_team_id == team_a.id

    def test_tie_has_no_winner(self, one_over_match, squad):
        bowl_over(one_over_match.id, squad, 0)
        scoring.start_next_innings(one_over_match.id)
        bowl_over(one_over_match.id, squad, 0)

        match = db.session.get(Match, one_over_match.id)
        assert match.status == MatchStatus.FINISHED.value
        assert match.winner_team_id is None

    def test_no_innings_after_the_last(self, one_over_match, squad):
        bowl_over(one_over_match.id, squad, 0)
        scoring.start_next_innings(one_over_match.id)
        bowl_over(one_over_match.id, squad, 0)

        with pytest.raises(InvalidStateError):
            scoring.start_next_innings(one_over_match.id)

    def test_declaration_closes_innings(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, runs=6))

        match = scoring.end_innings(live_match.id)

        assert match.current_innings.status == InningsStatus.COMPLETED.value
        assert match.status == MatchStatus.ONGOING.value


class TestMatchAdministration:
    def test_state_flags(self, live_match):
        match = scoring.update_state(live_match.id, {'isDrinkBreak': True, 'currentMessage': 'Drinks'})
        assert match.state_dict() == {
            'isTimeout': False,
            'isDrinkBreak': True,
            'isLunchBreak': False,
            'isPowerPlay': False,
            'currentMessage': 'Drinks',
        }

    def test_postpone_and_cancel(self, scheduled_match):
        assert scoring.set_status(scheduled_match.id, 'postponed').status == 'postponed'
        assert scoring.set_status(scheduled_match.id, 'cancelled').status == 'cancelled'

    def test_cancelled_match_is_final(self, scheduled_match):
        scoring.set_status(scheduled_match.id, 'cancelled')
        with pytest.raises(InvalidStateError):
            scoring.set_status(scheduled_match.id, 'upcoming')

    def test_cannot_finish_by_hand(self, live_match):
        with pytest.raises(InvalidStateError):
            scoring.set_status(live_match.id, 'finished')

    def test_ball_log_ordering(self, live_match, squad):
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, extraType='wide'))
        scoring.record_ball(live_match.id, delivery(squad, 0, 1, attempt=2))
        scoring.record_ball(live_match.id, delivery(squad, 0, 2, runs=1))

        log = scoring.ball_log(live_match.id)
        assert [(b.over_number, b.ball_number, b.attempt) for b in log] == [(0, 1, 1), (0, 1, 2), (0, 2, 1)]

    def test_man_of_the_match_needs_finished_match(self, live_match, squad):
        with pytest.raises(InvalidStateError):
            scoring.set_man_of_the_match(live_match.id, squad['striker'].id)

    def test_man_of_the_match(self, one_over_match, squad):
        bowl_over(one_over_match.id, squad, 0, runs=1)
        scoring.start_next_innings(one_over_match.id)
        bowl_over(one_over_match.id, squad, 0)

        match = scoring.set_man_of_the_match(one_over_match.id, squad['striker'].id)
        assert match.to_dict()['manOfTheMatch'] == squad['striker'].id

        with pytest.raises(ValidationError):
            scoring.set_man_of_the_match(one_over_match.id, 4242)
