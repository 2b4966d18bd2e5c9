import pytest
from datetime import date

from app import create_app
from models import (
    db,
    Match,
    Player,
    RegistrationStatus,
    Role,
    Team,
    University,
)
from services import tokens


@pytest.fixture
def flask_app():
    """Create test application with in-memory SQLite database"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret-key',
        'TOKEN_SECRET': 'test-token-secret',
        'MAIL_SUPPRESS_SEND': True,
        'ENFORCE_BALL_SEQUENCE': True,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(flask_app):
    """Test client"""
    return flask_app.test_client()


@pytest.fixture
def outbox(flask_app):
    """Emails captured instead of being sent"""
    return flask_app.extensions['email_outbox']


@pytest.fixture
def university(flask_app):
    """A university players and teams can belong to"""
    uni = University(
        name='Test University',
        location='Colombo',
        contact_email='info@test.edu',
        contact_phone='0112345678',
        address='1 College Road',
    )
    db.session.add(uni)
    db.session.commit()
    return uni


@pytest.fixture
def make_player(flask_app):
    """Factory for persisted players; verified and active unless told otherwise"""
    counter = {'n': 0}

    def _make(email=None, password='Secret123', role=Role.PLAYER.value, verified=True, **fields):
        counter['n'] += 1
        player = Player(
            first_name=fields.pop('first_name', 'Test'),
            last_name=fields.pop('last_name', f'Player{counter["n"]}'),
            email=email or f'player{counter["n"]}@test.com',
            role=role,
            is_verified=verified,
            **fields,
        )
        player.set_password(password)
        player.refresh_registration_status()
        db.session.add(player)
        db.session.commit()
        return player

    return _make


@pytest.fixture
def player(make_player):
    """A verified player with an incomplete profile"""
    return make_player(email='player@test.com')


@pytest.fixture
def complete_player(make_player, university):
    """A verified player whose registration is completed"""
    p = make_player(
        email='complete@test.com',
        age=21,
        university_id=university.id,
        jersey_number=7,
        phone='0771234567',
    )
    assert p.registration_status == RegistrationStatus.COMPLETED.value
    return p


@pytest.fixture
def admin(make_player):
    """An administrator account"""
    return make_player(email='admin@test.com', password='Admin123', role=Role.ADMIN.value)


def auth_header(player):
    """Issue an access token for ``player`` and return it as a header dict"""
    token = tokens.issue_pair(player)['accessToken']
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def headers_for(flask_app):
    """Build bearer headers for any player"""
    return auth_header


@pytest.fixture
def player_headers(player):
    return auth_header(player)


@pytest.fixture
def complete_headers(complete_player):
    return auth_header(complete_player)


@pytest.fixture
def admin_headers(admin):
    return auth_header(admin)


@pytest.fixture
def teams(make_player, university):
    """Two teams from the test university, each with a captain"""
    captain_a = make_player(email='captain.a@test.com', role=Role.CAPTAIN.value)
    captain_b = make_player(email='captain.b@test.com', role=Role.CAPTAIN.value)
    team_a = Team(name='Lions', captain_id=captain_a.id, university_id=university.id, budget=1000)
    team_b = Team(name='Tigers', captain_id=captain_b.id, university_id=university.id, budget=1000)
    db.session.add_all([team_a, team_b])
    db.session.commit()
    return team_a, team_b


@pytest.fixture
def squad(make_player):
    """Batsmen and bowlers to use in ball events"""
    return {
        'striker': make_player(email='striker@test.com'),
        'non_striker': make_player(email='nonstriker@test.com'),
        'next_batsman': make_player(email='next@test.com'),
        'bowler': make_player(email='bowler@test.com'),
        'second_bowler': make_player(email='bowler2@test.com'),
        'keeper': make_player(email='keeper@test.com'),
        'fielder': make_player(email='fielder@test.com'),
    }


@pytest.fixture
def scheduled_match(teams):
    """An upcoming T20 between the two test teams"""
    team_a, team_b = teams
    match = Match(
        title='Lions vs Tigers',
        team1_id=team_a.id,
        team2_id=team_b.id,
        date=date(2026, 3, 1),
        time='14:00',
        location='Main Ground',
    )
    db.session.add(match)
    db.session.commit()
    return match


@pytest.fixture
def live_match(scheduled_match, teams, squad):
    """A started match with team A batting in the first innings"""
    from services import scoring

    team_a, _ = teams
    return scoring.start_match(scheduled_match.id, {
        'tossWonBy': team_a.id,
        'tossDecision': 'bat',
        'openingBatsmen': [squad['striker'].id, squad['non_striker'].id],
        'openingBowler': squad['bowler'].id,
    })
