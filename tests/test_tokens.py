"""
Tests for access/refresh token issuance, validation, rotation and revocation
"""
import pytest
from datetime import timedelta

from errors import InvalidTokenError, UnauthorizedError
from models import db, current_time, TokenRecord, TokenType
from services import tokens


class TestIssueTokenPair:
    """Tests for minting a session"""

    def test_issue_pair_persists_both_records(self, player):
        """An access and a refresh record are stored for the player"""
        pair = tokens.issue_pair(player, {'ip': '10.0.0.1', 'userAgent': 'pytest', 'deviceId': 'dev-1'})

        access = TokenRecord.query.filter_by(token=pair['accessToken']).one()
        refresh = TokenRecord.query.filter_by(token=pair['refreshToken']).one()
        assert access.type == TokenType.ACCESS.value
        assert refresh.type == TokenType.REFRESH.value
        assert access.player_id == refresh.player_id == player.id
        assert refresh.device_id == 'dev-1'
        assert refresh.ip_address == '10.0.0.1'

    def test_refresh_token_is_high_entropy_hex(self, player):
        """Refresh tokens are 40 random bytes, hex encoded"""
        refresh = tokens.issue_pair(player)['refreshToken']
        assert len(refresh) == 80
        int(refresh, 16)

    def test_refresh_expires_in_thirty_days(self, player):
        pair = tokens.issue_pair(player)
        refresh = TokenRecord.query.filter_by(token=pair['refreshToken']).one()
        remaining = refresh.expires_at - current_time()
        assert timedelta(days=29, hours=23) < remaining <= timedelta(days=30)

    def test_access_token_carries_identity_and_role(self, player):
        claims = tokens.validate_access(tokens.issue_pair(player)['accessToken'])
        assert claims['id'] == player.id
        assert claims['email'] == player.email
        assert claims['role'] == player.role

    def test_consecutive_access_tokens_differ(self, player):
        first = tokens.issue_pair(player)['accessToken']
        second = tokens.issue_pair(player)['accessToken']
        assert first != second


class TestValidateAccess:
    """Tests for access token validation"""

    def test_rejects_garbage(self, flask_app):
        with pytest.raises(InvalidTokenError):
            tokens.validate_access('not-a-token')

    def test_rejects_empty(self, flask_app):
        with pytest.raises(InvalidTokenError):
            tokens.validate_access('')

    def test_rejects_token_signed_with_other_secret(self, player, flask_app):
        token = tokens.issue_pair(player)['accessToken']
        flask_app.config['TOKEN_SECRET'] = 'a-different-secret'
        with pytest.raises(InvalidTokenError):
            tokens.validate_access(token)

    def test_rejects_revoked_token(self, player):
        """A correctly signed token that was revoked is still rejected"""
        token = tokens.issue_pair(player)['accessToken']
        assert tokens.revoke(token) is True

        with pytest.raises(InvalidTokenError):
            tokens.validate_access(token)

    def test_rejects_token_whose_record_expired(self, player):
        """Expired records are invisible even before they are purged"""
        token = tokens.issue_pair(player)['accessToken']
        record = TokenRecord.query.filter_by(token=token).one()
        record.expires_at = current_time() - timedelta(seconds=1)
        db.session.commit()

        with pytest.raises(InvalidTokenError):
            tokens.validate_access(token)

    def test_refresh_token_is_not_an_access_token(self, player):
        refresh = tokens.issue_pair(player)['refreshToken']
        with pytest.raises(InvalidTokenError):
            tokens.validate_access(refresh)


class TestRotateRefresh:
    """Tests for single-use refresh token rotation"""

    def test_rotation_issues_new_pair_and_burns_old(self, player):
        old = tokens.issue_pair(player)
        new = tokens.rotate_refresh(old['refreshToken'], player)

        assert new['refreshToken'] != old['refreshToken']
        assert tokens.validate_access(new['accessToken'])['id'] == player.id

        with pytest.raises(UnauthorizedError):
            tokens.rotate_refresh(old['refreshToken'], player)

    def test_new_refresh_token_can_rotate_again(self, player):
        first = tokens.issue_pair(player)
        second = tokens.rotate_refresh(first['refreshToken'], player)
        third = tokens.rotate_refresh(second['refreshToken'], player)
        assert third['refreshToken'] not in (first['refreshToken'], second['refreshToken'])

    def test_rotation_requires_owning_player(self, player, make_player):
        other = make_player(email='other@test.com')
        pair = tokens.issue_pair(player)

        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh(pair['refreshToken'], other)

    def test_access_token_cannot_be_used_to_rotate(self, player):
        pair = tokens.issue_pair(player)
        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh(pair['accessToken'], player)

    def test_expired_refresh_token_is_rejected(self, player):
        pair = tokens.issue_pair(player)
        record = TokenRecord.query.filter_by(token=pair['refreshToken']).one()
        record.expires_at = current_time() - timedelta(minutes=1)
        db.session.commit()

        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh(pair['refreshToken'], player)


class TestRevokeAll:
    """Tests for revoking every session of a player"""

    def test_revoke_all_invalidates_every_token(self, player):
        sessions = [tokens.issue_pair(player) for _ in range(3)]

        revoked = tokens.revoke_all(player.id)
        assert revoked == 6

        for pair in sessions:
            with pytest.raises(InvalidTokenError):
                tokens.validate_access(pair['accessToken'])
            with pytest.raises(InvalidTokenError):
                tokens.rotate_refresh(pair['refreshToken'], player)

    def test_revoke_all_leaves_other_players_alone(self, player, make_player):
        other = make_player(email='other@test.com')
        other_pair = tokens.issue_pair(other)
        tokens.issue_pair(player)

        tokens.revoke_all(player.id)

        assert tokens.validate_access(other_pair['accessToken'])['id'] == other.id


class TestSessionsAndPurge:
    """Tests for session listing and maintenance"""

    def test_active_sessions_grouped_by_device(self, player):
        tokens.issue_pair(player, {'deviceId': 'phone'})
        tokens.issue_pair(player, {'deviceId': 'phone'})
        tokens.issue_pair(player, {'deviceId': 'laptop'})

        devices = {session['deviceId'] for session in tokens.active_sessions(player.id)}
        assert devices == {'phone', 'laptop'}

    def test_purge_removes_expired_and_revoked(self, player):
        live = tokens.issue_pair(player)
        stale = tokens.issue_pair(player)
        tokens.revoke(stale['accessToken'])
        record = TokenRecord.query.filter_by(token=stale['refreshToken']).one()
        record.expires_at = current_time() - timedelta(days=1)
        db.session.commit()

        assert tokens.purge_expired() == 2
        assert TokenRecord.query.count() == 2
        assert tokens.validate_access(live['accessToken'])['id'] == player.id
