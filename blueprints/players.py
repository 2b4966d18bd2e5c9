import logging

from flask import Blueprint, g, jsonify, request

from blueprints.auth import device_info, require_player
from errors import NotFoundError, ValidationError
from services import identity, tokens

logger = logging.getLogger(__name__)

players_bp = Blueprint('players', __name__, url_prefix='/players')

FORGOT_PASSWORD_MESSAGE = 'If an account exists for this email, a password reset code has been sent'


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _required(data: dict, *fields: str) -> None:
    missing = [f'{field} is required' for field in fields if data.get(field) in (None, '')]
    if missing:
        raise ValidationError('Validation failed', errors=missing)


@players_bp.route('/register', methods=['POST'])
def register():
    player = identity.register(_json_body())
    return jsonify({
        'success': True,
        'message': 'Registration successful. Please check your email for the verification code.',
        'player': player.to_dict(summary=True),
    }), 201


@players_bp.route('/verify/<int:player_id>/<otp>', methods=['GET'])
def verify(player_id, otp):
    player = identity.verify_account(player_id, otp)
    return jsonify({'success': True, 'message': 'Account verified successfully', 'player': player.to_dict(summary=True)})


@players_bp.route('/resend-verification', methods=['POST'])
def resend_verification():
    data = _json_body()
    _required(data, 'email')
    identity.resend_verification(data['email'])
    return jsonify({'success': True, 'message': 'Verification code sent'})


@players_bp.route('/login', methods=['POST'])
def login():
    data = _json_body()
    _required(data, 'email', 'password')
    player, pair = identity.login(data['email'], data['password'], device_info())
    return jsonify({
        'success': True,
        'message': 'Login successful',
        'player': player.to_dict(summary=True),
        **pair,
    })


@players_bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    """Always answers the same way so callers cannot probe for registered emails."""
    data = _json_body()
    _required(data, 'email')
    try:
        identity.forgot_password(data['email'])
    except NotFoundError:
        logger.info("Password reset requested for unknown email %s", data['email'])
    return jsonify({'success': True, 'message': FORGOT_PASSWORD_MESSAGE})


@players_bp.route('/reset-password/<email>/<otp>', methods=['POST'])
def reset_password(email, otp):
    data = _json_body()
    _required(data, 'password')
    identity.reset_password(email, otp, data['password'])
    return jsonify({'success': True, 'message': 'Password has been reset successfully'})


@players_bp.route('/profile', methods=['GET'])
@require_player
def get_profile():
    return jsonify({'success': True, 'player': g.current_player.to_dict()})


@players_bp.route('/profile', methods=['PUT'])
@require_player
def update_profile():
    player = identity.update_profile(g.current_player.id, _json_body())
    return jsonify({'success': True, 'message': 'Profile updated', 'player': player.to_dict()})


@players_bp.route('/change-password', methods=['POST'])
@require_player
def change_password():
    data = _json_body()
    _required(data, 'currentPassword', 'newPassword')
    identity.change_password(g.current_player.id, data['currentPassword'], data['newPassword'])
    return jsonify({'success': True, 'message': 'Password changed successfully'})


@players_bp.route('/generate-otp', methods=['POST'])
@require_player
def generate_otp():
    identity.request_login_code(g.current_player)
    return jsonify({'success': True, 'message': 'Verification code sent to your email'})


@players_bp.route('/verify-otp', methods=['POST'])
@require_player
def verify_otp():
    data = _json_body()
    _required(data, 'otp')
    identity.confirm_login_code(g.current_player, str(data['otp']))
    return jsonify({'success': True, 'message': 'Code verified'})


@players_bp.route('/teams', methods=['POST'])
@require_player
def create_team():
    team = identity.create_team(g.current_player.id, _json_body())
    return jsonify({'success': True, 'message': 'Team created successfully', 'team': team.to_dict()}), 201


@players_bp.route('/teams/join', methods=['POST'])
@require_player
def join_team():
    data = _json_body()
    _required(data, 'teamId')
    membership = identity.join_team(g.current_player.id, data['teamId'], data.get('role'))
    return jsonify({'success': True, 'message': 'Joined team', 'membership': membership.to_dict()}), 201


@players_bp.route('/teams/<int:team_id>/expenses', methods=['POST'])
@require_player
def add_expense(team_id):
    data = _json_body()
    _required(data, 'description', 'amount')
    team = identity.record_team_expense(g.current_player, team_id, data['description'], data['amount'])
    return jsonify({'success': True, 'message': 'Expense recorded', 'team': team.to_dict()}), 201


@players_bp.route('/teams/<int:team_id>/funds', methods=['POST'])
@require_player
def add_funds(team_id):
    data = _json_body()
    _required(data, 'amount')
    team = identity.add_team_funds(g.current_player, team_id, data['amount'])
    return jsonify({'success': True, 'message': 'Funds added', 'team': team.to_dict()})


@players_bp.route('/refresh-token', methods=['POST'])
@require_player
def refresh_token():
    data = _json_body()
    _required(data, 'refreshToken')
    pair = tokens.rotate_refresh(data['refreshToken'], g.current_player, device_info())
    return jsonify({'success': True, **pair})


@players_bp.route('/logout', methods=['POST'])
@require_player
def logout():
    identity.logout(g.current_player.id)
    return jsonify({'success': True, 'message': 'Logged out successfully'})


@players_bp.route('/sessions', methods=['GET'])
@require_player
def sessions():
    return jsonify({'success': True, 'sessions': tokens.active_sessions(g.current_player.id)})
