import logging

from flask import Blueprint, jsonify, request

from blueprints.auth import require_admin
from errors import ValidationError
from services import identity, scoring

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


@admin_bp.route('/players/<int:player_id>/deactivate', methods=['POST'])
@require_admin
def deactivate_player(player_id):
    player = identity.deactivate(player_id)
    return jsonify({'success': True, 'message': 'Player deactivated', 'player': player.to_dict()})


@admin_bp.route('/matches', methods=['POST'])
@require_admin
def create_match():
    match = scoring.create_match(_payload())
    return jsonify({'success': True, 'message': 'Match scheduled', 'match': match.to_dict()}), 201


@admin_bp.route('/matches/<int:match_id>/start', methods=['POST'])
@require_admin
def start_match(match_id):
    match = scoring.start_match(match_id, _payload())
    return jsonify({'success': True, 'message': 'Match started', 'match': match.to_dict()})


@admin_bp.route('/matches/<int:match_id>/balls', methods=['POST'])
@require_admin
def record_ball(match_id):
    ball = scoring.record_ball(match_id, _payload())
    match = scoring.get_match(match_id)
    return jsonify({'success': True, 'ball': ball.to_dict(), 'match': match.to_dict()}), 201


@admin_bp.route('/matches/<int:match_id>/innings/next', methods=['POST'])
@require_admin
def next_innings(match_id):
    match = scoring.start_next_innings(match_id, _payload())
    return jsonify({'success': True, 'message': 'Next innings started', 'match': match.to_dict()})


@admin_bp.route('/matches/<int:match_id>/innings/end', methods=['POST'])
@require_admin
def end_innings(match_id):
    match = scoring.end_innings(match_id)
    return jsonify({'success': True, 'message': 'Innings closed', 'match': match.to_dict()})


@admin_bp.route('/matches/<int:match_id>/state', methods=['PATCH'])
@require_admin
def update_state(match_id):
    match = scoring.update_state(match_id, _payload())
    return jsonify({'success': True, 'currentMatchState': match.state_dict()})


@admin_bp.route('/matches/<int:match_id>/status', methods=['PATCH'])
@require_admin
def update_status(match_id):
    data = _payload()
    if not data.get('status'):
        raise ValidationError('status is required')
    match = scoring.set_status(match_id, data['status'])
    return jsonify({'success': True, 'match': match.to_dict()})


@admin_bp.route('/matches/<int:match_id>/man-of-the-match', methods=['PATCH'])
@require_admin
def man_of_the_match(match_id):
    match = scoring.set_man_of_the_match(match_id, _payload().get('playerId'))
    return jsonify({'success': True, 'match': match.to_dict()})
