from flask import Blueprint, jsonify, request

from errors import NotFoundError
from services import scoring, stats

matches_bp = Blueprint('matches', __name__, url_prefix='/matches')


@matches_bp.route('/<int:match_id>', methods=['GET'])
def match_detail(match_id):
    return jsonify({'success': True, 'match': scoring.get_match(match_id).to_dict()})


@matches_bp.route('/<int:match_id>/scorecard', methods=['GET'])
def scorecard(match_id):
    return jsonify({'success': True, **scoring.scorecard(match_id)})


@matches_bp.route('/<int:match_id>/balls', methods=['GET'])
def balls(match_id):
    innings_number = request.args.get('innings', type=int)
    events = scoring.ball_log(match_id, innings_number)
    return jsonify({'success': True, 'count': len(events), 'balls': [event.to_dict() for event in events]})


@matches_bp.route('/<int:match_id>/players/<int:player_id>/stats', methods=['GET'])
def player_stats(match_id, player_id):
    scoring.get_match(match_id)
    row = stats.player_stats(match_id, player_id)
    if row is None:
        raise NotFoundError('No stats recorded for this player in this match')
    return jsonify({'success': True, 'stats': row.to_dict()})
