import logging

from flask import Blueprint, jsonify, request

from blueprints.auth import require_admin
from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import db, University

logger = logging.getLogger(__name__)

universities_bp = Blueprint('universities', __name__)


def _get_university(university_id: int) -> University:
    university = db.session.get(University, university_id)
    if not university:
        raise NotFoundError('University not found')
    return university


def _name_taken(name: str, exclude_id: int | None = None) -> bool:
    query = University.query.filter(db.func.lower(University.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.filter(University.id != exclude_id)
    return db.session.query(query.exists()).scalar()


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _listing():
    query = University.query
    search = request.args.get('search', '').strip()
    if search:
        query = query.filter(University.name.ilike(f'%{search}%'))
    return [university.to_dict() for university in query.order_by(University.name.asc()).all()]


# Public read access

@universities_bp.route('/universities', methods=['GET'])
def list_universities():
    universities = _listing()
    return jsonify({'success': True, 'count': len(universities), 'universities': universities})


@universities_bp.route('/universities/<int:university_id>', methods=['GET'])
def get_university(university_id):
    return jsonify({'success': True, 'university': _get_university(university_id).to_dict()})


# Admin management

@universities_bp.route('/admin/universities', methods=['GET'])
@require_admin
def admin_list_universities():
    universities = _listing()
    return jsonify({'success': True, 'count': len(universities), 'universities': universities})


@universities_bp.route('/admin/universities/<int:university_id>', methods=['GET'])
@require_admin
def admin_get_university(university_id):
    return jsonify({'success': True, 'university': _get_university(university_id).to_dict()})


@universities_bp.route('/admin/universities', methods=['POST'])
@require_admin
def create_university():
    data = _payload()
    errors = University.validate_format(data)
    if errors:
        raise ValidationError('Validation failed', errors=errors)
    if _name_taken(data['name']):
        raise ConflictError('University with this name already exists')

    university = University()
    university.apply(data)
    db.session.add(university)
    db.session.commit()
    logger.info("University %s created: %s", university.id, university.name)
    return jsonify({'success': True, 'message': 'University created', 'university': university.to_dict()}), 201


@universities_bp.route('/admin/universities/<int:university_id>', methods=['PUT'])
@require_admin
def update_university(university_id):
    university = _get_university(university_id)
    data = _payload()
    errors = University.validate_format(data, partial=True)
    if errors:
        raise ValidationError('Validation failed', errors=errors)
    if data.get('name') and _name_taken(data['name'], exclude_id=university.id):
        raise ConflictError('University with this name already exists')

    university.apply(data)
    db.session.commit()
    return jsonify({'success': True, 'message': 'University updated', 'university': university.to_dict()})


@universities_bp.route('/admin/universities/<int:university_id>', methods=['DELETE'])
@require_admin
def delete_university(university_id):
    university = _get_university(university_id)
    if university.players or university.teams:
        raise InvalidStateError('University still has players or teams assigned')

    db.session.delete(university)
    db.session.commit()
    logger.info("University %s deleted", university_id)
    return jsonify({'success': True, 'message': 'University deleted'})
