from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from backend.database.database import db
from backend.models.auth import ROLE_CREATOR, ROLE_FREELANCER
from backend.models.missions import Mission, Proposal, MISSION_OPEN
from backend.utils.access import subscription_required
from backend.utils.errors import BadRequest, Forbidden, NotFound
import logging

logger = logging.getLogger(__name__)

mission_bp = Blueprint('missions', __name__)

def _get_mission(mission_id):
    mission = db.session.get(Mission, mission_id)
    if mission is None:
        raise NotFound('Mission not found')
    return mission

@mission_bp.route('', methods=['GET'])
@login_required
def list_missions():
    """
    Creators see their own missions, freelancers the ones still open
    """
    if current_user.role == ROLE_CREATOR:
        query = Mission.query.filter_by(creator_id=current_user.id)
        status = request.args.get('status')
        if status and status != 'ALL':
            query = query.filter(Mission.status == status)
    else:
        query = Mission.query.filter_by(status=MISSION_OPEN)

    missions = query.order_by(Mission.created_at.desc(), Mission.id.desc()).all()
    return jsonify({'missions': [m.to_dict() for m in missions]})

@mission_bp.route('/assigned', methods=['GET'])
@login_required
def assigned_missions():
    missions = Mission.query.filter_by(
        freelancer_id=current_user.id
    ).order_by(Mission.created_at.desc(), Mission.id.desc()).all()

    return jsonify({'missions': [m.to_dict() for m in missions]})

@mission_bp.route('', methods=['POST'])
@login_required
@subscription_required
def create_mission():
    if current_user.role != ROLE_CREATOR:
        raise Forbidden('Only creators can post missions')

    data = request.get_json(silent=True) or {}
    title = (data.get('title') or '').strip()
    description = (data.get('description') or '').strip()

    if not 3 <= len(title) <= 100:
        raise BadRequest('title must be between 3 and 100 characters')

    if len(description) < 10:
        raise BadRequest('description must be at least 10 characters')

    mission = Mission(
        title=title,
        description=description,
        creator_id=current_user.id,
        status=MISSION_OPEN
    )
    db.session.add(mission)
    db.session.commit()

    logger.info('Mission posted', extra={'mission_id': mission.id, 'creator_id': current_user.id})
    return jsonify({'mission': mission.to_dict()}), 201

@mission_bp.route('/<int:mission_id>', methods=['GET'])
@login_required
def view_mission(mission_id):
    mission = _get_mission(mission_id)

    is_participant = current_user.id in (mission.creator_id, mission.freelancer_id)
    browsing = mission.status == MISSION_OPEN and current_user.role == ROLE_FREELANCER
    if not (is_participant or browsing):
        raise Forbidden('Access denied')

    return jsonify({'mission': mission.to_dict()})

@mission_bp.route('/<int:mission_id>/proposals', methods=['GET'])
@login_required
def mission_proposals(mission_id):
    """Proposals received on one of the creator's missions"""
    mission = _get_mission(mission_id)
    if mission.creator_id != current_user.id:
        raise Forbidden('Only the creator can see the proposals')

    proposals = Proposal.query.filter_by(
        mission_id=mission.id
    ).order_by(Proposal.created_at.desc(), Proposal.id.desc()).all()

    return jsonify({'proposals': [p.to_dict() for p in proposals]})
