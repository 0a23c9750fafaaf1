from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from backend.database.database import db, utcnow
from backend.models.auth import ROLE_FREELANCER
from backend.models.missions import (
    Mission, Proposal, MISSION_OPEN, MISSION_IN_PROGRESS,
    PROPOSAL_PENDING, PROPOSAL_ACCEPTED, PROPOSAL_REJECTED, PROPOSAL_WITHDRAWN
)
from backend.utils.access import subscription_required
from backend.utils.errors import BadRequest, Forbidden, InvalidState, NotFound
import logging

logger = logging.getLogger(__name__)

proposal_bp = Blueprint('proposals', __name__)

def _get_proposal(proposal_id):
    proposal = db.session.get(Proposal, proposal_id)
    if proposal is None:
        raise NotFound('Proposal not found')
    return proposal

def accept_proposal(proposal):
    """
    Assign the mission to the proposal's freelancer and reject the other
    pending proposals. Does not commit.

    The mission only moves if it is still OPEN, so two creators' clicks
    cannot assign it twice.
    """
    now = utcnow()
    assigned = Mission.query.filter(
        Mission.id == proposal.mission_id,
        Mission.status == MISSION_OPEN
    ).update({
        Mission.status: MISSION_IN_PROGRESS,
        Mission.freelancer_id: proposal.freelancer_id,
        Mission.updated_at: now,
    }, synchronize_session='fetch')

    if not assigned:
        raise InvalidState('This mission is no longer open')

    proposal.status = PROPOSAL_ACCEPTED

    Proposal.query.filter(
        Proposal.mission_id == proposal.mission_id,
        Proposal.id != proposal.id,
        Proposal.status == PROPOSAL_PENDING
    ).update({
        Proposal.status: PROPOSAL_REJECTED,
        Proposal.updated_at: now,
    }, synchronize_session='fetch')

    logger.info('Proposal accepted', extra={
        'proposal_id': proposal.id,
        'mission_id': proposal.mission_id,
        'freelancer_id': proposal.freelancer_id,
    })

@proposal_bp.route('', methods=['POST'])
@login_required
@subscription_required
def create_proposal():
    if current_user.role != ROLE_FREELANCER:
        raise Forbidden('Only freelancers can send proposals')

    data = request.get_json(silent=True) or {}
    mission_id = data.get('mission_id')
    message = (data.get('message') or '').strip()
    price = data.get('price')

    if not isinstance(mission_id, int) or isinstance(mission_id, bool):
        raise BadRequest('mission_id is required')

    if not 10 <= len(message) <= 2000:
        raise BadRequest('message must be between 10 and 2000 characters')

    if price is not None and (not isinstance(price, int) or isinstance(price, bool) or price <= 0):
        raise BadRequest('price must be a positive integer')

    mission = db.session.get(Mission, mission_id)
    if mission is None:
        raise NotFound('Mission not found')

    if mission.status != MISSION_OPEN:
        raise InvalidState('This mission no longer accepts proposals')

    if Proposal.query.filter_by(mission_id=mission.id, freelancer_id=current_user.id).first():
        raise BadRequest('You already sent a proposal for this mission')

    proposal = Proposal(
        mission_id=mission.id,
        freelancer_id=current_user.id,
        message=message,
        price=price,
        status=PROPOSAL_PENDING
    )
    db.session.add(proposal)
    db.session.commit()

    return jsonify({'proposal': proposal.to_dict()}), 201

@proposal_bp.route('', methods=['GET'])
@login_required
def my_proposals():
    query = Proposal.query.filter_by(freelancer_id=current_user.id)

    status = request.args.get('status')
    if status and status != 'ALL':
        query = query.filter(Proposal.status == status)

    proposals = query.order_by(Proposal.created_at.desc(), Proposal.id.desc()).all()
    return jsonify({'proposals': [p.to_dict() for p in proposals]})

@proposal_bp.route('/<int:proposal_id>', methods=['GET'])
@login_required
def view_proposal(proposal_id):
    proposal = _get_proposal(proposal_id)

    is_creator = proposal.mission.creator_id == current_user.id
    is_freelancer = proposal.freelancer_id == current_user.id
    if not (is_creator or is_freelancer):
        raise Forbidden('Access denied')

    return jsonify({
        'proposal': proposal.to_dict(),
        'is_creator': is_creator,
        'is_freelancer': is_freelancer
    })

@proposal_bp.route('/<int:proposal_id>', methods=['PATCH'])
@login_required
def update_proposal(proposal_id):
    """Creator accepts or rejects, freelancer withdraws"""
    proposal = _get_proposal(proposal_id)
    data = request.get_json(silent=True) or {}
    status = data.get('status')

    if status not in (PROPOSAL_ACCEPTED, PROPOSAL_REJECTED, PROPOSAL_WITHDRAWN):
        raise BadRequest('status must be ACCEPTED, REJECTED or WITHDRAWN')

    if status in (PROPOSAL_ACCEPTED, PROPOSAL_REJECTED) and proposal.mission.creator_id != current_user.id:
        raise Forbidden('Only the creator can accept or reject a proposal')

    if status == PROPOSAL_WITHDRAWN and proposal.freelancer_id != current_user.id:
        raise Forbidden('Only the freelancer can withdraw a proposal')

    if proposal.status != PROPOSAL_PENDING:
        raise InvalidState('This proposal was already handled')

    if status == PROPOSAL_ACCEPTED:
        accept_proposal(proposal)
    else:
        proposal.status = status

    db.session.commit()
    return jsonify({'proposal': proposal.to_dict()})
