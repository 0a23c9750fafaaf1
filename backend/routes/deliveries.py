from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from backend.database.database import db
from backend.models.missions import Delivery, Mission, MISSION_IN_PROGRESS
from backend.models.auth import ROLE_FREELANCER
from backend.routes.stripe import get_billing
from backend.utils.access import subscription_required
from backend.utils import status as delivery_status
from backend.utils.errors import BadRequest, Forbidden, InvalidState, NotFound
from sqlalchemy import or_
import logging

logger = logging.getLogger(__name__)

delivery_bp = Blueprint('deliveries', __name__)

def _get_delivery(delivery_id):
    delivery = db.session.get(Delivery, delivery_id)
    if delivery is None:
        raise NotFound('Delivery not found')
    return delivery

@delivery_bp.route('', methods=['GET'])
@login_required
def list_deliveries():
    query = Delivery.query.filter(or_(
        Delivery.creator_id == current_user.id,
        Delivery.freelancer_id == current_user.id
    ))

    status = request.args.get('status')
    if status and status != 'ALL':
        query = query.filter(Delivery.status == status)

    mission_id = request.args.get('mission_id', type=int)
    if mission_id:
        query = query.filter(Delivery.mission_id == mission_id)

    deliveries = query.order_by(Delivery.created_at.desc(), Delivery.id.desc()).all()
    return jsonify({'deliveries': [d.to_dict(current_user.id) for d in deliveries]})

@delivery_bp.route('', methods=['POST'])
@login_required
@subscription_required
def create_delivery():
    """Freelancer sends the watermarked preview of a mission"""
    data = request.get_json(silent=True) or {}

    if current_user.role != ROLE_FREELANCER:
        raise Forbidden('Only freelancers can send deliveries')

    mission_id = data.get('mission_id')
    protected_url = data.get('protected_url')
    protected_type = data.get('protected_type')
    amount = data.get('amount')

    if not isinstance(mission_id, int) or not protected_url:
        raise BadRequest('mission_id and protected_url are required')

    if protected_type not in delivery_status.PROTECTED_TYPES:
        raise BadRequest('protected_type must be image or video')

    # Amount is in cents
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise BadRequest('amount must be a positive integer')

    mission = db.session.get(Mission, mission_id)
    if mission is None:
        raise NotFound('Mission not found')

    if mission.freelancer_id != current_user.id:
        raise Forbidden('You are not assigned to this mission')

    if mission.status != MISSION_IN_PROGRESS:
        raise InvalidState('This mission is not in progress')

    delivery = Delivery(
        mission_id=mission.id,
        creator_id=mission.creator_id,
        freelancer_id=current_user.id,
        status=delivery_status.CREATED,
        amount=amount,
        protected_url=protected_url,
        protected_type=protected_type,
        protected_note=data.get('protected_note')
    )
    db.session.add(delivery)
    db.session.commit()

    logger.info('Delivery created', extra={'delivery_id': delivery.id, 'mission_id': mission.id})
    return jsonify({'delivery': delivery.to_dict(current_user.id)}), 201

@delivery_bp.route('/<int:delivery_id>', methods=['GET'])
@login_required
def view_delivery(delivery_id):
    delivery = _get_delivery(delivery_id)
    delivery_status.participant_role(delivery, current_user.id)

    return jsonify({'delivery': delivery.to_dict(current_user.id)})

@delivery_bp.route('/<int:delivery_id>', methods=['PATCH'])
@login_required
def update_delivery(delivery_id):
    delivery = _get_delivery(delivery_id)
    delivery_status.participant_role(delivery, current_user.id)

    data = request.get_json(silent=True) or {}
    action = data.get('action')
    message = None

    if action == 'VALIDATE':
        delivery_status.validate(delivery, current_user.id)
        message = 'Delivery validated. Proceed to payment to receive the final version.'

    elif action == 'REQUEST_REVISION':
        delivery_status.request_revision(delivery, current_user.id, data.get('revision_note'))
        message = 'Revision request sent to the freelancer.'

    elif action == 'SEND_REVISION':
        delivery_status.send_revision(
            delivery,
            current_user.id,
            data.get('protected_url'),
            data.get('protected_type'),
            data.get('protected_note')
        )
        message = 'New version sent, waiting for the creator.'

    elif action == 'SEND_FINAL':
        advanced = delivery_status.send_final(
            delivery,
            current_user.id,
            data.get('final_url'),
            data.get('final_filename'),
            data.get('final_note')
        )
        message = 'Final version sent. The mission is complete!' if advanced else 'Final version stored, released once paid.'

    elif action == 'COMPLETE':
        delivery_status.complete(delivery, current_user.id)
        message = 'Delivery closed.'

    else:
        raise BadRequest('Unknown action')

    db.session.commit()
    return jsonify({'delivery': delivery.to_dict(current_user.id), 'message': message})

@delivery_bp.route('/<int:delivery_id>/pay', methods=['POST'])
@login_required
def pay_delivery(delivery_id):
    """Open a Stripe payment session for a validated delivery"""
    delivery = _get_delivery(delivery_id)
    delivery_status.ensure_payable(delivery, current_user.id)
    billing = get_billing()

    # At most one live session per delivery, the one sync-now checks
    if delivery.payment_status == delivery_status.PAYMENT_PENDING and delivery.stripe_session_id:
        previous = billing.retrieve_checkout_session(delivery.stripe_session_id)

        if previous.payment_status == 'paid':
            delivery_status.mark_paid(delivery, payment_reference=previous.payment_intent)
            delivery_status.advance_to_final_sent(delivery)
            db.session.commit()
            raise InvalidState('This delivery is already paid')

        if previous.status == 'open' and previous.url:
            return jsonify({'url': previous.url, 'session_id': previous.id})

        if previous.status == 'complete':
            raise InvalidState('A payment for this delivery is still being processed')

    base_url = current_app.config['APP_BASE_URL'].rstrip('/')
    session = billing.create_delivery_checkout(
        delivery,
        current_user.email,
        success_url=f'{base_url}/deliveries/{delivery.id}?payment=success',
        cancel_url=f'{base_url}/deliveries/{delivery.id}?payment=cancelled'
    )

    delivery_status.mark_pending(delivery, session.id)
    db.session.commit()

    return jsonify({'url': session.url, 'session_id': session.id})

@delivery_bp.route('/<int:delivery_id>/sync-now', methods=['POST'])
@login_required
def sync_delivery(delivery_id):
    """
    Catch up on a payment: confirm a pending session with Stripe, then
    release the final version if it is already stored.
    """
    delivery = _get_delivery(delivery_id)
    delivery_status.participant_role(delivery, current_user.id)

    if delivery.payment_status == delivery_status.PAYMENT_PENDING and delivery.stripe_session_id:
        session = get_billing().retrieve_checkout_session(delivery.stripe_session_id)
        if session.payment_status == 'paid':
            delivery_status.mark_paid(delivery, payment_reference=session.payment_intent)

    if delivery.payment_status != delivery_status.PAYMENT_PAID:
        return jsonify({'ok': True, 'updated': False})

    updated = delivery_status.advance_to_final_sent(delivery)
    db.session.commit()

    return jsonify({'ok': True, 'updated': updated})
