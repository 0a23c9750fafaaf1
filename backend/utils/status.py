from backend.models.missions import Delivery, Mission, MISSION_COMPLETED
from backend.database.database import db, utcnow
from backend.utils.errors import BadRequest, Forbidden, InvalidState
from datetime import timedelta
import logging

logger = logging.getLogger(__name__)

# Delivery status, linear
CREATED = 'CREATED'
VALIDATED = 'VALIDATED'
FINAL_SENT = 'FINAL_SENT'
COMPLETED = 'COMPLETED'
TERMINAL_STATUSES = (FINAL_SENT, COMPLETED)

# Payment status: unset -> PENDING -> PAID
PAYMENT_PENDING = 'PENDING'
PAYMENT_PAID = 'PAID'

FINAL_ASSET_TTL = timedelta(days=7)

PROTECTED_TYPES = ('image', 'video')

def participant_role(delivery, user_id):
    """Return 'creator' or 'freelancer', reject anybody else"""
    if delivery.creator_id == user_id:
        return 'creator'
    if delivery.freelancer_id == user_id:
        return 'freelancer'
    raise Forbidden('Access denied')

def _require_creator(delivery, user_id, message):
    if delivery.creator_id != user_id:
        raise Forbidden(message)

def _require_freelancer(delivery, user_id, message):
    if delivery.freelancer_id != user_id:
        raise Forbidden(message)

def ensure_payable(delivery, user_id):
    """
    Guards for opening a payment session:
    - only the creator pays
    - a paid delivery is never charged twice
    - the preview must have been validated
    """
    _require_creator(delivery, user_id, 'Only the creator can pay for this delivery')

    if delivery.payment_status == PAYMENT_PAID:
        raise InvalidState('This delivery is already paid')

    if delivery.status != VALIDATED:
        raise InvalidState('The delivery must be validated before payment')

def mark_pending(delivery, session_id):
    delivery.payment_status = PAYMENT_PENDING
    delivery.stripe_session_id = session_id
    return delivery

def mark_paid(delivery, payment_reference=None, now=None):
    """
    Record a confirmed payment. Returns False when it was already recorded.
    """
    if delivery.payment_status == PAYMENT_PAID:
        return False

    delivery.payment_status = PAYMENT_PAID
    delivery.paid_at = now or utcnow()
    if payment_reference:
        delivery.stripe_payment_id = payment_reference

    logger.info('Delivery paid', extra={'delivery_id': delivery.id})
    return True

def advance_to_final_sent(delivery, now=None):
    """
    Move a paid delivery whose final asset is stored to FINAL_SENT and
    complete its mission. Both writes join the caller's transaction.

    The update is conditional on the guard, so a second concurrent caller
    matches no row and reports no update.
    """
    now = now or utcnow()
    db.session.flush()

    updated = Delivery.query.filter(
        Delivery.id == delivery.id,
        Delivery.payment_status == PAYMENT_PAID,
        Delivery.final_url.isnot(None),
        Delivery.status.notin_(TERMINAL_STATUSES)
    ).update({
        Delivery.status: FINAL_SENT,
        Delivery.final_expires_at: now + FINAL_ASSET_TTL,
        Delivery.updated_at: now,
    }, synchronize_session='fetch')

    if not updated:
        return False

    Mission.query.filter_by(id=delivery.mission_id).update(
        {Mission.status: MISSION_COMPLETED},
        synchronize_session='fetch'
    )

    logger.info('Delivery final sent', extra={'delivery_id': delivery.id, 'mission_id': delivery.mission_id})
    return True

def validate(delivery, user_id):
    _require_creator(delivery, user_id, 'Only the creator can validate')

    if delivery.status != CREATED or delivery.revision_note:
        raise InvalidState('This delivery cannot be validated')

    delivery.status = VALIDATED
    return delivery

def request_revision(delivery, user_id, note):
    _require_creator(delivery, user_id, 'Only the creator can request changes')

    if delivery.status != CREATED or delivery.revision_note:
        raise InvalidState('This delivery cannot be revised')

    if not note:
        raise BadRequest('Please describe the requested changes')

    delivery.revision_note = note
    delivery.revision_count = (delivery.revision_count or 0) + 1
    return delivery

def send_revision(delivery, user_id, protected_url, protected_type=None, note=None):
    _require_freelancer(delivery, user_id, 'Only the freelancer can send a revision')

    if delivery.status != CREATED or not delivery.revision_note:
        raise InvalidState('No revision was requested for this delivery')

    if not protected_url:
        raise BadRequest('protected_url is required')

    if protected_type and protected_type not in PROTECTED_TYPES:
        raise BadRequest('protected_type must be image or video')

    delivery.protected_url = protected_url
    delivery.protected_type = protected_type or 'image'
    delivery.protected_note = note
    delivery.revision_note = None
    return delivery

def send_final(delivery, user_id, final_url, filename=None, note=None, now=None):
    """
    Store the final asset. Returns True when a payment already cleared and
    the delivery moved straight to FINAL_SENT.
    """
    _require_freelancer(delivery, user_id, 'Only the freelancer can send the final version')

    if delivery.status != VALIDATED:
        raise InvalidState('The delivery must be validated before sending the final version')

    if not final_url:
        raise BadRequest('final_url is required')

    delivery.final_url = final_url
    delivery.final_filename = filename
    delivery.final_note = note

    return advance_to_final_sent(delivery, now)

def complete(delivery, user_id):
    _require_creator(delivery, user_id, 'Only the creator can close the delivery')

    if delivery.status != FINAL_SENT:
        raise InvalidState('Only a delivery with its final version sent can be completed')

    delivery.status = COMPLETED
    return delivery
