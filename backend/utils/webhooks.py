from backend.database.database import db
from backend.models.auth import User
from backend.models.finance import Subscription
from backend.models.missions import Delivery
from backend.routes.stripe import BillingSubscription, CheckoutSession, read_field
from backend.utils.reconcile import upsert_subscription
from backend.utils.status import mark_paid, advance_to_final_sent
import logging

logger = logging.getLogger(__name__)


def _resolve_user_id(billing_subscription):
    """Owner from subscription metadata, else from the stored Stripe customer id"""
    user_id = billing_subscription.metadata.get('user_id')
    if user_id:
        user = db.session.get(User, int(user_id))
        if user:
            return user.id

    if billing_subscription.customer_id:
        user = User.query.filter_by(stripe_customer_id=billing_subscription.customer_id).first()
        if user:
            return user.id

    return None


def handle_subscription_updated(billing_subscription):
    """
    Handle customer.subscription.created / updated
    """
    user_id = _resolve_user_id(billing_subscription)
    if user_id is None:
        logger.warning('Subscription event for unknown user',
                       extra={'stripe_subscription_id': billing_subscription.id})
        return False

    upsert_subscription(user_id, billing_subscription)
    db.session.commit()
    return True


def handle_subscription_deleted(billing_subscription):
    """
    Handle subscription cancellation
    """
    updated = Subscription.query.filter_by(
        stripe_subscription_id=billing_subscription.id
    ).update({Subscription.status: billing_subscription.status or 'canceled'})
    db.session.commit()
    return updated > 0


def handle_checkout_completed(billing, session):
    """
    Handle successful checkout completion, either a delivery payment or a new subscription
    """
    if session.metadata.get('type') == 'delivery_payment':
        delivery_id = session.metadata.get('delivery_id')
        delivery = db.session.get(Delivery, int(delivery_id)) if delivery_id else None
        if delivery is None:
            logger.warning('Payment for unknown delivery', extra={'delivery_id': delivery_id})
            return False

        # Delayed methods (SEPA debit) complete the session before the money arrives
        if session.payment_status != 'paid':
            logger.info('Delivery payment not settled yet',
                        extra={'delivery_id': delivery.id, 'payment_status': session.payment_status})
            return False

        mark_paid(delivery, payment_reference=session.payment_intent)
        advance_to_final_sent(delivery)
        db.session.commit()
        return True

    if session.mode == 'subscription' and session.subscription_id:
        billing_subscription = billing.retrieve_subscription(session.subscription_id)
        if session.metadata.get('user_id') and 'user_id' not in billing_subscription.metadata:
            billing_subscription.metadata['user_id'] = session.metadata['user_id']
        return handle_subscription_updated(billing_subscription)

    return False


def dispatch_event(billing, event):
    """Route a verified Stripe event to its handler"""
    event_type = read_field(event, 'type')
    obj = read_field(read_field(event, 'data'), 'object')
    logger.info('Stripe webhook received', extra={'event_type': event_type, 'event_id': read_field(event, 'id')})

    if event_type in ('checkout.session.completed', 'checkout.session.async_payment_succeeded'):
        return handle_checkout_completed(billing, CheckoutSession.from_stripe(obj))

    if event_type == 'checkout.session.async_payment_failed':
        logger.warning('Checkout payment failed', extra={'checkout_session_id': read_field(obj, 'id')})
        return False

    if event_type in ('customer.subscription.created', 'customer.subscription.updated'):
        return handle_subscription_updated(BillingSubscription.from_stripe(obj))

    if event_type == 'customer.subscription.deleted':
        return handle_subscription_deleted(BillingSubscription.from_stripe(obj))

    if event_type == 'invoice.payment_failed':
        logger.warning('Invoice payment failed', extra={'invoice_id': read_field(obj, 'id'), 'customer': read_field(obj, 'customer')})
        return False

    logger.info('Unhandled Stripe event', extra={'event_type': event_type})
    return False
