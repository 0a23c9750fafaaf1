from backend.database.database import db, utcnow
from backend.models.auth import User
from backend.models.finance import Subscription, ACTIVE_STATUSES
from backend.utils.errors import TransientUpstream
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)

# Cap on per-user errors echoed back by the bulk reconcile
MAX_REPORTED_ERRORS = 20


@dataclass
class ReconcileResult:
    user_id: int
    subscription: object = None
    customer_id: str = None
    written: bool = False

    @property
    def has_active_subscription(self):
        return self.subscription is not None


def allowed_price_ids(config):
    """Price ids billed by this product; empty means any price is accepted"""
    return {
        price for price in (
            config.get('STRIPE_PRICE_CREATOR_MONTHLY'),
            config.get('STRIPE_PRICE_DESIGNER_MONTHLY'),
        ) if price
    }


def pick_best_subscription(subscriptions, now, allowed_prices=None):
    """
    Select the subscription that should be considered active:
    - status active or trialing
    - period end strictly after now
    - price in the allow-list when one is configured
    The latest period end wins.
    """
    candidates = [
        s for s in subscriptions
        if s.status in ACTIVE_STATUSES and s.current_period_end > now
    ]
    if allowed_prices:
        candidates = [s for s in candidates if s.price_id in allowed_prices]
    return max(candidates, key=lambda s: s.current_period_end, default=None)


def upsert_subscription(user_id, billing_subscription):
    """
    Insert or update the local row keyed by the Stripe subscription id.
    Does not commit.
    """
    values = {
        'user_id': user_id,
        'status': billing_subscription.status,
        'current_period_end': billing_subscription.current_period_end,
        'stripe_price_id': billing_subscription.price_id or '',
        'cancel_at_period_end': billing_subscription.cancel_at_period_end,
    }

    row = Subscription.query.filter_by(stripe_subscription_id=billing_subscription.id).first()
    if row is None:
        # The unique key rejects a concurrent duplicate insert; the retry lands on the update path
        row = Subscription(stripe_subscription_id=billing_subscription.id, **values)
        db.session.add(row)
        return row

    for key, value in values.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
    return row


def candidate_customer_ids(billing, user, customer_id=None, match_by_email=True):
    known = customer_id or user.stripe_customer_id
    if known:
        return [known]
    if match_by_email:
        return billing.search_customers_by_email(user.email)
    return []


def reconcile_user(billing, user, allowed_prices=None, now=None, customer_id=None,
                   match_by_email=True, dry_run=False):
    """
    Pull the user's subscriptions from Stripe and persist the authoritative one.

    Every Stripe call happens before the first local write, so a provider
    failure leaves the database untouched.
    """
    now = now or utcnow()

    subscriptions = []
    for cid in candidate_customer_ids(billing, user, customer_id, match_by_email):
        subscriptions.extend(billing.list_subscriptions(cid))

    best = pick_best_subscription(subscriptions, now, allowed_prices)
    if best is None:
        logger.info('No active subscription', extra={'user_id': user.id})
        return ReconcileResult(user_id=user.id)

    result = ReconcileResult(user_id=user.id, subscription=best, customer_id=best.customer_id)
    if dry_run:
        return result

    upsert_subscription(user.id, best)
    if not user.stripe_customer_id and best.customer_id:
        user.stripe_customer_id = best.customer_id
    db.session.commit()

    result.written = True
    logger.info('Subscription reconciled', extra={
        'user_id': user.id,
        'stripe_subscription_id': best.id,
        'status': best.status,
    })
    return result


def reconcile_all(billing, allowed_prices=None, limit=500, match_by_email=False, dry_run=False, now=None):
    """
    Reconcile every user that can be matched to a Stripe customer.
    One user's failure is recorded and the batch moves on.
    """
    now = now or utcnow()
    query = User.query.order_by(User.id)
    if not match_by_email:
        query = query.filter(User.stripe_customer_id.isnot(None))
    considered = query.count()
    users = query.limit(limit).all()

    report = {
        'dry_run': dry_run,
        'limit': limit,
        'match_by_email': match_by_email,
        'users_considered': considered,
        'scanned': 0,
        'active_found': 0,
        'updated': 0,
        'errors': [],
    }

    for user in users:
        report['scanned'] += 1
        try:
            result = reconcile_user(billing, user, allowed_prices, now=now,
                                    match_by_email=match_by_email, dry_run=dry_run)
        except TransientUpstream as e:
            db.session.rollback()
            report['errors'].append({'user_id': user.id, 'error': e.message})
            continue

        if result.has_active_subscription:
            report['active_found'] += 1
        if result.written:
            report['updated'] += 1

    report['errors_count'] = len(report['errors'])
    report['errors'] = report['errors'][:MAX_REPORTED_ERRORS]
    logger.info('Bulk reconcile finished', extra={k: v for k, v in report.items() if k != 'errors'})
    return report
