from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from backend.models.finance import Subscription
from backend.routes.stripe import get_billing
from backend.utils.errors import BadRequest, NotFound, Unauthorized
from backend.utils.reconcile import allowed_price_ids, reconcile_user, reconcile_all
from backend.utils.webhooks import dispatch_event
from backend.database.database import db
import hmac

billing_bp = Blueprint('billing', __name__)

PLAN_PRICE_KEYS = {
    'creator': 'STRIPE_PRICE_CREATOR_MONTHLY',
    'designer': 'STRIPE_PRICE_DESIGNER_MONTHLY',
}

def _base_url():
    return current_app.config['APP_BASE_URL'].rstrip('/')

@billing_bp.route('/checkout', methods=['POST'])
@login_required
def create_checkout():
    """Create Stripe checkout session"""
    data = request.get_json(silent=True) or {}
    plan = data.get('plan')
    price_id = current_app.config.get(PLAN_PRICE_KEYS.get(plan, ''), None)

    if not price_id:
        raise BadRequest('Invalid plan')

    billing = get_billing()

    # Reuse the customer when there is one
    customer_id = current_user.stripe_customer_id
    if not customer_id:
        customer_id = billing.create_customer(current_user.email, current_user.id)
        current_user.stripe_customer_id = customer_id
        db.session.commit()

    session = billing.create_subscription_checkout(
        customer_id,
        price_id,
        current_user.id,
        plan,
        success_url=f'{_base_url()}/subscribe/success',
        cancel_url=f'{_base_url()}/subscribe?billing=cancelled'
    )

    return jsonify({'url': session.url})

@billing_bp.route('/portal', methods=['POST'])
@login_required
def create_portal():
    """Create Stripe customer portal session"""
    if not current_user.stripe_customer_id:
        raise BadRequest('No subscription found')

    url = get_billing().create_portal_session(
        current_user.stripe_customer_id,
        return_url=f'{_base_url()}/profile'
    )

    return jsonify({'url': url})

@billing_bp.route('/webhook', methods=['POST'])
def webhook():
    """Stripe webhook handler"""
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get('Stripe-Signature')

    billing = get_billing()
    event = billing.construct_event(payload, sig_header)

    dispatch_event(billing, event)

    return jsonify({'received': True}), 200

@billing_bp.route('/subscription', methods=['GET'])
@login_required
def subscription_status():
    """Latest subscription of the user, active or not"""
    subscription = Subscription.query.filter_by(
        user_id=current_user.id
    ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).first()

    return jsonify({
        'has_subscription': bool(subscription and subscription.is_active()),
        'subscription': subscription.to_dict() if subscription else None
    })

@billing_bp.route('/subscription/check', methods=['GET'])
@login_required
def subscription_check():
    subscription = current_user.current_subscription()
    response = jsonify({
        'has_active_subscription': subscription is not None,
        'subscription': subscription.to_dict() if subscription else None
    })
    response.headers['Cache-Control'] = 'no-store'
    return response

@billing_bp.route('/subscription/cancel', methods=['POST'])
@login_required
def subscription_cancel():
    """Cancel at period end, access stays until Stripe reports the end"""
    subscription = current_user.current_subscription()

    if not subscription:
        raise NotFound('No active subscription found')

    updated = get_billing().cancel_at_period_end(subscription.stripe_subscription_id)
    subscription.cancel_at_period_end = True
    db.session.commit()

    return jsonify({
        'success': True,
        'cancel_at_period_end': True,
        'period_end': updated.current_period_end.isoformat()
    })

@billing_bp.route('/subscription/sync-now', methods=['POST'])
@login_required
def subscription_sync_now():
    """Pull the user's subscription state from Stripe"""
    result = reconcile_user(
        get_billing(),
        current_user._get_current_object(),
        allowed_price_ids(current_app.config)
    )

    if not result.has_active_subscription:
        return jsonify({'has_active_subscription': False})

    return jsonify({
        'has_active_subscription': True,
        'subscription': {
            'status': result.subscription.status,
            'current_period_end': result.subscription.current_period_end.isoformat(),
            'stripe_price_id': result.subscription.price_id
        }
    })

def _reconcile_authorized():
    expected = current_app.config.get('RECONCILE_SECRET')
    if not expected:
        return False

    provided = request.headers.get('X-Reconcile-Secret') or request.args.get('secret') or ''
    return hmac.compare_digest(provided.encode(), expected.encode())

@billing_bp.route('/reconcile', methods=['POST'])
def reconcile():
    """Admin resync of every paying user from Stripe"""
    if not _reconcile_authorized():
        raise Unauthorized()

    data = request.get_json(silent=True) or {}
    limit = data.get('limit', 500)
    if not isinstance(limit, int) or isinstance(limit, bool) or limit < 0:
        raise BadRequest('limit must be a positive integer')

    report = reconcile_all(
        get_billing(),
        allowed_price_ids(current_app.config),
        limit=limit,
        match_by_email=data.get('match_by_email') is True,
        dry_run=data.get('dry_run') is True
    )

    return jsonify({'ok': True, **report})
