import stripe
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from flask import current_app
from backend.utils.errors import BadRequest, NotConfigured, TransientUpstream

logger = logging.getLogger(__name__)

# Bounded page for subscription listings
SUBSCRIPTION_PAGE_SIZE = 20


def read_field(obj, name, default=None):
    """Read a key from a Stripe object, a plain dict or a test double"""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    if hasattr(obj, '__getitem__'):
        # StripeObject: item access avoids clashes such as .items()
        try:
            return obj[name]
        except (KeyError, TypeError):
            return default
    return getattr(obj, name, default)


def _timestamp(value):
    if not value:
        return datetime.fromtimestamp(0, timezone.utc).replace(tzinfo=None)
    return datetime.fromtimestamp(int(value), timezone.utc).replace(tzinfo=None)


@dataclass
class BillingSubscription:
    id: str
    customer_id: str
    status: str
    current_period_end: datetime
    price_id: str = ''
    cancel_at_period_end: bool = False
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_stripe(cls, raw):
        items = read_field(read_field(raw, 'items'), 'data') or []
        first_item = items[0] if items else None
        price_id = read_field(read_field(first_item, 'price'), 'id') or ''

        # Newer API versions moved the period onto the subscription item
        period_end = read_field(raw, 'current_period_end') or read_field(first_item, 'current_period_end')

        customer = read_field(raw, 'customer')
        if not isinstance(customer, str):
            customer = read_field(customer, 'id')

        metadata = read_field(raw, 'metadata') or {}
        return cls(
            id=read_field(raw, 'id'),
            customer_id=customer,
            status=read_field(raw, 'status'),
            current_period_end=_timestamp(period_end),
            price_id=price_id if isinstance(price_id, str) else '',
            cancel_at_period_end=bool(read_field(raw, 'cancel_at_period_end', False)),
            metadata={k: read_field(metadata, k) for k in ('user_id', 'plan') if read_field(metadata, k) is not None},
        )


@dataclass
class CheckoutSession:
    id: str
    mode: str
    payment_status: str
    payment_intent: str = None
    subscription_id: str = None
    url: str = None
    metadata: dict = field(default_factory=dict)
    status: str = None  # open, complete, expired

    @classmethod
    def from_stripe(cls, raw):
        metadata = read_field(raw, 'metadata') or {}
        intent = read_field(raw, 'payment_intent')
        subscription = read_field(raw, 'subscription')
        return cls(
            id=read_field(raw, 'id'),
            mode=read_field(raw, 'mode'),
            payment_status=read_field(raw, 'payment_status'),
            payment_intent=intent if isinstance(intent, str) or intent is None else read_field(intent, 'id'),
            subscription_id=subscription if isinstance(subscription, str) or subscription is None else read_field(subscription, 'id'),
            url=read_field(raw, 'url'),
            metadata={k: read_field(metadata, k) for k in ('type', 'delivery_id', 'user_id', 'plan') if read_field(metadata, k) is not None},
            status=read_field(raw, 'status'),
        )


class StripeBilling:
    """
    Thin wrapper around the Stripe API.

    One instance is built per app and stored in app.extensions['billing'].
    Every call passes the key explicitly so the global stripe.api_key is never touched.
    Stripe failures surface as TransientUpstream so callers can retry.
    """

    def __init__(self, api_key=None, webhook_secret=None, currency='eur', page_size=SUBSCRIPTION_PAGE_SIZE):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.page_size = page_size

    @property
    def configured(self):
        return bool(self.api_key)

    def _call(self, operation, func, *args, **kwargs):
        if not self.api_key:
            raise NotConfigured('Stripe is not configured')
        try:
            return func(*args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.warning('Stripe call failed', extra={'operation': operation, 'error': str(e)})
            raise TransientUpstream(f'Billing provider error during {operation}') from e

    def create_customer(self, email, user_id):
        customer = self._call('create_customer', stripe.Customer.create,
                              email=email, metadata={'user_id': str(user_id)})
        return read_field(customer, 'id')

    def search_customers_by_email(self, email):
        email = (email or '').strip()
        if not email:
            return []
        escaped = email.replace("'", "\\'")
        result = self._call('search_customers', stripe.Customer.search,
                            query=f"email:'{escaped}'", limit=10)
        return [read_field(c, 'id') for c in (read_field(result, 'data') or []) if isinstance(read_field(c, 'id'), str)]

    def list_subscriptions(self, customer_id):
        result = self._call('list_subscriptions', stripe.Subscription.list,
                            customer=customer_id, status='all', limit=self.page_size)
        return [BillingSubscription.from_stripe(s) for s in (read_field(result, 'data') or [])]

    def retrieve_subscription(self, subscription_id):
        raw = self._call('retrieve_subscription', stripe.Subscription.retrieve, subscription_id)
        return BillingSubscription.from_stripe(raw)

    def cancel_at_period_end(self, subscription_id):
        raw = self._call('cancel_subscription', stripe.Subscription.modify,
                         subscription_id, cancel_at_period_end=True)
        return BillingSubscription.from_stripe(raw)

    def create_subscription_checkout(self, customer_id, price_id, user_id, plan, success_url, cancel_url):
        metadata = {'user_id': str(user_id), 'plan': plan}
        session = self._call('create_subscription_checkout', stripe.checkout.Session.create,
                             mode='subscription',
                             customer=customer_id,
                             line_items=[{'price': price_id, 'quantity': 1}],
                             success_url=success_url,
                             cancel_url=cancel_url,
                             subscription_data={'metadata': metadata},
                             metadata=metadata)
        return CheckoutSession.from_stripe(session)

    def create_delivery_checkout(self, delivery, customer_email, success_url, cancel_url):
        session = self._call('create_delivery_checkout', stripe.checkout.Session.create,
                             mode='payment',
                             customer_email=customer_email,
                             line_items=[{
                                 'price_data': {
                                     'currency': self.currency,
                                     'unit_amount': delivery.amount,
                                     'product_data': {'name': f'Delivery #{delivery.id} - {delivery.mission.title}'},
                                 },
                                 'quantity': 1,
                             }],
                             success_url=success_url,
                             cancel_url=cancel_url,
                             metadata={'type': 'delivery_payment', 'delivery_id': str(delivery.id)})
        return CheckoutSession.from_stripe(session)

    def retrieve_checkout_session(self, session_id):
        raw = self._call('retrieve_checkout_session', stripe.checkout.Session.retrieve, session_id)
        return CheckoutSession.from_stripe(raw)

    def create_portal_session(self, customer_id, return_url):
        session = self._call('create_portal_session', stripe.billing_portal.Session.create,
                             customer=customer_id, return_url=return_url)
        return read_field(session, 'url')

    def construct_event(self, payload, sig_header):
        """Verify the webhook signature and return the event"""
        if not self.webhook_secret:
            raise NotConfigured('Stripe webhook secret is not configured')
        if not sig_header:
            raise BadRequest('Missing signature')
        try:
            return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except ValueError:
            raise BadRequest('Invalid payload')
        except stripe.SignatureVerificationError:
            raise BadRequest('Invalid signature')


def get_billing():
    return current_app.extensions['billing']
