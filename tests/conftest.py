import json
import pytest
from datetime import timedelta

from app import create_app
from backend.database.database import db, utcnow
from backend.models.auth import User
from backend.models.finance import Subscription
from backend.models.missions import Mission, Proposal, Delivery
from backend.routes.stripe import BillingSubscription, CheckoutSession
from backend.utils.errors import BadRequest, TransientUpstream
from werkzeug.security import generate_password_hash

CREATOR_PRICE = 'price_creator_monthly'
DESIGNER_PRICE = 'price_designer_monthly'
RECONCILE_SECRET = 'reconcile-test-secret'


def make_billing_subscription(sub_id, status='active', days=30, price_id=CREATOR_PRICE,
                              customer_id='cus_1', metadata=None, hours=None):
    """Stripe subscription as returned by the billing client"""
    delta = timedelta(hours=hours) if hours is not None else timedelta(days=days)
    return BillingSubscription(
        id=sub_id,
        customer_id=customer_id,
        status=status,
        current_period_end=(utcnow() + delta).replace(microsecond=0),
        price_id=price_id,
        metadata=metadata or {},
    )


class FakeBilling:
    """In-memory stand-in for StripeBilling"""

    def __init__(self):
        self.customers_by_email = {}
        self.subscriptions = {}
        self.checkout_sessions = {}
        self.delivery_attempts = {}
        self.failing = set()
        self.calls = []
        self.created_customers = []

    def _record(self, operation, *args):
        self.calls.append((operation,) + args)
        if operation in self.failing or '*' in self.failing:
            raise TransientUpstream(f'Billing provider error during {operation}')

    def create_customer(self, email, user_id):
        self._record('create_customer', email)
        customer_id = f'cus_new_{user_id}'
        self.created_customers.append(customer_id)
        return customer_id

    def search_customers_by_email(self, email):
        self._record('search_customers', email)
        return list(self.customers_by_email.get(email, []))

    def list_subscriptions(self, customer_id):
        self._record('list_subscriptions', customer_id)
        return list(self.subscriptions.get(customer_id, []))

    def retrieve_subscription(self, subscription_id):
        self._record('retrieve_subscription', subscription_id)
        for subs in self.subscriptions.values():
            for sub in subs:
                if sub.id == subscription_id:
                    return sub
        raise TransientUpstream('No such subscription')

    def cancel_at_period_end(self, subscription_id):
        self._record('cancel_subscription', subscription_id)
        sub = self.retrieve_subscription(subscription_id)
        sub.cancel_at_period_end = True
        return sub

    def create_subscription_checkout(self, customer_id, price_id, user_id, plan, success_url, cancel_url):
        self._record('create_subscription_checkout', customer_id, price_id)
        return CheckoutSession(id='cs_sub_1', mode='subscription', payment_status='unpaid',
                               url='https://checkout.stripe.test/cs_sub_1',
                               metadata={'user_id': str(user_id), 'plan': plan})

    def create_delivery_checkout(self, delivery, customer_email, success_url, cancel_url):
        self._record('create_delivery_checkout', delivery.id)
        attempt = self.delivery_attempts.get(delivery.id, 0) + 1
        self.delivery_attempts[delivery.id] = attempt
        session_id = f'cs_delivery_{delivery.id}' if attempt == 1 else f'cs_delivery_{delivery.id}_{attempt}'
        session = CheckoutSession(id=session_id, mode='payment', payment_status='unpaid',
                                  url=f'https://checkout.stripe.test/{session_id}',
                                  metadata={'type': 'delivery_payment', 'delivery_id': str(delivery.id)},
                                  status='open')
        self.checkout_sessions[session.id] = session
        return session

    def retrieve_checkout_session(self, session_id):
        self._record('retrieve_checkout_session', session_id)
        if session_id not in self.checkout_sessions:
            raise TransientUpstream('No such checkout session')
        return self.checkout_sessions[session_id]

    def create_portal_session(self, customer_id, return_url):
        self._record('create_portal_session', customer_id)
        return 'https://billing.stripe.test/portal'

    def construct_event(self, payload, sig_header):
        if sig_header != 'valid-signature':
            raise BadRequest('Invalid signature')
        return json.loads(payload)


@pytest.fixture
def billing():
    return FakeBilling()


@pytest.fixture
def app(billing):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'LOG_FORMAT': 'console',
        'APP_BASE_URL': 'http://testserver',
        'STRIPE_PRICE_CREATOR_MONTHLY': CREATOR_PRICE,
        'STRIPE_PRICE_DESIGNER_MONTHLY': DESIGNER_PRICE,
        'RECONCILE_SECRET': RECONCILE_SECRET,
    }, billing=billing)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    """App context for tests that call the service layer directly"""
    with app.app_context():
        yield app


@pytest.fixture
def make_user(app):
    def _make(email, role='CREATOR', stripe_customer_id=None, password='secret'):
        with app.app_context():
            user = User(
                email=email,
                password_hash=generate_password_hash(password),
                role=role,
                stripe_customer_id=stripe_customer_id
            )
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make


@pytest.fixture
def make_subscription(app):
    def _make(user_id, sub_id='sub_local', status='active', days=30, price_id=CREATOR_PRICE):
        with app.app_context():
            row = Subscription(
                user_id=user_id,
                stripe_subscription_id=sub_id,
                status=status,
                current_period_end=utcnow() + timedelta(days=days),
                stripe_price_id=price_id
            )
            db.session.add(row)
            db.session.commit()
            return row.id
    return _make


@pytest.fixture
def make_mission(app):
    def _make(creator_id, freelancer_id, status='IN_PROGRESS', title='Thumbnail for episode 12'):
        with app.app_context():
            mission = Mission(title=title, creator_id=creator_id, freelancer_id=freelancer_id, status=status)
            db.session.add(mission)
            db.session.commit()
            return mission.id
    return _make


@pytest.fixture
def make_delivery(app):
    def _make(mission_id, status='CREATED', payment_status=None, final_url=None, amount=5000,
              stripe_session_id=None):
        with app.app_context():
            mission = db.session.get(Mission, mission_id)
            delivery = Delivery(
                mission_id=mission.id,
                creator_id=mission.creator_id,
                freelancer_id=mission.freelancer_id,
                status=status,
                payment_status=payment_status,
                amount=amount,
                protected_url='/uploads/preview-watermarked.png',
                protected_type='image',
                final_url=final_url,
                stripe_session_id=stripe_session_id
            )
            db.session.add(delivery)
            db.session.commit()
            return delivery.id
    return _make


@pytest.fixture
def make_proposal(app):
    def _make(mission_id, freelancer_id, status='PENDING', message='I can deliver this in two days', price=None):
        with app.app_context():
            proposal = Proposal(mission_id=mission_id, freelancer_id=freelancer_id, status=status,
                                message=message, price=price)
            db.session.add(proposal)
            db.session.commit()
            return proposal.id
    return _make


@pytest.fixture
def marketplace(make_user, make_mission):
    """A creator and a freelancer working on one mission, plus an outsider"""
    creator_id = make_user('creator@example.com', role='CREATOR')
    freelancer_id = make_user('designer@example.com', role='FREELANCER')
    outsider_id = make_user('outsider@example.com', role='FREELANCER')
    mission_id = make_mission(creator_id, freelancer_id)
    return {
        'creator_id': creator_id,
        'freelancer_id': freelancer_id,
        'outsider_id': outsider_id,
        'mission_id': mission_id,
    }


def login(client, user_id):
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user_id)
        sess['_fresh'] = True
