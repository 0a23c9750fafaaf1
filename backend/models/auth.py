from backend.database.database import db, utcnow
from flask_login import UserMixin

ROLE_CREATOR = 'CREATOR'
ROLE_FREELANCER = 'FREELANCER'
ROLES = (ROLE_CREATOR, ROLE_FREELANCER)

class User(UserMixin, db.Model):
    __tablename__ = 'user'
    
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_CREATOR)
    stripe_customer_id = db.Column(db.String(255), index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    
    # Relationships
    subscriptions = db.relationship('Subscription', back_populates='user', order_by='Subscription.created_at.desc()')
    
    def current_subscription(self, now=None):
        """Most recently created subscription that still grants access"""
        from backend.models.finance import Subscription
        return Subscription.current_for(self.id, now)
    
    def has_active_subscription(self, now=None):
        return self.current_subscription(now) is not None
    
    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role,
            'has_stripe_customer': bool(self.stripe_customer_id),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
