from backend.database.database import db, utcnow

# Stripe statuses that still grant access
ACTIVE_STATUSES = ('active', 'trialing')

class Subscription(db.Model):
    __tablename__ = 'subscription'
    
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    stripe_subscription_id = db.Column(db.String(255), unique=True, nullable=False)
    stripe_price_id = db.Column(db.String(255), default='')
    status = db.Column(db.String(50), nullable=False)  # active, trialing, past_due, canceled, ...
    current_period_end = db.Column(db.DateTime, nullable=False)
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    
    # Relationships
    user = db.relationship('User', back_populates='subscriptions')
    
    @classmethod
    def current_for(cls, user_id, now=None):
        now = now or utcnow()
        return cls.query.filter(
            cls.user_id == user_id,
            cls.status.in_(ACTIVE_STATUSES),
            cls.current_period_end > now
        ).order_by(cls.created_at.desc(), cls.id.desc()).first()
    
    def is_active(self, now=None):
        now = now or utcnow()
        return self.status in ACTIVE_STATUSES and self.current_period_end > now
    
    def to_dict(self):
        return {
            'status': self.status,
            'current_period_end': self.current_period_end.isoformat(),
            'stripe_price_id': self.stripe_price_id,
            'is_trial': self.status == 'trialing',
            'cancel_at_period_end': bool(self.cancel_at_period_end),
        }
