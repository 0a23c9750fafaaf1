from backend.database.database import db, utcnow

MISSION_OPEN = 'OPEN'
MISSION_IN_PROGRESS = 'IN_PROGRESS'
MISSION_COMPLETED = 'COMPLETED'

PROPOSAL_PENDING = 'PENDING'
PROPOSAL_ACCEPTED = 'ACCEPTED'
PROPOSAL_REJECTED = 'REJECTED'
PROPOSAL_WITHDRAWN = 'WITHDRAWN'

class Mission(db.Model):
    __tablename__ = 'mission'
    
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default=MISSION_OPEN)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    freelancer_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    
    # Relationships
    creator = db.relationship('User', foreign_keys=[creator_id])
    freelancer = db.relationship('User', foreign_keys=[freelancer_id])
    deliveries = db.relationship('Delivery', back_populates='mission', cascade='all, delete-orphan')
    proposals = db.relationship('Proposal', back_populates='mission', cascade='all, delete-orphan')
    
    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'creator_id': self.creator_id,
            'freelancer_id': self.freelancer_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

class Proposal(db.Model):
    __tablename__ = 'proposal'
    __table_args__ = (
        db.UniqueConstraint('mission_id', 'freelancer_id', name='uq_proposal_mission_freelancer'),
    )
    
    id = db.Column(db.Integer, primary_key=True)
    mission_id = db.Column(db.Integer, db.ForeignKey('mission.id'), nullable=False, index=True)
    freelancer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    price = db.Column(db.Integer)  # cents, optional
    status = db.Column(db.String(20), nullable=False, default=PROPOSAL_PENDING)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    
    # Relationships
    mission = db.relationship('Mission', back_populates='proposals')
    freelancer = db.relationship('User')
    
    def to_dict(self):
        return {
            'id': self.id,
            'mission': self.mission.to_dict() if self.mission else None,
            'freelancer_id': self.freelancer_id,
            'message': self.message,
            'price': self.price,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

class Delivery(db.Model):
    __tablename__ = 'delivery'
    
    id = db.Column(db.Integer, primary_key=True)
    mission_id = db.Column(db.Integer, db.ForeignKey('mission.id'), nullable=False, index=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    freelancer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default='CREATED')
    payment_status = db.Column(db.String(20))  # None, PENDING, PAID
    amount = db.Column(db.Integer, nullable=False)  # cents
    
    # Watermarked preview
    protected_url = db.Column(db.String(500), nullable=False)
    protected_type = db.Column(db.String(10), nullable=False, default='image')
    protected_note = db.Column(db.Text)
    revision_note = db.Column(db.Text)
    revision_count = db.Column(db.Integer, nullable=False, default=0)
    
    # Final asset, only exposed once paid
    final_url = db.Column(db.String(500))
    final_filename = db.Column(db.String(255))
    final_note = db.Column(db.Text)
    final_expires_at = db.Column(db.DateTime)
    
    stripe_session_id = db.Column(db.String(255), unique=True)
    stripe_payment_id = db.Column(db.String(255))
    paid_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    
    # Relationships
    mission = db.relationship('Mission', back_populates='deliveries')
    creator = db.relationship('User', foreign_keys=[creator_id])
    freelancer = db.relationship('User', foreign_keys=[freelancer_id])
    
    def to_dict(self, viewer_id=None):
        paid = self.payment_status == 'PAID'
        return {
            'id': self.id,
            'mission': self.mission.to_dict() if self.mission else None,
            'creator_id': self.creator_id,
            'freelancer_id': self.freelancer_id,
            'status': self.status,
            'payment_status': self.payment_status,
            'amount': self.amount,
            'protected_url': self.protected_url,
            'protected_type': self.protected_type,
            'protected_note': self.protected_note,
            'revision_note': self.revision_note,
            'revision_count': self.revision_count,
            'has_final': self.final_url is not None,
            'final_url': self.final_url if paid else None,
            'final_filename': self.final_filename if paid else None,
            'final_note': self.final_note if paid else None,
            'final_expires_at': self.final_expires_at.isoformat() if self.final_expires_at else None,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'is_creator': viewer_id == self.creator_id,
            'is_freelancer': viewer_id == self.freelancer_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
