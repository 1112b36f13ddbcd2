from datetime import datetime
from nexfan import db


class PlanInterval:
    MONTHLY = 'MONTHLY'


class Plan(db.Model):
    __tablename__ = 'plans'

    id = db.Column(db.Integer, primary_key=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('creator_profiles.id'), nullable=False, index=True)
    name = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Integer, nullable=False)  # centavos
    currency = db.Column(db.String(3), default='BRL')
    interval = db.Column(db.String(20), nullable=False, default=PlanInterval.MONTHLY)
    benefits = db.Column(db.JSON, default=list)  # lista ordenada de strings
    is_active = db.Column(db.Boolean, default=True)
    sort_order = db.Column(db.Integer, default=0)
    stripe_price_id = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relacionamentos
    creator = db.relationship('CreatorProfile', back_populates='plans')
    subscriptions = db.relationship('Subscription', back_populates='plan', lazy='dynamic', passive_deletes=True)

    @property
    def is_monthly(self):
        return self.interval == PlanInterval.MONTHLY

    def to_dict(self):
        return {
            'id': self.id,
            'creatorId': self.creator_id,
            'name': self.name,
            'description': self.description,
            'price': self.price,
            'currency': self.currency,
            'interval': self.interval,
            'benefits': list(self.benefits or []),
            'isActive': self.is_active,
            'sortOrder': self.sort_order,
        }

    def __repr__(self):
        return f'<Plan {self.name} - {self.price}>'
