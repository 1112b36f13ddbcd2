from datetime import datetime
from nexfan import db


class SubscriptionStatus:
    PENDING = 'PENDING'
    ACTIVE = 'ACTIVE'
    CANCELED = 'CANCELED'
    EXPIRED = 'EXPIRED'
    PAST_DUE = 'PAST_DUE'

    ALL = (PENDING, ACTIVE, CANCELED, EXPIRED, PAST_DUE)


class PaymentStatus:
    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'


class PaymentProvider:
    STRIPE = 'STRIPE'
    MERCADOPAGO = 'MERCADOPAGO'


class Subscription(db.Model):
    __tablename__ = 'subscriptions'
    __table_args__ = (db.UniqueConstraint('user_id', 'creator_id', name='uq_subscription_user_creator'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('creator_profiles.id'), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=SubscriptionStatus.PENDING)
    current_period_start = db.Column(db.DateTime, nullable=False)
    current_period_end = db.Column(db.DateTime, nullable=False)
    canceled_at = db.Column(db.DateTime)
    provider_subscription_id = db.Column(db.String(100), index=True)  # ID da subscription no Stripe
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relacionamentos
    user = db.relationship('User', back_populates='subscriptions')
    creator = db.relationship('CreatorProfile', back_populates='subscribers')
    plan = db.relationship('Plan', back_populates='subscriptions')
    payments = db.relationship('Payment', back_populates='subscription', lazy='dynamic',
                               cascade='all, delete-orphan', order_by='Payment.created_at.desc()')

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'creatorId': self.creator_id,
            'planId': self.plan_id,
            'status': self.status,
            'currentPeriodStart': self.current_period_start.isoformat() if self.current_period_start else None,
            'currentPeriodEnd': self.current_period_end.isoformat() if self.current_period_end else None,
            'canceledAt': self.canceled_at.isoformat() if self.canceled_at else None,
            'providerSubscriptionId': self.provider_subscription_id,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Subscription {self.user_id}->{self.creator_id} - {self.status}>'


class Payment(db.Model):
    """Ledger de pagamentos de uma assinatura (somente inserção)"""
    __tablename__ = 'payments'
    __table_args__ = (
        db.UniqueConstraint('subscription_id', 'provider_payment_id', name='uq_payment_provider_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey('subscriptions.id'), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)  # centavos
    currency = db.Column(db.String(3), default='BRL')
    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING)
    provider = db.Column(db.String(20), nullable=False)  # STRIPE, MERCADOPAGO
    provider_payment_id = db.Column(db.String(100), nullable=False)
    paid_at = db.Column(db.DateTime)
    failed_at = db.Column(db.DateTime)
    failure_reason = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    subscription = db.relationship('Subscription', back_populates='payments')

    def to_dict(self):
        return {
            'id': self.id,
            'subscriptionId': self.subscription_id,
            'amount': self.amount,
            'currency': self.currency,
            'status': self.status,
            'provider': self.provider,
            'providerPaymentId': self.provider_payment_id,
            'paidAt': self.paid_at.isoformat() if self.paid_at else None,
        }

    def __repr__(self):
        return f'<Payment {self.provider_payment_id} - {self.status}>'
