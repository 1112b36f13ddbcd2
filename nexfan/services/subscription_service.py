"""
Ciclo de vida das assinaturas: criação, confirmação de pagamento e cancelamento

Concorrência: a linha única por (usuário, criador) e a unicidade de
(subscription_id, provider_payment_id) no ledger substituem locks explícitos.
Campos de plano/período seguem last-writer-wins; o status é idempotente.
"""
import calendar
import logging
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from nexfan import db
from nexfan.errors import Conflict, Forbidden, InvalidInput, NotFound, Unauthorized
from nexfan.models import (Payment, PaymentStatus, Plan, Subscription, SubscriptionStatus,
                           record_audit)
from nexfan.services.access import Viewer, is_subscription_active

logger = logging.getLogger(__name__)

# Status a partir dos quais um pagamento confirmado reativa a assinatura
ACTIVATABLE_STATUSES = (
    SubscriptionStatus.PENDING,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.EXPIRED,
)


def add_one_month(dt: datetime) -> datetime:
    """Soma um mês de calendário, limitando ao último dia do mês seguinte"""
    year = dt.year + dt.month // 12
    month = dt.month % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def payment_selection_url(subscription: Subscription) -> str:
    base_url = current_app.config.get('APP_URL', 'http://localhost:5000').rstrip('/')
    return f"{base_url}/checkout/{subscription.id}/payment"


class SubscriptionService:
    """Operações de ciclo de vida das assinaturas"""

    @staticmethod
    def get_owned(subscription_id, viewer: Viewer) -> Subscription:
        """Busca a assinatura garantindo que pertence ao viewer"""
        subscription = db.session.get(Subscription, subscription_id)
        if not subscription:
            raise NotFound('Assinatura não encontrada')
        if subscription.user_id != viewer.id:
            raise Forbidden('Não autorizado')
        return subscription

    @staticmethod
    def create_or_replace_subscription(user_id: int, plan_id: int, now: Optional[datetime] = None):
        """
        Cria (ou reaproveita) a assinatura do usuário ao criador do plano em PENDING

        Args:
            user_id: Usuário que está assinando
            plan_id: Plano escolhido
            now: Instante de referência

        Returns:
            tuple: (Subscription, url da seleção de pagamento)
        """
        now = now or datetime.utcnow()

        plan = db.session.get(Plan, plan_id) if plan_id is not None else None
        if not plan or not plan.is_active:
            raise NotFound('Plano não encontrado ou inativo')

        if not plan.is_monthly:
            raise InvalidInput('Apenas planos mensais são permitidos', details={'planId': 'Plano não mensal'})

        if plan.creator.user_id == user_id:
            raise InvalidInput('Você não pode assinar seu próprio conteúdo')

        existing = Subscription.query.filter_by(user_id=user_id, creator_id=plan.creator_id).first()

        if existing and is_subscription_active(existing.status, existing.current_period_end, now):
            raise Conflict('Você já possui uma assinatura ativa com este criador')

        period_end = add_one_month(now)

        if existing:
            subscription = existing
        else:
            subscription = Subscription(user_id=user_id, creator_id=plan.creator_id)
            db.session.add(subscription)

        subscription.plan_id = plan.id
        subscription.status = SubscriptionStatus.PENDING
        subscription.current_period_start = now
        subscription.current_period_end = period_end
        subscription.canceled_at = None

        try:
            db.session.commit()
        except IntegrityError:
            # Outra requisição criou a linha (user, creator) primeiro
            db.session.rollback()
            subscription = Subscription.query.filter_by(user_id=user_id, creator_id=plan.creator_id).one()
            if is_subscription_active(subscription.status, subscription.current_period_end, now):
                raise Conflict('Você já possui uma assinatura ativa com este criador')
            subscription.plan_id = plan.id
            subscription.status = SubscriptionStatus.PENDING
            subscription.current_period_start = now
            subscription.current_period_end = period_end
            subscription.canceled_at = None
            db.session.commit()

        logger.info(f"Assinatura {subscription.id} em PENDING (user={user_id}, plano={plan.id})")
        return subscription, payment_selection_url(subscription)

    @staticmethod
    def confirm_payment(subscription_id, provider: str, provider_payment_id: str, payment_status: str,
                        amount: Optional[int] = None, period_start: Optional[datetime] = None,
                        period_end: Optional[datetime] = None,
                        provider_subscription_id: Optional[str] = None,
                        now: Optional[datetime] = None) -> Subscription:
        """
        Aplica o status reportado pelo provedor a uma assinatura

        Só ativa quando o pagamento está COMPLETED. Chamadas repetidas com o
        mesmo provider_payment_id já processado não alteram nada.
        """
        now = now or datetime.utcnow()

        subscription = db.session.get(Subscription, subscription_id)
        if not subscription:
            raise NotFound('Assinatura não encontrada')

        provider_payment_id = str(provider_payment_id)
        payment = Payment.query.filter_by(
            subscription_id=subscription.id,
            provider_payment_id=provider_payment_id
        ).first()

        if payment and payment.status == PaymentStatus.COMPLETED:
            logger.info(f"Pagamento {provider_payment_id} já processado")
            return subscription

        if payment_status != PaymentStatus.COMPLETED:
            if payment is None:
                db.session.add(Payment(
                    subscription_id=subscription.id,
                    amount=amount if amount is not None else subscription.plan.price,
                    currency=subscription.plan.currency,
                    status=payment_status,
                    provider=provider,
                    provider_payment_id=provider_payment_id,
                ))
            elif payment.status != PaymentStatus.FAILED:
                payment.status = payment_status
            SubscriptionService._commit_ledger()
            return subscription

        if payment is None:
            payment = Payment(
                subscription_id=subscription.id,
                amount=amount if amount is not None else subscription.plan.price,
                currency=subscription.plan.currency,
                provider=provider,
                provider_payment_id=provider_payment_id,
            )
            db.session.add(payment)
        elif amount is not None:
            payment.amount = amount
        payment.status = PaymentStatus.COMPLETED
        payment.paid_at = now
        payment.failed_at = None
        payment.failure_reason = None

        lapsed = (subscription.status == SubscriptionStatus.ACTIVE and not is_subscription_active(
            subscription.status, subscription.current_period_end, now))

        if subscription.status in ACTIVATABLE_STATUSES or (lapsed and not period_end):
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.current_period_start = period_start or now
            subscription.current_period_end = period_end or add_one_month(now)
            logger.info(f"Assinatura {subscription.id} ativada até {subscription.current_period_end}")
        elif subscription.status == SubscriptionStatus.ACTIVE and period_end:
            # Renovação: avançar o período
            subscription.current_period_start = period_start or subscription.current_period_start
            subscription.current_period_end = max(period_end, subscription.current_period_end)
            logger.info(f"Assinatura {subscription.id} renovada até {subscription.current_period_end}")
        else:
            logger.warning(f"Pagamento {provider_payment_id} confirmado para assinatura "
                           f"{subscription.id} com status {subscription.status}; status mantido")

        if provider_subscription_id:
            subscription.provider_subscription_id = provider_subscription_id

        if not SubscriptionService._commit_ledger():
            return db.session.get(Subscription, subscription_id)

        record_audit('PAYMENT_CONFIRMED', 'Subscription', subscription.id, subscription.user_id,
                     {'provider': provider, 'providerPaymentId': provider_payment_id})
        return subscription

    @staticmethod
    def _commit_ledger() -> bool:
        """Commit protegido pela unicidade do ledger; False se outra chamada já gravou"""
        try:
            db.session.commit()
            return True
        except IntegrityError:
            db.session.rollback()
            logger.info("Pagamento já registrado por outra requisição concorrente")
            return False

    @staticmethod
    def record_payment_failure(subscription_id, provider: str, provider_payment_id: str,
                               reason: Optional[str] = None, now: Optional[datetime] = None):
        """Marca o pagamento como FAILED sem alterar o status da assinatura"""
        now = now or datetime.utcnow()
        subscription = db.session.get(Subscription, subscription_id)
        if not subscription:
            raise NotFound('Assinatura não encontrada')

        payment = Payment.query.filter_by(
            subscription_id=subscription.id,
            provider_payment_id=str(provider_payment_id)
        ).first()

        if payment and payment.status == PaymentStatus.COMPLETED:
            return payment

        if payment is None:
            payment = Payment(
                subscription_id=subscription.id,
                amount=subscription.plan.price,
                currency=subscription.plan.currency,
                provider=provider,
                provider_payment_id=str(provider_payment_id),
            )
            db.session.add(payment)

        payment.status = PaymentStatus.FAILED
        payment.failed_at = now
        payment.failure_reason = reason or 'Pagamento rejeitado'
        SubscriptionService._commit_ledger()
        logger.info(f"Pagamento {provider_payment_id} falhou: {payment.failure_reason}")
        return payment

    @staticmethod
    def find_by_provider_subscription(provider_subscription_id: str) -> Optional[Subscription]:
        if not provider_subscription_id:
            return None
        return Subscription.query.filter_by(provider_subscription_id=provider_subscription_id).first()

    @staticmethod
    def renew(provider_subscription_id: str, provider: str, provider_payment_id: str, amount: int,
              period_start: datetime, period_end: datetime) -> Optional[Subscription]:
        """Cobrança recorrente paga: avança o período e registra o pagamento"""
        subscription = SubscriptionService.find_by_provider_subscription(provider_subscription_id)
        if not subscription:
            logger.warning(f"Renovação para subscription desconhecida: {provider_subscription_id}")
            return None

        return SubscriptionService.confirm_payment(
            subscription.id, provider, provider_payment_id, PaymentStatus.COMPLETED,
            amount=amount, period_start=period_start, period_end=period_end,
        )

    @staticmethod
    def mark_past_due(provider_subscription_id: str) -> Optional[Subscription]:
        subscription = SubscriptionService.find_by_provider_subscription(provider_subscription_id)
        if not subscription:
            return None
        if subscription.status == SubscriptionStatus.CANCELED:
            return subscription

        subscription.status = SubscriptionStatus.PAST_DUE
        db.session.commit()
        logger.info(f"Assinatura {subscription.id} marcada como PAST_DUE")
        return subscription

    @staticmethod
    def sync_provider_status(provider_subscription_id: str, provider_status: str,
                             period_start: Optional[datetime] = None,
                             period_end: Optional[datetime] = None,
                             now: Optional[datetime] = None) -> Optional[Subscription]:
        """Espelha o status da subscription do Stripe na assinatura local"""
        subscription = SubscriptionService.find_by_provider_subscription(provider_subscription_id)
        if not subscription:
            return None

        if provider_status == 'past_due':
            status = SubscriptionStatus.PAST_DUE
        elif provider_status == 'canceled':
            status = SubscriptionStatus.CANCELED
        else:
            status = SubscriptionStatus.ACTIVE

        if status == SubscriptionStatus.CANCELED and subscription.status != SubscriptionStatus.CANCELED:
            subscription.canceled_at = now or datetime.utcnow()
        subscription.status = status
        if period_start:
            subscription.current_period_start = period_start
        if period_end:
            subscription.current_period_end = period_end

        db.session.commit()
        return subscription

    @staticmethod
    def cancel(subscription_id, viewer: Optional[Viewer], now: Optional[datetime] = None) -> Subscription:
        """
        Cancela a assinatura; o acesso é revogado imediatamente

        Permitido apenas ao próprio assinante ou a um ADMIN.
        """
        if viewer is None:
            raise Unauthorized()

        subscription = db.session.get(Subscription, subscription_id)
        if not subscription:
            raise NotFound('Assinatura não encontrada')

        if subscription.user_id != viewer.id and not viewer.is_admin:
            raise Forbidden('Não autorizado')

        if subscription.status == SubscriptionStatus.CANCELED:
            return subscription

        subscription.status = SubscriptionStatus.CANCELED
        subscription.canceled_at = now or datetime.utcnow()
        db.session.commit()
        logger.info(f"Assinatura {subscription.id} cancelada por {viewer.id}")

        if subscription.provider_subscription_id:
            from nexfan.services.stripe_service import StripeService
            if not StripeService.cancel_subscription(subscription.provider_subscription_id):
                logger.error(f"Falha ao cancelar {subscription.provider_subscription_id} no Stripe")

        record_audit('SUBSCRIPTION_CANCELED', 'Subscription', subscription.id, viewer.id,
                     {'byAdmin': viewer.id != subscription.user_id})
        return subscription

    @staticmethod
    def cancel_by_provider(provider_subscription_id: str, now: Optional[datetime] = None) -> int:
        """Stripe removeu a subscription: cancelar todas as assinaturas locais ligadas a ela"""
        subscriptions = Subscription.query.filter_by(provider_subscription_id=provider_subscription_id).all()
        for subscription in subscriptions:
            if subscription.status != SubscriptionStatus.CANCELED:
                subscription.status = SubscriptionStatus.CANCELED
                subscription.canceled_at = now or datetime.utcnow()
        db.session.commit()
        return len(subscriptions)
