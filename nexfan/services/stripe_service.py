"""
Serviço de integração com Stripe para pagamentos com cartão
"""
import calendar
import logging
from datetime import datetime
from typing import Dict, Optional

import stripe
from flask import current_app

from nexfan import db
from nexfan.errors import UpstreamProviderError
from nexfan.models import Subscription

logger = logging.getLogger(__name__)

# Status da subscription no Stripe que liberam a ativação local
STRIPE_ACTIVE_STATUSES = ('active', 'trialing', 'incomplete')


def stripe_field(obj, name):
    """Lê um campo de StripeObject ou dict sem quebrar quando ausente"""
    if obj is None:
        return None
    try:
        return obj[name]
    except (KeyError, TypeError, AttributeError):
        return None


def stripe_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.utcfromtimestamp(int(value))


def stripe_id(value) -> Optional[str]:
    """ID de um campo que pode vir como string ou como objeto expandido"""
    if value is None or isinstance(value, str):
        return value
    return stripe_field(value, 'id')


def payment_reference(obj) -> Optional[str]:
    """
    ID usado no ledger para uma cobrança do Stripe

    Checkout em modo subscription e invoice.paid descrevem a mesma cobrança;
    ambos são registrados pela invoice. Sem invoice, usa o id do próprio objeto.
    """
    return stripe_id(stripe_field(obj, 'invoice')) or stripe_field(obj, 'id')


def subscription_period(stripe_subscription):
    """
    Extrai (início, fim) do período atual de uma subscription do Stripe

    Versões recentes da API movem current_period_* para os itens.
    """
    start = stripe_field(stripe_subscription, 'current_period_start')
    end = stripe_field(stripe_subscription, 'current_period_end')
    if not end:
        items = stripe_field(stripe_field(stripe_subscription, 'items'), 'data') or []
        if items:
            start = stripe_field(items[0], 'current_period_start')
            end = stripe_field(items[0], 'current_period_end')
    return stripe_timestamp(start), stripe_timestamp(end)


class StripeService:
    """Serviço para gerenciar pagamentos via Stripe"""

    @staticmethod
    def _configure():
        api_key = current_app.config.get('STRIPE_SECRET_KEY')
        if not api_key:
            logger.error("STRIPE_SECRET_KEY não configurado")
            raise UpstreamProviderError('Pagamento com cartão indisponível')
        stripe.api_key = api_key

    @staticmethod
    def get_or_create_price(plan) -> str:
        """Cria produto e preço mensal recorrente no Stripe na primeira compra do plano"""
        if plan.stripe_price_id:
            return plan.stripe_price_id

        product = stripe.Product.create(
            name=f"{plan.name} - {plan.creator.display_name}",
            description=plan.description or 'Assinatura mensal',
        )
        price = stripe.Price.create(
            product=product.id,
            unit_amount=plan.price,
            currency=(plan.currency or 'BRL').lower(),
            recurring={'interval': 'month'},
        )
        plan.stripe_price_id = price.id
        db.session.commit()
        return price.id

    @staticmethod
    def create_checkout_session(subscription: Subscription) -> Dict:
        """Criar sessão de checkout recorrente para a assinatura"""
        StripeService._configure()

        base_url = current_app.config.get('APP_URL', 'http://localhost:5000').rstrip('/')
        metadata = {
            'subscriptionId': str(subscription.id),
            'userId': str(subscription.user_id),
            'creatorId': str(subscription.creator_id),
            'planId': str(subscription.plan_id),
        }

        try:
            price_id = StripeService.get_or_create_price(subscription.plan)

            session = stripe.checkout.Session.create(
                mode='subscription',
                payment_method_types=['card'],
                line_items=[{'price': price_id, 'quantity': 1}],
                customer_email=subscription.user.email,
                success_url=f"{base_url}/checkout/{subscription.id}/success",
                cancel_url=f"{base_url}/checkout/{subscription.id}/payment",
                metadata=metadata,
                subscription_data={'metadata': metadata},
            )
        except stripe.StripeError as e:
            error_message = getattr(e, 'user_message', None) or str(e)
            logger.error(f"Erro Stripe ao criar checkout da assinatura {subscription.id}: {error_message}")
            raise UpstreamProviderError('Erro ao criar sessão de pagamento')

        return {
            'session_id': session.id,
            'url': session.url,
        }

    @staticmethod
    def retrieve_subscription(provider_subscription_id: str):
        StripeService._configure()
        try:
            return stripe.Subscription.retrieve(provider_subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Erro ao recuperar subscription {provider_subscription_id}: {e}")
            raise UpstreamProviderError()

    @staticmethod
    def find_paid_checkout(subscription: Subscription) -> Optional[Dict]:
        """
        Procura no Stripe um checkout pago para a assinatura

        Returns:
            dict com provider_subscription_id, provider_payment_id, amount e
            período, ou None se ainda não houver pagamento confirmado
        """
        StripeService._configure()

        created_since = calendar.timegm((subscription.created_at or datetime.utcnow()).utctimetuple())
        try:
            sessions = stripe.checkout.Session.list(limit=100, created={'gte': created_since})
        except stripe.StripeError as e:
            logger.error(f"Erro ao listar checkout sessions: {e}")
            raise UpstreamProviderError()

        for session in stripe_field(sessions, 'data') or []:
            metadata = stripe_field(session, 'metadata') or {}
            if stripe_field(metadata, 'subscriptionId') != str(subscription.id):
                continue

            if stripe_field(session, 'payment_status') != 'paid' or not stripe_field(session, 'subscription'):
                logger.info(f"Checkout {stripe_field(session, 'id')} ainda não pago")
                continue

            stripe_sub_id = stripe_id(stripe_field(session, 'subscription'))

            stripe_sub = StripeService.retrieve_subscription(stripe_sub_id)
            if stripe_field(stripe_sub, 'status') not in STRIPE_ACTIVE_STATUSES:
                logger.info(f"Subscription {stripe_sub_id} no Stripe com status {stripe_field(stripe_sub, 'status')}")
                continue

            period_start, period_end = subscription_period(stripe_sub)
            return {
                'provider_subscription_id': stripe_sub_id,
                'provider_payment_id': payment_reference(session),
                'amount': stripe_field(session, 'amount_total'),
                'period_start': period_start,
                'period_end': period_end,
            }

        return None

    @staticmethod
    def construct_event(payload: bytes, signature: str):
        """Verificar assinatura do webhook e montar o evento"""
        webhook_secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
        if not webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET não configurado!")
            raise UpstreamProviderError('Webhook secret not configured')
        return stripe.Webhook.construct_event(payload, signature, webhook_secret)

    @staticmethod
    def cancel_subscription(provider_subscription_id: str) -> bool:
        """Cancelar assinatura no Stripe"""
        try:
            StripeService._configure()
            stripe.Subscription.cancel(provider_subscription_id)
            return True
        except (UpstreamProviderError, stripe.StripeError) as e:
            logger.error(f"Erro ao cancelar subscription {provider_subscription_id}: {e}")
            return False
