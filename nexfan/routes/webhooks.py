# nexfan/routes/webhooks.py
from flask import Blueprint, current_app, request, jsonify
import json
import logging
import stripe

from nexfan.errors import NexFanError, NotFound, UpstreamProviderError
from nexfan.models import PaymentProvider, PaymentStatus, record_audit
from nexfan.services.mercadopago_service import MercadoPagoService
from nexfan.services.stripe_service import (StripeService, payment_reference, stripe_field, stripe_id,
                                            stripe_timestamp, subscription_period)
from nexfan.services.subscription_service import SubscriptionService

bp = Blueprint('webhooks', __name__, url_prefix='/api/webhooks')
logger = logging.getLogger(__name__)


@bp.route('/stripe', methods=['POST'])
def stripe_webhook():
    """Processar webhooks do Stripe"""
    logger.info("=== WEBHOOK RECEBIDO DO STRIPE ===")

    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')

    try:
        event = StripeService.construct_event(payload, sig_header)
    except UpstreamProviderError as e:
        return jsonify({'error': e.message}), 500
    except ValueError as e:
        logger.error(f"Invalid payload: {e}")
        return jsonify({'error': 'Invalid payload'}), 400
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid signature: {e}")
        return jsonify({'error': 'Invalid signature'}), 400

    event_type = event['type']
    obj = event['data']['object']
    logger.info(f"Received event: {event_type}")

    try:
        if event_type == 'checkout.session.completed':
            handle_checkout_session_completed(obj)
        elif event_type == 'invoice.paid':
            handle_invoice_paid(obj)
        elif event_type == 'invoice.payment_failed':
            handle_invoice_payment_failed(obj)
        elif event_type == 'customer.subscription.updated':
            handle_subscription_updated(obj)
        elif event_type == 'customer.subscription.deleted':
            handle_subscription_deleted(obj)
        else:
            logger.info(f"Evento não tratado: {event_type}")
    except Exception as e:
        logger.exception(f"Erro ao processar webhook {event_type}: {e}")
        return jsonify({'error': 'Webhook processing failed'}), 500

    record_audit('WEBHOOK_RECEIVED', 'Stripe', stripe_field(obj, 'id'), details={'type': event_type})
    return jsonify({'received': True}), 200


def handle_checkout_session_completed(session):
    """Checkout pago: ativar a assinatura local"""
    if stripe_field(session, 'payment_status') != 'paid':
        logger.warning(f"Pagamento não concluído, status: {stripe_field(session, 'payment_status')}")
        return

    subscription_id = stripe_field(stripe_field(session, 'metadata'), 'subscriptionId')
    if not subscription_id:
        logger.error("subscriptionId não encontrado nos metadata")
        return

    stripe_sub_id = stripe_id(stripe_field(session, 'subscription'))

    period_start = period_end = None
    if stripe_sub_id:
        try:
            period_start, period_end = subscription_period(StripeService.retrieve_subscription(stripe_sub_id))
        except UpstreamProviderError:
            logger.warning(f"Usando período calculado para {stripe_sub_id}")

    try:
        SubscriptionService.confirm_payment(
            int(subscription_id),
            PaymentProvider.STRIPE,
            payment_reference(session),
            PaymentStatus.COMPLETED,
            amount=stripe_field(session, 'amount_total'),
            period_start=period_start,
            period_end=period_end,
            provider_subscription_id=stripe_sub_id,
        )
    except NotFound:
        logger.error(f"Assinatura local não encontrada: {subscription_id}")


def _invoice_subscription_id(invoice):
    stripe_sub_id = stripe_field(invoice, 'subscription')
    if not stripe_sub_id:
        details = stripe_field(stripe_field(invoice, 'parent'), 'subscription_details')
        stripe_sub_id = stripe_field(details, 'subscription')
    return stripe_id(stripe_sub_id)


def _invoice_period(invoice):
    lines = stripe_field(stripe_field(invoice, 'lines'), 'data') or []
    if lines:
        period = stripe_field(lines[0], 'period')
        return stripe_timestamp(stripe_field(period, 'start')), stripe_timestamp(stripe_field(period, 'end'))
    return stripe_timestamp(stripe_field(invoice, 'period_start')), stripe_timestamp(stripe_field(invoice, 'period_end'))


def handle_invoice_paid(invoice):
    """Cobrança recorrente paga: renovar o período"""
    stripe_sub_id = _invoice_subscription_id(invoice)
    if not stripe_sub_id:
        logger.info(f"Invoice {stripe_field(invoice, 'id')} sem subscription")
        return

    period_start, period_end = _invoice_period(invoice)
    SubscriptionService.renew(
        stripe_sub_id,
        PaymentProvider.STRIPE,
        payment_reference(invoice),
        stripe_field(invoice, 'amount_paid'),
        period_start,
        period_end,
    )


def handle_invoice_payment_failed(invoice):
    stripe_sub_id = _invoice_subscription_id(invoice)
    if not stripe_sub_id:
        return

    subscription = SubscriptionService.mark_past_due(stripe_sub_id)
    if subscription:
        SubscriptionService.record_payment_failure(
            subscription.id,
            PaymentProvider.STRIPE,
            payment_reference(invoice),
            'Falha na cobrança recorrente',
        )


def handle_subscription_updated(stripe_subscription):
    period_start, period_end = subscription_period(stripe_subscription)
    SubscriptionService.sync_provider_status(
        stripe_field(stripe_subscription, 'id'),
        stripe_field(stripe_subscription, 'status'),
        period_start=period_start,
        period_end=period_end,
    )


def handle_subscription_deleted(stripe_subscription):
    count = SubscriptionService.cancel_by_provider(stripe_field(stripe_subscription, 'id'))
    logger.info(f"{count} assinatura(s) cancelada(s) para {stripe_field(stripe_subscription, 'id')}")


@bp.route('/mercadopago', methods=['POST'])
def mercadopago_webhook():
    """Processar notificações do Mercado Pago"""
    logger.info("=== WEBHOOK RECEBIDO DO MERCADO PAGO ===")

    body = request.get_data()

    if current_app.config.get('MERCADOPAGO_WEBHOOK_SECRET'):
        if not MercadoPagoService.verify_webhook_signature(body, request.headers.get('x-signature')):
            logger.error("Assinatura do webhook do Mercado Pago inválida")
            return jsonify({'error': 'Invalid signature'}), 401
    else:
        logger.warning("MERCADOPAGO_WEBHOOK_SECRET não configurado, assinatura não verificada")

    try:
        event = json.loads(body or b'{}')
    except ValueError:
        return jsonify({'error': 'Invalid payload'}), 400

    event_type = event.get('type')
    data = event.get('data') or {}
    logger.info(f"Mercado Pago webhook: {event_type} {data}")

    try:
        if event_type == 'payment' and data.get('id'):
            handle_pix_payment(str(data['id']))
        else:
            logger.info(f"Evento não tratado: {event_type}")
    except Exception as e:
        logger.exception(f"Erro ao processar webhook do Mercado Pago: {e}")
        return jsonify({'error': 'Webhook processing failed'}), 500

    record_audit('WEBHOOK_RECEIVED', 'MercadoPago', data.get('id'),
                 details={'type': event_type, 'data': data})
    return jsonify({'received': True}), 200


def handle_pix_payment(payment_id):
    """Aplicar o status do pagamento PIX na assinatura"""
    details = MercadoPagoService.get_payment(payment_id)

    subscription_id = (details.get('metadata') or {}).get('subscription_id')
    if not subscription_id:
        logger.error(f"subscription_id não encontrado nos metadata do pagamento {payment_id}")
        return

    status = MercadoPagoService.map_status(details.get('status'))

    try:
        if status == PaymentStatus.FAILED:
            SubscriptionService.record_payment_failure(
                int(subscription_id),
                PaymentProvider.MERCADOPAGO,
                payment_id,
                details.get('status_detail'),
            )
            logger.info(f"Pagamento PIX rejeitado: {payment_id}")
        else:
            SubscriptionService.confirm_payment(
                int(subscription_id),
                PaymentProvider.MERCADOPAGO,
                payment_id,
                status,
            )
            if status == PaymentStatus.COMPLETED:
                logger.info(f"Pagamento PIX aprovado e assinatura ativada: {payment_id}")
    except NexFanError as e:
        logger.error(f"Pagamento PIX {payment_id} ignorado: {e.message}")
