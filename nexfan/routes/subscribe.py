# nexfan/routes/subscribe.py
from flask import Blueprint, current_app, request, jsonify
import logging

from nexfan.errors import Conflict, InvalidInput, NotFound, Forbidden, UpstreamProviderError
from nexfan.models import Payment, PaymentProvider, PaymentStatus, Subscription, SubscriptionStatus
from nexfan.services.access import is_subscription_active
from nexfan.services.mercadopago_service import MercadoPagoService
from nexfan.services.stripe_service import StripeService
from nexfan.services.subscription_service import SubscriptionService
from nexfan.utils.decorators import api_login_required, current_viewer

bp = Blueprint('subscribe', __name__, url_prefix='/api/subscribe')
logger = logging.getLogger(__name__)


def effective_status(subscription):
    """Status exibido ao cliente: ACTIVE com período vencido aparece como EXPIRED"""
    if subscription.status == SubscriptionStatus.ACTIVE and not is_subscription_active(
            subscription.status, subscription.current_period_end):
        return SubscriptionStatus.EXPIRED
    return subscription.status


def subscription_payload(subscription, with_payments=False):
    payload = subscription.to_dict()
    payload['status'] = effective_status(subscription)
    payload['isActive'] = is_subscription_active(subscription.status, subscription.current_period_end)
    payload['plan'] = subscription.plan.to_dict() if subscription.plan else None
    creator = subscription.creator
    payload['creator'] = {
        'id': creator.id,
        'displayName': creator.display_name,
        'slug': creator.slug,
        'avatar': creator.user.avatar if creator.user else None,
    } if creator else None
    if with_payments:
        payload['payments'] = [p.to_dict() for p in subscription.payments]
    return payload


def _ensure_payable(subscription):
    if is_subscription_active(subscription.status, subscription.current_period_end):
        raise Conflict('Assinatura já está ativa')
    if subscription.status == SubscriptionStatus.CANCELED:
        raise InvalidInput('Assinatura cancelada. Assine novamente para pagar.')


@bp.route('', methods=['POST'])
@api_login_required
def create():
    data = request.get_json(silent=True) or {}
    plan_id = data.get('planId')
    if not isinstance(plan_id, int) or isinstance(plan_id, bool):
        raise InvalidInput('Plano é obrigatório', details={'planId': 'Informe o plano'})

    viewer = current_viewer()
    subscription, payment_url = SubscriptionService.create_or_replace_subscription(viewer.id, plan_id)

    return jsonify({
        'subscriptionId': subscription.id,
        'status': subscription.status,
        'url': payment_url,
    }), 201


@bp.route('', methods=['GET'])
@api_login_required
def list_mine():
    viewer = current_viewer()
    subscriptions = Subscription.query.filter_by(user_id=viewer.id)\
        .order_by(Subscription.created_at.desc()).all()
    return jsonify({'subscriptions': [subscription_payload(s) for s in subscriptions]})


@bp.route('/<int:subscription_id>', methods=['GET'])
@api_login_required
def detail(subscription_id):
    subscription = SubscriptionService.get_owned(subscription_id, current_viewer())
    return jsonify({'subscription': subscription_payload(subscription, with_payments=True)})


@bp.route('/<int:subscription_id>', methods=['DELETE'])
@api_login_required
def cancel(subscription_id):
    subscription = SubscriptionService.cancel(subscription_id, current_viewer())
    return jsonify({'success': True, 'subscription': subscription_payload(subscription)})


@bp.route('/<int:subscription_id>/payment/card', methods=['POST'])
@api_login_required
def pay_with_card(subscription_id):
    """Cria a sessão de checkout do Stripe"""
    subscription = SubscriptionService.get_owned(subscription_id, current_viewer())
    _ensure_payable(subscription)

    session = StripeService.create_checkout_session(subscription)
    logger.info(f"Checkout Stripe {session['session_id']} criado para assinatura {subscription.id}")

    return jsonify({'sessionId': session['session_id'], 'url': session['url']})


@bp.route('/<int:subscription_id>/payment/pix', methods=['POST'])
@api_login_required
def pay_with_pix(subscription_id):
    """Cria o pagamento PIX no Mercado Pago"""
    subscription = SubscriptionService.get_owned(subscription_id, current_viewer())
    _ensure_payable(subscription)

    return jsonify(MercadoPagoService.create_pix_payment(subscription))


@bp.route('/<int:subscription_id>/payment/pix/<payment_id>/status', methods=['GET'])
@api_login_required
def pix_status(subscription_id, payment_id):
    payment = Payment.query.filter_by(
        subscription_id=subscription_id,
        provider_payment_id=payment_id,
        provider=PaymentProvider.MERCADOPAGO
    ).first()

    if not payment:
        raise NotFound('Pagamento não encontrado')

    if payment.subscription.user_id != current_viewer().id:
        raise Forbidden('Não autorizado')

    return jsonify({
        'paymentId': payment.provider_payment_id,
        'status': payment.status,
        'amount': payment.amount,
        'paidAt': payment.paid_at.isoformat() if payment.paid_at else None,
    })


@bp.route('/<int:subscription_id>/verify', methods=['POST'])
@api_login_required
def verify(subscription_id):
    """
    Reconsulta os provedores e aplica a confirmação de pagamento

    Usado pela tela de sucesso do checkout enquanto o webhook não chega.
    """
    subscription = SubscriptionService.get_owned(subscription_id, current_viewer())

    if is_subscription_active(subscription.status, subscription.current_period_end):
        return jsonify({'status': SubscriptionStatus.ACTIVE})

    if current_app.config.get('STRIPE_SECRET_KEY'):
        try:
            paid = StripeService.find_paid_checkout(subscription)
        except UpstreamProviderError:
            paid = None

        if paid:
            subscription = SubscriptionService.confirm_payment(
                subscription.id,
                PaymentProvider.STRIPE,
                paid['provider_payment_id'],
                PaymentStatus.COMPLETED,
                amount=paid['amount'],
                period_start=paid['period_start'],
                period_end=paid['period_end'],
                provider_subscription_id=paid['provider_subscription_id'],
            )

    if not is_subscription_active(subscription.status, subscription.current_period_end) \
            and current_app.config.get('MERCADOPAGO_ACCESS_TOKEN'):
        pending = subscription.payments.filter_by(
            provider=PaymentProvider.MERCADOPAGO,
            status=PaymentStatus.PENDING
        ).first()

        if pending:
            try:
                details = MercadoPagoService.get_payment(pending.provider_payment_id)
            except UpstreamProviderError:
                details = None

            if details:
                status = MercadoPagoService.map_status(details.get('status'))
                if status == PaymentStatus.COMPLETED:
                    subscription = SubscriptionService.confirm_payment(
                        subscription.id,
                        PaymentProvider.MERCADOPAGO,
                        pending.provider_payment_id,
                        PaymentStatus.COMPLETED,
                    )
                elif status == PaymentStatus.FAILED:
                    SubscriptionService.record_payment_failure(
                        subscription.id,
                        PaymentProvider.MERCADOPAGO,
                        pending.provider_payment_id,
                        details.get('status_detail'),
                    )

    return jsonify({'status': effective_status(subscription)})
