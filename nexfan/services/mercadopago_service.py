"""
Serviço de integração com Mercado Pago para pagamentos PIX
Usa a API REST diretamente (POST /v1/payments, GET /v1/payments/<id>)
"""
import hashlib
import hmac
import json
import logging
from typing import Dict, Optional
from urllib.parse import urlparse

import requests
from flask import current_app

from nexfan import db
from nexfan.errors import UpstreamProviderError
from nexfan.models import Payment, PaymentProvider, PaymentStatus, Subscription

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5


class MercadoPagoService:
    """Serviço para gerenciar pagamentos PIX via Mercado Pago"""

    @staticmethod
    def _headers(idempotency_key: Optional[str] = None) -> Dict:
        access_token = current_app.config.get('MERCADOPAGO_ACCESS_TOKEN')
        if not access_token:
            logger.error("MERCADOPAGO_ACCESS_TOKEN não configurado")
            raise UpstreamProviderError('Pagamento PIX indisponível')

        headers = {
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json',
        }
        if idempotency_key:
            headers['X-Idempotency-Key'] = idempotency_key
        return headers

    @staticmethod
    def _api_url(path: str) -> str:
        base_url = current_app.config.get('MERCADOPAGO_API_URL', 'https://api.mercadopago.com')
        return f"{base_url.rstrip('/')}{path}"

    @staticmethod
    def notification_url() -> Optional[str]:
        """URL pública de webhook; localhost e valores inválidos são omitidos"""
        webhook_url = (current_app.config.get('MERCADOPAGO_WEBHOOK_URL') or '').strip()
        if not webhook_url:
            return None

        parsed = urlparse(webhook_url)
        hostname = parsed.hostname or ''
        if parsed.scheme not in ('http', 'https') or not hostname:
            logger.warning("MERCADOPAGO_WEBHOOK_URL inválida, será omitida")
            return None
        if 'localhost' in hostname or '127.0.0.1' in hostname:
            logger.warning("MERCADOPAGO_WEBHOOK_URL aponta para localhost, será omitida")
            return None
        return webhook_url

    @staticmethod
    def map_status(provider_status: Optional[str]) -> str:
        if provider_status == 'approved':
            return PaymentStatus.COMPLETED
        if provider_status in ('rejected', 'cancelled'):
            return PaymentStatus.FAILED
        return PaymentStatus.PENDING

    @staticmethod
    def create_pix_payment(subscription: Subscription) -> Dict:
        """
        Cria um pagamento PIX para a assinatura e registra no ledger como PENDING

        Args:
            subscription: Assinatura em PENDING

        Returns:
            dict: paymentId, qrCode, qrCodeBase64, paymentUrl, status, amount, redirectUrl
        """
        headers = MercadoPagoService._headers(idempotency_key=f'subscription-{subscription.id}')

        plan = subscription.plan
        user = subscription.user
        name_parts = (user.name or '').split()

        payload = {
            'transaction_amount': plan.price / 100,
            'description': f"Assinatura {plan.name} - {plan.creator.display_name}",
            'payment_method_id': 'pix',
            'payer': {
                'email': user.email,
                'first_name': name_parts[0] if name_parts else 'Cliente',
                'last_name': ' '.join(name_parts[1:]),
            },
            'metadata': {
                'subscription_id': str(subscription.id),
                'plan_id': str(plan.id),
                'creator_id': str(subscription.creator_id),
                'user_id': str(subscription.user_id),
            },
            'statement_descriptor': f"NEXFAN {plan.name[:15]}",
        }

        notification_url = MercadoPagoService.notification_url()
        if notification_url:
            payload['notification_url'] = notification_url

        try:
            response = requests.post(
                MercadoPagoService._api_url('/v1/payments'),
                headers=headers,
                json=payload,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            created = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Erro ao criar pagamento PIX da assinatura {subscription.id}: {e}")
            raise UpstreamProviderError('Erro ao criar pagamento PIX')

        payment_id = created.get('id')
        pix_data = (created.get('point_of_interaction') or {}).get('transaction_data')
        if not payment_id or not pix_data:
            logger.error(f"Resposta do Mercado Pago sem dados PIX: {created}")
            raise UpstreamProviderError('Dados PIX não encontrados na resposta')

        payment_id = str(payment_id)
        existing = Payment.query.filter_by(subscription_id=subscription.id,
                                           provider_payment_id=payment_id).first()
        if not existing:
            db.session.add(Payment(
                subscription_id=subscription.id,
                amount=plan.price,
                currency=plan.currency or 'BRL',
                status=PaymentStatus.PENDING,
                provider=PaymentProvider.MERCADOPAGO,
                provider_payment_id=payment_id,
            ))
            db.session.commit()

        base_url = current_app.config.get('APP_URL', 'http://localhost:5000').rstrip('/')
        logger.info(f"Pagamento PIX {payment_id} criado para assinatura {subscription.id}")

        return {
            'paymentId': payment_id,
            'paymentUrl': pix_data.get('ticket_url') or pix_data.get('qr_code'),
            'qrCode': pix_data.get('qr_code'),
            'qrCodeBase64': pix_data.get('qr_code_base64'),
            'status': created.get('status'),
            'amount': plan.price,
            'redirectUrl': f"{base_url}/checkout/{subscription.id}/pix/{payment_id}",
        }

    @staticmethod
    def get_payment(payment_id) -> Dict:
        """Consulta o pagamento no Mercado Pago"""
        headers = MercadoPagoService._headers()
        try:
            response = requests.get(
                MercadoPagoService._api_url(f'/v1/payments/{payment_id}'),
                headers=headers,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Erro ao consultar pagamento {payment_id}: {e}")
            raise UpstreamProviderError('Erro ao consultar pagamento PIX')

    @staticmethod
    def verify_webhook_signature(body, signature: Optional[str]) -> bool:
        """
        Valida o header x-signature (ts=<ts>,v1=<hash>)

        O hash é HMAC-SHA256 de "id:<data.id>;request-id:;ts:<ts>;" com o
        segredo do webhook.
        """
        secret = current_app.config.get('MERCADOPAGO_WEBHOOK_SECRET')
        if not secret or not signature:
            return False

        parts = {}
        for item in signature.split(','):
            key, _, value = item.strip().partition('=')
            parts[key] = value

        ts = parts.get('ts')
        received_hash = parts.get('v1')
        if not ts or not received_hash:
            return False

        try:
            if isinstance(body, bytes):
                body = body.decode('utf-8')
            data_id = (json.loads(body).get('data') or {}).get('id')
        except (ValueError, AttributeError):
            return False

        manifest = f"id:{data_id};request-id:;ts:{ts};"
        expected = hmac.new(secret.encode('utf-8'), manifest.encode('utf-8'), hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, received_hash)
