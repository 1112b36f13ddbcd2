# tests/test_webhooks.py
"""
Testes das rotas de webhook (Stripe e Mercado Pago)
"""
import calendar
import hashlib
import hmac
import json
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

from nexfan.models import AuditLog, Payment, PaymentStatus, SubscriptionStatus
from nexfan.routes.webhooks import handle_checkout_session_completed


def ts(dt):
    return calendar.timegm(dt.utctimetuple())


def stripe_event(event_type, obj):
    return {'id': 'evt_test', 'type': event_type, 'data': {'object': obj}}


class TestStripeWebhook:
    """Testes do webhook do Stripe"""

    def test_missing_secret_returns_500(self, client):
        resp = client.post('/api/webhooks/stripe', data=b'{}', content_type='application/json')
        assert resp.status_code == 500

    def test_invalid_signature(self, app, client):
        app.config['STRIPE_WEBHOOK_SECRET'] = 'whsec_test'
        resp = client.post('/api/webhooks/stripe', data=b'{}',
                           content_type='application/json',
                           headers={'Stripe-Signature': 'invalid'})
        assert resp.status_code == 400

    def test_checkout_completed_activates_subscription(self, client, pending_subscription):
        start = datetime(2024, 6, 1, 12, 0)
        end = datetime(2024, 7, 1, 12, 0)
        session = {
            'id': 'cs_test_1',
            'payment_status': 'paid',
            'subscription': 'sub_stripe_1',
            'payment_intent': None,
            'invoice': 'in_test_1',
            'amount_total': 1990,
            'metadata': {'subscriptionId': str(pending_subscription.id)},
        }
        # API recente: período só nos itens
        stripe_sub = {
            'id': 'sub_stripe_1',
            'status': 'active',
            'items': {'data': [{'current_period_start': ts(start), 'current_period_end': ts(end)}]},
        }

        with patch('nexfan.services.stripe_service.StripeService.construct_event',
                   return_value=stripe_event('checkout.session.completed', session)), \
             patch('nexfan.services.stripe_service.StripeService.retrieve_subscription',
                   return_value=stripe_sub):
            resp = client.post('/api/webhooks/stripe', data=b'{}', headers={'Stripe-Signature': 'sig'})

        assert resp.status_code == 200
        assert pending_subscription.status == SubscriptionStatus.ACTIVE
        assert pending_subscription.current_period_end == end
        assert pending_subscription.provider_subscription_id == 'sub_stripe_1'

        payment = Payment.query.filter_by(provider_payment_id='in_test_1').one()
        assert payment.status == PaymentStatus.COMPLETED
        assert AuditLog.query.filter_by(action='WEBHOOK_RECEIVED', entity='Stripe').count() == 1

    def test_duplicate_checkout_event_is_idempotent(self, client, pending_subscription):
        session = {
            'id': 'cs_test_2',
            'payment_status': 'paid',
            'invoice': 'in_test_2',
            'amount_total': 1990,
            'metadata': {'subscriptionId': str(pending_subscription.id)},
        }
        event = stripe_event('checkout.session.completed', session)

        with patch('nexfan.services.stripe_service.StripeService.construct_event', return_value=event):
            client.post('/api/webhooks/stripe', data=b'{}')
            end = pending_subscription.current_period_end
            client.post('/api/webhooks/stripe', data=b'{}')

        assert pending_subscription.current_period_end == end
        assert Payment.query.filter_by(provider_payment_id='in_test_2').count() == 1

    def test_invoice_paid_renews(self, client, db, active_subscription):
        active_subscription.provider_subscription_id = 'sub_renew'
        db.session.commit()
        new_start = active_subscription.current_period_end
        new_end = new_start + timedelta(days=30)
        invoice = {
            'id': 'in_1',
            'subscription': 'sub_renew',
            'payment_intent': 'pi_renew',
            'amount_paid': 1990,
            'lines': {'data': [{'period': {'start': ts(new_start), 'end': ts(new_end)}}]},
        }

        with patch('nexfan.services.stripe_service.StripeService.construct_event',
                   return_value=stripe_event('invoice.paid', invoice)):
            resp = client.post('/api/webhooks/stripe', data=b'{}')

        assert resp.status_code == 200
        assert active_subscription.current_period_end == new_end.replace(microsecond=0)
        assert Payment.query.filter_by(provider_payment_id='in_1').count() == 1

    def test_first_invoice_recorded_once(self, client, pending_subscription):
        """Checkout e invoice.paid da primeira cobrança geram uma única linha no ledger"""
        start = datetime(2024, 6, 1, 12, 0)
        end = datetime(2024, 7, 1, 12, 0)
        session = {
            'id': 'cs_first',
            'payment_status': 'paid',
            'subscription': 'sub_first',
            'payment_intent': None,
            'invoice': 'in_first',
            'amount_total': 1990,
            'metadata': {'subscriptionId': str(pending_subscription.id)},
        }
        invoice = {
            'id': 'in_first',
            'subscription': 'sub_first',
            'payment_intent': 'pi_first',
            'amount_paid': 1990,
            'lines': {'data': [{'period': {'start': ts(start), 'end': ts(end)}}]},
        }
        stripe_sub = {'id': 'sub_first', 'status': 'active',
                      'current_period_start': ts(start), 'current_period_end': ts(end)}

        with patch('nexfan.services.stripe_service.StripeService.retrieve_subscription',
                   return_value=stripe_sub):
            for event in (stripe_event('checkout.session.completed', session),
                          stripe_event('invoice.paid', invoice)):
                with patch('nexfan.services.stripe_service.StripeService.construct_event', return_value=event):
                    assert client.post('/api/webhooks/stripe', data=b'{}').status_code == 200

        payments = Payment.query.filter_by(subscription_id=pending_subscription.id).all()
        assert [p.provider_payment_id for p in payments] == ['in_first']
        assert payments[0].status == PaymentStatus.COMPLETED
        assert pending_subscription.status == SubscriptionStatus.ACTIVE
        assert pending_subscription.current_period_end == end

    def test_invoice_payment_failed_marks_past_due(self, client, db, active_subscription):
        active_subscription.provider_subscription_id = 'sub_fail'
        db.session.commit()
        invoice = {'id': 'in_2', 'parent': {'subscription_details': {'subscription': 'sub_fail'}}}

        with patch('nexfan.services.stripe_service.StripeService.construct_event',
                   return_value=stripe_event('invoice.payment_failed', invoice)):
            resp = client.post('/api/webhooks/stripe', data=b'{}')

        assert resp.status_code == 200
        assert active_subscription.status == SubscriptionStatus.PAST_DUE
        assert Payment.query.filter_by(provider_payment_id='in_2').one().status == PaymentStatus.FAILED

    def test_subscription_deleted_cancels(self, client, db, active_subscription):
        active_subscription.provider_subscription_id = 'sub_gone'
        db.session.commit()

        with patch('nexfan.services.stripe_service.StripeService.construct_event',
                   return_value=stripe_event('customer.subscription.deleted', {'id': 'sub_gone'})):
            client.post('/api/webhooks/stripe', data=b'{}')

        assert active_subscription.status == SubscriptionStatus.CANCELED

    def test_processing_error_returns_500(self, client):
        event = stripe_event('customer.subscription.updated', {'id': 'sub_x', 'status': 'active'})
        with patch('nexfan.services.stripe_service.StripeService.construct_event', return_value=event), \
             patch('nexfan.services.subscription_service.SubscriptionService.sync_provider_status',
                   side_effect=RuntimeError('db down')):
            resp = client.post('/api/webhooks/stripe', data=b'{}')
        assert resp.status_code == 500


class TestHandleCheckoutCompleted:
    """Testes da função handle_checkout_session_completed"""

    def test_skip_unpaid_session(self, app_context, pending_subscription):
        handle_checkout_session_completed({
            'id': 'cs_unpaid',
            'payment_status': 'unpaid',
            'metadata': {'subscriptionId': str(pending_subscription.id)},
        })
        assert pending_subscription.status == SubscriptionStatus.PENDING

    def test_skip_empty_metadata(self, app_context, db):
        handle_checkout_session_completed({'id': 'cs_test', 'payment_status': 'paid', 'metadata': {}})
        assert Payment.query.count() == 0

    def test_skip_nonexistent_subscription(self, app_context, db):
        handle_checkout_session_completed({
            'id': 'cs_missing',
            'payment_status': 'paid',
            'metadata': {'subscriptionId': '99999'},
        })
        assert Payment.query.count() == 0


class TestMercadoPagoWebhook:
    """Testes do webhook do Mercado Pago"""

    def _post(self, client, payment_id='123456', headers=None):
        body = json.dumps({'type': 'payment', 'data': {'id': payment_id}})
        return client.post('/api/webhooks/mercadopago', data=body,
                           content_type='application/json', headers=headers or {})

    def test_approved_payment_activates(self, client, pending_subscription):
        details = {'id': 123456, 'status': 'approved',
                   'metadata': {'subscription_id': str(pending_subscription.id)}}

        with patch('nexfan.services.mercadopago_service.MercadoPagoService.get_payment',
                   return_value=details):
            resp = self._post(client)

        assert resp.status_code == 200
        assert pending_subscription.status == SubscriptionStatus.ACTIVE
        assert Payment.query.filter_by(provider_payment_id='123456').one().status == PaymentStatus.COMPLETED
        assert AuditLog.query.filter_by(action='WEBHOOK_RECEIVED', entity='MercadoPago').count() == 1

    def test_rejected_payment_recorded(self, client, pending_subscription):
        details = {'id': 123456, 'status': 'rejected', 'status_detail': 'cc_rejected_other_reason',
                   'metadata': {'subscription_id': str(pending_subscription.id)}}

        with patch('nexfan.services.mercadopago_service.MercadoPagoService.get_payment',
                   return_value=details):
            self._post(client)

        payment = Payment.query.filter_by(provider_payment_id='123456').one()
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == 'cc_rejected_other_reason'
        assert pending_subscription.status == SubscriptionStatus.PENDING

    def test_pending_payment_keeps_subscription_pending(self, client, pending_subscription):
        details = {'id': 123456, 'status': 'in_process',
                   'metadata': {'subscription_id': str(pending_subscription.id)}}

        with patch('nexfan.services.mercadopago_service.MercadoPagoService.get_payment',
                   return_value=details):
            self._post(client)

        assert pending_subscription.status == SubscriptionStatus.PENDING

    def test_invalid_signature_rejected(self, app, client, pending_subscription):
        app.config['MERCADOPAGO_WEBHOOK_SECRET'] = 'mp_secret'
        with patch('nexfan.services.mercadopago_service.MercadoPagoService.get_payment') as mock_get:
            resp = self._post(client, headers={'x-signature': 'ts=1700000000,v1=deadbeef'})

        assert resp.status_code == 401
        mock_get.assert_not_called()

    def test_valid_signature_accepted(self, app, client, pending_subscription):
        app.config['MERCADOPAGO_WEBHOOK_SECRET'] = 'mp_secret'
        manifest = 'id:123456;request-id:;ts:1700000000;'
        digest = hmac.new(b'mp_secret', manifest.encode(), hashlib.sha256).hexdigest()
        details = {'id': 123456, 'status': 'approved',
                   'metadata': {'subscription_id': str(pending_subscription.id)}}

        with patch('nexfan.services.mercadopago_service.MercadoPagoService.get_payment',
                   return_value=details):
            resp = self._post(client, headers={'x-signature': f'ts=1700000000,v1={digest}'})

        assert resp.status_code == 200
        assert pending_subscription.status == SubscriptionStatus.ACTIVE

    def test_provider_error_returns_500(self, client):
        from nexfan.errors import UpstreamProviderError
        with patch('nexfan.services.mercadopago_service.MercadoPagoService.get_payment',
                   side_effect=UpstreamProviderError()):
            resp = self._post(client)
        assert resp.status_code == 500

    def test_unhandled_event_type(self, client):
        resp = client.post('/api/webhooks/mercadopago', data=json.dumps({'type': 'plan', 'data': {'id': 1}}),
                           content_type='application/json')
        assert resp.status_code == 200
