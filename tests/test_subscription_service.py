# tests/test_subscription_service.py
"""
Testes do ciclo de vida das assinaturas
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from nexfan.errors import Conflict, Forbidden, InvalidInput, NotFound, Unauthorized
from nexfan.models import (AuditLog, Payment, PaymentProvider, PaymentStatus, Role, Subscription,
                           SubscriptionStatus)
from nexfan.services.access import Viewer
from nexfan.services.subscription_service import SubscriptionService, add_one_month


class TestAddOneMonth:

    def test_regular_day(self):
        assert add_one_month(datetime(2024, 3, 15, 10, 30)) == datetime(2024, 4, 15, 10, 30)

    def test_clamps_to_end_of_month(self):
        assert add_one_month(datetime(2024, 1, 31)) == datetime(2024, 2, 29)
        assert add_one_month(datetime(2023, 1, 31)) == datetime(2023, 2, 28)

    def test_december_rolls_year(self):
        assert add_one_month(datetime(2024, 12, 20)) == datetime(2025, 1, 20)


class TestCreateOrReplaceSubscription:

    def test_creates_pending_subscription(self, app_context, fan, plan):
        now = datetime(2024, 6, 1, 12, 0)
        sub, url = SubscriptionService.create_or_replace_subscription(fan.id, plan.id, now=now)

        assert sub.status == SubscriptionStatus.PENDING
        assert sub.current_period_start == now
        assert sub.current_period_end == datetime(2024, 7, 1, 12, 0)
        assert sub.creator_id == plan.creator_id
        assert url == f'http://localhost:5000/checkout/{sub.id}/payment'

    def test_missing_plan(self, app_context, fan):
        with pytest.raises(NotFound):
            SubscriptionService.create_or_replace_subscription(fan.id, 9999)

    def test_inactive_plan(self, app_context, db, fan, plan):
        plan.is_active = False
        db.session.commit()
        with pytest.raises(NotFound):
            SubscriptionService.create_or_replace_subscription(fan.id, plan.id)

    def test_non_monthly_plan(self, app_context, db, fan, plan):
        plan.interval = 'YEARLY'
        db.session.commit()
        with pytest.raises(InvalidInput):
            SubscriptionService.create_or_replace_subscription(fan.id, plan.id)

    def test_cannot_subscribe_to_self(self, app_context, creator_user, plan):
        with pytest.raises(InvalidInput):
            SubscriptionService.create_or_replace_subscription(creator_user.id, plan.id)

    def test_conflict_when_already_active(self, app_context, fan, plan, active_subscription):
        with pytest.raises(Conflict):
            SubscriptionService.create_or_replace_subscription(fan.id, plan.id)

    def test_replaces_cancelled_subscription(self, app_context, fan, plan, premium_plan, make_subscription):
        old = make_subscription(fan, plan, status=SubscriptionStatus.CANCELED)
        old.canceled_at = datetime.utcnow()

        sub, _ = SubscriptionService.create_or_replace_subscription(fan.id, premium_plan.id)

        assert sub.id == old.id
        assert sub.plan_id == premium_plan.id
        assert sub.status == SubscriptionStatus.PENDING
        assert sub.canceled_at is None
        assert Subscription.query.filter_by(user_id=fan.id).count() == 1

    def test_replaces_lapsed_active_subscription(self, app_context, fan, plan, make_subscription):
        make_subscription(fan, plan, start=datetime.utcnow() - timedelta(days=60),
                          end=datetime.utcnow() - timedelta(days=30))
        sub, _ = SubscriptionService.create_or_replace_subscription(fan.id, plan.id)
        assert sub.status == SubscriptionStatus.PENDING


class TestConfirmPayment:

    def test_completed_payment_activates(self, app_context, pending_subscription):
        now = datetime(2024, 6, 1, 12, 0)
        sub = SubscriptionService.confirm_payment(
            pending_subscription.id, PaymentProvider.MERCADOPAGO, '123', PaymentStatus.COMPLETED, now=now)

        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.current_period_start == now
        assert sub.current_period_end == datetime(2024, 7, 1, 12, 0)

        payment = Payment.query.filter_by(subscription_id=sub.id).one()
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.amount == 1990
        assert payment.paid_at == now

    def test_uses_provider_period(self, app_context, pending_subscription):
        start = datetime(2024, 6, 1)
        end = datetime(2024, 7, 1)
        sub = SubscriptionService.confirm_payment(
            pending_subscription.id, PaymentProvider.STRIPE, 'pi_1', PaymentStatus.COMPLETED,
            amount=1990, period_start=start, period_end=end, provider_subscription_id='sub_1')

        assert sub.current_period_end == end
        assert sub.provider_subscription_id == 'sub_1'

    def test_idempotent_for_same_payment(self, app_context, pending_subscription):
        first = SubscriptionService.confirm_payment(
            pending_subscription.id, PaymentProvider.STRIPE, 'pi_1', PaymentStatus.COMPLETED,
            now=datetime(2024, 6, 1))
        end = first.current_period_end

        second = SubscriptionService.confirm_payment(
            pending_subscription.id, PaymentProvider.STRIPE, 'pi_1', PaymentStatus.COMPLETED,
            now=datetime(2024, 6, 20))

        assert second.current_period_end == end
        assert Payment.query.filter_by(provider_payment_id='pi_1').count() == 1
        assert AuditLog.query.filter_by(action='PAYMENT_CONFIRMED').count() == 1

    def test_pending_status_does_not_activate(self, app_context, pending_subscription):
        sub = SubscriptionService.confirm_payment(
            pending_subscription.id, PaymentProvider.MERCADOPAGO, '555', PaymentStatus.PENDING)

        assert sub.status == SubscriptionStatus.PENDING
        payment = Payment.query.filter_by(provider_payment_id='555').one()
        assert payment.status == PaymentStatus.PENDING

    def test_reactivates_past_due(self, app_context, fan, plan, make_subscription):
        sub = make_subscription(fan, plan, status=SubscriptionStatus.PAST_DUE)
        SubscriptionService.confirm_payment(sub.id, PaymentProvider.STRIPE, 'pi_2', PaymentStatus.COMPLETED)
        assert sub.status == SubscriptionStatus.ACTIVE

    def test_cancelled_subscription_not_reactivated(self, app_context, fan, plan, make_subscription):
        sub = make_subscription(fan, plan, status=SubscriptionStatus.CANCELED)
        SubscriptionService.confirm_payment(sub.id, PaymentProvider.MERCADOPAGO, '777', PaymentStatus.COMPLETED)

        assert sub.status == SubscriptionStatus.CANCELED
        assert Payment.query.filter_by(provider_payment_id='777').one().status == PaymentStatus.COMPLETED

    def test_renewal_extends_period(self, app_context, active_subscription):
        new_end = active_subscription.current_period_end + timedelta(days=30)
        SubscriptionService.confirm_payment(
            active_subscription.id, PaymentProvider.STRIPE, 'in_2', PaymentStatus.COMPLETED,
            period_start=active_subscription.current_period_end, period_end=new_end)

        assert active_subscription.status == SubscriptionStatus.ACTIVE
        assert active_subscription.current_period_end == new_end

    def test_unknown_subscription(self, app_context):
        with pytest.raises(NotFound):
            SubscriptionService.confirm_payment(9999, PaymentProvider.STRIPE, 'pi_x', PaymentStatus.COMPLETED)


class TestPaymentFailure:

    def test_marks_payment_failed(self, app_context, pending_subscription):
        payment = SubscriptionService.record_payment_failure(
            pending_subscription.id, PaymentProvider.MERCADOPAGO, '888', 'cc_rejected')

        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == 'cc_rejected'
        assert payment.failed_at is not None
        assert pending_subscription.status == SubscriptionStatus.PENDING

    def test_completed_payment_not_downgraded(self, app_context, pending_subscription):
        SubscriptionService.confirm_payment(
            pending_subscription.id, PaymentProvider.MERCADOPAGO, '999', PaymentStatus.COMPLETED)
        payment = SubscriptionService.record_payment_failure(
            pending_subscription.id, PaymentProvider.MERCADOPAGO, '999')
        assert payment.status == PaymentStatus.COMPLETED


class TestProviderEvents:

    @pytest.fixture
    def stripe_managed(self, db, active_subscription):
        active_subscription.provider_subscription_id = 'sub_stripe_001'
        db.session.commit()
        return active_subscription

    def test_renew(self, app_context, stripe_managed):
        end = stripe_managed.current_period_end + timedelta(days=31)
        sub = SubscriptionService.renew('sub_stripe_001', PaymentProvider.STRIPE, 'in_100', 1990,
                                        stripe_managed.current_period_end, end)
        assert sub.current_period_end == end
        assert sub.payments.count() == 1

    def test_renew_unknown_subscription(self, app_context):
        assert SubscriptionService.renew('sub_unknown', PaymentProvider.STRIPE, 'in_1', 100,
                                         datetime.utcnow(), datetime.utcnow()) is None

    def test_mark_past_due(self, app_context, stripe_managed):
        SubscriptionService.mark_past_due('sub_stripe_001')
        assert stripe_managed.status == SubscriptionStatus.PAST_DUE

    def test_sync_status_mapping(self, app_context, stripe_managed):
        SubscriptionService.sync_provider_status('sub_stripe_001', 'past_due')
        assert stripe_managed.status == SubscriptionStatus.PAST_DUE

        SubscriptionService.sync_provider_status('sub_stripe_001', 'active')
        assert stripe_managed.status == SubscriptionStatus.ACTIVE

        SubscriptionService.sync_provider_status('sub_stripe_001', 'canceled')
        assert stripe_managed.status == SubscriptionStatus.CANCELED
        assert stripe_managed.canceled_at is not None

    def test_cancel_by_provider(self, app_context, stripe_managed):
        assert SubscriptionService.cancel_by_provider('sub_stripe_001') == 1
        assert stripe_managed.status == SubscriptionStatus.CANCELED


class TestCancel:

    def test_owner_cancels(self, app_context, fan, active_subscription):
        sub = SubscriptionService.cancel(active_subscription.id, Viewer(fan.id))
        assert sub.status == SubscriptionStatus.CANCELED
        assert sub.canceled_at is not None
        assert AuditLog.query.filter_by(action='SUBSCRIPTION_CANCELED').count() == 1

    def test_admin_cancels(self, app_context, admin_user, active_subscription):
        sub = SubscriptionService.cancel(active_subscription.id, Viewer(admin_user.id, Role.ADMIN))
        assert sub.status == SubscriptionStatus.CANCELED

    def test_other_user_forbidden(self, app_context, other_fan, active_subscription):
        with pytest.raises(Forbidden):
            SubscriptionService.cancel(active_subscription.id, Viewer(other_fan.id))
        assert active_subscription.status == SubscriptionStatus.ACTIVE

    def test_anonymous_unauthorized(self, app_context, active_subscription):
        with pytest.raises(Unauthorized):
            SubscriptionService.cancel(active_subscription.id, None)

    def test_cancel_twice_is_noop(self, app_context, fan, active_subscription):
        first = SubscriptionService.cancel(active_subscription.id, Viewer(fan.id))
        canceled_at = first.canceled_at
        second = SubscriptionService.cancel(active_subscription.id, Viewer(fan.id))
        assert second.canceled_at == canceled_at

    def test_cancels_on_stripe(self, app_context, db, fan, active_subscription):
        active_subscription.provider_subscription_id = 'sub_stripe_002'
        db.session.commit()

        with patch('nexfan.services.stripe_service.StripeService.cancel_subscription',
                   return_value=True) as mock_cancel:
            SubscriptionService.cancel(active_subscription.id, Viewer(fan.id))

        mock_cancel.assert_called_once_with('sub_stripe_002')

    def test_stripe_failure_does_not_block_cancel(self, app_context, db, fan, active_subscription):
        active_subscription.provider_subscription_id = 'sub_stripe_003'
        db.session.commit()

        with patch('nexfan.services.stripe_service.StripeService.cancel_subscription', return_value=False):
            sub = SubscriptionService.cancel(active_subscription.id, Viewer(fan.id))
        assert sub.status == SubscriptionStatus.CANCELED


def racing_commit(db, competitor):
    """
    Simula outra requisição gravando primeiro: no primeiro commit descarta
    as mudanças pendentes, grava o concorrente e levanta IntegrityError
    """
    real_commit = db.session.commit
    calls = []

    def commit():
        calls.append(1)
        if len(calls) == 1:
            db.session.rollback()
            db.session.add(competitor())
            real_commit()
            raise IntegrityError('INSERT', {}, Exception('UNIQUE constraint failed'))
        return real_commit()
    return patch.object(db.session, 'commit', side_effect=commit)


class TestConcurrentWrites:

    def test_commit_ledger_reports_duplicate(self, app_context, db):
        error = IntegrityError('INSERT', {}, Exception('UNIQUE constraint failed'))
        with patch.object(db.session, 'commit', side_effect=error), \
             patch.object(db.session, 'rollback') as rollback:
            assert SubscriptionService._commit_ledger() is False
        rollback.assert_called_once()

    def test_concurrent_confirmation_keeps_single_payment(self, app_context, db, pending_subscription):
        def competitor():
            return Payment(subscription_id=pending_subscription.id, amount=1990, currency='BRL',
                           status=PaymentStatus.COMPLETED, provider=PaymentProvider.STRIPE,
                           provider_payment_id='in_race', paid_at=datetime.utcnow())

        with racing_commit(db, competitor):
            sub = SubscriptionService.confirm_payment(
                pending_subscription.id, PaymentProvider.STRIPE, 'in_race', PaymentStatus.COMPLETED)

        assert sub.id == pending_subscription.id
        assert Payment.query.filter_by(provider_payment_id='in_race').count() == 1
        assert AuditLog.query.filter_by(action='PAYMENT_CONFIRMED').count() == 0

    def test_create_race_reuses_other_row(self, app_context, db, fan, plan):
        def competitor():
            return Subscription(user_id=fan.id, creator_id=plan.creator_id, plan_id=plan.id,
                                status=SubscriptionStatus.EXPIRED,
                                current_period_start=datetime(2024, 1, 1),
                                current_period_end=datetime(2024, 2, 1))

        now = datetime(2024, 6, 1, 12, 0)
        with racing_commit(db, competitor):
            sub, _ = SubscriptionService.create_or_replace_subscription(fan.id, plan.id, now=now)

        assert Subscription.query.filter_by(user_id=fan.id).count() == 1
        assert sub.status == SubscriptionStatus.PENDING
        assert sub.current_period_end == datetime(2024, 7, 1, 12, 0)

    def test_create_race_with_active_row_conflicts(self, app_context, db, fan, plan):
        end = datetime.utcnow() + timedelta(days=20)

        def competitor():
            return Subscription(user_id=fan.id, creator_id=plan.creator_id, plan_id=plan.id,
                                status=SubscriptionStatus.ACTIVE,
                                current_period_start=datetime.utcnow(),
                                current_period_end=end)

        with racing_commit(db, competitor):
            with pytest.raises(Conflict):
                SubscriptionService.create_or_replace_subscription(fan.id, plan.id)

        sub = Subscription.query.filter_by(user_id=fan.id).one()
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.current_period_end == end
