import hashlib
import hmac
import json
from datetime import timedelta
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from core.api import ApiError
from subscriptions import gateway, services
from subscriptions.models import (
    Subscription, SubscriptionAuditLog, SubscriptionInvoice, SubscriptionPayment, SubscriptionPlan, WebhookEvent,
)

pytestmark = pytest.mark.django_db


class FakeRazorpay:
    key_id = 'rzp_test_key'

    def __init__(self, payment=None):
        self.orders = []
        self.payment = payment or {}

    def create_order(self, amount, currency, receipt, notes=None):
        order = {'id': f"order_{len(self.orders) + 1}", 'amount': amount, 'currency': currency, 'receipt': receipt}
        self.orders.append(order)
        return order

    def fetch_payment(self, payment_id):
        return {'id': payment_id, **self.payment}


def checkout_signature(order_id, payment_id, secret='test_secret'):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def webhook_body(event, entity):
    body = json.dumps({'event': event, 'payload': {'payment': {'entity': entity}}}).encode()
    signature = hmac.new(b'webhook_secret', body, hashlib.sha256).hexdigest()
    return body, signature


@pytest.fixture
def pro_plan(gym):
    return SubscriptionPlan.objects.create(gym=gym, name='Pro', price=Decimal('6000.00'), max_members=500)


@pytest.fixture
def lite_plan(gym):
    return SubscriptionPlan.objects.create(gym=gym, name='Lite', price=Decimal('1500.00'), reports=False)


class TestProration:
    def test_first_purchase_is_full_price(self, gym, saas_plan):
        proration = services.calculate_proration(gym, saas_plan)
        assert proration.kind == SubscriptionInvoice.Kind.NEW
        assert proration.total == Decimal('3000.00')
        assert proration.credit == Decimal('0.00')

    def test_upgrade_credits_unused_days(self, gym, subscription, pro_plan):
        proration = services.calculate_proration(gym, pro_plan)
        assert proration.kind == SubscriptionInvoice.Kind.UPGRADE
        assert proration.remaining_days == 20
        # 3000 / 30 days * 20 unused days
        assert proration.credit == Decimal('2000.00')
        assert proration.total == Decimal('4000.00')
        assert proration.credit_remaining == Decimal('0.00')

    def test_downgrade_carries_excess_credit(self, gym, subscription, lite_plan):
        proration = services.calculate_proration(gym, lite_plan)
        assert proration.kind == SubscriptionInvoice.Kind.DOWNGRADE
        assert proration.total == Decimal('0.00')
        assert proration.discount == Decimal('1500.00')
        assert proration.credit_remaining == Decimal('500.00')

    def test_same_plan_is_a_renewal(self, gym, subscription, saas_plan):
        proration = services.calculate_proration(gym, saas_plan)
        assert proration.kind == SubscriptionInvoice.Kind.RENEWAL
        assert proration.total == Decimal('3000.00')

    def test_equal_daily_rate_with_longer_term_is_upgrade(self, gym, subscription):
        quarterly = SubscriptionPlan.objects.create(
            gym=gym, name='Growth Quarterly', price=Decimal('9000.00'), duration=SubscriptionPlan.Duration.QUARTERLY,
        )
        assert quarterly.daily_rate == subscription.plan.daily_rate
        assert services.calculate_proration(gym, quarterly).kind == SubscriptionInvoice.Kind.UPGRADE

    def test_carried_credit_is_consumed(self, gym, subscription, saas_plan):
        subscription.credit_balance = Decimal('250.00')
        subscription.save()
        proration = services.calculate_proration(gym, saas_plan)
        assert proration.total == Decimal('2750.00')
        assert proration.credit_remaining == Decimal('0.00')


class TestOrders:
    def test_create_order_opens_invoice_and_payment(self, gym, saas_plan):
        client = FakeRazorpay()
        result = services.create_payment_order(saas_plan, client=client)

        assert result['activated'] is False
        assert result['order_id'] == 'order_1'
        assert client.orders[0]['amount'] == 300000
        payment = SubscriptionPayment.objects.get(gateway_order_id='order_1')
        assert payment.status == SubscriptionPayment.Status.CREATED
        assert payment.invoice.status == SubscriptionInvoice.Status.PENDING
        assert payment.invoice.invoice_number.startswith('SUB-')

    def test_new_order_supersedes_pending_one(self, gym, saas_plan):
        client = FakeRazorpay()
        services.create_payment_order(saas_plan, client=client)
        services.create_payment_order(saas_plan, client=client)

        first = SubscriptionPayment.objects.get(gateway_order_id='order_1')
        assert first.status == SubscriptionPayment.Status.FAILED
        assert first.error_code == 'SUPERSEDED'
        assert first.invoice.status == SubscriptionInvoice.Status.CANCELLED

    def test_fully_credited_change_activates_immediately(self, gym, subscription, lite_plan):
        result = services.create_payment_order(lite_plan, client=FakeRazorpay())

        assert result['activated'] is True
        subscription.refresh_from_db()
        gym.refresh_from_db()
        assert subscription.plan == lite_plan
        assert subscription.credit_balance == Decimal('500.00')
        assert gym.reports is False

    def test_inactive_plan_is_rejected(self, saas_plan):
        saas_plan.is_active = False
        saas_plan.save()
        with pytest.raises(ApiError) as exc:
            services.create_payment_order(saas_plan, client=FakeRazorpay())
        assert exc.value.status == 400

    def test_gateway_failure_marks_invoice_failed(self, saas_plan):
        class BrokenClient(FakeRazorpay):
            def create_order(self, *args, **kwargs):
                raise gateway.GatewayError('down')

        with pytest.raises(ApiError) as exc:
            services.create_payment_order(saas_plan, client=BrokenClient())
        assert exc.value.status == 502
        assert SubscriptionInvoice.objects.get().status == SubscriptionInvoice.Status.FAILED


class TestVerification:
    def test_signature_helpers(self):
        signature = checkout_signature('order_1', 'pay_1')
        assert gateway.verify_payment_signature('order_1', 'pay_1', signature)
        assert not gateway.verify_payment_signature('order_1', 'pay_2', signature)
        assert not gateway.verify_payment_signature('order_1', 'pay_1', signature, secret='')

    def test_verified_payment_activates_subscription(self, gym, subscription, pro_plan):
        services.create_payment_order(pro_plan, client=FakeRazorpay())
        client = FakeRazorpay(payment={'order_id': 'order_1', 'status': 'captured', 'amount': 400000, 'method': 'upi'})

        result = services.verify_payment('order_1', 'pay_1', checkout_signature('order_1', 'pay_1'), client=client)

        assert result.plan == pro_plan
        assert result.status == Subscription.Status.ACTIVE
        assert result.end_date > timezone.now() + timedelta(days=29)
        payment = SubscriptionPayment.objects.get(gateway_order_id='order_1')
        assert payment.status == SubscriptionPayment.Status.CAPTURED
        assert payment.gateway_payment_id == 'pay_1'
        assert payment.method == 'upi'
        assert payment.invoice.status == SubscriptionInvoice.Status.PAID
        pro_plan.refresh_from_db()
        assert pro_plan.is_paid

    def test_bad_signature_fails_payment(self, gym, saas_plan):
        services.create_payment_order(saas_plan, client=FakeRazorpay())
        with pytest.raises(ApiError) as exc:
            services.verify_payment('order_1', 'pay_1', 'forged', client=FakeRazorpay())
        assert exc.value.status == 400
        payment = SubscriptionPayment.objects.get(gateway_order_id='order_1')
        assert payment.status == SubscriptionPayment.Status.FAILED
        assert payment.error_code == 'SIGNATURE_MISMATCH'
        assert not Subscription.objects.filter(gym=gym).exists()

    def test_amount_mismatch_is_rejected(self, gym, saas_plan):
        services.create_payment_order(saas_plan, client=FakeRazorpay())
        client = FakeRazorpay(payment={'order_id': 'order_1', 'status': 'captured', 'amount': 100})
        with pytest.raises(ApiError):
            services.verify_payment('order_1', 'pay_1', checkout_signature('order_1', 'pay_1'), client=client)
        assert SubscriptionInvoice.objects.get().status == SubscriptionInvoice.Status.PENDING

    def test_renewal_extends_from_current_end(self, gym, subscription, saas_plan):
        previous_end = subscription.end_date
        services.create_payment_order(saas_plan, client=FakeRazorpay())
        client = FakeRazorpay(payment={'order_id': 'order_1', 'status': 'captured', 'amount': 300000})

        result = services.verify_payment('order_1', 'pay_1', checkout_signature('order_1', 'pay_1'), client=client)

        assert result.end_date == previous_end + timedelta(days=30)


class TestWebhooks:
    def _order(self, saas_plan):
        services.create_payment_order(saas_plan, client=FakeRazorpay())
        return {'id': 'pay_9', 'order_id': 'order_1', 'status': 'captured', 'amount': 300000, 'method': 'card'}

    def test_captured_webhook_activates(self, gym, saas_plan):
        body, signature = webhook_body('payment.captured', self._order(saas_plan))

        result = services.process_webhook(body, signature, event_id='evt_1')

        assert result == {'duplicate': False, 'event': 'payment.captured'}
        assert Subscription.objects.get(gym=gym).status == Subscription.Status.ACTIVE
        assert WebhookEvent.objects.get(event_id='evt_1').processed_at is not None

    def test_redelivery_is_ignored(self, gym, saas_plan):
        body, signature = webhook_body('payment.captured', self._order(saas_plan))
        services.process_webhook(body, signature, event_id='evt_1')

        result = services.process_webhook(body, signature, event_id='evt_1')

        assert result['duplicate'] is True
        assert WebhookEvent.objects.count() == 1

    def test_order_paid_after_captured_activates_once(self, gym, saas_plan):
        entity = self._order(saas_plan)
        services.process_webhook(*webhook_body('payment.captured', entity), event_id='evt_1')
        services.process_webhook(*webhook_body('order.paid', entity), event_id='evt_2')

        activations = SubscriptionAuditLog.objects.filter(action=SubscriptionAuditLog.Action.SUBSCRIPTION_ACTIVATED)
        assert activations.count() == 1

    def test_invalid_signature_is_rejected(self, saas_plan):
        body, _ = webhook_body('payment.captured', self._order(saas_plan))
        with pytest.raises(ApiError) as exc:
            services.process_webhook(body, 'bad-signature')
        assert exc.value.status == 400
        assert not WebhookEvent.objects.exists()

    def test_missing_secret_is_unavailable(self, settings, saas_plan):
        settings.RAZORPAY_WEBHOOK_SECRET = ''
        with pytest.raises(ApiError) as exc:
            services.process_webhook(b'{}', 'anything')
        assert exc.value.status == 503

    def test_failed_payment_marks_invoice_failed(self, gym, saas_plan):
        entity = {**self._order(saas_plan), 'status': 'failed', 'error_code': 'BAD_REQUEST_ERROR',
                  'error_description': 'Card declined'}
        services.process_webhook(*webhook_body('payment.failed', entity))

        payment = SubscriptionPayment.objects.get(gateway_order_id='order_1')
        assert payment.status == SubscriptionPayment.Status.FAILED
        assert payment.error_description == 'Card declined'
        assert payment.invoice.status == SubscriptionInvoice.Status.FAILED

    def test_refund_marks_payment_refunded(self, gym, saas_plan):
        entity = self._order(saas_plan)
        services.process_webhook(*webhook_body('payment.captured', entity), event_id='evt_1')
        body = json.dumps({'event': 'refund.processed',
                           'payload': {'refund': {'entity': {'id': 'rfnd_1', 'payment_id': 'pay_9'}}}}).encode()
        signature = hmac.new(b'webhook_secret', body, hashlib.sha256).hexdigest()

        services.process_webhook(body, signature, event_id='evt_2')

        payment = SubscriptionPayment.objects.get(gateway_payment_id='pay_9')
        assert payment.status == SubscriptionPayment.Status.REFUNDED
        assert payment.invoice.status == SubscriptionInvoice.Status.REFUNDED
        assert Subscription.objects.get(gym=gym).status == Subscription.Status.ACTIVE

    def test_late_capture_after_refund_does_not_reactivate(self, gym, saas_plan):
        entity = self._order(saas_plan)
        services.process_webhook(*webhook_body('payment.captured', entity), event_id='evt_1')
        end_date = Subscription.objects.get(gym=gym).end_date
        body = json.dumps({'event': 'refund.processed',
                           'payload': {'refund': {'entity': {'id': 'rfnd_1', 'payment_id': 'pay_9'}}}}).encode()
        services.process_webhook(body, hmac.new(b'webhook_secret', body, hashlib.sha256).hexdigest(), event_id='evt_2')

        services.process_webhook(*webhook_body('order.paid', entity), event_id='evt_3')

        payment = SubscriptionPayment.objects.get(gateway_payment_id='pay_9')
        assert payment.status == SubscriptionPayment.Status.REFUNDED
        assert payment.invoice.status == SubscriptionInvoice.Status.REFUNDED
        assert Subscription.objects.get(gym=gym).end_date == end_date
        activations = SubscriptionAuditLog.objects.filter(action=SubscriptionAuditLog.Action.SUBSCRIPTION_ACTIVATED)
        assert activations.count() == 1

    def test_unknown_order_is_acknowledged(self, gym, saas_plan):
        entity = {**self._order(saas_plan), 'order_id': 'order_missing'}

        result = services.process_webhook(*webhook_body('payment.captured', entity), event_id='evt_1')

        assert result == {'duplicate': False, 'event': 'payment.captured'}
        assert WebhookEvent.objects.get(event_id='evt_1').processed_at is not None
        assert SubscriptionPayment.objects.get().status == SubscriptionPayment.Status.CREATED
        assert not Subscription.objects.filter(gym=gym).exists()


class TestLifecycle:
    def test_state_moves_through_grace_to_expired(self, gym, subscription):
        now = timezone.now()
        assert services.get_subscription_state(gym, now).status == 'active'

        subscription.end_date = now - timedelta(days=1)
        subscription.save()
        state = services.get_subscription_state(gym, now)
        assert state.status == 'grace'
        assert state.grace_days_left == 2
        assert state.allows_access

        subscription.end_date = now - timedelta(days=4)
        subscription.save()
        state = services.get_subscription_state(gym, now)
        assert state.status == 'expired'
        assert not state.allows_access

    def test_no_subscription(self, gym):
        assert services.get_subscription_state(gym).status == 'none'

    def test_trial_only_before_first_subscription(self, gym, saas_plan):
        saas_plan.trial_days = 14
        saas_plan.save()
        trial = services.start_trial(gym, saas_plan)
        assert trial.status == Subscription.Status.TRIAL
        assert services.get_subscription_state(gym).status == 'trial'

        with pytest.raises(ApiError):
            services.start_trial(gym, saas_plan)

    def test_expire_command(self, gym, subscription):
        subscription.end_date = timezone.now() - timedelta(days=5)
        subscription.save()
        out = StringIO()

        call_command('expire_subscriptions', stdout=out)

        subscription.refresh_from_db()
        assert subscription.status == Subscription.Status.EXPIRED
        assert 'Expired 1 subscription(s)' in out.getvalue()
        assert gym.owner.notifications.filter(title='Subscription expired').exists()

    def test_expire_leaves_grace_period_alone(self, gym, subscription):
        subscription.end_date = timezone.now() - timedelta(days=1)
        subscription.save()
        assert services.expire_subscriptions() == []

    def test_member_limit(self, gym, subscription, member):
        subscription.plan.max_members = 1
        subscription.plan.save()
        with pytest.raises(ApiError) as exc:
            services.check_member_limit(gym)
        assert exc.value.code == 'PLAN_LIMIT_REACHED'

    def test_reminders_are_sent_once_per_threshold(self, gym, subscription, mailoutbox):
        subscription.end_date = timezone.now() + timedelta(days=3)
        subscription.save()

        call_command('send_subscription_reminders', stdout=StringIO())
        out = StringIO()
        call_command('send_subscription_reminders', stdout=out)

        reminders = gym.owner.notifications.filter(title='Subscription expires in 3 days')
        assert reminders.count() == 1
        assert 'Successfully sent 0 expiration reminder(s)' in out.getvalue()
        assert [message.subject for message in mailoutbox] == ['Notification: Subscription expires in 3 days']

    def test_overdue_invoices_are_cancelled(self, gym, saas_plan, pro_plan):
        client = FakeRazorpay()
        services.create_payment_order(saas_plan, client=client)
        services.create_payment_order(pro_plan, client=client)
        SubscriptionInvoice.objects.filter(plan=saas_plan).update(due_date=timezone.now() - timedelta(days=1))

        assert services.cancel_overdue_invoices() == 1

        overdue = SubscriptionPayment.objects.get(gateway_order_id='order_1')
        assert overdue.status == SubscriptionPayment.Status.FAILED
        assert overdue.error_code == 'EXPIRED'
        assert overdue.invoice.status == SubscriptionInvoice.Status.CANCELLED
        current = SubscriptionPayment.objects.get(gateway_order_id='order_2')
        assert current.status == SubscriptionPayment.Status.CREATED
        assert current.invoice.status == SubscriptionInvoice.Status.PENDING
