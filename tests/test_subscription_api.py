import hashlib
import hmac
import json
from datetime import timedelta

import pytest
from django.utils import timezone

from subscriptions import gateway, services
from subscriptions.models import Subscription, SubscriptionAuditLog, SubscriptionPayment, WebhookEvent

from .test_subscriptions import FakeRazorpay

pytestmark = pytest.mark.django_db


@pytest.fixture
def fake_gateway(monkeypatch):
    client = FakeRazorpay(payment={'order_id': 'order_1', 'status': 'captured', 'amount': 300000})
    monkeypatch.setattr(gateway, 'get_client', lambda: client)
    return client


def test_owner_creates_order(owner_client, saas_plan, fake_gateway):
    response = owner_client.post_json('/api/v1/subscriptions/create-order', {'plan_id': saas_plan.id})

    assert response.status_code == 201
    data = response.json()['data']
    assert data['order_id'] == 'order_1'
    assert data['key_id'] == 'rzp_test_key'
    assert data['proration']['kind'] == 'renewal'


def test_create_order_requires_plan(owner_client):
    response = owner_client.post_json('/api/v1/subscriptions/create-order', {})
    assert response.status_code == 400
    assert response.json()['success'] is False


def test_staff_cannot_create_order(staff_client, saas_plan):
    response = staff_client.post_json('/api/v1/subscriptions/create-order', {'plan_id': saas_plan.id})
    assert response.status_code == 403


def test_public_payment_link(anon_client, saas_plan, fake_gateway):
    response = anon_client.get(f'/api/v1/pay/{saas_plan.payment_link_token}')
    assert response.status_code == 200
    data = response.json()['data']
    assert 'payment_link_token' not in data
    assert data['gym']['name'] == 'Iron Temple'

    response = anon_client.post_json(f'/api/v1/pay/{saas_plan.payment_link_token}/order')
    assert response.status_code == 201


def test_unknown_payment_link(anon_client, db):
    response = anon_client.get('/api/v1/pay/nope')
    assert response.status_code == 404


def test_verify_payment_endpoint(owner_client, saas_plan, fake_gateway):
    owner_client.post_json('/api/v1/subscriptions/create-order', {'plan_id': saas_plan.id})
    signature = hmac.new(b'test_secret', b'order_1|pay_1', hashlib.sha256).hexdigest()

    response = owner_client.post_json('/api/v1/subscriptions/verify-payment', {
        'razorpay_order_id': 'order_1',
        'razorpay_payment_id': 'pay_1',
        'razorpay_signature': signature,
    })

    assert response.status_code == 200
    assert response.json()['data']['status'] == 'active'


def test_webhook_endpoint_is_idempotent(anon_client, saas_plan, fake_gateway):
    services.create_payment_order(saas_plan)
    body = json.dumps({
        'event': 'payment.captured',
        'payload': {'payment': {'entity': {'id': 'pay_1', 'order_id': 'order_1', 'status': 'captured'}}},
    }).encode()
    signature = hmac.new(b'webhook_secret', body, hashlib.sha256).hexdigest()
    headers = {'HTTP_X_RAZORPAY_SIGNATURE': signature, 'HTTP_X_RAZORPAY_EVENT_ID': 'evt_42'}

    first = anon_client.post('/api/v1/subscriptions/webhook', data=body, content_type='application/json', **headers)
    second = anon_client.post('/api/v1/subscriptions/webhook', data=body, content_type='application/json', **headers)

    assert first.status_code == 200
    assert first.json()['data']['duplicate'] is False
    assert second.json()['data']['duplicate'] is True
    assert WebhookEvent.objects.count() == 1
    assert SubscriptionPayment.objects.get().status == SubscriptionPayment.Status.CAPTURED


def test_webhook_rejects_bad_signature(anon_client, db):
    response = anon_client.post(
        '/api/v1/subscriptions/webhook', data=b'{"event": "payment.captured"}',
        content_type='application/json', HTTP_X_RAZORPAY_SIGNATURE='bad',
    )
    assert response.status_code == 400


class TestGuard:
    def expire(self, subscription, days):
        subscription.end_date = timezone.now() - timedelta(days=days)
        subscription.save()

    def test_active_gym_passes(self, owner_client):
        assert owner_client.get('/api/v1/members/').status_code == 200

    def test_grace_period_still_allows_access(self, owner_client, subscription):
        self.expire(subscription, 1)
        assert owner_client.get('/api/v1/members/').status_code == 200

    def test_expired_gym_is_blocked(self, owner_client, subscription):
        self.expire(subscription, 10)

        response = owner_client.get('/api/v1/members/')

        assert response.status_code == 403
        body = response.json()
        assert body['code'] == 'SUBSCRIPTION_EXPIRED'
        assert body['subscription_status'] == 'expired'

    def test_expired_gym_can_still_renew(self, owner_client, subscription):
        self.expire(subscription, 10)
        assert owner_client.get('/api/v1/subscriptions/me').status_code == 200
        assert owner_client.get('/api/v1/gyms/me').status_code == 200
        assert owner_client.get('/api/v1/notifications/').status_code == 200

    def test_cancelled_subscription_is_blocked(self, staff_client, subscription):
        subscription.status = Subscription.Status.CANCELLED
        subscription.save()
        assert staff_client.get('/api/v1/members/').status_code == 403

    def test_super_admin_is_never_blocked(self, super_admin_client, gym, subscription):
        self.expire(subscription, 10)
        response = super_admin_client.get('/api/v1/members/', HTTP_X_GYM_ID=str(gym.id))
        assert response.status_code == 200


def test_my_subscription_reports_grace(owner_client, subscription):
    subscription.end_date = timezone.now() - timedelta(hours=1)
    subscription.save()

    data = owner_client.get('/api/v1/subscriptions/me').json()['data']

    assert data['subscription_status'] == 'grace'
    assert data['grace_days_left'] == 3


def test_paid_plan_can_only_be_deactivated(super_admin_client, saas_plan):
    saas_plan.is_paid = True
    saas_plan.save()

    response = super_admin_client.put_json(f'/api/v1/subscription-plans/{saas_plan.id}', {'price': '10.00'})
    assert response.status_code == 400

    response = super_admin_client.put_json(f'/api/v1/subscription-plans/{saas_plan.id}', {'is_active': False})
    assert response.status_code == 200
    assert response.json()['data']['is_active'] is False


def test_webhook_handler_error_rolls_back_and_retry_succeeds(anon_client, saas_plan, fake_gateway, monkeypatch):
    services.create_payment_order(saas_plan)
    body = json.dumps({
        'event': 'payment.captured',
        'payload': {'payment': {'entity': {'id': 'pay_1', 'order_id': 'order_1', 'status': 'captured'}}},
    }).encode()
    signature = hmac.new(b'webhook_secret', body, hashlib.sha256).hexdigest()
    headers = {'HTTP_X_RAZORPAY_SIGNATURE': signature, 'HTTP_X_RAZORPAY_EVENT_ID': 'evt_7'}

    def explode(event):
        raise RuntimeError('database hiccup')

    monkeypatch.setitem(services.WEBHOOK_HANDLERS, 'payment.captured', explode)
    failed = anon_client.post('/api/v1/subscriptions/webhook', data=body, content_type='application/json', **headers)

    assert failed.status_code == 500
    assert not WebhookEvent.objects.exists()
    assert SubscriptionPayment.objects.get().status == SubscriptionPayment.Status.CREATED

    monkeypatch.undo()
    retried = anon_client.post('/api/v1/subscriptions/webhook', data=body, content_type='application/json', **headers)

    assert retried.status_code == 200
    assert retried.json()['data']['duplicate'] is False
    assert WebhookEvent.objects.get(event_id='evt_7').processed_at is not None
    assert SubscriptionPayment.objects.get().status == SubscriptionPayment.Status.CAPTURED


def test_webhook_for_unknown_order_returns_ok(anon_client, db):
    body = json.dumps({
        'event': 'payment.captured',
        'payload': {'payment': {'entity': {'id': 'pay_1', 'order_id': 'order_nowhere', 'status': 'captured'}}},
    }).encode()
    signature = hmac.new(b'webhook_secret', body, hashlib.sha256).hexdigest()

    response = anon_client.post('/api/v1/subscriptions/webhook', data=body, content_type='application/json',
                                HTTP_X_RAZORPAY_SIGNATURE=signature)

    assert response.status_code == 200
    assert WebhookEvent.objects.count() == 1


def test_owner_turning_off_auto_renew_is_audited(owner_client, subscription):
    assert owner_client.put_json('/api/v1/subscriptions/auto-renew', {'enabled': True}).status_code == 200
    assert not SubscriptionAuditLog.objects.exists()

    response = owner_client.put_json('/api/v1/subscriptions/auto-renew', {'enabled': False})

    assert response.status_code == 200
    assert response.json()['data']['auto_renew'] is False
    entry = SubscriptionAuditLog.objects.get()
    assert entry.action == SubscriptionAuditLog.Action.SUBSCRIPTION_CANCELLED
    assert entry.details == {'disable_auto_renew': True}
    assert entry.performed_by_role == 'owner'
    subscription.refresh_from_db()
    assert subscription.status == Subscription.Status.ACTIVE
