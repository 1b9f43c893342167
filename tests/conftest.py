import json
from datetime import timedelta
from decimal import Decimal

import pytest
from django.test import Client
from django.utils import timezone

from accounts.models import User
from gym.models import Member, Plan
from subscriptions.models import Subscription, SubscriptionPlan
from tenants.models import Gym


class JsonClient(Client):
    """Test client that sends JSON bodies, the way the frontend does."""

    def _json(self, method, path, data=None, **extra):
        body = json.dumps(data or {})
        return getattr(super(), method)(path, data=body, content_type='application/json', **extra)

    def post_json(self, path, data=None, **extra):
        return self._json('post', path, data, **extra)

    def put_json(self, path, data=None, **extra):
        return self._json('put', path, data, **extra)


def make_user(username, role, gym=None, **kwargs):
    user = User.objects.create_user(
        username=username,
        email=kwargs.pop('email', f"{username}@example.com"),
        password=kwargs.pop('password', 'pass12345'),
        first_name=kwargs.pop('first_name', username.title()),
        role=role,
        gym=gym,
        **kwargs,
    )
    return user


@pytest.fixture(autouse=True)
def gateway_settings(settings):
    settings.RAZORPAY_KEY_ID = 'rzp_test_key'
    settings.RAZORPAY_KEY_SECRET = 'test_secret'
    settings.RAZORPAY_WEBHOOK_SECRET = 'webhook_secret'
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    return settings


@pytest.fixture
def owner(db):
    return make_user('owner', User.Role.OWNER)


@pytest.fixture
def gym(owner):
    gym = Gym.objects.create(name='Iron Temple', owner=owner, contact_email='desk@irontemple.example')
    owner.gym = gym
    owner.save(update_fields=['gym'])
    return gym


@pytest.fixture
def saas_plan(gym):
    return SubscriptionPlan.objects.create(
        gym=gym, name='Growth', price=Decimal('3000.00'), duration=SubscriptionPlan.Duration.MONTHLY, max_members=50,
    )


@pytest.fixture
def subscription(gym, saas_plan):
    now = timezone.now()
    return Subscription.objects.create(
        gym=gym,
        plan=saas_plan,
        status=Subscription.Status.ACTIVE,
        start_date=now - timedelta(days=10),
        end_date=now + timedelta(days=20),
    )


@pytest.fixture
def staff_user(gym):
    return make_user('coach', User.Role.STAFF, gym=gym)


@pytest.fixture
def super_admin(db):
    return make_user('root', User.Role.SUPER_ADMIN, is_superuser=True, is_staff=True)


@pytest.fixture
def plan(gym):
    return Plan.objects.create(gym=gym, name='Gold', price=Decimal('1500.00'), duration=Plan.Duration.MONTHLY)


@pytest.fixture
def member(gym, plan):
    user = make_user('alice', User.Role.MEMBER, gym=gym)
    today = timezone.localdate()
    return Member.objects.create(
        gym=gym, user=user, plan=plan, subscription_start=today, subscription_end=today + timedelta(days=30),
    )


def _client_for(user):
    client = JsonClient()
    client.force_login(user)
    return client


@pytest.fixture
def owner_client(owner, subscription):
    return _client_for(owner)


@pytest.fixture
def staff_client(staff_user, subscription):
    return _client_for(staff_user)


@pytest.fixture
def member_client(member, subscription):
    return _client_for(member.user)


@pytest.fixture
def super_admin_client(super_admin):
    return _client_for(super_admin)


@pytest.fixture
def anon_client():
    return JsonClient()
