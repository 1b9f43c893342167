from io import StringIO

import pytest
from django.core import mail
from django.core.management import call_command

from accounts.models import User
from core.models import Notification
from core.notifications import notify, notify_gym_staff
from finance.models import ExpenseCategory, RevenueSource
from tenants.models import Gym

pytestmark = pytest.mark.django_db


class TestNotifications:
    @pytest.fixture
    def inbox(self, owner, gym):
        return [
            notify(owner, 'Welcome', 'Your gym is ready'),
            notify(owner, 'Renewal due', 'Renew soon', category=Notification.Category.SUBSCRIPTION),
        ]

    def test_list(self, owner_client, inbox):
        body = owner_client.get('/api/v1/notifications/').json()
        assert body['unread_count'] == 2
        assert [item['title'] for item in body['data']] == ['Renewal due', 'Welcome']

        body = owner_client.get('/api/v1/notifications/', {'category': 'subscription'}).json()
        assert [item['title'] for item in body['data']] == ['Renewal due']

    def test_unread_count(self, owner_client, inbox):
        data = owner_client.get('/api/v1/notifications/unread-count').json()['data']
        assert data['unread_count'] == 2
        assert data['latest']['title'] == 'Renewal due'

    def test_mark_read(self, owner_client, inbox):
        response = owner_client.post_json(f'/api/v1/notifications/{inbox[0].id}/read')
        assert response.status_code == 200
        inbox[0].refresh_from_db()
        assert inbox[0].is_read
        assert inbox[0].read_at is not None

    def test_mark_all_read(self, owner_client, inbox):
        data = owner_client.post_json('/api/v1/notifications/read-all').json()['data']
        assert data['updated'] == 2
        assert not Notification.objects.filter(is_read=False).exists()

    def test_delete(self, owner_client, inbox):
        assert owner_client.delete(f'/api/v1/notifications/{inbox[0].id}').status_code == 200
        assert Notification.objects.count() == 1

    def test_cannot_touch_someone_elses(self, staff_client, inbox):
        assert staff_client.post_json(f'/api/v1/notifications/{inbox[0].id}/read').status_code == 404

    def test_subscription_notices_are_emailed(self, owner, inbox):
        assert [message.subject for message in mail.outbox] == ['Notification: Renewal due']
        assert mail.outbox[0].to == [owner.email]
        assert 'Iron Temple' in mail.outbox[0].from_email

    def test_notify_gym_staff(self, gym, owner, staff_user, member):
        sent = notify_gym_staff(gym, 'Heads up', 'Inspection tomorrow')
        assert {item.recipient for item in sent} == {owner, staff_user}


def test_health(anon_client):
    response = anon_client.get('/api/v1/health')
    assert response.status_code == 200
    assert response.json()['data']['status'] == 'ok'


class TestAuth:
    def test_login_with_email(self, anon_client, owner, gym):
        response = anon_client.post_json('/api/v1/auth/login', {'username': 'OWNER@example.com', 'password': 'pass12345'})
        assert response.status_code == 200
        data = response.json()['data']
        assert data['role'] == 'owner'
        assert data['gym']['name'] == 'Iron Temple'

    def test_bad_credentials(self, anon_client, owner):
        response = anon_client.post_json('/api/v1/auth/login', {'username': 'owner', 'password': 'wrong'})
        assert response.status_code == 401
        assert response.json()['success'] is False

    def test_deactivated_gym(self, anon_client, owner, gym):
        gym.is_active = False
        gym.save()
        response = anon_client.post_json('/api/v1/auth/login', {'username': 'owner', 'password': 'pass12345'})
        assert response.status_code == 403

    def test_me_requires_login(self, anon_client):
        response = anon_client.get('/api/v1/auth/me')
        assert response.status_code == 401

    def test_wrong_method(self, owner_client):
        assert owner_client.post_json('/api/v1/auth/me').status_code == 405

    def test_change_password(self, owner_client, owner):
        response = owner_client.post_json('/api/v1/auth/change-password', {
            'current_password': 'nope', 'new_password': 'a-longer-secret',
        })
        assert response.status_code == 400
        assert 'current_password' in response.json()['error']

        response = owner_client.post_json('/api/v1/auth/change-password', {
            'current_password': 'pass12345', 'new_password': 'a-longer-secret',
        })
        assert response.status_code == 200
        owner.refresh_from_db()
        assert owner.check_password('a-longer-secret')
        assert owner_client.get('/api/v1/auth/me').status_code == 200


class TestGyms:
    def test_super_admin_creates_gym(self, super_admin_client):
        response = super_admin_client.post_json('/api/v1/gyms/', {
            'name': 'Flex Hub',
            'subdomain': 'Flex-Hub',
            'owner': {'email': 'Founder@Flex.example', 'first_name': 'Fran'},
        })

        assert response.status_code == 201
        data = response.json()['data']
        assert data['subdomain'] == 'flex-hub'
        assert data['owner']['email'] == 'founder@flex.example'
        assert data['owner_temporary_password']

        gym = Gym.objects.get(name='Flex Hub')
        assert gym.owner.role == User.Role.OWNER
        assert gym.owner.gym == gym
        assert ExpenseCategory.objects.filter(gym=gym).count() == 8
        assert RevenueSource.objects.filter(gym=gym).count() == 7

    def test_owner_cannot_list_gyms(self, owner_client):
        assert owner_client.get('/api/v1/gyms/').status_code == 403

    def test_bad_subdomain(self, super_admin_client):
        response = super_admin_client.post_json('/api/v1/gyms/', {
            'name': 'Bad', 'subdomain': 'no spaces!', 'owner': {'email': 'bad@example.com', 'first_name': 'B'},
        })
        assert response.status_code == 400
        assert not User.objects.filter(email='bad@example.com').exists()

    def test_toggle_features(self, super_admin_client, gym):
        response = super_admin_client.put_json(f'/api/v1/gyms/{gym.id}/features', {'reports': False})
        assert response.status_code == 200
        assert response.json()['data']['reports'] is False
        assert response.json()['data']['attendance'] is True

    def test_deactivate(self, super_admin_client, gym):
        assert super_admin_client.delete(f'/api/v1/gyms/{gym.id}').status_code == 200
        gym.refresh_from_db()
        assert gym.is_active is False

    def test_my_gym(self, member_client, gym):
        assert member_client.get('/api/v1/gyms/me').json()['data']['id'] == gym.id

    def test_only_owner_updates_my_gym(self, owner_client, staff_client):
        assert staff_client.put_json('/api/v1/gyms/me', {'currency': 'USD'}).status_code == 403
        response = owner_client.put_json('/api/v1/gyms/me', {'currency': 'USD'})
        assert response.status_code == 200
        assert response.json()['data']['settings']['currency'] == 'USD'


def test_system_checks_pass():
    out = StringIO()
    call_command('check', stdout=out)
    assert 'no issues' in out.getvalue()


def test_feature_flags_do_not_shadow_relations(owner):
    gym = Gym.objects.create(name='Flag Hall', owner=owner, payments=False, staff=False)
    gym.refresh_from_db()
    assert gym.payments is False
    assert gym.staff is False
    assert gym.member_payments.count() == 0
