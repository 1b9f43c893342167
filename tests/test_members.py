from datetime import timedelta
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from accounts.models import User
from core.api import ApiError
from gym import services
from gym.models import Member, Plan, Staff
from tenants.models import Gym

pytestmark = pytest.mark.django_db


def test_create_member_bills_first_period(owner_client, gym, plan):
    response = owner_client.post_json('/api/v1/members/', {
        'email': 'Bob@Example.com',
        'first_name': 'Bob',
        'plan': plan.id,
        'blood_group': 'O+',
    })

    assert response.status_code == 201
    data = response.json()['data']
    assert data['member_code'] == 'M000001'
    assert data['user']['email'] == 'bob@example.com'
    assert data['temporary_password']
    assert data['invoice']['total'] == '1500.00'
    assert data['invoice']['status'] == 'pending'

    member = Member.objects.get(user__email='bob@example.com')
    assert member.user.role == User.Role.MEMBER
    assert member.subscription_end == member.subscription_start + timedelta(days=30)
    assert member.blood_group == 'O+'


def test_create_member_rejects_duplicate_email(owner_client, member, plan):
    response = owner_client.post_json('/api/v1/members/', {
        'email': member.user.email, 'first_name': 'Dupe', 'plan': plan.id,
    })
    assert response.status_code == 400
    assert 'email' in response.json()['error']


def test_create_member_respects_plan_limit(owner_client, subscription, member, plan):
    subscription.plan.max_members = 1
    subscription.plan.save()

    response = owner_client.post_json('/api/v1/members/', {
        'email': 'late@example.com', 'first_name': 'Late', 'plan': plan.id,
    })

    assert response.status_code == 403
    assert response.json()['code'] == 'PLAN_LIMIT_REACHED'
    assert not User.objects.filter(email='late@example.com').exists()


def test_member_cannot_list_members(member_client):
    assert member_client.get('/api/v1/members/').status_code == 403


def test_member_sees_own_membership(member_client, member):
    response = member_client.get('/api/v1/members/me')
    assert response.status_code == 200
    assert response.json()['data']['member_code'] == member.member_code


def test_member_search(owner_client, member):
    response = owner_client.get('/api/v1/members/', {'search': 'alice'})
    body = response.json()
    assert body['pagination']['total'] == 1
    assert body['data'][0]['id'] == member.id


def test_delete_member_cancels_and_deactivates(owner_client, member):
    response = owner_client.delete(f'/api/v1/members/{member.id}')

    assert response.status_code == 200
    member.refresh_from_db()
    member.user.refresh_from_db()
    assert member.status == Member.Status.CANCELLED
    assert member.user.is_active is False


def test_members_are_scoped_to_gym(owner_client, db):
    other_owner = User.objects.create_user(username='other', email='other@example.com', role=User.Role.OWNER)
    other_gym = Gym.objects.create(name='Elsewhere', owner=other_owner)
    other_plan = Plan.objects.create(gym=other_gym, name='Basic', price=Decimal('100.00'))
    outsider = User.objects.create_user(username='outsider', email='outsider@example.com', gym=other_gym)
    today = timezone.localdate()
    foreign = Member.objects.create(
        gym=other_gym, user=outsider, plan=other_plan, subscription_start=today, subscription_end=today,
    )

    assert owner_client.get(f'/api/v1/members/{foreign.id}').status_code == 404


class TestRenewal:
    def test_renewal_extends_from_current_end(self, member, plan, owner):
        end = member.subscription_end

        member, invoice = services.renew_member(member, user=owner)

        assert member.subscription_end == end + timedelta(days=30)
        assert invoice.items.get().description == 'Gold membership renewal'

    def test_expired_member_restarts_today(self, member):
        today = timezone.localdate()
        member.subscription_end = today - timedelta(days=10)
        member.status = Member.Status.EXPIRED
        member.save()

        member, _ = services.renew_member(member)

        assert member.status == Member.Status.ACTIVE
        assert member.subscription_start == today
        assert member.subscription_end == today + timedelta(days=30)

    def test_renew_endpoint_switches_plan(self, owner_client, member, gym):
        yearly = Plan.objects.create(gym=gym, name='Annual', price=Decimal('12000.00'), duration=Plan.Duration.YEARLY)

        response = owner_client.post_json(f'/api/v1/members/{member.id}/renew', {'plan_id': yearly.id})

        assert response.status_code == 200
        data = response.json()['data']
        assert data['plan']['name'] == 'Annual'
        assert data['invoice']['total'] == '12000.00'

    def test_cancelled_member_cannot_renew(self, member):
        member.status = Member.Status.CANCELLED
        member.save()
        with pytest.raises(ApiError):
            services.renew_member(member)


def test_expire_memberships_command(member):
    member.subscription_end = timezone.localdate() - timedelta(days=1)
    member.save()
    out = StringIO()

    call_command('expire_memberships', stdout=out)

    member.refresh_from_db()
    assert member.status == Member.Status.EXPIRED
    assert member.user.notifications.filter(title='Membership expired').exists()
    assert 'Expired 1 membership(s)' in out.getvalue()


def test_member_stats(owner_client, member):
    data = owner_client.get('/api/v1/members/stats').json()['data']
    assert data['total'] == 1
    assert data['active'] == 1
    assert data['joined_this_month'] == 1


class TestPlans:
    def test_custom_plan_needs_duration(self, owner_client):
        response = owner_client.post_json('/api/v1/plans/', {'name': 'Odd', 'price': '10.00', 'duration': 'custom',
                                                              'duration_days': None})
        assert response.status_code == 400

    def test_create_quarterly_plan(self, owner_client):
        response = owner_client.post_json('/api/v1/plans/', {
            'name': 'Quarter', 'price': '4000.00', 'duration': 'quarterly', 'features': ['Locker', 'Sauna'],
        })
        assert response.status_code == 201
        data = response.json()['data']
        assert data['duration_days'] == 90
        assert data['features'] == ['Locker', 'Sauna']

    def test_members_only_see_active_plans(self, member_client, gym, plan):
        Plan.objects.create(gym=gym, name='Retired', price=Decimal('1.00'), is_active=False)
        names = [item['name'] for item in member_client.get('/api/v1/plans/').json()['data']]
        assert names == ['Gold']

    def test_plan_in_use_is_deactivated_not_deleted(self, owner_client, member, plan):
        response = owner_client.delete(f'/api/v1/plans/{plan.id}')
        assert response.status_code == 200
        plan.refresh_from_db()
        assert plan.is_active is False

    def test_unused_plan_is_deleted(self, owner_client, gym):
        spare = Plan.objects.create(gym=gym, name='Spare', price=Decimal('5.00'))
        owner_client.delete(f'/api/v1/plans/{spare.id}')
        assert not Plan.objects.filter(pk=spare.pk).exists()


class TestStaff:
    def test_owner_adds_staff(self, owner_client, gym):
        response = owner_client.post_json('/api/v1/staff/', {
            'email': 'trainer@example.com', 'first_name': 'Tara', 'specialty': 'Strength', 'password': 'lift-heavy-42',
        })
        assert response.status_code == 201
        assert 'temporary_password' not in response.json()['data']
        staff = Staff.objects.get(user__email='trainer@example.com')
        assert staff.user.role == User.Role.STAFF
        assert staff.user.check_password('lift-heavy-42')

    def test_staff_feature_toggle(self, owner_client, gym):
        gym.staff = False
        gym.save()
        response = owner_client.get('/api/v1/staff/')
        assert response.status_code == 403
        assert response.json()['code'] == 'FEATURE_NOT_AVAILABLE'

    def test_staff_cannot_manage_staff(self, staff_client):
        assert staff_client.get('/api/v1/staff/').status_code == 403
