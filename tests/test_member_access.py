from decimal import Decimal

import pytest
from django.utils import timezone

from accounts.models import User
from gym.models import MEMBER_PORTAL_FEATURES, Member, MemberAccessConfig, Plan
from tenants.models import Gym

from .conftest import make_user

pytestmark = pytest.mark.django_db


@pytest.fixture
def access(gym):
    return MemberAccessConfig.for_gym(gym)


class TestRules:
    def test_defaults(self, access, member):
        assert access.permissions_for(member) == {feature: True for feature in MEMBER_PORTAL_FEATURES}
        assert access.permission_levels['basic']['edit_profile'] is False
        assert access.permission_levels['basic']['book_classes'] is False

    def test_basic_level_narrows_features(self, access, member):
        member.access_level = Member.AccessLevel.BASIC
        assert access.denial_for(member, 'edit_profile') == \
            'Your membership level does not include access to edit profile'
        assert access.denial_for(member, 'view_profile') == ''

    def test_gym_default_switches_feature_off(self, access, member):
        access.default_feature_access['view_invoices'] = False
        assert access.denial_for(member, 'view_invoices') == 'This feature is currently disabled'

    def test_member_override_wins(self, access, member):
        access.default_feature_access['view_invoices'] = False
        member.access_level = Member.AccessLevel.BASIC
        member.access_restrictions = {'view_invoices': True, 'view_attendance': False}

        permissions = access.permissions_for(member)

        assert permissions['view_invoices'] is True
        assert permissions['view_attendance'] is False
        assert permissions['edit_profile'] is False


class TestSettingsApi:
    def test_owner_reads_settings(self, owner_client, gym):
        data = owner_client.get('/api/v1/member-access/settings').json()['data']
        assert data['gym_id'] == gym.id
        assert set(data['permission_levels']) == {'basic', 'premium', 'vip'}

    def test_partial_update_keeps_other_flags(self, owner_client, access):
        response = owner_client.put_json('/api/v1/member-access/settings', {
            'default_feature_access': {'view_diet_plan': False},
            'permission_levels': {'vip': {'book_classes': False}},
        })

        assert response.status_code == 200
        access.refresh_from_db()
        assert access.default_feature_access['view_diet_plan'] is False
        assert access.default_feature_access['view_profile'] is True
        assert access.permission_levels['vip']['book_classes'] is False
        assert access.permission_levels['vip']['view_profile'] is True
        assert access.permission_levels['basic']['edit_profile'] is False

    @pytest.mark.parametrize('payload', [
        {'default_feature_access': {'teleport': True}},
        {'default_feature_access': {'view_profile': 'yes'}},
        {'permission_levels': {'gold': {'view_profile': True}}},
    ])
    def test_rejects_bad_settings(self, owner_client, payload):
        assert owner_client.put_json('/api/v1/member-access/settings', payload).status_code == 400

    def test_staff_cannot_change_settings(self, staff_client):
        assert staff_client.get('/api/v1/member-access/settings').status_code == 403


class TestMemberApi:
    def test_staff_reads_member_access(self, staff_client, member):
        data = staff_client.get(f'/api/v1/member-access/members/{member.id}').json()['data']
        assert data['access_level'] == 'premium'
        assert data['can_login'] is True
        assert data['permissions']['book_classes'] is True

    def test_staff_cannot_update(self, staff_client, member):
        response = staff_client.put_json(f'/api/v1/member-access/members/{member.id}', {'can_login': False})
        assert response.status_code == 403

    def test_owner_sets_and_clears_overrides(self, owner_client, member):
        url = f'/api/v1/member-access/members/{member.id}'
        owner_client.put_json(url, {'access_level': 'basic', 'access_restrictions': {'view_payments': False}})
        member.refresh_from_db()
        assert member.access_level == Member.AccessLevel.BASIC
        assert member.access_restrictions == {'view_payments': False}

        response = owner_client.put_json(url, {'access_restrictions': {'view_payments': None}})

        assert response.status_code == 200
        member.refresh_from_db()
        assert member.access_restrictions == {}
        assert member.access_level == Member.AccessLevel.BASIC

    def test_member_from_other_gym_is_hidden(self, owner_client, db):
        other_gym = Gym.objects.create(name='Elsewhere', owner=make_user('other', User.Role.OWNER))
        other_plan = Plan.objects.create(gym=other_gym, name='Basic', price=Decimal('100.00'))
        today = timezone.localdate()
        stranger = Member.objects.create(
            gym=other_gym, user=make_user('bob', User.Role.MEMBER, gym=other_gym), plan=other_plan,
            subscription_start=today, subscription_end=today,
        )
        assert owner_client.get(f'/api/v1/member-access/members/{stranger.id}').status_code == 404

    def test_bulk_update(self, owner_client, gym, plan, member):
        second = Member.objects.create(
            gym=gym, user=make_user('bea', User.Role.MEMBER, gym=gym), plan=plan,
            subscription_start=member.subscription_start, subscription_end=member.subscription_end,
        )

        response = owner_client.post_json('/api/v1/member-access/bulk', {
            'member_ids': [member.id, second.id, 99999], 'access_level': 'vip',
        })

        assert response.status_code == 200
        assert response.json()['data'] == {'matched': 2, 'updated': 2}
        assert set(Member.objects.values_list('access_level', flat=True)) == {'vip'}

    def test_bulk_needs_changes(self, owner_client, member):
        response = owner_client.post_json('/api/v1/member-access/bulk', {'member_ids': [member.id]})
        assert response.status_code == 400


class TestMemberPortal:
    def test_my_access(self, member_client, member):
        member.access_restrictions = {'view_attendance': False}
        member.save()
        data = member_client.get('/api/v1/member-access/me').json()['data']
        assert data['permissions']['view_attendance'] is False
        assert data['permissions']['view_profile'] is True

    def test_restricted_member_is_blocked(self, member_client, member):
        member.access_restrictions = {'view_attendance': False, 'view_invoices': False}
        member.save()

        response = member_client.get('/api/v1/attendance/me')
        assert response.status_code == 403
        assert response.json()['code'] == 'MEMBER_ACCESS_DENIED'
        assert member_client.get('/api/v1/invoices/me').status_code == 403
        assert member_client.get('/api/v1/payments/me').status_code == 200

    def test_gym_wide_switch_blocks_members_only(self, member_client, staff_client, access, member):
        access.default_feature_access['view_attendance'] = False
        access.save()

        assert member_client.get('/api/v1/attendance/qr').status_code == 403
        response = staff_client.get('/api/v1/attendance/qr', {'memberId': member.id})
        assert response.status_code == 200

    def test_basic_member_cannot_edit_profile(self, member_client, member):
        assert member_client.put_json('/api/v1/members/me', {'address': '1 Main St'}).status_code == 200
        member.refresh_from_db()
        assert member.address == '1 Main St'

        member.access_level = Member.AccessLevel.BASIC
        member.save()

        assert member_client.put_json('/api/v1/members/me', {'address': 'Elsewhere'}).status_code == 403
        assert member_client.get('/api/v1/members/me').status_code == 200

    def test_disabled_login(self, member_client, anon_client, member):
        member.can_login = False
        member.save()

        response = member_client.get('/api/v1/members/me')
        assert response.status_code == 403
        assert response.json()['code'] == 'LOGIN_DISABLED'

        response = anon_client.post_json('/api/v1/auth/login', {'username': 'alice', 'password': 'pass12345'})
        assert response.status_code == 403
