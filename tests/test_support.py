import re

import pytest

from core.api import ApiError
from core.models import Notification
from support import services
from support.models import FAQ, SupportTicket

from .conftest import make_user

pytestmark = pytest.mark.django_db


@pytest.fixture
def ticket(gym, member, staff_user):
    return services.open_ticket(gym, member.user, 'Locker broken', 'Locker 12 will not close.')


class TestTickets:
    def test_member_ticket_notifies_staff(self, ticket, owner, staff_user):
        assert re.fullmatch(r'TICKET-[0-9A-Z]+-0001', ticket.ticket_number)
        for user in (owner, staff_user):
            notification = user.notifications.get(category=Notification.Category.SUPPORT)
            assert ticket.ticket_number in notification.title

    def test_create_via_api(self, member_client):
        response = member_client.post_json('/api/v1/support/', {
            'subject': 'Billing question', 'description': 'Why was I charged twice?', 'category': 'payments',
            'priority': 'high',
        })
        assert response.status_code == 201
        data = response.json()['data']
        assert data['status'] == 'open'
        assert data['priority'] == 'high'

    def test_member_sees_only_own_tickets(self, member_client, gym, owner, ticket):
        services.open_ticket(gym, owner, 'Owner note', 'Internal')
        data = member_client.get('/api/v1/support/').json()['data']
        assert [item['id'] for item in data] == [ticket.id]

    def test_member_cannot_update(self, member_client, ticket):
        response = member_client.put_json(f'/api/v1/support/{ticket.id}', {'status': 'closed'})
        assert response.status_code == 403

    def test_assign_moves_to_in_progress(self, staff_client, staff_user, ticket):
        response = staff_client.put_json(f'/api/v1/support/{ticket.id}', {'assigned_to': staff_user.id})
        assert response.status_code == 200
        data = response.json()['data']
        assert data['status'] == 'in_progress'
        assert data['assigned_to']['id'] == staff_user.id

    def test_cannot_assign_to_member(self, ticket, member):
        with pytest.raises(ApiError):
            services.assign_ticket(ticket, member.user.id)

    def test_resolving_stamps_time(self, staff_client, ticket):
        staff_client.put_json(f'/api/v1/support/{ticket.id}', {'status': 'resolved'})
        ticket.refresh_from_db()
        assert ticket.resolved_at is not None

    def test_member_reply_reopens(self, ticket, member):
        ticket.status = SupportTicket.Status.RESOLVED
        ticket.save()

        reply = services.add_reply(ticket, member.user, 'Still broken!')

        ticket.refresh_from_db()
        assert reply.is_staff is False
        assert ticket.status == SupportTicket.Status.OPEN
        assert ticket.resolved_at is None

    def test_staff_reply_notifies_author(self, ticket, staff_user, member):
        reply = services.add_reply(ticket, staff_user, 'A technician is on the way.')
        assert reply.is_staff
        assert member.user.notifications.filter(title__startswith='New reply').exists()

    def test_empty_reply(self, member_client, ticket):
        response = member_client.post_json(f'/api/v1/support/{ticket.id}/replies', {'message': '   '})
        assert response.status_code == 400

    def test_reply_endpoint(self, member_client, ticket):
        response = member_client.post_json(f'/api/v1/support/{ticket.id}/replies', {'message': 'Any update?'})
        assert response.status_code == 201
        assert response.json()['data']['replies'][0]['message'] == 'Any update?'

    def test_stats(self, staff_client, ticket):
        data = staff_client.get('/api/v1/support/stats').json()['data']
        assert data['total'] == 1
        assert data['open'] == 1

    def test_other_gym_ticket_is_hidden(self, staff_client, db):
        outsider = make_user('outsider', 'owner')
        other_gym = outsider.owned_gyms.create(name='Elsewhere')
        foreign = services.open_ticket(other_gym, outsider, 'Hello', 'World')
        assert staff_client.get(f'/api/v1/support/{foreign.id}').status_code == 404


class TestFaqs:
    @pytest.fixture
    def faqs(self, gym, db):
        other_owner = make_user('other', 'owner')
        other_gym = other_owner.owned_gyms.create(name='Elsewhere')
        return {
            'global': FAQ.objects.create(question='How do I reset my password?', answer='Use the login page.'),
            'own': FAQ.objects.create(gym=gym, question='When are you open?', answer='6am to 10pm.'),
            'other': FAQ.objects.create(gym=other_gym, question='Parking?', answer='Street only.'),
            'hidden': FAQ.objects.create(gym=gym, question='Old rule', answer='Gone.', is_active=False),
        }

    def test_visibility(self, member_client, faqs):
        ids = {item['id'] for item in member_client.get('/api/v1/faqs/').json()['data']}
        assert ids == {faqs['global'].id, faqs['own'].id}

    def test_global_flag(self, faqs):
        assert faqs['global'].is_global
        assert not faqs['own'].is_global

    def test_owner_creates_gym_faq(self, owner_client, gym):
        response = owner_client.post_json('/api/v1/faqs/', {'question': 'Towels?', 'answer': 'Yes, free.'})
        assert response.status_code == 201
        assert response.json()['data']['gym_id'] == gym.id

    def test_super_admin_creates_global_faq(self, super_admin_client):
        response = super_admin_client.post_json('/api/v1/faqs/', {'question': 'What is this?', 'answer': 'A gym app.'})
        assert response.status_code == 201
        assert response.json()['data']['is_global'] is True

    def test_member_cannot_create(self, member_client):
        response = member_client.post_json('/api/v1/faqs/', {'question': 'Q', 'answer': 'A'})
        assert response.status_code == 403

    def test_owner_cannot_edit_global(self, owner_client, faqs):
        response = owner_client.put_json(f"/api/v1/faqs/{faqs['global'].id}", {'answer': 'Changed'})
        assert response.status_code == 403

    def test_views_are_counted(self, member_client, faqs):
        member_client.get(f"/api/v1/faqs/{faqs['own'].id}")
        response = member_client.get(f"/api/v1/faqs/{faqs['own'].id}")
        assert response.json()['data']['views'] == 2

    def test_rate(self, member_client, faqs):
        url = f"/api/v1/faqs/{faqs['own'].id}/rate"
        assert member_client.post_json(url, {'helpful': 'yes'}).status_code == 400
        response = member_client.post_json(url, {'helpful': True})
        assert response.json()['data'] == {'helpful': 1, 'not_helpful': 0}

    def test_categories(self, member_client, faqs):
        data = member_client.get('/api/v1/faqs/categories').json()['data']
        general = next(item for item in data if item['category'] == FAQ.Category.GENERAL)
        assert general['count'] == 2
