import logging

from django.db import transaction
from django.db.models import Count, F, Q

from accounts.models import User
from core.api import ApiError
from core.models import Notification
from core.notifications import notify, notify_gym_staff
from .models import FAQ, SupportTicket, TicketReply

logger = logging.getLogger(__name__)


def open_ticket(gym, user, subject, description, category=SupportTicket.Category.OTHER,
                priority=SupportTicket.Priority.MEDIUM):
    ticket = SupportTicket.objects.create(
        gym=gym, user=user, subject=subject, description=description, category=category, priority=priority,
    )
    if user.is_gym_member:
        notify_gym_staff(
            gym,
            f"New support ticket {ticket.ticket_number}",
            f"{user.full_name}: {subject}",
            category=Notification.Category.SUPPORT,
            link=f"/support/{ticket.pk}",
        )
    logger.info("Ticket %s opened by user %s", ticket.ticket_number, user.pk)
    return ticket


def assign_ticket(ticket, assignee_id):
    if assignee_id in (None, ''):
        ticket.assigned_to = None
        return
    assignee = User.objects.filter(
        pk=assignee_id, gym_id=ticket.gym_id, is_active=True, role__in=[User.Role.OWNER, User.Role.STAFF],
    ).first()
    if assignee is None:
        raise ApiError(400, 'Tickets can only be assigned to staff or the owner of this gym')
    ticket.assigned_to = assignee
    if ticket.status == SupportTicket.Status.OPEN:
        ticket.status = SupportTicket.Status.IN_PROGRESS


def add_reply(ticket, user, message):
    """
    Staff replies notify the ticket's author. A member replying to a
    resolved or closed ticket reopens it.
    """
    message = (message or '').strip()
    if not message:
        raise ApiError(400, 'Message is required')

    is_staff = user.is_super_admin or user.can_manage_gym
    with transaction.atomic():
        reply = TicketReply.objects.create(ticket=ticket, user=user, message=message, is_staff=is_staff)
        if not is_staff and ticket.status in (SupportTicket.Status.RESOLVED, SupportTicket.Status.CLOSED):
            ticket.status = SupportTicket.Status.OPEN
            ticket.resolved_at = None
            ticket.closed_at = None
        ticket.save()

    if is_staff and ticket.user_id != user.id:
        notify(
            ticket.user,
            f"New reply on {ticket.ticket_number}",
            message[:200],
            gym=ticket.gym,
            category=Notification.Category.SUPPORT,
            link=f"/support/{ticket.pk}",
        )
    return reply


def ticket_stats(tickets):
    stats = {status: 0 for status in SupportTicket.Status.values}
    stats['total'] = 0
    for row in tickets.values('status').annotate(count=Count('id')):
        stats[row['status']] = row['count']
        stats['total'] += row['count']
    return stats


def visible_faqs(gym):
    faqs = FAQ.objects.filter(is_active=True)
    if gym is None:
        return faqs.filter(gym__isnull=True)
    return faqs.filter(Q(gym=gym) | Q(gym__isnull=True))


def record_view(faq):
    FAQ.objects.filter(pk=faq.pk).update(views=F('views') + 1)
    faq.refresh_from_db(fields=['views'])


def rate_faq(faq, helpful):
    field = 'helpful' if helpful else 'not_helpful'
    FAQ.objects.filter(pk=faq.pk).update(**{field: F(field) + 1})
    faq.refresh_from_db(fields=['helpful', 'not_helpful'])
    return faq


def faq_categories(faqs):
    counts = {row['category']: row['count'] for row in faqs.values('category').annotate(count=Count('id'))}
    return [
        {'category': value, 'label': label, 'count': counts.get(value, 0)}
        for value, label in FAQ.Category.choices
    ]
