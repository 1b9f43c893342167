import time

from django.conf import settings
from django.db import models
from django.utils import timezone

from tenants.models import GymScopedModel

BASE36 = '0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ'


def to_base36(number):
    digits = ''
    while number:
        number, remainder = divmod(number, 36)
        digits = BASE36[remainder] + digits
    return digits or '0'


class SupportTicket(GymScopedModel):
    class Category(models.TextChoices):
        MEMBERSHIP = 'membership', 'Membership'
        PAYMENTS = 'payments', 'Payments'
        CLASSES = 'classes', 'Classes'
        TECHNICAL = 'technical', 'Technical'
        COMPLAINT = 'complaint', 'Complaint'
        OTHER = 'other', 'Other'

    class Priority(models.TextChoices):
        LOW = 'low', 'Low'
        MEDIUM = 'medium', 'Medium'
        HIGH = 'high', 'High'
        URGENT = 'urgent', 'Urgent'

    class Status(models.TextChoices):
        OPEN = 'open', 'Open'
        IN_PROGRESS = 'in_progress', 'In progress'
        RESOLVED = 'resolved', 'Resolved'
        CLOSED = 'closed', 'Closed'

    ticket_number = models.CharField(max_length=40, unique=True, blank=True)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='support_tickets')
    subject = models.CharField(max_length=200)
    description = models.TextField()
    category = models.CharField(max_length=20, choices=Category.choices, default=Category.OTHER)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.OPEN)
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_tickets',
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def save(self, *args, **kwargs):
        if not self.ticket_number:
            count = SupportTicket.objects.filter(gym_id=self.gym_id).count()
            self.ticket_number = f"TICKET-{to_base36(int(time.time() * 1000))}-{count + 1:04d}"
        if self.status == self.Status.RESOLVED and not self.resolved_at:
            self.resolved_at = timezone.now()
        if self.status == self.Status.CLOSED and not self.closed_at:
            self.closed_at = timezone.now()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.ticket_number} {self.subject}"

    def to_dict(self, replies=False):
        data = {
            'id': self.id,
            'ticket_number': self.ticket_number,
            'user': {'id': self.user_id, 'name': self.user.full_name, 'email': self.user.email},
            'subject': self.subject,
            'description': self.description,
            'category': self.category,
            'priority': self.priority,
            'status': self.status,
            'assigned_to': (
                {'id': self.assigned_to_id, 'name': self.assigned_to.full_name} if self.assigned_to_id else None
            ),
            'resolved_at': self.resolved_at,
            'closed_at': self.closed_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        if replies:
            data['replies'] = [reply.to_dict() for reply in self.replies.select_related('user')]
        return data


class TicketReply(models.Model):
    ticket = models.ForeignKey(SupportTicket, on_delete=models.CASCADE, related_name='replies')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='+')
    message = models.TextField()
    is_staff = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']
        verbose_name_plural = 'ticket replies'

    def to_dict(self):
        return {
            'id': self.id,
            'user': {'id': self.user_id, 'name': self.user.full_name},
            'message': self.message,
            'is_staff': self.is_staff,
            'created_at': self.created_at,
        }


class FAQ(models.Model):
    class Category(models.TextChoices):
        MEMBERSHIP = 'membership', 'Membership'
        PAYMENTS = 'payments', 'Payments'
        CLASSES = 'classes', 'Classes'
        TECHNICAL = 'technical', 'Technical'
        GENERAL = 'general', 'General'

    gym = models.ForeignKey('tenants.Gym', on_delete=models.CASCADE, null=True, blank=True, related_name='faqs')
    question = models.CharField(max_length=500)
    answer = models.TextField()
    category = models.CharField(max_length=20, choices=Category.choices, default=Category.GENERAL)
    is_global = models.BooleanField(default=False)
    order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    views = models.PositiveIntegerField(default=0)
    helpful = models.PositiveIntegerField(default=0)
    not_helpful = models.PositiveIntegerField(default=0)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['order', '-created_at']
        verbose_name = 'FAQ'

    def save(self, *args, **kwargs):
        self.is_global = self.gym_id is None
        super().save(*args, **kwargs)

    def __str__(self):
        return self.question

    def to_dict(self):
        return {
            'id': self.id,
            'gym_id': self.gym_id,
            'question': self.question,
            'answer': self.answer,
            'category': self.category,
            'is_global': self.is_global,
            'order': self.order,
            'is_active': self.is_active,
            'views': self.views,
            'helpful': self.helpful,
            'not_helpful': self.not_helpful,
        }
