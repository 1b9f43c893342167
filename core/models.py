from django.conf import settings
from django.db import models
from django.utils import timezone


class Notification(models.Model):
    class Type(models.TextChoices):
        INFO = 'info', 'Info'
        SUCCESS = 'success', 'Success'
        WARNING = 'warning', 'Warning'
        ERROR = 'error', 'Error'

    class Category(models.TextChoices):
        SUBSCRIPTION = 'subscription', 'Subscription'
        PAYMENT = 'payment', 'Payment'
        ATTENDANCE = 'attendance', 'Attendance'
        SUPPORT = 'support', 'Support'
        SYSTEM = 'system', 'System'

    gym = models.ForeignKey('tenants.Gym', on_delete=models.CASCADE, related_name='notifications', null=True, blank=True)
    recipient = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='notifications')

    title = models.CharField(max_length=255)
    message = models.TextField()
    notification_type = models.CharField(max_length=20, choices=Type.choices, default=Type.INFO)
    category = models.CharField(max_length=20, choices=Category.choices, default=Category.SYSTEM)
    link = models.CharField(max_length=255, blank=True, default='')
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"{self.title} - {self.recipient}"

    def mark_read(self):
        if not self.is_read:
            self.is_read = True
            self.read_at = timezone.now()
            self.save(update_fields=['is_read', 'read_at'])

    def to_dict(self):
        return {
            'id': self.id,
            'gym_id': self.gym_id,
            'title': self.title,
            'message': self.message,
            'type': self.notification_type,
            'category': self.category,
            'link': self.link,
            'is_read': self.is_read,
            'read_at': self.read_at,
            'created_at': self.created_at,
        }
