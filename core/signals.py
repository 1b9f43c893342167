from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from .email_utils import send_gym_email
from .models import Notification

EMAILED_CATEGORIES = (Notification.Category.SUBSCRIPTION, Notification.Category.PAYMENT)


@receiver(post_save, sender=Notification)
def send_notification_email(sender, instance, created, **kwargs):
    if not created or instance.category not in EMAILED_CATEGORIES:
        return
    if not instance.recipient.email:
        return
    link = f"\n\nLink: {settings.SITE_URL}{instance.link}" if instance.link else ''
    send_gym_email(
        subject=f"Notification: {instance.title}",
        message=f"{instance.message}{link}",
        recipient_list=[instance.recipient.email],
        gym=instance.gym,
    )
