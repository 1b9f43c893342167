"""
In-app notification helpers used across apps.
"""
from accounts.models import User

from .models import Notification


def notify(recipient, title, message, gym=None, notification_type=Notification.Type.INFO,
           category=Notification.Category.SYSTEM, link=''):
    if recipient is None:
        return None
    return Notification.objects.create(
        gym=gym if gym is not None else getattr(recipient, 'gym', None),
        recipient=recipient,
        title=title,
        message=message,
        notification_type=notification_type,
        category=category,
        link=link,
    )


def notify_gym_owner(gym, title, message, **kwargs):
    return notify(gym.owner, title, message, gym=gym, **kwargs)


def notify_gym_staff(gym, title, message, **kwargs):
    """Notifies the owner and every active staff user of a gym."""
    recipients = User.objects.filter(
        gym=gym,
        is_active=True,
        role__in=[User.Role.OWNER, User.Role.STAFF],
    )
    return [notify(user, title, message, gym=gym, **kwargs) for user in recipients]
