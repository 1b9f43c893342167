from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from core.models import Notification
from core.notifications import notify_gym_owner
from subscriptions.models import Subscription


class Command(BaseCommand):
    help = 'Sends subscription expiration reminders to gym owners'

    def handle(self, *args, **kwargs):
        now = timezone.now()
        today = timezone.localdate(now)
        sent = 0

        for days in settings.EXPIRY_REMINDER_DAYS:
            target_date = today + timedelta(days=days)

            expiring = Subscription.objects.select_related('gym', 'gym__owner', 'plan').filter(
                status=Subscription.Status.ACTIVE,
                end_date__date=target_date,
                gym__is_active=True,
            )

            for subscription in expiring:
                gym = subscription.gym
                title = f"Subscription expires in {days} day{'s' if days != 1 else ''}"

                already_sent = Notification.objects.filter(
                    recipient=gym.owner,
                    title=title,
                    category=Notification.Category.SUBSCRIPTION,
                    created_at__date=today,
                ).exists()
                if already_sent:
                    continue

                if subscription.auto_renew:
                    message = (f"Your {subscription.plan.name} plan for {gym.name} renews on "
                               f"{subscription.end_date:%d %b %Y}.")
                else:
                    message = (f"Your {subscription.plan.name} plan for {gym.name} expires on "
                               f"{subscription.end_date:%d %b %Y}. Please renew to avoid service interruption.")

                # Email goes out from the post_save signal on subscription notifications
                notify_gym_owner(
                    gym,
                    title,
                    message,
                    notification_type=Notification.Type.WARNING,
                    category=Notification.Category.SUBSCRIPTION,
                    link='/subscription',
                )
                sent += 1
                self.stdout.write(f"Reminded {gym.owner.email} for {gym.name} ({days} days left)")

        self.stdout.write(self.style.SUCCESS(f'Successfully sent {sent} expiration reminder(s)'))
