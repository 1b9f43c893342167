from django.core.management.base import BaseCommand
from django.utils import timezone

from subscriptions.services import cancel_overdue_invoices, expire_subscriptions


class Command(BaseCommand):
    help = 'Expires subscriptions past their grace period and cancels overdue subscription invoices'

    def handle(self, *args, **kwargs):
        now = timezone.now()

        expired = expire_subscriptions(now)
        for subscription in expired:
            self.stdout.write(f"Expired subscription for {subscription.gym.name} (plan {subscription.plan.name})")

        cancelled = cancel_overdue_invoices(now)

        self.stdout.write(self.style.SUCCESS(
            f'Expired {len(expired)} subscription(s); cancelled {cancelled} overdue invoice(s)'
        ))
