from django.core.management.base import BaseCommand

from billing.services import mark_overdue


class Command(BaseCommand):
    help = 'Marks pending member invoices past their due date as overdue'

    def handle(self, *args, **kwargs):
        updated = mark_overdue()
        self.stdout.write(self.style.SUCCESS(f'Marked {updated} invoice(s) overdue'))
