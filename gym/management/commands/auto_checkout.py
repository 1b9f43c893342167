from django.core.management.base import BaseCommand

from gym.services import auto_checkout


class Command(BaseCommand):
    help = 'Checks out members whose sessions exceeded the gym auto check-out limit'

    def handle(self, *args, **kwargs):
        closed = auto_checkout()
        self.stdout.write(self.style.SUCCESS(f'Auto checked out {closed} session(s)'))
