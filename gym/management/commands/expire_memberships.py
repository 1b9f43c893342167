from django.core.management.base import BaseCommand

from gym.services import expire_memberships


class Command(BaseCommand):
    help = 'Marks memberships past their end date as expired and notifies the members'

    def handle(self, *args, **kwargs):
        expired = expire_memberships()
        for member in expired:
            self.stdout.write(f"Expired {member.member_code} at {member.gym.name}")
        self.stdout.write(self.style.SUCCESS(f'Expired {len(expired)} membership(s)'))
