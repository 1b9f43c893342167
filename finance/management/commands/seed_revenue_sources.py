from django.core.management.base import BaseCommand

from finance.services import seed_revenue_sources
from tenants.models import Gym


class Command(BaseCommand):
    help = 'Creates the system revenue sources for every gym that lacks them'

    def add_arguments(self, parser):
        parser.add_argument('--gym', type=int, help='Only seed this gym id')

    def handle(self, *args, **options):
        gyms = Gym.objects.all()
        if options.get('gym'):
            gyms = gyms.filter(pk=options['gym'])

        total = 0
        for gym in gyms:
            created = seed_revenue_sources(gym)
            total += created
            if created:
                self.stdout.write(f"Seeded {created} source(s) for {gym.name}")
            else:
                self.stdout.write(f"Sources already exist for {gym.name}")

        self.stdout.write(self.style.SUCCESS(f'Created {total} revenue source(s)'))
