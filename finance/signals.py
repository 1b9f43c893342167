from django.db.models.signals import post_save
from django.dispatch import receiver

from tenants.models import Gym
from .services import seed_gym_defaults


@receiver(post_save, sender=Gym)
def seed_finance_defaults(sender, instance, created, **kwargs):
    if created:
        seed_gym_defaults(instance)
