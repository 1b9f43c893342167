from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    class Role(models.TextChoices):
        SUPER_ADMIN = 'super_admin', 'Super Admin'
        OWNER = 'owner', 'Gym Owner'
        STAFF = 'staff', 'Staff'
        MEMBER = 'member', 'Member'

    role = models.CharField(max_length=20, choices=Role.choices, default=Role.MEMBER)
    gym = models.ForeignKey('tenants.Gym', on_delete=models.SET_NULL, related_name='users', null=True, blank=True)
    phone_number = models.CharField(max_length=20, blank=True, default='')

    def save(self, *args, **kwargs):
        if self.is_superuser:
            self.role = self.Role.SUPER_ADMIN
        super().save(*args, **kwargs)

    @property
    def is_super_admin(self):
        return self.is_superuser or self.role == self.Role.SUPER_ADMIN

    @property
    def is_gym_owner(self):
        return self.role == self.Role.OWNER

    @property
    def is_gym_staff(self):
        return self.role == self.Role.STAFF

    @property
    def is_gym_member(self):
        return self.role == self.Role.MEMBER

    @property
    def can_manage_gym(self):
        return self.is_super_admin or self.role in [self.Role.OWNER, self.Role.STAFF]

    @property
    def can_manage_finance(self):
        return self.is_super_admin or self.role == self.Role.OWNER

    @property
    def full_name(self):
        return self.get_full_name() or self.username

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'phone_number': self.phone_number,
            'role': self.role,
            'gym_id': self.gym_id,
            'is_active': self.is_active,
        }
