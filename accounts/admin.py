from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import User


@admin.register(User)
class GymUserAdmin(UserAdmin):
    list_display = ('username', 'email', 'role', 'gym', 'is_active')
    list_filter = ('role', 'is_active')
    fieldsets = UserAdmin.fieldsets + (
        ('Gym', {'fields': ('role', 'gym', 'phone_number')}),
    )
