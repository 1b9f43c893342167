from django.contrib import admin

from .models import Attendance, AttendanceConfig, AttendanceOverrideLog, Member, MemberAccessConfig, Plan, Staff


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ('name', 'gym', 'price', 'duration', 'duration_days', 'is_active')
    list_filter = ('duration', 'is_active')
    search_fields = ('name', 'gym__name')


@admin.register(Member)
class MemberAdmin(admin.ModelAdmin):
    list_display = ('member_code', 'user', 'gym', 'plan', 'status', 'subscription_end', 'access_level', 'can_login')
    list_filter = ('status', 'access_level', 'can_login')
    search_fields = ('member_code', 'user__email', 'user__first_name', 'user__last_name')


@admin.register(Staff)
class StaffAdmin(admin.ModelAdmin):
    list_display = ('user', 'gym', 'specialty', 'is_active')
    list_filter = ('is_active',)


@admin.register(Attendance)
class AttendanceAdmin(admin.ModelAdmin):
    list_display = ('member', 'gym', 'check_in', 'check_out', 'status', 'method', 'is_deleted')
    list_filter = ('status', 'method', 'is_deleted')


admin.site.register(AttendanceConfig)
admin.site.register(AttendanceOverrideLog)


@admin.register(MemberAccessConfig)
class MemberAccessConfigAdmin(admin.ModelAdmin):
    list_display = ('gym', 'updated_at')
    search_fields = ('gym__name',)
