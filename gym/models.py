from datetime import time, timedelta

from django.conf import settings
from django.db import models
from django.db.models import Max
from django.utils import timezone

from core.utils import money_str
from tenants.models import GymScopedModel


class Plan(GymScopedModel):
    """A membership plan a gym sells to its members."""

    class Duration(models.TextChoices):
        MONTHLY = 'monthly', 'Monthly'
        QUARTERLY = 'quarterly', 'Quarterly'
        YEARLY = 'yearly', 'Yearly'
        CUSTOM = 'custom', 'Custom'

    DURATION_DAYS = {
        Duration.MONTHLY: 30,
        Duration.QUARTERLY: 90,
        Duration.YEARLY: 365,
    }

    name = models.CharField(max_length=100)
    description = models.TextField(blank=True, default='')
    price = models.DecimalField(max_digits=12, decimal_places=2)
    duration = models.CharField(max_length=20, choices=Duration.choices, default=Duration.MONTHLY)
    duration_days = models.PositiveIntegerField(default=30, help_text="Length of membership in days")
    features = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['price']

    def save(self, *args, **kwargs):
        if self.duration != self.Duration.CUSTOM:
            self.duration_days = self.DURATION_DAYS[self.duration]
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} - {self.duration_days} Days"

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'price': money_str(self.price),
            'duration': self.duration,
            'duration_days': self.duration_days,
            'features': self.features,
            'is_active': self.is_active,
            'is_default': self.is_default,
        }


class Member(GymScopedModel):
    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        EXPIRED = 'expired', 'Expired'
        SUSPENDED = 'suspended', 'Suspended'
        CANCELLED = 'cancelled', 'Cancelled'

    class AccessLevel(models.TextChoices):
        BASIC = 'basic', 'Basic'
        PREMIUM = 'premium', 'Premium'
        VIP = 'vip', 'VIP'

    BLOOD_GROUPS = [(group, group) for group in ['A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-']]

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='member_profile')
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name='members')
    member_code = models.CharField(max_length=20, blank=True)
    subscription_start = models.DateField()
    subscription_end = models.DateField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)

    # Member portal access
    can_login = models.BooleanField(default=True)
    access_level = models.CharField(max_length=10, choices=AccessLevel.choices, default=AccessLevel.PREMIUM)
    access_restrictions = models.JSONField(
        default=dict, blank=True, help_text="Per-feature overrides; a missing feature follows the gym settings",
    )

    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUPS, blank=True, default='')
    address = models.TextField(blank=True, default='')
    emergency_contact_name = models.CharField(max_length=100, blank=True, default='')
    emergency_contact_phone = models.CharField(max_length=20, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['gym', 'member_code'], name='unique_member_code_per_gym'),
        ]

    def save(self, *args, **kwargs):
        if not self.member_code:
            last = Member.objects.filter(gym_id=self.gym_id).aggregate(last=Max('member_code'))['last']
            sequence = int(last[1:]) + 1 if last else 1
            self.member_code = f"M{sequence:06d}"
        if not self.subscription_end and self.subscription_start and self.plan_id:
            self.subscription_end = self.subscription_start + timedelta(days=self.plan.duration_days)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.member_code} {self.user.full_name}"

    @property
    def remaining_days(self):
        if self.status != self.Status.ACTIVE:
            return 0
        return max(0, (self.subscription_end - timezone.localdate()).days)

    def to_dict(self):
        return {
            'id': self.id,
            'member_code': self.member_code,
            'user': self.user.to_dict(),
            'plan': self.plan.to_dict(),
            'subscription_start': self.subscription_start,
            'subscription_end': self.subscription_end,
            'remaining_days': self.remaining_days,
            'status': self.status,
            'blood_group': self.blood_group,
            'address': self.address,
            'emergency_contact': {
                'name': self.emergency_contact_name,
                'phone': self.emergency_contact_phone,
            },
            'notes': self.notes,
            'access': self.access_dict(),
            'created_at': self.created_at,
        }

    def access_dict(self):
        return {
            'can_login': self.can_login,
            'access_level': self.access_level,
            'access_restrictions': self.access_restrictions,
        }


class Staff(GymScopedModel):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='staff_profile')
    specialty = models.CharField(max_length=100, blank=True, default='')
    schedule = models.CharField(max_length=255, blank=True, default='')
    hourly_rate = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name_plural = 'staff'

    def __str__(self):
        return self.user.full_name

    def to_dict(self):
        return {
            'id': self.id,
            'user': self.user.to_dict(),
            'specialty': self.specialty,
            'schedule': self.schedule,
            'hourly_rate': money_str(self.hourly_rate) if self.hourly_rate is not None else None,
            'is_active': self.is_active,
            'created_at': self.created_at,
        }


class AttendanceMethod(models.TextChoices):
    MANUAL = 'manual', 'Manual'
    QR = 'qr', 'QR code'
    NFC = 'nfc', 'NFC'
    BIOMETRIC = 'biometric', 'Biometric'


class AttendanceQuerySet(models.QuerySet):
    def visible(self):
        return self.filter(is_deleted=False)

    def on_date(self, day):
        return self.filter(check_in__date=day)


class Attendance(GymScopedModel):
    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        COMPLETED = 'completed', 'Completed'

    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name='attendance_records')
    check_in = models.DateTimeField(default=timezone.now)
    check_out = models.DateTimeField(null=True, blank=True)
    duration = models.PositiveIntegerField(null=True, blank=True, help_text="Minutes")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    method = models.CharField(max_length=20, choices=AttendanceMethod.choices, default=AttendanceMethod.MANUAL)
    notes = models.TextField(blank=True, default='')
    qr_code = models.CharField(max_length=255, blank=True, default='')
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True, default='')
    is_deleted = models.BooleanField(default=False)

    objects = AttendanceQuerySet.as_manager()

    class Meta:
        ordering = ['-check_in']

    def save(self, *args, **kwargs):
        if self.check_out and self.check_in:
            self.duration = max(0, round((self.check_out - self.check_in).total_seconds() / 60))
            self.status = self.Status.COMPLETED
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.member} - {self.check_in}"

    def snapshot(self):
        return {
            'check_in': self.check_in.isoformat() if self.check_in else None,
            'check_out': self.check_out.isoformat() if self.check_out else None,
            'status': self.status,
            'duration': self.duration,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'member': {
                'id': self.member_id,
                'member_code': self.member.member_code,
                'name': self.member.user.full_name,
            },
            'check_in': self.check_in,
            'check_out': self.check_out,
            'duration': self.duration,
            'status': self.status,
            'method': self.method,
            'notes': self.notes,
        }


def default_methods():
    return [AttendanceMethod.MANUAL.value]


class AttendanceConfig(models.Model):
    class QRType(models.TextChoices):
        STATIC = 'static', 'Static'
        DYNAMIC = 'dynamic', 'Dynamic'

    gym = models.OneToOneField('tenants.Gym', on_delete=models.CASCADE, related_name='attendance_config')
    available_methods = models.JSONField(default=default_methods)
    active_methods = models.JSONField(default=default_methods)
    is_enabled = models.BooleanField(default=True)

    qr_type = models.CharField(max_length=10, choices=QRType.choices, default=QRType.STATIC)
    qr_expiry_minutes = models.PositiveIntegerField(default=1440)
    allow_multiple_checkins = models.BooleanField(default=False)

    auto_checkout_enabled = models.BooleanField(default=False)
    auto_checkout_after_hours = models.PositiveIntegerField(default=4)

    working_hours_enabled = models.BooleanField(default=False)
    working_hours_start = models.TimeField(default=time(6, 0))
    working_hours_end = models.TimeField(default=time(22, 0))

    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Attendance config for {self.gym}"

    @classmethod
    def for_gym(cls, gym):
        config, _ = cls.objects.get_or_create(gym=gym)
        return config

    def is_open_at(self, moment):
        """True when `moment` (a local time of day) falls inside working hours."""
        if not self.working_hours_enabled:
            return True
        start, end = self.working_hours_start, self.working_hours_end
        if start <= end:
            return start <= moment <= end
        # window wraps past midnight
        return moment >= start or moment <= end

    def to_dict(self):
        return {
            'gym_id': self.gym_id,
            'available_methods': self.available_methods,
            'active_methods': self.active_methods,
            'is_enabled': self.is_enabled,
            'qr_settings': {
                'type': self.qr_type,
                'expiry_minutes': self.qr_expiry_minutes,
                'allow_multiple_checkins': self.allow_multiple_checkins,
            },
            'auto_checkout': {
                'enabled': self.auto_checkout_enabled,
                'after_hours': self.auto_checkout_after_hours,
            },
            'working_hours': {
                'enabled': self.working_hours_enabled,
                'start': self.working_hours_start,
                'end': self.working_hours_end,
            },
        }


class AttendanceOverrideLog(GymScopedModel):
    class Action(models.TextChoices):
        MANUAL_CHECKOUT = 'manual_checkout', 'Manual check-out'
        FORCE_CHECKOUT = 'force_checkout', 'Force check-out'
        MODIFY_TIME = 'modify_time', 'Modify time'
        DELETE = 'delete', 'Delete'
        RESTORE = 'restore', 'Restore'

    attendance = models.ForeignKey(Attendance, on_delete=models.CASCADE, related_name='override_logs')
    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name='+')
    staff = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='+')
    action = models.CharField(max_length=20, choices=Action.choices)
    reason = models.TextField()
    previous_value = models.JSONField(default=dict)
    new_value = models.JSONField(default=dict)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def to_dict(self):
        return {
            'id': self.id,
            'attendance_id': self.attendance_id,
            'member_id': self.member_id,
            'staff': self.staff.full_name,
            'action': self.action,
            'reason': self.reason,
            'previous_value': self.previous_value,
            'new_value': self.new_value,
            'created_at': self.created_at,
        }


MEMBER_PORTAL_FEATURES = [
    'view_profile', 'edit_profile', 'view_attendance', 'view_classes', 'book_classes',
    'view_payments', 'view_invoices', 'view_workout_plan', 'view_diet_plan',
]


def default_feature_access():
    return {feature: True for feature in MEMBER_PORTAL_FEATURES}


def default_permission_levels():
    basic = default_feature_access()
    basic.update(edit_profile=False, book_classes=False)
    return {
        Member.AccessLevel.BASIC.value: basic,
        Member.AccessLevel.PREMIUM.value: default_feature_access(),
        Member.AccessLevel.VIP.value: default_feature_access(),
    }


class MemberAccessConfig(models.Model):
    """
    What a gym's members may do in the member portal.

    `default_feature_access` switches a feature off for everyone;
    `permission_levels` narrows it per access level. A member's own
    `access_restrictions` override both.
    """

    gym = models.OneToOneField('tenants.Gym', on_delete=models.CASCADE, related_name='member_access_config')
    default_feature_access = models.JSONField(default=default_feature_access, blank=True)
    permission_levels = models.JSONField(default=default_permission_levels, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Member access for {self.gym}"

    @classmethod
    def for_gym(cls, gym):
        config, _ = cls.objects.get_or_create(gym=gym)
        return config

    def denial_for(self, member, feature):
        """Returns why `member` may not use `feature`, or '' when allowed."""
        label = feature.replace('_', ' ')
        override = (member.access_restrictions or {}).get(feature)
        if override is not None:
            return '' if override else f"You don't have access to {label}"

        level = self.permission_levels.get(member.access_level) or {}
        if level.get(feature) is False:
            return f"Your membership level does not include access to {label}"
        if self.default_feature_access.get(feature) is False:
            return 'This feature is currently disabled'
        return ''

    def permissions_for(self, member):
        return {feature: not self.denial_for(member, feature) for feature in MEMBER_PORTAL_FEATURES}

    def to_dict(self):
        return {
            'gym_id': self.gym_id,
            'features': MEMBER_PORTAL_FEATURES,
            'default_feature_access': self.default_feature_access,
            'permission_levels': self.permission_levels,
            'updated_at': self.updated_at,
        }
