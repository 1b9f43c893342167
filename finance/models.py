from django.conf import settings
from django.db import models
from django.utils import timezone

from core.utils import money_str
from tenants.models import GymScopedModel


class ExpenseCategory(GymScopedModel):
    DEFAULTS = [
        ('Rent', 'Facility rent and lease payments', 'home', '#ef4444'),
        ('Utilities', 'Electricity, water and internet', 'bolt', '#f59e0b'),
        ('Salaries', 'Staff and trainer salaries', 'users', '#3b82f6'),
        ('Equipment', 'Gym equipment purchases', 'dumbbell', '#8b5cf6'),
        ('Maintenance', 'Repairs and upkeep', 'wrench', '#14b8a6'),
        ('Marketing', 'Advertising and promotions', 'megaphone', '#ec4899'),
        ('Supplies', 'Cleaning and consumables', 'box', '#06b6d4'),
        ('Other', 'Miscellaneous expenses', 'dots', '#6b7280'),
    ]

    name = models.CharField(max_length=100)
    description = models.CharField(max_length=255, blank=True, default='')
    icon = models.CharField(max_length=50, blank=True, default='')
    color = models.CharField(max_length=7, default='#6b7280')
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'expense categories'
        constraints = [
            models.UniqueConstraint(fields=['gym', 'name'], name='unique_expense_category_per_gym'),
        ]

    def __str__(self):
        return self.name

    @classmethod
    def seed_defaults(cls, gym):
        for name, description, icon, color in cls.DEFAULTS:
            cls.objects.get_or_create(
                gym=gym, name=name,
                defaults={'description': description, 'icon': icon, 'color': color, 'is_default': True},
            )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'icon': self.icon,
            'color': self.color,
            'is_default': self.is_default,
            'is_active': self.is_active,
        }


class Expense(GymScopedModel):
    class PaymentMethod(models.TextChoices):
        CASH = 'cash', 'Cash'
        CARD = 'card', 'Card'
        BANK_TRANSFER = 'bank_transfer', 'Bank Transfer'
        ONLINE = 'online', 'Online'
        CHECK = 'check', 'Check'
        OTHER = 'other', 'Other'

    class Approval(models.TextChoices):
        PENDING = 'pending', 'Pending'
        APPROVED = 'approved', 'Approved'
        REJECTED = 'rejected', 'Rejected'

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    category = models.ForeignKey(ExpenseCategory, on_delete=models.PROTECT, related_name='expenses')
    description = models.CharField(max_length=255)
    expense_date = models.DateField(default=timezone.localdate)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    vendor = models.CharField(max_length=150, blank=True, default='')
    notes = models.TextField(blank=True, default='')

    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='+')
    approval_status = models.CharField(max_length=20, choices=Approval.choices, default=Approval.PENDING)
    approved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    approval_notes = models.TextField(blank=True, default='')
    approved_at = models.DateTimeField(null=True, blank=True)
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-expense_date', '-created_at']

    def __str__(self):
        return f"{self.description} - {self.amount}"

    def to_dict(self):
        return {
            'id': self.id,
            'amount': money_str(self.amount),
            'category': self.category.to_dict(),
            'description': self.description,
            'expense_date': self.expense_date,
            'payment_method': self.payment_method,
            'vendor': self.vendor,
            'notes': self.notes,
            'created_by': self.created_by.full_name if self.created_by else None,
            'approval_status': self.approval_status,
            'approved_by': self.approved_by.full_name if self.approved_by else None,
            'approval_notes': self.approval_notes,
            'approved_at': self.approved_at,
            'created_at': self.created_at,
        }


class RevenueSource(GymScopedModel):
    MANUAL = 'Manual / Other'

    class Category(models.TextChoices):
        RECURRING = 'recurring', 'Recurring'
        ONE_TIME = 'one-time', 'One-time'

    name = models.CharField(max_length=100)
    description = models.CharField(max_length=255, blank=True, default='')
    category = models.CharField(max_length=20, choices=Category.choices, default=Category.ONE_TIME)
    auto_generate = models.BooleanField(default=False)
    linked_module = models.CharField(max_length=50, blank=True, default='')
    default_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    gst_applicable = models.BooleanField(default=False)
    is_system_source = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    icon = models.CharField(max_length=50, blank=True, default='')
    color = models.CharField(max_length=7, default='#10b981')
    is_deleted = models.BooleanField(default=False)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-is_system_source', 'name']
        constraints = [
            models.UniqueConstraint(fields=['gym', 'name'], name='unique_revenue_source_per_gym'),
        ]

    def __str__(self):
        return self.name

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'auto_generate': self.auto_generate,
            'linked_module': self.linked_module,
            'default_amount': money_str(self.default_amount) if self.default_amount is not None else None,
            'gst_applicable': self.gst_applicable,
            'is_system_source': self.is_system_source,
            'is_active': self.is_active,
            'icon': self.icon,
            'color': self.color,
        }


class Revenue(GymScopedModel):
    class GeneratedBy(models.TextChoices):
        SYSTEM = 'system', 'System'
        MANUAL = 'manual', 'Manual'

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    source = models.ForeignKey(RevenueSource, on_delete=models.PROTECT, related_name='revenues')
    description = models.CharField(max_length=255)
    revenue_date = models.DateField(default=timezone.localdate)
    notes = models.TextField(blank=True, default='')

    payment = models.ForeignKey('billing.Payment', on_delete=models.SET_NULL, null=True, blank=True, related_name='revenues')
    member = models.ForeignKey('gym.Member', on_delete=models.SET_NULL, null=True, blank=True, related_name='revenues')
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    generated_by = models.CharField(max_length=10, choices=GeneratedBy.choices, default=GeneratedBy.MANUAL)
    reference_type = models.CharField(max_length=30, blank=True, default='')
    reference_id = models.CharField(max_length=64, blank=True, default='')

    is_reversed = models.BooleanField(default=False)
    reversed_at = models.DateTimeField(null=True, blank=True)
    reversal_reason = models.CharField(max_length=255, blank=True, default='')
    reversal_of = models.OneToOneField('self', on_delete=models.SET_NULL, null=True, blank=True, related_name='reversal')
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-revenue_date', '-created_at']
        indexes = [models.Index(fields=['reference_type', 'reference_id'])]

    def __str__(self):
        return f"{self.source} - {self.amount}"

    def to_dict(self):
        return {
            'id': self.id,
            'amount': money_str(self.amount),
            'source': {'id': self.source_id, 'name': self.source.name},
            'description': self.description,
            'revenue_date': self.revenue_date,
            'notes': self.notes,
            'payment_id': self.payment_id,
            'member_id': self.member_id,
            'generated_by': self.generated_by,
            'reference_type': self.reference_type,
            'reference_id': self.reference_id,
            'is_reversed': self.is_reversed,
            'reversed_at': self.reversed_at,
            'reversal_reason': self.reversal_reason,
            'reversal_of': self.reversal_of_id,
            'created_at': self.created_at,
        }
