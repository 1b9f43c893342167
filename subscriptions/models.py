import math
import secrets
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import Max
from django.utils import timezone

from core.utils import money_str
from tenants.models import FeatureFlags


def generate_payment_token():
    return secrets.token_hex(32)


class SubscriptionPlan(FeatureFlags):
    """A SaaS plan offered to one gym, paid through its payment link."""

    class Duration(models.TextChoices):
        MONTHLY = 'monthly', 'Monthly'
        QUARTERLY = 'quarterly', 'Quarterly'
        YEARLY = 'yearly', 'Yearly'

    DURATION_DAYS = {
        Duration.MONTHLY: 30,
        Duration.QUARTERLY: 90,
        Duration.YEARLY: 365,
    }

    gym = models.ForeignKey('tenants.Gym', on_delete=models.CASCADE, related_name='subscription_plans')
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    price = models.DecimalField(max_digits=12, decimal_places=2)
    duration = models.CharField(max_length=20, choices=Duration.choices, default=Duration.MONTHLY)
    duration_days = models.PositiveIntegerField(default=30, editable=False)

    max_members = models.PositiveIntegerField(default=100)
    max_branches = models.PositiveIntegerField(default=1)
    max_storage_mb = models.PositiveIntegerField(default=1024)

    trial_days = models.PositiveIntegerField(default=0)
    payment_link_token = models.CharField(max_length=64, unique=True, default=generate_payment_token)

    is_active = models.BooleanField(default=True)
    is_paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def save(self, *args, **kwargs):
        self.duration_days = self.DURATION_DAYS.get(self.duration, 30)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} ({self.gym})"

    @property
    def payment_link(self):
        return f"/pay/{self.payment_link_token}"

    @property
    def daily_rate(self):
        return self.price / self.duration_days

    def regenerate_token(self):
        self.payment_link_token = generate_payment_token()
        self.save(update_fields=['payment_link_token', 'updated_at'])

    def to_summary(self):
        return {
            'id': self.id,
            'name': self.name,
            'price': money_str(self.price),
            'duration': self.duration,
            'duration_days': self.duration_days,
        }

    def to_dict(self):
        return {
            **self.to_summary(),
            'gym_id': self.gym_id,
            'description': self.description,
            'limits': {
                'max_members': self.max_members,
                'max_branches': self.max_branches,
                'max_storage_mb': self.max_storage_mb,
            },
            'features': self.features,
            'trial_days': self.trial_days,
            'payment_link': self.payment_link,
            'payment_link_token': self.payment_link_token,
            'is_active': self.is_active,
            'is_paid': self.is_paid,
            'paid_at': self.paid_at,
            'created_at': self.created_at,
        }


class Subscription(models.Model):
    class Status(models.TextChoices):
        TRIAL = 'trial', 'Trial'
        ACTIVE = 'active', 'Active'
        EXPIRED = 'expired', 'Expired'
        CANCELLED = 'cancelled', 'Cancelled'
        SUSPENDED = 'suspended', 'Suspended'
        PENDING = 'pending', 'Pending'

    gym = models.OneToOneField('tenants.Gym', on_delete=models.CASCADE, related_name='subscription')
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.PROTECT, related_name='subscriptions')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)
    trial_ends_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    auto_renew = models.BooleanField(default=False)
    credit_balance = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    gateway_subscription_id = models.CharField(max_length=100, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.gym} - {self.plan.name} ({self.status})"

    @property
    def period_end(self):
        if self.status == self.Status.TRIAL:
            return self.trial_ends_at
        if self.status == self.Status.ACTIVE:
            return self.end_date
        return None

    @property
    def is_currently_active(self):
        end = self.period_end
        return end is not None and end > timezone.now()

    @property
    def days_remaining(self):
        end = self.period_end
        if end is None:
            return 0
        seconds = (end - timezone.now()).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def to_dict(self):
        return {
            'id': self.id,
            'gym_id': self.gym_id,
            'plan': self.plan.to_dict(),
            'status': self.status,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'trial_ends_at': self.trial_ends_at,
            'cancelled_at': self.cancelled_at,
            'auto_renew': self.auto_renew,
            'credit_balance': money_str(self.credit_balance),
            'is_currently_active': self.is_currently_active,
            'days_remaining': self.days_remaining,
            'notes': self.notes,
        }


class SubscriptionInvoice(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PAID = 'paid', 'Paid'
        FAILED = 'failed', 'Failed'
        REFUNDED = 'refunded', 'Refunded'
        CANCELLED = 'cancelled', 'Cancelled'

    class Kind(models.TextChoices):
        NEW = 'new', 'New subscription'
        RENEWAL = 'renewal', 'Renewal'
        UPGRADE = 'upgrade', 'Upgrade'
        DOWNGRADE = 'downgrade', 'Downgrade'

    invoice_number = models.CharField(max_length=32, unique=True, blank=True)
    gym = models.ForeignKey('tenants.Gym', on_delete=models.CASCADE, related_name='subscription_invoices')
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.PROTECT, related_name='invoices')
    subscription = models.ForeignKey(Subscription, on_delete=models.SET_NULL, null=True, blank=True, related_name='invoices')
    kind = models.CharField(max_length=20, choices=Kind.choices, default=Kind.NEW)

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    credit_remaining = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='INR')

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    due_date = models.DateTimeField()
    paid_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def save(self, *args, **kwargs):
        if not self.invoice_number:
            self.invoice_number = self.next_invoice_number()
        super().save(*args, **kwargs)

    @classmethod
    def next_invoice_number(cls):
        prefix = f"SUB-{timezone.now().year}-"
        last = cls.objects.filter(invoice_number__startswith=prefix).aggregate(last=Max('invoice_number'))['last']
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:06d}"

    def __str__(self):
        return self.invoice_number

    def to_dict(self):
        return {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'gym': self.gym.to_summary(),
            'plan': self.plan.to_summary(),
            'kind': self.kind,
            'amount': money_str(self.amount),
            'tax': money_str(self.tax),
            'discount': money_str(self.discount),
            'total': money_str(self.total),
            'credit_remaining': money_str(self.credit_remaining),
            'currency': self.currency,
            'status': self.status,
            'due_date': self.due_date,
            'paid_at': self.paid_at,
            'notes': self.notes,
            'created_at': self.created_at,
        }


class SubscriptionPayment(models.Model):
    class Status(models.TextChoices):
        CREATED = 'created', 'Created'
        AUTHORIZED = 'authorized', 'Authorized'
        CAPTURED = 'captured', 'Captured'
        FAILED = 'failed', 'Failed'
        REFUNDED = 'refunded', 'Refunded'

    gym = models.ForeignKey('tenants.Gym', on_delete=models.CASCADE, related_name='subscription_payments')
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.PROTECT, related_name='subscription_payments')
    invoice = models.ForeignKey(SubscriptionInvoice, on_delete=models.CASCADE, related_name='payments')
    subscription = models.ForeignKey(Subscription, on_delete=models.SET_NULL, null=True, blank=True, related_name='payments')

    gateway_order_id = models.CharField(max_length=100, unique=True)
    gateway_payment_id = models.CharField(max_length=100, unique=True, null=True, blank=True)
    gateway_signature = models.CharField(max_length=255, blank=True, default='')

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='INR')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.CREATED)

    method = models.CharField(max_length=50, blank=True, default='')
    bank = models.CharField(max_length=100, blank=True, default='')
    wallet = models.CharField(max_length=100, blank=True, default='')
    vpa = models.CharField(max_length=100, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    contact = models.CharField(max_length=30, blank=True, default='')

    error_code = models.CharField(max_length=100, blank=True, default='')
    error_description = models.TextField(blank=True, default='')
    paid_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.gateway_order_id} ({self.status})"

    def to_dict(self):
        return {
            'id': self.id,
            'gym': self.gym.to_summary(),
            'plan': self.plan.to_summary(),
            'invoice_number': self.invoice.invoice_number,
            'order_id': self.gateway_order_id,
            'payment_id': self.gateway_payment_id,
            'amount': money_str(self.amount),
            'currency': self.currency,
            'status': self.status,
            'method': self.method,
            'error_code': self.error_code,
            'error_description': self.error_description,
            'paid_at': self.paid_at,
            'created_at': self.created_at,
        }


class SubscriptionAuditLog(models.Model):
    class Action(models.TextChoices):
        PLAN_CREATED = 'plan_created', 'Plan created'
        PLAN_UPDATED = 'plan_updated', 'Plan updated'
        PLAN_DELETED = 'plan_deleted', 'Plan deleted'
        PLAN_DEACTIVATED = 'plan_deactivated', 'Plan deactivated'
        PAYMENT_LINK_GENERATED = 'payment_link_generated', 'Payment link generated'
        PAYMENT_INITIATED = 'payment_initiated', 'Payment initiated'
        PAYMENT_SUCCESS = 'payment_success', 'Payment success'
        PAYMENT_FAILED = 'payment_failed', 'Payment failed'
        SUBSCRIPTION_ACTIVATED = 'subscription_activated', 'Subscription activated'
        SUBSCRIPTION_RENEWED = 'subscription_renewed', 'Subscription renewed'
        SUBSCRIPTION_UPGRADED = 'subscription_upgraded', 'Subscription upgraded'
        SUBSCRIPTION_DOWNGRADED = 'subscription_downgraded', 'Subscription downgraded'
        SUBSCRIPTION_CANCELLED = 'subscription_cancelled', 'Subscription cancelled'
        SUBSCRIPTION_EXPIRED = 'subscription_expired', 'Subscription expired'
        SUBSCRIPTION_SUSPENDED = 'subscription_suspended', 'Subscription suspended'
        TRIAL_STARTED = 'trial_started', 'Trial started'
        REFUND_PROCESSED = 'refund_processed', 'Refund processed'
        WEBHOOK_RECEIVED = 'webhook_received', 'Webhook received'
        LINK_ACCESSED = 'link_accessed', 'Payment link accessed'

    action = models.CharField(max_length=40, choices=Action.choices)
    gym = models.ForeignKey('tenants.Gym', on_delete=models.CASCADE, related_name='subscription_audit_logs', null=True, blank=True)
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    subscription = models.ForeignKey(Subscription, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    payment = models.ForeignKey(SubscriptionPayment, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    performed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    performed_by_role = models.CharField(max_length=20, default='system')
    details = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.action} ({self.gym})"

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action,
            'gym_id': self.gym_id,
            'plan_id': self.plan_id,
            'subscription_id': self.subscription_id,
            'payment_id': self.payment_id,
            'performed_by': self.performed_by_id,
            'performed_by_role': self.performed_by_role,
            'details': self.details,
            'ip_address': self.ip_address,
            'created_at': self.created_at,
        }


class WebhookEvent(models.Model):
    """One row per gateway delivery; the unique event id makes redelivery a no-op."""

    event_id = models.CharField(max_length=100, unique=True)
    event_type = models.CharField(max_length=100)
    payload = models.JSONField(default=dict)
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"{self.event_type} {self.event_id}"


def grace_period():
    return timedelta(days=settings.SUBSCRIPTION_GRACE_PERIOD_DAYS)


def invoice_due_date():
    return timezone.now() + timedelta(days=settings.SUBSCRIPTION_INVOICE_DUE_DAYS)
