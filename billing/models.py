from django.conf import settings
from django.db import models
from django.db.models import Max
from django.utils import timezone

from core.utils import money_str, to_money
from tenants.models import GymScopedModel


class Invoice(GymScopedModel):
    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        PENDING = 'pending', 'Pending'
        PAID = 'paid', 'Paid'
        OVERDUE = 'overdue', 'Overdue'
        CANCELLED = 'cancelled', 'Cancelled'

    invoice_number = models.CharField(max_length=32, blank=True)
    member = models.ForeignKey('gym.Member', on_delete=models.CASCADE, related_name='invoices')
    plan = models.ForeignKey('gym.Plan', on_delete=models.SET_NULL, null=True, blank=True, related_name='invoices')

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    due_date = models.DateField()
    paid_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['gym', 'invoice_number'], name='unique_invoice_number_per_gym'),
        ]

    def save(self, *args, **kwargs):
        if not self.invoice_number:
            prefix = f"INV-{timezone.now().year}-"
            last = (
                Invoice.objects.filter(gym_id=self.gym_id, invoice_number__startswith=prefix)
                .aggregate(last=Max('invoice_number'))['last']
            )
            sequence = int(last[len(prefix):]) + 1 if last else 1
            self.invoice_number = f"{prefix}{sequence:06d}"
        super().save(*args, **kwargs)

    def __str__(self):
        return self.invoice_number

    def calculate_totals(self, items=None):
        """subtotal = sum(price * qty), tax on subtotal, total never below zero."""
        items = items if items is not None else self.items.all()
        self.subtotal = to_money(sum((item.price * item.quantity for item in items), 0))
        self.tax = to_money(self.subtotal * self.tax_rate / 100)
        self.total = to_money(max(self.subtotal + self.tax - self.discount, 0))

    @property
    def amount_paid(self):
        paid = self.payments.filter(status=Payment.Status.COMPLETED).aggregate(total=models.Sum('amount'))['total']
        return to_money(paid)

    def to_dict(self):
        return {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'member': {
                'id': self.member_id,
                'member_code': self.member.member_code,
                'name': self.member.user.full_name,
                'email': self.member.user.email,
            },
            'plan': self.plan.to_dict() if self.plan else None,
            'items': [item.to_dict() for item in self.items.all()],
            'subtotal': money_str(self.subtotal),
            'tax_rate': money_str(self.tax_rate),
            'tax': money_str(self.tax),
            'discount': money_str(self.discount),
            'total': money_str(self.total),
            'status': self.status,
            'due_date': self.due_date,
            'paid_at': self.paid_at,
            'notes': self.notes,
            'created_at': self.created_at,
        }


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='items')
    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta:
        ordering = ['id']

    def save(self, *args, **kwargs):
        self.total = to_money(self.price * self.quantity)
        super().save(*args, **kwargs)

    def __str__(self):
        return self.description

    def to_dict(self):
        return {
            'description': self.description,
            'quantity': self.quantity,
            'price': money_str(self.price),
            'total': money_str(self.total),
        }


class Payment(GymScopedModel):
    class Method(models.TextChoices):
        CASH = 'cash', 'Cash'
        CARD = 'card', 'Card'
        BANK_TRANSFER = 'bank_transfer', 'Bank Transfer'
        ONLINE = 'online', 'Online'
        OTHER = 'other', 'Other'

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'
        REFUNDED = 'refunded', 'Refunded'

    gym = models.ForeignKey('tenants.Gym', on_delete=models.CASCADE, related_name='member_payments')
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='payments')
    member = models.ForeignKey('gym.Member', on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=20, choices=Method.choices, default=Method.CASH)
    transaction_id = models.CharField(max_length=100, blank=True, default='')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.COMPLETED)
    paid_at = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True, default='')
    recorded_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-paid_at']

    def __str__(self):
        return f"Payment {self.id} - {self.amount}"

    def to_dict(self):
        return {
            'id': self.id,
            'invoice': {'id': self.invoice_id, 'invoice_number': self.invoice.invoice_number},
            'member': {
                'id': self.member_id,
                'member_code': self.member.member_code,
                'name': self.member.user.full_name,
            },
            'amount': money_str(self.amount),
            'payment_method': self.payment_method,
            'transaction_id': self.transaction_id,
            'status': self.status,
            'paid_at': self.paid_at,
            'notes': self.notes,
            'recorded_by': self.recorded_by.full_name if self.recorded_by else None,
        }
