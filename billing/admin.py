from django.contrib import admin

from .models import Invoice, InvoiceItem, Payment


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'gym', 'member', 'total', 'status', 'due_date')
    list_filter = ('status',)
    search_fields = ('invoice_number', 'member__member_code')
    inlines = [InvoiceItemInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'invoice', 'member', 'amount', 'payment_method', 'status', 'paid_at')
    list_filter = ('status', 'payment_method')
