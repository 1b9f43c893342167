from django.contrib import admin

from .models import (
    Subscription, SubscriptionAuditLog, SubscriptionInvoice, SubscriptionPayment, SubscriptionPlan, WebhookEvent,
)


@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = ('name', 'gym', 'price', 'duration', 'is_active', 'is_paid')
    list_filter = ('duration', 'is_active', 'is_paid')
    search_fields = ('name', 'gym__name')


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ('gym', 'plan', 'status', 'end_date', 'trial_ends_at', 'auto_renew')
    list_filter = ('status',)


@admin.register(SubscriptionInvoice)
class SubscriptionInvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'gym', 'kind', 'total', 'status', 'due_date')
    list_filter = ('status', 'kind')
    search_fields = ('invoice_number', 'gym__name')


@admin.register(SubscriptionPayment)
class SubscriptionPaymentAdmin(admin.ModelAdmin):
    list_display = ('gateway_order_id', 'gateway_payment_id', 'gym', 'amount', 'status', 'paid_at')
    list_filter = ('status',)
    search_fields = ('gateway_order_id', 'gateway_payment_id')


@admin.register(SubscriptionAuditLog)
class SubscriptionAuditLogAdmin(admin.ModelAdmin):
    list_display = ('action', 'gym', 'performed_by_role', 'created_at')
    list_filter = ('action',)


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('event_id', 'event_type', 'received_at', 'processed_at')
    list_filter = ('event_type',)
