from django.contrib import admin

from .models import FAQ, SupportTicket, TicketReply


class TicketReplyInline(admin.TabularInline):
    model = TicketReply
    extra = 0


@admin.register(SupportTicket)
class SupportTicketAdmin(admin.ModelAdmin):
    list_display = ('ticket_number', 'gym', 'user', 'subject', 'priority', 'status', 'assigned_to')
    list_filter = ('status', 'priority', 'category')
    search_fields = ('ticket_number', 'subject')
    inlines = [TicketReplyInline]


@admin.register(FAQ)
class FAQAdmin(admin.ModelAdmin):
    list_display = ('question', 'gym', 'category', 'is_global', 'is_active', 'views')
    list_filter = ('category', 'is_global', 'is_active')
