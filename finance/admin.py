from django.contrib import admin

from .models import Expense, ExpenseCategory, Revenue, RevenueSource


@admin.register(ExpenseCategory)
class ExpenseCategoryAdmin(admin.ModelAdmin):
    list_display = ('name', 'gym', 'is_default', 'is_active')
    list_filter = ('is_default', 'is_active')


@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ('description', 'gym', 'category', 'amount', 'expense_date', 'approval_status', 'is_deleted')
    list_filter = ('approval_status', 'payment_method', 'is_deleted')
    search_fields = ('description', 'vendor')


@admin.register(RevenueSource)
class RevenueSourceAdmin(admin.ModelAdmin):
    list_display = ('name', 'gym', 'category', 'auto_generate', 'is_system_source', 'is_active')
    list_filter = ('category', 'auto_generate', 'is_system_source')


@admin.register(Revenue)
class RevenueAdmin(admin.ModelAdmin):
    list_display = ('source', 'gym', 'amount', 'revenue_date', 'generated_by', 'is_reversed')
    list_filter = ('generated_by', 'is_reversed')
