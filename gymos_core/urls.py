"""
URL configuration for gymos_core project.

Every JSON endpoint lives under /api/v1/. Apps expose named pattern lists
that are mounted here so one app can serve several resource prefixes.
"""

from django.contrib import admin
from django.urls import include, path

from billing.urls import invoice_urlpatterns, payment_urlpatterns
from core import views as core_views
from core.urls import notification_urlpatterns
from finance.urls import (
    category_urlpatterns, expense_urlpatterns, report_urlpatterns, revenue_urlpatterns, source_urlpatterns,
)
from gym.urls import (
    attendance_urlpatterns, member_access_urlpatterns, member_urlpatterns, plan_urlpatterns, staff_urlpatterns,
)
from subscriptions.urls import pay_urlpatterns, plan_urlpatterns as subscription_plan_urlpatterns
from support.urls import faq_urlpatterns, ticket_urlpatterns

api_urlpatterns = [
    path('health', core_views.health, name='health'),
    path('auth/', include('accounts.urls')),
    path('gyms/', include('tenants.urls')),

    # Platform subscriptions
    path('subscriptions/', include('subscriptions.urls')),
    path('subscription-plans/', include(subscription_plan_urlpatterns)),
    path('pay/', include(pay_urlpatterns)),

    # Gym operations
    path('members/', include(member_urlpatterns)),
    path('plans/', include(plan_urlpatterns)),
    path('staff/', include(staff_urlpatterns)),
    path('attendance/', include(attendance_urlpatterns)),
    path('member-access/', include(member_access_urlpatterns)),

    # Billing & finance
    path('invoices/', include(invoice_urlpatterns)),
    path('payments/', include(payment_urlpatterns)),
    path('expenses/', include(expense_urlpatterns)),
    path('expense-categories/', include(category_urlpatterns)),
    path('revenue/', include(revenue_urlpatterns)),
    path('revenue-sources/', include(source_urlpatterns)),
    path('reports/', include(report_urlpatterns)),

    # Support
    path('support/', include(ticket_urlpatterns)),
    path('faqs/', include(faq_urlpatterns)),
    path('notifications/', include(notification_urlpatterns)),
]

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include(api_urlpatterns)),
]
