from django.urls import path

from . import views

plan_urlpatterns = [
    path('', views.plan_list, name='subscription_plan_list'),
    path('my', views.my_plans, name='subscription_plan_my'),
    path('<int:pk>', views.plan_detail, name='subscription_plan_detail'),
    path('<int:pk>/regenerate-link', views.regenerate_payment_link, name='subscription_plan_regenerate_link'),
]

pay_urlpatterns = [
    path('<str:token>', views.plan_by_token, name='pay_plan'),
    path('<str:token>/order', views.order_by_token, name='pay_order'),
]

urlpatterns = [
    path('', views.subscription_list, name='subscription_list'),
    path('me', views.my_subscription, name='subscription_me'),
    path('create-order', views.create_order, name='subscription_create_order'),
    path('verify-payment', views.verify_payment, name='subscription_verify_payment'),
    path('webhook', views.webhook, name='subscription_webhook'),
    path('proration', views.proration_preview, name='subscription_proration'),
    path('trial', views.start_trial, name='subscription_trial'),
    path('auto-renew', views.auto_renew, name='subscription_auto_renew'),
    path('payments', views.payment_history, name='subscription_payments'),
    path('invoices', views.invoice_list, name='subscription_invoices'),
    path('audit-logs', views.audit_logs, name='subscription_audit_logs'),
    path('<int:pk>/cancel', views.cancel, name='subscription_cancel'),
    path('<int:pk>/suspend', views.suspend, name='subscription_suspend'),
]
