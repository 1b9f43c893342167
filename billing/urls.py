from django.urls import path

from . import views

invoice_urlpatterns = [
    path('', views.invoice_list, name='invoice_list'),
    path('me', views.my_invoices, name='invoice_me'),
    path('<int:pk>', views.invoice_detail, name='invoice_detail'),
    path('<int:pk>/mark-paid', views.mark_paid, name='invoice_mark_paid'),
]

payment_urlpatterns = [
    path('', views.payment_list, name='payment_list'),
    path('me', views.my_payments, name='payment_me'),
    path('<int:pk>', views.payment_detail, name='payment_detail'),
    path('<int:pk>/refund', views.refund, name='payment_refund'),
    path('<int:pk>/receipt', views.receipt, name='payment_receipt'),
]
