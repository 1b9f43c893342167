from django.urls import path

from . import views

expense_urlpatterns = [
    path('', views.expense_list, name='expense_list'),
    path('stats', views.expense_stats, name='expense_stats'),
    path('<int:pk>', views.expense_detail, name='expense_detail'),
    path('<int:pk>/approve', views.approve_expense, name='expense_approve'),
    path('<int:pk>/reject', views.reject_expense, name='expense_reject'),
]

category_urlpatterns = [
    path('', views.category_list, name='expense_category_list'),
    path('<int:pk>', views.category_detail, name='expense_category_detail'),
]

revenue_urlpatterns = [
    path('', views.revenue_list, name='revenue_list'),
    path('<int:pk>', views.revenue_detail, name='revenue_detail'),
    path('<int:pk>/reverse', views.reverse_revenue, name='revenue_reverse'),
]

source_urlpatterns = [
    path('', views.source_list, name='revenue_source_list'),
    path('<int:pk>', views.source_detail, name='revenue_source_detail'),
]

report_urlpatterns = [
    path('profit-loss', views.profit_loss, name='report_profit_loss'),
    path('profit-loss/export', views.profit_loss_export, name='report_profit_loss_export'),
    path('summary', views.summary, name='report_summary'),
    path('expense-breakdown', views.expense_breakdown, name='report_expense_breakdown'),
    path('trends', views.trends, name='report_trends'),
    path('expected-revenue', views.expected_revenue, name='report_expected_revenue'),
    path('collection-efficiency', views.collection_efficiency, name='report_collection_efficiency'),
]
