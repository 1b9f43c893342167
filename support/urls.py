from django.urls import path

from . import views

ticket_urlpatterns = [
    path('', views.ticket_list, name='ticket_list'),
    path('stats', views.ticket_stats, name='ticket_stats'),
    path('<int:pk>', views.ticket_detail, name='ticket_detail'),
    path('<int:pk>/replies', views.ticket_reply, name='ticket_reply'),
]

faq_urlpatterns = [
    path('', views.faq_list, name='faq_list'),
    path('categories', views.faq_categories, name='faq_categories'),
    path('<int:pk>', views.faq_detail, name='faq_detail'),
    path('<int:pk>/rate', views.faq_rate, name='faq_rate'),
]
