from django.urls import path

from . import views

member_urlpatterns = [
    path('', views.member_list, name='member_list'),
    path('stats', views.member_stats, name='member_stats'),
    path('me', views.my_membership, name='member_me'),
    path('<int:pk>', views.member_detail, name='member_detail'),
    path('<int:pk>/renew', views.member_renew, name='member_renew'),
    path('<int:pk>/attendance', views.member_attendance, name='member_attendance'),
    path('<int:member_id>/qr', views.generate_qr, name='member_qr'),
]

plan_urlpatterns = [
    path('', views.plan_list, name='plan_list'),
    path('<int:pk>', views.plan_detail, name='plan_detail'),
]

staff_urlpatterns = [
    path('', views.staff_list, name='staff_list'),
    path('<int:pk>', views.staff_detail, name='staff_detail'),
]

attendance_urlpatterns = [
    path('', views.attendance_list, name='attendance_list'),
    path('check-in', views.check_in, name='attendance_check_in'),
    path('qr-check-in', views.qr_check_in, name='attendance_qr_check_in'),
    path('qr', views.generate_qr, name='attendance_qr'),
    path('today', views.today_stats, name='attendance_today'),
    path('me', views.my_attendance, name='attendance_me'),
    path('report', views.attendance_report, name='attendance_report'),
    path('overrides', views.override_logs, name='attendance_override_logs'),
    path('config', views.attendance_config, name='attendance_config'),
    path('config/<int:gym_id>/available-methods', views.available_methods, name='attendance_available_methods'),
    path('<int:pk>/check-out', views.check_out, name='attendance_check_out'),
    path('<int:pk>/override', views.staff_override, name='attendance_override'),
]

member_access_urlpatterns = [
    path('settings', views.member_access_settings, name='member_access_settings'),
    path('me', views.my_access, name='member_access_me'),
    path('bulk', views.member_access_bulk, name='member_access_bulk'),
    path('members/<int:pk>', views.member_access_detail, name='member_access_detail'),
]
