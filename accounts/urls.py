from django.urls import path

from . import views

urlpatterns = [
    path('login', views.login_view, name='auth_login'),
    path('logout', views.logout_view, name='auth_logout'),
    path('me', views.me, name='auth_me'),
    path('change-password', views.change_password, name='auth_change_password'),
]
