from django.urls import path

from . import views

urlpatterns = [
    path('', views.gym_list, name='gym_list'),
    path('me', views.my_gym, name='my_gym'),
    path('<int:pk>', views.gym_detail, name='gym_detail'),
    path('<int:pk>/features', views.gym_features, name='gym_features'),
]
