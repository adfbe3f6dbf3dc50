"""
URL configuration for courier project.

Chat routes live in the conversations and dmessages apps; both are mounted
at the root so paths read ``/chats/...``.
"""
from django.contrib import admin
from django.urls import path, include

from . import views

urlpatterns = [
    path('admin/', admin.site.urls),
    path('ping/', views.PingView.as_view(), name='ping'),
    path('auth/logout', views.LogoutView.as_view(), name='logout'),
    path('', include('conversations.urls')),
    path('', include('dmessages.urls')),
]
