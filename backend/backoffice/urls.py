"""
URL configuration for backoffice project.

All API endpoints live under /api/v1/.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('movements.urls')),
]
