"""
URL configuration for the inpatient project.

Only the Django admin is mounted here; ward and bed mutations are
exposed to callers through :mod:`allocation.services`, not HTTP routes.
"""
from django.contrib import admin
from django.urls import path

urlpatterns = [
    # Django admin site (useful for inspecting wards and beds)
    path('admin/', admin.site.urls),
]
