"""
URL mappings for the bed management API.

All JSON endpoints live under ``api/bed-management/``.  Trailing slashes
are omitted, matching the paths the front-end calls.
"""
from django.urls import path, include

from .views import administration, allocation, eligibility, health, inventory

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Reads
    path('api/bed-management/overview', inventory.overview),
    path('api/bed-management/resources', inventory.resources),
    path('api/bed-management/summary', inventory.summary),
    path('api/bed-management/candidates', eligibility.candidates),
    # Allocation
    path('api/bed-management/assign', allocation.assign),
    path('api/bed-management/transfer', allocation.transfer),
    path('api/bed-management/release', allocation.release),
    # Administration
    path('api/bed-management/resources/save', administration.save_resource),
    path('api/bed-management/locations/save', administration.save_location),
    path('api/bed-management/location-tags', administration.location_tags),
    path('api/bed-management/bed-types', administration.bed_types),
]
