"""
Django admin registrations for the bed management models.

Allocations and audit events are read-mostly records; the admin is
meant for inspection and for issuing API tokens to users, not for
editing allocations by hand.
"""

from django.contrib import admin

from .models import Allocation, AuditEvent, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'session_location', 'is_staff', 'is_superuser')
    list_filter = ('role',)
    search_fields = ('username', 'first_name', 'last_name', 'session_location')


@admin.register(Allocation)
class AllocationAdmin(admin.ModelAdmin):
    list_display = ('id', 'resource_number', 'candidate_name', 'to_location', 'created_at', 'ended_at', 'end_reason')
    list_filter = ('end_reason',)
    search_fields = ('resource_number', 'resource_uuid', 'candidate_uuid', 'candidate_name')
    readonly_fields = ('created_at',)


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'action', 'status', 'object_type', 'object_id', 'user', 'created_at')
    list_filter = ('action', 'status')
    search_fields = ('object_id', 'user__username')
