"""
Database models for the bed management backend.

Locations, beds and compartments are owned by the upstream OpenMRS
instance and are never stored here.  This module only keeps what the
service itself is responsible for: the users acting on the wards, the
ledger of allocations made through the allocation engine and an audit
trail of every write attempt.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q


class User(AbstractUser):
    """Custom user model with a role and an optional login location.

    ``session_location`` holds the uuid of the location the user logged
    in at.  It scopes ward administration when
    ``RESTRICT_WARD_ADMINISTRATION_TO_LOGIN_LOCATION`` is enabled.
    """
    ROLE_CHOICES = [
        ('clerk', 'Ward clerk'),
        ('admin', 'Ward administrator'),
        ('super', 'Super administrator'),
    ]
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='clerk')
    session_location = models.CharField(max_length=64, blank=True, default='')

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Allocation(models.Model):
    """Live or ended binding of one candidate to one bed/compartment.

    A row is active while ``ended_at`` is null.  Rows are never updated
    except to end them; a transfer ends the current row and creates a
    new one pointing at the target resource.
    """
    END_TRANSFERRED = 'transferred'
    END_RELEASED = 'released'
    END_REASON_CHOICES = (
        (END_TRANSFERRED, 'transferred'),
        (END_RELEASED, 'released'),
    )

    resource_id = models.IntegerField(db_index=True)
    resource_uuid = models.CharField(max_length=64, blank=True, default='')
    resource_number = models.CharField(max_length=255, blank=True, default='')
    candidate_uuid = models.CharField(max_length=64, db_index=True)
    candidate_name = models.CharField(max_length=255, blank=True, default='')
    encounter_uuid = models.CharField(max_length=64)
    from_location = models.CharField(max_length=64, blank=True, default='')
    to_location = models.CharField(max_length=64, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='allocations_created'
    )
    ended_at = models.DateTimeField(null=True, blank=True)
    ended_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='allocations_ended'
    )
    end_reason = models.CharField(max_length=16, choices=END_REASON_CHOICES, blank=True, default='')

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['resource_id'], condition=Q(ended_at__isnull=True),
                name='one_active_allocation_per_resource',
            ),
            models.UniqueConstraint(
                fields=['candidate_uuid'], condition=Q(ended_at__isnull=True),
                name='one_active_allocation_per_candidate',
            ),
        ]
        indexes = [
            models.Index(fields=['to_location', 'ended_at'], name='beds_alloca_to_loca_3f1c2e_idx'),
        ]

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def __str__(self) -> str:
        state = 'active' if self.is_active else self.end_reason
        return f"bed {self.resource_number or self.resource_id} -> {self.candidate_uuid} ({state})"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    status = models.CharField(max_length=16, default='success')
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='beds_audite_action_8a2d41_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='beds_audite_object__c5e9b7_idx'),
        ]

    def __str__(self):
        return f"{self.action}:{self.status}:{self.user_id}@{self.created_at:%F %T}"
