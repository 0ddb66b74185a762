"""
Database models for ward and bed allocation.

Wards group beds under a capacity limit; beds carry the status that
admission, discharge and maintenance actions move around.  Test catalog
and drug formulary rows are kept minimal: they only exist here so that
bulk updates can target them alongside the inpatient master data.
"""
from __future__ import annotations

from django.conf import settings
from django.db import models
from django_prometheus.models import ExportModelOperationsMixin


def normalize_bed_number(bed_number: str) -> str:
    if bed_number is None:
        raise TypeError('bed_number is required')
    return str(bed_number).strip().upper()


class Department(ExportModelOperationsMixin('department'), models.Model):
    """A clinical department owning one or more wards."""
    STATUS_CHOICES = [
        ('active', 'Active'),
        ('inactive', 'Inactive'),
    ]
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=20, unique=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='active', db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class Ward(ExportModelOperationsMixin('ward'), models.Model):
    """An administrative grouping of beds with a capacity limit.

    ``capacity`` must never drop below the number of beds in the ward
    that have not been removed.  Wards are not deleted while beds point
    at them; they are retired through ``status`` instead.
    """
    TYPE_GENERAL = 'general'
    TYPE_ICU = 'icu'
    TYPE_MATERNITY = 'maternity'
    TYPE_PEDIATRIC = 'pediatric'
    TYPE_EMERGENCY = 'emergency'
    TYPE_SURGICAL = 'surgical'
    TYPE_CHOICES = [
        (TYPE_GENERAL, 'General'),
        (TYPE_ICU, 'ICU'),
        (TYPE_MATERNITY, 'Maternity'),
        (TYPE_PEDIATRIC, 'Pediatric'),
        (TYPE_EMERGENCY, 'Emergency'),
        (TYPE_SURGICAL, 'Surgical'),
    ]

    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_MAINTENANCE = 'maintenance'
    STATUS_RENOVATION = 'renovation'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
        (STATUS_MAINTENANCE, 'Maintenance'),
        (STATUS_RENOVATION, 'Renovation'),
    ]

    department = models.ForeignKey(Department, on_delete=models.PROTECT, related_name='wards')
    name = models.CharField(max_length=255)
    type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_GENERAL)
    capacity = models.PositiveIntegerField(default=1)
    floor_number = models.IntegerField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['department_id', 'name']

    def __str__(self) -> str:
        return f"{self.name} (cap {self.capacity})"


class Bed(ExportModelOperationsMixin('bed'), models.Model):
    """The smallest allocatable unit of inpatient capacity.

    ``bed_number`` is stored trimmed and upper-cased and is unique among
    the non-removed beds of a ward.  A bed whose ``removed_at`` is set is
    retired: it no longer counts towards the ward's capacity.
    """
    TYPE_STANDARD = 'standard'
    TYPE_ICU = 'icu'
    TYPE_ISOLATION = 'isolation'
    TYPE_MATERNITY = 'maternity'
    TYPE_PEDIATRIC = 'pediatric'
    TYPE_SURGICAL = 'surgical'
    TYPE_CHOICES = [
        (TYPE_STANDARD, 'Standard'),
        (TYPE_ICU, 'ICU'),
        (TYPE_ISOLATION, 'Isolation'),
        (TYPE_MATERNITY, 'Maternity'),
        (TYPE_PEDIATRIC, 'Pediatric'),
        (TYPE_SURGICAL, 'Surgical'),
    ]

    STATUS_AVAILABLE = 'available'
    STATUS_OCCUPIED = 'occupied'
    STATUS_MAINTENANCE = 'maintenance'
    STATUS_RESERVED = 'reserved'
    STATUS_OUT_OF_ORDER = 'out_of_order'
    STATUS_CHOICES = [
        (STATUS_AVAILABLE, 'Available'),
        (STATUS_OCCUPIED, 'Occupied'),
        (STATUS_MAINTENANCE, 'Maintenance'),
        (STATUS_RESERVED, 'Reserved'),
        (STATUS_OUT_OF_ORDER, 'Out of order'),
    ]

    ward = models.ForeignKey(Ward, on_delete=models.PROTECT, related_name='beds')
    bed_number = models.CharField(max_length=20)
    bed_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_STANDARD)
    # Filtered on for occupancy counts and available-bed lookups
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_AVAILABLE, db_index=True)
    maintenance_notes = models.TextField(blank=True)
    last_occupied_at = models.DateTimeField(null=True, blank=True)
    removed_at = models.DateTimeField(null=True, blank=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['ward_id', 'bed_number']
        indexes = [
            models.Index(fields=['ward', 'bed_number']),
            models.Index(fields=['ward', 'status']),
        ]

    def save(self, *args, **kwargs):
        self.bed_number = normalize_bed_number(self.bed_number or '')
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"Bed {self.bed_number} in ward {self.ward_id} ({self.status})"

    @property
    def is_removed(self) -> bool:
        return self.removed_at is not None


class TestCatalog(ExportModelOperationsMixin('test_catalog'), models.Model):
    __test__ = False  # keep pytest from collecting the model as a test class

    department = models.ForeignKey(Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='test_catalogs')
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=30, unique=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    status = models.CharField(max_length=10, default='active')

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class DrugFormulary(ExportModelOperationsMixin('drug_formulary'), models.Model):
    name = models.CharField(max_length=255)
    generic_name = models.CharField(max_length=255, blank=True)
    strength = models.CharField(max_length=50, blank=True)
    stock_quantity = models.PositiveIntegerField(default=0)
    reorder_level = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=10, default='active')

    def __str__(self) -> str:
        return f"{self.name} {self.strength}".strip()


class MasterDataAudit(models.Model):
    """One committed change to a ward, bed or other master data row."""
    ACTION_CHOICES = (
        ("created", "created"),
        ("updated", "updated"),
        ("status_changed", "status_changed"),
        ("removed", "removed"),
        ("bulk_updated", "bulk_updated"),
    )
    entity_type = models.CharField(max_length=32)
    entity_id = models.CharField(max_length=64)
    action = models.CharField(max_length=32, choices=ACTION_CHOICES)
    old_values = models.JSONField(default=dict, blank=True)
    new_values = models.JSONField(default=dict, blank=True)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['entity_type', 'entity_id', 'created_at']),
            models.Index(fields=['action', 'created_at']),
        ]

    def __str__(self):
        return f"{self.action}:{self.entity_type}#{self.entity_id}@{self.created_at:%F %T}"
