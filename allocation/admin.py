"""
Django admin registrations for the allocation models.

Ward and bed rows are read-only here: edits made through the admin
would bypass the allocation guard, so changes go through
:mod:`allocation.services.wards` instead.
"""

from django.contrib import admin

from .models import Department, Ward, Bed, TestCatalog, DrugFormulary, MasterDataAudit


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Department)
class DepartmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'code', 'status')
    list_filter = ('status',)
    search_fields = ('name', 'code')


@admin.register(Ward)
class WardAdmin(ReadOnlyAdmin):
    list_display = ('id', 'name', 'department', 'type', 'capacity', 'floor_number', 'status')
    list_filter = ('type', 'status', 'department')
    search_fields = ('name',)


@admin.register(Bed)
class BedAdmin(ReadOnlyAdmin):
    list_display = ('id', 'bed_number', 'ward', 'bed_type', 'status', 'last_occupied_at', 'removed_at')
    list_filter = ('status', 'bed_type', 'ward')
    search_fields = ('bed_number', 'ward__name')


@admin.register(TestCatalog)
class TestCatalogAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'code', 'price', 'status')
    search_fields = ('name', 'code')


@admin.register(DrugFormulary)
class DrugFormularyAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'strength', 'stock_quantity', 'reorder_level', 'status')
    search_fields = ('name', 'generic_name')


@admin.register(MasterDataAudit)
class MasterDataAuditAdmin(ReadOnlyAdmin):
    list_display = ('entity_type', 'entity_id', 'action', 'user', 'created_at')
    list_filter = ('entity_type', 'action')
    search_fields = ('entity_id',)
