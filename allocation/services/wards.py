"""
Ward and bed mutations.

Every operation here takes the resource store explicitly and runs its
read, validation and write inside ``store.run_in_transaction`` with the
affected Ward/Bed rows locked, so the allocation guard's verdict still
holds when the write lands.  Results come back as an :class:`Outcome`;
refused mutations are returned, not raised.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import bleach
import structlog
from django.conf import settings
from django.core.exceptions import NON_FIELD_ERRORS, ValidationError
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError as DRFValidationError

from allocation.conflicts import (
    ConflictContext,
    ConflictReport,
    ConflictType,
    IndexedError,
    NotFound,
    bed_snapshot,
    classify_conflict,
)
from allocation.exceptions import ConflictError, ResourceNotFound
from allocation.guard import BED_STATUSES, ResourceAllocationGuard
from allocation.models import Bed, Department, Ward, normalize_bed_number
from allocation.services import audit, events
from allocation.services.occupancy import invalidate_occupancy
from allocation.store import EntityType, ResourceStore

logger = structlog.get_logger(__name__)

EDITABLE_FIELDS: Dict[EntityType, Tuple[str, ...]] = {
    EntityType.WARDS: ('name', 'type', 'capacity', 'floor_number', 'status', 'department_id'),
    EntityType.BEDS: ('bed_number', 'bed_type', 'status', 'maintenance_notes'),
    EntityType.DEPARTMENTS: ('name', 'code', 'status'),
    EntityType.TEST_CATALOGS: ('name', 'code', 'price', 'status', 'department_id'),
    EntityType.DRUG_FORMULARY: ('name', 'generic_name', 'strength', 'stock_quantity', 'reorder_level', 'status'),
}

FieldErrors = Dict[str, List[str]]


@dataclass
class Outcome:
    """Result of a ward/bed service call.

    Exactly one of ``conflict``, ``not_found`` or ``errors`` is set when
    the mutation was refused; otherwise ``instance`` holds the saved row
    (a list of rows for bulk updates).
    """
    instance: Any = None
    conflict: Optional[ConflictReport] = None
    not_found: Optional[NotFound] = None
    errors: List[IndexedError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.conflict is None and self.not_found is None and not self.errors

    def raise_for_error(self):
        """Return ``instance`` or raise the matching DRF exception."""
        if self.not_found is not None:
            raise ResourceNotFound(self.not_found)
        if self.conflict is not None:
            raise ConflictError(self.conflict)
        if self.errors:
            raise DRFValidationError({'errors': [e.to_payload() for e in self.errors]})
        return self.instance


def _guard(store: ResourceStore) -> ResourceAllocationGuard:
    return ResourceAllocationGuard(store, max_bulk_items=settings.BULK_UPDATE_MAX_ITEMS)


def _add_error(errors: FieldErrors, name: str, message: str) -> None:
    errors.setdefault(name, []).append(message)


def _clean(instance, errors: FieldErrors) -> None:
    try:
        instance.full_clean()
    except ValidationError as exc:
        for name, messages in exc.message_dict.items():
            for message in messages:
                _add_error(errors, name, message)


def _field_errors_to_indexed(errors: FieldErrors, index: Optional[int] = None) -> List[IndexedError]:
    result = []
    for name, messages in errors.items():
        if index is None:
            path = 'non_field_errors' if name == NON_FIELD_ERRORS else name
        else:
            path = f'updates.{index}' if name == NON_FIELD_ERRORS else f'updates.{index}.data.{name}'
        result.extend(IndexedError(index, path, message) for message in messages)
    return result


def _positive_int(value: Any, name: str, errors: FieldErrors) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        _add_error(errors, name, f'The {name} must be an integer.')
        return None
    if isinstance(value, float) and value != number:
        _add_error(errors, name, f'The {name} must be an integer.')
        return None
    if number <= 0:
        _add_error(errors, name, f'Ward {name} must be greater than 0.')
        return None
    return number


def _check_department(department_id: Any, errors: FieldErrors) -> Optional[Department]:
    department = Department.objects.filter(pk=department_id).first() if department_id is not None else None
    if department is None:
        _add_error(errors, 'department_id', 'Department not found.')
    elif department.status != 'active':
        _add_error(errors, 'department_id', 'Cannot assign ward to inactive department.')
    return department


def _refused(action: str, conflict: ConflictReport, **context) -> None:
    logger.warning(
        "Allocation mutation refused",
        action=action,
        conflict_type=conflict.conflict_type.value,
        current=conflict.current_value,
        requested=conflict.requested_value,
        **context,
    )


def _after_write(*, entity_type: str, instance, action: str, old_values, user, ward_id) -> None:
    audit.log_change(
        entity_type=entity_type, entity_id=instance.pk, action=action,
        old_values=old_values, new_values=audit.snapshot(instance), user=user,
    )
    transaction.on_commit(lambda: invalidate_occupancy(ward_id))


# ---------------------------------------------------------------------------
# Staging: validate requested changes on a locked row without saving it
# ---------------------------------------------------------------------------

def _stage_ward(guard: ResourceAllocationGuard, store: ResourceStore, ward: Ward,
                data: Mapping[str, Any]) -> Tuple[FieldErrors, Optional[ConflictReport]]:
    errors: FieldErrors = {}
    if 'capacity' in data:
        capacity = _positive_int(data['capacity'], 'capacity', errors)
        if capacity is not None:
            bed_count = store.count_active_beds_in_ward(ward.id)
            conflict = guard.validate_ward_capacity(ward, capacity, bed_count)
            if conflict is not None:
                return errors, conflict
            ward.capacity = capacity
    if 'department_id' in data and data['department_id'] != ward.department_id:
        if _check_department(data['department_id'], errors) is not None:
            ward.department_id = data['department_id']
    for name in ('name', 'type', 'floor_number', 'status'):
        if name in data:
            setattr(ward, name, data[name])
    if not errors:
        _clean(ward, errors)
    return errors, None


def _stage_bed(guard: ResourceAllocationGuard, bed: Bed, data: Mapping[str, Any],
               renumbered: Iterable[Any] = ()) -> Tuple[FieldErrors, Optional[ConflictReport]]:
    """Apply ``data`` to a locked bed.

    ``renumbered`` holds the ids of other beds whose number changes in the
    same batch; their stored numbers do not block this bed.
    """
    errors: FieldErrors = {}
    requested_status = data.get('status')
    if requested_status is not None and requested_status in BED_STATUSES:
        conflict = guard.validate_bed_status_transition(bed, requested_status)
        if conflict is not None:
            return errors, conflict

    if 'bed_number' in data:
        number = normalize_bed_number(data['bed_number'] or '')
        if number:
            conflict = guard.validate_bed_number_uniqueness(
                bed.ward_id, number, excluding_bed_id=bed.id, excluding_bed_ids=renumbered,
            )
            if conflict is not None:
                return errors, conflict
        bed.bed_number = number

    if requested_status is not None:
        if requested_status == Bed.STATUS_OCCUPIED and bed.status != Bed.STATUS_OCCUPIED:
            bed.last_occupied_at = timezone.now()
        bed.status = requested_status
    if 'bed_type' in data:
        bed.bed_type = data['bed_type']
    if 'maintenance_notes' in data:
        bed.maintenance_notes = bleach.clean((data['maintenance_notes'] or '').strip(), strip=True)
    _clean(bed, errors)
    return errors, None


def _stage_generic(instance, data: Mapping[str, Any]) -> Tuple[FieldErrors, None]:
    errors: FieldErrors = {}
    for name, value in data.items():
        setattr(instance, name, value)
    _clean(instance, errors)
    return errors, None


# ---------------------------------------------------------------------------
# Wards
# ---------------------------------------------------------------------------

def create_ward(store: ResourceStore, *, department_id, name: str, ward_type: str = Ward.TYPE_GENERAL,
                capacity: int = 1, floor_number: Optional[int] = None,
                status: str = Ward.STATUS_ACTIVE, user=None) -> Outcome:
    errors: FieldErrors = {}
    cap = _positive_int(capacity, 'capacity', errors)

    def run() -> Outcome:
        department = _check_department(department_id, errors)
        ward = Ward(
            department=department, name=(name or '').strip(), type=ward_type,
            capacity=cap or 0, floor_number=floor_number, status=status,
        )
        if not errors:
            _clean(ward, errors)
        if errors:
            return Outcome(errors=_field_errors_to_indexed(errors))
        ward.save()
        _after_write(entity_type='ward', instance=ward, action='created', old_values={}, user=user, ward_id=ward.id)
        events.publish_ward_changed(ward)
        logger.info("Ward created", ward_id=ward.id, department_id=ward.department_id, capacity=ward.capacity)
        return Outcome(instance=ward)

    return store.run_in_transaction(run)


def update_ward(store: ResourceStore, ward_id, *, user=None, **changes) -> Outcome:
    """Update ward attributes; a capacity change is checked against live beds."""
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS[EntityType.WARDS]))
    if unknown:
        raise TypeError(f"update_ward() got unexpected fields: {', '.join(unknown)}")
    guard = _guard(store)

    def run() -> Outcome:
        ward = store.get_ward(ward_id, for_update=True)
        if ward is None:
            return Outcome(not_found=NotFound('ward', ward_id))
        old_values = audit.snapshot(ward)
        errors, conflict = _stage_ward(guard, store, ward, changes)
        if conflict is not None:
            _refused('update_ward', conflict, ward_id=ward.id)
            return Outcome(conflict=conflict)
        if errors:
            return Outcome(errors=_field_errors_to_indexed(errors))
        ward.save()
        _after_write(entity_type='ward', instance=ward, action='updated', old_values=old_values, user=user,
                     ward_id=ward.id)
        events.publish_ward_changed(ward)
        logger.info("Ward updated", ward_id=ward.id, fields=sorted(changes))
        return Outcome(instance=ward)

    return store.run_in_transaction(run)


# ---------------------------------------------------------------------------
# Beds
# ---------------------------------------------------------------------------

def create_bed(store: ResourceStore, *, ward_id, bed_number: str, bed_type: str = Bed.TYPE_STANDARD,
               status: str = Bed.STATUS_AVAILABLE, maintenance_notes: str = '', user=None) -> Outcome:
    guard = _guard(store)

    def run() -> Outcome:
        # Locking the ward serializes bed additions against capacity changes
        ward = store.get_ward(ward_id, for_update=True)
        if ward is None:
            return Outcome(not_found=NotFound('ward', ward_id))
        conflict = guard.validate_bed_addition(ward, store.count_active_beds_in_ward(ward.id))
        if conflict is None:
            number = normalize_bed_number(bed_number or '')
            if number:
                conflict = guard.validate_bed_number_uniqueness(ward.id, number)
        if conflict is not None:
            _refused('create_bed', conflict, ward_id=ward.id, bed_number=bed_number)
            return Outcome(conflict=conflict)

        bed = Bed(
            ward=ward,
            bed_number=number,
            bed_type=bed_type,
            status=status,
            maintenance_notes=bleach.clean((maintenance_notes or '').strip(), strip=True),
            last_occupied_at=timezone.now() if status == Bed.STATUS_OCCUPIED else None,
        )
        errors: FieldErrors = {}
        _clean(bed, errors)
        if errors:
            return Outcome(errors=_field_errors_to_indexed(errors))
        bed.save()
        _after_write(entity_type='bed', instance=bed, action='created', old_values={}, user=user, ward_id=ward.id)
        events.publish_bed_changed(bed)
        logger.info("Bed created", bed_id=bed.id, ward_id=ward.id, bed_number=bed.bed_number)
        return Outcome(instance=bed)

    return store.run_in_transaction(run)


def update_bed(store: ResourceStore, bed_id, *, user=None, **changes) -> Outcome:
    """Update bed attributes, enforcing transition and numbering rules."""
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS[EntityType.BEDS]))
    if unknown:
        raise TypeError(f"update_bed() got unexpected fields: {', '.join(unknown)}")
    guard = _guard(store)

    def run() -> Outcome:
        bed = store.get_bed(bed_id, for_update=True)
        if bed is None or bed.is_removed:
            return Outcome(not_found=NotFound('bed', bed_id))
        old_values = audit.snapshot(bed)
        previous_status = bed.status
        errors, conflict = _stage_bed(guard, bed, changes)
        if conflict is not None:
            _refused('update_bed', conflict, bed_id=bed.id, ward_id=bed.ward_id)
            return Outcome(conflict=conflict)
        if errors:
            return Outcome(errors=_field_errors_to_indexed(errors))
        bed.save()
        action = 'status_changed' if bed.status != previous_status else 'updated'
        _after_write(entity_type='bed', instance=bed, action=action, old_values=old_values, user=user,
                     ward_id=bed.ward_id)
        events.publish_bed_changed(bed, previous_status=previous_status)
        logger.info("Bed updated", bed_id=bed.id, ward_id=bed.ward_id, from_status=previous_status,
                    to_status=bed.status)
        return Outcome(instance=bed)

    return store.run_in_transaction(run)


def change_bed_status(store: ResourceStore, bed_id, status: str, *, maintenance_notes: Optional[str] = None,
                      user=None) -> Outcome:
    changes: Dict[str, Any] = {'status': status}
    if maintenance_notes is not None:
        changes['maintenance_notes'] = maintenance_notes
    return update_bed(store, bed_id, user=user, **changes)


def remove_bed(store: ResourceStore, bed_id, *, user=None) -> Outcome:
    """Retire a bed so it stops counting towards its ward's capacity.

    Occupied beds cannot be removed; removing an already removed bed is
    a no-op.
    """
    def run() -> Outcome:
        bed = store.get_bed(bed_id, for_update=True)
        if bed is None:
            return Outcome(not_found=NotFound('bed', bed_id))
        if bed.is_removed:
            return Outcome(instance=bed)
        if bed.status == Bed.STATUS_OCCUPIED:
            conflict = classify_conflict(ConflictType.INVALID_STATUS_TRANSITION, ConflictContext(
                entity_type='bed', entity=bed_snapshot(bed),
                current=bed.status, requested='removed', label=bed.bed_number,
            ))
            _refused('remove_bed', conflict, bed_id=bed.id, ward_id=bed.ward_id)
            return Outcome(conflict=conflict)
        old_values = audit.snapshot(bed)
        bed.removed_at = timezone.now()
        bed.save(update_fields=['removed_at', 'updated_at'])
        _after_write(entity_type='bed', instance=bed, action='removed', old_values=old_values, user=user,
                     ward_id=bed.ward_id)
        events.publish_bed_changed(bed, previous_status=bed.status)
        logger.info("Bed removed", bed_id=bed.id, ward_id=bed.ward_id)
        return Outcome(instance=bed)

    return store.run_in_transaction(run)


# ---------------------------------------------------------------------------
# Bulk updates
# ---------------------------------------------------------------------------

def bulk_update(store: ResourceStore, entity_type: EntityType | str, updates: Iterable[Mapping[str, Any]],
                *, user=None) -> Outcome:
    """Apply a batch of ``{id, data}`` updates all-or-nothing.

    The batch is first checked by the guard (existence, duplicates).  The
    rows are then locked in primary key order and every item is staged;
    bed items go through the status/numbering rules and ward items
    through the capacity rule.  Bed numbers are checked against the
    numbering the batch leaves behind, so swaps and shifts are allowed.
    Nothing is saved unless every item passes, and the per-item problems
    are reported together.
    """
    entity_type = EntityType(entity_type)
    updates = list(updates) if updates is not None else None
    guard = _guard(store)
    errors = guard.validate_bulk_update(entity_type, updates)
    if errors:
        logger.warning("Bulk update rejected", entity_type=entity_type.value, items=len(updates), errors=len(errors))
        return Outcome(errors=errors)

    editable = set(EDITABLE_FIELDS[entity_type])
    ids = [guard.registry.canonical_id(entity_type, u['id']) for u in updates]
    renumbered = {
        entity_id for entity_id, u in zip(ids, updates)
        if entity_type is EntityType.BEDS and 'bed_number' in (u.get('data') or {})
    }

    def run() -> Outcome:
        locked = store.lock_entities(entity_type, ids)
        problems: List[IndexedError] = []
        staged = []
        claimed_numbers: Dict[Tuple[Any, str], int] = {}

        for index, (entity_id, update) in enumerate(zip(ids, updates)):
            instance = locked.get(str(entity_id))
            data = dict(update.get('data') or {})
            if instance is None:
                problems.append(IndexedError(index, f'updates.{index}.id', f'The selected updates.{index}.id does not exist.'))
                continue
            unknown = sorted(set(data) - editable)
            if unknown:
                problems.extend(
                    IndexedError(index, f'updates.{index}.data.{name}', f'The {name} field cannot be updated.')
                    for name in unknown
                )
                continue
            old_values = audit.snapshot(instance)
            previous_status = getattr(instance, 'status', None)
            if entity_type is EntityType.BEDS:
                item_errors, conflict = _stage_bed(guard, instance, data, renumbered - {instance.pk})
                if conflict is None and not item_errors and 'bed_number' in data:
                    key = (instance.ward_id, instance.bed_number)
                    if key in claimed_numbers:
                        _add_error(item_errors, 'bed_number',
                                   f'Bed number {instance.bed_number} is also assigned by updates.{claimed_numbers[key]}.')
                    claimed_numbers.setdefault(key, index)
            elif entity_type is EntityType.WARDS:
                item_errors, conflict = _stage_ward(guard, store, instance, data)
            else:
                item_errors, conflict = _stage_generic(instance, data)
            if conflict is not None:
                problems.append(IndexedError(index, f'updates.{index}', conflict.message, conflict=conflict))
                continue
            problems.extend(_field_errors_to_indexed(item_errors, index))
            staged.append((instance, old_values, previous_status))

        if problems:
            for problem in problems:
                if problem.conflict is not None:
                    _refused('bulk_update', problem.conflict, entity_type=entity_type.value, index=problem.index)
            return Outcome(errors=problems)

        saved = []
        for instance, old_values, previous_status in staged:
            instance.save()
            ward_id = getattr(instance, 'ward_id', None) if entity_type is EntityType.BEDS else (
                instance.pk if entity_type is EntityType.WARDS else None)
            _after_write(entity_type=entity_type.value, instance=instance, action='bulk_updated',
                         old_values=old_values, user=user, ward_id=ward_id)
            if entity_type is EntityType.BEDS:
                events.publish_bed_changed(instance, previous_status=previous_status)
            elif entity_type is EntityType.WARDS:
                events.publish_ward_changed(instance)
            saved.append(instance)
        logger.info("Bulk update applied", entity_type=entity_type.value, items=len(saved))
        return Outcome(instance=saved)

    return store.run_in_transaction(run)
