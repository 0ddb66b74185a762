"""
Allocation guard: invariant checks run before any bed or ward write.

Validators return ``None`` when a mutation is acceptable and a
:class:`~allocation.conflicts.ConflictReport` when it is not; business
rule violations are never raised.  Passing ``None`` where a bed, ward or
batch is required is a caller bug and raises immediately.

The status and capacity checks are pure functions over data the caller
already fetched.  They protect nothing on their own against concurrent
writers: callers must fetch with ``for_update=True`` inside
``store.run_in_transaction`` and write in that same transaction.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from .conflicts import (
    ConflictContext,
    ConflictReport,
    ConflictType,
    IndexedError,
    bed_snapshot,
    classify_conflict,
    ward_snapshot,
)
from .models import Bed, normalize_bed_number
from .store import EntityRegistry, EntityType, ResourceStore

BED_STATUSES = frozenset(value for value, _ in Bed.STATUS_CHOICES)

# Only these edges are refused; every other (current, requested) pair is allowed.
FORBIDDEN_TRANSITIONS: dict[tuple[str, str], ConflictType] = {
    (Bed.STATUS_OCCUPIED, Bed.STATUS_MAINTENANCE): ConflictType.OCCUPIED_TO_MAINTENANCE,
    (Bed.STATUS_OCCUPIED, Bed.STATUS_OUT_OF_ORDER): ConflictType.OCCUPIED_TO_OUT_OF_ORDER,
}

DEFAULT_MAX_BULK_ITEMS = 100


def _check_status(status: str, name: str) -> None:
    if status not in BED_STATUSES:
        raise ValueError(f"{name} must be one of {sorted(BED_STATUSES)}, got {status!r}")


def _check_count(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")


def validate_bed_status_transition(bed, requested_status: str) -> Optional[ConflictReport]:
    """Refuse ``occupied -> maintenance`` and ``occupied -> out_of_order``."""
    if bed is None:
        raise TypeError('bed is required')
    _check_status(bed.status, 'bed.status')
    _check_status(requested_status, 'requested_status')
    conflict_type = FORBIDDEN_TRANSITIONS.get((bed.status, requested_status))
    if conflict_type is None:
        return None
    return classify_conflict(conflict_type, ConflictContext(
        entity_type='bed',
        entity=bed_snapshot(bed),
        current=bed.status,
        requested=requested_status,
        label=bed.bed_number,
    ))


def validate_ward_capacity(ward, proposed_capacity: int, proposed_bed_count: int,
                           *, operation: str = 'reduce_capacity') -> Optional[ConflictReport]:
    """Refuse when ``proposed_capacity`` is below ``proposed_bed_count``.

    A capacity equal to the bed count is allowed.  ``operation`` only
    changes the wording of the report (``'add_bed'`` or
    ``'reduce_capacity'``).
    """
    if ward is None:
        raise TypeError('ward is required')
    _check_count(proposed_capacity, 'proposed_capacity')
    _check_count(proposed_bed_count, 'proposed_bed_count')
    if proposed_capacity >= proposed_bed_count:
        return None
    entity = ward_snapshot(ward)
    entity['bed_count'] = proposed_bed_count
    return classify_conflict(ConflictType.CAPACITY_EXCEEDED, ConflictContext(
        entity_type='ward',
        entity=entity,
        current=ward.capacity,
        requested=proposed_capacity,
        label=ward.name,
        operation=operation,
    ))


def validate_bed_addition(ward, current_bed_count: int) -> Optional[ConflictReport]:
    """Capacity check for adding one bed to ``ward``."""
    if ward is None:
        raise TypeError('ward is required')
    _check_count(current_bed_count, 'current_bed_count')
    return validate_ward_capacity(ward, ward.capacity, current_bed_count + 1, operation='add_bed')


class ResourceAllocationGuard:
    """Gate for every bed/ward mutation.

    Holds the store for the checks that need to look at other rows
    (bed number uniqueness, bulk id existence).  The entity registry
    used for bulk existence checks defaults to the store's own.
    """

    def __init__(self, store: ResourceStore, registry: Optional[EntityRegistry] = None,
                 max_bulk_items: int = DEFAULT_MAX_BULK_ITEMS):
        if store is None:
            raise TypeError('store is required')
        self.store = store
        self.registry = registry or store.registry
        self.max_bulk_items = max_bulk_items

    validate_bed_status_transition = staticmethod(validate_bed_status_transition)
    validate_ward_capacity = staticmethod(validate_ward_capacity)
    validate_bed_addition = staticmethod(validate_bed_addition)

    def validate_bed_number_uniqueness(self, ward_id, bed_number: str, excluding_bed_id=None,
                                       *, excluding_bed_ids: Iterable[Any] = ()) -> Optional[ConflictReport]:
        """Report another active bed in ``ward_id`` already using ``bed_number``.

        ``excluding_bed_ids`` leaves out beds whose stored number is about
        to change, as in a bulk renumbering.
        """
        if ward_id is None:
            raise TypeError('ward_id is required')
        normalized = normalize_bed_number(bed_number)
        if not normalized:
            raise ValueError('bed_number must not be blank')
        existing = self.store.find_bed_by_number_in_ward(
            ward_id, normalized, excluding_bed_id, excluding_ids=tuple(excluding_bed_ids),
        )
        if existing is None:
            return None
        ward = getattr(existing, 'ward', None)
        return classify_conflict(ConflictType.DUPLICATE_BED_NUMBER, ConflictContext(
            entity_type='bed',
            entity=bed_snapshot(existing),
            current=existing.bed_number,
            requested=normalized,
            label=getattr(ward, 'name', None) or str(ward_id),
        ))

    def validate_bulk_update(self, entity_type: EntityType | str,
                             updates: Iterable[Mapping[str, Any]]) -> list[IndexedError]:
        """Collect every problem in a bulk request.

        Ids are compared in canonical form, so ``1`` and ``"01"`` are the
        same id.  Existence is checked for every entry and duplicates are
        reported once for the whole batch; nothing short-circuits.  An
        empty result means all ids exist and are pairwise distinct.
        """
        entity_type = EntityType(entity_type)
        if updates is None:
            raise TypeError('updates is required')
        updates = list(updates)
        errors: list[IndexedError] = []

        if not updates:
            errors.append(IndexedError(None, 'updates', 'The updates field must have at least 1 item.'))
        elif len(updates) > self.max_bulk_items:
            errors.append(IndexedError(
                None, 'updates', f'The updates field must not have more than {self.max_bulk_items} items.'
            ))

        seen: set[str] = set()
        duplicates: dict[str, Any] = {}
        for index, entry in enumerate(updates):
            entity_id = entry.get('id') if isinstance(entry, Mapping) else None
            if entity_id is None or entity_id == '':
                errors.append(IndexedError(index, f'updates.{index}.id', f'The updates.{index}.id field is required.'))
                continue
            if not isinstance(entry.get('data', {}), Mapping):
                errors.append(IndexedError(
                    index, f'updates.{index}.data', f'The updates.{index}.data field must be an object.'
                ))
            canonical = self.registry.canonical_id(entity_type, entity_id)
            if canonical is None or not self.registry.exists(entity_type, canonical):
                errors.append(IndexedError(
                    index, f'updates.{index}.id', f'The selected updates.{index}.id does not exist.'
                ))
            if canonical is None:
                canonical = entity_id
            key = str(canonical)
            if key in seen:
                duplicates.setdefault(key, canonical)
            else:
                seen.add(key)

        if duplicates:
            names = ', '.join(str(v) for v in duplicates.values())
            errors.append(IndexedError(None, 'updates', f'Duplicate IDs found in updates: {names}'))
        return errors
