"""
Conflict kinds and the value types describing a rejected mutation.

A :class:`ConflictReport` is what the allocation guard hands back when a
requested bed or ward change would break an invariant.  It serializes
straight into the structured error payload returned to end users::

    {"message": ..., "error": "OCCUPIED_TO_MAINTENANCE",
     "bed": {...}, "suggestions": [...], "current": ..., "requested": ...}
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class ConflictType(str, Enum):
    OCCUPIED_TO_MAINTENANCE = 'occupied_to_maintenance'
    OCCUPIED_TO_OUT_OF_ORDER = 'occupied_to_out_of_order'
    CAPACITY_EXCEEDED = 'capacity_exceeded'
    INVALID_STATUS_TRANSITION = 'invalid_status_transition'
    DUPLICATE_BED_NUMBER = 'duplicate_bed_number'

    @property
    def code(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class ConflictContext:
    """What a validator knows about the rejected mutation.

    ``entity`` is a plain snapshot of the bed or ward (see
    :func:`bed_snapshot` / :func:`ward_snapshot`); ``label`` is the bed
    number or ward name used in messages.  ``operation`` distinguishes
    the two capacity cases: ``'add_bed'`` or ``'reduce_capacity'``.
    """
    entity_type: str
    entity: Mapping[str, Any]
    current: Any = None
    requested: Any = None
    label: str = ''
    operation: Optional[str] = None


@dataclass(frozen=True)
class ConflictReport:
    conflict_type: ConflictType
    entity_type: str
    entity: Mapping[str, Any]
    current_value: Any
    requested_value: Any
    message: str
    suggestions: tuple[str, ...] = field(default_factory=tuple)

    @property
    def code(self) -> str:
        return self.conflict_type.code

    def to_payload(self) -> dict:
        return {
            'message': self.message,
            'error': self.code,
            self.entity_type: dict(self.entity),
            'suggestions': list(self.suggestions),
            'current': self.current_value,
            'requested': self.requested_value,
        }


@dataclass(frozen=True)
class NotFound:
    """A single-entity operation referenced a row that does not exist."""
    entity_type: str
    entity_id: Any

    @property
    def message(self) -> str:
        return f"{self.entity_type.capitalize()} {self.entity_id} not found"

    def to_payload(self) -> dict:
        return {'message': self.message, 'error': 'NOT_FOUND', 'entity': self.entity_type, 'id': self.entity_id}


@dataclass(frozen=True)
class IndexedError:
    """One problem in a bulk request; ``index`` is None for batch-level errors."""
    index: Optional[int]
    field: str
    message: str
    conflict: Optional[ConflictReport] = None

    def to_payload(self) -> dict:
        data: dict[str, Any] = {'index': self.index, 'field': self.field, 'message': self.message}
        if self.conflict is not None:
            data['conflict'] = self.conflict.to_payload()
        return data


_DISCHARGE_FIRST = 'discharge the patient first'
_TRANSFER = 'transfer the patient to another bed'

# Every ConflictType must have an entry here; classify_conflict raises
# KeyError otherwise, and the tests check the table is complete.
_SUGGESTIONS: dict[ConflictType, tuple[str, ...]] = {
    ConflictType.OCCUPIED_TO_MAINTENANCE: (
        _DISCHARGE_FIRST,
        _TRANSFER,
        'defer maintenance until after discharge',
    ),
    ConflictType.OCCUPIED_TO_OUT_OF_ORDER: (
        _DISCHARGE_FIRST,
        _TRANSFER,
        'mark the bed for maintenance after discharge',
    ),
    ConflictType.CAPACITY_EXCEEDED: (
        'increase the ward capacity',
        'remove unused beds from the ward',
        'create the bed in another ward',
    ),
    ConflictType.INVALID_STATUS_TRANSITION: (
        'check the bed status workflow',
        'ensure status changes follow the proper sequence',
        'contact a system administrator',
    ),
    ConflictType.DUPLICATE_BED_NUMBER: (
        'choose a different bed number',
        'edit the existing bed instead of creating a new one',
        'create the bed in another ward',
    ),
}


def _message(conflict_type: ConflictType, ctx: ConflictContext) -> str:
    if conflict_type is ConflictType.OCCUPIED_TO_MAINTENANCE:
        return f"Cannot change bed {ctx.label} from occupied to maintenance. Discharge patient first."
    if conflict_type is ConflictType.OCCUPIED_TO_OUT_OF_ORDER:
        return f"Cannot change bed {ctx.label} from occupied to out of order. Discharge patient first."
    if conflict_type is ConflictType.CAPACITY_EXCEEDED:
        if ctx.operation == 'add_bed':
            return f"Cannot add more beds to ward {ctx.label}. Capacity limit exceeded."
        return f"Cannot reduce capacity of ward {ctx.label} to {ctx.requested}. Capacity limit exceeded."
    if conflict_type is ConflictType.INVALID_STATUS_TRANSITION:
        return f"Invalid status transition from {ctx.current} to {ctx.requested} for bed {ctx.label}."
    if conflict_type is ConflictType.DUPLICATE_BED_NUMBER:
        return f"Bed number {ctx.requested} already exists in ward {ctx.label}."
    raise ValueError(f"unhandled conflict type: {conflict_type!r}")


def classify_conflict(conflict_type: ConflictType | str, context: ConflictContext) -> ConflictReport:
    """Build the uniform report for ``conflict_type``.

    Pure: the same arguments always produce an equal report.
    """
    if context is None:
        raise TypeError('context is required')
    conflict_type = ConflictType(conflict_type)
    return ConflictReport(
        conflict_type=conflict_type,
        entity_type=context.entity_type,
        entity=dict(context.entity),
        current_value=context.current,
        requested_value=context.requested,
        message=_message(conflict_type, context),
        suggestions=_SUGGESTIONS[conflict_type],
    )


def bed_snapshot(bed) -> dict:
    return {
        'id': getattr(bed, 'id', None),
        'ward_id': getattr(bed, 'ward_id', None),
        'bed_number': getattr(bed, 'bed_number', None),
        'status': getattr(bed, 'status', None),
    }


def ward_snapshot(ward) -> dict:
    return {
        'id': getattr(ward, 'id', None),
        'name': getattr(ward, 'name', None),
        'capacity': getattr(ward, 'capacity', None),
        'status': getattr(ward, 'status', None),
    }
