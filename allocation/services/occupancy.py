"""
Read side of ward/bed allocation: occupancy figures for wards and beds.

Results are cached with the Django cache and dropped by
:func:`invalidate_occupancy` once a ward or bed write commits.  Filtered
ward listings cannot be deleted key by key, so their keys carry a
version that invalidation replaces.
"""
import hashlib
import json
import uuid
from typing import Optional, Dict, Any, List

from django.conf import settings
from django.core.cache import cache
from django.db.models import Count, Prefetch

from allocation.models import Bed, Ward

# Beds in these states are part of the usable pool; occupied and reserved
# ones are taken.
POOL_STATUSES = (Bed.STATUS_AVAILABLE, Bed.STATUS_OCCUPIED, Bed.STATUS_RESERVED)
TAKEN_STATUSES = (Bed.STATUS_OCCUPIED, Bed.STATUS_RESERVED)

ALL_WARDS_KEY = 'occupancy:all'
MATRIX_KEY = 'occupancy:matrix'
WARDS_VERSION_KEY = 'wards:with_beds:version'

WARD_FILTERS = ('department_id', 'status', 'type')


def ward_cache_key(ward_id) -> str:
    return f'occupancy:ward:{ward_id}'


def _active_beds(ward: Optional[Ward] = None):
    qs = Bed.objects.filter(removed_at__isnull=True)
    if ward is not None:
        qs = qs.filter(ward=ward)
    return qs


def _rate(taken: int, pool: int) -> float:
    if pool == 0:
        return 0.0
    return round(taken / pool * 100, 2)


def _rate_of(beds) -> float:
    statuses = [b.status for b in beds]
    return _rate(
        sum(1 for s in statuses if s in TAKEN_STATUSES),
        sum(1 for s in statuses if s in POOL_STATUSES),
    )


def calculate_ward_occupancy(ward: Ward) -> float:
    beds = _active_beds(ward)
    pool = beds.filter(status__in=POOL_STATUSES).count()
    taken = beds.filter(status__in=TAKEN_STATUSES).count()
    return _rate(taken, pool)


def compute_occupancy_stats(ward: Optional[Ward] = None) -> Dict[str, Any]:
    counts = {status: 0 for status, _ in Bed.STATUS_CHOICES}
    for row in _active_beds(ward).order_by().values('status').annotate(n=Count('id')):
        counts[row['status']] = row['n']
    stats: Dict[str, Any] = {'total_beds': sum(counts.values()), **counts}
    stats['occupancy_rate'] = _rate(
        sum(counts[s] for s in TAKEN_STATUSES),
        sum(counts[s] for s in POOL_STATUSES),
    )
    if ward is not None:
        stats['ward_id'] = ward.id
        stats['capacity'] = ward.capacity
    return stats


def occupancy_stats(ward: Optional[Ward] = None) -> Dict[str, Any]:
    """Per-status bed counts and occupancy rate, cached per ward."""
    key = ward_cache_key(ward.id) if ward is not None else ALL_WARDS_KEY
    return cache.get_or_set(key, lambda: compute_occupancy_stats(ward), settings.OCCUPANCY_CACHE_TTL)


def available_beds(ward: Ward):
    return _active_beds(ward).filter(status=Bed.STATUS_AVAILABLE).order_by('bed_number')


def _wards_with_active_beds():
    return (
        Ward.objects.select_related('department')
        .prefetch_related(Prefetch('beds', queryset=_active_beds().order_by('bed_number')))
        .order_by('department_id', 'name')
    )


def _bed_row(bed: Bed) -> Dict[str, Any]:
    return {
        'id': bed.id,
        'bed_number': bed.bed_number,
        'bed_type': bed.bed_type,
        'status': bed.status,
        'last_occupied_at': bed.last_occupied_at.isoformat() if bed.last_occupied_at else None,
        'maintenance_notes': bed.maintenance_notes,
    }


def compute_occupancy_matrix() -> List[Dict[str, Any]]:
    matrix = []
    for ward in _wards_with_active_beds().filter(status=Ward.STATUS_ACTIVE):
        beds = list(ward.beds.all())
        matrix.append({
            'id': ward.id,
            'name': ward.name,
            'department': ward.department.name,
            'type': ward.type,
            'capacity': ward.capacity,
            'occupancy_rate': _rate_of(beds),
            'beds': [_bed_row(b) for b in beds],
        })
    return matrix


def occupancy_matrix() -> List[Dict[str, Any]]:
    """Active wards with their beds, for the bed board."""
    return cache.get_or_set(MATRIX_KEY, compute_occupancy_matrix, settings.OCCUPANCY_CACHE_TTL)


def _check_filters(filters) -> None:
    unknown = sorted(set(filters) - set(WARD_FILTERS))
    if unknown:
        raise TypeError(f"unsupported ward filters: {', '.join(unknown)}")


def compute_wards_with_beds(**filters) -> List[Dict[str, Any]]:
    _check_filters(filters)
    wards = _wards_with_active_beds().filter(**{k: v for k, v in filters.items() if v is not None})
    result = []
    for ward in wards:
        beds = list(ward.beds.all())
        statuses = [b.status for b in beds]
        result.append({
            'id': ward.id,
            'name': ward.name,
            'department': {'id': ward.department_id, 'name': ward.department.name},
            'type': ward.type,
            'capacity': ward.capacity,
            'floor_number': ward.floor_number,
            'status': ward.status,
            'occupancy_rate': _rate_of(beds),
            'available_beds_count': statuses.count(Bed.STATUS_AVAILABLE),
            'occupied_beds_count': statuses.count(Bed.STATUS_OCCUPIED),
            'maintenance_beds_count': statuses.count(Bed.STATUS_MAINTENANCE),
            'beds': [_bed_row(b) for b in beds],
        })
    return result


def wards_with_beds(**filters) -> List[Dict[str, Any]]:
    """Wards with bed rows and per-status counts.

    Accepts ``department_id``, ``status`` and ``type`` filters; each
    filter combination is cached separately.
    """
    _check_filters(filters)
    version = cache.get_or_set(WARDS_VERSION_KEY, lambda: uuid.uuid4().hex, None)
    digest = hashlib.md5(json.dumps(filters, sort_keys=True, default=str).encode()).hexdigest()
    key = f'wards:with_beds:{version}:{digest}'
    return cache.get_or_set(key, lambda: compute_wards_with_beds(**filters), settings.WARDS_CACHE_TTL)


def invalidate_occupancy(ward_id=None) -> None:
    keys = [ALL_WARDS_KEY, MATRIX_KEY, WARDS_VERSION_KEY]
    if ward_id is not None:
        keys.append(ward_cache_key(ward_id))
    cache.delete_many(keys)
