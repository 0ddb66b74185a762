"""
Resource store: the persistence interface the allocation guard reads from.

:class:`ResourceStore` is the contract; :class:`DjangoResourceStore` is
the ORM-backed implementation used by the services.  Reads made with
``for_update=True`` lock the row (``SELECT ... FOR UPDATE``) and must be
issued inside :meth:`ResourceStore.run_in_transaction` so that the
validate-then-write sequence for a bed or ward cannot interleave with a
concurrent mutation of the same row.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, TypeVar

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models.functions import Trim, Upper

from .models import Bed, Department, DrugFormulary, TestCatalog, Ward

T = TypeVar('T')


class EntityType(str, Enum):
    WARDS = 'wards'
    BEDS = 'beds'
    DEPARTMENTS = 'departments'
    TEST_CATALOGS = 'test_catalogs'
    DRUG_FORMULARY = 'drug_formulary'


class EntityRegistry:
    """Maps an :class:`EntityType` to the query answering "does id exist?".

    New entity types are supported by registering a lookup, not by
    editing the guard.  A type may also register a canonicalizer that
    turns the raw ids found in a request into the value the store keys
    rows by, so that ``1``, ``"01"`` and ``1.0`` name the same row.
    """

    def __init__(self, lookups: Optional[Dict[EntityType, Callable[[Any], bool]]] = None,
                 canonicalizers: Optional[Dict[EntityType, Callable[[Any], Any]]] = None):
        self._lookups: Dict[EntityType, Callable[[Any], bool]] = dict(lookups or {})
        self._canonicalizers: Dict[EntityType, Callable[[Any], Any]] = dict(canonicalizers or {})

    def register(self, entity_type: EntityType | str, exists: Callable[[Any], bool],
                 canonical: Optional[Callable[[Any], Any]] = None) -> None:
        entity_type = EntityType(entity_type)
        self._lookups[entity_type] = exists
        if canonical is not None:
            self._canonicalizers[entity_type] = canonical

    def _lookup(self, entity_type: EntityType | str) -> Callable[[Any], bool]:
        try:
            return self._lookups[EntityType(entity_type)]
        except KeyError:
            raise ValueError(f"no existence lookup registered for {entity_type!r}") from None

    def canonical_id(self, entity_type: EntityType | str, entity_id: Any) -> Any:
        """Return the canonical form of ``entity_id``, or None if it cannot name a row."""
        self._lookup(entity_type)
        canonical = self._canonicalizers.get(EntityType(entity_type))
        return entity_id if canonical is None else canonical(entity_id)

    def exists(self, entity_type: EntityType | str, entity_id: Any) -> bool:
        return self._lookup(entity_type)(entity_id)


def _pk_canonical(model) -> Callable[[Any], Any]:
    pk_field = model._meta.pk

    def canonical(entity_id: Any) -> Any:
        if isinstance(entity_id, bool) or (isinstance(entity_id, float) and not entity_id.is_integer()):
            return None
        try:
            return pk_field.to_python(entity_id)
        except ValidationError:
            return None
    return canonical


def _model_exists(model) -> Callable[[Any], bool]:
    def exists(entity_id: Any) -> bool:
        try:
            return model.objects.filter(pk=entity_id).exists()
        except (TypeError, ValueError):
            # ids that cannot be coerced to the pk type cannot exist
            return False
    return exists


def _active_bed_exists(entity_id: Any) -> bool:
    try:
        return Bed.objects.filter(pk=entity_id, removed_at__isnull=True).exists()
    except (TypeError, ValueError):
        return False


MODELS_BY_ENTITY_TYPE = {
    EntityType.WARDS: Ward,
    EntityType.BEDS: Bed,
    EntityType.DEPARTMENTS: Department,
    EntityType.TEST_CATALOGS: TestCatalog,
    EntityType.DRUG_FORMULARY: DrugFormulary,
}


def default_registry() -> EntityRegistry:
    lookups = {entity_type: _model_exists(model) for entity_type, model in MODELS_BY_ENTITY_TYPE.items()}
    lookups[EntityType.BEDS] = _active_bed_exists
    return EntityRegistry(
        lookups,
        {entity_type: _pk_canonical(model) for entity_type, model in MODELS_BY_ENTITY_TYPE.items()},
    )


class ResourceStore(Protocol):
    registry: EntityRegistry

    def get_bed(self, bed_id: Any, *, for_update: bool = False) -> Optional[Bed]: ...

    def get_ward(self, ward_id: Any, *, for_update: bool = False) -> Optional[Ward]: ...

    def count_active_beds_in_ward(self, ward_id: Any) -> int: ...

    def find_bed_by_number_in_ward(self, ward_id: Any, normalized_number: str, excluding_id: Any = None,
                                   excluding_ids: Iterable[Any] = ()) -> Optional[Bed]: ...

    def exists_entity(self, entity_type: EntityType | str, entity_id: Any) -> bool: ...

    def lock_entities(self, entity_type: EntityType | str, entity_ids: Iterable[Any]) -> Dict[str, Any]: ...

    def run_in_transaction(self, fn: Callable[[], T]) -> T: ...


class DjangoResourceStore:
    """ORM-backed :class:`ResourceStore`."""

    def __init__(self, registry: Optional[EntityRegistry] = None, using: Optional[str] = None):
        self.registry = registry or default_registry()
        self.using = using

    def _beds(self):
        qs = Bed.objects.all()
        return qs.using(self.using) if self.using else qs

    def _wards(self):
        qs = Ward.objects.all()
        return qs.using(self.using) if self.using else qs

    def get_bed(self, bed_id, *, for_update=False):
        qs = self._beds()
        if for_update:
            qs = qs.select_for_update()
        return qs.filter(id=bed_id).first()

    def get_ward(self, ward_id, *, for_update=False):
        qs = self._wards()
        if for_update:
            qs = qs.select_for_update()
        return qs.filter(id=ward_id).first()

    def count_active_beds_in_ward(self, ward_id) -> int:
        return self._beds().filter(ward_id=ward_id, removed_at__isnull=True).count()

    def find_bed_by_number_in_ward(self, ward_id, normalized_number, excluding_id=None, excluding_ids=()):
        # Rows written around Bed.save() (queryset.update, raw SQL) may not be normalized
        qs = (
            self._beds()
            .select_related('ward')
            .annotate(normalized_number=Upper(Trim('bed_number')))
            .filter(ward_id=ward_id, normalized_number=normalized_number, removed_at__isnull=True)
        )
        excluded = [i for i in (excluding_id, *excluding_ids) if i is not None]
        if excluded:
            qs = qs.exclude(id__in=excluded)
        return qs.order_by('id').first()

    def exists_entity(self, entity_type, entity_id) -> bool:
        return self.registry.exists(entity_type, entity_id)

    def run_in_transaction(self, fn):
        with transaction.atomic(using=self.using):
            return fn()

    def lock_entities(self, entity_type, entity_ids):
        """Lock the rows of a batch in primary key order, keyed by ``str(pk)``.

        ``entity_ids`` are expected in canonical form (see
        :meth:`EntityRegistry.canonical_id`).  Removed beds are left out,
        as if they did not exist.
        """
        model = MODELS_BY_ENTITY_TYPE[EntityType(entity_type)]
        qs = model.objects.all()
        if self.using:
            qs = qs.using(self.using)
        if model is Bed:
            qs = qs.filter(removed_at__isnull=True)
        rows = qs.select_for_update().filter(pk__in=list(entity_ids)).order_by('pk')
        return {str(row.pk): row for row in rows}
