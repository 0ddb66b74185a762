"""
Audit trail for ward, bed and other master data writes.

One row per committed mutation, holding field values before and after.
"""
from typing import Any, Dict, Optional

from django.forms.models import model_to_dict

from allocation.models import MasterDataAudit


def snapshot(instance) -> Dict[str, Any]:
    """JSON-safe field values of ``instance`` for the audit trail."""
    data = model_to_dict(instance)
    data['id'] = instance.pk
    return {k: (v if isinstance(v, (int, float, bool, str, type(None))) else str(v)) for k, v in data.items()}


def log_change(*, entity_type: str, entity_id: Any, action: str, old_values: Optional[Dict[str, Any]] = None,
               new_values: Optional[Dict[str, Any]] = None, user=None) -> MasterDataAudit:
    return MasterDataAudit.objects.create(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        old_values=old_values or {},
        new_values=new_values or {},
        user=user if getattr(user, 'pk', None) else None,
    )
