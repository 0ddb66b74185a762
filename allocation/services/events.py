"""
Broadcast committed bed/ward changes on the Channels layer.

Bed board screens subscribe to ``ward.<id>``; events are only sent
after the surrounding transaction commits, so a rolled back change is
never announced.
"""
from __future__ import annotations

from typing import Any, Dict

import structlog
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.utils import timezone

logger = structlog.get_logger(__name__)

WARDS_GROUP = "wards"


def ward_group(ward_id: Any) -> str:
    return f"ward.{ward_id}"


def _send(group: str, event: Dict[str, Any]) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    async_to_sync(channel_layer.group_send)(group, event)


def publish_bed_changed(bed, previous_status=None) -> None:
    event = {
        "type": "bed.changed",
        "wardId": bed.ward_id,
        "bedId": bed.id,
        "bedNumber": bed.bed_number,
        "status": bed.status,
        "previousStatus": previous_status,
        "removed": bed.removed_at is not None,
        "ts": timezone.now().isoformat(),
    }
    transaction.on_commit(lambda: _send(ward_group(bed.ward_id), event))


def publish_ward_changed(ward) -> None:
    event = {
        "type": "ward.changed",
        "wardId": ward.id,
        "name": ward.name,
        "capacity": ward.capacity,
        "status": ward.status,
        "ts": timezone.now().isoformat(),
    }
    transaction.on_commit(lambda: _send(ward_group(ward.id), event))


def publish_refresh(keys) -> None:
    now = timezone.now()
    event = {"type": "broadcast.refresh", "version": int(now.timestamp()), "ts": now.isoformat(), "keys": list(keys)[:50]}
    logger.info("Broadcasting occupancy refresh", keys=len(event["keys"]))
    _send(WARDS_GROUP, event)
