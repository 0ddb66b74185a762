from django.core.cache import cache
from django.conf import settings
from django.utils import timezone

from django.core.management.base import BaseCommand

from allocation.models import Ward
from allocation.services.events import publish_refresh
from allocation.services.occupancy import (
    ALL_WARDS_KEY,
    MATRIX_KEY,
    compute_occupancy_matrix,
    compute_occupancy_stats,
    ward_cache_key,
)


class Command(BaseCommand):
    help = "Recompute cached ward occupancy stats and the bed matrix, then broadcast a refresh event."

    def handle(self, *args, **options):
        now = timezone.now()
        ttl = settings.OCCUPANCY_CACHE_TTL
        keys_refreshed = []

        for ward in Ward.objects.all():
            key = ward_cache_key(ward.id)
            cache.set(key, compute_occupancy_stats(ward), ttl)
            keys_refreshed.append(key)

        cache.set(ALL_WARDS_KEY, compute_occupancy_stats(), ttl)
        keys_refreshed.append(ALL_WARDS_KEY)

        cache.set(MATRIX_KEY, compute_occupancy_matrix(), ttl)
        keys_refreshed.append(MATRIX_KEY)

        publish_refresh(keys_refreshed)

        self.stdout.write(self.style.SUCCESS(f"Refreshed {len(keys_refreshed)} keys at {now}"))
