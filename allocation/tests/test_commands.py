from io import StringIO

import pytest
from django.core.cache import cache
from django.core.management import call_command

from allocation.models import Bed, Ward
from allocation.services import events
from allocation.services.occupancy import ALL_WARDS_KEY, MATRIX_KEY, ward_cache_key

pytestmark = pytest.mark.django_db


def test_seed_wards_is_repeatable():
    out = StringIO()
    call_command('seed_wards', '--fill', '0.5', stdout=out)
    assert 'Seeded 4 wards' in out.getvalue()
    beds = Bed.objects.count()
    assert beds == 10 + 4 + 8 + 6

    call_command('seed_wards', '--fill', '0.5', stdout=StringIO())
    assert Ward.objects.count() == 4
    assert Bed.objects.count() == beds
    for ward in Ward.objects.all():
        assert ward.beds.count() <= ward.capacity


def test_refresh_occupancy_fills_cache_and_broadcasts(monkeypatch):
    sent = []
    monkeypatch.setattr(events, '_send', lambda group, event: sent.append((group, event)))
    cache.clear()
    call_command('seed_wards', '--fill', '0.25', stdout=StringIO())
    ward = Ward.objects.order_by('id').first()

    out = StringIO()
    call_command('refresh_occupancy', stdout=out)

    assert cache.get(ward_cache_key(ward.id))['total_beds'] == ward.beds.count()
    assert cache.get(ALL_WARDS_KEY)['total_beds'] == Bed.objects.count()
    assert [group for group, _ in sent] == ['wards']
    assert sent[0][1]['type'] == 'broadcast.refresh'
    assert len(cache.get(MATRIX_KEY)) == Ward.objects.filter(status=Ward.STATUS_ACTIVE).count()
    assert 'Refreshed 6 keys' in out.getvalue()
