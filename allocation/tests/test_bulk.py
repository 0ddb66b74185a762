import pytest
from django.utils import timezone

from allocation.conflicts import ConflictType
from allocation.models import Bed, Department, MasterDataAudit
from allocation.serializers.bulk import BulkUpdateSerializer
from allocation.services.wards import bulk_update

pytestmark = pytest.mark.django_db


def test_bulk_status_update_applies_every_item(store, make_ward, make_bed):
    ward = make_ward()
    a = make_bed(ward, 'A1')
    b = make_bed(ward, 'A2')

    outcome = bulk_update(store, 'beds', [
        {'id': a.id, 'data': {'status': Bed.STATUS_MAINTENANCE, 'maintenance_notes': 'bed rail'}},
        {'id': b.id, 'data': {'status': Bed.STATUS_RESERVED}},
    ])

    assert outcome.ok
    assert [bed.id for bed in outcome.instance] == [a.id, b.id]
    a.refresh_from_db()
    assert a.status == Bed.STATUS_MAINTENANCE
    assert MasterDataAudit.objects.filter(action='bulk_updated', entity_type='beds').count() == 2


def test_bulk_conflict_rolls_back_whole_batch(store, make_ward, make_bed):
    ward = make_ward()
    free = make_bed(ward, 'A1')
    occupied = make_bed(ward, 'A2', status=Bed.STATUS_OCCUPIED)

    outcome = bulk_update(store, 'beds', [
        {'id': free.id, 'data': {'status': Bed.STATUS_RESERVED}},
        {'id': occupied.id, 'data': {'status': Bed.STATUS_OUT_OF_ORDER}},
    ])

    assert not outcome.ok
    assert len(outcome.errors) == 1
    error = outcome.errors[0]
    assert error.index == 1
    assert error.conflict.conflict_type is ConflictType.OCCUPIED_TO_OUT_OF_ORDER
    free.refresh_from_db()
    assert free.status == Bed.STATUS_AVAILABLE
    assert not MasterDataAudit.objects.exists()


def test_bulk_reports_missing_and_duplicate_ids_together(store, make_ward):
    ward = make_ward()

    outcome = bulk_update(store, 'wards', [
        {'id': ward.id, 'data': {'name': 'East'}},
        {'id': 987654, 'data': {'name': 'West'}},
        {'id': ward.id, 'data': {'name': 'South'}},
    ])

    messages = [e.message for e in outcome.errors]
    assert 'The selected updates.1.id does not exist.' in messages
    assert f'Duplicate IDs found in updates: {ward.id}' in messages
    ward.refresh_from_db()
    assert ward.name == 'Ward W'


def test_bulk_ward_capacity_goes_through_capacity_rule(store, full_ward, make_ward):
    other = make_ward(name='Ward X', capacity=2)

    outcome = bulk_update(store, 'wards', [
        {'id': other.id, 'data': {'capacity': 10}},
        {'id': full_ward.id, 'data': {'capacity': 3}},
    ])

    assert [e.conflict.conflict_type for e in outcome.errors] == [ConflictType.CAPACITY_EXCEEDED]
    other.refresh_from_db()
    assert other.capacity == 2


def test_bulk_rejects_colliding_numbers_within_batch(store, make_ward, make_bed):
    ward = make_ward()
    a = make_bed(ward, 'A1')
    b = make_bed(ward, 'A2')

    outcome = bulk_update(store, 'beds', [
        {'id': a.id, 'data': {'bed_number': 'C1'}},
        {'id': b.id, 'data': {'bed_number': 'c1'}},
    ])

    assert [(e.index, e.field) for e in outcome.errors] == [(1, 'updates.1.data.bed_number')]


def test_bulk_rejects_fields_that_cannot_be_edited(store, make_ward, make_bed):
    bed = make_bed(make_ward(), 'A1')

    outcome = bulk_update(store, 'beds', [{'id': bed.id, 'data': {'ward_id': 99}}])

    assert [e.message for e in outcome.errors] == ['The ward_id field cannot be updated.']


def test_bulk_update_of_other_master_data(store, department):
    other = Department.objects.create(name='Radiology', code='RAD')

    outcome = bulk_update(store, 'departments', [
        {'id': department.id, 'data': {'status': 'inactive'}},
        {'id': str(other.id), 'data': {'name': 'Imaging'}},
    ])

    assert outcome.ok
    other.refresh_from_db()
    assert other.name == 'Imaging'


def test_serializer_enforces_shape_and_limit(store, make_ward, make_bed, settings):
    settings.BULK_UPDATE_MAX_ITEMS = 2
    ward = make_ward()
    beds = [make_bed(ward, f'A{n}') for n in range(3)]

    too_many = BulkUpdateSerializer(data={
        'entityType': 'beds',
        'updates': [{'id': b.id, 'data': {'status': 'reserved'}} for b in beds],
    })
    assert not too_many.is_valid()
    assert 'updates' in too_many.errors

    bad_type = BulkUpdateSerializer(data={'entityType': 'patients', 'updates': [{'id': 1, 'data': {'a': 1}}]})
    assert not bad_type.is_valid()
    assert 'entityType' in bad_type.errors

    ok = BulkUpdateSerializer(data={
        'entityType': 'beds',
        'updates': [{'id': beds[0].id, 'data': {'status': 'reserved'}}],
    })
    assert ok.is_valid(), ok.errors
    outcome = ok.apply(store)
    assert outcome.ok
    beds[0].refresh_from_db()
    assert beds[0].status == Bed.STATUS_RESERVED


def test_bulk_accepts_padded_string_id(store, make_ward):
    ward = make_ward()

    outcome = bulk_update(store, 'wards', [{'id': f'0{ward.id}', 'data': {'name': 'East'}}])

    assert outcome.ok
    ward.refresh_from_db()
    assert ward.name == 'East'


def test_bulk_rejects_same_row_named_two_ways(store, make_ward):
    ward = make_ward()

    outcome = bulk_update(store, 'wards', [
        {'id': ward.id, 'data': {'name': 'East'}},
        {'id': f'0{ward.id}', 'data': {'name': 'West'}},
    ])

    assert [e.message for e in outcome.errors] == [f'Duplicate IDs found in updates: {ward.id}']
    ward.refresh_from_db()
    assert ward.name == 'Ward W'


def test_bulk_shift_onto_number_freed_in_same_batch(store, make_ward, make_bed):
    ward = make_ward()
    a = make_bed(ward, 'A1')
    b = make_bed(ward, 'A2')

    outcome = bulk_update(store, 'beds', [
        {'id': a.id, 'data': {'bed_number': 'C1'}},
        {'id': b.id, 'data': {'bed_number': 'a1'}},
    ])

    assert outcome.ok, outcome.errors
    a.refresh_from_db()
    b.refresh_from_db()
    assert (a.bed_number, b.bed_number) == ('C1', 'A1')


def test_bulk_swap_of_two_numbers(store, make_ward, make_bed):
    ward = make_ward()
    a = make_bed(ward, 'A1')
    b = make_bed(ward, 'A2')

    outcome = bulk_update(store, 'beds', [
        {'id': a.id, 'data': {'bed_number': 'A2'}},
        {'id': b.id, 'data': {'bed_number': 'A1'}},
    ])

    assert outcome.ok, outcome.errors
    a.refresh_from_db()
    b.refresh_from_db()
    assert (a.bed_number, b.bed_number) == ('A2', 'A1')


def test_bulk_number_still_held_by_unchanged_bed_is_refused(store, make_ward, make_bed):
    ward = make_ward()
    a = make_bed(ward, 'A1')
    b = make_bed(ward, 'A2')

    outcome = bulk_update(store, 'beds', [
        {'id': a.id, 'data': {'status': Bed.STATUS_RESERVED}},
        {'id': b.id, 'data': {'bed_number': 'A1'}},
    ])

    assert [e.conflict.conflict_type for e in outcome.errors] == [ConflictType.DUPLICATE_BED_NUMBER]
    b.refresh_from_db()
    assert b.bed_number == 'A2'


def test_refused_bed_batch_leaves_no_audit_and_no_callbacks(store, make_ward, make_bed,
                                                            django_capture_on_commit_callbacks):
    ward = make_ward()
    free = make_bed(ward, 'A1')
    occupied = make_bed(ward, 'A2', status=Bed.STATUS_OCCUPIED)
    audits = MasterDataAudit.objects.count()

    with django_capture_on_commit_callbacks() as callbacks:
        outcome = bulk_update(store, 'beds', [
            {'id': free.id, 'data': {'status': Bed.STATUS_RESERVED, 'bed_number': 'C1'}},
            {'id': occupied.id, 'data': {'status': Bed.STATUS_MAINTENANCE}},
        ])

    assert not outcome.ok
    assert callbacks == []
    assert MasterDataAudit.objects.count() == audits
    free.refresh_from_db()
    assert (free.status, free.bed_number) == (Bed.STATUS_AVAILABLE, 'A1')


def test_bulk_ward_capacity_counts_active_beds_of_locked_row(store, full_ward):
    Bed.objects.filter(ward=full_ward, bed_number='W5').update(removed_at=timezone.now())

    assert bulk_update(store, 'wards', [{'id': full_ward.id, 'data': {'capacity': 3}}]).errors[0].conflict.current_value == 5

    outcome = bulk_update(store, 'wards', [{'id': full_ward.id, 'data': {'capacity': 4}}])
    assert outcome.ok, outcome.errors
    full_ward.refresh_from_db()
    assert full_ward.capacity == 4


def test_bulk_ward_capacity_sees_beds_added_after_request_was_built(store, make_ward, make_bed):
    ward = make_ward(capacity=3)
    make_bed(ward, 'A1')
    updates = [{'id': ward.id, 'data': {'capacity': 1}}]
    make_bed(ward, 'A2')

    outcome = bulk_update(store, 'wards', updates)

    assert outcome.errors[0].conflict.conflict_type is ConflictType.CAPACITY_EXCEEDED
    assert outcome.errors[0].conflict.entity['bed_count'] == 2


def test_refused_ward_batch_leaves_no_audit_and_no_callbacks(store, full_ward, make_ward,
                                                             django_capture_on_commit_callbacks):
    other = make_ward(name='Ward X', capacity=2)
    audits = MasterDataAudit.objects.count()

    with django_capture_on_commit_callbacks() as callbacks:
        outcome = bulk_update(store, 'wards', [
            {'id': other.id, 'data': {'name': 'Ward Y', 'capacity': 6}},
            {'id': full_ward.id, 'data': {'capacity': 4}},
        ])

    assert [e.index for e in outcome.errors] == [1]
    assert callbacks == []
    assert MasterDataAudit.objects.count() == audits
    other.refresh_from_db()
    assert (other.name, other.capacity) == ('Ward X', 2)
