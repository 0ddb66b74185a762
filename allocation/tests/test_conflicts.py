import pytest

from allocation.conflicts import (
    ConflictContext,
    ConflictType,
    IndexedError,
    NotFound,
    classify_conflict,
)


def ctx(**overrides):
    values = dict(entity_type='bed', entity={'id': 7, 'bed_number': 'A1'}, current='occupied',
                  requested='maintenance', label='A1')
    values.update(overrides)
    return ConflictContext(**values)


@pytest.mark.parametrize('conflict_type', list(ConflictType))
def test_every_conflict_type_has_message_and_suggestions(conflict_type):
    report = classify_conflict(conflict_type, ctx(operation='add_bed'))

    assert report.message
    assert len(report.suggestions) >= 1
    assert report.code == conflict_type.value.upper()


def test_classification_is_pure():
    assert classify_conflict(ConflictType.OCCUPIED_TO_MAINTENANCE, ctx()) == \
        classify_conflict('occupied_to_maintenance', ctx())


def test_occupied_variants_share_discharge_and_transfer_suggestions():
    maintenance = classify_conflict(ConflictType.OCCUPIED_TO_MAINTENANCE, ctx())
    out_of_order = classify_conflict(ConflictType.OCCUPIED_TO_OUT_OF_ORDER, ctx(requested='out_of_order'))

    assert maintenance.suggestions[:2] == out_of_order.suggestions[:2]
    assert maintenance.suggestions[0] == 'discharge the patient first'
    assert out_of_order.message == 'Cannot change bed A1 from occupied to out of order. Discharge patient first.'


def test_capacity_message_depends_on_operation():
    ward = dict(entity_type='ward', entity={'id': 1, 'name': 'Ward W'}, current=5, requested=4, label='Ward W')

    reduce = classify_conflict(ConflictType.CAPACITY_EXCEEDED, ConflictContext(**ward, operation='reduce_capacity'))
    add = classify_conflict(ConflictType.CAPACITY_EXCEEDED, ConflictContext(**ward, operation='add_bed'))

    assert reduce.message == 'Cannot reduce capacity of ward Ward W to 4. Capacity limit exceeded.'
    assert add.message == 'Cannot add more beds to ward Ward W. Capacity limit exceeded.'


def test_payload_shape():
    payload = classify_conflict(ConflictType.OCCUPIED_TO_MAINTENANCE, ctx()).to_payload()

    assert payload == {
        'message': 'Cannot change bed A1 from occupied to maintenance. Discharge patient first.',
        'error': 'OCCUPIED_TO_MAINTENANCE',
        'bed': {'id': 7, 'bed_number': 'A1'},
        'suggestions': [
            'discharge the patient first',
            'transfer the patient to another bed',
            'defer maintenance until after discharge',
        ],
        'current': 'occupied',
        'requested': 'maintenance',
    }


def test_classify_requires_context_and_known_type():
    with pytest.raises(TypeError):
        classify_conflict(ConflictType.CAPACITY_EXCEEDED, None)
    with pytest.raises(ValueError):
        classify_conflict('bed_on_fire', ctx())


def test_error_payloads():
    report = classify_conflict(ConflictType.OCCUPIED_TO_MAINTENANCE, ctx())

    assert NotFound('bed', 3).to_payload()['message'] == 'Bed 3 not found'
    assert IndexedError(2, 'updates.2', report.message, conflict=report).to_payload()['conflict']['error'] == \
        'OCCUPIED_TO_MAINTENANCE'
    assert 'conflict' not in IndexedError(None, 'updates', 'x').to_payload()
