import pytest

from allocation.models import Bed, Department, Ward
from allocation.store import DjangoResourceStore


@pytest.fixture
def store():
    return DjangoResourceStore()


@pytest.fixture
def department(db):
    return Department.objects.create(name='General Medicine', code='GMED')


@pytest.fixture
def make_ward(department):
    def make(name='Ward W', capacity=5, **extra):
        return Ward.objects.create(department=department, name=name, capacity=capacity, **extra)
    return make


@pytest.fixture
def make_bed():
    def make(ward, bed_number, status=Bed.STATUS_AVAILABLE, **extra):
        return Bed.objects.create(ward=ward, bed_number=bed_number, status=status, **extra)
    return make


@pytest.fixture
def full_ward(make_ward, make_bed):
    """Ward W with capacity 5 and 5 active beds."""
    ward = make_ward(capacity=5)
    for n in range(1, 6):
        make_bed(ward, f'W{n}')
    return ward
