"""
Management command to populate the database with demo wards and beds.

Beds are created through the allocation services, so the seeded data
obeys the same capacity and numbering rules as live edits.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from allocation.models import Bed, Department, Ward
from allocation.services.wards import create_bed, create_ward
from allocation.store import DjangoResourceStore

DEPARTMENTS = [
    ('General Medicine', 'GMED'),
    ('Surgery', 'SURG'),
    ('Obstetrics', 'OBST'),
]

WARDS = [
    # (department code, name, type, capacity, floor, bed type, bed prefix)
    ('GMED', 'Medical Ward A', Ward.TYPE_GENERAL, 20, 1, Bed.TYPE_STANDARD, 'MA'),
    ('GMED', 'Intensive Care', Ward.TYPE_ICU, 8, 2, Bed.TYPE_ICU, 'ICU'),
    ('SURG', 'Surgical Ward', Ward.TYPE_SURGICAL, 16, 3, Bed.TYPE_SURGICAL, 'SW'),
    ('OBST', 'Maternity Ward', Ward.TYPE_MATERNITY, 12, 4, Bed.TYPE_MATERNITY, 'MW'),
]


class Command(BaseCommand):
    help = 'Populate database with demo departments, wards and beds'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fill', type=float, default=0.75,
            help='Fraction of each ward capacity to create beds for (0-1, default 0.75)',
        )

    def handle(self, *args, **options):
        fill = min(1.0, max(0.0, options['fill']))
        store = DjangoResourceStore()
        self.stdout.write('Seeding wards and beds...')

        with transaction.atomic():
            departments = self.create_departments()
            wards_created, beds_created = 0, 0
            for code, name, ward_type, capacity, floor, bed_type, prefix in WARDS:
                ward = Ward.objects.filter(department=departments[code], name=name).first()
                if ward is None:
                    outcome = create_ward(
                        store, department_id=departments[code].id, name=name,
                        ward_type=ward_type, capacity=capacity, floor_number=floor,
                    )
                    ward = outcome.raise_for_error()
                    wards_created += 1
                beds_created += self.create_beds(store, ward, bed_type, prefix, int(capacity * fill))

        self.stdout.write(self.style.SUCCESS(
            f'Seeded {wards_created} wards and {beds_created} beds'
        ))

    def create_departments(self):
        departments = {}
        for name, code in DEPARTMENTS:
            department, _ = Department.objects.get_or_create(code=code, defaults={'name': name})
            departments[code] = department
        return departments

    def create_beds(self, store, ward, bed_type, prefix, count):
        created = 0
        for number in range(1, count + 1):
            outcome = create_bed(store, ward_id=ward.id, bed_number=f'{prefix}-{number:02d}', bed_type=bed_type)
            if outcome.ok:
                created += 1
            elif outcome.conflict is not None:
                # already seeded, or the ward is full
                continue
            else:
                outcome.raise_for_error()
        return created
