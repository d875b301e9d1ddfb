import random
from datetime import time
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from faker import Faker

from apps.core.academics.models import AcademyClass, ClassEnrollment, ClassSchedule, Student, Teacher
from apps.core.academies.models import Academy


SCHEDULE_PATTERNS = [
    ('monday', 'wednesday'),
    ('tuesday', 'thursday'),
    ('monday', 'wednesday', 'friday'),
    ('saturday',),
]


class Command(BaseCommand):
    help = 'Seeds the database with a demo academy, classes, schedules and students.'

    def add_arguments(self, parser):
        parser.add_argument('--classes', type=int, default=4)
        parser.add_argument('--students', type=int, default=10, help='Students per class.')
        parser.add_argument('--seed', type=int, default=None, help='Random seed for reproducible data.')

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding academy...')

        fake = Faker()
        if options['seed'] is not None:
            Faker.seed(options['seed'])
            random.seed(options['seed'])

        academy, created = Academy.objects.get_or_create(
            name=fake.company() + ' Academy',
            defaults={'phone': fake.phone_number()[:20]},
        )
        if created:
            self.stdout.write(self.style.SUCCESS(f'Successfully created academy: {academy.name}'))

        teachers = [
            Teacher.objects.create(academy=academy, name=fake.name())
            for _ in range(max(1, options['classes'] // 2))
        ]

        for index in range(1, options['classes'] + 1):
            academy_class, created = AcademyClass.objects.get_or_create(
                academy=academy,
                name=f'Class {index}',
                defaults={
                    'teacher': random.choice(teachers),
                    'monthly_fee': Decimal(random.choice([160000, 200000, 240000])),
                    'sessions_per_month': 8,
                },
            )
            if not created:
                continue
            self.stdout.write(self.style.SUCCESS(f'Successfully created class: {academy_class.name}'))

            start_hour = 14 + index % 6
            for day in SCHEDULE_PATTERNS[(index - 1) % len(SCHEDULE_PATTERNS)]:
                ClassSchedule.objects.create(
                    academy_class=academy_class,
                    day_of_week=day,
                    start_time=time(start_hour, 0),
                    end_time=time(start_hour + 1, 30),
                )

            for _ in range(options['students']):
                student = Student.objects.create(academy=academy, name=fake.name())
                ClassEnrollment.objects.create(academy_class=academy_class, student=student)

        self.stdout.write(self.style.SUCCESS('Academy seeding complete!'))
