from datetime import date

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from apps.core.academics.models import AcademyClass
from apps.core.academics.services import active_roster_student_ids
from apps.core.tuition.services import (
    compute_auto_start_date,
    generate_session_dates,
    save_tuition_fees_with_sessions,
)


class Command(BaseCommand):
    help = 'Generates a billing period for a class and creates tuition fees with sessions for its students.'

    def add_arguments(self, parser):
        parser.add_argument('class_id', type=int)
        parser.add_argument('--start', type=date.fromisoformat, help='Period start date (YYYY-MM-DD).')
        parser.add_argument('--year', type=int, help='Billing year, used to derive the start date.')
        parser.add_argument('--month', type=int, help='Billing month, used to derive the start date.')
        parser.add_argument('--count', type=int, help='Target billable sessions (defaults to class setting or 8).')
        parser.add_argument('--students', type=int, nargs='+', help='Student ids (defaults to the class roster).')
        parser.add_argument('--align', action='store_true', help='Align the end date with same-weekday classes.')
        parser.add_argument('--dry-run', action='store_true', help='Print the plan without saving.')

    def handle(self, *args, **options):
        academy_class = AcademyClass.objects.select_related('academy').filter(pk=options['class_id']).first()
        if not academy_class:
            raise CommandError(f"Class {options['class_id']} does not exist.")

        start_date = options['start']
        if start_date is None:
            if not (options['year'] and options['month']):
                raise CommandError('Provide --start or both --year and --month.')
            start_date = compute_auto_start_date(
                academy_class=academy_class,
                billing_year=options['year'],
                billing_month=options['month'],
            )['start_date']

        target = options['count'] or academy_class.sessions_per_month or 8

        try:
            result = generate_session_dates(
                academy_class=academy_class,
                period_start_date=start_date,
                target_session_count=target,
                align_end_date=options['align'],
            )
        except ValidationError as exc:
            raise CommandError('; '.join(exc.messages)) from exc

        for entry in result.sessions:
            label = entry.status
            if entry.closure_reason:
                label = f'{label} ({entry.closure_reason})'
            self.stdout.write(f'{entry.date.isoformat()} {entry.day_of_week:<9} {label}')

        self.stdout.write(
            f'Period {start_date} - {result.period_end_date}: '
            f'{result.billable_count} billable, {result.closure_days} closed, '
            f'{result.per_session_fee} per session, {result.calculated_amount} total'
        )

        if options['dry_run']:
            return

        student_ids = options['students'] or active_roster_student_ids(academy_class)
        if not student_ids:
            self.stdout.write(self.style.WARNING('No students to bill.'))
            return

        try:
            summary = save_tuition_fees_with_sessions(
                academy_class=academy_class,
                student_ids=student_ids,
                result=result,
                period_start_date=start_date,
            )
        except ValidationError as exc:
            raise CommandError('; '.join(exc.messages)) from exc

        self.stdout.write(
            self.style.SUCCESS(f"Tuition created: {summary['created']}, skipped: {summary['skipped']}")
        )
