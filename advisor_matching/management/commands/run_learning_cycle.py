"""
Run one weight-learning cycle against the recorded match outcomes.

Usage:
    python manage.py run_learning_cycle
    python manage.py run_learning_cycle --force      # learn even below the minimum sample size
    python manage.py run_learning_cycle --json       # print the full report
"""

import json

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from config.logging_filters import new_correlation_id
from advisor_matching.engine import MatchingEngine


class Command(BaseCommand):
    help = 'Learn new factor weights from recorded match outcomes'

    def add_arguments(self, parser):
        parser.add_argument(
            '--force', action='store_true',
            help='Run even when fewer outcomes than min_sample_size are available',
        )
        parser.add_argument(
            '--json', action='store_true',
            help='Print the full learning report as JSON',
        )

    def handle(self, *args, **options):
        new_correlation_id('learning')
        engine = MatchingEngine.from_settings()
        report = async_to_sync(engine.run_learning_cycle)(force=options['force'])

        if options['json']:
            self.stdout.write(json.dumps(report.to_dict(), indent=2, default=str))

        if report.status == 'failed':
            raise CommandError(f'Learning cycle failed: {report.error}')
        if report.status == 'insufficient_data':
            self.stdout.write(self.style.WARNING(
                f'Insufficient data: {report.sample_size} outcomes, '
                f'{report.required_sample} required. Use --force to learn anyway.'
            ))
            return
        if report.status == 'skipped':
            self.stdout.write(self.style.WARNING('Another learning cycle is already running'))
            return

        self.stdout.write(f'Sample size: {report.sample_size}')
        for update in report.updates:
            marker = '*' if update.get('applied') else ' '
            self.stdout.write(
                f"  {marker} {update['factor_name']:<24} "
                f"{update['old_weight']:.4f} -> {update['new_weight']:.4f}"
            )
        self.stdout.write(self.style.SUCCESS(
            f'Learning cycle complete: {report.updates_applied} weights updated'
        ))
