"""
Score provider performance.

Without --provider, rescores every provider with outcomes in the active
window (the same batch the scheduler runs).

Usage:
    python manage.py score_performance
    python manage.py score_performance --provider prov-42
"""

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from config.logging_filters import new_correlation_id
from advisor_matching.engine import MatchingEngine
from advisor_matching.exceptions import EngineError


class Command(BaseCommand):
    help = 'Score provider performance and update snapshots'

    def add_arguments(self, parser):
        parser.add_argument(
            '--provider', type=str, default='',
            help='Score a single provider by provider_id',
        )

    def handle(self, *args, **options):
        new_correlation_id('performance')
        engine = MatchingEngine.from_settings()
        provider_id = options['provider']

        if provider_id:
            try:
                report = async_to_sync(engine.score_performance)(provider_id, bypass_cache=True)
            except EngineError as e:
                raise CommandError(str(e))
            tier = report['tier_analysis']
            self.stdout.write(f"Provider {provider_id}: {report['overall_score']} ({tier['tier_title']})")
            self.stdout.write(f"  Rank {tier['current_rank']} of {tier['total_providers']} "
                              f"({tier['percentile']}th percentile)")
            for name, score in report['dimension_scores'].items():
                self.stdout.write(f'  {name:<28} {score:6.1f}')
            return

        results = async_to_sync(engine.run_performance_batch)()
        for error in results['errors']:
            self.stderr.write(self.style.ERROR(f'  {error}'))
        self.stdout.write(self.style.SUCCESS(
            f"Scored {results['scored']}/{results['processed']} providers ({results['failed']} failed)"
        ))
