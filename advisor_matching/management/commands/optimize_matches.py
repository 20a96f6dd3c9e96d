"""
Run the proactive optimizer.

Without --match, optimizes every undetermined match whose prediction is in
the actionable probability range.

Usage:
    python manage.py optimize_matches
    python manage.py optimize_matches --match m-1001
    python manage.py optimize_matches --match m-1001 --refresh   # recompute the prediction first
"""

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand, CommandError

from config.logging_filters import new_correlation_id
from advisor_matching.engine import MatchingEngine
from advisor_matching.exceptions import EngineError


class Command(BaseCommand):
    help = 'Detect optimization opportunities and execute automatable interventions'

    def add_arguments(self, parser):
        parser.add_argument(
            '--match', type=str, default='',
            help='Optimize a single match by match_id',
        )
        parser.add_argument(
            '--refresh', action='store_true',
            help='Recompute the engagement prediction before optimizing (with --match)',
        )

    def handle(self, *args, **options):
        new_correlation_id('optimization')
        engine = MatchingEngine.from_settings()
        match_id = options['match']

        if match_id:
            try:
                if options['refresh']:
                    async_to_sync(engine.refresh_prediction)(match_id)
                result = async_to_sync(engine.optimize)(match_id, force=True)
            except EngineError as e:
                raise CommandError(str(e))
            meta = result['optimization_metadata']
            self.stdout.write(
                f"Match {match_id}: {meta['opportunities_identified']} opportunities, "
                f"priority {meta['priority_level']}"
            )
            for opp in result['optimization_opportunities']:
                self.stdout.write(f"  {opp['type']:<24} potential {opp['improvement_potential']:.2f}")
            for item in result['executed_interventions']:
                self.stdout.write(self.style.SUCCESS(f"  executed {item['intervention_type']}"))
            return

        results = async_to_sync(engine.run_optimization_batch)()
        for error in results['errors']:
            self.stderr.write(self.style.ERROR(f'  {error}'))
        self.stdout.write(f"Refreshed {results['predictions_refreshed']} stale predictions")
        self.stdout.write(self.style.SUCCESS(
            f"Optimized {results['optimized']}/{results['processed']} matches, "
            f"{results['interventions_executed']} interventions executed"
        ))
