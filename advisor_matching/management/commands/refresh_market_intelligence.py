"""
Rebuild the market intelligence snapshot from the last eight weeks of outcomes.

Usage:
    python manage.py refresh_market_intelligence
    python manage.py refresh_market_intelligence --json
"""

import json

from asgiref.sync import async_to_sync
from django.core.management.base import BaseCommand

from config.logging_filters import new_correlation_id
from advisor_matching.engine import MatchingEngine


class Command(BaseCommand):
    help = 'Refresh the market intelligence snapshot'

    def add_arguments(self, parser):
        parser.add_argument('--json', action='store_true', help='Print the full snapshot as JSON')

    def handle(self, *args, **options):
        new_correlation_id('market')
        engine = MatchingEngine.from_settings()
        snapshot = async_to_sync(engine.refresh_market_intelligence)()

        if options['json']:
            self.stdout.write(json.dumps(snapshot, indent=2, default=str))
            return

        health = snapshot['market_health']
        self.stdout.write(f"Season: {snapshot['current_season']} (x{snapshot['seasonal_multiplier']})")
        self.stdout.write(
            f"Success rate: {health['partnership_success_rate']}% over {health['weeks_observed']} weeks, "
            f"average revenue ${health['average_revenue']:,}"
        )
        self.stdout.write('Top provinces:')
        for province in snapshot['top_provinces']:
            self.stdout.write(f"  {province['province_code']}  {province['market_potential']:.3f}")
        self.stdout.write(self.style.SUCCESS(
            f"Market health {health['overall_score']:.3f}, momentum {health['market_momentum']}"
        ))
