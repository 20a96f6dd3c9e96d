"""
Run the engine's periodic cycles in-process.

Starts the learning, performance, optimization and market loops and runs
until interrupted. With --once, runs each cycle a single time and exits,
which suits an external cron.

Usage:
    python manage.py run_engine_scheduler
    python manage.py run_engine_scheduler --run-immediately
    python manage.py run_engine_scheduler --once
"""

import asyncio
import logging
import signal

from django.core.management.base import BaseCommand

from advisor_matching.engine import MatchingEngine
from advisor_matching.scheduler import EngineScheduler

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Run the periodic engine cycles (learning, performance, optimization, market)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--once', action='store_true',
            help='Run every cycle once and exit',
        )
        parser.add_argument(
            '--run-immediately', action='store_true',
            help='Fire each loop on start instead of waiting one interval',
        )

    def handle(self, *args, **options):
        engine = MatchingEngine.from_settings()
        scheduler = EngineScheduler(engine, config=engine.config)

        if options['once']:
            results = asyncio.run(scheduler.run_once())
            failed = [name for name, result in results.items() if result is None]
            for name, item in scheduler.status().items():
                self.stdout.write(f"  {name:<14} runs={item['runs']} failures={item['consecutive_failures']}")
            if failed:
                self.stderr.write(self.style.ERROR(f"Failed cycles: {', '.join(failed)}"))
            else:
                self.stdout.write(self.style.SUCCESS('All cycles completed'))
            return

        asyncio.run(self._serve(scheduler, options['run_immediately']))

    async def _serve(self, scheduler, run_immediately):
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        scheduler.start(run_immediately=run_immediately)
        self.stdout.write(self.style.SUCCESS('Engine scheduler running. Ctrl-C to stop.'))
        await stop.wait()

        logger.info("Shutting down engine scheduler")
        await scheduler.stop()
        self.stdout.write('Engine scheduler stopped')
