"""
Engine events.

Sent with ``asend_robust`` so a failing receiver never breaks the engine
operation that emitted the event.

    outcome_recorded    match_id, outcome, created
    performance_scored  provider_id, report
    match_optimized     match_id, result, immediate_manual
"""

import logging

from django.dispatch import Signal, receiver

from config.alerting import send_alert

logger = logging.getLogger(__name__)

outcome_recorded = Signal()
performance_scored = Signal()
match_optimized = Signal()


@receiver(match_optimized, dispatch_uid='advisor_matching.alert_manual_interventions')
def alert_manual_interventions(sender, match_id, immediate_manual=None, **kwargs):
    """Page a human when a match needs an immediate intervention nobody can automate."""
    if not immediate_manual:
        return
    kinds = ', '.join(item['intervention_type'] for item in immediate_manual)
    send_alert(
        "warning",
        f"Match {match_id} needs immediate manual intervention",
        f"Interventions: {kinds}",
        source="optimizer",
        context={'match_id': match_id},
    )


@receiver(performance_scored, dispatch_uid='advisor_matching.log_performance_decline')
def log_performance_decline(sender, provider_id, report, **kwargs):
    trend = report.get('trend', {})
    if trend.get('trend_direction') == 'declining':
        logger.warning(
            f"Provider {provider_id} performance declined by {abs(trend['score_change'])} "
            f"to {report['overall_score']}"
        )
