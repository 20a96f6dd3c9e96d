"""
Provider performance scorer.

Scores a provider's trailing-window activity across seven weighted
dimensions against Canadian market benchmarks, assigns a tier, ranks the
provider against active peers and persists the result as the provider's
current PerformanceScoreSnapshot.

Dimensions (weight):
    partnership_success_rate  25%
    client_satisfaction       20%
    revenue_generation        15%
    response_quality          15%
    engagement_consistency    10%
    milestone_achievement     10%
    market_reputation          5%

Usage:
    scorer = PerformanceScorer(store, cache)
    report = await scorer.score('provider-42')
    report['overall_score'], report['tier_analysis']['current_tier']
"""

import logging
import statistics
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from django.utils import timezone

from .cache import TTLCache
from .conf import get_engine_config
from .exceptions import NotFoundError, ValidationError
from .signals import performance_scored
from .store import OutcomeStore

logger = logging.getLogger(__name__)


DIMENSION_WEIGHTS = {
    'partnership_success_rate': 0.25,
    'client_satisfaction': 0.20,
    'revenue_generation': 0.15,
    'response_quality': 0.15,
    'engagement_consistency': 0.10,
    'milestone_achievement': 0.10,
    'market_reputation': 0.05,
}

# Highest first: (tier, minimum overall score, title)
TIERS = [
    ('elite', 90, 'Elite Performer'),
    ('excellent', 80, 'Excellent'),
    ('good', 70, 'Good Performer'),
    ('developing', 60, 'Developing'),
    ('new', 0, 'New Member'),
]

STRENGTH_THRESHOLD = 80
IMPROVEMENT_THRESHOLD = 60


def benchmark_score(value: float, benchmark: Dict[str, float]) -> float:
    """
    Map a metric onto 0-100 where higher is better.

    At or above excellent scores 100, the good band maps to 70-100, the
    average band to 50-70 and anything below average scales linearly to 0.
    """
    excellent, good, average = benchmark['excellent'], benchmark['good'], benchmark['average']
    if value >= excellent:
        return 100.0
    if value >= good:
        return 70 + (value - good) / (excellent - good) * 30
    if value >= average:
        return 50 + (value - average) / (good - average) * 20
    return max(0.0, value / average * 50)


def response_time_score(hours: float, benchmark: Dict[str, float]) -> float:
    """Inverted benchmark: fewer hours is better."""
    excellent, good, average = benchmark['excellent'], benchmark['good'], benchmark['average']
    if hours <= excellent:
        return 100.0
    if hours <= good:
        return 70 + (good - hours) / (good - excellent) * 30
    if hours <= average:
        return 50 + (average - hours) / (average - good) * 20
    return max(0.0, 50 - (hours - average) / average * 25)


def tier_for(score: float) -> tuple:
    for index, (tier, minimum, title) in enumerate(TIERS):
        if score >= minimum:
            if index == 0:
                return tier, title, None, 0.0
            next_tier, next_min, _ = TIERS[index - 1]
            return tier, title, next_tier, round(max(0.0, next_min - score), 2)
    return TIERS[-1][0], TIERS[-1][2], TIERS[-2][0], float(TIERS[-2][1])


class PerformanceScorer:
    """Seven-dimension provider scoring with tiering and peer ranking."""

    def __init__(
        self,
        store: OutcomeStore,
        cache: Optional[TTLCache] = None,
        config: Optional[dict] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store
        self.cache = cache if cache is not None else TTLCache()
        self.config = config or get_engine_config()
        self.clock = clock

    async def score(self, provider_id: str, window_days: Optional[int] = None,
                    bypass_cache: bool = False) -> dict:
        if not provider_id:
            raise ValidationError("provider_id is required")
        window = window_days or self.config['performance_window_days']
        key = f"performance:{provider_id}:{window}"
        if not bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return {**cached, 'from_cache': True}

        now = self.clock()
        since = now - timedelta(days=window)
        profile = await self.store.get_provider_profile(provider_id)
        outcomes = await self.store.get_outcomes(since=since, provider_id=provider_id)
        if profile is None and not outcomes:
            raise NotFoundError(f"unknown provider {provider_id}", provider_id=provider_id)

        interactions = await self.store.get_provider_interactions(provider_id, since)
        milestones = await self.store.get_provider_milestones(provider_id, since)

        dimensions = self.dimension_scores(profile, outcomes, interactions, milestones)
        overall = round(sum(dimensions[name] * weight for name, weight in DIMENSION_WEIGHTS.items()), 2)
        overall = max(0.0, min(100.0, overall))

        previous = await self.store.get_performance_snapshot(provider_id)
        previous_score = previous.overall_score if previous is not None else None
        rank, total, percentile = await self._rank(provider_id, overall, since)
        tier, title, next_tier, points = tier_for(overall)

        data_quality = self.data_quality(profile, outcomes, interactions, milestones)
        confidence = min(1.0, data_quality * 0.6 + min(0.4, len(outcomes) / 20 * 0.4))

        if previous_score is None:
            change, direction = None, 'new'
        else:
            change = round(overall - previous_score, 2)
            direction = 'improving' if change > 1 else 'declining' if change < -1 else 'stable'

        report = {
            'provider_id': provider_id,
            'window_days': window,
            'dimension_scores': dimensions,
            'overall_score': overall,
            'tier_analysis': {
                'current_tier': tier,
                'tier_title': title,
                'current_rank': rank,
                'total_providers': total,
                'percentile': percentile,
                'next_tier': next_tier,
                'points_to_next_tier': points,
            },
            'strengths': [n for n, s in dimensions.items() if s >= STRENGTH_THRESHOLD],
            'improvement_areas': [n for n, s in dimensions.items() if s < IMPROVEMENT_THRESHOLD],
            'trend': {
                'previous_score': previous_score,
                'score_change': change,
                'trend_direction': direction,
            },
            'metadata': {
                'scored_at': now.isoformat(),
                'total_matches': len(outcomes),
                'total_interactions': len(interactions),
                'data_quality_score': round(data_quality, 2),
                'confidence_level': round(confidence, 4),
            },
            'from_cache': False,
        }

        await self.store.save_performance_snapshot(provider_id, {
            'dimension_scores': dimensions,
            'overall_score': overall,
            'previous_overall_score': previous_score,
            'tier': tier,
            'rank': rank,
            'percentile': percentile,
            'scored_at': now,
        })
        self.cache.set(key, report, self.config['cache_ttl_seconds']['performance'])
        logger.info(f"Scored provider {provider_id}: {overall} ({tier}, rank {rank}/{total})")

        await performance_scored.asend_robust(
            sender=self.__class__, provider_id=provider_id, report=report
        )
        return report

    def dimension_scores(self, profile, outcomes, interactions, milestones) -> Dict[str, float]:
        bench = self.config['benchmarks']

        determined = [o for o in outcomes if o.partnership_formed is not None]
        if determined:
            success_rate = sum(1 for o in determined if o.partnership_formed) / len(determined)
            success = benchmark_score(success_rate, bench['success_rate'])
        else:
            success = 0.0

        satisfaction_values = [o.client_satisfaction for o in outcomes if o.client_satisfaction is not None]
        satisfaction = (
            benchmark_score(statistics.fmean(satisfaction_values), bench['satisfaction'])
            if satisfaction_values else 50.0
        )

        revenue_values = [o.revenue_generated for o in outcomes if o.revenue_generated is not None]
        revenue = (
            benchmark_score(statistics.fmean(revenue_values), bench['revenue_per_client'])
            if revenue_values else 50.0
        )

        qualities = [i.quality_score for i in interactions if i.quality_score is not None]
        response_times = [i.response_time_hours for i in interactions if i.response_time_hours is not None]
        avg_quality = statistics.fmean(qualities) if qualities else 5.0
        avg_response = statistics.fmean(response_times) if response_times else 24.0
        response = (
            min(100.0, avg_quality / 10 * 100) * 0.6
            + response_time_score(avg_response, bench['response_hours']) * 0.4
        )

        response_sd = statistics.stdev(response_times) if len(response_times) > 1 else 12.0
        consistency = (
            max(0.0, 100 - response_sd * 2) * 0.7
            + min(100.0, len(interactions) / 20 * 100) * 0.3
        )

        milestone_quality = [m.quality_score for m in milestones if m.quality_score is not None]
        stages = {m.funnel_stage for m in milestones if m.funnel_stage}
        milestone = (
            min(100.0, len(milestones) / 10 * 100) * 0.4
            + (statistics.fmean(milestone_quality) if milestone_quality else 5.0) * 10 * 0.4
            + min(100.0, len(stages) / 5 * 100) * 0.2
        )

        years = profile.years_experience if profile is not None and profile.years_experience else 1
        reputation = min(100.0, years / 10 * 100) * 0.6 + min(100.0, len(outcomes) / 15 * 100) * 0.4

        return {
            'partnership_success_rate': round(success, 2),
            'client_satisfaction': round(satisfaction, 2),
            'revenue_generation': round(revenue, 2),
            'response_quality': round(response, 2),
            'engagement_consistency': round(consistency, 2),
            'milestone_achievement': round(milestone, 2),
            'market_reputation': round(reputation, 2),
        }

    async def _rank(self, provider_id: str, score: float, since: datetime):
        peers = set(await self.store.get_active_provider_ids(since))
        peers.discard(provider_id)
        snapshots = await self.store.get_performance_snapshots(peers)
        better = sum(1 for snap in snapshots.values() if snap.overall_score > score)
        rank = better + 1
        # Peers without a snapshot have no score to rank against yet.
        total = len(snapshots) + 1
        percentile = round((total - rank + 1) / total * 100, 2)
        return rank, total, percentile

    async def _rerank(self, scores: Dict[str, float], results: dict) -> None:
        """
        Rank each provider scored in this batch again, now that every peer
        has a fresh snapshot. Providers scored early in the batch were ranked
        before their peers had been scored.
        """
        since = self.clock() - timedelta(days=self.config['performance_window_days'])
        for provider_id, overall in scores.items():
            try:
                rank, _, percentile = await self._rank(provider_id, overall, since)
                await self.store.save_performance_snapshot(provider_id, {'rank': rank, 'percentile': percentile})
            except Exception as e:
                results['errors'].append(f"{provider_id}: re-rank failed: {e}")
                logger.exception(f"Error re-ranking provider {provider_id}")
                continue
            self.cache.invalidate(f"performance:{provider_id}:")

    @staticmethod
    def data_quality(profile, outcomes, interactions, milestones) -> float:
        score = 0.0
        if len(outcomes) >= 5:
            score += 0.3
        if len(interactions) >= 10:
            score += 0.3
        if profile is not None:
            score += 0.2
        if milestones:
            score += 0.2
        return score

    async def run_batch(self) -> dict:
        """Score every provider with outcomes in the last ``performance_active_days`` days."""
        since = self.clock() - timedelta(days=self.config['performance_active_days'])
        provider_ids = await self.store.get_active_provider_ids(
            since, limit=self.config['performance_batch_limit']
        )
        results = {'processed': 0, 'scored': 0, 'failed': 0, 'errors': []}
        scores = {}
        for provider_id in provider_ids:
            results['processed'] += 1
            try:
                report = await self.score(provider_id, bypass_cache=True)
                scores[provider_id] = report['overall_score']
                results['scored'] += 1
            except Exception as e:
                results['failed'] += 1
                results['errors'].append(f"{provider_id}: {e}")
                logger.exception(f"Error scoring provider {provider_id}")
        await self._rerank(scores, results)
        logger.info(
            f"Performance batch complete: {results['scored']}/{results['processed']} scored, "
            f"{results['failed']} failed"
        )
        return results
