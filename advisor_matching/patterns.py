"""
Interaction pattern analyzer.

Turns a match's interaction and milestone history into seven independent
pattern reports, each tagged with a ``pattern_type``. A report that lacks the
data it needs says so with ``insufficient_data`` (or ``no_quality_data``)
instead of guessing a classification.

Reports:
    frequency            - daily/weekly counts and their variance
    timing               - hour/weekday histograms and response times
    quality              - mean, trend and spread of quality scores
    response             - provider- vs client-initiated balance
    communication_style  - dominant channel and message length
    momentum             - engagement across early/middle/late periods
    milestones           - funnel progression speed and breadth

Usage:
    analyzer = PatternAnalyzer(store, cache)
    analysis = await analyzer.analyze('match-123')
    analysis.patterns['momentum']['pattern_type']
"""

import logging
import statistics
from collections import Counter, OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from django.utils import timezone

from .cache import TTLCache
from .conf import get_engine_config
from .exceptions import ValidationError
from .store import OutcomeStore

logger = logging.getLogger(__name__)

INSUFFICIENT = {'pattern_type': 'insufficient_data'}

REPORT_NAMES = [
    'frequency',
    'timing',
    'quality',
    'response',
    'communication_style',
    'momentum',
    'milestones',
]

WEEKDAY_NAMES = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']


@dataclass
class PatternAnalysis:
    match_id: str
    window_days: int
    patterns: Dict[str, dict]
    engagement_insights: dict
    analysis_confidence: float
    total_interactions: int
    total_milestones: int
    generated_at: datetime
    from_cache: bool = False

    def to_dict(self) -> dict:
        return {
            'match_id': self.match_id,
            'window_days': self.window_days,
            'patterns': self.patterns,
            'engagement_insights': self.engagement_insights,
            'analysis_confidence': self.analysis_confidence,
            'total_interactions': self.total_interactions,
            'total_milestones': self.total_milestones,
            'generated_at': self.generated_at.isoformat(),
            'from_cache': self.from_cache,
        }


# =============================================================================
# HELPERS
# =============================================================================

def _variance(values) -> float:
    values = list(values)
    return statistics.pvariance(values) if values else 0.0


def _trend(values) -> str:
    """Compare the first and second half averages; differences under 0.1 are stable."""
    values = list(values)
    if len(values) < 2:
        return 'insufficient_data'
    half = len(values) // 2
    diff = statistics.fmean(values[half:]) - statistics.fmean(values[:half])
    if abs(diff) < 0.1:
        return 'stable'
    return 'improving' if diff > 0 else 'declining'


def _peaks(counts: Dict, ratio: float = 0.8) -> list:
    if not counts:
        return []
    top = max(counts.values())
    return sorted(key for key, count in counts.items() if count >= top * ratio)


def _initiator(interaction_type: str) -> Optional[str]:
    t = (interaction_type or '').lower()
    if 'cpa_' in t or 'provider_' in t or t == 'followup':
        return 'provider'
    if 'client_' in t or t == 'inquiry':
        return 'client'
    return None


# =============================================================================
# REPORTS
# =============================================================================

def frequency_report(interactions) -> dict:
    if not interactions:
        return dict(INSUFFICIENT)

    daily = OrderedDict()
    weekly = OrderedDict()
    for i in interactions:
        day = i.occurred_at.date()
        iso = i.occurred_at.isocalendar()
        daily[day] = daily.get(day, 0) + 1
        weekly[(iso[0], iso[1])] = weekly.get((iso[0], iso[1]), 0) + 1

    daily_counts = list(daily.values())
    weekly_counts = list(weekly.values())
    avg_daily = statistics.fmean(daily_counts)
    avg_weekly = statistics.fmean(weekly_counts)
    daily_var = _variance(daily_counts)
    weekly_var = _variance(weekly_counts)

    if daily_var < 1 and avg_daily >= 1:
        pattern = 'consistent_daily'
    elif weekly_var < 2 and avg_weekly >= 3:
        pattern = 'consistent_weekly'
    elif avg_daily >= 2:
        pattern = 'high_frequency'
    elif avg_daily >= 0.5:
        pattern = 'moderate_frequency'
    else:
        pattern = 'low_frequency'

    busiest = sorted(daily.items(), key=lambda kv: (-kv[1], kv[0]))[:3]
    return {
        'pattern_type': pattern,
        'avg_daily_interactions': round(avg_daily, 2),
        'avg_weekly_interactions': round(avg_weekly, 2),
        'consistency_score': round(max(0.0, 1 - daily_var / 10), 4),
        'frequency_trend': _trend(daily_counts),
        'peak_interaction_days': [day.isoformat() for day, _ in busiest],
    }


def timing_report(interactions) -> dict:
    if not interactions:
        return dict(INSUFFICIENT)

    hours = Counter(i.occurred_at.hour for i in interactions)
    weekdays = Counter(i.occurred_at.weekday() for i in interactions)
    response_times = [i.response_time_hours for i in interactions if i.response_time_hours is not None]
    avg_response = statistics.fmean(response_times) if response_times else None
    peak_hours = _peaks(hours)

    if len(peak_hours) <= 3:
        pattern = 'focused_timing'
    elif avg_response is None:
        pattern = 'irregular'
    elif avg_response < 2:
        pattern = 'rapid_response'
    elif avg_response < 24:
        pattern = 'same_day_response'
    else:
        pattern = 'delayed_response'

    business_hours = sum(
        1 for i in interactions
        if i.occurred_at.weekday() < 5 and 9 <= i.occurred_at.hour < 17
    )
    consistency = None
    if len(response_times) > 1:
        consistency = round(max(0.0, min(1.0, 1 - _variance(response_times) / 100)), 4)

    return {
        'pattern_type': pattern,
        'peak_interaction_hours': peak_hours,
        'peak_days_of_week': [WEEKDAY_NAMES[d] for d in _peaks(weekdays)],
        'avg_response_time_hours': round(avg_response, 2) if avg_response is not None else None,
        'response_time_consistency': consistency,
        'business_hours_preference': round(business_hours / len(interactions), 4),
    }


def quality_report(interactions) -> dict:
    if not interactions:
        return dict(INSUFFICIENT)

    scores = [i.quality_score for i in interactions if i.quality_score is not None]
    if not scores:
        return {'pattern_type': 'no_quality_data'}

    avg = statistics.fmean(scores)
    trend = _trend(scores)
    consistency = 1 - _variance(scores) / 25

    if avg >= 8 and consistency >= 0.8:
        pattern = 'consistently_high'
    elif avg >= 7 and trend == 'improving':
        pattern = 'improving_quality'
    elif avg >= 6:
        pattern = 'moderate_quality'
    elif trend == 'declining':
        pattern = 'declining_quality'
    else:
        pattern = 'inconsistent_quality'

    n = len(scores)
    return {
        'pattern_type': pattern,
        'avg_quality_score': round(avg, 2),
        'quality_trend': trend,
        'quality_consistency': round(max(0.0, min(1.0, consistency)), 4),
        'quality_distribution': {
            'high': round(sum(1 for s in scores if s >= 8) / n, 4),
            'medium': round(sum(1 for s in scores if 5 <= s < 8) / n, 4),
            'low': round(sum(1 for s in scores if s < 5) / n, 4),
        },
    }


def _response_chains(interactions) -> List[int]:
    """Lengths of runs where provider and client take turns."""
    chains = []
    current = 0
    previous = None
    for i in interactions:
        who = _initiator(i.interaction_type)
        if who is None:
            if current:
                chains.append(current)
            current, previous = 0, None
            continue
        if previous is not None and who != previous:
            current += 1
        else:
            if current:
                chains.append(current)
            current = 1
        previous = who
    if current:
        chains.append(current)
    return chains


def response_report(interactions) -> dict:
    if not interactions:
        return dict(INSUFFICIENT)

    total = len(interactions)
    initiators = [_initiator(i.interaction_type) for i in interactions]
    provider_pct = initiators.count('provider') / total * 100
    client_pct = initiators.count('client') / total * 100
    chains = _response_chains(interactions)
    avg_chain = statistics.fmean(chains) if chains else 0.0

    if provider_pct > 70:
        pattern = 'cpa_driven'
    elif client_pct > 70:
        pattern = 'client_driven'
    elif avg_chain > 3:
        pattern = 'interactive_dialogue'
    elif avg_chain < 1.5:
        pattern = 'limited_interaction'
    else:
        pattern = 'balanced'

    return {
        'pattern_type': pattern,
        'cpa_initiated_percent': round(provider_pct, 2),
        'client_initiated_percent': round(client_pct, 2),
        'interaction_balance_score': round(max(0.0, 1 - abs(provider_pct - client_pct) / 100), 4),
        'response_chains': {
            'avg_chain_length': round(avg_chain, 2),
            'max_chain_length': max(chains) if chains else 0,
        },
    }


def communication_style_report(interactions) -> dict:
    if not interactions:
        return dict(INSUFFICIENT)

    channels = Counter(i.channel or 'unknown' for i in interactions)
    # most_common keeps first-seen order on ties
    preferred = channels.most_common(1)[0][0]
    lengths = [i.content_length for i in interactions if i.content_length]
    avg_length = statistics.fmean(lengths) if lengths else None

    if preferred == 'email' and avg_length is not None and avg_length > 500:
        pattern = 'formal_detailed'
    elif preferred in ('phone', 'video_call'):
        pattern = 'direct_verbal'
    elif avg_length is not None and avg_length < 200:
        pattern = 'concise_efficient'
    elif preferred == 'platform':
        pattern = 'platform_focused'
    else:
        pattern = 'mixed'

    return {
        'pattern_type': pattern,
        'preferred_channel': preferred,
        'channel_distribution': dict(channels),
        'avg_message_length': round(avg_length) if avg_length is not None else None,
        'style_consistency': round(channels[preferred] / len(interactions), 4),
    }


def _period_score(period) -> Optional[float]:
    if not period:
        return None
    return sum(i.quality_score if i.quality_score is not None else 5 for i in period) / (len(period) * 10)


def momentum_report(interactions) -> dict:
    if len(interactions) < 3:
        return dict(INSUFFICIENT)

    ordered = sorted(interactions, key=lambda i: i.occurred_at)
    size = max(3, len(ordered) // 3)
    early = _period_score(ordered[:size])
    middle = _period_score(ordered[size:size * 2])
    late = _period_score(ordered[size * 2:])

    # An empty period carries the previous period's score forward.
    middle = early if middle is None else middle
    late = middle if late is None else late

    early_to_middle = middle - early
    middle_to_late = late - middle

    if early_to_middle > 0.2 and middle_to_late > 0.1:
        pattern = 'accelerating'
    elif early_to_middle > 0.1 or middle_to_late > 0.1:
        pattern = 'building'
    elif early_to_middle < -0.2 or middle_to_late < -0.2:
        pattern = 'declining'
    elif abs(early_to_middle) < 0.1 and abs(middle_to_late) < 0.1:
        pattern = 'consistent'
    else:
        pattern = 'stable'

    return {
        'pattern_type': pattern,
        'early_period_score': round(early, 4),
        'middle_period_score': round(middle, 4),
        'late_period_score': round(late, 4),
        'momentum_direction': 'positive' if late > early else 'negative',
        'momentum_strength': round(abs(late - early), 4),
    }


def milestone_report(milestones) -> dict:
    if not milestones:
        return dict(INSUFFICIENT)

    ordered = sorted(milestones, key=lambda m: m.reached_at)
    stages = {m.funnel_stage or m.milestone_type for m in ordered}
    span_days = (ordered[-1].reached_at - ordered[0].reached_at).total_seconds() / 86400
    count = len(ordered)

    if span_days < 7 and count >= 3:
        pattern = 'rapid_progression'
    elif span_days > 30 and count < 3:
        pattern = 'slow_progression'
    elif len(stages) >= 4:
        pattern = 'comprehensive_progression'
    elif count >= 5:
        pattern = 'milestone_rich'
    else:
        pattern = 'normal'

    return {
        'pattern_type': pattern,
        'total_milestones': count,
        'unique_milestone_types': len({m.milestone_type for m in ordered}),
        'funnel_stages_reached': len(stages),
        'progression_speed_days': round(span_days, 2),
        'avg_milestone_quality': round(
            statistics.fmean(m.quality_score if m.quality_score is not None else 5 for m in ordered), 2
        ),
        'milestone_distribution': dict(Counter(m.milestone_type for m in ordered)),
    }


def analysis_confidence(interactions, milestones) -> float:
    n = len(interactions)
    confidence = 0.0
    if n >= 20:
        confidence += 0.4
    elif n >= 10:
        confidence += 0.3
    elif n >= 5:
        confidence += 0.2

    if n > 1:
        times = sorted(i.occurred_at for i in interactions)
        span = (times[-1] - times[0]).total_seconds() / 86400
        if span >= 14:
            confidence += 0.3
        elif span >= 7:
            confidence += 0.2
        elif span >= 3:
            confidence += 0.1

    if any(i.quality_score is not None for i in interactions):
        confidence += 0.2
    if milestones:
        confidence += 0.1
    return round(min(1.0, confidence), 2)


def engagement_insights(patterns: Dict[str, dict]) -> dict:
    """Engagement score, dropout risk and partnership probability from the reports."""
    frequency = patterns['frequency']
    timing = patterns['timing']
    quality = patterns['quality']
    response = patterns['response']
    momentum = patterns['momentum']
    milestones = patterns['milestones']

    components = []
    if 'consistency_score' in frequency:
        components.append(frequency['consistency_score'])
    if 'avg_quality_score' in quality:
        components.append(quality['avg_quality_score'] / 10)
    if 'interaction_balance_score' in response:
        components.append(response['interaction_balance_score'])
    if 'late_period_score' in momentum:
        components.append(momentum['late_period_score'])
    engagement = statistics.fmean(components) if components else 0.0

    risk = 1 - engagement
    if momentum['pattern_type'] == 'declining':
        risk += 0.15
    if timing['pattern_type'] == 'delayed_response':
        risk += 0.1
    if frequency['pattern_type'] == 'low_frequency':
        risk += 0.1
    risk = max(0.0, min(1.0, risk))

    stages = milestones.get('funnel_stages_reached', 0)
    probability = max(0.0, min(1.0, 0.3 + 0.5 * engagement + min(0.2, 0.05 * stages)))

    if not components:
        level = 'unknown'
    elif engagement >= 0.8:
        level = 'high'
    elif engagement >= 0.6:
        level = 'moderate'
    elif engagement >= 0.4:
        level = 'low'
    else:
        level = 'at_risk'

    strengths = []
    improvements = []
    if frequency['pattern_type'] in ('consistent_daily', 'consistent_weekly'):
        strengths.append('consistent_communication')
    if frequency['pattern_type'] == 'low_frequency':
        improvements.append('communication_frequency')
    if timing['pattern_type'] == 'rapid_response':
        strengths.append('fast_responses')
    if timing['pattern_type'] == 'delayed_response':
        improvements.append('response_time')
    if quality['pattern_type'] in ('consistently_high', 'improving_quality'):
        strengths.append('high_quality_communication')
    if quality['pattern_type'] in ('declining_quality', 'inconsistent_quality'):
        improvements.append('communication_quality')
    if response['pattern_type'] in ('interactive_dialogue', 'balanced'):
        strengths.append('two_way_dialogue')
    if response['pattern_type'] == 'cpa_driven':
        improvements.append('client_engagement')
    if response['pattern_type'] == 'client_driven':
        improvements.append('provider_follow_up')
    if momentum['pattern_type'] in ('accelerating', 'building'):
        strengths.append('growing_momentum')
    if momentum['pattern_type'] == 'declining':
        improvements.append('engagement_momentum')

    return {
        'overall_engagement_level': level,
        'engagement_score': round(engagement, 4),
        'dropout_risk': round(risk, 4),
        'partnership_probability': round(probability, 4),
        'key_strengths': strengths,
        'areas_for_improvement': improvements,
    }


def analyze_history(interactions, milestones) -> Dict[str, dict]:
    """Run all seven reports over an already-fetched history."""
    interactions = sorted(interactions, key=lambda i: i.occurred_at)
    return {
        'frequency': frequency_report(interactions),
        'timing': timing_report(interactions),
        'quality': quality_report(interactions),
        'response': response_report(interactions),
        'communication_style': communication_style_report(interactions),
        'momentum': momentum_report(interactions),
        'milestones': milestone_report(milestones),
    }


class PatternAnalyzer:
    """Fetches a match's history and memoizes its pattern analysis."""

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

    async def analyze(self, match_id: str, window_days: Optional[int] = None,
                      bypass_cache: bool = False) -> PatternAnalysis:
        if not match_id:
            raise ValidationError("match_id is required")
        window = window_days or self.config['pattern_window_days']
        key = f"patterns:{match_id}:{window}"

        if not bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return replace(cached, from_cache=True)

        since = self.clock() - timedelta(days=window)
        interactions = await self.store.get_interactions(match_id, since)
        milestones = await self.store.get_milestones(match_id, since)
        patterns = analyze_history(interactions, milestones)

        analysis = PatternAnalysis(
            match_id=match_id,
            window_days=window,
            patterns=patterns,
            engagement_insights=engagement_insights(patterns),
            analysis_confidence=analysis_confidence(interactions, milestones),
            total_interactions=len(interactions),
            total_milestones=len(milestones),
            generated_at=self.clock(),
        )
        logger.debug(
            f"Analyzed {len(interactions)} interactions for {match_id}: "
            f"momentum={patterns['momentum']['pattern_type']}"
        )
        self.cache.set(key, analysis, self.config['cache_ttl_seconds']['patterns'])
        return analysis
