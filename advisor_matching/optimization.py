"""
Proactive match optimizer.

Gathers everything known about an undetermined match (its engagement
prediction, interaction patterns and revenue forecast), detects
improvement opportunities from a fixed rule table, ranks them and turns
each into an intervention. Immediate interventions that can be automated
are executed and audited as AutomatedIntervention rows; everything else is
returned as a recommendation.

Usage:
    optimizer = ProactiveOptimizer(store, analyzer, forecaster, cache)
    result = await optimizer.optimize('match-123')
    result['strategic_interventions']['immediate_manual']
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from django.utils import timezone

from .cache import TTLCache
from .conf import get_engine_config
from .exceptions import NotFoundError, ValidationError
from .forecasting import RevenueForecaster
from .patterns import PatternAnalyzer
from .signals import match_optimized
from .store import OutcomeStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpportunityRule:
    category: str
    title: str
    description: str
    impact: float
    feasibility: float
    potential: float


# =============================================================================
# RULE TABLES
# =============================================================================

IDEAL_RESPONSE_HOURS = 6
OPTIMAL_WEEKLY_INTERACTIONS = 2.5
QUALITY_THRESHOLD = 7.5
ENGAGEMENT_THRESHOLD = 0.7
REVENUE_THRESHOLD = 40000
RISK_THRESHOLD = 0.3
BUSINESS_HOURS_THRESHOLD = 0.7
MIN_SERVICE_LINES = 3

OPPORTUNITY_RULES = {
    'communication_timing': OpportunityRule(
        'efficiency', 'Optimize Response Time',
        'Current response time exceeds the optimal threshold', 0.8, 0.9, 0.15),
    'communication_frequency': OpportunityRule(
        'engagement', 'Increase Interaction Frequency',
        'More frequent communication correlates with higher success rates', 0.7, 0.8, 0.12),
    'communication_quality': OpportunityRule(
        'professionalism', 'Enhance Communication Quality',
        'Better interaction quality increases partnership probability', 0.9, 0.7, 0.20),
    'engagement_enhancement': OpportunityRule(
        'relationship', 'Boost Engagement Level',
        'Current engagement is below the level typical of successful matches', 0.85, 0.75, 0.18),
    'engagement_momentum': OpportunityRule(
        'relationship', 'Reverse Engagement Decline',
        'Engagement momentum is declining', 0.9, 0.6, 0.25),
    'revenue_maximization': OpportunityRule(
        'financial', 'Increase Revenue Potential',
        'Expanded service offerings could raise projected revenue', 0.95, 0.8, 0.30),
    'service_diversification': OpportunityRule(
        'financial', 'Diversify Service Offerings',
        'A broader service portfolio reduces risk and increases revenue', 0.8, 0.7, 0.25),
    'risk_mitigation': OpportunityRule(
        'stability', 'Reduce Dropout Risk',
        'High dropout risk detected', 0.9, 0.8, 0.35),
    'timing_optimization': OpportunityRule(
        'efficiency', 'Optimize Communication Timing',
        'Most interactions happen outside business hours', 0.6, 0.9, 0.10),
}

INTERVENTION_TYPES = {
    'communication_timing': 'automated_reminder',
    'communication_frequency': 'engagement_boost',
    'communication_quality': 'coaching_suggestion',
    'engagement_enhancement': 'relationship_building',
    'engagement_momentum': 'urgent_intervention',
    'revenue_maximization': 'upselling_opportunity',
    'service_diversification': 'expansion_suggestion',
    'risk_mitigation': 'retention_action',
    'timing_optimization': 'schedule_optimization',
}

AUTOMATABLE = frozenset({
    'communication_timing',
    'communication_frequency',
    'timing_optimization',
    'engagement_enhancement',
    'revenue_maximization',
})

INTERVENTION_ACTIONS = {
    'communication_timing': [
        'Send automated reminder for faster responses',
        'Suggest optimal communication windows',
        'Provide response time benchmarks',
    ],
    'communication_frequency': [
        'Schedule a regular check-in cadence',
        'Send engagement suggestions',
    ],
    'communication_quality': [
        'Share communication best practices',
        'Review recent interactions with the provider',
    ],
    'engagement_enhancement': [
        'Suggest personalized engagement strategies',
        'Recommend value-add interactions',
        'Provide conversation starters',
    ],
    'engagement_momentum': [
        'Contact the provider about the engagement decline',
        'Identify blockers with the client',
    ],
    'revenue_maximization': [
        'Present additional service opportunities',
        'Share industry benchmarks and trends',
        'Suggest premium service upgrades',
    ],
    'service_diversification': [
        'Review the client for unmet service needs',
        'Propose a bundled service package',
    ],
    'risk_mitigation': [
        'Schedule urgent check-in call',
        'Address identified concerns',
        'Provide reassurance and support',
    ],
    'timing_optimization': [
        'Suggest business-hours meeting slots',
        'Adjust reminder schedules to business hours',
    ],
}

PERFORMANCE_CATEGORIES = [
    ('excellent', 0.85),
    ('good', 0.7),
    ('moderate', 0.55),
]

URGENCY_GROUPS = ('immediate_automated', 'immediate_manual', 'short_term', 'long_term')


# =============================================================================
# PURE HELPERS
# =============================================================================

def opportunity(kind: str, current: Optional[float] = None, target: Optional[float] = None) -> dict:
    rule = OPPORTUNITY_RULES[kind]
    return {
        'type': kind,
        'category': rule.category,
        'title': rule.title,
        'description': rule.description,
        'impact_score': rule.impact,
        'feasibility_score': rule.feasibility,
        'improvement_potential': rule.potential,
        'current_value': current,
        'target_value': target,
    }


def detect_opportunities(patterns: Dict[str, dict], engagement: float, dropout_risk: float,
                         annual_revenue: float, service_lines: int) -> List[dict]:
    """Apply the opportunity rule table to a match's current state."""
    found = []
    timing = patterns.get('timing', {})
    frequency = patterns.get('frequency', {})
    quality = patterns.get('quality', {})
    momentum = patterns.get('momentum', {})

    response_hours = timing.get('avg_response_time_hours')
    if response_hours is not None and response_hours > IDEAL_RESPONSE_HOURS:
        found.append(opportunity('communication_timing', response_hours, IDEAL_RESPONSE_HOURS))

    daily = frequency.get('avg_daily_interactions')
    if daily is not None and daily * 7 < OPTIMAL_WEEKLY_INTERACTIONS:
        found.append(opportunity('communication_frequency', round(daily * 7, 2), OPTIMAL_WEEKLY_INTERACTIONS))

    avg_quality = quality.get('avg_quality_score')
    if avg_quality is not None and avg_quality < QUALITY_THRESHOLD:
        found.append(opportunity('communication_quality', avg_quality, QUALITY_THRESHOLD))

    if engagement < ENGAGEMENT_THRESHOLD:
        found.append(opportunity('engagement_enhancement', engagement, ENGAGEMENT_THRESHOLD))

    if momentum.get('pattern_type') == 'declining':
        found.append(opportunity('engagement_momentum'))

    if annual_revenue < REVENUE_THRESHOLD:
        found.append(opportunity('revenue_maximization', annual_revenue, REVENUE_THRESHOLD * 1.2))

    if service_lines < MIN_SERVICE_LINES:
        found.append(opportunity('service_diversification', service_lines, MIN_SERVICE_LINES))

    if dropout_risk > RISK_THRESHOLD:
        found.append(opportunity('risk_mitigation', dropout_risk, round(RISK_THRESHOLD * 0.7, 4)))

    business_hours = timing.get('business_hours_preference')
    if business_hours is not None and business_hours < BUSINESS_HOURS_THRESHOLD:
        found.append(opportunity('timing_optimization', business_hours, BUSINESS_HOURS_THRESHOLD))

    return prioritize(found)


def prioritize(opportunities: List[dict]) -> List[dict]:
    for opp in opportunities:
        potential = opp.get('improvement_potential') or 0.1
        opp['priority_score'] = round(
            (opp['impact_score'] * 0.6 + opp['feasibility_score'] * 0.4) * potential, 4
        )
    return sorted(opportunities, key=lambda o: o['priority_score'], reverse=True)


def urgency_for(opp: dict) -> str:
    current, target = opp.get('current_value'), opp.get('target_value')
    if opp['impact_score'] > 0.8 and current is not None and target:
        gap = abs(target - current) / target
        if gap > 0.5:
            return 'immediate'
        if gap > 0.3:
            return 'short_term'
    return 'long_term'


def build_intervention(opp: dict) -> dict:
    kind = opp['type']
    return {
        'opportunity_type': kind,
        'intervention_type': INTERVENTION_TYPES.get(kind, 'general_improvement'),
        'urgency': urgency_for(opp),
        'can_automate': kind in AUTOMATABLE,
        'expected_impact': opp.get('improvement_potential'),
        'implementation_effort': 'low' if opp['feasibility_score'] > 0.8 else 'medium',
        'actions': list(INTERVENTION_ACTIONS.get(kind, [])),
    }


def group_interventions(interventions: List[dict]) -> Dict[str, List[dict]]:
    groups = {name: [] for name in URGENCY_GROUPS}
    for item in interventions:
        if item['urgency'] == 'immediate':
            groups['immediate_automated' if item['can_automate'] else 'immediate_manual'].append(item)
        else:
            groups[item['urgency']].append(item)
    return groups


def match_performance(probability: float, engagement: float, annual_revenue: float,
                      avg_quality: Optional[float]) -> dict:
    revenue_score = min(1.0, annual_revenue / 100000)
    interaction_score = avg_quality / 10 if avg_quality is not None else 0.5
    overall = probability * 0.3 + engagement * 0.25 + revenue_score * 0.25 + interaction_score * 0.2

    category = 'underperforming'
    for name, threshold in PERFORMANCE_CATEGORIES:
        if overall >= threshold:
            category = name
            break

    return {
        'overall_performance': round(overall, 2),
        'performance_category': category,
        'component_scores': {
            'partnership_probability': probability,
            'engagement_level': engagement,
            'revenue_potential': round(revenue_score, 4),
            'interaction_quality': round(interaction_score, 4),
        },
        'improvement_potential': round(1 - overall, 4),
    }


# =============================================================================
# OPTIMIZER
# =============================================================================

class ProactiveOptimizer:

    def __init__(
        self,
        store: OutcomeStore,
        analyzer: PatternAnalyzer,
        forecaster: RevenueForecaster,
        cache: Optional[TTLCache] = None,
        config: Optional[dict] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store
        self.analyzer = analyzer
        self.forecaster = forecaster
        self.cache = cache if cache is not None else TTLCache()
        self.config = config or get_engine_config()
        self.clock = clock

    async def optimize(self, match_id: str, force: bool = False) -> dict:
        if not match_id:
            raise ValidationError("match_id is required")
        key = f"optimization:{match_id}"
        if not force:
            cached = self.cache.get(key)
            if cached is not None:
                return {**cached, 'from_cache': True}

        outcome = await self.store.get_outcome(match_id)
        if outcome is None:
            raise NotFoundError(f"unknown match {match_id}", match_id=match_id)

        analysis = await self.analyzer.analyze(match_id, bypass_cache=force)
        forecast = await self.forecaster.forecast(match_id, bypass_cache=force)
        prediction = await self.store.get_prediction(match_id)
        if prediction is not None and prediction.last_updated < self._recent_cutoff():
            logger.debug(f"Ignoring stale prediction for {match_id} from {prediction.last_updated}")
            prediction = None

        insights = analysis.engagement_insights
        if prediction is not None:
            engagement = prediction.engagement_score
            dropout_risk = prediction.dropout_risk
            probability = prediction.partnership_probability
        else:
            engagement = insights['engagement_score']
            dropout_risk = insights['dropout_risk']
            probability = insights['partnership_probability']

        annual_revenue = forecast['base_projections']['probability_adjusted']['annual_total']
        service_lines = len(forecast['base_projections']['service_breakdown'])
        avg_quality = analysis.patterns['quality'].get('avg_quality_score')

        opportunities = detect_opportunities(
            analysis.patterns, engagement, dropout_risk, annual_revenue, service_lines
        )
        interventions = [build_intervention(opp) for opp in opportunities]
        groups = group_interventions(interventions)
        executed = await self._execute(match_id, groups['immediate_automated'])

        if groups['immediate_automated'] or groups['immediate_manual']:
            priority_level = 'high'
        elif opportunities:
            priority_level = 'medium'
        else:
            priority_level = 'low'

        result = {
            'match_id': match_id,
            'match_intelligence': {
                'provider_id': outcome.provider_id,
                'client_id': outcome.client_id,
                'partnership_probability': probability,
                'engagement_score': engagement,
                'dropout_risk': dropout_risk,
                'projected_annual_revenue': annual_revenue,
                'momentum': analysis.patterns['momentum']['pattern_type'],
            },
            'performance_analysis': match_performance(probability, engagement, annual_revenue, avg_quality),
            'optimization_opportunities': opportunities,
            'strategic_interventions': groups,
            'executed_interventions': executed,
            'optimization_metadata': {
                'generated_at': self.clock().isoformat(),
                'opportunities_identified': len(opportunities),
                'priority_level': priority_level,
                'analysis_confidence': analysis.analysis_confidence,
            },
            'from_cache': False,
        }
        self.cache.set(key, result, self.config['cache_ttl_seconds']['optimization'])
        logger.info(
            f"Optimized {match_id}: {len(opportunities)} opportunities, "
            f"{len(executed)} executed, priority {priority_level}"
        )

        await match_optimized.asend_robust(
            sender=self.__class__,
            match_id=match_id,
            result=result,
            immediate_manual=groups['immediate_manual'],
        )
        return result

    async def _execute(self, match_id: str, interventions: List[dict]) -> List[dict]:
        executed = []
        for item in interventions:
            executed_at = self.clock()
            await self.store.record_intervention({
                'match_id': match_id,
                'opportunity_type': item['opportunity_type'],
                'intervention_type': item['intervention_type'],
                'actions': item['actions'],
                'executed_at': executed_at,
            })
            executed.append({**item, 'executed_at': executed_at.isoformat()})
            logger.info(f"Executed {item['intervention_type']} for {match_id}")
        return executed

    def _recent_cutoff(self) -> datetime:
        return self.clock() - timedelta(days=self.config['optimization_recent_days'])

    async def refresh_prediction(self, match_id: str):
        """Recompute and persist the EngagementPrediction for a match."""
        if not match_id:
            raise ValidationError("match_id is required")
        if await self.store.get_outcome(match_id) is None:
            raise NotFoundError(f"unknown match {match_id}", match_id=match_id)
        analysis = await self.analyzer.analyze(match_id, bypass_cache=True)
        insights = analysis.engagement_insights
        fields = {
            'engagement_score': insights['engagement_score'],
            'partnership_probability': insights['partnership_probability'],
            'dropout_risk': insights['dropout_risk'],
            'last_updated': self.clock(),
        }
        await self.store.save_prediction(match_id, fields)
        forecast = await self.forecaster.forecast(match_id, bypass_cache=True)
        fields['estimated_revenue'] = forecast['base_projections']['probability_adjusted']['annual_total']
        prediction = await self.store.save_prediction(match_id, fields)
        self.cache.discard(f"optimization:{match_id}")
        logger.info(
            f"Prediction for {match_id}: p={fields['partnership_probability']} "
            f"risk={fields['dropout_risk']} revenue={fields['estimated_revenue']}"
        )
        return prediction

    async def refresh_stale_predictions(self, results: dict) -> None:
        """Recompute predictions for undetermined matches with events newer than their prediction."""
        match_ids = await self.store.get_stale_prediction_match_ids(
            active_since=self._recent_cutoff(),
            limit=self.config['optimization_batch_limit'],
        )
        for match_id in match_ids:
            try:
                await self.refresh_prediction(match_id)
                results['predictions_refreshed'] += 1
            except Exception as e:
                results['errors'].append(f"{match_id}: prediction refresh failed: {e}")
                logger.exception(f"Error refreshing prediction for {match_id}")

    async def run_batch(self) -> dict:
        """
        Refresh stale predictions, then optimize undetermined matches whose
        prediction is in the actionable range.
        """
        results = {
            'predictions_refreshed': 0, 'processed': 0, 'optimized': 0, 'failed': 0,
            'interventions_executed': 0, 'errors': [],
        }
        await self.refresh_stale_predictions(results)
        candidates = await self.store.get_optimization_candidates(
            min_probability=self.config['optimization_min_probability'],
            max_probability=self.config['optimization_max_probability'],
            updated_since=self._recent_cutoff(),
            limit=self.config['optimization_batch_limit'],
        )
        for candidate in candidates:
            results['processed'] += 1
            try:
                result = await self.optimize(candidate.match_id, force=True)
                results['optimized'] += 1
                results['interventions_executed'] += len(result['executed_interventions'])
            except Exception as e:
                results['failed'] += 1
                results['errors'].append(f"{candidate.match_id}: {e}")
                logger.exception(f"Error optimizing match {candidate.match_id}")
        logger.info(
            f"Optimization batch complete: {results['predictions_refreshed']} predictions refreshed, "
            f"{results['optimized']}/{results['processed']} optimized, "
            f"{results['interventions_executed']} interventions executed"
        )
        return results
