"""
Canadian market intelligence.

Static provincial and industry reference data, plus a platform health
snapshot rebuilt from the last eight weeks of match outcomes. The industry
opportunity score feeds the recommendation engine's market-trend
adjustment.

Usage:
    market = MarketIntelligence(store, cache)
    market.industry_opportunity('technology')   # 1.0
    snapshot = await market.refresh_snapshot()
    snapshot['market_health']['market_momentum']
"""

import logging
import statistics
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from django.utils import timezone

from .cache import TTLCache
from .conf import get_engine_config
from .forecasting import season_for, SEASONAL_MULTIPLIERS
from .store import OutcomeStore

logger = logging.getLogger(__name__)


PROVINCES = {
    'ON': {'name': 'Ontario', 'population': 14734014, 'gdp': 857384, 'demand': 'very_high'},
    'QC': {'name': 'Quebec', 'population': 8501833, 'gdp': 439375, 'demand': 'high'},
    'BC': {'name': 'British Columbia', 'population': 5145851, 'gdp': 295401, 'demand': 'very_high'},
    'AB': {'name': 'Alberta', 'population': 4428112, 'gdp': 344812, 'demand': 'high'},
    'MB': {'name': 'Manitoba', 'population': 1379584, 'gdp': 72688, 'demand': 'medium'},
    'SK': {'name': 'Saskatchewan', 'population': 1196445, 'gdp': 80679, 'demand': 'medium'},
    'NS': {'name': 'Nova Scotia', 'population': 992055, 'gdp': 44354, 'demand': 'medium'},
    'NB': {'name': 'New Brunswick', 'population': 789225, 'gdp': 36966, 'demand': 'medium'},
    'NL': {'name': 'Newfoundland and Labrador', 'population': 520553, 'gdp': 33241, 'demand': 'low'},
    'PE': {'name': 'Prince Edward Island', 'population': 164318, 'gdp': 6994, 'demand': 'low'},
    'NT': {'name': 'Northwest Territories', 'population': 45504, 'gdp': 4730, 'demand': 'medium'},
    'YT': {'name': 'Yukon', 'population': 42986, 'gdp': 3046, 'demand': 'medium'},
    'NU': {'name': 'Nunavut', 'population': 39353, 'gdp': 3421, 'demand': 'low'},
}

INDUSTRIES = {
    'technology': {'growth_rate': 0.15, 'demand': 'very_high', 'complexity': 'high'},
    'manufacturing': {'growth_rate': 0.03, 'demand': 'high', 'complexity': 'medium'},
    'healthcare': {'growth_rate': 0.08, 'demand': 'medium', 'complexity': 'medium'},
    'retail': {'growth_rate': 0.02, 'demand': 'high', 'complexity': 'medium'},
    'real_estate': {'growth_rate': 0.06, 'demand': 'very_high', 'complexity': 'high'},
    'finance': {'growth_rate': 0.04, 'demand': 'very_high', 'complexity': 'very_high'},
    'agriculture': {'growth_rate': 0.01, 'demand': 'medium', 'complexity': 'medium'},
    'energy': {'growth_rate': 0.02, 'demand': 'high', 'complexity': 'very_high'},
    'professional_services': {'growth_rate': 0.07, 'demand': 'medium', 'complexity': 'medium'},
}

DEMAND_SCORES = {'very_high': 1.0, 'high': 0.8, 'medium': 0.6, 'low': 0.4}
DEFAULT_DEMAND_SCORE = 0.5

SNAPSHOT_WEEKS = 8
MOMENTUM_THRESHOLD = 0.02
SNAPSHOT_CACHE_KEY = 'market:snapshot'


def demand_score(level: str) -> float:
    return DEMAND_SCORES.get(level, DEFAULT_DEMAND_SCORE)


def normalize_industry(industry: Optional[str]) -> str:
    return (industry or '').strip().lower().replace(' ', '_').replace('-', '_')


def industry_opportunity(industry: Optional[str]) -> Optional[float]:
    """Opportunity score for a known industry, None when the industry is not tracked."""
    data = INDUSTRIES.get(normalize_industry(industry))
    if data is None:
        return None
    bonus = 0.1 if data['complexity'] == 'high' else 0.0
    return round(min(1.0, data['growth_rate'] * 10) * 0.5 + demand_score(data['demand']) * 0.4 + bonus, 4)


def province_potential(code: Optional[str]) -> Optional[float]:
    data = PROVINCES.get((code or '').upper())
    if data is None:
        return None
    return round(
        min(1.0, data['population'] / 15_000_000) * 0.4
        + min(1.0, data['gdp'] / 900_000) * 0.3
        + demand_score(data['demand']) * 0.3,
        4,
    )


def market_health(success_rate: float, revenue: float, momentum: float) -> float:
    return min(1.0, max(0.0, success_rate * 0.5 + revenue / 50000 * 0.3 + (momentum + 0.1) * 0.2))


def momentum_label(momentum: float) -> str:
    if momentum > MOMENTUM_THRESHOLD:
        return 'accelerating'
    if momentum < -MOMENTUM_THRESHOLD:
        return 'decelerating'
    return 'stable'


def weekly_trends(outcomes, now: datetime, weeks: int = SNAPSHOT_WEEKS) -> List[dict]:
    """Per-week totals, most recent week first. Weeks without matches are omitted."""
    buckets: Dict[int, list] = {}
    for outcome in outcomes:
        age = (now - outcome.created_at).days // 7
        if 0 <= age < weeks:
            buckets.setdefault(age, []).append(outcome)

    trends = []
    for age in sorted(buckets):
        rows = buckets[age]
        revenues = [o.revenue_generated for o in rows if o.revenue_generated is not None]
        trends.append({
            'weeks_ago': age,
            'total_matches': len(rows),
            'successful_partnerships': sum(1 for o in rows if o.partnership_formed),
            'success_rate': sum(1 for o in rows if o.partnership_formed) / len(rows),
            'avg_revenue': statistics.fmean(revenues) if revenues else 0.0,
        })
    return trends


class MarketIntelligence:

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

    industry_opportunity = staticmethod(industry_opportunity)
    province_potential = staticmethod(province_potential)

    def geographic_analysis(self) -> List[dict]:
        provinces = [
            {
                'province_code': code,
                'province_name': data['name'],
                'demand_level': data['demand'],
                'population': data['population'],
                'gdp': data['gdp'],
                'market_potential': province_potential(code),
            }
            for code, data in PROVINCES.items()
        ]
        return sorted(provinces, key=lambda p: p['market_potential'], reverse=True)

    def industry_analysis(self) -> List[dict]:
        industries = [
            {
                'industry': name,
                'growth_rate': data['growth_rate'],
                'demand_level': data['demand'],
                'complexity': data['complexity'],
                'opportunity_score': industry_opportunity(name),
            }
            for name, data in INDUSTRIES.items()
        ]
        return sorted(industries, key=lambda i: i['opportunity_score'], reverse=True)

    async def refresh_snapshot(self, bypass_cache: bool = False) -> dict:
        if not bypass_cache:
            cached = self.cache.get(SNAPSHOT_CACHE_KEY)
            if cached is not None:
                return {**cached, 'from_cache': True}

        now = self.clock()
        outcomes = await self.store.get_outcomes(since=now - timedelta(weeks=SNAPSHOT_WEEKS))
        trends = weekly_trends(outcomes, now)

        if trends:
            success_rate = statistics.fmean(t['success_rate'] for t in trends)
            revenue = statistics.fmean(t['avg_revenue'] for t in trends)
        else:
            success_rate = revenue = 0.0
        recent = [t['success_rate'] for t in trends if t['weeks_ago'] < SNAPSHOT_WEEKS // 2]
        earlier = [t['success_rate'] for t in trends if t['weeks_ago'] >= SNAPSHOT_WEEKS // 2]
        momentum = statistics.fmean(recent) - statistics.fmean(earlier) if recent and earlier else 0.0

        season = season_for(now)
        industries = self.industry_analysis()
        snapshot = {
            'market_health': {
                'overall_score': round(market_health(success_rate, revenue, momentum), 4),
                'partnership_success_rate': round(success_rate * 100, 2),
                'average_revenue': round(revenue),
                'market_momentum': momentum_label(momentum),
                'momentum_strength': round(abs(momentum), 4),
                'weeks_observed': len(trends),
            },
            'weekly_trends': trends,
            'top_provinces': self.geographic_analysis()[:5],
            'high_growth_industries': [i for i in industries if i['growth_rate'] > 0.06],
            'industry_opportunities': industries,
            'current_season': season,
            'seasonal_multiplier': SEASONAL_MULTIPLIERS[season],
            'generated_at': now.isoformat(),
            'from_cache': False,
        }
        self.cache.set(SNAPSHOT_CACHE_KEY, snapshot, self.config['cache_ttl_seconds']['market'])
        logger.info(
            f"Market snapshot refreshed: health={snapshot['market_health']['overall_score']} "
            f"momentum={snapshot['market_health']['market_momentum']} over {len(trends)} weeks"
        )
        return snapshot
