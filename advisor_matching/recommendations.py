"""
Recommendation engine.

Ranks the accepting providers for a client: each candidate is scored with
the current learned weights, nudged by real-time adjustments (provider
performance trend, industry market trend, tax-season demand, optional
new-provider boost), re-sorted and diversified across provinces.

Usage:
    engine = RecommendationEngine(store, cache=cache)
    result = await engine.recommend(client, limit=5)
    for rec in result['recommendations']:
        print(rec['provider_id'], rec['final_score'], rec['explanation'])
"""

import hashlib
import logging
import math
import time
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from django.utils import timezone

from .cache import TTLCache
from .conf import get_engine_config
from .exceptions import ValidationError
from .forecasting import business_size, season_for, SEASONAL_MULTIPLIERS
from .market import industry_opportunity
from .schemas import ClientData, ProviderData, parse_payload
from .scoring import FactorScorer
from .store import OutcomeStore

logger = logging.getLogger(__name__)

PERFORMANCE_ADJUSTMENT_LIMIT = 3.0
MARKET_ADJUSTMENT_LIMIT = 2.0
SEASONAL_SCALE = 4.0


def _clamp(value: float, limit: float) -> float:
    return max(-limit, min(limit, value))


def performance_adjustment(snapshot) -> float:
    """Points for a provider whose latest score moved since the previous snapshot."""
    if snapshot is None or snapshot.previous_overall_score is None:
        return 0.0
    change = snapshot.overall_score - snapshot.previous_overall_score
    return round(_clamp(change * 0.3, PERFORMANCE_ADJUSTMENT_LIMIT), 2)


def market_trend_adjustment(industry: str) -> float:
    opportunity = industry_opportunity(industry)
    if opportunity is None:
        return 0.0
    return round(_clamp((opportunity - 0.5) * 4, MARKET_ADJUSTMENT_LIMIT), 2)


def seasonal_adjustment(provider: ProviderData, moment: datetime) -> float:
    offers_tax = any('tax' in term.lower() for term in provider.specializations)
    if not offers_tax:
        return 0.0
    return round((SEASONAL_MULTIPLIERS[season_for(moment)] - 1) * SEASONAL_SCALE, 2)


def is_new_provider(provider: ProviderData, now: datetime, new_days: int) -> bool:
    if provider.total_matches == 0:
        return True
    return provider.joined_at is not None and now - provider.joined_at < timedelta(days=new_days)


def diversify(ranked: List[dict], limit: int, diversity_factor: float) -> List[dict]:
    """
    Take the top ``limit`` results, allowing at most
    ceil(limit * (1 - diversity_factor)) from any one province while
    other provinces still have candidates.
    """
    cap = max(1, math.ceil(limit * (1 - diversity_factor)))
    chosen, deferred = [], []
    per_province = Counter()
    for rec in ranked:
        if len(chosen) >= limit:
            break
        province = rec['province'] or '?'
        if per_province[province] >= cap:
            deferred.append(rec)
            continue
        per_province[province] += 1
        chosen.append(rec)

    for rec in deferred:
        if len(chosen) >= limit:
            break
        chosen.append(rec)

    if deferred:
        for rec in chosen:
            rec['diversity_applied'] = True
    chosen.sort(key=lambda r: (-r['final_score'], r['provider_id']))
    return chosen


class RecommendationEngine:

    def __init__(
        self,
        store: OutcomeStore,
        scorer: Optional[FactorScorer] = None,
        cache: Optional[TTLCache] = None,
        config: Optional[dict] = None,
        clock: Callable[[], datetime] = timezone.now,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.store = store
        self.scorer = scorer or FactorScorer()
        self.cache = cache if cache is not None else TTLCache()
        self.config = config or get_engine_config()
        self.clock = clock
        self.timer = timer
        self.total_requests = 0
        self.cache_hits = 0
        self.avg_response_ms = 0.0

    @staticmethod
    def cache_key(client: ClientData, limit: int) -> str:
        """Readable prefix plus a digest of every field the scorer reads."""
        size = business_size(client.annual_revenue)
        profile = client.model_dump_json(exclude={'client_id', 'business_name'})
        digest = hashlib.sha1(profile.encode()).hexdigest()[:16]
        return f"recommendations:{client.industry.lower()}:{client.province}:{size}:{limit}:{digest}"

    async def recommend(
        self,
        client: Union[ClientData, dict],
        limit: int = 10,
        include_explanations: bool = True,
        prioritize_new_providers: bool = False,
        bypass_cache: bool = False,
    ) -> dict:
        if not isinstance(client, ClientData):
            client = parse_payload(ClientData, client)
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        started = self.timer()
        self.total_requests += 1
        key = self.cache_key(client, limit)
        # Options that change the ranking bypass the shared entry.
        cacheable = include_explanations and not prioritize_new_providers

        if cacheable and not bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                self.cache_hits += 1
                self._record_timing(started)
                return {**cached, 'from_cache': True}

        weight_rows = await self.store.get_weights()
        weights = {name: row.current_weight for name, row in weight_rows.items()}
        rows = await self.store.list_provider_profiles(
            accepting_only=True, limit=self.config['candidate_pool_size']
        )
        providers = [ProviderData.from_model(row) for row in rows]
        snapshots = await self.store.get_performance_snapshots([p.provider_id for p in providers])

        now = self.clock()
        market = market_trend_adjustment(client.industry)
        ranked = []
        for provider in providers:
            result = self.scorer.score(client, provider, weights)
            adjustments = {
                'performance_trend': performance_adjustment(snapshots.get(provider.provider_id)),
                'market_trend': market,
                'seasonal': seasonal_adjustment(provider, now),
                'new_provider_boost': (
                    self.config['new_provider_boost']
                    if prioritize_new_providers and is_new_provider(provider, now, self.config['new_provider_days'])
                    else 0.0
                ),
            }
            adjustments['total'] = round(sum(adjustments.values()), 2)
            final = max(0.0, min(100.0, result.total_score + adjustments['total']))
            ranked.append({
                'provider_id': provider.provider_id,
                'provider_name': provider.name,
                'province': provider.province,
                'city': provider.city,
                'match_score': result.total_score,
                'final_score': round(final, 2),
                'confidence': result.confidence,
                'breakdown': result.to_dict()['breakdown'],
                'adjustments': adjustments,
                'explanation': self.scorer.explain(result) if include_explanations else None,
                'diversity_applied': False,
            })

        ranked.sort(key=lambda r: (-r['final_score'], r['provider_id']))
        recommendations = diversify(ranked, limit, self.config['diversity_factor'])

        response = {
            'client': {
                'industry': client.industry,
                'province': client.province,
                'business_size': business_size(client.annual_revenue),
            },
            'recommendations': recommendations,
            'candidates_considered': len(providers),
            'weights': weights,
            'generated_at': now.isoformat(),
            'from_cache': False,
        }
        if cacheable:
            self.cache.set(key, response, self.config['cache_ttl_seconds']['recommendations'])
        self._record_timing(started)
        logger.info(
            f"Recommended {len(recommendations)} of {len(providers)} providers "
            f"for {client.industry or 'unknown industry'}/{client.province or '--'}"
        )
        return response

    def _record_timing(self, started: float):
        elapsed_ms = (self.timer() - started) * 1000
        n = self.total_requests
        self.avg_response_ms = (self.avg_response_ms * (n - 1) + elapsed_ms) / n

    def metrics(self) -> Dict[str, float]:
        hit_rate = self.cache_hits / self.total_requests * 100 if self.total_requests else 0.0
        return {
            'total_requests': self.total_requests,
            'cache_hits': self.cache_hits,
            'cache_hit_rate': round(hit_rate, 2),
            'avg_response_ms': round(self.avg_response_ms, 2),
        }
