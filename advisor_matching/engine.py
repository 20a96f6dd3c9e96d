"""
MatchingEngine: the public face of the advisor matching engine.

Wires every service to one outcome store, one TTL cache, one config and one
clock, and exposes the operations callers use. Inbound payloads are
validated with the pydantic schemas before anything reaches the store.

Usage:
    engine = MatchingEngine.from_settings()

    result = await engine.recommend({'industry': 'technology', 'province': 'ON'})
    await engine.record_outcome({'match_id': 'm-1', 'provider_id': 'p-1',
                                 'client_id': 'c-1', 'partnership_formed': True})
    report = await engine.run_learning_cycle()
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Union

from django.utils import timezone

from .cache import TTLCache
from .conf import get_engine_config
from .exceptions import NotFoundError, ValidationError
from .forecasting import RevenueForecaster
from .learning import LearningReport, WeightLearner
from .market import MarketIntelligence
from .optimization import ProactiveOptimizer
from .patterns import PatternAnalysis, PatternAnalyzer
from .performance import PerformanceScorer
from .recommendations import RecommendationEngine
from .schemas import (
    ClientData,
    InteractionEvent,
    MilestoneEvent,
    OutcomeReport,
    ProviderData,
    parse_payload,
)
from .scoring import FactorScorer, ScoreResult
from .signals import outcome_recorded
from .store import DjangoOutcomeStore, OutcomeStore

logger = logging.getLogger(__name__)


class MatchingEngine:

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

        shared = {'cache': self.cache, 'config': self.config, 'clock': self.clock}
        self.scorer = FactorScorer()
        self.learner = WeightLearner(store, config=self.config, clock=self.clock)
        self.patterns = PatternAnalyzer(store, **shared)
        self.forecaster = RevenueForecaster(store, **shared)
        self.performance = PerformanceScorer(store, **shared)
        self.optimizer = ProactiveOptimizer(store, self.patterns, self.forecaster, **shared)
        self.market = MarketIntelligence(store, **shared)
        self.recommender = RecommendationEngine(store, scorer=self.scorer, **shared)

    @classmethod
    def from_settings(cls, **overrides) -> 'MatchingEngine':
        """Engine backed by the Django ORM and settings.MATCHING_ENGINE."""
        return cls(DjangoOutcomeStore(), config=get_engine_config(overrides or None))

    # =========================================================================
    # SCORING & RECOMMENDATIONS
    # =========================================================================

    async def score(self, client: Union[ClientData, dict, str],
                    provider: Union[ProviderData, dict, str]) -> ScoreResult:
        """Score one pair with the current learned weights. Ids are looked up in the store."""
        client = await self._client(client)
        provider = await self._provider(provider)
        weights = {name: row.current_weight for name, row in (await self.store.get_weights()).items()}
        return self.scorer.score(client, provider, weights)

    async def recommend(self, client: Union[ClientData, dict, str], limit: int = 10,
                        include_explanations: bool = True, prioritize_new_providers: bool = False,
                        bypass_cache: bool = False) -> dict:
        client = await self._client(client)
        return await self.recommender.recommend(
            client,
            limit=limit,
            include_explanations=include_explanations,
            prioritize_new_providers=prioritize_new_providers,
            bypass_cache=bypass_cache,
        )

    async def _client(self, client) -> ClientData:
        if isinstance(client, str):
            if not client:
                raise ValidationError("client_id is required")
            row = await self.store.get_client_profile(client)
            if row is None:
                raise NotFoundError(f"unknown client {client}", client_id=client)
            return ClientData.from_model(row)
        return parse_payload(ClientData, client)

    async def _provider(self, provider) -> ProviderData:
        if isinstance(provider, str):
            if not provider:
                raise ValidationError("provider_id is required")
            row = await self.store.get_provider_profile(provider)
            if row is None:
                raise NotFoundError(f"unknown provider {provider}", provider_id=provider)
            return ProviderData.from_model(row)
        return parse_payload(ProviderData, provider)

    # =========================================================================
    # LEARNING & ANALYTICS
    # =========================================================================

    async def run_learning_cycle(self, force: bool = False) -> LearningReport:
        report = await self.learner.run_cycle(force=force)
        if report.updates_applied:
            self.cache.invalidate('recommendations:')
        return report

    async def analyze_patterns(self, match_id: str, window_days: Optional[int] = None,
                               bypass_cache: bool = False) -> PatternAnalysis:
        return await self.patterns.analyze(match_id, window_days=window_days, bypass_cache=bypass_cache)

    async def forecast(self, match_id: str, months: int = 12, include_market_factors: bool = True,
                       bypass_cache: bool = False) -> dict:
        return await self.forecaster.forecast(
            match_id, months=months, include_market_factors=include_market_factors,
            bypass_cache=bypass_cache,
        )

    async def score_performance(self, provider_id: str, window_days: Optional[int] = None,
                                bypass_cache: bool = False) -> dict:
        return await self.performance.score(provider_id, window_days=window_days, bypass_cache=bypass_cache)

    async def optimize(self, match_id: str, force: bool = False) -> dict:
        return await self.optimizer.optimize(match_id, force=force)

    # =========================================================================
    # EVENT INGESTION
    # =========================================================================

    async def record_outcome(self, payload: Union[OutcomeReport, dict]):
        """
        Upsert a match outcome.

        A new match must name its provider and client. When the reporter
        sends no factor values and both profiles are known, the factor
        values are captured now so later learning cycles see the pair as
        it was scored.
        """
        report = parse_payload(OutcomeReport, payload)
        fields = report.to_fields()
        existing = await self.store.get_outcome(report.match_id)

        if existing is None and not (report.provider_id and report.client_id):
            raise ValidationError(
                "provider_id and client_id are required for a new match",
                fields=['provider_id', 'client_id'],
            )
        if 'factor_values' not in fields and not (existing and existing.factor_values):
            captured = await self._capture_factor_values(
                report.provider_id or existing.provider_id,
                report.client_id or existing.client_id,
            )
            if captured:
                fields['factor_values'] = captured

        outcome = await self.store.record_outcome(report.match_id, fields)
        self._invalidate_match(report.match_id, outcome.provider_id)
        logger.info(
            f"Recorded outcome for {report.match_id}: formed={outcome.partnership_formed}"
        )
        await outcome_recorded.asend_robust(
            sender=self.__class__, match_id=report.match_id, outcome=outcome, created=existing is None
        )
        return outcome

    async def _capture_factor_values(self, provider_id: str, client_id: str) -> Optional[dict]:
        provider_row = await self.store.get_provider_profile(provider_id)
        client_row = await self.store.get_client_profile(client_id)
        if provider_row is None or client_row is None:
            return None
        result = self.scorer.score(ClientData.from_model(client_row), ProviderData.from_model(provider_row))
        return result.factor_values

    def _invalidate_match(self, match_id: str, provider_id: Optional[str] = None) -> None:
        self.cache.invalidate('recommendations:')
        self.cache.invalidate(f'patterns:{match_id}:')
        self.cache.invalidate(f'forecast:{match_id}:')
        self.cache.discard(f'optimization:{match_id}')
        if provider_id:
            self.cache.invalidate(f'performance:{provider_id}:')

    async def record_interaction(self, payload: Union[InteractionEvent, dict]):
        event = parse_payload(InteractionEvent, payload)
        fields = await self._event_fields(event, with_client=True)
        fields['occurred_at'] = event.occurred_at or self.clock()
        interaction = await self.store.append_interaction(event.match_id, fields)
        self.cache.invalidate(f'patterns:{event.match_id}:')
        self.cache.discard(f'optimization:{event.match_id}')
        return interaction

    async def record_milestone(self, payload: Union[MilestoneEvent, dict]):
        event = parse_payload(MilestoneEvent, payload)
        fields = await self._event_fields(event, with_client=False)
        fields['reached_at'] = event.reached_at or self.clock()
        milestone = await self.store.append_milestone(event.match_id, fields)
        self.cache.invalidate(f'patterns:{event.match_id}:')
        self.cache.discard(f'optimization:{event.match_id}')
        return milestone

    async def _event_fields(self, event, with_client: bool) -> dict:
        """Event fields with provider/client ids filled in from the match when omitted."""
        fields = event.model_dump(exclude={'match_id', 'occurred_at', 'reached_at'})
        missing = not fields.get('provider_id') or (with_client and not fields.get('client_id'))
        if missing:
            outcome = await self.store.get_outcome(event.match_id)
            if outcome is not None:
                fields['provider_id'] = fields.get('provider_id') or outcome.provider_id
                if with_client:
                    fields['client_id'] = fields.get('client_id') or outcome.client_id
        return fields

    async def refresh_prediction(self, match_id: str):
        """Recompute and persist the EngagementPrediction for a match."""
        return await self.optimizer.refresh_prediction(match_id)

    # =========================================================================
    # BATCHES
    # =========================================================================

    async def run_performance_batch(self) -> dict:
        return await self.performance.run_batch()

    async def run_optimization_batch(self) -> dict:
        return await self.optimizer.run_batch()

    async def refresh_market_intelligence(self) -> dict:
        return await self.market.refresh_snapshot(bypass_cache=True)

    def metrics(self) -> dict:
        return {
            'recommendations': self.recommender.metrics(),
            'cache': {
                'entries': len(self.cache),
                'hits': self.cache.hits,
                'misses': self.cache.misses,
            },
            'learning_in_flight': self.learner.is_running,
        }
