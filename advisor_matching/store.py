"""
Outcome store: the persistence boundary of the matching engine.

The engine services never touch the ORM directly. They depend on the async
``OutcomeStore`` interface, which ``DjangoOutcomeStore`` implements on top of
the Django async ORM. Tests substitute an in-memory implementation.

Durable facts (outcomes, interactions, milestones, factor weights) and
derived views (predictions, performance snapshots) live behind the same
interface, but the weight learner only ever reads the durable facts.

Usage:
    store = DjangoOutcomeStore()
    await store.record_outcome('m-1', {'partnership_formed': True})
    weights = await store.get_weights()
"""

import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from asgiref.sync import sync_to_async
from django.db import DatabaseError, transaction
from django.db.models import OuterRef, Q, Subquery

from .exceptions import StoreError
from .models import (
    AutomatedIntervention,
    ClientProfile,
    EngagementInteraction,
    EngagementMilestone,
    EngagementPrediction,
    FactorWeight,
    LearningCycleRun,
    MatchOutcome,
    PerformanceScoreSnapshot,
    ProviderProfile,
)

logger = logging.getLogger(__name__)


@dataclass
class WeightUpdate:
    """One factor's learned state, applied atomically with its siblings."""
    factor_name: str
    new_weight: float
    delta: float
    correlation: Optional[float] = None
    confidence: float = 0.0
    sample_size: int = 0
    successful_matches: int = 0
    failed_matches: int = 0


class OutcomeStore(ABC):
    """Async persistence interface used by every engine service."""

    # -- durable facts -----------------------------------------------------

    @abstractmethod
    async def record_outcome(self, match_id: str, fields: dict) -> MatchOutcome:
        """Upsert the outcome for ``match_id``. Repeat reports update the same row."""

    @abstractmethod
    async def get_outcome(self, match_id: str) -> Optional[MatchOutcome]:
        ...

    @abstractmethod
    async def get_outcomes(
        self,
        since: Optional[datetime] = None,
        provider_id: Optional[str] = None,
        determined_only: bool = False,
    ) -> List[MatchOutcome]:
        ...

    @abstractmethod
    async def append_interaction(self, match_id: str, fields: dict) -> EngagementInteraction:
        ...

    @abstractmethod
    async def append_milestone(self, match_id: str, fields: dict) -> EngagementMilestone:
        ...

    @abstractmethod
    async def get_interactions(self, match_id: str, since: Optional[datetime] = None) -> List[EngagementInteraction]:
        ...

    @abstractmethod
    async def get_milestones(self, match_id: str, since: Optional[datetime] = None) -> List[EngagementMilestone]:
        ...

    @abstractmethod
    async def get_provider_interactions(self, provider_id: str, since: Optional[datetime] = None) -> List[EngagementInteraction]:
        ...

    @abstractmethod
    async def get_provider_milestones(self, provider_id: str, since: Optional[datetime] = None) -> List[EngagementMilestone]:
        ...

    @abstractmethod
    async def get_weights(self) -> Dict[str, FactorWeight]:
        ...

    @abstractmethod
    async def upsert_weight(self, factor_name: str, new_weight: float) -> FactorWeight:
        ...

    @abstractmethod
    async def apply_weight_updates(self, updates: Iterable[WeightUpdate]) -> int:
        """Apply all updates or none of them. Returns the number applied."""

    # -- profiles ----------------------------------------------------------

    @abstractmethod
    async def get_provider_profile(self, provider_id: str) -> Optional[ProviderProfile]:
        ...

    @abstractmethod
    async def get_client_profile(self, client_id: str) -> Optional[ClientProfile]:
        ...

    @abstractmethod
    async def list_provider_profiles(self, accepting_only: bool = True, limit: int = 50) -> List[ProviderProfile]:
        ...

    # -- derived views -----------------------------------------------------

    @abstractmethod
    async def get_prediction(self, match_id: str) -> Optional[EngagementPrediction]:
        ...

    @abstractmethod
    async def save_prediction(self, match_id: str, fields: dict) -> EngagementPrediction:
        ...

    @abstractmethod
    async def get_optimization_candidates(
        self,
        min_probability: float,
        max_probability: float,
        updated_since: datetime,
        limit: int,
    ) -> List[EngagementPrediction]:
        """Undetermined matches with a prediction in range, highest probability first."""

    @abstractmethod
    async def get_stale_prediction_match_ids(self, active_since: datetime, limit: int) -> List[str]:
        """
        Undetermined matches with interactions or milestones since ``active_since``
        that have no prediction, or whose prediction predates their latest event.
        """

    @abstractmethod
    async def get_active_provider_ids(self, since: datetime, limit: Optional[int] = None) -> List[str]:
        """Providers with at least one outcome recorded since ``since``."""

    @abstractmethod
    async def get_performance_snapshot(self, provider_id: str) -> Optional[PerformanceScoreSnapshot]:
        ...

    @abstractmethod
    async def get_performance_snapshots(self, provider_ids: Iterable[str]) -> Dict[str, PerformanceScoreSnapshot]:
        ...

    @abstractmethod
    async def save_performance_snapshot(self, provider_id: str, fields: dict) -> PerformanceScoreSnapshot:
        ...

    @abstractmethod
    async def record_learning_run(self, fields: dict) -> LearningCycleRun:
        ...

    @abstractmethod
    async def record_intervention(self, fields: dict) -> AutomatedIntervention:
        ...


def _wrap_db_errors(func):
    """Surface ORM failures as retryable StoreErrors."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except DatabaseError as exc:
            logger.error("Outcome store %s failed: %s", func.__name__, exc)
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


class DjangoOutcomeStore(OutcomeStore):
    """OutcomeStore backed by the Django async ORM."""

    @_wrap_db_errors
    async def record_outcome(self, match_id, fields):
        outcome, created = await MatchOutcome.objects.aupdate_or_create(
            match_id=match_id,
            defaults=fields,
        )
        logger.debug("%s outcome %s", "Created" if created else "Updated", match_id)
        return outcome

    @_wrap_db_errors
    async def get_outcome(self, match_id):
        return await MatchOutcome.objects.filter(match_id=match_id).afirst()

    @_wrap_db_errors
    async def get_outcomes(self, since=None, provider_id=None, determined_only=False):
        qs = MatchOutcome.objects.all()
        if since is not None:
            qs = qs.filter(created_at__gte=since)
        if provider_id is not None:
            qs = qs.filter(provider_id=provider_id)
        if determined_only:
            qs = qs.filter(partnership_formed__isnull=False)
        return [outcome async for outcome in qs.order_by('created_at')]

    @_wrap_db_errors
    async def append_interaction(self, match_id, fields):
        return await EngagementInteraction.objects.acreate(match_id=match_id, **fields)

    @_wrap_db_errors
    async def append_milestone(self, match_id, fields):
        return await EngagementMilestone.objects.acreate(match_id=match_id, **fields)

    @_wrap_db_errors
    async def get_interactions(self, match_id, since=None):
        qs = EngagementInteraction.objects.filter(match_id=match_id)
        if since is not None:
            qs = qs.filter(occurred_at__gte=since)
        return [row async for row in qs.order_by('occurred_at', 'id')]

    @_wrap_db_errors
    async def get_milestones(self, match_id, since=None):
        qs = EngagementMilestone.objects.filter(match_id=match_id)
        if since is not None:
            qs = qs.filter(reached_at__gte=since)
        return [row async for row in qs.order_by('reached_at', 'id')]

    @_wrap_db_errors
    async def get_provider_interactions(self, provider_id, since=None):
        qs = EngagementInteraction.objects.filter(provider_id=provider_id)
        if since is not None:
            qs = qs.filter(occurred_at__gte=since)
        return [row async for row in qs.order_by('occurred_at', 'id')]

    @_wrap_db_errors
    async def get_provider_milestones(self, provider_id, since=None):
        qs = EngagementMilestone.objects.filter(provider_id=provider_id)
        if since is not None:
            qs = qs.filter(reached_at__gte=since)
        return [row async for row in qs.order_by('reached_at', 'id')]

    @_wrap_db_errors
    async def get_weights(self):
        return {weight.factor_name: weight async for weight in FactorWeight.objects.all()}

    @_wrap_db_errors
    async def upsert_weight(self, factor_name, new_weight):
        weight, _ = await FactorWeight.objects.aupdate_or_create(
            factor_name=factor_name,
            defaults={'current_weight': new_weight},
        )
        return weight

    @_wrap_db_errors
    async def apply_weight_updates(self, updates):
        return await sync_to_async(self._apply_weight_updates_atomic)(list(updates))

    @staticmethod
    def _apply_weight_updates_atomic(updates: List[WeightUpdate]) -> int:
        with transaction.atomic():
            names = [u.factor_name for u in updates]
            rows = {
                row.factor_name: row
                for row in FactorWeight.objects.select_for_update().filter(factor_name__in=names)
            }
            for update in updates:
                row = rows.get(update.factor_name)
                if row is None:
                    row = FactorWeight(factor_name=update.factor_name)
                row.current_weight = update.new_weight
                row.success_correlation = update.correlation
                row.confidence_score = update.confidence
                row.sample_size = update.sample_size
                row.successful_matches = update.successful_matches
                row.failed_matches = update.failed_matches
                row.learning_iterations += 1
                row.accuracy_improvement += abs(update.delta)
                row.save()
        return len(updates)

    @_wrap_db_errors
    async def get_provider_profile(self, provider_id):
        return await ProviderProfile.objects.filter(provider_id=provider_id).afirst()

    @_wrap_db_errors
    async def get_client_profile(self, client_id):
        return await ClientProfile.objects.filter(client_id=client_id).afirst()

    @_wrap_db_errors
    async def list_provider_profiles(self, accepting_only=True, limit=50):
        qs = ProviderProfile.objects.all()
        if accepting_only:
            qs = qs.filter(accepting_clients=True)
        return [p async for p in qs.order_by('provider_id')[:limit]]

    @_wrap_db_errors
    async def get_prediction(self, match_id):
        return await EngagementPrediction.objects.filter(match_id=match_id).afirst()

    @_wrap_db_errors
    async def save_prediction(self, match_id, fields):
        prediction, _ = await EngagementPrediction.objects.aupdate_or_create(
            match_id=match_id,
            defaults=fields,
        )
        return prediction

    @_wrap_db_errors
    async def get_optimization_candidates(self, min_probability, max_probability, updated_since, limit):
        determined = MatchOutcome.objects.filter(partnership_formed__isnull=False).values('match_id')
        qs = (
            EngagementPrediction.objects
            .filter(
                partnership_probability__gte=min_probability,
                partnership_probability__lte=max_probability,
                last_updated__gte=updated_since,
            )
            .exclude(match_id__in=determined)
            .order_by('-partnership_probability', 'match_id')
        )
        return [p async for p in qs[:limit]]

    @_wrap_db_errors
    async def get_stale_prediction_match_ids(self, active_since, limit):
        last_interaction = (
            EngagementInteraction.objects.filter(match_id=OuterRef('match_id'))
            .order_by('-occurred_at').values('occurred_at')[:1]
        )
        last_milestone = (
            EngagementMilestone.objects.filter(match_id=OuterRef('match_id'))
            .order_by('-reached_at').values('reached_at')[:1]
        )
        predicted_at = EngagementPrediction.objects.filter(match_id=OuterRef('match_id')).values('last_updated')[:1]
        qs = (
            MatchOutcome.objects
            .filter(partnership_formed__isnull=True)
            .annotate(
                last_interaction=Subquery(last_interaction),
                last_milestone=Subquery(last_milestone),
                predicted_at=Subquery(predicted_at),
            )
            .filter(Q(last_interaction__gte=active_since) | Q(last_milestone__gte=active_since))
            .order_by('match_id')
            .values_list('match_id', 'last_interaction', 'last_milestone', 'predicted_at')
        )
        stale = []
        async for match_id, interaction_at, milestone_at, prediction_at in qs:
            last_event = max(t for t in (interaction_at, milestone_at) if t is not None)
            if prediction_at is None or last_event > prediction_at:
                stale.append(match_id)
                if len(stale) >= limit:
                    break
        return stale

    @_wrap_db_errors
    async def get_active_provider_ids(self, since, limit=None):
        qs = (
            MatchOutcome.objects
            .filter(created_at__gte=since)
            .order_by('provider_id')
            .values_list('provider_id', flat=True)
            .distinct()
        )
        if limit is not None:
            qs = qs[:limit]
        return [provider_id async for provider_id in qs]

    @_wrap_db_errors
    async def get_performance_snapshot(self, provider_id):
        return await PerformanceScoreSnapshot.objects.filter(provider_id=provider_id).afirst()

    @_wrap_db_errors
    async def get_performance_snapshots(self, provider_ids):
        qs = PerformanceScoreSnapshot.objects.filter(provider_id__in=list(provider_ids))
        return {snap.provider_id: snap async for snap in qs}

    @_wrap_db_errors
    async def save_performance_snapshot(self, provider_id, fields):
        snapshot, _ = await PerformanceScoreSnapshot.objects.aupdate_or_create(
            provider_id=provider_id,
            defaults=fields,
        )
        return snapshot

    @_wrap_db_errors
    async def record_learning_run(self, fields):
        return await LearningCycleRun.objects.acreate(**fields)

    @_wrap_db_errors
    async def record_intervention(self, fields):
        return await AutomatedIntervention.objects.acreate(**fields)
