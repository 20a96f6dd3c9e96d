"""
Root conftest for the Advisor Matching Engine test suite.

Handles:
- Django settings configuration (in-memory SQLite via config.test_settings)
- InMemoryOutcomeStore: the OutcomeStore interface over plain dicts, holding
  unsaved model instances, so engine tests need no database
- VirtualClock: a settable clock shared by the engine services and the cache
- Factory fixtures for providers, clients, outcomes and interactions
"""

import os
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.test_settings')


# ---------------------------------------------------------------------------
# Virtual time
# ---------------------------------------------------------------------------

class VirtualClock:
    """Callable clock returning an aware datetime that only moves when told to."""

    # Wednesday, tax season (Q1)
    DEFAULT_START = datetime(2025, 3, 12, 14, 0, tzinfo=dt_timezone.utc)

    def __init__(self, start=None):
        self.now = start or self.DEFAULT_START
        self._origin = self.now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now

    def seconds(self):
        """Monotonic seconds since start, for TTLCache."""
        return (self.now - self._origin).total_seconds()


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

def _build_store_class():
    # Models can only be imported once Django's app registry is ready.
    from advisor_matching.exceptions import StoreError
    from advisor_matching.models import (
        AutomatedIntervention,
        EngagementInteraction,
        EngagementMilestone,
        EngagementPrediction,
        FactorWeight,
        LearningCycleRun,
        MatchOutcome,
        PerformanceScoreSnapshot,
    )
    from advisor_matching.store import OutcomeStore

    seed = [
        ('industry_expertise', 'expertise'),
        ('geographic_proximity', 'location'),
        ('business_size_match', 'fit'),
        ('service_specialization', 'fit'),
        ('availability_capacity', 'capacity'),
        ('track_record', 'reputation'),
        ('experience_level', 'expertise'),
        ('communication_style', 'relationship'),
    ]

    class InMemoryOutcomeStore(OutcomeStore):
        """
        OutcomeStore over dicts and lists of unsaved model instances.

        ``fail_on`` holds method names that raise StoreError, and
        ``weight_writes`` counts weight mutations.
        """

        def __init__(self, clock):
            self.clock = clock
            self.outcomes = {}
            self.interactions = []
            self.milestones = []
            self.weights = {
                name: FactorWeight(
                    factor_name=name, factor_category=category,
                    current_weight=1.0, baseline_weight=1.0,
                )
                for name, category in seed
            }
            self.providers = {}
            self.clients = {}
            self.predictions = {}
            self.snapshots = {}
            self.learning_runs = []
            self.interventions = []
            self.fail_on = set()
            self.weight_writes = 0
            self._next_id = 1

        def _guard(self, name):
            if name in self.fail_on:
                raise StoreError(f"{name} failed: simulated outage")

        def _pk(self):
            self._next_id += 1
            return self._next_id

        # -- durable facts -------------------------------------------------

        async def record_outcome(self, match_id, fields):
            self._guard('record_outcome')
            outcome = self.outcomes.get(match_id)
            if outcome is None:
                outcome = MatchOutcome(match_id=match_id, id=self._pk())
                outcome.created_at = self.clock()
                self.outcomes[match_id] = outcome
            for name, value in fields.items():
                setattr(outcome, name, value)
            outcome.updated_at = self.clock()
            return outcome

        async def get_outcome(self, match_id):
            self._guard('get_outcome')
            return self.outcomes.get(match_id)

        async def get_outcomes(self, since=None, provider_id=None, determined_only=False):
            self._guard('get_outcomes')
            rows = [
                o for o in self.outcomes.values()
                if (since is None or o.created_at >= since)
                and (provider_id is None or o.provider_id == provider_id)
                and (not determined_only or o.partnership_formed is not None)
            ]
            return sorted(rows, key=lambda o: o.created_at)

        async def append_interaction(self, match_id, fields):
            self._guard('append_interaction')
            row = EngagementInteraction(match_id=match_id, id=self._pk(), **fields)
            row.created_at = self.clock()
            self.interactions.append(row)
            return row

        async def append_milestone(self, match_id, fields):
            self._guard('append_milestone')
            row = EngagementMilestone(match_id=match_id, id=self._pk(), **fields)
            row.created_at = self.clock()
            self.milestones.append(row)
            return row

        @staticmethod
        def _window(rows, attr, since):
            picked = [r for r in rows if since is None or getattr(r, attr) >= since]
            return sorted(picked, key=lambda r: (getattr(r, attr), r.id))

        async def get_interactions(self, match_id, since=None):
            self._guard('get_interactions')
            return self._window([i for i in self.interactions if i.match_id == match_id], 'occurred_at', since)

        async def get_milestones(self, match_id, since=None):
            self._guard('get_milestones')
            return self._window([m for m in self.milestones if m.match_id == match_id], 'reached_at', since)

        async def get_provider_interactions(self, provider_id, since=None):
            return self._window([i for i in self.interactions if i.provider_id == provider_id], 'occurred_at', since)

        async def get_provider_milestones(self, provider_id, since=None):
            return self._window([m for m in self.milestones if m.provider_id == provider_id], 'reached_at', since)

        async def get_weights(self):
            self._guard('get_weights')
            return dict(self.weights)

        async def upsert_weight(self, factor_name, new_weight):
            self._guard('upsert_weight')
            row = self.weights.get(factor_name)
            if row is None:
                row = self.weights[factor_name] = FactorWeight(factor_name=factor_name)
            row.current_weight = new_weight
            self.weight_writes += 1
            return row

        async def apply_weight_updates(self, updates):
            self._guard('apply_weight_updates')
            updates = list(updates)
            for update in updates:
                row = self.weights.get(update.factor_name)
                if row is None:
                    row = self.weights[update.factor_name] = FactorWeight(factor_name=update.factor_name)
                row.current_weight = update.new_weight
                row.success_correlation = update.correlation
                row.confidence_score = update.confidence
                row.sample_size = update.sample_size
                row.successful_matches = update.successful_matches
                row.failed_matches = update.failed_matches
                row.learning_iterations += 1
                row.accuracy_improvement += abs(update.delta)
            self.weight_writes += len(updates)
            return len(updates)

        # -- profiles ------------------------------------------------------

        async def get_provider_profile(self, provider_id):
            return self.providers.get(provider_id)

        async def get_client_profile(self, client_id):
            return self.clients.get(client_id)

        async def list_provider_profiles(self, accepting_only=True, limit=50):
            self._guard('list_provider_profiles')
            rows = [p for p in self.providers.values() if p.accepting_clients or not accepting_only]
            return sorted(rows, key=lambda p: p.provider_id)[:limit]

        # -- derived views -------------------------------------------------

        async def get_prediction(self, match_id):
            return self.predictions.get(match_id)

        async def save_prediction(self, match_id, fields):
            row = self.predictions.get(match_id)
            if row is None:
                row = self.predictions[match_id] = EngagementPrediction(match_id=match_id)
            for name, value in fields.items():
                setattr(row, name, value)
            return row

        async def get_optimization_candidates(self, min_probability, max_probability, updated_since, limit):
            determined = {m for m, o in self.outcomes.items() if o.partnership_formed is not None}
            rows = [
                p for p in self.predictions.values()
                if min_probability <= p.partnership_probability <= max_probability
                and p.last_updated >= updated_since
                and p.match_id not in determined
            ]
            rows.sort(key=lambda p: (-p.partnership_probability, p.match_id))
            return rows[:limit]

        async def get_stale_prediction_match_ids(self, active_since, limit):
            stale = []
            for match_id in sorted(self.outcomes):
                if self.outcomes[match_id].partnership_formed is not None:
                    continue
                events = [i.occurred_at for i in self.interactions if i.match_id == match_id]
                events += [m.reached_at for m in self.milestones if m.match_id == match_id]
                if not events or max(events) < active_since:
                    continue
                prediction = self.predictions.get(match_id)
                if prediction is None or max(events) > prediction.last_updated:
                    stale.append(match_id)
            return stale[:limit]

        async def get_active_provider_ids(self, since, limit=None):
            ids = sorted({o.provider_id for o in self.outcomes.values() if o.created_at >= since})
            return ids[:limit] if limit is not None else ids

        async def get_performance_snapshot(self, provider_id):
            return self.snapshots.get(provider_id)

        async def get_performance_snapshots(self, provider_ids):
            return {pid: self.snapshots[pid] for pid in provider_ids if pid in self.snapshots}

        async def save_performance_snapshot(self, provider_id, fields):
            row = self.snapshots.get(provider_id)
            if row is None:
                row = self.snapshots[provider_id] = PerformanceScoreSnapshot(provider_id=provider_id)
            for name, value in fields.items():
                setattr(row, name, value)
            return row

        async def record_learning_run(self, fields):
            self._guard('record_learning_run')
            row = LearningCycleRun(**fields)
            self.learning_runs.append(row)
            return row

        async def record_intervention(self, fields):
            row = AutomatedIntervention(**fields)
            self.interventions.append(row)
            return row

    return InMemoryOutcomeStore


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def store(clock):
    return _build_store_class()(clock)


@pytest.fixture
def cache(clock):
    from advisor_matching.cache import TTLCache
    return TTLCache(clock=clock.seconds)


@pytest.fixture
def engine_config():
    from advisor_matching.conf import get_engine_config
    return get_engine_config()


@pytest.fixture
def engine(store, cache, engine_config, clock):
    from advisor_matching.engine import MatchingEngine
    return MatchingEngine(store, cache=cache, config=engine_config, clock=clock)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_provider(store, clock):
    """Build a ProviderProfile (tech accountant in Toronto by default) and register it."""
    from advisor_matching.models import ProviderProfile

    def factory(provider_id='prov-1', **overrides):
        fields = {
            'name': 'Priya Shah CPA',
            'province': 'ON',
            'city': 'Toronto',
            'specializations': ['tax planning', 'technology startups'],
            'industries_served': ['technology'],
            'years_experience': 8,
            'hourly_rate': 180,
            'accepting_clients': True,
            'current_capacity': 5,
            'total_matches': 12,
            'average_rating': 4.6,
            'communication_style': 'collaborative',
            'preferred_channel': 'email',
            'joined_at': clock() - timedelta(days=400),
        }
        fields.update(overrides)
        profile = ProviderProfile(provider_id=provider_id, **fields)
        store.providers[provider_id] = profile
        return profile

    return factory


@pytest.fixture
def make_client(store):
    """Build a ClientProfile (small Toronto tech company by default) and register it."""
    from advisor_matching.models import ClientProfile

    def factory(client_id='client-1', **overrides):
        fields = {
            'business_name': 'Northwind Labs',
            'industry': 'technology',
            'province': 'ON',
            'city': 'Toronto',
            'employee_count': 8,
            'annual_revenue': 750_000,
            'complexity_level': 'medium',
            'services_needed': ['tax_preparation', 'bookkeeping'],
            'communication_style': 'collaborative',
            'preferred_channel': 'email',
        }
        fields.update(overrides)
        profile = ClientProfile(client_id=client_id, **fields)
        store.clients[client_id] = profile
        return profile

    return factory


@pytest.fixture
def make_outcome(store, clock):
    """Insert a MatchOutcome directly, created ``days_ago`` days before now."""
    from advisor_matching.models import MatchOutcome

    def factory(match_id, provider_id='prov-1', client_id='client-1', days_ago=1, **fields):
        outcome = MatchOutcome(match_id=match_id, provider_id=provider_id, client_id=client_id, **fields)
        outcome.created_at = clock() - timedelta(days=days_ago)
        outcome.updated_at = outcome.created_at
        store.outcomes[match_id] = outcome
        return outcome

    return factory


@pytest.fixture
def make_interaction(store, clock):
    """Append an EngagementInteraction ``hours_ago`` hours before now."""
    from advisor_matching.models import EngagementInteraction

    def factory(match_id='m-1', hours_ago=1, provider_id='prov-1', client_id='client-1', **fields):
        row = EngagementInteraction(
            match_id=match_id,
            provider_id=provider_id,
            client_id=client_id,
            occurred_at=clock() - timedelta(hours=hours_ago),
            id=store._pk(),
            **fields,
        )
        store.interactions.append(row)
        return row

    return factory


@pytest.fixture
def make_milestone(store, clock):
    from advisor_matching.models import EngagementMilestone

    def factory(match_id='m-1', milestone_type='first_contact', hours_ago=1, provider_id='prov-1', **fields):
        row = EngagementMilestone(
            match_id=match_id,
            provider_id=provider_id,
            milestone_type=milestone_type,
            reached_at=clock() - timedelta(hours=hours_ago),
            id=store._pk(),
            **fields,
        )
        store.milestones.append(row)
        return row

    return factory
