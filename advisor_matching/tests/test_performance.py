"""
Tests for advisor_matching/performance.py
"""

import os
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.test_settings')

import logging

import pytest

from advisor_matching.conf import DEFAULTS
from advisor_matching.exceptions import NotFoundError, StoreError, ValidationError
from advisor_matching.models import PerformanceScoreSnapshot
from advisor_matching.performance import (
    DIMENSION_WEIGHTS,
    PerformanceScorer,
    benchmark_score,
    response_time_score,
    tier_for,
)

BENCHMARKS = DEFAULTS['benchmarks']


@pytest.fixture
def scorer(store, cache, engine_config, clock):
    return PerformanceScorer(store, cache=cache, config=engine_config, clock=clock)


@pytest.fixture
def active_provider(make_provider, make_outcome, make_interaction, make_milestone):
    make_provider('prov-1')
    make_outcome('m-1', partnership_formed=True, client_satisfaction=9, revenue_generated=42000)
    make_outcome('m-2', days_ago=5, partnership_formed=False)
    make_outcome('m-3', days_ago=9, partnership_formed=None)
    make_interaction('m-1', hours_ago=30, quality_score=8, response_time_hours=4)
    make_interaction('m-1', hours_ago=10, quality_score=9, response_time_hours=6)
    make_milestone('m-1', funnel_stage='consultation', quality_score=8)


# =============================================================================
# 1. Benchmarks and tiers
# =============================================================================

class TestBenchmarks:

    @pytest.mark.parametrize('rate,expected', [(0.9, 100), (0.85, 100), (0.70, 70), (0.55, 50), (0.275, 25)])
    def test_success_rate_bands(self, rate, expected):
        assert benchmark_score(rate, BENCHMARKS['success_rate']) == pytest.approx(expected)

    @pytest.mark.parametrize('hours,expected', [(2, 100), (6, 100), (12, 70), (24, 50), (48, 25), (200, 0)])
    def test_response_time_bands(self, hours, expected):
        assert response_time_score(hours, BENCHMARKS['response_hours']) == pytest.approx(expected)

    def test_top_tier_has_no_next(self):
        assert tier_for(95) == ('elite', 'Elite Performer', None, 0.0)

    def test_points_to_next_tier(self):
        assert tier_for(75) == ('good', 'Good Performer', 'excellent', 5.0)

    def test_zero_is_new_member(self):
        assert tier_for(0)[0] == 'new'


# =============================================================================
# 2. Scoring one provider
# =============================================================================

class TestScore:

    async def test_blank_id_rejected(self, scorer):
        with pytest.raises(ValidationError):
            await scorer.score('')

    async def test_unknown_provider(self, scorer):
        with pytest.raises(NotFoundError):
            await scorer.score('nobody')

    async def test_profile_without_outcomes_still_scored(self, scorer, make_provider):
        make_provider('prov-new', years_experience=2)
        report = await scorer.score('prov-new')
        assert report['dimension_scores']['partnership_success_rate'] == 0.0
        assert report['metadata']['total_matches'] == 0

    async def test_overall_is_weighted_sum(self, scorer, active_provider):
        report = await scorer.score('prov-1')
        dims = report['dimension_scores']

        assert list(dims) == list(DIMENSION_WEIGHTS)
        assert report['overall_score'] == pytest.approx(
            sum(dims[name] * weight for name, weight in DIMENSION_WEIGHTS.items()), abs=0.01
        )
        assert 0 <= report['overall_score'] <= 100

    async def test_undetermined_outcomes_skip_success_rate(self, scorer, active_provider):
        report = await scorer.score('prov-1')
        # one formed, one declined
        assert report['dimension_scores']['partnership_success_rate'] == pytest.approx(
            benchmark_score(0.5, BENCHMARKS['success_rate']), abs=0.01
        )

    async def test_snapshot_persisted(self, scorer, active_provider, store):
        report = await scorer.score('prov-1')
        snapshot = store.snapshots['prov-1']
        assert snapshot.overall_score == report['overall_score']
        assert snapshot.tier == report['tier_analysis']['current_tier']
        assert snapshot.previous_overall_score is None

    async def test_first_score_trend_is_new(self, scorer, active_provider):
        report = await scorer.score('prov-1')
        assert report['trend'] == {'previous_score': None, 'score_change': None, 'trend_direction': 'new'}

    async def test_decline_against_previous_snapshot(self, scorer, active_provider, store, caplog):
        store.snapshots['prov-1'] = PerformanceScoreSnapshot(provider_id='prov-1', overall_score=99.0)

        with caplog.at_level(logging.WARNING, logger='advisor_matching.signals'):
            report = await scorer.score('prov-1')

        assert report['trend']['previous_score'] == 99.0
        assert report['trend']['trend_direction'] == 'declining'
        assert 'performance declined' in caplog.text

    async def test_rank_against_active_peers(self, scorer, active_provider, make_outcome, store):
        make_outcome('peer-a-1', provider_id='peer-a')
        make_outcome('peer-b-1', provider_id='peer-b')
        store.snapshots['peer-a'] = PerformanceScoreSnapshot(provider_id='peer-a', overall_score=99.0)
        store.snapshots['peer-b'] = PerformanceScoreSnapshot(provider_id='peer-b', overall_score=1.0)

        tier = (await scorer.score('prov-1'))['tier_analysis']

        assert tier['current_rank'] == 2
        assert tier['total_providers'] == 3
        assert tier['percentile'] == 66.67

    async def test_alone_ranks_first(self, scorer, active_provider):
        tier = (await scorer.score('prov-1'))['tier_analysis']
        assert (tier['current_rank'], tier['total_providers'], tier['percentile']) == (1, 1, 100.0)

    async def test_unscored_peers_left_out_of_total(self, scorer, active_provider, make_outcome):
        make_outcome('peer-a-1', provider_id='peer-a')

        tier = (await scorer.score('prov-1'))['tier_analysis']

        assert (tier['current_rank'], tier['total_providers'], tier['percentile']) == (1, 1, 100.0)

    async def test_cached(self, scorer, active_provider):
        await scorer.score('prov-1')
        assert (await scorer.score('prov-1'))['from_cache'] is True
        assert (await scorer.score('prov-1', bypass_cache=True))['from_cache'] is False


# =============================================================================
# 3. Batch
# =============================================================================

class TestRunBatch:

    async def test_scores_recently_active_providers(self, scorer, make_provider, make_outcome, store):
        make_provider('prov-1')
        make_provider('prov-2')
        make_provider('prov-idle')
        make_outcome('m-1', provider_id='prov-1', days_ago=3)
        make_outcome('m-2', provider_id='prov-2', days_ago=20)
        make_outcome('m-3', provider_id='prov-idle', days_ago=60)

        results = await scorer.run_batch()

        assert results == {'processed': 2, 'scored': 2, 'failed': 0, 'errors': []}
        assert set(store.snapshots) == {'prov-1', 'prov-2'}

    async def test_one_failure_does_not_stop_batch(self, scorer, make_provider, make_outcome, store, monkeypatch):
        make_provider('prov-1')
        make_provider('prov-2')
        make_outcome('m-1', provider_id='prov-1')
        make_outcome('m-2', provider_id='prov-2')

        original = store.get_provider_milestones

        async def flaky(provider_id, since=None):
            if provider_id == 'prov-1':
                raise StoreError("milestones unavailable")
            return await original(provider_id, since)

        monkeypatch.setattr(store, 'get_provider_milestones', flaky)

        results = await scorer.run_batch()

        assert results['scored'] == 1
        assert results['failed'] == 1
        assert results['errors'][0].startswith('prov-1')

    async def test_batch_ranks_against_the_whole_batch(self, scorer, make_provider, make_outcome, store, cache):
        make_provider('prov-1')
        make_provider('prov-2')
        make_outcome('m-1', provider_id='prov-1', partnership_formed=False, client_satisfaction=3)
        for i in range(4):
            make_outcome(f'm-2{i}', provider_id='prov-2', partnership_formed=True,
                         client_satisfaction=10, revenue_generated=60000)

        await scorer.run_batch()

        assert store.snapshots['prov-2'].overall_score > store.snapshots['prov-1'].overall_score
        assert (store.snapshots['prov-2'].rank, store.snapshots['prov-2'].percentile) == (1, 100.0)
        assert (store.snapshots['prov-1'].rank, store.snapshots['prov-1'].percentile) == (2, 50.0)
        assert not any(key.startswith('performance:') for key in cache._entries)
