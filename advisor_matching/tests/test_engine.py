"""
Tests for advisor_matching/engine.py

The engine is exercised end to end against the in-memory store: scoring
by id, outcome upserts with captured factor values, the outcome_recorded
event, event ingestion, prediction refresh and cache invalidation.
"""

import os
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.test_settings')

from unittest.mock import patch

import pytest

from advisor_matching.exceptions import NotFoundError, StoreError, ValidationError, error_response
from advisor_matching.scoring import FACTOR_NAMES
from advisor_matching.signals import outcome_recorded


@pytest.fixture
def pair(make_provider, make_client):
    make_provider()
    make_client()


@pytest.fixture
def received():
    """Capture outcome_recorded events for the duration of a test."""
    events = []

    def receiver(sender, match_id, outcome, created, **kwargs):
        events.append((match_id, created))

    outcome_recorded.connect(receiver, weak=False, dispatch_uid='test-outcome-capture')
    yield events
    outcome_recorded.disconnect(dispatch_uid='test-outcome-capture')


# =============================================================================
# 1. Scoring
# =============================================================================

class TestScore:

    async def test_score_by_ids(self, engine, pair):
        result = await engine.score('client-1', 'prov-1')
        assert result.total_score == pytest.approx(97.5)
        assert result.confidence == 1.0

    async def test_score_from_payloads(self, engine):
        result = await engine.score({'industry': 'retail', 'province': 'BC'}, {'provider_id': 'p-x'})
        assert 0 <= result.total_score <= 100

    async def test_unknown_ids(self, engine, pair):
        with pytest.raises(NotFoundError):
            await engine.score('client-1', 'nobody')
        with pytest.raises(NotFoundError):
            await engine.score('nobody', 'prov-1')

    async def test_blank_id(self, engine):
        with pytest.raises(ValidationError):
            await engine.score('', 'prov-1')

    async def test_learned_weights_applied(self, engine, pair, store):
        store.weights['experience_level'].current_weight = 0.7
        result = await engine.score('client-1', 'prov-1')
        assert result.breakdown['experience_level'].weight == 0.7


# =============================================================================
# 2. Outcomes
# =============================================================================

class TestRecordOutcome:

    async def test_new_match_needs_both_parties(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.record_outcome({'match_id': 'm-1', 'provider_id': 'prov-1'})
        assert error_response(exc_info.value)['error']['code'] == 'validation_error'

    async def test_rejects_out_of_range_satisfaction(self, engine, pair):
        with pytest.raises(ValidationError):
            await engine.record_outcome({'match_id': 'm-1', 'provider_id': 'prov-1',
                                         'client_id': 'client-1', 'client_satisfaction': 11})

    async def test_captures_factor_values_from_profiles(self, engine, pair, store):
        await engine.record_outcome({'match_id': 'm-1', 'provider_id': 'prov-1', 'client_id': 'client-1'})

        values = store.outcomes['m-1'].factor_values
        assert set(values) == set(FACTOR_NAMES)
        assert values['industry_expertise'] == 1.0

    async def test_repeat_reports_update_one_row(self, engine, pair, store, received):
        await engine.record_outcome({'match_id': 'm-1', 'provider_id': 'prov-1', 'client_id': 'client-1'})
        await engine.record_outcome({'match_id': 'm-1', 'partnership_formed': True, 'client_satisfaction': 9})

        assert len(store.outcomes) == 1
        outcome = store.outcomes['m-1']
        assert outcome.partnership_formed is True
        assert outcome.provider_id == 'prov-1'
        assert outcome.client_satisfaction == 9
        assert received == [('m-1', True), ('m-1', False)]

    async def test_reported_factor_values_kept(self, engine, pair, store):
        values = {name: 0.5 for name in FACTOR_NAMES}
        await engine.record_outcome({'match_id': 'm-1', 'provider_id': 'prov-1',
                                     'client_id': 'client-1', 'factor_values': values})
        assert store.outcomes['m-1'].factor_values == values

    async def test_store_failure_surfaces(self, engine, pair, store):
        store.fail_on.add('record_outcome')
        with pytest.raises(StoreError) as exc_info:
            await engine.record_outcome({'match_id': 'm-1', 'provider_id': 'prov-1', 'client_id': 'client-1'})
        assert error_response(exc_info.value)['error']['retryable'] is True

    async def test_invalidates_cached_views(self, engine, pair, cache, make_outcome):
        make_outcome('m-1')
        await engine.recommend({'industry': 'technology', 'province': 'ON'})
        await engine.analyze_patterns('m-1')
        await engine.score_performance('prov-1')
        assert len(cache) == 3

        await engine.record_outcome({'match_id': 'm-1', 'partnership_formed': False})

        assert len(cache) == 0


# =============================================================================
# 3. Interactions, milestones and predictions
# =============================================================================

class TestEvents:

    async def test_interaction_inherits_match_parties(self, engine, pair, make_outcome, store, clock):
        make_outcome('m-1')
        interaction = await engine.record_interaction({'match_id': 'm-1', 'channel': 'email',
                                                       'interaction_type': 'cpa_email', 'quality_score': 8})
        assert interaction.provider_id == 'prov-1'
        assert interaction.client_id == 'client-1'
        assert interaction.occurred_at == clock()
        assert len(store.interactions) == 1

    async def test_interaction_drops_cached_patterns(self, engine, make_outcome, cache):
        make_outcome('m-1')
        await engine.analyze_patterns('m-1')
        await engine.record_interaction({'match_id': 'm-1', 'interaction_type': 'client_reply'})
        analysis = await engine.analyze_patterns('m-1')
        assert analysis.from_cache is False
        assert analysis.total_interactions == 1

    async def test_milestone_validation(self, engine):
        with pytest.raises(ValidationError):
            await engine.record_milestone({'match_id': 'm-1', 'milestone_type': 'x', 'funnel_stage': 'bogus'})

    async def test_milestone_recorded(self, engine, make_outcome, store):
        make_outcome('m-1')
        milestone = await engine.record_milestone({'match_id': 'm-1', 'milestone_type': 'first_contact',
                                                   'funnel_stage': 'contact'})
        assert milestone.provider_id == 'prov-1'
        assert store.milestones == [milestone]

    async def test_refresh_prediction(self, engine, pair, make_outcome, store):
        make_outcome('m-1')

        prediction = await engine.refresh_prediction('m-1')

        assert prediction is store.predictions['m-1']
        assert prediction.partnership_probability == 0.3
        assert prediction.dropout_risk == 1.0
        # probability-adjusted annual total at p=0.3
        assert prediction.estimated_revenue == 1872 + 940

    async def test_refresh_prediction_unknown_match(self, engine):
        with pytest.raises(NotFoundError):
            await engine.refresh_prediction('missing')


# =============================================================================
# 4. Learning and metrics
# =============================================================================

class TestLearningAndMetrics:

    async def test_applied_updates_drop_cached_recommendations(self, engine, pair, make_outcome, cache):
        await engine.recommend({'industry': 'technology', 'province': 'ON'})
        for i in range(20):
            values = {name: 0.8 for name in FACTOR_NAMES}
            values['industry_expertise'] = 1.0 if i < 15 else 0.2
            make_outcome(f'm-{i}', partnership_formed=i < 15, factor_values=values)

        report = await engine.run_learning_cycle()

        assert report.updates_applied == 1
        assert not any(key.startswith('recommendations:') for key in cache._entries)

    async def test_metrics(self, engine, pair):
        await engine.recommend({'industry': 'technology'})
        await engine.recommend({'industry': 'technology'})

        metrics = engine.metrics()

        assert metrics['recommendations']['total_requests'] == 2
        assert metrics['recommendations']['cache_hits'] == 1
        assert metrics['cache']['hits'] >= 1
        assert metrics['learning_in_flight'] is False


# =============================================================================
# 5. Predictions feeding the optimization batch
# =============================================================================

@pytest.fixture
def wide_engine(store, cache, engine_config, clock):
    """Engine whose actionable probability window admits every prediction."""
    from advisor_matching.engine import MatchingEngine
    config = {**engine_config, 'optimization_min_probability': 0.0, 'optimization_max_probability': 1.0}
    return MatchingEngine(store, cache=cache, config=config, clock=clock)


class TestOptimizationBatchPredictions:

    async def _converse(self, engine, clock, match_id='m-7', count=10):
        for i in range(count):
            clock.advance(hours=6)
            await engine.record_interaction({
                'match_id': match_id, 'channel': 'email', 'quality_score': 8, 'response_time_hours': 2,
                'interaction_type': 'cpa_email' if i % 2 == 0 else 'client_reply',
            })

    @patch('advisor_matching.signals.send_alert')
    async def test_recorded_interactions_reach_the_batch(self, mock_alert, wide_engine, pair, store, clock):
        await wide_engine.record_outcome({'match_id': 'm-7', 'provider_id': 'prov-1', 'client_id': 'client-1'})
        await self._converse(wide_engine, clock)
        assert 'm-7' not in store.predictions

        results = await wide_engine.run_optimization_batch()

        assert results['predictions_refreshed'] == 1
        assert results['processed'] == 1
        assert results['optimized'] == 1
        prediction = store.predictions['m-7']
        assert prediction.last_updated == clock()
        assert 0.0 <= prediction.partnership_probability <= 1.0

    @patch('advisor_matching.signals.send_alert')
    async def test_prediction_refreshed_only_when_events_are_newer(self, mock_alert, wide_engine, pair,
                                                                  store, clock):
        await wide_engine.record_outcome({'match_id': 'm-7', 'provider_id': 'prov-1', 'client_id': 'client-1'})
        await self._converse(wide_engine, clock, count=4)
        await wide_engine.run_optimization_batch()

        clock.advance(hours=1)
        unchanged = await wide_engine.run_optimization_batch()
        assert unchanged['predictions_refreshed'] == 0
        assert unchanged['processed'] == 1

        await self._converse(wide_engine, clock, count=1)
        again = await wide_engine.run_optimization_batch()
        assert again['predictions_refreshed'] == 1
        assert store.predictions['m-7'].last_updated == clock()

    @patch('advisor_matching.signals.send_alert')
    async def test_determined_and_quiet_matches_not_refreshed(self, mock_alert, wide_engine, pair,
                                                              make_outcome, store, clock):
        make_outcome('m-done', partnership_formed=True)
        make_outcome('m-quiet', partnership_formed=None)
        await self._converse(wide_engine, clock, match_id='m-done', count=2)

        results = await wide_engine.run_optimization_batch()

        assert results['predictions_refreshed'] == 0
        assert results['processed'] == 0
        assert store.predictions == {}
