"""
Tests for advisor_matching/learning.py

Covers the pure helpers (pearson, compute_delta, clamp_weight, domain
bounds, grades), the weight-bound fuzz over propose_weight, and full
learning cycles against the in-memory store: insufficient data, exclusion
of undetermined outcomes, applied updates and failure semantics.
"""

import os
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.test_settings')

import random

import pytest

from advisor_matching.exceptions import ComputationError, StoreError
from advisor_matching.learning import (
    WeightLearner,
    apply_domain_bounds,
    clamp_weight,
    compute_delta,
    pearson,
    performance_grade,
)
from advisor_matching.scoring import FACTOR_NAMES


def _values(industry):
    """Factor values where only industry_expertise varies."""
    values = {name: 0.8 for name in FACTOR_NAMES}
    values['industry_expertise'] = industry
    return values


@pytest.fixture
def learner(store, engine_config, clock):
    return WeightLearner(store, config=engine_config, clock=clock)


@pytest.fixture
def separable_outcomes(make_outcome):
    """24 successes with strong industry fit, 6 failures without."""
    for i in range(24):
        make_outcome(f'win-{i}', days_ago=1 + i % 20, partnership_formed=True,
                     client_satisfaction=8.5, factor_values=_values(1.0))
    for i in range(6):
        make_outcome(f'loss-{i}', days_ago=2 + i, partnership_formed=False,
                     factor_values=_values(0.4))


# =============================================================================
# Pure helpers
# =============================================================================

class TestPearson:

    def test_perfect_positive(self):
        assert pearson([0, 1, 2, 3], [0, 2, 4, 6]) == pytest.approx(1.0)

    def test_perfect_negative(self):
        assert pearson([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)

    def test_zero_variance_raises(self):
        with pytest.raises(ComputationError):
            pearson([1, 1, 1], [0, 1, 0])

    def test_too_few_points_raises(self):
        with pytest.raises(ComputationError):
            pearson([1], [1])


class TestComputeDelta:

    @pytest.mark.parametrize('correlation,expected', [
        (0.7, 0.1 * 0.7 * 0.85),
        (0.45, 0.1 * 0.45 * 0.5 * 0.85),
        (0.2, 0.0),
        (-0.2, 0.0),
        (-0.5, -0.1 * 0.5 * 0.85),
    ])
    def test_bands(self, correlation, expected):
        assert compute_delta(correlation, True, 0.1, 0.85) == pytest.approx(expected)

    def test_inadequate_sample_gives_zero(self):
        assert compute_delta(0.9, False, 0.1, 0.85) == 0.0


class TestBounds:

    def test_clamp_to_baseline_window(self):
        assert clamp_weight(1.8, 1.0) == pytest.approx(1.3)
        assert clamp_weight(0.2, 1.0) == pytest.approx(0.7)

    def test_clamp_to_global_bounds(self):
        assert clamp_weight(2.5, 1.9) == 2.0
        assert clamp_weight(0.05, 0.1) == 0.1

    def test_domain_floor_and_ceiling(self):
        assert apply_domain_bounds('geographic_proximity', 0.75) == 0.8
        assert apply_domain_bounds('experience_level', 1.5) == 1.3
        assert apply_domain_bounds('track_record', 0.72) == 0.72

    def test_grades(self):
        assert performance_grade(90, 9.0) == 'A+'
        assert performance_grade(72, 7.2) == 'B'
        assert performance_grade(90, 5.0) == 'D'


class TestWeightBoundFuzz:
    """No combination of inputs may push a weight outside its bounds."""

    def test_propose_weight_stays_bounded(self, learner):
        rng = random.Random(7)
        for _ in range(5000):
            name = rng.choice(FACTOR_NAMES)
            baseline = rng.uniform(0.2, 1.8)
            current = clamp_weight(rng.uniform(0.0, 2.5), baseline)
            sample_size = rng.randint(0, 10000)
            weight = learner.propose_weight(
                name,
                current,
                baseline,
                correlation=rng.uniform(-1, 1),
                sample_adequate=sample_size >= learner.config['min_sample_size'],
                success_rate=rng.random(),
            )
            assert 0.1 <= weight <= 2.0
            assert baseline * 0.7 - 1e-4 <= weight <= baseline * 1.3 + 1e-4

    async def test_store_weights_bounded_after_random_cycles(self, learner, store, make_outcome):
        rng = random.Random(11)
        for cycle in range(5):
            for i in range(30):
                values = {name: rng.random() for name in FACTOR_NAMES}
                make_outcome(f'c{cycle}-{i}', days_ago=1 + i, partnership_formed=rng.random() > 0.4,
                             factor_values=values)
            await learner.run_cycle()
            for row in store.weights.values():
                assert 0.1 <= row.current_weight <= 2.0
                assert 0.7 - 1e-4 <= row.current_weight <= 1.3 + 1e-4


# =============================================================================
# Learning cycles
# =============================================================================

class TestRunCycle:

    async def test_insufficient_data_makes_no_mutations(self, learner, store, make_outcome):
        for i in range(5):
            make_outcome(f'm-{i}', partnership_formed=True, factor_values=_values(1.0))

        report = await learner.run_cycle()

        assert report.status == 'insufficient_data'
        assert report.sample_size == 5
        assert report.required_sample == 15
        assert store.weight_writes == 0
        assert [run.status for run in store.learning_runs] == ['insufficient_data']

    async def test_force_runs_without_correlation_updates(self, learner, store, make_outcome):
        for i in range(5):
            make_outcome(f'm-{i}', partnership_formed=i % 2 == 0, factor_values=_values(1.0 if i % 2 == 0 else 0.2))

        report = await learner.run_cycle(force=True)

        assert report.status == 'completed'
        assert report.forced is True
        assert report.updates_applied == 0
        assert store.weight_writes == 0

    async def test_undetermined_outcomes_excluded(self, learner, make_outcome, separable_outcomes):
        for i in range(10):
            make_outcome(f'open-{i}', partnership_formed=None, factor_values=_values(0.0))

        report = await learner.run_cycle()

        assert report.sample_size == 30
        assert report.correlations['industry_expertise']['sample_size'] == 30

    async def test_strong_factor_gains_weight(self, learner, store, separable_outcomes):
        report = await learner.run_cycle()

        assert report.status == 'completed'
        assert report.correlations['industry_expertise']['correlation'] == pytest.approx(1.0)
        # 0.1 * 1.0 * 0.85; success rate 0.8 is above the conservative threshold
        assert store.weights['industry_expertise'].current_weight == pytest.approx(1.085)
        assert store.weights['industry_expertise'].learning_iterations == 1
        assert report.updates_applied == 1
        assert report.validation['validation_passed'] is True

    async def test_constant_factors_treated_as_uncorrelated(self, learner, separable_outcomes):
        report = await learner.run_cycle()
        track = report.correlations['track_record']
        assert track['correlation'] == 0.0
        assert track['error'] == 'zero variance'

    async def test_low_success_rate_is_conservative(self, learner, store, make_outcome):
        for i in range(12):
            make_outcome(f'win-{i}', partnership_formed=True, factor_values=_values(1.0))
        for i in range(18):
            make_outcome(f'loss-{i}', partnership_formed=False, factor_values=_values(0.4))

        await learner.run_cycle()

        assert store.weights['industry_expertise'].current_weight == pytest.approx(1.0 + 0.085 * 0.9)

    async def test_store_failure_propagates_and_is_recorded(self, learner, store, separable_outcomes):
        store.fail_on.add('apply_weight_updates')

        with pytest.raises(StoreError):
            await learner.run_cycle()

        assert store.learning_runs[-1].status == 'failed'
        assert learner.is_running is False

    async def test_unexpected_error_gives_failed_report(self, learner, store, separable_outcomes, monkeypatch):
        def boom(samples):
            raise RuntimeError('bad math')
        monkeypatch.setattr(learner, 'compute_correlations', boom)

        report = await learner.run_cycle()

        assert report.status == 'failed'
        assert report.error == 'bad math'
        assert store.weight_writes == 0

    async def test_concurrent_call_is_skipped(self, learner, store):
        learner._in_flight = True
        report = await learner.run_cycle()
        assert report.status == 'skipped'
        assert store.learning_runs == []

    async def test_missing_factor_values_computed_from_profiles(
        self, learner, make_provider, make_client, make_outcome
    ):
        make_provider('prov-1')
        make_client('client-1')
        for i in range(20):
            make_outcome(f'm-{i}', partnership_formed=i % 3 != 0)

        report = await learner.run_cycle()

        assert report.status == 'completed'
        assert report.correlations['industry_expertise']['sample_size'] == 20
