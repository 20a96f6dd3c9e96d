"""
Tests for advisor_matching/recommendations.py
"""

import os
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.test_settings')

from datetime import datetime, timezone as dt_timezone

import pytest

from advisor_matching.exceptions import ValidationError
from advisor_matching.models import PerformanceScoreSnapshot
from advisor_matching.recommendations import (
    RecommendationEngine,
    diversify,
    is_new_provider,
    market_trend_adjustment,
    performance_adjustment,
    seasonal_adjustment,
)
from advisor_matching.schemas import ClientData, ProviderData

CLIENT = {'client_id': 'client-1', 'industry': 'technology', 'province': 'ON', 'city': 'Toronto',
          'employee_count': 8, 'annual_revenue': 750_000, 'complexity_level': 'medium',
          'preferred_channel': 'email'}


@pytest.fixture
def recommender(engine):
    return engine.recommender


@pytest.fixture
def candidates(make_provider):
    make_provider('prov-1')
    make_provider('prov-2', province='BC', city='Vancouver', specializations=['retail'],
                  industries_served=['retail'], current_capacity=0)
    make_provider('prov-3', accepting_clients=False)


def _ranked(*provinces):
    return [
        {'provider_id': f'p{i}', 'province': province, 'final_score': 90 - i, 'diversity_applied': False}
        for i, province in enumerate(provinces)
    ]


# =============================================================================
# 1. Adjustments
# =============================================================================

class TestAdjustments:

    def test_no_previous_score_no_adjustment(self):
        assert performance_adjustment(None) == 0.0
        assert performance_adjustment(PerformanceScoreSnapshot(overall_score=80)) == 0.0

    @pytest.mark.parametrize('previous,current,expected', [(70, 72, 0.6), (50, 80, 3.0), (80, 50, -3.0)])
    def test_performance_trend_clamped(self, previous, current, expected):
        snapshot = PerformanceScoreSnapshot(overall_score=current, previous_overall_score=previous)
        assert performance_adjustment(snapshot) == expected

    @pytest.mark.parametrize('industry,expected', [
        ('technology', 2.0),
        ('Real Estate', 1.2),
        ('agriculture', -0.84),
        ('underwater basket weaving', 0.0),
        ('', 0.0),
    ])
    def test_market_trend(self, industry, expected):
        assert market_trend_adjustment(industry) == expected

    def test_tax_providers_follow_the_season(self):
        provider = ProviderData(provider_id='p', specializations=['Tax planning'])
        assert seasonal_adjustment(provider, datetime(2025, 3, 1)) == 1.0
        assert seasonal_adjustment(provider, datetime(2025, 5, 1)) == -0.6

    def test_non_tax_providers_unaffected_by_season(self):
        provider = ProviderData(provider_id='p', specializations=['audit'])
        assert seasonal_adjustment(provider, datetime(2025, 3, 1)) == 0.0

    def test_new_provider(self):
        now = datetime(2025, 3, 12, tzinfo=dt_timezone.utc)
        assert is_new_provider(ProviderData(provider_id='p', total_matches=0), now, 90)
        veteran = ProviderData(provider_id='p', total_matches=4, joined_at=datetime(2020, 1, 1, tzinfo=dt_timezone.utc))
        assert not is_new_provider(veteran, now, 90)


# =============================================================================
# 2. Diversity
# =============================================================================

class TestDiversify:

    def test_caps_one_province_while_others_wait(self):
        chosen = diversify(_ranked('ON', 'ON', 'ON', 'ON', 'ON', 'BC'), limit=4, diversity_factor=0.3)

        assert [r['province'] for r in chosen] == ['ON', 'ON', 'ON', 'BC']
        assert all(r['diversity_applied'] for r in chosen)

    def test_backfills_when_only_one_province(self):
        chosen = diversify(_ranked('ON', 'ON', 'ON', 'ON', 'ON'), limit=4, diversity_factor=0.3)
        assert [r['provider_id'] for r in chosen] == ['p0', 'p1', 'p2', 'p3']

    def test_untouched_when_spread_already(self):
        chosen = diversify(_ranked('ON', 'BC', 'AB'), limit=3, diversity_factor=0.3)
        assert not any(r['diversity_applied'] for r in chosen)


# =============================================================================
# 3. Engine
# =============================================================================

class TestRecommend:

    async def test_limit_must_be_positive(self, recommender):
        with pytest.raises(ValidationError):
            await recommender.recommend(CLIENT, limit=0)

    async def test_invalid_client_payload(self, recommender):
        with pytest.raises(ValidationError):
            await recommender.recommend({'employee_count': -4})

    async def test_ranks_accepting_providers(self, recommender, candidates):
        result = await recommender.recommend(CLIENT, limit=5)

        ids = [r['provider_id'] for r in result['recommendations']]
        assert ids == ['prov-1', 'prov-2']
        assert result['candidates_considered'] == 2

        top = result['recommendations'][0]
        assert top['adjustments']['market_trend'] == 2.0
        assert top['adjustments']['seasonal'] == 1.0
        assert top['final_score'] <= 100.0
        assert top['explanation']
        assert result['client']['business_size'] == 'small'

    async def test_cached_by_client_shape(self, recommender, candidates, cache):
        await recommender.recommend(CLIENT, limit=5)
        again = await recommender.recommend({**CLIENT, 'client_id': 'client-2'}, limit=5)

        assert again['from_cache'] is True
        assert any(key.startswith('recommendations:technology:ON:small:5:') for key in cache._entries)
        metrics = recommender.metrics()
        assert metrics['total_requests'] == 2
        assert metrics['cache_hits'] == 1
        assert metrics['cache_hit_rate'] == 50.0

    async def test_clients_differing_in_scored_fields_not_shared(self, recommender, candidates):
        toronto = await recommender.recommend({**CLIENT, 'complexity_level': 'low'}, limit=5)
        ottawa = {**CLIENT, 'client_id': 'client-2', 'city': 'Ottawa', 'complexity_level': 'high'}

        served = await recommender.recommend(ottawa, limit=5)
        fresh = await recommender.recommend(ottawa, limit=5, bypass_cache=True)

        assert toronto['from_cache'] is False
        assert served['from_cache'] is False
        served_scores = [r['match_score'] for r in served['recommendations']]
        assert served_scores == [r['match_score'] for r in fresh['recommendations']]
        assert served_scores != [r['match_score'] for r in toronto['recommendations']]

    def test_cache_key_ignores_identity_fields(self):
        client = ClientData(**CLIENT)
        renamed = ClientData(**{**CLIENT, 'client_id': 'client-9', 'business_name': 'Other Co'})
        moved = ClientData(**{**CLIENT, 'city': 'Ottawa'})

        assert RecommendationEngine.cache_key(client, 5) == RecommendationEngine.cache_key(renamed, 5)
        assert RecommendationEngine.cache_key(client, 5) != RecommendationEngine.cache_key(moved, 5)

    async def test_ranking_options_skip_cache(self, recommender, candidates, cache):
        await recommender.recommend(CLIENT, include_explanations=False)
        await recommender.recommend(CLIENT, prioritize_new_providers=True)
        assert len(cache) == 0

    async def test_new_provider_boost(self, recommender, make_provider):
        make_provider('prov-new', total_matches=0)
        make_provider('prov-old')

        result = await recommender.recommend(CLIENT, prioritize_new_providers=True)
        boosts = {r['provider_id']: r['adjustments']['new_provider_boost'] for r in result['recommendations']}

        assert boosts == {'prov-new': 5.0, 'prov-old': 0.0}

    async def test_learned_weights_used(self, recommender, candidates, store):
        store.weights['industry_expertise'].current_weight = 1.3
        result = await recommender.recommend(CLIENT)
        assert result['weights']['industry_expertise'] == 1.3
        assert result['recommendations'][0]['breakdown']['industry_expertise']['weight'] == 1.3
