"""
Engine tunables.

Defaults live here; deployments override individual keys through the
``MATCHING_ENGINE`` dict in Django settings. Nested dicts (scenarios,
benchmarks) are merged one level deep so a partial override keeps the
remaining defaults.
"""

import copy

from django.conf import settings


DEFAULTS = {
    # Weight learner
    'learning_rate': 0.1,
    'stability_factor': 0.85,
    'max_weight_change': 0.3,
    'min_sample_size': 15,
    'min_weight': 0.1,
    'max_weight': 2.0,
    'min_weight_delta': 0.01,
    'conservative_success_rate': 0.7,
    'conservative_factor': 0.9,
    'learning_window_days': 180,

    # Analysis windows
    'pattern_window_days': 30,
    'performance_window_days': 90,
    'performance_active_days': 30,
    'performance_batch_limit': 100,
    'optimization_recent_days': 7,
    'optimization_batch_limit': 50,
    'optimization_min_probability': 0.4,
    'optimization_max_probability': 0.9,

    # Scheduled loop intervals
    'learning_interval_hours': 6,
    'performance_interval_hours': 6,
    'optimization_interval_hours': 4,
    'market_interval_hours': 12,
    'alert_after_failures': 3,

    # Cache TTLs
    'cache_ttl_seconds': {
        'recommendations': 5 * 60,
        'patterns': 10 * 60,
        'forecast': 15 * 60,
        'optimization': 20 * 60,
        'performance': 30 * 60,
        'market': 60 * 60,
    },

    # Recommendation engine
    'candidate_pool_size': 50,
    'diversity_factor': 0.3,
    'new_provider_days': 90,
    'new_provider_boost': 5.0,

    # Revenue scenarios: name -> (revenue multiplier, probability)
    'scenarios': {
        'conservative': {'multiplier': 0.7, 'probability': 0.25},
        'expected': {'multiplier': 1.0, 'probability': 0.50},
        'optimistic': {'multiplier': 1.4, 'probability': 0.20},
        'best_case': {'multiplier': 2.0, 'probability': 0.05},
    },
    'planning_factor': 0.9,
    'default_partnership_probability': 0.7,

    # Performance benchmarks (excellent / good / average)
    'benchmarks': {
        'success_rate': {'excellent': 0.85, 'good': 0.70, 'average': 0.55},
        'satisfaction': {'excellent': 8.5, 'good': 7.5, 'average': 6.5},
        'response_hours': {'excellent': 6, 'good': 12, 'average': 24},
        'revenue_per_client': {'excellent': 50000, 'good': 30000, 'average': 20000},
    },
}


def get_engine_config(overrides=None) -> dict:
    """Return DEFAULTS merged with settings.MATCHING_ENGINE and ``overrides``."""
    config = copy.deepcopy(DEFAULTS)
    for layer in (getattr(settings, 'MATCHING_ENGINE', None) or {}, overrides or {}):
        for key, value in layer.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                merged = dict(config[key])
                merged.update(value)
                config[key] = merged
            else:
                config[key] = value
    return config
