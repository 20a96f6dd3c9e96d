"""
Tests for config/checks.py
"""

import os
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.test_settings')

from config.checks import check_engine_config, check_required_settings


def _ids(messages):
    return {m.id for m in messages}


class TestRequiredSettings:

    def test_debug_needs_nothing(self, settings):
        settings.DEBUG = True
        assert check_required_settings(None) == []

    def test_production_without_database_or_webhook(self, settings, monkeypatch):
        monkeypatch.delenv('DATABASE_URL', raising=False)
        settings.DEBUG = False
        settings.SECRET_KEY = 'django-insecure-dev-key'
        settings.SLACK_WEBHOOK_URL = ''

        assert _ids(check_required_settings(None)) == {'advisor.E001', 'advisor.E002', 'advisor.W001'}

    def test_production_fully_configured(self, settings, monkeypatch):
        monkeypatch.setenv('DATABASE_URL', 'postgres://engine@db/engine')
        settings.DEBUG = False
        settings.SECRET_KEY = 'k3y-' + 'x' * 40
        settings.SLACK_WEBHOOK_URL = 'https://hooks.slack.test/T000'

        assert check_required_settings(None) == []


class TestEngineConfig:

    def test_defaults_pass(self):
        assert check_engine_config(None) == []

    def test_learning_rate_out_of_range(self, settings):
        settings.MATCHING_ENGINE = {'learning_rate': 1.5}
        assert _ids(check_engine_config(None)) == {'advisor.E010'}

    def test_scenario_probabilities_must_sum_to_one(self, settings):
        settings.MATCHING_ENGINE = {'scenarios': {'best_case': {'multiplier': 2.0, 'probability': 0.5}}}
        assert _ids(check_engine_config(None)) == {'advisor.E011'}

    def test_non_positive_interval(self, settings):
        settings.MATCHING_ENGINE = {'market_interval_hours': 0}
        assert _ids(check_engine_config(None)) == {'advisor.E012'}

    def test_weight_bounds_ordered(self, settings):
        settings.MATCHING_ENGINE = {'min_weight': 2.5}
        assert _ids(check_engine_config(None)) == {'advisor.E013'}
