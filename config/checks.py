"""
Django system checks for required configuration.

Runs automatically on `manage.py migrate`, `check` and every management
command, so a bad MATCHING_ENGINE override fails before any cycle starts.
"""
import math
import os

from django.conf import settings
from django.core.checks import Error, Warning, register

from advisor_matching.conf import get_engine_config


@register()
def check_required_settings(app_configs, **kwargs):
    errors = []

    # E001: DATABASE_URL required in production
    if not settings.DEBUG and not os.environ.get("DATABASE_URL"):
        errors.append(Error(
            "DATABASE_URL not set in production.",
            hint="Set DATABASE_URL for PostgreSQL connection.",
            id="advisor.E001",
        ))

    # E002: Insecure SECRET_KEY in production
    if not settings.DEBUG and "insecure" in settings.SECRET_KEY:
        errors.append(Error(
            "SECRET_KEY contains 'insecure' and is not safe for production.",
            hint="Generate a secure SECRET_KEY.",
            id="advisor.E002",
        ))

    # W001: Alerts only reach the log
    if not getattr(settings, "SLACK_WEBHOOK_URL", "") and not settings.DEBUG:
        errors.append(Warning(
            "No Slack webhook configured for engine alerts.",
            hint="Set SLACK_WEBHOOK_URL so repeated loop failures reach someone.",
            id="advisor.W001",
        ))

    return errors


@register()
def check_engine_config(app_configs, **kwargs):
    errors = []
    config = get_engine_config()

    # E010: learning rate must be in (0, 1]
    rate = config["learning_rate"]
    if not 0 < rate <= 1:
        errors.append(Error(
            f"MATCHING_ENGINE learning_rate={rate} is outside (0, 1].",
            id="advisor.E010",
        ))

    # E011: scenario probabilities must sum to 1
    total = sum(s["probability"] for s in config["scenarios"].values())
    if not math.isclose(total, 1.0, abs_tol=1e-6):
        errors.append(Error(
            f"MATCHING_ENGINE scenario probabilities sum to {total:.4f}, expected 1.0.",
            hint="Adjust the probability of one or more scenarios.",
            id="advisor.E011",
        ))

    # E012: loop intervals must be positive
    for key in (
        "learning_interval_hours",
        "performance_interval_hours",
        "optimization_interval_hours",
        "market_interval_hours",
    ):
        if config[key] <= 0:
            errors.append(Error(
                f"MATCHING_ENGINE {key}={config[key]} must be positive.",
                id="advisor.E012",
            ))

    # E013: weight bounds must be ordered
    if not 0 < config["min_weight"] < config["max_weight"]:
        errors.append(Error(
            "MATCHING_ENGINE min_weight must be positive and below max_weight.",
            id="advisor.E013",
        ))

    return errors
