"""
Test settings: in-memory SQLite and no alert side effects.

Django's test runner creates the schema from migrations, so the seeded
factor weights are present in every database test.
"""

from config.settings import *  # noqa: F401, F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

SLACK_WEBHOOK_URL = ""
ALERT_EMAIL = ""

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

MATCHING_ENGINE = {}
