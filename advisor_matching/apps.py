from django.apps import AppConfig


class AdvisorMatchingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'advisor_matching'
    verbose_name = 'Advisor Matching Engine'

    def ready(self):
        from advisor_matching import signals  # noqa: F401
        from config import checks  # noqa: F401
