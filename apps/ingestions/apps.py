from django.apps import AppConfig


class IngestionsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.ingestions"
    verbose_name = "Product Imports"
