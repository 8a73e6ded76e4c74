from django.apps import AppConfig


class OffersConfig(AppConfig):
    """Configuration for the offers app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "offers"
