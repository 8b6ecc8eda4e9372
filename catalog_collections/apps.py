from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class CatalogCollectionsConfig(AppConfig):
    name = "catalog_collections"
    verbose_name = _("Catalog collections")
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        from . import receivers  # noqa: F401
