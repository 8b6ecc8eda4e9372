from django.db.models import F
from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .models import Collection, Product


@receiver(pre_delete, sender=Product)
def catalog_collections__bump_generations(sender, instance, **kwargs):
    """Bump the generation of every manual collection listing a deleted product."""
    Collection.objects.filter(memberships__product=instance).update(
        generation=F("generation") + 1
    )
