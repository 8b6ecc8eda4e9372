from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models
from django.utils.translation import gettext_lazy as _
from django_choices_field import TextChoicesField

from .rules import CollectionRule, ProductField, RuleRelation

if TYPE_CHECKING:
    from django.db.models.manager import RelatedManager


class Product(models.Model):
    """Catalog product.

    Collections only ever read products, through `stores.DjangoCatalogStore`.
    Attribute names match the values of `rules.ProductField`.
    """

    class Meta:
        verbose_name = _("Product")
        verbose_name_plural = _("Products")

    memberships: RelatedManager[Membership]

    title = models.CharField(
        verbose_name=_("Title"),
        max_length=255,
    )
    product_type = models.CharField(
        verbose_name=_("Type"),
        max_length=255,
        blank=True,
        default="",
    )
    vendor = models.CharField(
        verbose_name=_("Vendor"),
        max_length=255,
        blank=True,
        default="",
    )
    variant_title = models.CharField(
        verbose_name=_("Variant title"),
        max_length=255,
        blank=True,
        default="",
    )
    price = models.DecimalField(
        verbose_name=_("Price"),
        max_digits=24,
        decimal_places=2,
    )
    compare_at_price = models.DecimalField(
        verbose_name=_("Compare at price"),
        max_digits=24,
        decimal_places=2,
        null=True,
        blank=True,
        default=None,
    )
    weight = models.DecimalField(
        verbose_name=_("Weight"),
        max_digits=12,
        decimal_places=3,
        default=0,
    )
    inventory = models.IntegerField(
        verbose_name=_("Inventory"),
        default=0,
    )
    created_at = models.DateTimeField(
        verbose_name=_("Created at"),
        auto_now_add=True,
        db_index=True,
    )

    def __str__(self) -> str:
        return self.title


class Collection(models.Model):
    """A named group of products.

    Membership is either the ordered `memberships` list (manual collections)
    or the result of evaluating `rules` against the catalog (automatic
    collections, identified by a non-null `ruleset_mode`).

    `generation` is bumped by every change that can affect membership.
    """

    class Meta:
        verbose_name = _("Collection")
        verbose_name_plural = _("Collections")

    class RuleSetMode(models.TextChoices):
        CONJUNCTIVE = "all", _("All rules must match")
        DISJUNCTIVE = "any", _("Any rule must match")

    rules: RelatedManager[Rule]
    memberships: RelatedManager[Membership]

    title = models.CharField(
        verbose_name=_("Title"),
        max_length=255,
    )
    description = models.TextField(
        verbose_name=_("Description"),
        blank=True,
        default="",
    )
    image = models.CharField(
        verbose_name=_("Image"),
        help_text=_("Reference to the image in the image store"),
        max_length=2000,
        blank=True,
        default="",
    )
    ruleset_mode = TextChoicesField(
        verbose_name=_("Rule-set mode"),
        choices_enum=RuleSetMode,
        max_length=3,
        null=True,
        blank=True,
        default=None,
    )
    generation = models.PositiveBigIntegerField(
        verbose_name=_("Generation"),
        default=1,
        editable=False,
    )
    products = models.ManyToManyField(
        Product,
        through="Membership",
        related_name="manual_collections",
    )
    created_at = models.DateTimeField(
        verbose_name=_("Created at"),
        auto_now_add=True,
    )
    updated_at = models.DateTimeField(
        verbose_name=_("Updated at"),
        auto_now=True,
    )

    def __str__(self) -> str:
        return self.title

    @property
    def is_automatic(self) -> bool:
        return self.ruleset_mode is not None


class Rule(models.Model):
    class Meta:
        verbose_name = _("Rule")
        verbose_name_plural = _("Rules")
        ordering = ("position", "pk")

    collection_id: int
    collection = models.ForeignKey(
        Collection,
        verbose_name=_("Collection"),
        on_delete=models.CASCADE,
        related_name="rules",
        db_index=True,
    )
    position = models.PositiveIntegerField(
        verbose_name=_("Position"),
        default=0,
    )
    field = TextChoicesField(
        verbose_name=_("Field"),
        choices_enum=ProductField,
        max_length=32,
    )
    relation = TextChoicesField(
        verbose_name=_("Relation"),
        choices_enum=RuleRelation,
        max_length=32,
    )
    value = models.CharField(
        verbose_name=_("Value"),
        max_length=255,
    )

    def __str__(self) -> str:
        return f"{self.field} {self.relation} {self.value}"

    def to_rule(self) -> CollectionRule:
        return CollectionRule(self.field, self.relation, self.value)


class Membership(models.Model):
    class Meta:
        verbose_name = _("Membership")
        verbose_name_plural = _("Memberships")
        ordering = ("position", "pk")
        constraints = [
            models.UniqueConstraint(
                fields=["collection", "product"],
                name="unique_collection_membership",
            ),
        ]

    collection_id: int
    collection = models.ForeignKey(
        Collection,
        verbose_name=_("Collection"),
        on_delete=models.CASCADE,
        related_name="memberships",
        db_index=True,
    )
    product_id: int
    product = models.ForeignKey(
        Product,
        verbose_name=_("Product"),
        on_delete=models.CASCADE,
        related_name="memberships",
        db_index=True,
    )
    position = models.PositiveIntegerField(
        verbose_name=_("Position"),
        default=0,
    )

    def __str__(self) -> str:
        return f"{self.collection_id}:{self.product_id}@{self.position}"
