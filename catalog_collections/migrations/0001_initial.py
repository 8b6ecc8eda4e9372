import django.db.models.deletion
import django_choices_field.fields
from django.db import migrations, models

import catalog_collections.models
import catalog_collections.rules


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("title", models.CharField(max_length=255, verbose_name="Title")),
                (
                    "product_type",
                    models.CharField(
                        blank=True, default="", max_length=255, verbose_name="Type"
                    ),
                ),
                (
                    "vendor",
                    models.CharField(
                        blank=True, default="", max_length=255, verbose_name="Vendor"
                    ),
                ),
                (
                    "variant_title",
                    models.CharField(
                        blank=True,
                        default="",
                        max_length=255,
                        verbose_name="Variant title",
                    ),
                ),
                (
                    "price",
                    models.DecimalField(
                        decimal_places=2, max_digits=24, verbose_name="Price"
                    ),
                ),
                (
                    "compare_at_price",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        default=None,
                        max_digits=24,
                        null=True,
                        verbose_name="Compare at price",
                    ),
                ),
                (
                    "weight",
                    models.DecimalField(
                        decimal_places=3,
                        default=0,
                        max_digits=12,
                        verbose_name="Weight",
                    ),
                ),
                ("inventory", models.IntegerField(default=0, verbose_name="Inventory")),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, verbose_name="Created at"
                    ),
                ),
            ],
            options={
                "verbose_name": "Product",
                "verbose_name_plural": "Products",
            },
        ),
        migrations.CreateModel(
            name="Collection",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("title", models.CharField(max_length=255, verbose_name="Title")),
                (
                    "description",
                    models.TextField(blank=True, default="", verbose_name="Description"),
                ),
                (
                    "image",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Reference to the image in the image store",
                        max_length=2000,
                        verbose_name="Image",
                    ),
                ),
                (
                    "ruleset_mode",
                    django_choices_field.fields.TextChoicesField(
                        blank=True,
                        choices_enum=catalog_collections.models.Collection.RuleSetMode,
                        default=None,
                        max_length=3,
                        null=True,
                        verbose_name="Rule-set mode",
                    ),
                ),
                (
                    "generation",
                    models.PositiveBigIntegerField(
                        default=1, editable=False, verbose_name="Generation"
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(auto_now_add=True, verbose_name="Created at"),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, verbose_name="Updated at"),
                ),
            ],
            options={
                "verbose_name": "Collection",
                "verbose_name_plural": "Collections",
            },
        ),
        migrations.CreateModel(
            name="Rule",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "position",
                    models.PositiveIntegerField(default=0, verbose_name="Position"),
                ),
                (
                    "field",
                    django_choices_field.fields.TextChoicesField(
                        choices_enum=catalog_collections.rules.ProductField,
                        max_length=32,
                        verbose_name="Field",
                    ),
                ),
                (
                    "relation",
                    django_choices_field.fields.TextChoicesField(
                        choices_enum=catalog_collections.rules.RuleRelation,
                        max_length=32,
                        verbose_name="Relation",
                    ),
                ),
                ("value", models.CharField(max_length=255, verbose_name="Value")),
                (
                    "collection",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rules",
                        to="catalog_collections.collection",
                        verbose_name="Collection",
                    ),
                ),
            ],
            options={
                "verbose_name": "Rule",
                "verbose_name_plural": "Rules",
                "ordering": ("position", "pk"),
            },
        ),
        migrations.CreateModel(
            name="Membership",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "position",
                    models.PositiveIntegerField(default=0, verbose_name="Position"),
                ),
                (
                    "collection",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="memberships",
                        to="catalog_collections.collection",
                        verbose_name="Collection",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="memberships",
                        to="catalog_collections.product",
                        verbose_name="Product",
                    ),
                ),
            ],
            options={
                "verbose_name": "Membership",
                "verbose_name_plural": "Memberships",
                "ordering": ("position", "pk"),
            },
        ),
        migrations.AddField(
            model_name="collection",
            name="products",
            field=models.ManyToManyField(
                related_name="manual_collections",
                through="catalog_collections.Membership",
                to="catalog_collections.product",
            ),
        ),
        migrations.AddConstraint(
            model_name="membership",
            constraint=models.UniqueConstraint(
                fields=("collection", "product"),
                name="unique_collection_membership",
            ),
        ),
    ]
