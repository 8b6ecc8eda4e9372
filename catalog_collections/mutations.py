"""Catalog management operations on collections.

Writers on the same collection are serialized by locking its row with
`select_for_update` inside a transaction. Every change that can affect
membership bumps `Collection.generation` once, in the same transaction, so
readers observe either the old or the new definition.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Optional

from django.db import transaction
from django.db.models import F, Max

from .exceptions import CollectionConfigurationError, CollectionNotFound, ValidationError
from .models import Collection, Membership, Product, Rule
from .rules import CollectionRule, validate_rules

logger = logging.getLogger(__name__)


def _lock(collection_id: Any) -> Collection:
    try:
        return Collection.objects.select_for_update().get(pk=collection_id)
    except (Collection.DoesNotExist, ValueError, TypeError):
        raise CollectionNotFound(collection_id) from None


def _bump(collection: Collection) -> None:
    Collection.objects.filter(pk=collection.pk).update(generation=F("generation") + 1)
    collection.refresh_from_db(fields=["generation", "updated_at"])


def _to_ids(product_ids: Iterable[Any]) -> list[int]:
    try:
        return [int(pk) for pk in product_ids]
    except (TypeError, ValueError):
        raise ValidationError("Product ids must be integers") from None


def _check_products(product_ids: Sequence[Any]) -> list[int]:
    ids = list(dict.fromkeys(_to_ids(product_ids)))
    existing = set(Product.objects.filter(pk__in=ids).values_list("pk", flat=True))
    missing = [pk for pk in ids if pk not in existing]
    if missing:
        raise ValidationError(
            "Unknown product(s): " + ", ".join(str(pk) for pk in missing)
        )
    return ids


def _write_rules(collection: Collection, rules: Sequence[CollectionRule]) -> None:
    Rule.objects.filter(collection=collection).delete()
    Rule.objects.bulk_create(
        [
            Rule(
                collection=collection,
                position=position,
                field=rule.field,
                relation=rule.relation,
                value=rule.value,
            )
            for position, rule in enumerate(rules)
        ]
    )


def _mode(disjunctive: bool) -> Collection.RuleSetMode:
    return (
        Collection.RuleSetMode.DISJUNCTIVE
        if disjunctive
        else Collection.RuleSetMode.CONJUNCTIVE
    )


@transaction.atomic
def create_collection(
    title: str,
    *,
    description: str = "",
    image: Optional[str] = None,
    rules: Optional[Iterable[Any]] = None,
    disjunctive: bool = False,
    product_ids: Optional[Sequence[Any]] = None,
) -> Collection:
    """Create a manual collection, or an automatic one if `rules` is given."""
    validated = validate_rules(rules) if rules is not None else None
    if validated and product_ids:
        raise CollectionConfigurationError(
            "A collection cannot have both rules and manually listed products"
        )
    ids = _check_products(product_ids) if product_ids else []
    # an empty rule-set next to listed products is a manual collection
    automatic = validated is not None and (bool(validated) or not ids)

    collection = Collection.objects.create(
        title=title,
        description=description,
        image=image or "",
        ruleset_mode=_mode(disjunctive) if automatic else None,
    )
    if validated:
        _write_rules(collection, validated)
    if ids:
        Membership.objects.bulk_create(
            [
                Membership(collection=collection, product_id=pk, position=position)
                for position, pk in enumerate(ids)
            ]
        )

    logger.info("Created collection %s (%s)", collection.pk, collection.title)
    return collection


@transaction.atomic
def update_collection(
    collection_id: Any,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    image: Optional[str] = None,
) -> Collection:
    """Update presentation fields. Membership is unaffected."""
    collection = _lock(collection_id)
    update_fields = ["updated_at"]
    if title is not None:
        collection.title = title
        update_fields.append("title")
    if description is not None:
        collection.description = description
        update_fields.append("description")
    if image is not None:
        collection.image = image
        update_fields.append("image")
    collection.save(update_fields=update_fields)
    return collection


@transaction.atomic
def set_rules(
    collection_id: Any,
    rules: Iterable[Any],
    *,
    disjunctive: Optional[bool] = None,
) -> Collection:
    """Replace the rule-set of a collection, turning it into an automatic one."""
    validated = validate_rules(rules)
    collection = _lock(collection_id)
    if validated and collection.memberships.exists():
        raise CollectionConfigurationError(
            f'Collection "{collection.pk}" has manually listed products, '
            "remove them before adding rules"
        )

    if disjunctive is None:
        disjunctive = collection.ruleset_mode == Collection.RuleSetMode.DISJUNCTIVE
    collection.ruleset_mode = _mode(disjunctive)
    collection.save(update_fields=["ruleset_mode", "updated_at"])
    _write_rules(collection, validated)
    _bump(collection)

    logger.info(
        "Collection %s rules replaced (%d rule(s), generation %s)",
        collection.pk,
        len(validated),
        collection.generation,
    )
    return collection


def add_rule(collection_id: Any, rule: Any) -> Collection:
    with transaction.atomic():
        collection = _lock(collection_id)
        current = [r.to_rule() for r in collection.rules.order_by("position", "pk")]
        return set_rules(collection_id, [*current, *validate_rules([rule])])


def remove_rule(collection_id: Any, position: int) -> Collection:
    with transaction.atomic():
        collection = _lock(collection_id)
        current = [r.to_rule() for r in collection.rules.order_by("position", "pk")]
        if not 0 <= position < len(current):
            raise ValidationError(f"No rule at position {position}")
        del current[position]
        return set_rules(collection_id, current)


@transaction.atomic
def clear_rules(collection_id: Any) -> Collection:
    """Drop the rule-set, leaving an empty manual collection."""
    collection = _lock(collection_id)
    collection.rules.all().delete()
    collection.ruleset_mode = None
    collection.save(update_fields=["ruleset_mode", "updated_at"])
    _bump(collection)
    return collection


@transaction.atomic
def add_products(collection_id: Any, product_ids: Sequence[Any]) -> Collection:
    """Append products to a manual collection, skipping current members."""
    collection = _lock(collection_id)
    if collection.is_automatic:
        raise CollectionConfigurationError(
            f'Collection "{collection.pk}" is automatic, clear its rules before '
            "listing products"
        )

    ids = _check_products(product_ids)
    present = set(collection.memberships.values_list("product_id", flat=True))
    new_ids = [pk for pk in ids if pk not in present]
    if not new_ids:
        return collection

    last = collection.memberships.aggregate(last=Max("position"))["last"]
    start = 0 if last is None else last + 1
    Membership.objects.bulk_create(
        [
            Membership(collection=collection, product_id=pk, position=start + offset)
            for offset, pk in enumerate(new_ids)
        ]
    )
    _bump(collection)

    logger.info(
        "Added %d product(s) to collection %s (generation %s)",
        len(new_ids),
        collection.pk,
        collection.generation,
    )
    return collection


@transaction.atomic
def remove_products(collection_id: Any, product_ids: Sequence[Any]) -> Collection:
    collection = _lock(collection_id)
    deleted, _ = collection.memberships.filter(
        product_id__in=_to_ids(product_ids)
    ).delete()
    if deleted:
        _bump(collection)
        logger.info(
            "Removed %d product(s) from collection %s (generation %s)",
            deleted,
            collection.pk,
            collection.generation,
        )
    return collection


def _renumber(collection: Collection, ordered_ids: Sequence[int]) -> None:
    memberships = {m.product_id: m for m in collection.memberships.all()}
    for position, pk in enumerate(ordered_ids):
        memberships[pk].position = position
    Membership.objects.bulk_update(memberships.values(), ["position"])


@transaction.atomic
def reorder_products(collection_id: Any, product_ids: Sequence[Any]) -> Collection:
    """Set the display order of a manual collection.

    `product_ids` must list every current member exactly once.
    """
    collection = _lock(collection_id)
    ordered = _to_ids(product_ids)
    current = list(
        collection.memberships.order_by("position", "pk").values_list(
            "product_id", flat=True
        )
    )
    if len(ordered) != len(set(ordered)) or set(ordered) != set(current):
        raise ValidationError(
            "Reordering must list every product of the collection exactly once"
        )
    if ordered == current:
        return collection

    _renumber(collection, ordered)
    _bump(collection)
    return collection


@transaction.atomic
def move_product(collection_id: Any, product_id: Any, index: int) -> Collection:
    """Move one member of a manual collection to `index`."""
    collection = _lock(collection_id)
    current = list(
        collection.memberships.order_by("position", "pk").values_list(
            "product_id", flat=True
        )
    )
    (product_id,) = _to_ids([product_id])
    if product_id not in current:
        raise ValidationError(
            f'Product "{product_id}" is not part of collection "{collection.pk}"'
        )
    if not 0 <= index < len(current):
        raise ValidationError(f"Index {index} is out of range")

    reordered = [pk for pk in current if pk != product_id]
    reordered.insert(index, product_id)
    if reordered == current:
        return collection

    _renumber(collection, reordered)
    _bump(collection)
    return collection


@transaction.atomic
def delete_collection(collection_id: Any) -> None:
    collection = _lock(collection_id)
    pk = collection.pk
    collection.delete()
    logger.info("Deleted collection %s", pk)
