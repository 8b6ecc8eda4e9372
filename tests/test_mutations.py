import pytest

from catalog_collections import mutations
from catalog_collections.exceptions import (
    CollectionConfigurationError,
    CollectionNotFound,
    RuleValidationError,
    ValidationError,
)
from catalog_collections.models import Collection, Membership, Rule
from catalog_collections.rules import ProductField, RuleRelation

from .factories import CollectionFactory, ProductFactory


def members(collection):
    return list(
        collection.memberships.order_by("position").values_list("product_id", flat=True)
    )


def generation(collection):
    return Collection.objects.values_list("generation", flat=True).get(
        pk=collection.pk
    )


@pytest.mark.django_db
def test_create_manual_collection(catalog):
    collection = mutations.create_collection(
        "Picks",
        description="<b>Best</b>",
        product_ids=[catalog[1].pk, catalog[0].pk, catalog[1].pk],
    )

    assert collection.generation == 1
    assert collection.ruleset_mode is None
    assert collection.is_automatic is False
    assert members(collection) == [catalog[1].pk, catalog[0].pk]


@pytest.mark.django_db
def test_create_automatic_collection(acme_rules):
    collection = mutations.create_collection("Cheap Acme", rules=acme_rules)

    assert collection.is_automatic is True
    assert collection.ruleset_mode == Collection.RuleSetMode.CONJUNCTIVE
    assert list(
        collection.rules.order_by("position").values_list("field", "relation", "value")
    ) == [
        (ProductField.VENDOR, RuleRelation.EQUALS, "Acme"),
        (ProductField.PRICE, RuleRelation.LESS_THAN, "50"),
    ]


@pytest.mark.django_db
def test_create_rejects_rules_and_products(catalog, acme_rules):
    with pytest.raises(CollectionConfigurationError):
        mutations.create_collection(
            "Mixed", rules=acme_rules, product_ids=[catalog[0].pk]
        )

    assert not Collection.objects.exists()


@pytest.mark.django_db
def test_create_rejects_invalid_rules():
    with pytest.raises(RuleValidationError):
        mutations.create_collection("Bad", rules=[("PRICE", "CONTAINS", "1")])

    assert not Collection.objects.exists()


@pytest.mark.django_db
def test_create_rejects_unknown_products(catalog):
    with pytest.raises(ValidationError, match="Unknown product"):
        mutations.create_collection("Bad", product_ids=[catalog[0].pk, 999999])

    with pytest.raises(ValidationError):
        mutations.create_collection("Bad", product_ids=["abc"])


@pytest.mark.django_db
def test_update_collection_does_not_bump():
    collection = CollectionFactory.create()

    mutations.update_collection(collection.pk, title="Renamed", image="a.png")

    collection.refresh_from_db()
    assert collection.title == "Renamed"
    assert collection.image == "a.png"
    assert collection.generation == 1


@pytest.mark.django_db
def test_set_rules_bumps_generation(acme_rules):
    collection = CollectionFactory.create()

    updated = mutations.set_rules(collection.pk, acme_rules, disjunctive=True)

    assert updated.generation == 2
    assert updated.ruleset_mode == Collection.RuleSetMode.DISJUNCTIVE
    assert Rule.objects.filter(collection=collection).count() == 2

    updated = mutations.set_rules(collection.pk, acme_rules[:1])
    assert updated.generation == 3
    # the combination mode is kept when not given
    assert updated.ruleset_mode == Collection.RuleSetMode.DISJUNCTIVE
    assert Rule.objects.filter(collection=collection).count() == 1


@pytest.mark.django_db
def test_set_rules_on_a_manual_collection_with_products(catalog, acme_rules):
    collection = mutations.create_collection("Picks", product_ids=[catalog[0].pk])

    with pytest.raises(CollectionConfigurationError):
        mutations.set_rules(collection.pk, acme_rules)

    assert generation(collection) == 1


@pytest.mark.django_db
def test_add_and_remove_rule(acme_rules):
    collection = mutations.create_collection("Acme", rules=acme_rules[:1])

    mutations.add_rule(collection.pk, acme_rules[1])
    assert list(
        collection.rules.order_by("position").values_list("field", flat=True)
    ) == [ProductField.VENDOR, ProductField.PRICE]

    mutations.remove_rule(collection.pk, 0)
    assert list(collection.rules.values_list("field", flat=True)) == [
        ProductField.PRICE
    ]
    assert generation(collection) == 3

    with pytest.raises(ValidationError):
        mutations.remove_rule(collection.pk, 5)


@pytest.mark.django_db
def test_clear_rules(acme_rules):
    collection = mutations.create_collection("Acme", rules=acme_rules)

    cleared = mutations.clear_rules(collection.pk)

    assert cleared.ruleset_mode is None
    assert cleared.generation == 2
    assert not cleared.rules.exists()


@pytest.mark.django_db
def test_add_products(catalog):
    collection = mutations.create_collection("Picks", product_ids=[catalog[0].pk])

    mutations.add_products(collection.pk, [catalog[2].pk, catalog[0].pk])
    assert members(collection) == [catalog[0].pk, catalog[2].pk]
    assert generation(collection) == 2

    # nothing new, nothing to bump
    mutations.add_products(collection.pk, [catalog[2].pk])
    assert generation(collection) == 2


@pytest.mark.django_db
def test_add_products_to_an_automatic_collection(catalog):
    collection = mutations.create_collection("Everything", rules=[])

    with pytest.raises(CollectionConfigurationError):
        mutations.add_products(collection.pk, [catalog[0].pk])


@pytest.mark.django_db
def test_empty_rules_with_products_create_a_manual_collection(catalog):
    collection = mutations.create_collection(
        "Picks", rules=[], product_ids=[catalog[1].pk]
    )

    assert collection.ruleset_mode is None
    assert not collection.rules.exists()

    mutations.add_products(collection.pk, [catalog[0].pk])
    assert members(collection) == [catalog[1].pk, catalog[0].pk]


@pytest.mark.django_db
def test_remove_products(catalog):
    collection = mutations.create_collection(
        "Picks", product_ids=[p.pk for p in catalog]
    )

    mutations.remove_products(collection.pk, [catalog[1].pk])
    assert members(collection) == [catalog[0].pk, catalog[2].pk]
    assert generation(collection) == 2

    mutations.remove_products(collection.pk, [catalog[1].pk])
    assert generation(collection) == 2


@pytest.mark.django_db
def test_reorder_products(catalog):
    ids = [p.pk for p in catalog]
    collection = mutations.create_collection("Picks", product_ids=ids)

    mutations.reorder_products(collection.pk, ids)
    assert generation(collection) == 1

    mutations.reorder_products(collection.pk, ids[::-1])
    assert members(collection) == ids[::-1]
    assert generation(collection) == 2

    with pytest.raises(ValidationError):
        mutations.reorder_products(collection.pk, ids[:2])
    with pytest.raises(ValidationError):
        mutations.reorder_products(collection.pk, [ids[0], ids[0], ids[1]])


@pytest.mark.django_db
def test_move_product(catalog):
    ids = [p.pk for p in catalog]
    collection = mutations.create_collection("Picks", product_ids=ids)

    mutations.move_product(collection.pk, ids[2], 0)
    assert members(collection) == [ids[2], ids[0], ids[1]]
    assert generation(collection) == 2

    mutations.move_product(collection.pk, ids[2], 0)
    assert generation(collection) == 2

    with pytest.raises(ValidationError):
        mutations.move_product(collection.pk, ids[0], 3)
    with pytest.raises(ValidationError):
        mutations.move_product(collection.pk, ProductFactory.create().pk, 0)


@pytest.mark.django_db
def test_delete_collection(catalog):
    collection = mutations.create_collection(
        "Picks", product_ids=[p.pk for p in catalog]
    )

    mutations.delete_collection(collection.pk)

    assert not Collection.objects.exists()
    assert not Membership.objects.exists()
    with pytest.raises(CollectionNotFound):
        mutations.delete_collection(collection.pk)


@pytest.mark.django_db
@pytest.mark.parametrize(
    "operation",
    [
        lambda pk: mutations.set_rules(pk, []),
        lambda pk: mutations.clear_rules(pk),
        lambda pk: mutations.add_products(pk, []),
        lambda pk: mutations.remove_products(pk, []),
        lambda pk: mutations.update_collection(pk, title="x"),
    ],
)
def test_missing_collection(operation):
    with pytest.raises(CollectionNotFound):
        operation(12345)


@pytest.mark.django_db
def test_deleting_a_product_bumps_its_collections(catalog):
    picks = mutations.create_collection("Picks", product_ids=[catalog[0].pk])
    others = mutations.create_collection("Others", product_ids=[catalog[2].pk])

    catalog[0].delete()

    assert generation(picks) == 2
    assert generation(others) == 1
    assert members(picks) == []
