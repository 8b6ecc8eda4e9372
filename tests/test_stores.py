import time
from decimal import Decimal

import pytest
from django.db import OperationalError, connection
from django.db.models import IntegerField
from django.db.models.expressions import RawSQL

from catalog_collections import mutations
from catalog_collections.exceptions import (
    CatalogTimeout,
    CatalogUnavailable,
    CollectionNotFound,
)
from catalog_collections.models import Product
from catalog_collections.rules import CollectionRule, RuleSet, validate_rules
from catalog_collections.stores import (
    DjangoCatalogStore,
    DjangoCollectionStore,
    MembershipKind,
    build_hint_filter,
    hint_to_q,
    statement_deadline,
)

from .factories import CollectionFactory, ProductFactory
from .utils import assert_num_queries


@pytest.mark.django_db
def test_catalog_order_is_deterministic(catalog):
    store = DjangoCatalogStore()

    first = [p.id for p in store.list_products()]
    second = [p.id for p in store.list_products()]

    assert first == second == [p.pk for p in catalog]


@pytest.mark.django_db
def test_catalog_ordering_can_be_configured(catalog):
    store = DjangoCatalogStore(ordering=("-price",))

    assert [p.id for p in store.list_products()] == [
        catalog[1].pk,
        catalog[0].pk,
        catalog[2].pk,
    ]


@pytest.mark.django_db
def test_catalog_ordering_ends_with_pk():
    ProductFactory.create_batch(3, price=Decimal("5.00"))

    store = DjangoCatalogStore(ordering=("price",))

    assert list(store.get_queryset().query.order_by) == ["price", "pk"]
    ids = [p.id for p in store.list_products()]
    assert ids == sorted(ids)


@pytest.mark.django_db
def test_catalog_attributes(catalog):
    product = next(iter(DjangoCatalogStore().list_products()))

    assert product.attributes["vendor"] == "Acme"
    assert product.attributes["price"] == Decimal("30.00")
    assert product.attributes["compare_at_price"] is None
    assert set(product.attributes) == set(DjangoCatalogStore.fields)


@pytest.mark.django_db
def test_filter_products(catalog):
    store = DjangoCatalogStore()
    hints = validate_rules([("PRICE", "LESS_THAN", "50"), ("VENDOR", "EQUALS", "Acme")])

    assert [p.id for p in store.filter_products(hints)] == [catalog[0].pk]
    assert [p.id for p in store.filter_products(hints, disjunctive=True)] == [
        catalog[0].pk,
        catalog[1].pk,
        catalog[2].pk,
    ]


def test_hint_lookups():
    q = hint_to_q(CollectionRule("VENDOR", "STARTS_WITH", "Ac"))
    assert q.children == [("vendor__startswith", "Ac")]

    q = hint_to_q(CollectionRule("PRICE", "GREATER_THAN", "10"))
    assert q.children == [("price__gt", Decimal("10"))]

    with pytest.raises(ValueError):
        hint_to_q(CollectionRule("PRICE", "NOT_EQUALS", "10"))

    assert build_hint_filter((), disjunctive=True).children == []


@pytest.mark.django_db
def test_database_errors_are_wrapped(catalog, mocker):
    mocker.patch(
        "django.db.models.query.QuerySet.iterator",
        side_effect=OperationalError("database is gone"),
    )

    with pytest.raises(CatalogUnavailable):
        list(DjangoCatalogStore().list_products())


_SLOW_COUNT = (
    "(WITH RECURSIVE c(x) AS"
    " (SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 100000000)"
    " SELECT count(*) FROM c)"
)


@pytest.mark.django_db
def test_slow_catalog_query_is_interrupted_at_the_deadline():
    ProductFactory.create()
    store = DjangoCatalogStore(
        Product.objects.annotate(
            slow=RawSQL(_SLOW_COUNT, [], output_field=IntegerField())
        ).filter(slow__gt=0)
    )

    start = time.monotonic()
    with pytest.raises(CatalogTimeout) as exc_info:
        list(store.list_products(deadline=time.monotonic() + 0.05))

    assert time.monotonic() - start < 5
    assert exc_info.value.code == "CATALOG_UNAVAILABLE"


@pytest.mark.django_db
def test_statement_deadline_is_removed_afterwards(catalog):
    with statement_deadline(connection, time.monotonic() + 10):
        pass

    # an expired deadline would interrupt every later statement
    with statement_deadline(connection, time.monotonic() - 1):
        pass
    assert len(list(DjangoCatalogStore().list_products())) == 3


@pytest.mark.django_db
def test_database_errors_before_the_deadline_are_not_timeouts(catalog, mocker):
    mocker.patch(
        "django.db.models.query.QuerySet.iterator",
        side_effect=OperationalError("database is gone"),
    )

    with pytest.raises(CatalogUnavailable) as exc_info:
        list(DjangoCatalogStore().list_products(deadline=time.monotonic() + 10))

    assert not isinstance(exc_info.value, CatalogTimeout)


@pytest.mark.django_db
def test_manual_snapshot(catalog):
    collection = mutations.create_collection(
        "Picks", product_ids=[catalog[2].pk, catalog[0].pk]
    )

    with assert_num_queries(4):
        snapshot = DjangoCollectionStore().get_collection(collection.pk)

    assert snapshot.kind is MembershipKind.MANUAL
    assert snapshot.rule_set is None
    assert snapshot.product_ids == (catalog[2].pk, catalog[0].pk)
    assert snapshot.generation == collection.generation


@pytest.mark.django_db
def test_automatic_snapshot(acme_rules):
    collection = mutations.create_collection(
        "Cheap Acme", rules=acme_rules, disjunctive=True
    )

    snapshot = DjangoCollectionStore().get_collection(str(collection.pk))

    assert snapshot.kind is MembershipKind.AUTOMATIC
    assert snapshot.rule_set == RuleSet(
        rules=validate_rules(acme_rules), disjunctive=True
    )
    assert snapshot.product_ids == ()


@pytest.mark.django_db
def test_empty_rule_set_is_kept():
    collection = mutations.create_collection("Everything", rules=[])

    snapshot = DjangoCollectionStore().get_collection(collection.pk)

    assert snapshot.rule_set == RuleSet()
    assert snapshot.kind is MembershipKind.AUTOMATIC


@pytest.mark.django_db
@pytest.mark.parametrize("collection_id", [999, "999", "abc", None])
def test_missing_collection(collection_id):
    store = DjangoCollectionStore()

    with pytest.raises(CollectionNotFound):
        store.get_collection(collection_id)
    with pytest.raises(CollectionNotFound):
        store.get_generation(collection_id)


@pytest.mark.django_db
def test_snapshot_is_retried_when_a_writer_interleaves(mocker):
    collection = CollectionFactory.create()
    store = DjangoCollectionStore()
    mocker.patch.object(
        store,
        "get_generation",
        side_effect=[collection.generation + 1, collection.generation],
    )

    snapshot = store.get_collection(collection.pk)

    assert snapshot.generation == collection.generation
    assert store.get_generation.call_count == 2


@pytest.mark.django_db
def test_snapshot_gives_up_when_the_collection_keeps_changing(mocker):
    collection = CollectionFactory.create()
    store = DjangoCollectionStore(read_attempts=3)
    mocker.patch.object(store, "get_generation", return_value=collection.generation + 1)

    with pytest.raises(CatalogUnavailable):
        store.get_collection(collection.pk)

    assert store.get_generation.call_count == 3


@pytest.mark.django_db
def test_deleted_product_disappears_from_manual_collections(catalog):
    collection = mutations.create_collection(
        "Picks", product_ids=[p.pk for p in catalog]
    )

    Product.objects.filter(pk=catalog[1].pk).delete()

    snapshot = DjangoCollectionStore().get_collection(collection.pk)
    assert snapshot.product_ids == (catalog[0].pk, catalog[2].pk)
    assert snapshot.generation == collection.generation + 1
