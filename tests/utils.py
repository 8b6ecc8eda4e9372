import contextlib
from collections.abc import Iterable, Iterator, Sequence
from decimal import Decimal
from typing import Any, Optional

from django.db import DEFAULT_DB_ALIAS, connections
from django.test.utils import CaptureQueriesContext

from catalog_collections.exceptions import CatalogUnavailable, CollectionNotFound
from catalog_collections.rules import CollectionRule, ProductField
from catalog_collections.stores import CatalogProduct, CollectionSnapshot

_DEFAULT_ATTRIBUTES = {
    ProductField.TITLE.value: "",
    ProductField.TYPE.value: "",
    ProductField.VENDOR.value: "",
    ProductField.VARIANT_TITLE.value: "",
    ProductField.PRICE.value: Decimal(0),
    ProductField.COMPARE_AT_PRICE.value: None,
    ProductField.WEIGHT.value: Decimal(0),
    ProductField.INVENTORY.value: 0,
}


def make_product(pk: int, **attributes: Any) -> CatalogProduct:
    values = dict(_DEFAULT_ATTRIBUTES)
    for name, value in attributes.items():
        if name in {"price", "compare_at_price", "weight"} and value is not None:
            value = Decimal(str(value))
        values[name] = value
    return CatalogProduct(id=pk, attributes=values)


class MemoryCatalog:
    """Catalog keeping its products in a list, in catalog order."""

    def __init__(self, products: Iterable[CatalogProduct] = ()):
        self.products = list(products)
        self.scans = 0
        self.closed = 0
        self.hints: list[tuple[Sequence[CollectionRule], bool]] = []
        self.deadlines: list[Optional[float]] = []

    def _stream(self) -> Iterator[CatalogProduct]:
        self.scans += 1
        try:
            yield from list(self.products)
        finally:
            self.closed += 1

    def list_products(
        self, *, deadline: Optional[float] = None
    ) -> Iterator[CatalogProduct]:
        self.deadlines.append(deadline)
        return self._stream()

    def filter_products(
        self,
        hints: Sequence[CollectionRule],
        *,
        disjunctive: bool = False,
        deadline: Optional[float] = None,
    ) -> Iterator[CatalogProduct]:
        self.deadlines.append(deadline)
        self.hints.append((tuple(hints), disjunctive))
        return self._stream()


class UntouchableCatalog:
    def list_products(self, *, deadline=None):
        raise AssertionError("The catalog should not be scanned")

    def filter_products(self, hints, *, disjunctive=False, deadline=None):
        raise AssertionError("The catalog should not be scanned")


class FlakyCatalog(MemoryCatalog):
    """Fails the first `failures` scans, after yielding `fail_after` products."""

    def __init__(self, products=(), *, failures: int = 1, fail_after: int = 0):
        super().__init__(products)
        self.failures = failures
        self.fail_after = fail_after

    def _stream(self) -> Iterator[CatalogProduct]:
        self.scans += 1
        try:
            for index, product in enumerate(list(self.products)):
                if self.failures and index >= self.fail_after:
                    self.failures -= 1
                    raise CatalogUnavailable("catalog is down")
                yield product
            if self.failures and len(self.products) <= self.fail_after:
                self.failures -= 1
                raise CatalogUnavailable("catalog is down")
        finally:
            self.closed += 1


class BrokenPipeCatalog(MemoryCatalog):
    def _stream(self) -> Iterator[CatalogProduct]:
        yield from self.products[:1]
        raise ConnectionResetError("connection reset by peer")


class MemoryCollectionStore:
    def __init__(self, *snapshots: CollectionSnapshot):
        self.snapshots = {str(s.id): s for s in snapshots}

    def put(self, snapshot: CollectionSnapshot) -> None:
        self.snapshots[str(snapshot.id)] = snapshot

    def get_collection(self, collection_id: Any) -> CollectionSnapshot:
        try:
            return self.snapshots[str(collection_id)]
        except KeyError:
            raise CollectionNotFound(collection_id) from None

    def get_generation(self, collection_id: Any) -> int:
        return self.get_collection(collection_id).generation


@contextlib.contextmanager
def assert_num_queries(n: int, *, using=DEFAULT_DB_ALIAS):
    with CaptureQueriesContext(connection=connections[using]) as ctx:
        yield ctx

    executed = len(ctx)

    assert executed == n, (
        "{} queries executed, {} expected\nCaptured queries were:\n{}".format(
            executed,
            n,
            "\n".join(
                f"{i}. {q['sql']}" for i, q in enumerate(ctx.captured_queries, start=1)
            ),
        )
    )


def page_ids(page) -> list[Any]:
    return [edge.node for edge in page.edges]


def collect_forward(paginate_page, first: int, *, limit: Optional[int] = 100):
    """Walk every forward page, returning the concatenated nodes."""
    nodes: list[Any] = []
    after = None
    for _ in range(limit or 100):
        page = paginate_page(first=first, after=after)
        nodes.extend(page_ids(page))
        if not page.has_next_page:
            return nodes
        after = page.end_cursor
    raise AssertionError("pagination did not terminate")
