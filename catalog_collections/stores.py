"""Collaborator interfaces of the resolution engine and their Django implementations."""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any, Optional, Protocol

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, connections
from django.db.models import Q, QuerySet

from .exceptions import (
    CatalogTimeout,
    CatalogUnavailable,
    CollectionConfigurationError,
    CollectionNotFound,
)
from .models import Collection, Membership, Product, Rule
from .rules import CollectionRule, ProductField, RuleRelation, RuleSet
from .settings import collections_settings

logger = logging.getLogger(__name__)

ProductRef = int


@dataclasses.dataclass(frozen=True)
class CatalogProduct:
    """Read-only view of a product: its identity and attribute bag."""

    id: ProductRef
    attributes: Mapping[str, Any]


class MembershipKind(enum.Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


@dataclasses.dataclass(frozen=True)
class CollectionSnapshot:
    """Consistent view of a collection's membership-affecting state.

    Everything in it was read at `generation`; it is never mutated.
    """

    id: Any
    generation: int
    rule_set: Optional[RuleSet] = None
    product_ids: tuple[ProductRef, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "product_ids", tuple(self.product_ids))

    @property
    def kind(self) -> MembershipKind:
        if self.rule_set is None:
            return MembershipKind.MANUAL
        if not self.rule_set.rules and self.product_ids:
            # an empty rule-set next to an explicit list has no effect
            return MembershipKind.MANUAL
        return MembershipKind.AUTOMATIC

    def validate(self) -> None:
        if self.rule_set is not None and self.rule_set.rules and self.product_ids:
            raise CollectionConfigurationError(
                f'Collection "{self.id}" has both manually listed products and rules'
            )


class CatalogStore(Protocol):
    """Read access to the catalog.

    `deadline` is a `time.monotonic()` timestamp. Stores must not block past
    it and raise `CatalogTimeout` instead.
    """

    def list_products(
        self, *, deadline: Optional[float] = None
    ) -> Iterable[CatalogProduct]:
        """Stream every product in a deterministic order."""
        ...

    def filter_products(
        self,
        hints: Sequence[CollectionRule],
        *,
        disjunctive: bool = False,
        deadline: Optional[float] = None,
    ) -> Iterable[CatalogProduct]:
        """Stream a superset of the products matching `hints`, in catalog order."""
        ...


class CollectionStore(Protocol):
    def get_collection(self, collection_id: Any) -> CollectionSnapshot: ...

    def get_generation(self, collection_id: Any) -> int: ...


_HINT_LOOKUPS: Mapping[RuleRelation, str] = {
    RuleRelation.EQUALS: "exact",
    RuleRelation.CONTAINS: "contains",
    RuleRelation.STARTS_WITH: "startswith",
    RuleRelation.ENDS_WITH: "endswith",
    RuleRelation.GREATER_THAN: "gt",
    RuleRelation.LESS_THAN: "lt",
}


def hint_to_q(rule: CollectionRule) -> Q:
    try:
        lookup = _HINT_LOOKUPS[rule.relation]
    except KeyError:
        raise ValueError(f"{rule.relation.name} cannot be used as a catalog hint")
    return Q((f"{rule.field.value}__{lookup}", rule.operand))


def build_hint_filter(hints: Sequence[CollectionRule], *, disjunctive: bool) -> Q:
    q = Q()
    for rule in hints:
        q = q | hint_to_q(rule) if disjunctive else q & hint_to_q(rule)
    return q


def _set_statement_timeout(connection, value: str) -> None:
    with connection.cursor() as cursor:
        cursor.execute("SELECT set_config('statement_timeout', %s, false)", [value])


@contextlib.contextmanager
def statement_deadline(connection, deadline: Optional[float]):
    """Abort statements run on `connection` past `deadline`.

    SQLite checks the deadline from a progress handler while a statement
    runs, PostgreSQL gets a `statement_timeout` for the remaining time.
    Other backends are only checked between products by the resolver.
    """
    if deadline is None or connection.vendor not in {"sqlite", "postgresql"}:
        yield
        return

    connection.ensure_connection()
    if connection.vendor == "sqlite":
        raw = connection.connection
        raw.set_progress_handler(lambda: int(time.monotonic() > deadline), 1000)
        try:
            yield
        finally:
            raw.set_progress_handler(None, 0)
        return

    with connection.cursor() as cursor:
        cursor.execute("SHOW statement_timeout")
        (previous,) = cursor.fetchone()
    remaining = max(int((deadline - time.monotonic()) * 1000), 1)
    _set_statement_timeout(connection, f"{remaining}ms")
    failed = False
    try:
        yield
    except DatabaseError:
        failed = True
        raise
    finally:
        # rolling back an aborted transaction restores the previous value
        if not (failed and connection.in_atomic_block):
            _set_statement_timeout(connection, previous)


class DjangoCatalogStore:
    """Catalog backed by the `Product` model.

    Products are streamed with `QuerySet.iterator`, ordered by
    `CATALOG_ORDERING` with `pk` as the final tiebreaker, so two scans over
    the same data always yield the same order.
    """

    fields: tuple[str, ...] = tuple(ProductField.values)

    def __init__(
        self,
        queryset: Optional[QuerySet[Product]] = None,
        *,
        ordering: Optional[Sequence[str]] = None,
        chunk_size: Optional[int] = None,
    ):
        conf = collections_settings()
        self.queryset = queryset if queryset is not None else Product.objects.all()
        self.ordering = tuple(
            ordering if ordering is not None else conf["CATALOG_ORDERING"]
        )
        self.chunk_size = chunk_size or conf["CATALOG_CHUNK_SIZE"]

    def get_queryset(self) -> QuerySet[Product]:
        ordering = self.ordering
        if not any(o.lstrip("-") in {"pk", "id"} for o in ordering):
            ordering = (*ordering, "pk")
        return self.queryset.order_by(*ordering)

    def list_products(
        self, *, deadline: Optional[float] = None
    ) -> Iterator[CatalogProduct]:
        return self._stream(self.get_queryset(), deadline)

    def filter_products(
        self,
        hints: Sequence[CollectionRule],
        *,
        disjunctive: bool = False,
        deadline: Optional[float] = None,
    ) -> Iterator[CatalogProduct]:
        return self._stream(
            self.get_queryset().filter(build_hint_filter(hints, disjunctive=disjunctive)),
            deadline,
        )

    def _stream(
        self, qs: QuerySet[Product], deadline: Optional[float] = None
    ) -> Iterator[CatalogProduct]:
        try:
            rows = qs.values_list("pk", *self.fields).iterator(
                chunk_size=self.chunk_size
            )
            try:
                with statement_deadline(connections[qs.db], deadline):
                    for pk, *values in rows:
                        yield CatalogProduct(
                            id=pk, attributes=dict(zip(self.fields, values))
                        )
            finally:
                rows.close()
        except DatabaseError as e:
            if deadline is not None and time.monotonic() >= deadline:
                raise CatalogTimeout("Catalog scan exceeded its deadline") from e
            raise CatalogUnavailable(f"Catalog scan failed: {e}") from e


class DjangoCollectionStore:
    """Collection definitions backed by the `Collection` model.

    Reads never lock. A snapshot is accepted only if the collection's
    generation is the same before and after its rules and members were read,
    which rules out mixing two definitions.
    """

    def __init__(self, *, read_attempts: Optional[int] = None):
        self.read_attempts = (
            read_attempts
            if read_attempts is not None
            else collections_settings()["SNAPSHOT_READ_ATTEMPTS"]
        )

    def get_generation(self, collection_id: Any) -> int:
        try:
            return Collection.objects.values_list("generation", flat=True).get(
                pk=collection_id
            )
        except (Collection.DoesNotExist, ValueError, TypeError, DjangoValidationError):
            raise CollectionNotFound(collection_id) from None
        except DatabaseError as e:
            raise CatalogUnavailable(f"Collection store failed: {e}") from e

    def get_collection(self, collection_id: Any) -> CollectionSnapshot:
        for _ in range(max(self.read_attempts, 1)):
            try:
                row = Collection.objects.values("pk", "generation", "ruleset_mode").get(
                    pk=collection_id
                )
            except (
                Collection.DoesNotExist,
                ValueError,
                TypeError,
                DjangoValidationError,
            ):
                raise CollectionNotFound(collection_id) from None
            except DatabaseError as e:
                raise CatalogUnavailable(f"Collection store failed: {e}") from e

            try:
                rules = [
                    rule.to_rule()
                    for rule in Rule.objects.filter(collection_id=row["pk"]).order_by(
                        "position", "pk"
                    )
                ]
                product_ids = tuple(
                    Membership.objects.filter(collection_id=row["pk"])
                    .order_by("position", "pk")
                    .values_list("product_id", flat=True)
                )
            except DatabaseError as e:
                raise CatalogUnavailable(f"Collection store failed: {e}") from e

            if self.get_generation(row["pk"]) != row["generation"]:
                logger.debug(
                    "Collection %s changed while being read, retrying", row["pk"]
                )
                continue

            mode = row["ruleset_mode"]
            rule_set = (
                RuleSet(
                    rules=tuple(rules),
                    disjunctive=mode == Collection.RuleSetMode.DISJUNCTIVE,
                )
                if mode is not None
                else None
            )
            return CollectionSnapshot(
                id=row["pk"],
                generation=row["generation"],
                rule_set=rule_set,
                product_ids=product_ids,
            )

        raise CatalogUnavailable(
            f'Collection "{collection_id}" kept changing while being read'
        )
