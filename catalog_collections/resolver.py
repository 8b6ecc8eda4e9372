from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Iterable, Iterator
from typing import Optional

from .exceptions import CatalogTimeout, CatalogUnavailable, ResolutionCancelled
from .rules import CollectionRule, FieldType, RuleRelation, RuleSet, combine
from .stores import (
    CatalogProduct,
    CatalogStore,
    CollectionSnapshot,
    MembershipKind,
    ProductRef,
)

logger = logging.getLogger(__name__)

_NUMERIC_HINT_RELATIONS = frozenset(
    {RuleRelation.EQUALS, RuleRelation.GREATER_THAN, RuleRelation.LESS_THAN}
)
_STRING_HINT_RELATIONS = frozenset(
    {
        RuleRelation.EQUALS,
        RuleRelation.CONTAINS,
        RuleRelation.STARTS_WITH,
        RuleRelation.ENDS_WITH,
    }
)


@dataclasses.dataclass
class ScanBudget:
    """Limits for a single catalog scan.

    `deadline` is a `time.monotonic()` timestamp. Setting `cancel_event`
    aborts the scan at the next product.
    """

    deadline: Optional[float] = None
    cancel_event: Optional[threading.Event] = None

    @classmethod
    def from_timeout(
        cls,
        timeout: Optional[float],
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanBudget:
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(deadline=deadline, cancel_event=cancel_event)

    def check(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ResolutionCancelled("Collection resolution was cancelled")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise CatalogTimeout("Catalog scan exceeded its deadline")


def is_safe_hint(rule: CollectionRule, *, case_sensitive: bool) -> bool:
    """Whether a database lookup for `rule` can only widen the candidate set.

    Negated relations are never used since they would drop null attributes,
    and string lookups are only used when comparisons are case sensitive,
    because database case folding does not match `str.casefold`.
    """
    if rule.field_type is FieldType.STRING:
        return case_sensitive and rule.relation in _STRING_HINT_RELATIONS
    return rule.relation in _NUMERIC_HINT_RELATIONS


def prefilter_hints(
    rule_set: RuleSet, *, case_sensitive: bool
) -> Optional[tuple[CollectionRule, ...]]:
    """Pick the rules the catalog store can use to narrow a scan.

    Returns `None` when no narrowing is possible.
    """
    safe = tuple(
        rule
        for rule in rule_set.rules
        if is_safe_hint(rule, case_sensitive=case_sensitive)
    )
    if not safe:
        return None
    if rule_set.disjunctive and len(safe) != len(rule_set.rules):
        # a single unhintable disjunct may match any product
        return None
    return safe


class MembershipSequence(Iterable[ProductRef]):
    """Restartable, ordered membership of one collection snapshot.

    Every iteration starts from scratch: manual collections replay their
    stored list, automatic ones start a new catalog scan.
    """

    def __init__(
        self,
        resolver: MembershipResolver,
        snapshot: CollectionSnapshot,
        budget: Optional[ScanBudget] = None,
    ):
        self.resolver = resolver
        self.snapshot = snapshot
        self.budget = budget or ScanBudget()

    @property
    def generation(self) -> int:
        return self.snapshot.generation

    def __iter__(self) -> Iterator[ProductRef]:
        kind = self.snapshot.kind
        if kind is MembershipKind.MANUAL:
            return iter(self.snapshot.product_ids)
        if kind is MembershipKind.AUTOMATIC:
            assert self.snapshot.rule_set is not None
            return self.resolver.scan(self.snapshot.rule_set, self.budget)
        raise AssertionError(f"Unknown membership kind: {kind}")


class MembershipResolver:
    def __init__(
        self,
        catalog: CatalogStore,
        *,
        case_sensitive: bool = False,
        prefilter: bool = True,
    ):
        self.catalog = catalog
        self.case_sensitive = case_sensitive
        self.prefilter = prefilter

    def resolve(
        self, snapshot: CollectionSnapshot, *, budget: Optional[ScanBudget] = None
    ) -> MembershipSequence:
        snapshot.validate()
        return MembershipSequence(self, snapshot, budget)

    def candidates(
        self, rule_set: RuleSet, *, deadline: Optional[float] = None
    ) -> Iterable[CatalogProduct]:
        hints = (
            prefilter_hints(rule_set, case_sensitive=self.case_sensitive)
            if self.prefilter
            else None
        )
        if hints is None:
            return self.catalog.list_products(deadline=deadline)
        return self.catalog.filter_products(
            hints, disjunctive=rule_set.disjunctive, deadline=deadline
        )

    def scan(self, rule_set: RuleSet, budget: ScanBudget) -> Iterator[ProductRef]:
        if rule_set.disjunctive and not rule_set.rules:
            return

        budget.check()
        try:
            products = iter(self.candidates(rule_set, deadline=budget.deadline))
        except OSError as e:
            raise CatalogUnavailable(f"Catalog could not be read: {e}") from e

        scanned = matched = 0
        try:
            while True:
                budget.check()
                try:
                    product = next(products)
                except StopIteration:
                    break
                except OSError as e:
                    raise CatalogUnavailable(f"Catalog could not be read: {e}") from e

                scanned += 1
                if combine(rule_set, product, case_sensitive=self.case_sensitive):
                    matched += 1
                    yield product.id
        finally:
            close = getattr(products, "close", None)
            if close is not None:
                close()
            logger.debug("Scanned %d products, %d matched", scanned, matched)
