from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Optional

from .exceptions import CatalogUnavailable, CollectionError
from .pagination import Page, paginate, validate_pagination_arguments
from .resolver import MembershipResolver, ScanBudget
from .settings import CatalogCollectionsSettings, collections_settings
from .stores import (
    CatalogStore,
    CollectionStore,
    DjangoCatalogStore,
    DjangoCollectionStore,
    ProductRef,
)

logger = logging.getLogger(__name__)


class RequestState(enum.Enum):
    VALIDATING = "validating"
    RESOLVING = "resolving"
    PAGINATING = "paginating"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    RequestState.VALIDATING: {RequestState.RESOLVING, RequestState.FAILED},
    RequestState.RESOLVING: {RequestState.PAGINATING, RequestState.FAILED},
    RequestState.PAGINATING: {RequestState.DONE, RequestState.FAILED},
    RequestState.DONE: set(),
    RequestState.FAILED: set(),
}


class CollectionRequest:
    """Tracks the state of one `get_collection_products` call."""

    def __init__(self, collection_id: Any):
        self.collection_id = collection_id
        self.state = RequestState.VALIDATING
        self.error: Optional[Exception] = None

    def advance(self, state: RequestState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid request transition {self.state.name} -> {state.name}"
            )
        logger.debug(
            "Collection %s request: %s -> %s",
            self.collection_id,
            self.state.name,
            state.name,
        )
        self.state = state

    def fail(self, error: Exception) -> None:
        self.error = error
        self.advance(RequestState.FAILED)


def request_timeout(settings: CatalogCollectionsSettings) -> Optional[float]:
    """Longest time a request may take, counting every retry and its backoff."""
    timeout = settings["CATALOG_TIMEOUT"]
    if timeout is None:
        return None
    attempts = max(settings["CATALOG_RETRY_ATTEMPTS"], 0) + 1
    backoff = settings["CATALOG_RETRY_BACKOFF"]
    return attempts * timeout + sum(backoff * 2**n for n in range(attempts - 1))


class CollectionService:
    """Resolve a collection's membership and paginate it as one operation.

    The collection snapshot is read once per attempt, and the page returned
    always carries the generation of that snapshot, so cursors and items of
    a page can never disagree.
    """

    def __init__(
        self,
        collections: Optional[CollectionStore] = None,
        catalog: Optional[CatalogStore] = None,
        *,
        settings: Optional[CatalogCollectionsSettings] = None,
        sleep=time.sleep,
    ):
        self.settings = settings or collections_settings()
        self.collections = (
            collections if collections is not None else DjangoCollectionStore()
        )
        self.catalog = catalog if catalog is not None else DjangoCatalogStore()
        self.sleep = sleep

    def get_resolver(self) -> MembershipResolver:
        # the case policy is fixed for the whole request
        return MembershipResolver(
            self.catalog,
            case_sensitive=self.settings["CASE_SENSITIVE_RULES"],
            prefilter=self.settings["CATALOG_PREFILTER"],
        )

    def get_collection_products(
        self,
        collection_id: Any,
        *,
        first: Optional[int] = None,
        after: Optional[str] = None,
        last: Optional[int] = None,
        before: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Page[ProductRef]:
        attempts = max(self.settings["CATALOG_RETRY_ATTEMPTS"], 0) + 1
        backoff = self.settings["CATALOG_RETRY_BACKOFF"]

        for attempt in range(attempts):
            request = CollectionRequest(collection_id)
            try:
                return self._run(
                    request,
                    first=first,
                    after=after,
                    last=last,
                    before=before,
                    timeout=timeout,
                    cancel_event=cancel_event,
                )
            except CatalogUnavailable as e:
                if attempt + 1 >= attempts or (
                    cancel_event is not None and cancel_event.is_set()
                ):
                    logger.error(
                        "Catalog unavailable for collection %s after %d attempt(s): %s",
                        collection_id,
                        attempt + 1,
                        e,
                    )
                    raise
                delay = backoff * 2**attempt
                logger.warning(
                    "Catalog unavailable for collection %s (attempt %d/%d), "
                    "retrying in %.2fs: %s",
                    collection_id,
                    attempt + 1,
                    attempts,
                    delay,
                    e,
                )
                self.sleep(delay)

        raise AssertionError("unreachable")

    def _run(
        self,
        request: CollectionRequest,
        *,
        first: Optional[int],
        after: Optional[str],
        last: Optional[int],
        before: Optional[str],
        timeout: Optional[float],
        cancel_event: Optional[threading.Event],
    ) -> Page[ProductRef]:
        settings = self.settings
        try:
            validate_pagination_arguments(
                first=first,
                after=after,
                last=last,
                before=before,
                max_results=settings["MAX_PAGE_SIZE"],
            )
            snapshot = self.collections.get_collection(request.collection_id)
            snapshot.validate()

            request.advance(RequestState.RESOLVING)
            budget = ScanBudget.from_timeout(
                timeout if timeout is not None else settings["CATALOG_TIMEOUT"],
                cancel_event,
            )
            sequence = self.get_resolver().resolve(snapshot, budget=budget)

            request.advance(RequestState.PAGINATING)
            page = paginate(
                sequence,
                collection_id=snapshot.id,
                generation=snapshot.generation,
                first=first,
                after=after,
                last=last,
                before=before,
                max_results=settings["MAX_PAGE_SIZE"],
                default_limit=settings["PAGINATION_DEFAULT_LIMIT"],
            )
        except CollectionError as e:
            request.fail(e)
            raise

        request.advance(RequestState.DONE)
        logger.debug(
            "Collection %s generation %s: %d edge(s), next=%s, previous=%s",
            snapshot.id,
            page.generation,
            len(page.edges),
            page.has_next_page,
            page.has_previous_page,
        )
        return page

    def resolve_all(
        self,
        collection_id: Any,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[ProductRef]:
        """Return the whole membership of a collection, unpaginated."""
        snapshot = self.collections.get_collection(collection_id)
        budget = ScanBudget.from_timeout(
            timeout if timeout is not None else self.settings["CATALOG_TIMEOUT"],
            cancel_event,
        )
        return list(self.get_resolver().resolve(snapshot, budget=budget))
