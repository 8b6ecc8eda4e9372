"""Code for interacting with Django settings."""

from typing import Optional, cast

from django.conf import settings
from typing_extensions import TypedDict


class CatalogCollectionsSettings(TypedDict):
    """Dictionary defining the shape `settings.CATALOG_COLLECTIONS` should have.

    All settings are optional and have defaults as described in their docstrings and
    defined in `DEFAULT_COLLECTIONS_SETTINGS`.
    """

    #: If True, string rules compare values exactly. Otherwise both sides are
    #: casefolded before comparing.
    CASE_SENSITIVE_RULES: bool

    #: The default page size when neither `first` nor `last` is provided. Can be
    #: set to `None` to return the whole collection.
    PAGINATION_DEFAULT_LIMIT: Optional[int]

    #: The highest value accepted for `first` and `last`.
    MAX_PAGE_SIZE: int

    #: Product fields defining the catalog order of automatic collections.
    #: `pk` is always appended as the final tiebreaker.
    CATALOG_ORDERING: tuple[str, ...]

    #: Number of rows fetched per round trip while scanning the catalog.
    CATALOG_CHUNK_SIZE: int

    #: If True, rules that can be safely translated to database lookups are used
    #: to narrow the catalog scan.
    CATALOG_PREFILTER: bool

    #: Seconds a single catalog scan may take. `None` disables the deadline.
    CATALOG_TIMEOUT: Optional[float]

    #: How many times a request is retried after the catalog was unavailable.
    CATALOG_RETRY_ATTEMPTS: int

    #: Base delay in seconds between retries, doubled after each attempt.
    CATALOG_RETRY_BACKOFF: float

    #: How many optimistic reads of a collection definition are attempted
    #: while writers keep changing it.
    SNAPSHOT_READ_ATTEMPTS: int


DEFAULT_COLLECTIONS_SETTINGS = CatalogCollectionsSettings(
    CASE_SENSITIVE_RULES=False,
    PAGINATION_DEFAULT_LIMIT=100,
    MAX_PAGE_SIZE=100,
    CATALOG_ORDERING=("created_at",),
    CATALOG_CHUNK_SIZE=2000,
    CATALOG_PREFILTER=True,
    CATALOG_TIMEOUT=30.0,
    CATALOG_RETRY_ATTEMPTS=2,
    CATALOG_RETRY_BACKOFF=0.05,
    SNAPSHOT_READ_ATTEMPTS=5,
)


def collections_settings() -> CatalogCollectionsSettings:
    """Get catalog collections settings.

    Return the dictionary from `settings.CATALOG_COLLECTIONS`, with defaults
    for missing keys.

    Preferred to direct access for the type hints and defaults.
    """
    defaults = DEFAULT_COLLECTIONS_SETTINGS
    return cast(
        "CatalogCollectionsSettings",
        {**defaults, **getattr(settings, "CATALOG_COLLECTIONS", {})},
    )
