from .exceptions import (
    CatalogTimeout,
    CatalogUnavailable,
    CollectionConfigurationError,
    CollectionError,
    CollectionNotFound,
    InvalidPaginationArguments,
    ResolutionCancelled,
    RuleTypeMismatch,
    RuleValidationError,
    StaleCursor,
    UnknownProductField,
    ValidationError,
)
from .pagination import CollectionCursor, Page, PageEdge, paginate
from .rules import (
    CollectionRule,
    ProductField,
    RuleRelation,
    RuleSet,
    combine,
    evaluate,
)

__all__ = [
    "CatalogTimeout",
    "CatalogUnavailable",
    "CollectionConfigurationError",
    "CollectionCursor",
    "CollectionError",
    "CollectionNotFound",
    "CollectionRule",
    "InvalidPaginationArguments",
    "Page",
    "PageEdge",
    "ProductField",
    "ResolutionCancelled",
    "RuleRelation",
    "RuleSet",
    "RuleTypeMismatch",
    "RuleValidationError",
    "StaleCursor",
    "UnknownProductField",
    "ValidationError",
    "combine",
    "evaluate",
    "paginate",
]
