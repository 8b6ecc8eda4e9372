from __future__ import annotations

from typing import ClassVar, Optional


class CollectionError(Exception):
    """Base class for every error raised while resolving or editing collections.

    `code` is a stable, machine readable identifier that is exposed to GraphQL
    clients through the `extensions` of the error.
    """

    code: ClassVar[str] = "COLLECTION_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def extensions(self) -> dict[str, str]:
        # picked up by graphql-core when the error is wrapped in a GraphQLError
        return {"code": self.code}


class ValidationError(CollectionError):
    """Malformed input: rules, pagination arguments or collection definitions.

    Always surfaced to the caller, never retried.
    """

    code = "VALIDATION_ERROR"


class RuleValidationError(ValidationError):
    def __init__(self, message: str, *, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class RuleTypeMismatch(RuleValidationError):
    def __init__(self, field: str, relation: str, field_type: str):
        self.relation = relation
        self.field_type = field_type
        super().__init__(
            f'Relation "{relation}" cannot be used with {field_type} field "{field}"',
            field=field,
        )


class InvalidPaginationArguments(ValidationError):
    pass


class CollectionConfigurationError(ValidationError):
    pass


class CollectionNotFound(CollectionError):
    code = "NOT_FOUND"

    def __init__(self, collection_id: object):
        self.collection_id = collection_id
        super().__init__(f'Collection "{collection_id}" does not exist')


class CatalogUnavailable(CollectionError):
    """A collaborator store could not be reached. Transient."""

    code = "CATALOG_UNAVAILABLE"


class CatalogTimeout(CatalogUnavailable):
    pass


class StaleCursor(CollectionError):
    """The cursor cannot be reconciled with the current membership.

    Clients must restart pagination from the beginning.
    """

    code = "STALE_CURSOR"


class ResolutionCancelled(CollectionError):
    code = "CANCELLED"


class UnknownProductField(CollectionError):
    code = "CONFIGURATION_ERROR"

    def __init__(self, field: str, product_id: object):
        self.field = field
        self.product_id = product_id
        super().__init__(
            f'Product "{product_id}" does not expose the attribute "{field}"'
        )
