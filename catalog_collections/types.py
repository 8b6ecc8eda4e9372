from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any, ClassVar, Optional

import strawberry
from django.utils.html import escape
from strawberry import Info, relay
from strawberry.relay import PageInfo
from typing_extensions import Self

from .exceptions import CollectionNotFound, ValidationError
from .models import Collection, Product
from .pagination import CollectionCursor, Page
from .resolvers import django_resolver
from .rules import ProductField, RuleRelation
from .service import CollectionService, request_timeout
from .settings import collections_settings

logger = logging.getLogger(__name__)

CollectionRuleColumn = strawberry.enum(ProductField, name="CollectionRuleColumn")
CollectionRuleRelation = strawberry.enum(RuleRelation, name="CollectionRuleRelation")


def get_service() -> CollectionService:
    return CollectionService()


def collection_request_timeout() -> Optional[float]:
    return request_timeout(collections_settings())


def parse_global_ids(ids: Iterable[relay.GlobalID], type_name: str) -> list[int]:
    parsed = []
    for gid in ids:
        if gid.type_name != type_name:
            raise ValidationError(f'"{gid}" is not a {type_name} id')
        try:
            parsed.append(int(gid.node_id))
        except ValueError:
            raise ValidationError(f'"{gid}" is not a valid {type_name} id') from None
    return parsed


def collection_pk(gid: relay.GlobalID) -> int:
    if gid.type_name != "Collection":
        raise CollectionNotFound(gid.node_id)
    try:
        return int(gid.node_id)
    except ValueError:
        raise CollectionNotFound(gid.node_id) from None


@strawberry.type(name="Product")
class ProductType(relay.Node):
    pk: relay.NodeID[int]
    title: str
    product_type: str
    vendor: str
    variant_title: str
    price: Decimal
    compare_at_price: Optional[Decimal]
    weight: Decimal
    inventory: int

    @classmethod
    def from_model(cls, product: Product) -> Self:
        return cls(
            pk=product.pk,
            title=product.title,
            product_type=product.product_type,
            vendor=product.vendor,
            variant_title=product.variant_title,
            price=product.price,
            compare_at_price=product.compare_at_price,
            weight=product.weight,
            inventory=product.inventory,
        )

    @classmethod
    @django_resolver
    def resolve_nodes(
        cls,
        *,
        info: Info,
        node_ids: Iterable[str],
        required: bool = False,
    ) -> list[Optional[Self]]:
        ids = [int(pk) for pk in node_ids]
        products = Product.objects.in_bulk(ids)
        return [
            cls.from_model(products[pk]) if pk in products else None for pk in ids
        ]


@strawberry.type(name="CollectionRule")
class CollectionRuleType:
    field: CollectionRuleColumn
    relation: CollectionRuleRelation
    value: str


@strawberry.type(name="RuleSet")
class RuleSetType:
    applied_disjunctively: bool
    rules: list[CollectionRuleType]


@strawberry.type(name="ProductEdge", description="An edge in a connection.")
class ProductEdge(relay.Edge[ProductType]):
    CURSOR_PREFIX: ClassVar[str] = CollectionCursor.PREFIX


@strawberry.type(
    name="ProductConnection", description="A connection to a list of products."
)
class ProductConnection(relay.Connection[ProductType]):
    edges: list[ProductEdge] = strawberry.field(  # type: ignore
        description="Contains the nodes in this connection"
    )
    generation: int = strawberry.field(
        description="Version of the collection membership this page was read at."
    )

    @classmethod
    def from_page(cls, page: Page[int], products: Mapping[int, Product]) -> Self:
        edges = []
        for edge in page.edges:
            product = products.get(edge.node)
            if product is None:
                # deleted after the membership was resolved
                logger.warning("Product %s vanished while building a page", edge.node)
                continue
            edges.append(
                ProductEdge(cursor=edge.cursor, node=ProductType.from_model(product))
            )

        return cls(
            edges=edges,
            generation=page.generation,
            page_info=PageInfo(
                start_cursor=edges[0].cursor if edges else None,
                end_cursor=edges[-1].cursor if edges else None,
                has_previous_page=page.has_previous_page,
                has_next_page=page.has_next_page,
            ),
        )


@django_resolver(cancellable=True, timeout=collection_request_timeout)
def resolve_collection_products(
    collection_id: Any,
    *,
    first: Optional[int] = None,
    after: Optional[str] = None,
    last: Optional[int] = None,
    before: Optional[str] = None,
    cancel_event=None,
) -> ProductConnection:
    page = get_service().get_collection_products(
        collection_id,
        first=first,
        after=after,
        last=last,
        before=before,
        cancel_event=cancel_event,
    )
    return ProductConnection.from_page(page, Product.objects.in_bulk(page.nodes))


@strawberry.type(name="Collection")
class CollectionType(relay.Node):
    pk: relay.NodeID[int]
    title: str
    description: str = strawberry.field(description="HTML-escaped description.")
    image: Optional[str]
    generation: int
    rule_set: Optional[RuleSetType]

    @classmethod
    def from_model(cls, collection: Collection) -> Self:
        rule_set = None
        if collection.is_automatic:
            rule_set = RuleSetType(
                applied_disjunctively=(
                    collection.ruleset_mode == Collection.RuleSetMode.DISJUNCTIVE
                ),
                rules=[
                    CollectionRuleType(
                        field=ProductField(rule.field),
                        relation=RuleRelation(rule.relation),
                        value=rule.value,
                    )
                    for rule in collection.rules.order_by("position", "pk")
                ],
            )
        return cls(
            pk=collection.pk,
            title=collection.title,
            description=escape(collection.description),
            image=collection.image or None,
            generation=collection.generation,
            rule_set=rule_set,
        )

    @classmethod
    @django_resolver
    def resolve_nodes(
        cls,
        *,
        info: Info,
        node_ids: Iterable[str],
        required: bool = False,
    ) -> list[Optional[Self]]:
        ids = [int(pk) for pk in node_ids]
        collections = Collection.objects.in_bulk(ids)
        return [
            cls.from_model(collections[pk]) if pk in collections else None
            for pk in ids
        ]

    @strawberry.field(description="Member products, in display order.")
    def products(
        self,
        first: Optional[int] = None,
        after: Optional[str] = None,
        last: Optional[int] = None,
        before: Optional[str] = None,
    ) -> ProductConnection:
        return resolve_collection_products(
            self.pk, first=first, after=after, last=last, before=before
        )
