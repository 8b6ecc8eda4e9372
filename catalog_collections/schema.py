from __future__ import annotations

from typing import Optional

import strawberry
from strawberry import relay

from . import mutations
from .exceptions import CollectionNotFound
from .models import Collection
from .resolvers import django_resolver
from .rules import CollectionRule
from .types import (
    CollectionRuleColumn,
    CollectionRuleRelation,
    CollectionType,
    ProductConnection,
    collection_pk,
    parse_global_ids,
    resolve_collection_products,
)


@strawberry.input(name="CollectionRuleInput")
class CollectionRuleInput:
    field: CollectionRuleColumn
    relation: CollectionRuleRelation
    value: str

    def to_rule(self) -> CollectionRule:
        return CollectionRule(self.field, self.relation, self.value)


@strawberry.input(name="CollectionInput")
class CollectionInput:
    title: str
    description: str = ""
    image: Optional[str] = None
    rules: Optional[list[CollectionRuleInput]] = None
    applied_disjunctively: bool = False
    product_ids: Optional[list[relay.GlobalID]] = None


@strawberry.type
class Query:
    node: relay.Node = relay.node()

    @strawberry.field(description="Fetch a single collection by its global ID.")
    @django_resolver
    def collection(self, id: relay.GlobalID) -> Optional[CollectionType]:
        try:
            pk = collection_pk(id)
        except CollectionNotFound:
            return None
        instance = Collection.objects.filter(pk=pk).first()
        return CollectionType.from_model(instance) if instance is not None else None

    @strawberry.field(
        description="Paginate the products of a collection, manual or automatic."
    )
    def collection_products(
        self,
        collection_id: relay.GlobalID,
        first: Optional[int] = None,
        after: Optional[str] = None,
        last: Optional[int] = None,
        before: Optional[str] = None,
    ) -> ProductConnection:
        return resolve_collection_products(
            collection_pk(collection_id),
            first=first,
            after=after,
            last=last,
            before=before,
        )


@strawberry.type
class Mutation:
    @strawberry.mutation
    @django_resolver
    def create_collection(self, data: CollectionInput) -> CollectionType:
        collection = mutations.create_collection(
            data.title,
            description=data.description,
            image=data.image,
            rules=(
                [rule.to_rule() for rule in data.rules]
                if data.rules is not None
                else None
            ),
            disjunctive=data.applied_disjunctively,
            product_ids=(
                parse_global_ids(data.product_ids, "Product")
                if data.product_ids
                else None
            ),
        )
        return CollectionType.from_model(collection)

    @strawberry.mutation
    @django_resolver
    def set_collection_rules(
        self,
        id: relay.GlobalID,
        rules: list[CollectionRuleInput],
        applied_disjunctively: Optional[bool] = None,
    ) -> CollectionType:
        collection = mutations.set_rules(
            collection_pk(id),
            [rule.to_rule() for rule in rules],
            disjunctive=applied_disjunctively,
        )
        return CollectionType.from_model(collection)

    @strawberry.mutation
    @django_resolver
    def add_collection_products(
        self, id: relay.GlobalID, product_ids: list[relay.GlobalID]
    ) -> CollectionType:
        collection = mutations.add_products(
            collection_pk(id), parse_global_ids(product_ids, "Product")
        )
        return CollectionType.from_model(collection)

    @strawberry.mutation
    @django_resolver
    def remove_collection_products(
        self, id: relay.GlobalID, product_ids: list[relay.GlobalID]
    ) -> CollectionType:
        collection = mutations.remove_products(
            collection_pk(id), parse_global_ids(product_ids, "Product")
        )
        return CollectionType.from_model(collection)

    @strawberry.mutation
    @django_resolver
    def delete_collection(self, id: relay.GlobalID) -> bool:
        mutations.delete_collection(collection_pk(id))
        return True


schema = strawberry.Schema(query=Query, mutation=Mutation)
