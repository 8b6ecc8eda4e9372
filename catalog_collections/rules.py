from __future__ import annotations

import dataclasses
import enum
import operator
from collections.abc import Callable, Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Union

from django.db import models
from django.utils.translation import gettext_lazy as _

from .exceptions import RuleTypeMismatch, RuleValidationError, UnknownProductField

if TYPE_CHECKING:
    from .stores import CatalogProduct


class ProductField(models.TextChoices):
    """Product attributes that collection rules can be written against."""

    TITLE = "title", _("Title")
    TYPE = "product_type", _("Type")
    VENDOR = "vendor", _("Vendor")
    VARIANT_TITLE = "variant_title", _("Variant title")
    PRICE = "price", _("Price")
    COMPARE_AT_PRICE = "compare_at_price", _("Compare at price")
    WEIGHT = "weight", _("Weight")
    INVENTORY = "inventory", _("Inventory")


class RuleRelation(models.TextChoices):
    EQUALS = "equals", _("Equals")
    NOT_EQUALS = "not_equals", _("Does not equal")
    CONTAINS = "contains", _("Contains")
    NOT_CONTAINS = "not_contains", _("Does not contain")
    STARTS_WITH = "starts_with", _("Starts with")
    ENDS_WITH = "ends_with", _("Ends with")
    GREATER_THAN = "greater_than", _("Greater than")
    LESS_THAN = "less_than", _("Less than")


class FieldType(enum.Enum):
    STRING = "string"
    DECIMAL = "decimal"
    INTEGER = "integer"


FIELD_TYPES: Mapping[ProductField, FieldType] = {
    ProductField.TITLE: FieldType.STRING,
    ProductField.TYPE: FieldType.STRING,
    ProductField.VENDOR: FieldType.STRING,
    ProductField.VARIANT_TITLE: FieldType.STRING,
    ProductField.PRICE: FieldType.DECIMAL,
    ProductField.COMPARE_AT_PRICE: FieldType.DECIMAL,
    ProductField.WEIGHT: FieldType.DECIMAL,
    ProductField.INVENTORY: FieldType.INTEGER,
}

STRING_RELATIONS = frozenset(
    {
        RuleRelation.EQUALS,
        RuleRelation.NOT_EQUALS,
        RuleRelation.CONTAINS,
        RuleRelation.NOT_CONTAINS,
        RuleRelation.STARTS_WITH,
        RuleRelation.ENDS_WITH,
    }
)
NUMERIC_RELATIONS = frozenset(
    {
        RuleRelation.EQUALS,
        RuleRelation.NOT_EQUALS,
        RuleRelation.GREATER_THAN,
        RuleRelation.LESS_THAN,
    }
)
SUPPORTED_RELATIONS: Mapping[FieldType, frozenset[RuleRelation]] = {
    FieldType.STRING: STRING_RELATIONS,
    FieldType.DECIMAL: NUMERIC_RELATIONS,
    FieldType.INTEGER: NUMERIC_RELATIONS,
}

# A missing (null) attribute only satisfies these
NEGATED_RELATIONS = frozenset({RuleRelation.NOT_EQUALS, RuleRelation.NOT_CONTAINS})

_COMPARATORS: Mapping[RuleRelation, Callable[[Any, Any], bool]] = {
    RuleRelation.EQUALS: operator.eq,
    RuleRelation.NOT_EQUALS: operator.ne,
    RuleRelation.CONTAINS: operator.contains,
    RuleRelation.NOT_CONTAINS: lambda value, operand: operand not in value,
    RuleRelation.STARTS_WITH: lambda value, operand: value.startswith(operand),
    RuleRelation.ENDS_WITH: lambda value, operand: value.endswith(operand),
    RuleRelation.GREATER_THAN: operator.gt,
    RuleRelation.LESS_THAN: operator.lt,
}

Operand = Union[str, Decimal, int]


def _coerce_choice(enum_cls: type[models.TextChoices], value: Any, kind: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value)
        except ValueError:
            pass
        try:
            return enum_cls[value.upper()]
        except KeyError:
            pass
    raise RuleValidationError(f'Unknown rule {kind} "{value}"')


def parse_rule_value(field: ProductField, value: str) -> Operand:
    """Parse a rule's raw string value under the type implied by `field`."""
    if not isinstance(value, str):
        raise RuleValidationError(
            f'Rule value for "{field.name}" must be a string', field=field.name
        )

    field_type = FIELD_TYPES[field]
    if field_type is FieldType.STRING:
        return value

    if field_type is FieldType.DECIMAL:
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            number = None
        if number is None or not number.is_finite():
            raise RuleValidationError(
                f'"{value}" is not a valid number for "{field.name}"',
                field=field.name,
            )
        return number

    try:
        return int(value.strip(), 10)
    except ValueError:
        raise RuleValidationError(
            f'"{value}" is not a valid integer for "{field.name}"',
            field=field.name,
        ) from None


@dataclasses.dataclass(frozen=True)
class CollectionRule:
    """A single (field, relation, value) condition.

    Instances are validated on construction, so the evaluator never has to
    check types while resolving a collection.
    """

    field: ProductField
    relation: RuleRelation
    value: str
    operand: Operand = dataclasses.field(init=False, repr=False, compare=False)
    folded_operand: Operand = dataclasses.field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self):
        field = _coerce_choice(ProductField, self.field, "field")
        relation = _coerce_choice(RuleRelation, self.relation, "relation")
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "relation", relation)

        field_type = FIELD_TYPES[field]
        if relation not in SUPPORTED_RELATIONS[field_type]:
            raise RuleTypeMismatch(field.name, relation.name, field_type.value)

        operand = parse_rule_value(field, self.value)
        object.__setattr__(self, "operand", operand)
        object.__setattr__(
            self,
            "folded_operand",
            operand.casefold() if isinstance(operand, str) else operand,
        )

    @property
    def field_type(self) -> FieldType:
        return FIELD_TYPES[self.field]


@dataclasses.dataclass(frozen=True)
class RuleSet:
    rules: tuple[CollectionRule, ...] = ()
    disjunctive: bool = False

    def __post_init__(self):
        object.__setattr__(self, "rules", tuple(self.rules))


def validate_rules(rules: Iterable[Any]) -> tuple[CollectionRule, ...]:
    """Build `CollectionRule` instances out of rules or (field, relation, value) items."""
    validated = []
    for rule in rules:
        if isinstance(rule, CollectionRule):
            validated.append(rule)
        elif isinstance(rule, Mapping):
            validated.append(
                CollectionRule(rule["field"], rule["relation"], rule["value"])
            )
        else:
            field, relation, value = rule
            validated.append(CollectionRule(field, relation, value))
    return tuple(validated)


def evaluate(
    rule: CollectionRule, product: CatalogProduct, *, case_sensitive: bool = False
) -> bool:
    try:
        value = product.attributes[rule.field]
    except KeyError:
        raise UnknownProductField(rule.field.name, product.id) from None

    if value is None:
        return rule.relation in NEGATED_RELATIONS

    if isinstance(value, str):
        if case_sensitive:
            operand = rule.operand
        else:
            value = value.casefold()
            operand = rule.folded_operand
    else:
        operand = rule.operand

    return _COMPARATORS[rule.relation](value, operand)


def combine(
    rule_set: RuleSet, product: CatalogProduct, *, case_sensitive: bool = False
) -> bool:
    """Combine the rules of a rule-set into a single match for `product`.

    An empty conjunctive rule-set matches everything, an empty disjunctive
    one matches nothing. `any` and `all` stop at the first deciding rule.
    """
    matches = (
        evaluate(rule, product, case_sensitive=case_sensitive)
        for rule in rule_set.rules
    )
    if rule_set.disjunctive:
        return any(matches)
    return all(matches)
