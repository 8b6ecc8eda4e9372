from decimal import Decimal

import pytest

from catalog_collections.stores import CollectionSnapshot

from .factories import ProductFactory
from .utils import MemoryCatalog, make_product


@pytest.fixture
def acme_products():
    return [
        make_product(1, title="P1", vendor="Acme", price="30"),
        make_product(2, title="P2", vendor="Acme", price="80"),
        make_product(3, title="P3", vendor="Other", price="10"),
    ]


@pytest.fixture
def memory_catalog(acme_products):
    return MemoryCatalog(acme_products)


@pytest.fixture
def acme_rules():
    return [
        ("VENDOR", "EQUALS", "Acme"),
        ("PRICE", "LESS_THAN", "50"),
    ]


@pytest.fixture
def catalog(db):
    """P1, P2 and P3 of the Acme scenario, in creation order."""
    return [
        ProductFactory.create(title="P1", vendor="Acme", price=Decimal("30.00")),
        ProductFactory.create(title="P2", vendor="Acme", price=Decimal("80.00")),
        ProductFactory.create(title="P3", vendor="Other", price=Decimal("10.00")),
    ]


@pytest.fixture
def manual_snapshot():
    return CollectionSnapshot(id=7, generation=1, product_ids=(3, 1, 2))
