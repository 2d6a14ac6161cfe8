import pytest
from fastapi.testclient import TestClient

from storefront.app import create_app


@pytest.fixture
def client(services):
    with TestClient(create_app(services, start_sweeper=False)) as c:
        yield c


@pytest.fixture
def cart_ready(make_product, make_address, carts):
    """Alice has 2 x 7.50 in her cart and a saved address."""
    pid = make_product(name="Mug", price="7.50", stock=3)
    carts.add_item(1, pid, 2)
    return {"product_id": pid, "address_id": make_address(user_id=1)}
