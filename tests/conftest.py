import pytest

from cart_service import CartService
from fakes import NOW, InMemoryCartStore, InMemoryCatalog, InMemoryCouponDirectory, make_product


@pytest.fixture
def plant():
    """Product P from the pricing scenarios: 299 per unit, 5 in stock."""
    return make_product(price=299, stock=5, title="Snake Plant")


@pytest.fixture
def planter():
    """Product Q: 500 per unit."""
    return make_product(price=500, stock=10, title="Clay Planter")


@pytest.fixture
def catalog(plant, planter):
    return InMemoryCatalog(plant, planter)


@pytest.fixture
def store():
    return InMemoryCartStore()


@pytest.fixture
def directory():
    return InMemoryCouponDirectory()


@pytest.fixture
def service(store, catalog, directory):
    return CartService(store, catalog, directory, clock=lambda: NOW)
