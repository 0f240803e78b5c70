import pytest

from factories import NOW, orders


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def declining_partner():
    """10 orders 35-44 days ago, 3 in the last 30 days"""
    return orders(range(35, 45), partner="P") + orders([1, 2, 3], partner="P")
