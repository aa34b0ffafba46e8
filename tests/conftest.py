"""Shared fixtures for the vitrine test suite."""

import pytest

from vitrine.config import reset_config


@pytest.fixture(autouse=True)
def _isolated_config():
    """Make every test start from a fresh configuration manager."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def catalog_records():
    """Raw product dicts as served by the bulk summary endpoint."""
    return [
        {
            "id": 1,
            "name": "Berço Azul",
            "description": "Berço de madeira maciça com grade regulável",
            "price": 899.9,
            "compareAtPrice": 999.9,
            "vendorName": "Casa do Bebê",
            "categories": ["Berços"],
            "slug": "berco-azul",
        },
        {
            "id": 2,
            "name": "Cadeira Rosa",
            "description": "Cadeira de alimentação dobrável",
            "price": 349.0,
            "vendorName": "Loja Sol",
            "categories": ["Cadeiras"],
            "slug": "cadeira-rosa",
        },
        {
            "id": 3,
            "name": "Berço Rosa",
            "description": "Berço portátil com mosquiteiro",
            "price": 649.0,
            "vendorName": "Casa do Bebê",
            "categories": ["Berços"],
            "slug": "berco-rosa",
        },
    ]


@pytest.fixture
def clock():
    """Controllable clock for time-dependent cache behaviour."""

    class FakeClock:
        def __init__(self, now: float = 1_700_000_000.0):
            self.now = now

        def __call__(self) -> float:
            return self.now

        def advance(self, seconds: float) -> None:
            self.now += seconds

    return FakeClock()
