import pytest

from domain.models import SizingRequest
from services.catalog_service import CatalogService
from services.sizing_service import estimate_size


@pytest.mark.parametrize(
    "height,weight,expected",
    [
        (170, 70, "M"),
        (150, 70, "S"),
        (170, 50, "S"),
        (180, 70, "L"),
        (170, 85, "L"),
        (190, 70, "XL"),
        (170, 95, "XL"),
        # Small wins when both ends trip
        (190, 50, "S"),
        # Boundaries are exclusive
        (175, 80, "M"),
        (185, 90, "L"),
    ],
)
def test_estimate_size(height, weight, expected):
    assert estimate_size(SizingRequest(height=height, weight=weight)).size == expected


def test_catalog_lists_all_products():
    products = CatalogService().list_products()

    assert [p.id for p in products] == ["1", "2", "3", "4"]
    assert products[3].title == "Casual Brown Chinos"


def test_catalog_lookup():
    catalog = CatalogService()

    assert catalog.get_product("3").price == "$29.99"
    assert catalog.get_product("99") is None


def test_catalog_copy_is_independent():
    catalog = CatalogService()
    catalog.list_products().clear()

    assert len(catalog.list_products()) == 4
