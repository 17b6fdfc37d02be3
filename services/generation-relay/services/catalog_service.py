from typing import List, Optional

from domain.models import Product

# Static mock catalog; images are served by the frontend
_PRODUCTS = [
    Product(id="1", title="Cartoon Graphic T-Shirt", image="/mock-clothes/tshirt1.jpg", price="$19.99"),
    Product(id="2", title="Blue Patterned Shirt", image="/mock-clothes/shirt1.jpg", price="$24.99"),
    Product(id="3", title="Classic Black Pants", image="/mock-clothes/pants1.jpg", price="$29.99"),
    Product(id="4", title="Casual Brown Chinos", image="/mock-clothes/pants2.jpg", price="$27.99"),
]


class CatalogService:
    def list_products(self) -> List[Product]:
        return list(_PRODUCTS)

    def get_product(self, product_id: str) -> Optional[Product]:
        return next((p for p in _PRODUCTS if p.id == product_id), None)
