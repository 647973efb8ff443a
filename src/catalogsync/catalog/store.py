"""Read-only access to the storefront product table."""
from typing import List, Optional

from sqlmodel import Session, select

from catalogsync.models.product import Product


class ProductStore:
    """Reads products for the sync engine. Never writes."""

    def __init__(self, engine):
        self.engine = engine

    def fetch_product(self, product_id: str) -> Optional[Product]:
        with Session(self.engine) as s:
            return s.get(Product, product_id)

    def fetch_all_products(self) -> List[Product]:
        with Session(self.engine) as s:
            return list(s.exec(select(Product).order_by(Product.id)).all())
