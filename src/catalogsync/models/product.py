"""Storefront product model. Owned by the storefront; this service only reads it."""
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Product(SQLModel, table=True):
    """One row per storefront product."""

    id: str = Field(primary_key=True)
    name: str
    description: str = ""
    price: Decimal = Field(max_digits=10, decimal_places=2)
    original_price: Optional[Decimal] = Field(
        default=None, max_digits=10, decimal_places=2
    )
    category: Optional[str] = None
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    badge: Optional[str] = None  # "Best Seller", "New", ...
    in_stock: bool = True
    stock_count: Optional[int] = None  # None = untracked inventory
