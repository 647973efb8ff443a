"""External catalog item shapes (not persisted)."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlmodel import Field, SQLModel

# Fields requested from the catalog on reads; also the fields has_changed compares.
REMOTE_FIELDS = (
    "id",
    "retailer_id",
    "name",
    "description",
    "price",
    "currency",
    "availability",
    "image_url",
    "url",
)


class Availability(str, Enum):
    IN_STOCK = "in stock"
    OUT_OF_STOCK = "out of stock"
    PREORDER = "preorder"


class CatalogItem(SQLModel):
    """A product as the external catalog expects it."""

    retailer_id: str
    name: str = Field(max_length=150)
    description: str = Field(max_length=5000)
    price: int  # minor units (cents)
    currency: str = "USD"
    availability: Availability
    image_url: Optional[str] = None  # https only
    additional_image_urls: List[str] = Field(default_factory=list)
    url: str
    condition: str = "new"
    category: Optional[str] = None
    sale_price: Optional[int] = None  # minor units
    custom_label_0: Optional[str] = None
    custom_label_1: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the catalog API, without unset optionals."""
        payload = self.model_dump(mode="json", exclude_none=True)
        if not payload.get("additional_image_urls"):
            payload.pop("additional_image_urls", None)
        return payload


class RemoteCatalogItem(SQLModel):
    """A catalog item as read back from the external API."""

    id: Optional[str] = None  # external id
    retailer_id: str
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = None
    currency: Optional[str] = None
    availability: Optional[str] = None
    image_url: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "RemoteCatalogItem":
        """Build from a raw API dict, tolerating extra and loosely typed fields."""
        fields = {k: raw.get(k) for k in REMOTE_FIELDS if raw.get(k) is not None}
        fields["retailer_id"] = str(raw.get("retailer_id", ""))
        if "id" in fields:
            fields["id"] = str(fields["id"])
        fields["price"] = _parse_minor_units(raw.get("price"))
        return cls(**fields)


def _parse_minor_units(value: Any) -> Optional[int]:
    """
    Normalize a remote price to integer minor units.

    Bare integers ("1999", 1999) are already minor units. Anything with a
    decimal point or a currency marker ("19.9", "$20", "19.99 USD") is a
    major-unit amount and is converted to cents, rounded half-up.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        return _cents(Decimal(str(value)))

    text = str(value).strip()
    number = "".join(ch for ch in text if ch.isdigit() or ch in ".-")
    if not any(ch.isdigit() for ch in number):
        return None
    try:
        amount = Decimal(number)
    except InvalidOperation:
        return None
    marked = any(not (ch.isdigit() or ch in ".,- ") for ch in text)
    if "." in number or marked:
        return _cents(amount)
    return int(amount)


def _cents(amount: Decimal) -> Optional[int]:
    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
