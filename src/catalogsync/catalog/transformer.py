"""
Product → external catalog item mapping.

Pure functions: no DB or network access here. The processor and the
reconciliation job feed Product rows in and get CatalogItem values out.

Catalog limits applied by transform():
  - name          ≤ 150 chars
  - description   ≤ 5000 chars
  - image URLs    https only, primary + at most 10 additional
  - price         integer minor units, rounded half-up to the cent
"""
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, List, Optional, Union

from catalogsync.models.catalog import Availability, CatalogItem, RemoteCatalogItem
from catalogsync.models.product import Product

DEFAULT_SITE_URL = "https://primepickz.com"

MAX_NAME_LENGTH = 150
MAX_DESCRIPTION_LENGTH = 5000
MAX_ADDITIONAL_IMAGES = 10

# Fields whose difference means the remote item is stale.
COMPARED_FIELDS = ("name", "description", "price", "availability", "image_url", "url")


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def to_minor_units(value: Any) -> int:
    """Convert a decimal price ("49.99", 49.99, Decimal) to integer cents."""
    cents = _to_decimal(value) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def force_https(url: str) -> str:
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


def _availability(product: Product) -> Availability:
    if product.in_stock and (product.stock_count is None or product.stock_count > 0):
        return Availability.IN_STOCK
    return Availability.OUT_OF_STOCK


def transform(product: Product, site_url: str = DEFAULT_SITE_URL) -> CatalogItem:
    """
    Map a storefront Product to a CatalogItem.

    Deterministic: the same product always yields an equal item.

    Args:
        product: Product row (or any object with the same attributes).
        site_url: Storefront base URL used for the product page link.

    Returns:
        CatalogItem ready for CatalogClient.upsert().
    """
    image_url = force_https(product.image_url) if product.image_url else None

    # The first 10 gallery entries, minus the primary image
    gallery = [force_https(img) for img in (product.images or [])[:MAX_ADDITIONAL_IMAGES] if isinstance(img, str)]
    additional = [url for url in gallery if url != image_url]

    price = to_minor_units(product.price)
    sale_price: Optional[int] = None
    if product.original_price is not None and _to_decimal(product.original_price) > _to_decimal(product.price):
        sale_price = price

    return CatalogItem(
        retailer_id=str(product.id),
        name=(product.name or "Product")[:MAX_NAME_LENGTH],
        description=(product.description or "")[:MAX_DESCRIPTION_LENGTH],
        price=price,
        currency="USD",
        availability=_availability(product),
        image_url=image_url,
        additional_image_urls=additional,
        url=f"{site_url.rstrip('/')}/product/{product.id}",
        category=product.category or None,
        custom_label_0=product.category or None,
        custom_label_1=product.badge or None,
        sale_price=sale_price,
    )


def validate(product: Product) -> ValidationResult:
    """Check that a product carries every field the catalog requires."""
    errors: List[str] = []

    if not product.id:
        errors.append("Missing product ID (retailer_id)")

    if not product.name or not product.name.strip():
        errors.append("Missing product name")

    if not product.description or not product.description.strip():
        errors.append("Missing product description")

    if product.price is None or _to_decimal(product.price) <= 0:
        errors.append("Invalid or missing price")

    if not product.image_url:
        errors.append("Missing image URL")
    elif not product.image_url.startswith(("http://", "https://")):
        errors.append("Image URL must be a valid HTTP/HTTPS URL")

    return ValidationResult(valid=not errors, errors=errors)


def has_changed(
    current: CatalogItem,
    previous: Optional[Union[CatalogItem, RemoteCatalogItem]],
) -> bool:
    """Return True if previous differs from current on any compared field."""
    if previous is None:
        return True
    return any(
        getattr(current, name) != getattr(previous, name, None)
        for name in COMPARED_FIELDS
    )


def change_summary(
    current: CatalogItem,
    previous: Optional[Union[CatalogItem, RemoteCatalogItem]],
) -> List[str]:
    """Human-readable list of differences, for logs."""
    if previous is None:
        return ["New product"]

    changes: List[str] = []
    if current.name != previous.name:
        changes.append(f'Name: "{previous.name}" → "{current.name}"')
    if current.price != previous.price:
        changes.append(
            f"Price: {_format_money(previous.price)} → {_format_money(current.price)}"
        )
    if current.availability != previous.availability:
        changes.append(
            f"Availability: {_availability_text(previous.availability)} → "
            f"{_availability_text(current.availability)}"
        )
    if current.image_url != previous.image_url:
        changes.append("Image updated")
    if current.description != previous.description:
        changes.append("Description updated")
    if current.url != previous.url:
        changes.append("URL updated")

    return changes or ["No changes detected"]


def _format_money(minor_units: Optional[int]) -> str:
    if minor_units is None:
        return "n/a"
    return f"${minor_units / 100:.2f}"


def _availability_text(value) -> str:
    return value.value if isinstance(value, Availability) else str(value)
