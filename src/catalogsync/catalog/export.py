"""CSV export of the transformed catalog, for manual upload as a fallback feed."""
import csv
import io
from pathlib import Path
from typing import Iterable, List

from catalogsync.catalog.transformer import DEFAULT_SITE_URL, transform
from catalogsync.models.product import Product

CSV_COLUMNS = [
    "retailer_id",
    "name",
    "description",
    "price",
    "currency",
    "availability",
    "image_url",
    "url",
    "condition",
    "category",
]


def export_rows(products: Iterable[Product], site_url: str = DEFAULT_SITE_URL) -> List[List[str]]:
    """One row per product, in CSV_COLUMNS order. Price in major units."""
    rows = []
    for product in products:
        item = transform(product, site_url=site_url)
        rows.append(
            [
                item.retailer_id,
                item.name,
                item.description,
                f"{item.price / 100:.2f}",
                item.currency,
                item.availability.value,
                item.image_url,
                item.url,
                item.condition or "new",
                item.category or "",
            ]
        )
    return rows


def render_csv(products: Iterable[Product], site_url: str = DEFAULT_SITE_URL) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    writer.writerows(export_rows(products, site_url))
    return buf.getvalue()


def write_csv(path, products: Iterable[Product], site_url: str = DEFAULT_SITE_URL) -> int:
    """Write the export to `path`. Returns the number of product rows."""
    rows = export_rows(products, site_url)
    with Path(path).open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        writer.writerows(rows)
    return len(rows)
