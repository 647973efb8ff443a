"""Tests for Product → CatalogItem mapping and validation."""
from decimal import Decimal

import pytest

from catalogsync.catalog.transformer import (
    MAX_ADDITIONAL_IMAGES,
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    change_summary,
    force_https,
    has_changed,
    to_minor_units,
    transform,
    validate,
)
from catalogsync.models.catalog import Availability, RemoteCatalogItem
from catalogsync.models.product import Product


def _product(**overrides) -> Product:
    fields = dict(
        id="p1",
        name="Wireless Earbuds",
        description="Noise cancelling",
        price=Decimal("49.99"),
        category="Audio",
        image_url="https://cdn.example.com/p1.jpg",
        images=[],
        in_stock=True,
    )
    fields.update(overrides)
    return Product(**fields)


class TestToMinorUnits:
    def test_string_price(self):
        assert to_minor_units("49.99") == 4999

    def test_decimal_price(self):
        assert to_minor_units(Decimal("10.00")) == 1000

    def test_float_price_rounds_to_nearest_cent(self):
        """19.999 must not truncate to 1999."""
        assert to_minor_units(19.999) == 2000

    def test_half_cent_rounds_up(self):
        assert to_minor_units("0.005") == 1

    def test_none_is_zero(self):
        assert to_minor_units(None) == 0

    def test_garbage_is_zero(self):
        assert to_minor_units("abc") == 0


class TestForceHttps:
    def test_upgrades_http(self):
        assert force_https("http://a.com/x.jpg") == "https://a.com/x.jpg"

    def test_leaves_https_alone(self):
        assert force_https("https://a.com/x.jpg") == "https://a.com/x.jpg"


class TestTransform:
    def test_basic_mapping(self):
        item = transform(_product(), site_url="https://shop.example.com")
        assert item.retailer_id == "p1"
        assert item.price == 4999
        assert item.currency == "USD"
        assert item.availability == Availability.IN_STOCK
        assert item.url == "https://shop.example.com/product/p1"
        assert item.condition == "new"
        assert item.category == "Audio"
        assert item.custom_label_0 == "Audio"

    def test_deterministic(self):
        product = _product(images=["https://cdn.example.com/a.jpg"], badge="New")
        assert transform(product) == transform(product)

    def test_name_and_description_clamped(self):
        item = transform(_product(name="n" * 400, description="d" * 9000))
        assert len(item.name) == MAX_NAME_LENGTH
        assert len(item.description) == MAX_DESCRIPTION_LENGTH

    def test_out_of_stock_flag(self):
        assert transform(_product(in_stock=False)).availability == Availability.OUT_OF_STOCK

    def test_zero_stock_count_is_out_of_stock(self):
        assert transform(_product(stock_count=0)).availability == Availability.OUT_OF_STOCK

    def test_untracked_stock_is_in_stock(self):
        assert transform(_product(stock_count=None)).availability == Availability.IN_STOCK

    def test_primary_image_forced_to_https(self):
        item = transform(_product(image_url="http://cdn.example.com/p1.jpg"))
        assert item.image_url == "https://cdn.example.com/p1.jpg"

    def test_http_gallery_copy_of_primary_excluded(self):
        item = transform(_product(
            image_url="https://cdn.example.com/p1.jpg",
            images=["http://cdn.example.com/p1.jpg", "http://cdn.example.com/p2.jpg"],
        ))
        assert item.additional_image_urls == ["https://cdn.example.com/p2.jpg"]

    def test_additional_images_exclude_primary_and_cap(self):
        primary = "https://cdn.example.com/p1.jpg"
        gallery = [primary] + [f"http://cdn.example.com/{i}.jpg" for i in range(15)]
        item = transform(_product(image_url=primary, images=gallery))
        assert primary not in item.additional_image_urls
        assert len(item.additional_image_urls) <= MAX_ADDITIONAL_IMAGES
        assert all(url.startswith("https://") for url in item.additional_image_urls)

    def test_sale_price_set_when_discounted(self):
        item = transform(_product(price=Decimal("39.99"), original_price=Decimal("59.99")))
        assert item.sale_price == 3999

    def test_no_sale_price_without_discount(self):
        assert transform(_product(original_price=None)).sale_price is None

    def test_badge_becomes_custom_label(self):
        assert transform(_product(badge="Best Seller")).custom_label_1 == "Best Seller"

    def test_payload_drops_unset_optionals(self):
        payload = transform(_product(category=None)).to_payload()
        assert "category" not in payload
        assert "sale_price" not in payload
        assert "additional_image_urls" not in payload
        assert payload["availability"] == "in stock"


class TestValidate:
    def test_valid_product(self):
        result = validate(_product())
        assert result.valid
        assert result.errors == []

    def test_missing_image(self):
        result = validate(_product(image_url=None))
        assert not result.valid
        assert any("image" in e.lower() for e in result.errors)

    def test_non_http_image(self):
        result = validate(_product(image_url="ftp://cdn.example.com/p1.jpg"))
        assert "Image URL must be a valid HTTP/HTTPS URL" in result.errors

    def test_zero_price(self):
        assert "Invalid or missing price" in validate(_product(price=Decimal("0"))).errors

    def test_blank_name_and_description(self):
        errors = validate(_product(name="  ", description="")).errors
        assert "Missing product name" in errors
        assert "Missing product description" in errors

    def test_collects_every_error(self):
        errors = validate(_product(name="", description="", price=Decimal("0"), image_url=None)).errors
        assert len(errors) == 4


class TestHasChanged:
    def _remote(self, item, **overrides) -> RemoteCatalogItem:
        fields = dict(
            id="900",
            retailer_id=item.retailer_id,
            name=item.name,
            description=item.description,
            price=item.price,
            currency="USD",
            availability=item.availability.value,
            image_url=item.image_url,
            url=item.url,
        )
        fields.update(overrides)
        return RemoteCatalogItem(**fields)

    def test_no_previous_means_changed(self):
        assert has_changed(transform(_product()), None)

    def test_identical_remote_is_unchanged(self):
        item = transform(_product())
        assert not has_changed(item, self._remote(item))

    @pytest.mark.parametrize("field,value", [
        ("name", "Other"),
        ("price", 1),
        ("availability", "out of stock"),
        ("image_url", "https://cdn.example.com/other.jpg"),
    ])
    def test_each_compared_field_detects_change(self, field, value):
        item = transform(_product())
        assert has_changed(item, self._remote(item, **{field: value}))

    def test_summary_lists_price_change(self):
        item = transform(_product())
        summary = change_summary(item, self._remote(item, price=2999))
        assert summary == ["Price: $29.99 → $49.99"]

    def test_summary_new_product(self):
        assert change_summary(transform(_product()), None) == ["New product"]
