"""Map raw feed rows onto ProductIntent records."""

from feedsync.config import (
    COLUMN_AAN,
    COLUMN_CATEGORY,
    COLUMN_DEEPLINK,
    COLUMN_DELIVERY_TIME,
    COLUMN_DESCRIPTION,
    COLUMN_DESCRIPTION_LONG,
    COLUMN_EAN,
    COLUMN_IMAGE_URL,
    COLUMN_MANUFACTURER,
    COLUMN_PREVIEW_IMAGE_URL,
    COLUMN_PRICE_GROSS,
    COLUMN_SHIPPING,
    COLUMN_STRIKE_PRICE,
    COLUMN_TITLE,
)
from feedsync.models import ProductIntent, RawRow

__all__ = ["build_product_number", "normalize_row"]


def build_product_number(feed_id: str, aan: str, ean: str) -> str:
    """Business key: ``<feed>-<aan>``, else ``<feed>-<ean>``, else empty."""
    if aan:
        return f"{feed_id}-{aan}"
    if ean:
        return f"{feed_id}-{ean}"
    return ""


def normalize_row(row: RawRow, feed_id: str) -> ProductIntent:
    """Build a ProductIntent from a raw row.

    Never fails. A row without EAN and AAN comes back with an empty
    product_number; callers must skip it.
    """

    def cell(column: str) -> str:
        return (row.get(column) or "").strip()

    ean = cell(COLUMN_EAN)
    aan = cell(COLUMN_AAN)

    return ProductIntent(
        deeplink=cell(COLUMN_DEEPLINK),
        title=cell(COLUMN_TITLE),
        description=cell(COLUMN_DESCRIPTION) or cell(COLUMN_DESCRIPTION_LONG),
        price_gross=cell(COLUMN_PRICE_GROSS),
        list_price=cell(COLUMN_STRIKE_PRICE),
        ean=ean,
        manufacturer_article_number=aan,
        manufacturer_name=cell(COLUMN_MANUFACTURER),
        image_url=cell(COLUMN_IMAGE_URL) or cell(COLUMN_PREVIEW_IMAGE_URL),
        category_hint=cell(COLUMN_CATEGORY),
        shipping_text=cell(COLUMN_SHIPPING),
        delivery_time_text=cell(COLUMN_DELIVERY_TIME),
        product_number=build_product_number(feed_id, aan, ean),
    )
