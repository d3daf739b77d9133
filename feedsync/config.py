"""Configuration and constants for the feed sync job."""

import os
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from feedsync.errors import ConfigurationError
from feedsync.models import FeedDefinition, MappingRules

__all__ = [
    "REQUEST_TIMEOUT",
    "CATEGORY_PAGE_SIZE",
    "MAX_LIST_PAGES",
    "ENRICHMENT_BACKOFF",
    "MEDIA_UPLOAD_BACKOFF",
    "TOKEN_EXPIRY_BUFFER",
    "DEFAULT_CURRENCY_ID",
    "MUST_HAVE_COLUMNS",
    "SyncSettings",
    "parse_mapping_rules",
    "get_feed_definitions",
]

# HTTP timeouts (seconds)
REQUEST_TIMEOUT = 30
FEED_DOWNLOAD_TIMEOUT = 120

# Pagination of catalog list endpoints
CATEGORY_PAGE_SIZE = 100
MAX_LIST_PAGES = 20  # Safety limit against a misbehaving API
TAX_PAGE_SIZE = 50

# Wait before retry n+1 of a rate-limited enrichment call (seconds)
ENRICHMENT_BACKOFF: Tuple[float, ...] = (30.0, 60.0, 120.0)

# Wait before upload attempt 1, 2, 3 of an image (seconds)
MEDIA_UPLOAD_BACKOFF: Tuple[float, ...] = (0.0, 10.0, 30.0)

# Re-authenticate this many seconds before the token actually expires
TOKEN_EXPIRY_BUFFER = 30
DEFAULT_TOKEN_TTL = 3600

# Shopware system currency (EUR)
DEFAULT_CURRENCY_ID = "b7d2554b0ce847cd82f3ac9bd1c0dfca"
DEFAULT_STOCK = 9999
SALES_CHANNEL_VISIBILITY_ALL = 30

# LLM settings
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DESCRIPTION_MAX_TOKENS = 400
MATCH_MAX_TOKENS = 50

DEFAULT_MANUFACTURER = "Default Hersteller"
DEFAULT_DEEPLINK_FIELD = "real_productlink"
DEFAULT_SHIPPING_FIELD = "shipping_general"
DEFAULT_VAT_DIVISOR = 1.19

CATEGORY_PATH_SEPARATOR = " > "


# =============================================================================
# Feed Columns
# =============================================================================
# Canonical UTF-8 column names of the product feed. Every parsed row carries
# all of these keys, empty when the feed does not provide the column.

COLUMN_DEEPLINK = "Produkt-Deeplink"
COLUMN_TITLE = "Produkt-Titel"
COLUMN_DESCRIPTION = "Produktbeschreibung"
COLUMN_DESCRIPTION_LONG = "Produktbeschreibung lang"
COLUMN_PRICE_GROSS = "Preis (Brutto)"
COLUMN_STRIKE_PRICE = "Streichpreis"
COLUMN_EAN = "europäische Artikelnummer EAN"
COLUMN_AAN = "Anbieter Artikelnummer AAN"
COLUMN_MANUFACTURER = "Hersteller"
COLUMN_IMAGE_URL = "Produktbild-URL"
COLUMN_PREVIEW_IMAGE_URL = "Vorschaubild-URL"
COLUMN_CATEGORY = "Produktkategorie"
COLUMN_SHIPPING = "Versandkosten Allgemein"
COLUMN_DELIVERY_TIME = "Lieferzeit"

MUST_HAVE_COLUMNS: Tuple[str, ...] = (
    COLUMN_DEEPLINK,
    COLUMN_TITLE,
    COLUMN_DESCRIPTION,
    COLUMN_DESCRIPTION_LONG,
    COLUMN_PRICE_GROSS,
    COLUMN_STRIKE_PRICE,
    COLUMN_EAN,
    COLUMN_AAN,
    COLUMN_MANUFACTURER,
    COLUMN_IMAGE_URL,
    COLUMN_PREVIEW_IMAGE_URL,
    COLUMN_CATEGORY,
    COLUMN_SHIPPING,
    COLUMN_DELIVERY_TIME,
)

# Header spellings seen in older feeds -> canonical column name
COLUMN_ALIASES: Dict[str, str] = {
    "Deeplink": COLUMN_DEEPLINK,
}

FEED_URL_PATTERN = re.compile(r"^FEED_URL_(\d+)$")


# =============================================================================
# Runtime Settings
# =============================================================================

def _get_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw.replace(",", "."))
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{key} must be greater than zero, got {raw!r}")
    return value


def _get_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class SyncSettings:
    """Runtime settings, read from the environment once per run."""

    shopware_api_url: str = ""
    shopware_client_id: str = ""
    shopware_client_secret: str = ""
    sales_channel_name: str = "Storefront"
    openai_api_key: str = ""
    openai_model: str = DEFAULT_OPENAI_MODEL
    vat_divisor: float = DEFAULT_VAT_DIVISOR
    currency_id: str = DEFAULT_CURRENCY_ID
    stock: int = DEFAULT_STOCK
    default_manufacturer: str = DEFAULT_MANUFACTURER
    deeplink_field: str = DEFAULT_DEEPLINK_FIELD
    shipping_field: str = DEFAULT_SHIPPING_FIELD

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SyncSettings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Raises:
            ConfigurationError: If a numeric setting cannot be parsed
        """
        env = os.environ if environ is None else environ
        return cls(
            shopware_api_url=env.get("SHOPWARE_API_URL", "").rstrip("/"),
            shopware_client_id=env.get("SHOPWARE_CLIENT_ID", ""),
            shopware_client_secret=env.get("SHOPWARE_CLIENT_SECRET", ""),
            sales_channel_name=env.get("SHOPWARE_SALES_CHANNEL_NAME") or "Storefront",
            openai_api_key=env.get("OPENAI_API_KEY", ""),
            openai_model=env.get("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            vat_divisor=_get_float(env, "VAT_DIVISOR", DEFAULT_VAT_DIVISOR),
            currency_id=env.get("SHOPWARE_CURRENCY_ID") or DEFAULT_CURRENCY_ID,
            stock=_get_int(env, "PRODUCT_STOCK", DEFAULT_STOCK),
            default_manufacturer=env.get("DEFAULT_MANUFACTURER") or DEFAULT_MANUFACTURER,
            deeplink_field=env.get("CUSTOM_FIELD_DEEPLINK") or DEFAULT_DEEPLINK_FIELD,
            shipping_field=env.get("CUSTOM_FIELD_SHIPPING") or DEFAULT_SHIPPING_FIELD,
        )

    def require_catalog_credentials(self) -> None:
        """Raise ConfigurationError if the catalog API cannot be reached."""
        missing = [
            name
            for name, value in (
                ("SHOPWARE_API_URL", self.shopware_api_url),
                ("SHOPWARE_CLIENT_ID", self.shopware_client_id),
                ("SHOPWARE_CLIENT_SECRET", self.shopware_client_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing settings: {', '.join(missing)}")


# =============================================================================
# Feed Definitions
# =============================================================================

def parse_mapping_rules(text: str) -> MappingRules:
    """Parse ``source=target|source2=target2`` into ordered pairs.

    Pairs without ``=`` or with an empty side are ignored.
    """
    rules: MappingRules = []
    for pair in (text or "").split("|"):
        pair = pair.strip()
        if not pair or "=" not in pair:
            continue
        source, target = pair.split("=", 1)
        source, target = source.strip(), target.strip()
        if source and target:
            rules.append((source, target))
    return rules


def get_feed_definitions(environ: Optional[Mapping[str, str]] = None) -> List[FeedDefinition]:
    """Collect feed definitions from ``FEED_URL_<n>`` style variables.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        Feed definitions ordered by their numeric index
    """
    env = os.environ if environ is None else environ
    definitions: List[FeedDefinition] = []

    for key, url in env.items():
        match = FEED_URL_PATTERN.match(key)
        if not match or not url.strip():
            continue
        index = int(match.group(1))
        definitions.append(
            FeedDefinition(
                url=url.strip(),
                identifier=(env.get(f"FEED_ID_{index}") or f"FEED{index}").strip(),
                mapping_rules=tuple(parse_mapping_rules(env.get(f"FEED_MAPPING_{index}", ""))),
                index=index,
                default_manufacturer=(env.get(f"FEED_DEFAULT_MANUFACTURER_{index}") or "").strip() or None,
            )
        )

    definitions.sort(key=lambda d: d.index)
    return definitions
