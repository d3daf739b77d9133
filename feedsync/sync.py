"""Feed -> enrichment -> catalog sync orchestration.

Processes feeds strictly one after another and rows strictly in feed
order. For every row the product is looked up by its business key and
either created (with enrichment) or updated (prices and custom fields
only). A failing row is counted as skipped and never stops its feed; a
failing feed never stops the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from feedsync.catalog import CatalogClient, generate_id
from feedsync.config import SyncSettings
from feedsync.enrichment import EnrichmentClient
from feedsync.errors import FeedFetchError, FeedSyncError, RowSkipped
from feedsync.feed_reader import fetch_feed
from feedsync.logging_config import get_logger, log_sync_event
from feedsync.models import (
    EnrichmentStatus,
    FeedDefinition,
    FeedStats,
    MappingRule,
    ProductIntent,
    RawRow,
    RowOutcome,
)
from feedsync.row_normalizer import normalize_row
from feedsync.shutdown import shutdown_requested

__all__ = [
    "parse_decimal",
    "compute_prices",
    "build_price_block",
    "SyncReport",
    "SyncOrchestrator",
]

logger = get_logger("sync")

FeedFetcher = Callable[[str, Iterable[MappingRule]], List[RawRow]]

SKIP_NO_BUSINESS_KEY = "no business key"
SKIP_LOOKUP_FAILED = "lookup failed"
SKIP_IMAGE_FAILED = "image required for new products"
SKIP_CREATE_FAILED = "create failed"
SKIP_UPDATE_FAILED = "update failed"


# =============================================================================
# Pricing
# =============================================================================

def parse_decimal(text: str) -> float:
    """Parse a feed price like ``19,99`` or ``1.299,00 EUR`` into a float.

    Empty or unparseable input yields 0.0.
    """
    cleaned = "".join(ch for ch in (text or "") if ch.isdigit() or ch in ",.-")
    if not cleaned:
        return 0.0
    if "," in cleaned:
        # German notation: dots group thousands, the comma is the decimal mark
        cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def compute_prices(gross_text: str, strike_text: str) -> Tuple[float, Optional[float]]:
    """Apply the pricing rule to the feed's gross and strike prices.

    With a strike price above zero the strike price is what the customer
    pays and the gross price becomes the struck-through list price.

    Returns:
        (actual gross price, list price or None)
    """
    gross = parse_decimal(gross_text)
    strike = parse_decimal(strike_text)
    if strike > 0:
        return strike, gross
    return gross, None


def build_price_block(
    actual: float,
    list_price: Optional[float],
    settings: SyncSettings,
) -> List[Dict[str, Any]]:
    """Build the ``price`` field of a product payload."""
    price: Dict[str, Any] = {
        "currencyId": settings.currency_id,
        "gross": actual,
        "net": actual / settings.vat_divisor,
        "linked": False,
    }
    if list_price is not None and list_price > 0:
        price["listPrice"] = {
            "currencyId": settings.currency_id,
            "gross": list_price,
            "net": list_price / settings.vat_divisor,
            "linked": False,
        }
    return [price]


# =============================================================================
# Orchestration
# =============================================================================

@dataclass
class SyncReport:
    """Result of a whole run."""

    feeds: List[FeedStats] = field(default_factory=list)
    interrupted: bool = False

    @property
    def created(self) -> int:
        return sum(s.created for s in self.feeds)

    @property
    def updated(self) -> int:
        return sum(s.updated for s in self.feeds)

    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.feeds)


class SyncOrchestrator:
    """Drives the per-row create/update decision for every configured feed.

    Args:
        catalog: Catalog API client (owns the manufacturer cache)
        enrichment: Text enrichment client
        settings: Runtime settings (VAT divisor, custom field names, ...)
        fetch: Feed fetcher, ``fetch(url, mapping_rules) -> rows``
        stop_requested: Checked between feeds and between rows
    """

    def __init__(
        self,
        catalog: CatalogClient,
        enrichment: EnrichmentClient,
        settings: SyncSettings,
        fetch: Optional[FeedFetcher] = None,
        stop_requested: Callable[[], bool] = shutdown_requested,
    ):
        self.catalog = catalog
        self.enrichment = enrichment
        self.settings = settings
        self.fetch = fetch or fetch_feed
        self.stop_requested = stop_requested

        self.category_index: Dict[str, str] = {}
        self.delivery_time_index: Dict[str, str] = {}

    def prepare(self) -> None:
        """Authenticate and load lookup tables.

        Raises:
            AuthenticationError: If the catalog rejects our credentials
        """
        self.catalog.authenticate()
        self.category_index = self.catalog.load_category_index()
        self.delivery_time_index = self.catalog.load_delivery_time_index()

    def run(self, feeds: List[FeedDefinition]) -> SyncReport:
        """Sync every feed in order.

        Raises:
            AuthenticationError: If the initial authentication fails
        """
        self.prepare()
        report = SyncReport()

        for feed in feeds:
            if self.stop_requested():
                logger.warning("Shutdown requested, not starting further feeds")
                report.interrupted = True
                break
            stats = self.sync_feed(feed)
            report.feeds.append(stats)
            if self.stop_requested():
                report.interrupted = True
                break

        log_sync_event("run_complete", {
            "message": (
                f"Run finished: {len(report.feeds)}/{len(feeds)} feeds, "
                f"Created={report.created}, Updated={report.updated}, Skipped={report.skipped}"
            ),
            "feeds": [s.to_dict() for s in report.feeds],
            "interrupted": report.interrupted,
        })
        return report

    def sync_feed(self, feed: FeedDefinition) -> FeedStats:
        """Sync one feed. Feed-level failures are recorded, never raised."""
        stats = FeedStats(feed_id=feed.identifier)
        logger.info(f"===== Processing feed '{feed.identifier}' =====")
        log_sync_event("feed_start", {"feed_id": feed.identifier, "url": feed.url})

        try:
            rows = self.fetch(feed.url, feed.mapping_rules)
        except FeedFetchError as e:
            stats.error = str(e)
            logger.error(f"Feed '{feed.identifier}' failed: {e}")
            log_sync_event("feed_failed", {"feed_id": feed.identifier, "url": feed.url, "error": str(e)},
                           level=logging.ERROR)
            return stats

        total = len(rows)
        for index, row in enumerate(rows, start=1):
            if self.stop_requested():
                logger.warning(f"Shutdown requested, stopping feed '{feed.identifier}' at row {index}/{total}")
                break

            logger.info(f"Processing row {index} / {total} for feed '{feed.identifier}'")
            intent = normalize_row(row, feed.identifier)
            try:
                outcome = self.process_row(intent, feed)
            except RowSkipped as e:
                self._record_skip(stats, feed, index, intent, e.reason)
                continue
            except FeedSyncError as e:
                self._record_skip(stats, feed, index, intent, str(e))
                continue
            except Exception as e:
                logger.exception(f"Unexpected error in feed '{feed.identifier}' row {index}")
                self._record_skip(stats, feed, index, intent, f"unexpected error: {e}")
                continue

            stats.record(outcome)
            log_sync_event(f"product_{outcome}", {
                "feed_id": feed.identifier,
                "row": index,
                "title": intent.title,
                "product_number": intent.product_number,
            }, level=logging.DEBUG)

        logger.info(
            f"Feed '{feed.identifier}' done. "
            f"Created={stats.created}, Updated={stats.updated}, Skipped={stats.skipped}"
        )
        log_sync_event("feed_complete", {"feed_id": feed.identifier, **stats.to_dict()})
        return stats

    def _record_skip(
        self, stats: FeedStats, feed: FeedDefinition, index: int, intent: ProductIntent, reason: str
    ) -> None:
        stats.record(RowOutcome.SKIPPED, reason)
        log_sync_event("row_skipped", {
            "message": f"Row #{index} of feed '{feed.identifier}' skipped ({intent.title or 'untitled'}): {reason}",
            "feed_id": feed.identifier,
            "row": index,
            "title": intent.title,
            "product_number": intent.product_number,
            "reason": reason,
        }, level=logging.WARNING)

    def process_row(self, intent: ProductIntent, feed: FeedDefinition) -> str:
        """Create or update the product for one normalized row.

        Returns:
            RowOutcome.CREATED or RowOutcome.UPDATED

        Raises:
            RowSkipped: If the row cannot be synced
        """
        if not intent.has_business_key:
            raise RowSkipped(SKIP_NO_BUSINESS_KEY)

        try:
            existing = self.catalog.find_product_by_business_key(intent.product_number)
        except FeedSyncError as e:
            raise RowSkipped(f"{SKIP_LOOKUP_FAILED}: {e}") from e

        if existing is None:
            return self._create(intent, feed)
        return self._update(existing, intent)

    # ------------------------------------------------------------------
    # Create path
    # ------------------------------------------------------------------

    def _resolve_category(self, intent: ProductIntent) -> Optional[str]:
        if not intent.category_hint:
            return None
        result = self.enrichment.best_category(
            intent.title, intent.description, intent.category_hint, list(self.category_index)
        )
        if result.ok:
            return self.category_index.get(result.value)
        logger.warning(
            f"No category for '{intent.title}' ({result.status}), creating without category"
        )
        return None

    def _resolve_delivery_time(self, intent: ProductIntent) -> Optional[str]:
        if not intent.delivery_time_text:
            return None
        result = self.enrichment.best_delivery_time(
            intent.delivery_time_text, list(self.delivery_time_index)
        )
        if result.ok:
            return self.delivery_time_index.get(result.value)
        logger.warning(
            f"No delivery time for '{intent.delivery_time_text}' ({result.status}), creating without one"
        )
        return None

    def _rewrite_description(self, intent: ProductIntent) -> str:
        result = self.enrichment.rewrite_description(intent.title, intent.description)
        if result.ok:
            return result.value
        if result.status == EnrichmentStatus.RATE_LIMITED:
            logger.warning(f"Description rewrite rate limited for '{intent.title}', using feed text")
        else:
            logger.warning(f"Description rewrite failed for '{intent.title}', using feed text")
        return intent.description

    def _custom_fields(self, intent: ProductIntent) -> Dict[str, str]:
        return {
            self.settings.deeplink_field: intent.deeplink,
            self.settings.shipping_field: intent.shipping_text,
        }

    def _create(self, intent: ProductIntent, feed: FeedDefinition) -> str:
        manufacturer_id = self.catalog.find_or_create_manufacturer(
            intent.manufacturer_name, feed.default_manufacturer
        )
        category_id = self._resolve_category(intent)
        delivery_time_id = self._resolve_delivery_time(intent)
        description = self._rewrite_description(intent)

        media_ids: List[str] = []
        if intent.image_url:
            media_id = self.catalog.find_or_create_media(intent.image_url)
            if not media_id:
                raise RowSkipped(SKIP_IMAGE_FAILED)
            media_ids.append(media_id)

        actual, list_price = compute_prices(intent.price_gross, intent.list_price)

        payload: Dict[str, Any] = {
            "id": generate_id(),
            "name": intent.title,
            "productNumber": intent.product_number,
            "stock": self.settings.stock,
            "description": description,
            "ean": intent.ean,
            "manufacturerNumber": intent.manufacturer_article_number,
            "active": True,
            "price": build_price_block(actual, list_price, self.settings),
            "customFields": self._custom_fields(intent),
        }
        if manufacturer_id:
            payload["manufacturerId"] = manufacturer_id
        if category_id:
            payload["categories"] = [{"id": category_id}]
        if delivery_time_id:
            payload["deliveryTimeId"] = delivery_time_id
        if media_ids:
            associations = [
                {"id": generate_id(), "mediaId": media_id, "position": position}
                for position, media_id in enumerate(media_ids)
            ]
            payload["media"] = associations
            payload["coverId"] = associations[0]["id"]

        if not self.catalog.create_product(payload):
            raise RowSkipped(SKIP_CREATE_FAILED)

        logger.info(f"Created product [{intent.title}] ({intent.product_number})")
        return RowOutcome.CREATED

    # ------------------------------------------------------------------
    # Update path
    # ------------------------------------------------------------------

    def _update(self, existing: Dict[str, Any], intent: ProductIntent) -> str:
        """Refresh prices and custom fields only; nothing is re-enriched."""
        product_id = existing.get("id")
        if not product_id:
            raise RowSkipped(f"{SKIP_LOOKUP_FAILED}: existing product has no id")

        actual, list_price = compute_prices(intent.price_gross, intent.list_price)
        payload = {
            "price": build_price_block(actual, list_price, self.settings),
            "customFields": self._custom_fields(intent),
        }

        if not self.catalog.update_product(product_id, payload):
            raise RowSkipped(SKIP_UPDATE_FAILED)

        logger.info(f"Updated product [{intent.title}] ({intent.product_number})")
        return RowOutcome.UPDATED
