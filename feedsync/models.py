"""Data models for feeds, normalized rows and sync results."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

__all__ = [
    "FeedDefinition",
    "ProductIntent",
    "EnrichmentStatus",
    "EnrichmentResult",
    "RowOutcome",
    "FeedStats",
]

# A raw feed row: column name -> cell value
RawRow = Dict[str, str]

# One (source_column, target_column) fallback pair, and an ordered list of them
MappingRule = Tuple[str, str]
MappingRules = List[MappingRule]


@dataclass(frozen=True)
class FeedDefinition:
    """One configured product feed, read once at process start."""

    url: str
    identifier: str
    mapping_rules: Tuple[MappingRule, ...] = ()
    index: int = 0
    default_manufacturer: Optional[str] = None


@dataclass
class ProductIntent:
    """A feed row normalized into the fields the sync needs.

    Prices are kept as the raw feed strings; they are only converted
    when the upsert payload is assembled.
    """

    deeplink: str = ""
    title: str = ""
    description: str = ""
    price_gross: str = ""
    list_price: str = ""
    ean: str = ""
    manufacturer_article_number: str = ""
    manufacturer_name: str = ""
    image_url: str = ""
    category_hint: str = ""
    shipping_text: str = ""
    delivery_time_text: str = ""
    product_number: str = ""

    @property
    def has_business_key(self) -> bool:
        return bool(self.ean or self.manufacturer_article_number)


class EnrichmentStatus:
    """Status tags for enrichment results."""

    OK = "ok"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass
class EnrichmentResult:
    """Outcome of one enrichment call.

    ``value`` is only meaningful when ``status`` is ``ok``.
    """

    status: str
    value: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == EnrichmentStatus.OK

    @classmethod
    def success(cls, value: str) -> "EnrichmentResult":
        return cls(status=EnrichmentStatus.OK, value=value)

    @classmethod
    def not_found(cls) -> "EnrichmentResult":
        return cls(status=EnrichmentStatus.NOT_FOUND)

    @classmethod
    def rate_limited(cls, error: str) -> "EnrichmentResult":
        return cls(status=EnrichmentStatus.RATE_LIMITED, error=error)

    @classmethod
    def failed(cls, error: str) -> "EnrichmentResult":
        return cls(status=EnrichmentStatus.FAILED, error=error)


class RowOutcome:
    """Terminal states of a feed row."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class FeedStats:
    """Per-feed counters, logged once the feed's last row is done."""

    feed_id: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    error: Optional[str] = None
    skip_reasons: Dict[str, int] = field(default_factory=dict)

    def record(self, outcome: str, reason: Optional[str] = None) -> None:
        if outcome == RowOutcome.CREATED:
            self.created += 1
        elif outcome == RowOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1
            if reason:
                self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feed_id": self.feed_id,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "error": self.error,
            "skip_reasons": dict(self.skip_reasons),
        }
