"""Product feed to shop catalog sync with OpenAI enrichment."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from feedsync.catalog import CatalogClient, ManufacturerCache, build_category_index
from feedsync.config import SyncSettings, get_feed_definitions, parse_mapping_rules
from feedsync.enrichment import EnrichmentClient
from feedsync.errors import (
    AuthenticationError,
    ConfigurationError,
    EmptyFeedError,
    FeedFetchError,
    FeedSyncError,
    RateLimitExceeded,
    RowSkipped,
    UpstreamAPIError,
)
from feedsync.feed_reader import fetch_feed, parse_feed
from feedsync.models import EnrichmentResult, FeedDefinition, FeedStats, ProductIntent
from feedsync.row_normalizer import normalize_row
from feedsync.sync import SyncOrchestrator, SyncReport, compute_prices

__all__ = [
    # Version
    "__version__",
    # Config
    "SyncSettings",
    "get_feed_definitions",
    "parse_mapping_rules",
    # Models
    "FeedDefinition",
    "ProductIntent",
    "EnrichmentResult",
    "FeedStats",
    # Errors
    "FeedSyncError",
    "ConfigurationError",
    "AuthenticationError",
    "FeedFetchError",
    "EmptyFeedError",
    "UpstreamAPIError",
    "RateLimitExceeded",
    "RowSkipped",
    # Components
    "fetch_feed",
    "parse_feed",
    "normalize_row",
    "EnrichmentClient",
    "CatalogClient",
    "ManufacturerCache",
    "build_category_index",
    "SyncOrchestrator",
    "SyncReport",
    "compute_prices",
]
