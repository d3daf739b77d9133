"""Client for the commerce platform (Shopware 6) Admin API.

Handles OAuth client-credentials tokens, lookup tables for categories and
delivery times, manufacturer dedup, product create/update and media
upload. Tokens are renewed transparently when they are about to expire.
"""

import time
import uuid
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence
from urllib.parse import urlparse

import requests  # type: ignore[import-untyped]

from feedsync.config import (
    CATEGORY_PAGE_SIZE,
    CATEGORY_PATH_SEPARATOR,
    DEFAULT_TOKEN_TTL,
    MAX_LIST_PAGES,
    MEDIA_UPLOAD_BACKOFF,
    REQUEST_TIMEOUT,
    SALES_CHANNEL_VISIBILITY_ALL,
    TAX_PAGE_SIZE,
    TOKEN_EXPIRY_BUFFER,
    SyncSettings,
)
from feedsync.errors import AuthenticationError, UpstreamAPIError
from feedsync.logging_config import get_logger
from feedsync.shutdown import interruptible_sleep, shutdown_requested
from feedsync.url_validation import URLValidationError, media_filename_from_url, validate_url

__all__ = [
    "generate_id",
    "build_category_index",
    "ManufacturerCache",
    "CatalogClient",
]

logger = get_logger("catalog")

JSON_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def generate_id() -> str:
    """A new entity id: 32 lowercase hex characters, no hyphens."""
    return uuid.uuid4().hex


def _entity_field(item: Dict[str, Any], name: str) -> Any:
    """Read a field from a flat entity or from its ``attributes``/``translated`` blocks."""
    if item.get(name) is not None:
        return item[name]
    for block in ("translated", "attributes"):
        nested = item.get(block) or {}
        if nested.get(name) is not None:
            return nested[name]
    return None


def build_category_index(categories: Sequence[Dict[str, Any]]) -> Dict[str, str]:
    """Flatten a category list into ``"Parent > Child"`` path -> id.

    Roots are categories whose parent is absent or not in the list.
    Parents come before their children and siblings keep list order.
    """
    nodes: Dict[str, Dict[str, Any]] = {}
    for cat in categories:
        cat_id = cat.get("id") or ""
        name = _entity_field(cat, "name") or ""
        if cat_id and name:
            nodes[cat_id] = {"name": name, "parent_id": _entity_field(cat, "parentId"), "children": []}

    roots: List[str] = []
    for cat_id, node in nodes.items():
        parent_id = node["parent_id"]
        if parent_id and parent_id in nodes:
            nodes[parent_id]["children"].append(cat_id)
        else:
            roots.append(cat_id)

    index: Dict[str, str] = {}
    # Iterative DFS; children pushed in reverse so they pop in list order
    stack = [(root_id, nodes[root_id]["name"]) for root_id in reversed(roots)]
    visited = set()
    while stack:
        cat_id, path = stack.pop()
        if cat_id in visited:
            continue
        visited.add(cat_id)
        index.setdefault(path, cat_id)
        for child_id in reversed(nodes[cat_id]["children"]):
            stack.append((child_id, f"{path}{CATEGORY_PATH_SEPARATOR}{nodes[child_id]['name']}"))

    return index


class ManufacturerCache:
    """Manufacturer name -> id for one run, keyed case- and whitespace-insensitively."""

    def __init__(self) -> None:
        self._ids: Dict[str, str] = {}

    @staticmethod
    def key(name: str) -> str:
        return name.strip().lower()

    def get(self, name: str) -> Optional[str]:
        return self._ids.get(self.key(name))

    def set(self, name: str, manufacturer_id: str) -> None:
        self._ids[self.key(name)] = manufacturer_id

    def __contains__(self, name: str) -> bool:
        return self.key(name) in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class CatalogClient:
    """Shopware Admin API client used by the sync.

    Args:
        settings: Runtime settings with API URL and credentials
        session: Optional requests.Session (for connection reuse and tests)
        manufacturer_cache: Cache shared by every feed of the run
        clock: Time source for token expiry
        sleep: Sleep function for upload backoff
        upload_backoff: Wait before each image upload attempt
    """

    def __init__(
        self,
        settings: SyncSettings,
        session: Optional[requests.Session] = None,
        manufacturer_cache: Optional[ManufacturerCache] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = interruptible_sleep,
        upload_backoff: Sequence[float] = MEDIA_UPLOAD_BACKOFF,
    ):
        self.settings = settings
        self.base_url = settings.shopware_api_url.rstrip("/")
        self.session = session or requests.Session()
        self.manufacturer_cache = manufacturer_cache if manufacturer_cache is not None else ManufacturerCache()
        self.upload_backoff = tuple(upload_backoff)
        self._clock = clock
        self._sleep = sleep

        self._token: Optional[str] = None
        self._token_expires_at: Optional[float] = None
        self._media_cache: Dict[str, str] = {}

        self.sales_channel_id: Optional[str] = None
        self.default_tax_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @property
    def token_expired(self) -> bool:
        if self._token is None or self._token_expires_at is None:
            return True
        return self._clock() >= self._token_expires_at - TOKEN_EXPIRY_BUFFER

    def _obtain_token(self) -> None:
        """Request a new access token.

        Raises:
            AuthenticationError: If the token endpoint fails or returns no token
        """
        try:
            resp = self.session.post(
                f"{self.base_url}/api/oauth/token",
                json={
                    "grant_type": "client_credentials",
                    "client_id": self.settings.shopware_client_id,
                    "client_secret": self.settings.shopware_client_secret,
                },
                headers=JSON_HEADERS,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise AuthenticationError(f"Authentication request failed: {e}") from e

        if not resp.ok:
            raise AuthenticationError(f"Authentication failed with HTTP {resp.status_code}: {resp.text[:500]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise AuthenticationError("Authentication response is not JSON") from e

        token = data.get("access_token")
        if not token:
            raise AuthenticationError("Authentication response contains no access token")

        expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_TTL)
        self._token = token
        self._token_expires_at = self._clock() + expires_in
        logger.info(f"Catalog authentication OK, token valid for {expires_in}s")

    def authenticate(self) -> None:
        """Obtain a token and resolve the sales channel and default tax.

        Raises:
            AuthenticationError: If no token could be obtained
        """
        self._obtain_token()
        self._resolve_sales_channel()
        self._resolve_default_tax()

    def _resolve_sales_channel(self) -> None:
        name = self.settings.sales_channel_name
        self.sales_channel_id = None
        try:
            data = self._search("sales-channel", [_equals("sales_channel.name", name)], limit=1)
        except UpstreamAPIError as e:
            logger.error(f"Sales channel lookup failed: {e}")
            return

        items = data.get("data") or []
        if items and items[0].get("id"):
            self.sales_channel_id = items[0]["id"]
            logger.info(f"Sales channel '{name}' => {self.sales_channel_id}")
        else:
            logger.warning(f"Sales channel '{name}' not found, products will have no visibility")

    def _resolve_default_tax(self) -> None:
        """Use the tax whose position is 1; proceed without one otherwise."""
        self.default_tax_id = None
        try:
            taxes = _json_data(self._request("GET", "/api/tax", params={"limit": TAX_PAGE_SIZE}))
        except UpstreamAPIError as e:
            logger.error(f"Tax lookup failed: {e}")
            return

        for item in taxes:
            position = _entity_field(item, "position")
            try:
                is_default = int(position) == 1
            except (TypeError, ValueError):
                continue
            if is_default and item.get("id"):
                self.default_tax_id = item["id"]
                logger.info(f"Default tax: {self.default_tax_id} ({_entity_field(item, 'name') or 'unnamed'})")
                return

        logger.warning("No tax with position 1 found, creating products without tax id")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """Send an authenticated request, re-authenticating if the token expired.

        Returns:
            The response, for any 2xx status

        Raises:
            UpstreamAPIError: On transport errors or non-2xx responses
            AuthenticationError: If re-authentication fails
        """
        if self.token_expired:
            logger.info("Catalog token expired, re-authenticating")
            self._obtain_token()

        headers = dict(JSON_HEADERS, Authorization=f"Bearer {self._token}")
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers=headers,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamAPIError(f"{method} {path} failed: {e}") from e

        if not resp.ok:
            raise UpstreamAPIError(
                f"{method} {path} returned HTTP {resp.status_code}: {resp.text[:500]}",
                resp.status_code,
            )
        return resp

    def _search(self, entity: str, filters: List[Dict[str, Any]], limit: int = 1) -> Dict[str, Any]:
        resp = self._request("POST", f"/api/search/{entity}", json={"filter": filters, "limit": limit})
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamAPIError(f"Search on {entity} returned invalid JSON") from e

    def _iter_pages(self, path: str, page_size: int = CATEGORY_PAGE_SIZE) -> Iterator[Dict[str, Any]]:
        """Yield items from a paginated list endpoint, at most MAX_LIST_PAGES pages.

        A failing page stops pagination; items already yielded are kept.
        """
        for page in range(1, MAX_LIST_PAGES + 1):
            try:
                items = _json_data(self._request("GET", path, params={"page": page, "limit": page_size}))
            except UpstreamAPIError as e:
                logger.error(f"Listing {path} page {page} failed: {e}")
                return

            yield from items
            if len(items) < page_size:
                return

        logger.warning(f"Listing {path} stopped at the {MAX_LIST_PAGES} page limit")

    # ------------------------------------------------------------------
    # Lookup tables
    # ------------------------------------------------------------------

    def load_category_index(self) -> Dict[str, str]:
        """Load all categories as a ``"Parent > Child"`` path -> id mapping."""
        index = build_category_index(list(self._iter_pages("/api/category")))
        logger.info(f"Loaded {len(index)} category paths")
        return index

    def load_delivery_time_index(self) -> Dict[str, str]:
        """Load all delivery times as name -> id."""
        index: Dict[str, str] = {}
        for item in self._iter_pages("/api/delivery-time"):
            name = _entity_field(item, "name")
            if item.get("id") and name:
                index[name] = item["id"]
        logger.info(f"Loaded {len(index)} delivery times")
        return index

    # ------------------------------------------------------------------
    # Manufacturers
    # ------------------------------------------------------------------

    def find_or_create_manufacturer(self, name: str, default_name: Optional[str] = None) -> Optional[str]:
        """Resolve a manufacturer id, creating the manufacturer if needed.

        Args:
            name: Manufacturer name from the feed
            default_name: Name to use when ``name`` is empty (e.g. the
                feed's default manufacturer); falls back to the global default

        Returns:
            The manufacturer id, or None if it could not be created
        """
        name = name.strip() or (default_name or "").strip() or self.settings.default_manufacturer

        cached = self.manufacturer_cache.get(name)
        if cached:
            return cached

        try:
            data = self._search("product-manufacturer", [_equals("product_manufacturer.name", name)])
            items = data.get("data") or []
            if items and items[0].get("id"):
                self.manufacturer_cache.set(name, items[0]["id"])
                return items[0]["id"]
        except UpstreamAPIError as e:
            logger.warning(f"Manufacturer search for '{name}' failed, creating it: {e}")

        new_id = generate_id()
        try:
            self._request("POST", "/api/product-manufacturer", json={"id": new_id, "name": name})
        except UpstreamAPIError as e:
            logger.error(f"Creating manufacturer '{name}' failed: {e}")
            return None

        logger.info(f"Created manufacturer '{name}' => {new_id}")
        self.manufacturer_cache.set(name, new_id)
        return new_id

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def find_product_by_business_key(self, product_number: str) -> Optional[Dict[str, Any]]:
        """Find a product by its product number.

        Raises:
            UpstreamAPIError: If the lookup itself fails, so a failed lookup
                is never mistaken for a missing product
        """
        if not product_number:
            return None
        data = self._search("product", [_equals("productNumber", product_number)])
        items = data.get("data") or []
        return items[0] if items else None

    def create_product(self, payload: Dict[str, Any]) -> bool:
        """Create a product. Fills in id, tax, categories and visibility if unset."""
        payload = dict(payload)
        payload.setdefault("id", generate_id())
        if payload.get("taxId") is None:
            payload.pop("taxId", None)
            if self.default_tax_id:
                payload["taxId"] = self.default_tax_id
        payload.setdefault("categories", [])

        if self.sales_channel_id:
            payload["visibilities"] = [{
                "salesChannelId": self.sales_channel_id,
                "visibility": SALES_CHANNEL_VISIBILITY_ALL,
            }]

        try:
            self._request("POST", "/api/product", json=payload)
        except UpstreamAPIError as e:
            logger.error(f"Creating product {payload.get('productNumber')} failed: {e}")
            return False
        return True

    def update_product(self, product_id: str, payload: Dict[str, Any]) -> bool:
        """Patch a product; fields missing from ``payload`` stay untouched."""
        try:
            self._request("PATCH", f"/api/product/{product_id}", json=payload)
        except UpstreamAPIError as e:
            logger.error(f"Updating product {product_id} failed: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def find_media_by_filename(self, filename: str) -> Optional[str]:
        try:
            data = self._search("media", [_equals("fileName", filename)])
        except UpstreamAPIError as e:
            logger.error(f"Media search for '{filename}' failed: {e}")
            return None
        items = data.get("data") or []
        return items[0].get("id") if items else None

    def create_media_entity(self) -> Optional[str]:
        media_id = generate_id()
        try:
            self._request("POST", "/api/media", json={"id": media_id})
        except UpstreamAPIError as e:
            logger.error(f"Creating media entity failed: {e}")
            return None
        return media_id

    def upload_media_from_url(self, media_id: str, image_url: str, filename: str) -> bool:
        extension = PurePosixPath(urlparse(image_url).path).suffix.lstrip(".").lower() or "jpg"
        try:
            self._request(
                "POST",
                f"/api/_action/media/{media_id}/upload",
                params={"fileName": filename, "extension": extension},
                json={"url": image_url},
            )
        except UpstreamAPIError as e:
            logger.warning(f"Uploading {image_url} failed: {e}")
            return False
        return True

    def find_or_create_media(self, image_url: str) -> Optional[str]:
        """Resolve a media id for an image URL, uploading it if it is new.

        Media are deduplicated by a filename derived from the URL. Uploads
        are attempted once per entry in ``upload_backoff``.

        Returns:
            The media id, or None if the image could not be stored
        """
        try:
            image_url = validate_url(image_url)
        except URLValidationError as e:
            logger.error(f"Invalid image URL {image_url!r}: {e}")
            return None

        filename = media_filename_from_url(image_url)
        if not filename:
            logger.error(f"Cannot derive a media filename from {image_url}")
            return None

        if filename in self._media_cache:
            return self._media_cache[filename]

        existing = self.find_media_by_filename(filename)
        if existing:
            logger.info(f"Media already exists: {filename} => {existing}")
            self._media_cache[filename] = existing
            return existing

        media_id = self.create_media_entity()
        if not media_id:
            return None

        attempts = len(self.upload_backoff)
        for attempt, wait in enumerate(self.upload_backoff, start=1):
            if attempt > 1 and shutdown_requested():
                break
            if wait > 0:
                logger.warning(f"Retrying upload of {image_url} in {wait:.0f}s (attempt {attempt}/{attempts})")
                self._sleep(wait)
            if self.upload_media_from_url(media_id, image_url, filename):
                logger.info(f"Uploaded image {image_url} => {media_id}")
                self._media_cache[filename] = media_id
                return media_id

        logger.error(f"Giving up on image {image_url} after {attempts} upload attempts")
        return None


def _equals(field: str, value: Any) -> Dict[str, Any]:
    return {"type": "equals", "field": field, "value": value}


def _json_data(resp: requests.Response) -> List[Dict[str, Any]]:
    try:
        return list(resp.json().get("data") or [])
    except (ValueError, AttributeError) as e:
        raise UpstreamAPIError(f"Unexpected response body from {resp.url}") from e
