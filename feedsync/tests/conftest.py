"""Shared test fixtures: fake HTTP responses, an in-memory shop API and OpenAI helpers."""

import gzip
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
import openai
import pytest

from feedsync.catalog import CatalogClient, ManufacturerCache
from feedsync.config import SyncSettings

BASE_URL = "https://shop.test"


class FakeResponse:
    """Just enough of requests.Response for the code under test."""

    def __init__(self, status_code: int = 200, json_data: Any = None, content: bytes = b"", url: str = ""):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.url = url

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        if self._json is not None:
            return str(self._json)
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def raise_for_status(self) -> None:
        import requests

        if not self.ok:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}", response=self)


class FakeShopware:
    """In-memory stand-in for the Shopware Admin API behind a requests.Session."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.token_requests = 0
        self.token_ttl = 600
        self.auth_status = 200
        self.sales_channels = [{"id": "sc-storefront", "name": "Storefront"}]
        self.taxes = [
            {"id": "tax-reduced", "name": "Reduced rate", "position": 2},
            {"id": "tax-standard", "name": "Standard rate", "position": 1},
        ]
        self.categories: List[Dict[str, Any]] = []
        self.delivery_times: List[Dict[str, Any]] = []
        self.manufacturers: Dict[str, str] = {}
        self.products: Dict[str, Dict[str, Any]] = {}
        self.media: Dict[str, Dict[str, Any]] = {}
        self.upload_failures = 0
        self.fail_paths: Dict[str, int] = {}

    # requests.Session interface -------------------------------------

    def post(self, url: str, json: Any = None, headers: Any = None, timeout: Any = None) -> FakeResponse:
        path = urlparse(url).path
        self.calls.append({"method": "POST", "path": path, "json": json, "params": None})
        if path == "/api/oauth/token":
            self.token_requests += 1
            if self.auth_status != 200:
                return FakeResponse(self.auth_status, {"errors": [{"detail": "invalid client"}]})
            return FakeResponse(200, {"access_token": f"token-{self.token_requests}", "expires_in": self.token_ttl})
        return self.request("POST", url, json=json, headers=headers, timeout=timeout)

    def request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Any = None,
        timeout: Any = None,
    ) -> FakeResponse:
        path = urlparse(url).path
        self.calls.append({"method": method, "path": path, "json": json, "params": params, "headers": headers})

        if self.fail_paths.get(path):
            self.fail_paths[path] -= 1
            return FakeResponse(500, {"errors": [{"detail": "boom"}]})

        if method == "GET" and path == "/api/tax":
            return FakeResponse(200, {"data": self.taxes})
        if method == "GET" and path == "/api/category":
            return FakeResponse(200, {"data": self._page(self.categories, params)})
        if method == "GET" and path == "/api/delivery-time":
            return FakeResponse(200, {"data": self._page(self.delivery_times, params)})

        if method == "POST" and path.startswith("/api/search/"):
            return FakeResponse(200, {"data": self._search(path.rsplit("/", 1)[1], json["filter"][0])})

        if method == "POST" and path == "/api/product-manufacturer":
            self.manufacturers[json["name"]] = json["id"]
            return FakeResponse(204)
        if method == "POST" and path == "/api/product":
            self.products[json["id"]] = dict(json)
            return FakeResponse(204)
        if method == "PATCH" and path.startswith("/api/product/"):
            product_id = path.rsplit("/", 1)[1]
            if product_id not in self.products:
                return FakeResponse(404, {"errors": [{"detail": "not found"}]})
            self.products[product_id].update(json)
            return FakeResponse(204)
        if method == "POST" and path == "/api/media":
            self.media[json["id"]] = {"id": json["id"], "fileName": None}
            return FakeResponse(204)
        if method == "POST" and path.startswith("/api/_action/media/"):
            if self.upload_failures > 0:
                self.upload_failures -= 1
                return FakeResponse(400, {"errors": [{"detail": "download failed"}]})
            media_id = path.split("/")[4]
            self.media[media_id]["fileName"] = params["fileName"]
            return FakeResponse(204)

        return FakeResponse(404, {"errors": [{"detail": f"no route {method} {path}"}]})

    # helpers ---------------------------------------------------------

    @staticmethod
    def _page(items: List[Dict[str, Any]], params: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        page = int((params or {}).get("page", 1))
        limit = int((params or {}).get("limit", 100))
        return items[(page - 1) * limit: page * limit]

    def _search(self, entity: str, flt: Dict[str, Any]) -> List[Dict[str, Any]]:
        value = flt["value"]
        if entity == "sales-channel":
            return [sc for sc in self.sales_channels if sc["name"] == value]
        if entity == "product-manufacturer":
            return [{"id": mid, "name": name} for name, mid in self.manufacturers.items() if name == value]
        if entity == "product":
            return [p for p in self.products.values() if p.get("productNumber") == value]
        if entity == "media":
            return [m for m in self.media.values() if m["fileName"] == value]
        return []

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(
        shopware_api_url=BASE_URL,
        shopware_client_id="client",
        shopware_client_secret="secret",
        openai_api_key="sk-test",
        vat_divisor=1.19,
    )


@pytest.fixture
def shop() -> FakeShopware:
    return FakeShopware()


@pytest.fixture
def sleeps() -> List[float]:
    """Collects requested backoff sleeps instead of sleeping."""
    return []


@pytest.fixture
def catalog(settings, shop, sleeps) -> CatalogClient:
    return CatalogClient(
        settings,
        session=shop,
        manufacturer_cache=ManufacturerCache(),
        sleep=sleeps.append,
    )


def make_rate_limit_error() -> openai.RateLimitError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.RateLimitError(
        "Rate limit reached", response=httpx.Response(429, request=request), body=None
    )


def make_server_error() -> openai.InternalServerError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.InternalServerError(
        "Internal error", response=httpx.Response(500, request=request), body=None
    )


def completion(text: str) -> SimpleNamespace:
    """A chat completion response carrying ``text``."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def gzip_bytes(text: str) -> bytes:
    return gzip.compress(text.encode("utf-8"))
