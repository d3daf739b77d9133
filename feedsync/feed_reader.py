"""Download and parse semicolon-delimited product feeds."""

import csv
import gzip
import io
import zlib
from typing import Dict, Iterable, List, Optional, Sequence

import requests  # type: ignore[import-untyped]

from feedsync.config import (
    COLUMN_ALIASES,
    FEED_DOWNLOAD_TIMEOUT,
    MUST_HAVE_COLUMNS,
)
from feedsync.errors import EmptyFeedError, FeedFetchError
from feedsync.logging_config import get_logger
from feedsync.models import MappingRule, RawRow
from feedsync.url_validation import URLValidationError, is_gzip_url, validate_url

__all__ = [
    "create_session",
    "download_feed",
    "decompress_if_needed",
    "decode_feed",
    "parse_feed",
    "apply_mapping_rules",
    "fetch_feed",
]

logger = get_logger("feed_reader")

GZIP_MAGIC = b"\x1f\x8b"
DELIMITER = ";"
QUOTECHAR = '"'

HEADERS = {
    "User-Agent": "feedsync product feed importer",
}


def create_session() -> requests.Session:
    """Create a requests Session for feed downloads."""
    session = requests.Session()
    session.headers.update(HEADERS)
    session.headers.setdefault("Accept-Encoding", "gzip, deflate")
    return session


def download_feed(
    url: str,
    session: Optional[requests.Session] = None,
    timeout: float = FEED_DOWNLOAD_TIMEOUT,
) -> bytes:
    """Download the raw bytes of a feed. Not retried.

    Raises:
        FeedFetchError: If the URL is invalid or the download fails
    """
    try:
        url = validate_url(url)
    except URLValidationError as e:
        raise FeedFetchError(f"Invalid feed URL: {e}", url=url) from e

    sess = session or create_session()
    try:
        resp = sess.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else "unknown"
        raise FeedFetchError(f"HTTP error {status} downloading feed {url}", url=url) from e
    except requests.exceptions.RequestException as e:
        raise FeedFetchError(f"Failed to download feed {url}: {e}", url=url) from e

    return bytes(resp.content)


def decompress_if_needed(content: bytes, url: str = "") -> bytes:
    """Gunzip content that starts with the gzip magic bytes or comes from a .gz URL.

    A .gz URL whose body is not gzip data is returned as is, since the
    transport layer may already have decoded it.

    Raises:
        FeedFetchError: If gzip-prefixed content cannot be decompressed
    """
    has_magic = content[:2] == GZIP_MAGIC
    if not has_magic and not is_gzip_url(url):
        return content

    try:
        return gzip.decompress(content)
    except (OSError, EOFError, zlib.error) as e:
        if not has_magic:
            logger.debug(f"{url} ends in .gz but body is not gzip data, using it as is")
            return content
        raise FeedFetchError(f"Failed to decompress feed {url}: {e}", url=url) from e


def decode_feed(content: bytes, source: str = "") -> str:
    """Decode feed bytes as UTF-8, falling back to cp1252 with a warning."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning(f"Feed {source} is not valid UTF-8, decoding as cp1252")
        return content.decode("cp1252", errors="replace")


def _repair_header(name: str, source: str) -> str:
    """Normalize one header cell to its canonical UTF-8 column name."""
    name = name.strip().lstrip("\ufeff")
    if "Ã" in name or "Â" in name:
        try:
            repaired = name.encode("cp1252").decode("utf-8")
        except (UnicodeEncodeError, UnicodeDecodeError):
            logger.warning(f"Feed {source}: header {name!r} looks mis-encoded and could not be repaired")
        else:
            logger.warning(f"Feed {source}: repaired mis-encoded header {name!r} -> {repaired!r}")
            name = repaired
    return name


def _normalize_headers(raw_headers: Sequence[str], source: str) -> List[str]:
    headers = [_repair_header(h, source) for h in raw_headers]
    for alias, canonical in COLUMN_ALIASES.items():
        if alias in headers and canonical not in headers:
            headers[headers.index(alias)] = canonical
    return headers


def apply_mapping_rules(row: RawRow, rules: Iterable[MappingRule]) -> RawRow:
    """Copy source into target for each rule where target is empty.

    Mapping never overwrites data already present in the target column.
    """
    for source, target in rules:
        value = row.get(source, "")
        if value and not row.get(target, ""):
            row[target] = value
    return row


def parse_feed(
    text: str,
    mapping_rules: Iterable[MappingRule] = (),
    source: str = "",
) -> List[RawRow]:
    """Parse semicolon-delimited feed text into rows keyed by header name.

    Every row carries all MUST_HAVE_COLUMNS. Rows shorter than the header
    are padded with empty strings; surplus cells are ignored.

    Raises:
        EmptyFeedError: If there is no header plus at least one data row
        FeedFetchError: If the text is not valid delimited data
    """
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=DELIMITER, quotechar=QUOTECHAR)
    try:
        records = [r for r in reader if any(cell.strip() for cell in r)]
    except csv.Error as e:
        raise FeedFetchError(f"Feed {source} is malformed: {e}", url=source) from e
    if len(records) < 2:
        raise EmptyFeedError(f"Feed {source} has no data rows", url=source)

    headers = _normalize_headers(records[0], source)
    rules = list(mapping_rules)
    rows: List[RawRow] = []

    for line_no, cells in enumerate(records[1:], start=2):
        if len(cells) > len(headers):
            logger.debug(f"Feed {source} line {line_no}: {len(cells) - len(headers)} extra cells ignored")

        row: Dict[str, str] = {column: "" for column in MUST_HAVE_COLUMNS}
        for i, header in enumerate(headers):
            if not header:
                continue
            row[header] = cells[i] if i < len(cells) else ""

        rows.append(apply_mapping_rules(row, rules))

    return rows


def fetch_feed(
    url: str,
    mapping_rules: Iterable[MappingRule] = (),
    session: Optional[requests.Session] = None,
) -> List[RawRow]:
    """Download, decompress, decode and parse a feed.

    Raises:
        FeedFetchError: On download or decompression failure
        EmptyFeedError: If the feed holds no data rows
    """
    logger.info(f"Fetching feed from: {url}")
    content = decompress_if_needed(download_feed(url, session=session), url)
    rows = parse_feed(decode_feed(content, url), mapping_rules, source=url)
    logger.info(f"Parsed {len(rows)} rows from feed: {url}")
    return rows
