"""Reads the website's sitemap into `SitemapItem`s."""

from __future__ import annotations

import gzip
import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx

from site_chat.config import IndexingConfig
from site_chat.exceptions import ConfigurationError, SitemapError
from site_chat.types import SitemapItem, as_utc

logger = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"
_MAX_DEPTH = 3
_DEFAULT_PRIORITY = Decimal("0.5")
# Pages without <lastmod> are only indexed when missing from the index.
UNKNOWN_LAST_MODIFIED = datetime.min.replace(tzinfo=timezone.utc)


class SitemapFetcher(Protocol):
    def fetch(self, url: str) -> bytes:
        """Return the raw sitemap document at `url`."""


class HttpxSitemapFetcher:
    """Fetches sitemaps over HTTP."""

    def __init__(self, client: httpx.Client | None = None, timeout: float = 30.0) -> None:
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def fetch(self, url: str) -> bytes:
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SitemapError(f"Failed fetching sitemap {url}: {exc}") from exc
        return response.content


class SitemapReader:
    """Collects the pages a website declares in its sitemap.

    A `<sitemapindex>` root is followed into its child sitemaps; `<urlset>`
    entries become `SitemapItem`s. Gzipped documents are decompressed, and
    pages whose URL contains one of `sitemap_excluded_url_segments` are
    dropped.
    """

    def __init__(self, fetcher: SitemapFetcher, config: IndexingConfig | None = None) -> None:
        self._fetcher = fetcher
        self.config = config or IndexingConfig()

    def read(self, url: str | None = None) -> list[SitemapItem]:
        """Read all pages reachable from `url` (default: `config.sitemap_url`).

        Raises:
            ConfigurationError: no sitemap URL is given or configured.
            SitemapError: a sitemap cannot be fetched or parsed.
        """

        root_url = url or self.config.sitemap_url
        if not root_url:
            raise ConfigurationError("No sitemap URL configured")

        logger.info("Retrieving sitemap %s", root_url)
        items = self._read(root_url, depth=0)
        excluded = self.config.sitemap_excluded_url_segments
        pages = [item for item in items if not any(segment in item.url for segment in excluded)]
        logger.info(
            "Sitemap lists %d pages, %d excluded by URL segment",
            len(items),
            len(items) - len(pages),
        )
        return pages

    def _read(self, url: str, depth: int) -> list[SitemapItem]:
        root = self._load(url)
        if _local_name(root.tag) != "sitemapindex":
            return _urlset_items(root)

        if depth >= _MAX_DEPTH:
            logger.warning("Sitemap index %s nested too deep, skipped", url)
            return []

        items: list[SitemapItem] = []
        for child in root:
            if _local_name(child.tag) != "sitemap":
                continue
            location = _child_texts(child).get("loc")
            if location:
                items.extend(self._read(location, depth + 1))
        return items

    def _load(self, url: str) -> ET.Element:
        payload = self._fetcher.fetch(url)
        if payload.startswith(_GZIP_MAGIC):
            try:
                payload = gzip.decompress(payload)
            except OSError as exc:
                raise SitemapError(f"Corrupt gzip sitemap {url}: {exc}") from exc
        try:
            return ET.fromstring(payload)
        except ET.ParseError as exc:
            raise SitemapError(f"Malformed sitemap {url}: {exc}") from exc


def _urlset_items(root: ET.Element) -> list[SitemapItem]:
    items = []
    for element in root:
        if _local_name(element.tag) != "url":
            continue
        fields = _child_texts(element)
        location = fields.get("loc")
        if not location:
            continue
        items.append(
            SitemapItem(
                url=location,
                last_modified=_parse_last_modified(fields.get("lastmod")),
                priority=_parse_priority(fields.get("priority")),
            )
        )
    return items


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_texts(element: ET.Element) -> dict[str, str]:
    return {_local_name(child.tag): (child.text or "").strip() for child in element}


def _parse_last_modified(value: str | None) -> datetime:
    if not value:
        return UNKNOWN_LAST_MODIFIED
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        logger.warning("Unreadable sitemap lastmod %r", value)
        return UNKNOWN_LAST_MODIFIED


def _parse_priority(value: str | None) -> Decimal:
    if not value:
        return _DEFAULT_PRIORITY
    try:
        return Decimal(value)
    except InvalidOperation:
        logger.warning("Unreadable sitemap priority %r", value)
        return _DEFAULT_PRIORITY
