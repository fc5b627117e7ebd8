from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from skincoach.config import Settings
from skincoach.errors import RecommendationError
from skincoach.models import CatalogEntry


logger = logging.getLogger("skincoach.catalog")


class CatalogProvider(Protocol):
    @property
    def kind(self) -> str: ...

    async def list_entries(self) -> list[CatalogEntry]: ...


def parse_entries(rows: Iterable[Any], *, source: str) -> list[CatalogEntry]:
    """Validate raw catalog rows, keeping their order and skipping bad ones."""

    entries: list[CatalogEntry] = []
    for position, row in enumerate(rows):
        if isinstance(row, CatalogEntry):
            entries.append(row)
            continue
        try:
            entries.append(CatalogEntry.model_validate(row))
        except PydanticValidationError as exc:
            logger.warning(
                "catalog_entry_skipped source=%s position=%d errors=%d",
                source,
                position,
                exc.error_count(),
            )
    return entries


def _rows_from_payload(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("products", "items", "data"):
            rows = payload.get(key)
            if isinstance(rows, list):
                return rows
    raise RecommendationError("catalog payload is not a list of products")


class InMemoryCatalog(CatalogProvider):
    def __init__(self, entries: Iterable[Any] = ()) -> None:
        self._entries = parse_entries(entries, source="memory")

    @property
    def kind(self) -> str:
        return "memory"

    async def list_entries(self) -> list[CatalogEntry]:
        return list(self._entries)


class JsonFileCatalog(CatalogProvider):
    """Reads the file on every call so edits are picked up without restarts."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def kind(self) -> str:
        return "file"

    def _load(self) -> list[CatalogEntry]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RecommendationError(f"catalog file unreadable ({self._path}): {exc}") from exc
        return parse_entries(_rows_from_payload(payload), source=str(self._path))

    async def list_entries(self) -> list[CatalogEntry]:
        return await asyncio.to_thread(self._load)


class HttpCatalog(CatalogProvider):
    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def kind(self) -> str:
        return "http"

    async def list_entries(self) -> list[CatalogEntry]:
        url = f"{self._base_url}/products"
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                res = await client.get(url)
            res.raise_for_status()
            payload = res.json()
        except httpx.HTTPError as exc:
            raise RecommendationError(f"catalog request failed: {exc}") from exc
        except ValueError as exc:
            raise RecommendationError(f"catalog returned invalid JSON: {exc}") from exc

        return parse_entries(_rows_from_payload(payload), source=url)


def build_catalog(settings: Settings) -> CatalogProvider:
    if settings.catalog_url:
        return HttpCatalog(base_url=settings.catalog_url, timeout_s=settings.catalog_timeout_s)
    if settings.catalog_path:
        return JsonFileCatalog(settings.catalog_path)
    logger.warning("catalog_backend=memory reason=no_CATALOG_URL_or_CATALOG_PATH catalog_is_empty")
    return InMemoryCatalog()
