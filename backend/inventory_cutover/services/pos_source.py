# Overview: External POS collaborator; HTTP client, normalized response types, and catalog cache.

"""
POS Source

WHY: Cutover reads two things from the POS platform: on-hand counts per
location, and catalog metadata (name/description/image/price) per item
variation. Everything else in this package depends on the PosSource protocol,
never on HTTP shapes.

PARSING BOUNDARY:
parse_inventory_counts() / parse_catalog_objects() are the only places raw
JSON is read. They return frozen dataclasses and raise ExternalSourceError
(code SOURCE_PAYLOAD_INVALID) on any shape violation, so a malformed payload
fails loudly instead of leaking None/str quantities into the ledger.

LIFETIME:
create_app() builds one PosClient per application and stores it on
app.extensions["pos_source"]. Its CatalogCache lives exactly as long as the
client; entries expire after CATALOG_CACHE_TTL_SECONDS and invalidate()
drops them on demand (e.g. after a catalog sync).
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Any, Callable, Iterable, Protocol

import httpx
from flask import current_app

from ..errors import ExternalSourceError


IGNORED_VARIATION_NAMES = {"sin variacion", "sin variación", "no variation", "regular", ""}


@dataclass(frozen=True)
class InventoryCount:
    external_id: str
    external_location_id: str
    quantity: int


@dataclass(frozen=True)
class CatalogItem:
    variation_id: str
    name: str
    variation_name: str | None = None
    description: str | None = None
    image_url: str | None = None
    price_cents: int | None = None
    price_currency: str | None = None

    @property
    def display_name(self) -> str:
        """Item name plus variation name, unless the variation is a placeholder."""
        variation = (self.variation_name or "").strip()
        if variation.lower() in IGNORED_VARIATION_NAMES:
            return self.name
        return f"{self.name} - {variation}"


class PosSource(Protocol):
    def list_inventory(self, external_location_id: str) -> list[InventoryCount]: ...

    def fetch_catalog_items(self, variation_ids: list[str]) -> dict[str, CatalogItem]: ...

    def fetch_unit_cost(self, variation_id: str) -> Decimal | None: ...

    def invalidate(self, variation_ids: Iterable[str] | None = None) -> None: ...


def _invalid(message: str) -> ExternalSourceError:
    return ExternalSourceError(
        message,
        code="SOURCE_PAYLOAD_INVALID",
        user_message="The POS returned data in an unexpected format.",
        recovery_action="Retry later; if it persists, check the POS API version.",
    )


def _require_str(obj: dict, key: str, context: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise _invalid(f"{context}: missing or non-string '{key}'")
    return value


def _parse_quantity(raw: Any, context: str) -> int:
    if isinstance(raw, bool) or raw is None:
        raise _invalid(f"{context}: missing quantity")
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise _invalid(f"{context}: quantity {raw!r} is not numeric") from exc
    if not value.is_finite():
        raise _invalid(f"{context}: quantity {raw!r} is not finite")
    # Fractional stock is truncated toward zero; the ledger counts whole units.
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def parse_inventory_counts(payload: Any) -> tuple[list[InventoryCount], str | None]:
    """Parse one page of a counts batch-retrieve response. Returns (counts, next_cursor)."""
    if not isinstance(payload, dict):
        raise _invalid("inventory counts: response is not an object")
    raw_counts = payload.get("counts") or []
    if not isinstance(raw_counts, list):
        raise _invalid("inventory counts: 'counts' is not a list")

    counts: list[InventoryCount] = []
    for index, raw in enumerate(raw_counts):
        context = f"inventory counts[{index}]"
        if not isinstance(raw, dict):
            raise _invalid(f"{context}: not an object")
        state = raw.get("state", "IN_STOCK")
        if state != "IN_STOCK":
            continue
        counts.append(
            InventoryCount(
                external_id=_require_str(raw, "catalog_object_id", context),
                external_location_id=_require_str(raw, "location_id", context),
                quantity=_parse_quantity(raw.get("quantity"), context),
            )
        )

    cursor = payload.get("cursor")
    if cursor is not None and not isinstance(cursor, str):
        raise _invalid("inventory counts: 'cursor' is not a string")
    return counts, cursor or None


def parse_catalog_objects(payload: Any) -> dict[str, CatalogItem]:
    """
    Parse a catalog batch-retrieve response into CatalogItem per variation id.

    Variation objects carry the variation name and price; the parent ITEM
    (in related_objects) carries name/description/images.
    """
    if not isinstance(payload, dict):
        raise _invalid("catalog: response is not an object")
    objects = payload.get("objects") or []
    related = payload.get("related_objects") or []
    if not isinstance(objects, list) or not isinstance(related, list):
        raise _invalid("catalog: 'objects'/'related_objects' must be lists")

    items_by_id: dict[str, dict] = {}
    image_urls: dict[str, str] = {}
    for obj in [*objects, *related]:
        if not isinstance(obj, dict):
            raise _invalid("catalog: object is not an object")
        if obj.get("type") == "ITEM":
            items_by_id[_require_str(obj, "id", "catalog item")] = obj.get("item_data") or {}
        elif obj.get("type") == "IMAGE":
            url = (obj.get("image_data") or {}).get("url")
            if isinstance(url, str) and url:
                image_urls[_require_str(obj, "id", "catalog image")] = url

    result: dict[str, CatalogItem] = {}
    for obj in objects:
        if obj.get("type") != "ITEM_VARIATION":
            continue
        variation_id = _require_str(obj, "id", "catalog variation")
        data = obj.get("item_variation_data") or {}
        if not isinstance(data, dict):
            raise _invalid(f"catalog variation {variation_id}: item_variation_data is not an object")

        item = items_by_id.get(data.get("item_id") or "", {})
        name = item.get("name") or data.get("name")
        if not isinstance(name, str) or not name:
            raise _invalid(f"catalog variation {variation_id}: no item or variation name")

        price_cents = None
        price_currency = None
        price = data.get("price_money")
        if price is not None:
            if not isinstance(price, dict) or not isinstance(price.get("amount"), int):
                raise _invalid(f"catalog variation {variation_id}: price_money.amount must be an integer")
            price_cents = price["amount"]
            price_currency = price.get("currency")

        image_url = None
        for image_id in item.get("image_ids") or []:
            if image_id in image_urls:
                image_url = image_urls[image_id]
                break

        result[variation_id] = CatalogItem(
            variation_id=variation_id,
            name=name,
            variation_name=data.get("name"),
            description=item.get("description"),
            image_url=image_url,
            price_cents=price_cents,
            price_currency=price_currency,
        )
    return result


class CatalogCache:
    """Thread-safe TTL cache of CatalogItem by variation id."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, CatalogItem]] = {}
        self._lock = threading.Lock()

    def get_many(self, variation_ids: Iterable[str]) -> dict[str, CatalogItem]:
        now = self._clock()
        found: dict[str, CatalogItem] = {}
        with self._lock:
            for variation_id in variation_ids:
                entry = self._entries.get(variation_id)
                if entry is None:
                    continue
                stored_at, item = entry
                if now - stored_at > self.ttl_seconds:
                    del self._entries[variation_id]
                    continue
                found[variation_id] = item
        return found

    def put_many(self, items: dict[str, CatalogItem]) -> None:
        now = self._clock()
        with self._lock:
            for variation_id, item in items.items():
                self._entries[variation_id] = (now, item)

    def invalidate(self, variation_ids: Iterable[str] | None = None) -> int:
        with self._lock:
            if variation_ids is None:
                dropped = len(self._entries)
                self._entries.clear()
                return dropped
            dropped = 0
            for variation_id in variation_ids:
                if self._entries.pop(variation_id, None) is not None:
                    dropped += 1
            return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PosClient:
    """
    httpx-backed PosSource for a Square-style REST API.

    The http client is injectable (tests pass one built on httpx.MockTransport).
    """

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str,
        api_version: str | None = None,
        timeout: float = 30.0,
        cache_ttl_seconds: float = 900,
        http_client: httpx.Client | None = None,
    ):
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        if api_version:
            headers["Square-Version"] = api_version
        self._http = http_client or httpx.Client(base_url=base_url, headers=headers, timeout=timeout)
        self.cache = CatalogCache(cache_ttl_seconds)

    def close(self) -> None:
        self._http.close()

    def _post(self, path: str, body: dict[str, Any]) -> Any:
        try:
            response = self._http.post(path, json=body)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise ExternalSourceError(
                f"POS API {path} returned HTTP {exc.response.status_code}",
                details={"status_code": exc.response.status_code},
                # 4xx (other than throttling) will not fix itself on retry
                can_retry=exc.response.status_code == 429 or exc.response.status_code >= 500,
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalSourceError(f"POS API {path} request failed: {exc}") from exc
        except ValueError as exc:
            raise _invalid(f"POS API {path} returned non-JSON body") from exc

    def list_inventory(self, external_location_id: str) -> list[InventoryCount]:
        counts: list[InventoryCount] = []
        cursor = None
        while True:
            body: dict[str, Any] = {"location_ids": [external_location_id], "states": ["IN_STOCK"]}
            if cursor:
                body["cursor"] = cursor
            page, cursor = parse_inventory_counts(self._post("/v2/inventory/counts/batch-retrieve", body))
            counts.extend(page)
            if not cursor:
                break
        return counts

    def fetch_catalog_items(self, variation_ids: list[str]) -> dict[str, CatalogItem]:
        wanted = list(dict.fromkeys(variation_ids))
        found = self.cache.get_many(wanted)
        missing = [v for v in wanted if v not in found]
        if missing:
            payload = self._post(
                "/v2/catalog/batch-retrieve",
                {"object_ids": missing, "include_related_objects": True},
            )
            fetched = parse_catalog_objects(payload)
            self.cache.put_many(fetched)
            found.update(fetched)
        return found

    def fetch_unit_cost(self, variation_id: str) -> Decimal | None:
        # The catalog API exposes selling prices only; vendor cost is not available.
        return None

    def invalidate(self, variation_ids: Iterable[str] | None = None) -> None:
        dropped = self.cache.invalidate(variation_ids)
        current_app.logger.info("Catalog cache invalidated (%s entries dropped)", dropped)


def create_pos_client(config: dict) -> PosClient:
    return PosClient(
        base_url=config["POS_API_BASE_URL"],
        access_token=config["POS_ACCESS_TOKEN"],
        api_version=config.get("POS_API_VERSION"),
        timeout=float(config.get("POS_TIMEOUT_SECONDS", 30)),
        cache_ttl_seconds=float(config.get("CATALOG_CACHE_TTL_SECONDS", 900)),
    )


def get_pos_source() -> PosSource:
    """The application's PosSource (tests may replace app.extensions["pos_source"])."""
    return current_app.extensions["pos_source"]
