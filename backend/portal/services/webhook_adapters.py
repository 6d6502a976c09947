# Overview: Normalizes commerce-platform webhook payloads into typed internal events.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..time_utils import parse_iso_datetime
from ..validation import ValidationError
from .alias_service import normalize_shopify_id
"""
Webhook Payload Adapters

The platform sends the same concept in several shapes: GraphQL GIDs
("gid://shopify/Order/1"), plain integers, numeric strings, and nested
objects ({"order": {"id": 1}} vs {"order_id": 1}). Every shape is handled
here, once, per event family. Handlers downstream only see the frozen
dataclasses below.

    returns/request|approve|decline|close  -> ReturnEvent
    orders/*                               -> OrderEvent
    inventory_levels/update                -> InventoryLevelEvent
    products/create|update|delete          -> ProductEvent
    app/uninstalled                        -> AppUninstalledEvent
"""


class PayloadError(ValidationError):
    """Raised when a payload is missing the fields its topic requires."""


class UnsupportedTopicError(ValidationError):
    """Raised for topics no adapter handles."""


RETURN_TOPIC_STATUS = {
    "returns/request": "requested",
    "returns/approve": "approved",
    "returns/decline": "declined",
    "returns/close": "received",
}


@dataclass(frozen=True)
class ReturnLineItem:
    line_item_id: str | None
    variant_id: str | None
    inventory_item_id: str | None
    sku: str | None
    title: str | None
    quantity: int
    return_reason: str | None = None


@dataclass(frozen=True)
class ReturnEvent:
    return_id: str
    order_id: str | None
    order_number: str | None
    status: str
    reason: str | None
    line_items: tuple[ReturnLineItem, ...] = ()
    created_at: datetime | None = None

    @property
    def expected_qty(self) -> int:
        return sum(item.quantity for item in self.line_items)


@dataclass(frozen=True)
class OrderLineItem:
    line_item_id: str | None
    variant_id: str | None
    sku: str | None
    title: str | None
    quantity: int


@dataclass(frozen=True)
class OrderEvent:
    order_id: str
    order_number: str | None
    financial_status: str | None
    fulfillment_status: str | None
    cancelled: bool
    line_items: tuple[OrderLineItem, ...] = ()
    created_at: datetime | None = None


@dataclass(frozen=True)
class InventoryLevelEvent:
    inventory_item_id: str
    location_id: str | None
    available: int
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ProductVariant:
    variant_id: str
    inventory_item_id: str | None
    sku: str | None


@dataclass(frozen=True)
class ProductEvent:
    product_id: str
    deleted: bool
    variants: tuple[ProductVariant, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AppUninstalledEvent:
    shop_domain: str | None


def _first(*values):
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _quantity(value) -> int:
    try:
        qty = int(value or 0)
    except (TypeError, ValueError):
        raise PayloadError(f"Invalid quantity {value!r}")
    return max(qty, 0)


def _timestamp(value) -> datetime | None:
    if not value:
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        return None


def _nested_line_item(item: dict) -> dict:
    """Return line items reference the order line either inline or via a fulfillment line."""
    if isinstance(item.get("line_item"), dict):
        return item["line_item"]
    fulfillment_line = item.get("fulfillment_line_item")
    if isinstance(fulfillment_line, dict) and isinstance(fulfillment_line.get("line_item"), dict):
        return fulfillment_line["line_item"]
    return {}


def adapt_return(topic: str, payload: dict) -> ReturnEvent:
    status = RETURN_TOPIC_STATUS.get(topic)
    if status is None:
        raise UnsupportedTopicError(f"Unsupported returns topic {topic}")

    return_id = normalize_shopify_id(_first(payload.get("id"), payload.get("admin_graphql_api_id")))
    if not return_id:
        raise PayloadError("Return payload is missing id")

    order = payload.get("order") if isinstance(payload.get("order"), dict) else {}
    items = []
    for raw in payload.get("return_line_items") or []:
        nested = _nested_line_item(raw)
        variant = raw.get("variant") if isinstance(raw.get("variant"), dict) else {}
        items.append(
            ReturnLineItem(
                line_item_id=normalize_shopify_id(_first(nested.get("id"), raw.get("line_item_id"), raw.get("id"))),
                variant_id=normalize_shopify_id(_first(raw.get("variant_id"), nested.get("variant_id"), variant.get("id"))),
                inventory_item_id=normalize_shopify_id(
                    _first(
                        raw.get("inventory_item_id"),
                        nested.get("inventory_item_id"),
                        variant.get("inventory_item_id"),
                    )
                ),
                sku=_first(raw.get("sku"), nested.get("sku"), variant.get("sku")),
                title=_first(raw.get("title"), nested.get("title"), nested.get("name")),
                quantity=_quantity(raw.get("quantity")),
                return_reason=raw.get("return_reason"),
            )
        )

    return ReturnEvent(
        return_id=return_id,
        order_id=normalize_shopify_id(_first(payload.get("order_id"), order.get("id"), order.get("admin_graphql_api_id"))),
        order_number=_first(payload.get("order_number"), order.get("name"), payload.get("name")),
        status=status,
        reason=_first(payload.get("return_reason"), items[0].return_reason if items else None),
        line_items=tuple(items),
        created_at=_timestamp(payload.get("created_at")),
    )


def adapt_order(topic: str, payload: dict) -> OrderEvent:
    order_id = normalize_shopify_id(_first(payload.get("id"), payload.get("admin_graphql_api_id")))
    if not order_id:
        raise PayloadError("Order payload is missing id")

    items = tuple(
        OrderLineItem(
            line_item_id=normalize_shopify_id(raw.get("id")),
            variant_id=normalize_shopify_id(raw.get("variant_id")),
            sku=raw.get("sku") or None,
            title=raw.get("title") or raw.get("name"),
            quantity=_quantity(raw.get("quantity")),
        )
        for raw in payload.get("line_items") or []
    )
    return OrderEvent(
        order_id=order_id,
        order_number=_first(payload.get("name"), payload.get("order_number")),
        financial_status=payload.get("financial_status"),
        fulfillment_status=payload.get("fulfillment_status"),
        cancelled=topic == "orders/cancelled" or bool(payload.get("cancelled_at")),
        line_items=items,
        created_at=_timestamp(payload.get("created_at")),
    )


def adapt_inventory_level(payload: dict) -> InventoryLevelEvent:
    inventory_item_id = normalize_shopify_id(payload.get("inventory_item_id"))
    if not inventory_item_id:
        raise PayloadError("Inventory level payload is missing inventory_item_id")
    try:
        available = int(payload.get("available") or 0)
    except (TypeError, ValueError):
        raise PayloadError(f"Invalid available quantity {payload.get('available')!r}")
    return InventoryLevelEvent(
        inventory_item_id=inventory_item_id,
        location_id=normalize_shopify_id(payload.get("location_id")),
        available=available,
        updated_at=_timestamp(payload.get("updated_at")),
    )


def adapt_product(topic: str, payload: dict) -> ProductEvent:
    product_id = normalize_shopify_id(_first(payload.get("id"), payload.get("admin_graphql_api_id")))
    if not product_id:
        raise PayloadError("Product payload is missing id")
    variants = []
    for raw in payload.get("variants") or []:
        variant_id = normalize_shopify_id(_first(raw.get("id"), raw.get("admin_graphql_api_id")))
        if not variant_id:
            continue
        variants.append(
            ProductVariant(
                variant_id=variant_id,
                inventory_item_id=normalize_shopify_id(raw.get("inventory_item_id")),
                sku=(raw.get("sku") or "").strip() or None,
            )
        )
    return ProductEvent(product_id=product_id, deleted=topic == "products/delete", variants=tuple(variants))


def adapt(topic: str, payload: dict, *, shop_domain: str | None = None):
    """Dispatch a raw payload to its family adapter."""
    if not isinstance(payload, dict):
        raise PayloadError("Webhook payload must be a JSON object")
    if topic.startswith("returns/"):
        return adapt_return(topic, payload)
    if topic.startswith("orders/"):
        return adapt_order(topic, payload)
    if topic == "inventory_levels/update":
        return adapt_inventory_level(payload)
    if topic.startswith("products/"):
        return adapt_product(topic, payload)
    if topic == "app/uninstalled":
        return AppUninstalledEvent(shop_domain=_first(payload.get("myshopify_domain"), payload.get("domain"), shop_domain))
    raise UnsupportedTopicError(f"Unsupported webhook topic {topic}")
