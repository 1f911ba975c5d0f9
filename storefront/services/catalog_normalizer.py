"""Catalog normalizer — Square catalog ITEM payload -> ProductRecord list.

Business Rules:
- One record per variation; the variation id is the product id.
- Items with several variations get " - <variation name>" appended to the title.
- "voucher" in the item name or description marks a voucher: price may be
  absent (stored as 0) and the product is always available.
- A non-voucher variation without price_money makes the whole item malformed,
  and so does a non-integer amount or any field of the wrong type: the item
  is skipped, the rest of the batch carries on.
- Description markers [HIDDEN FROM STORE] / [PREORDER] set is_visible=False /
  is_preorder=True and are stripped from the stored text.
- Available at the location when a count record exists there, inventory
  tracking is off for the location, or the product is a voucher.

Called by: services/catalog_service.py
Depends on: schemas/product.py
"""

from datetime import date
from decimal import Decimal

from loguru import logger
from pydantic import ValidationError

from ..exceptions import MalformedRecordError
from ..models.product import ProductType, StockStatus
from ..schemas.product import ProductRecord
from ..utils import safe_int

HIDDEN_MARKER = "[HIDDEN FROM STORE]"
PREORDER_MARKER = "[PREORDER]"


def stock_status_for(quantity: int, low_stock_threshold: int = 3) -> StockStatus:
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity < low_stock_threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def _strip_markers(description: str) -> str:
    return description.replace(HIDDEN_MARKER, "").replace(PREORDER_MARKER, "").strip()


def _custom_attributes(item: dict) -> dict[str, str]:
    """Flatten custom_attribute_values to {name: value}, keyed by lowercased name."""
    out = {}
    values = item.get("custom_attribute_values") or {}
    if not isinstance(values, dict):
        return out
    for key, attr in values.items():
        if not isinstance(attr, dict):
            continue
        name = str(attr.get("name") or attr.get("key") or key).split(":")[-1].strip().lower()
        value = attr.get("string_value")
        if value is None and attr.get("selection_uid_values"):
            value = attr["selection_uid_values"][0]
        if value not in (None, ""):
            out[name] = str(value).strip()
    return out


def _parse_date(value: str | None, item_id: str) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        logger.warning("Ignoring bad preorder_release_date {!r} on {}", value, item_id)
        return None


def _tracking_disabled(variation_data: dict, location_id: str) -> bool:
    if variation_data.get("track_inventory") is False:
        return True
    return any(
        o.get("location_id") == location_id and o.get("track_inventory") is False
        for o in variation_data.get("location_overrides") or []
        if isinstance(o, dict)
    )


def _price_cents(price_money: dict | None, item_id: str, variation_id: str) -> int:
    """Minor-unit amount; whole numbers only (Square sends integer cents)."""
    amount = (price_money or {}).get("amount")
    if amount is None:
        return 0
    cents = None if isinstance(amount, (bool, float)) else safe_int(amount)
    if cents is None:
        raise MalformedRecordError(item_id, f"variation {variation_id} has a non-integer amount {amount!r}")
    return cents


def _dict_field(obj: dict, key: str, item_id: str) -> dict:
    value = obj.get(key) or {}
    if not isinstance(value, dict):
        raise MalformedRecordError(item_id, f"{key} is not an object")
    return value


def _str_field(obj: dict, key: str, item_id: str) -> str:
    value = obj.get(key) or ""
    if not isinstance(value, str):
        raise MalformedRecordError(item_id, f"{key} is not a string")
    return value


def normalize_catalog_item(
    item: dict,
    counts: dict[str, int],
    location_id: str,
    low_stock_threshold: int = 3,
) -> list[ProductRecord]:
    """Map one catalog object to mirror records.

    counts maps variation id -> IN_STOCK quantity at the location; a missing
    key means the variation has no inventory record there.
    Raises MalformedRecordError when the item cannot be represented,
    including fields of the wrong type anywhere in the payload.
    """
    if not isinstance(item, dict):
        raise MalformedRecordError(None, f"catalog object is {type(item).__name__}, not an object")
    try:
        return _normalize(item, counts, location_id, low_stock_threshold)
    except MalformedRecordError:
        raise
    except (AttributeError, TypeError, ValueError) as e:
        item_id = item.get("id")
        raise MalformedRecordError(item_id if isinstance(item_id, str) else None, f"unreadable field: {e}") from e


def _normalize(item: dict, counts: dict[str, int], location_id: str, low_stock_threshold: int) -> list[ProductRecord]:
    item_id = item.get("id")
    if not item_id or not isinstance(item_id, str):
        raise MalformedRecordError(None, "missing id")
    if item.get("type") != "ITEM":
        raise MalformedRecordError(item_id, f"unexpected type {item.get('type')!r}")

    data = _dict_field(item, "item_data", item_id)
    name = _str_field(data, "name", item_id).strip()
    if not name:
        raise MalformedRecordError(item_id, "missing item name")

    raw_variations = data.get("variations") or []
    if not isinstance(raw_variations, list):
        raise MalformedRecordError(item_id, "variations is not a list")
    variations = [v for v in raw_variations if isinstance(v, dict) and isinstance(v.get("id"), str) and v["id"]]
    if not variations:
        raise MalformedRecordError(item_id, "no variations with an id")

    raw_description = _str_field(data, "description", item_id)
    is_voucher = "voucher" in name.lower() or "voucher" in raw_description.lower()
    attrs = _custom_attributes(item)

    product_type = ProductType.VOUCHER if is_voucher else ProductType.RECORD
    if attrs.get("product_type"):
        try:
            product_type = ProductType(attrs["product_type"].lower())
        except ValueError:
            logger.warning("Unknown product_type {!r} on {}", attrs["product_type"], item_id)

    image_uris = data.get("ecom_image_uris") or []
    if not isinstance(image_uris, list):
        image_uris = []
    release_date = _parse_date(attrs.get("preorder_release_date"), item_id)

    records = []
    for variation in variations:
        vdata = _dict_field(variation, "item_variation_data", item_id)
        price_money = _dict_field(vdata, "price_money", item_id)
        if not price_money and not is_voucher:
            raise MalformedRecordError(item_id, f"variation {variation['id']} has no price")

        price = Decimal(_price_cents(price_money, item_id, variation["id"])) / 100

        title = name
        if len(variations) > 1 and vdata.get("name"):
            title = f"{name} - {vdata['name']}"

        has_record = variation["id"] in counts
        untracked = _tracking_disabled(vdata, location_id)
        quantity = max(0, counts.get(variation["id"], 0))
        if is_voucher or untracked:
            status, in_stock = StockStatus.IN_STOCK, True
        else:
            status = stock_status_for(quantity, low_stock_threshold)
            in_stock = quantity > 0

        try:
            records.append(
                ProductRecord(
                    id=variation["id"],
                    title=title,
                    artist=attrs.get("artist"),
                    description=_strip_markers(raw_description) or None,
                    price=price,
                    currency=(price_money or {}).get("currency") or "GBP",
                    image_url=image_uris[0] if image_uris else None,
                    product_type=product_type,
                    is_visible=HIDDEN_MARKER not in raw_description,
                    available_at_location=has_record or untracked or is_voucher,
                    is_from_square=True,
                    stock_quantity=quantity,
                    stock_status=status,
                    in_stock=in_stock,
                    is_preorder=PREORDER_MARKER in raw_description,
                    preorder_release_date=release_date,
                    platform_updated_at=variation.get("updated_at") or item.get("updated_at"),
                )
            )
        except ValidationError as e:
            raise MalformedRecordError(item_id, str(e.errors()[0]["msg"])) from e

    return records


def collect_variation_ids(items: list[dict]) -> list[str]:
    """Variation ids across all items, in payload order, deduplicated."""
    seen = {}
    for item in items:
        data = item.get("item_data") if isinstance(item, dict) else None
        variations = data.get("variations") if isinstance(data, dict) else None
        if not isinstance(variations, list):
            continue
        for variation in variations:
            if isinstance(variation, dict) and isinstance(variation.get("id"), str) and variation["id"]:
                seen.setdefault(variation["id"], None)
    return list(seen)
