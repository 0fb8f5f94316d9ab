# services/aggregates.py
"""
Derived product fields, recomputed from the variants that currently exist.

Recomputation never works from deltas: every call rebuilds totals from the
remaining variant set, so replaying the same event is harmless. Helpers
accept both ORM ``Variant`` rows and raw Shopify variant dicts.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

import models
from config import settings

logger = logging.getLogger("aggregates")

MAX_PRODUCT_IMAGES = 10


def _get(obj: Any, *path: str, default=None):
    cur = obj
    for key in path:
        if cur is None: return default
        cur = cur.get(key, default) if isinstance(cur, dict) else getattr(cur, key, default)
    return cur


def _to_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def levels_total(levels: Optional[Sequence[Dict[str, Any]]]) -> int:
    return sum(int(level.get("available") or 0) for level in (levels or []))


def variant_stock(variant: Any) -> int:
    stock = _get(variant, "stock")
    if stock is None:
        stock = _get(variant, "inventory_quantity")
    if stock is None:
        levels = _get(variant, "inventory_levels")
        stock = levels_total(levels) if levels else 0
    return int(stock or 0)


def is_variant_in_stock(variant: Any) -> bool:
    return variant_stock(variant) > 0 or _get(variant, "inventory_policy") == "continue"


def variant_price(variant: Any) -> Optional[float]:
    price = _to_float(_get(variant, "price"))
    if price is None:
        price = _to_float(_get(variant, "price_override"))
    return price


def variant_main_image(variant: Any) -> Optional[str]:
    if variant is None:
        return None
    if _get(variant, "default_photo"):
        return _get(variant, "default_photo")
    images = _get(variant, "images")
    if isinstance(images, list) and images:
        first = images[0]
        return first.get("url") if isinstance(first, dict) else first
    if _get(variant, "image_url"):
        return _get(variant, "image_url")
    image = _get(variant, "image")
    if image:
        return image if isinstance(image, str) else image.get("url")
    return None


def summarize_stock(variants: Sequence[Any]) -> Dict[str, Any]:
    total_stock = 0
    in_stock = 0
    for variant in variants:
        total_stock += variant_stock(variant)
        if is_variant_in_stock(variant):
            in_stock += 1
    return {
        "total_stock": total_stock,
        "in_stock_variant_count": in_stock,
        "has_in_stock_variants": in_stock > 0,
        "total_variant_count": len(variants),
    }


def minimum_price(variants: Sequence[Any]) -> Optional[float]:
    prices = [p for p in (variant_price(v) for v in variants) if p is not None and p > 0]
    return min(prices) if prices else None


def is_listable(product: models.StorefrontProduct, threshold: Optional[int] = None) -> bool:
    """Display rule only; reconciliation never hides or deletes on it."""
    threshold = settings.min_display_stock if threshold is None else threshold
    return bool(product.has_in_stock_variants) and (product.total_stock or 0) >= threshold


@dataclass(frozen=True)
class DefaultVariantRef:
    """Default-variant pointer: ``local`` is a Variant.id, ``shopify`` a Shopify variant id.

    ``kind`` is None for legacy rows; those are matched against both id spaces.
    """
    value: str
    kind: Optional[str] = None

    @classmethod
    def from_product(cls, product: models.StorefrontProduct) -> Optional["DefaultVariantRef"]:
        if product.default_variant_id in (None, ""):
            return None
        return cls(value=str(product.default_variant_id), kind=product.default_variant_kind)

    def matches(self, variant: Any) -> bool:
        local_id = _get(variant, "id")
        shopify_id = _get(variant, "shopify_variant_id")
        if self.kind == "local":
            return local_id is not None and str(local_id) == self.value
        if self.kind == "shopify":
            return shopify_id is not None and str(shopify_id) == self.value
        return (local_id is not None and str(local_id) == self.value) or (
            shopify_id is not None and str(shopify_id) == self.value
        )


def _ordered(variants: Sequence[models.Variant]) -> List[models.Variant]:
    return sorted(variants, key=lambda v: (v.position or 0, v.id or 0))


def _default_fields(product: models.StorefrontProduct, new_default: Optional[models.Variant],
                    deleted_variant: Optional[models.Variant]) -> Dict[str, Any]:
    if new_default is None:
        return {
            "default_variant_id": None,
            "default_variant_kind": None,
            "main_image": None,
            "default_variant_price": None,
        }

    fields: Dict[str, Any] = {
        "default_variant_id": str(new_default.id),
        "default_variant_kind": "local",
        "default_variant_price": variant_price(new_default),
    }
    new_image = variant_main_image(new_default)
    if new_image:
        current = product.images if isinstance(product.images, list) else []
        kept = [
            img for img in current
            if (img.get("url") if isinstance(img, dict) else img) not in (product.main_image, new_image)
        ]
        fields["main_image"] = new_image
        fields["images"] = [new_image] + kept[:MAX_PRODUCT_IMAGES - 1]
    elif deleted_variant is not None and product.main_image == variant_main_image(deleted_variant):
        fields["main_image"] = None
    return fields


def recompute_product_aggregates(
    db: Session,
    product: models.StorefrontProduct,
    remaining_variants: Sequence[models.Variant],
    deleted_variant: Optional[models.Variant] = None,
) -> Dict[str, Any]:
    """
    Rebuild stock/price aggregates and, when needed, re-elect the default variant.

    Order matters: stock and price aggregates come from the remaining set first,
    then the default pointer is checked. Re-election happens when the removed
    variant was the default or the current pointer no longer resolves. The new
    default is the first remaining variant by position. Returns the fields written.
    """
    remaining = _ordered(remaining_variants)
    updates: Dict[str, Any] = summarize_stock(remaining)

    base_price = minimum_price(remaining)
    if base_price is not None:
        updates["base_price"] = base_price

    current = DefaultVariantRef.from_product(product)
    was_default = bool(current and deleted_variant is not None and current.matches(deleted_variant))
    resolved = next((v for v in remaining if current and current.matches(v)), None)

    if was_default or resolved is None:
        new_default = remaining[0] if remaining else None
        updates.update(_default_fields(product, new_default, deleted_variant))
        if was_default:
            logger.info(
                "[AGGREGATES] product=%s default variant removed, new default=%s image=%s price=%s",
                product.id, updates.get("default_variant_id"), updates.get("main_image"),
                updates.get("default_variant_price"),
            )
    elif current.kind != "local":
        # Normalize legacy / Shopify-id pointers to the local id space.
        updates["default_variant_id"] = str(resolved.id)
        updates["default_variant_kind"] = "local"

    for key, value in updates.items():
        setattr(product, key, value)
    product.updated_at = datetime.now(timezone.utc)
    db.add(product)

    logger.debug(
        "[AGGREGATES] product=%s totalStock=%s inStock=%s/%s listable=%s",
        product.id, product.total_stock, product.in_stock_variant_count,
        product.total_variant_count, is_listable(product),
    )
    return updates


def recompute_staging_aggregates(staging: models.StagingProduct) -> Dict[str, Any]:
    variants = (staging.raw_product or {}).get("variants") or []
    updates = summarize_stock(variants)
    for key, value in updates.items():
        setattr(staging, key, value)
    staging.updated_at = datetime.now(timezone.utc)
    return updates
