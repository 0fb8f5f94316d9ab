# services/product_sync.py
"""
products/create, products/update and products/delete handling, plus the
launch step that projects a staging product into a storefront.

Staging is the single source of truth per Shopify product; every storefront
product is a projection of it that can be rebuilt with ``launch_staging_product``.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

import models
import schemas
from config import settings
from crud import catalog, staging as staging_crud
from crud.storefront import get_or_create_storefront
from services.aggregates import (
    MAX_PRODUCT_IMAGES, levels_total, recompute_product_aggregates, recompute_staging_aggregates,
)
from services.cascade import delete_product_everywhere, delete_variant_everywhere
from services.market_sync import sync_markets_and_publication
from services.variant_locator import normalize_shopify_id

logger = logging.getLogger("product_sync")


def _to_price(value) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _variant_image_urls(payload: Dict[str, Any], shopify_variant_id) -> List[str]:
    variant_id = normalize_shopify_id(shopify_variant_id)
    urls = []
    for img in payload.get("images") or []:
        if not isinstance(img, dict):
            continue
        ids = {normalize_shopify_id(v) for v in img.get("variant_ids") or []}
        if variant_id in ids and img.get("src"):
            urls.append(img["src"])
    return urls


def _raw_variant_stock(raw_variant: Dict[str, Any]) -> int:
    if raw_variant.get("inventory_levels"):
        return levels_total(raw_variant["inventory_levels"])
    return int(raw_variant.get("inventory_quantity") or 0)


def _upsert_staging(db: Session, payload: Dict[str, Any]):
    db_staging, created = staging_crud.upsert_staging_product(db, payload)
    recompute_staging_aggregates(db_staging)
    db.commit()
    logger.info(
        "[PRODUCT] %s staging %s (shopify %s)",
        "Created" if created else "Updated", db_staging.doc_id, db_staging.shopify_id,
    )
    return db_staging, created


def handle_product_create(db: Session, payload: Dict[str, Any], shopify=None) -> schemas.ProductSyncResult:
    db_staging, created = _upsert_staging(db, payload)
    markets = sync_markets_and_publication(db, db_staging.shopify_id, shopify)
    return schemas.ProductSyncResult(
        shopify_product_id=db_staging.shopify_id, staging_doc_id=db_staging.doc_id, created=created, markets=markets,
    )


def _apply_to_copy(db: Session, product: models.StorefrontProduct, payload: Dict[str, Any],
                   db_staging: models.StagingProduct) -> None:
    image_urls = staging_crud.extract_image_urls(payload)
    if image_urls:
        product.images = image_urls[:MAX_PRODUCT_IMAGES]
    if db_staging.markets:
        product.markets = list(db_staging.markets)
    if db_staging.markets_object:
        product.markets_object = dict(db_staging.markets_object)
    product.published_to_online_store = bool(db_staging.published_to_online_store)

    existing = list(product.variants)
    for raw_variant in payload.get("variants") or []:
        variant_id = normalize_shopify_id(raw_variant.get("id"))
        match = next((v for v in existing if normalize_shopify_id(v.shopify_variant_id) == variant_id), None)
        if match is None and raw_variant.get("sku"):
            match = next((v for v in existing if v.sku and v.sku == raw_variant["sku"]), None)
        if match is None:
            continue

        price = _to_price(raw_variant.get("price"))
        match.shopify_variant_id = variant_id
        if raw_variant.get("inventory_item_id") is not None:
            match.shopify_inventory_item_id = normalize_shopify_id(raw_variant["inventory_item_id"])
        # Per-location levels stay authoritative once an inventory webhook has written them.
        if not match.inventory_levels:
            match.stock = int(raw_variant.get("inventory_quantity") or 0)
        match.price = price
        match.price_override = price
        if raw_variant.get("inventory_policy"):
            match.inventory_policy = raw_variant["inventory_policy"]
        variant_images = _variant_image_urls(payload, variant_id)
        combined = list(dict.fromkeys(variant_images + image_urls))
        if combined:
            match.images = combined
        match.updated_at = datetime.now(timezone.utc)

    recompute_product_aggregates(db, product, list(product.variants))


def handle_product_update(db: Session, payload: Dict[str, Any], shopify=None) -> schemas.ProductSyncResult:
    """
    Refresh staging, cascade variants that vanished from the payload, sync
    markets, then push prices, stock and images onto the storefront copies.
    A missing staging row is created, since updates can arrive before the create.
    """
    shopify_id = int(payload["id"])
    previous = staging_crud.get_staging_by_shopify_id(db, shopify_id)
    before = {
        normalize_shopify_id(v.get("id")): normalize_shopify_id(v.get("inventory_item_id"))
        for v in ((previous.raw_product or {}).get("variants") if previous else None) or []
    }

    db_staging, created = _upsert_staging(db, payload)
    after = {normalize_shopify_id(v.get("id")) for v in payload.get("variants") or []}

    removed = [vid for vid in before if vid and vid not in after]
    for variant_id in removed:
        logger.info("[PRODUCT] Variant %s disappeared from product %s", variant_id, shopify_id)
        delete_variant_everywhere(db, variant_id, before[variant_id])

    markets = sync_markets_and_publication(db, shopify_id, shopify)

    targets = list(db_staging.storefronts or []) or None
    updated = 0
    for product in catalog.get_products_by_source(db, shopify_id, targets):
        storefront = product.storefront.name
        try:
            _apply_to_copy(db, product, payload, db_staging)
            db.commit()
            updated += 1
        except Exception:
            db.rollback()
            logger.exception("[PRODUCT] %s failed to update product copy of %s", storefront, shopify_id)

    return schemas.ProductSyncResult(
        shopify_product_id=shopify_id, staging_doc_id=db_staging.doc_id, created=created,
        removed_variants=removed, updated_products=updated, markets=markets,
    )


def handle_product_delete(db: Session, payload: Dict[str, Any]) -> schemas.DeletionSummary:
    return delete_product_everywhere(db, payload["id"])


def _variant_fields(payload: Dict[str, Any], raw_variant: Dict[str, Any], position: int) -> Dict[str, Any]:
    price = _to_price(raw_variant.get("price"))
    images = _variant_image_urls(payload, raw_variant.get("id"))
    return {
        "position": position,
        "sku": raw_variant.get("sku") or None,
        "size": raw_variant.get("option1"),
        "color": raw_variant.get("option2"),
        "type": raw_variant.get("option3"),
        "price": price,
        "price_override": price,
        "stock": _raw_variant_stock(raw_variant),
        "inventory_policy": raw_variant.get("inventory_policy") or "deny",
        "shopify_variant_id": normalize_shopify_id(raw_variant.get("id")),
        "shopify_inventory_item_id": normalize_shopify_id(raw_variant.get("inventory_item_id")),
        "inventory_levels": list(raw_variant.get("inventory_levels") or []),
        "images": images,
        "image_url": images[0] if images else None,
    }


def _unique_slug(db: Session, storefront: models.Storefront, slug: str, shopify_id: int) -> str:
    taken = {
        p.slug for p in catalog.get_storefront_products(db, storefront.id)
        if p.source_shopify_id != shopify_id
    }
    return slug if slug not in taken else f"{slug}-{shopify_id}"


def launch_staging_product(db: Session, shopify_id, storefront_name: str,
                           category_ids: Optional[List[int]] = None) -> Optional[models.StorefrontProduct]:
    """
    Project a staging product into ``storefront_name``.

    Re-launching rebuilds the copy from staging: payload variants are matched by
    Shopify id and updated, new ones are added in payload order, and variants
    that are gone from the payload are dropped. Returns None when there is no
    staging row for ``shopify_id``.
    """
    shopify_id = int(shopify_id)
    db_staging = staging_crud.get_staging_by_shopify_id(db, shopify_id)
    if db_staging is None:
        return None

    payload = db_staging.raw_product or {}
    storefront = get_or_create_storefront(
        db, storefront_name, is_default=storefront_name == settings.default_storefront
    )
    product = next(iter(catalog.get_products_by_source(db, shopify_id, [storefront_name])), None)
    category_ids = [int(c) for c in (category_ids or [])]

    fields = {
        "name": db_staging.title,
        "images": list(db_staging.image_urls or [])[:MAX_PRODUCT_IMAGES],
        "markets": list(db_staging.markets or []),
        "markets_object": db_staging.markets_object,
        "published_to_online_store": bool(db_staging.published_to_online_store),
        "active": (db_staging.status or "active") == "active",
    }
    if product is None:
        product = catalog.create_storefront_product(
            db, storefront,
            slug=_unique_slug(db, storefront, db_staging.doc_id or f"shopify-product-{shopify_id}", shopify_id),
            source_shopify_id=shopify_id,
            category_ids=category_ids,
            category_id=category_ids[0] if category_ids else None,
            **fields,
        )
    else:
        for key, value in fields.items():
            setattr(product, key, value)
        if category_ids:
            product.category_ids = category_ids
            product.category_id = category_ids[0]

    existing = {normalize_shopify_id(v.shopify_variant_id): v for v in product.variants}
    seen = set()
    for position, raw_variant in enumerate(payload.get("variants") or []):
        values = _variant_fields(payload, raw_variant, position)
        seen.add(values["shopify_variant_id"])
        variant = existing.get(values["shopify_variant_id"])
        if variant is None:
            catalog.add_variant(db, product, **values)
            continue
        for key, value in values.items():
            setattr(variant, key, value)

    for variant_id, variant in existing.items():
        if variant_id not in seen:
            catalog.remove_variant(db, product, variant)

    db.flush()
    recompute_product_aggregates(db, product, list(product.variants))

    db_staging.processed_storefronts = sorted(set(db_staging.processed_storefronts or []) | {storefront_name})
    db_staging.storefronts = sorted(set(db_staging.storefronts or []) | {storefront_name})
    db.commit()
    db.refresh(product)
    logger.info("[LAUNCH] %s product=%s from shopify %s with %d variants",
                storefront_name, product.id, shopify_id, len(product.variants))
    return product
