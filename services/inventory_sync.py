# services/inventory_sync.py
"""
Applies Shopify inventory-level changes to staging and to every storefront copy.

Levels are merged per location (upsert by location_id), never replaced
wholesale, so a single-location event cannot wipe out other locations.
When Shopify can be asked for the item's full level set that is preferred;
if the call fails we fall back to the one level the webhook carried.
"""
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from sqlalchemy.orm import Session

import schemas
from crud.catalog import set_variant_levels
from services.aggregates import levels_total, recompute_product_aggregates, recompute_staging_aggregates
from services.variant_locator import find_staging_copies, find_variant_copies, normalize_shopify_id

logger = logging.getLogger("inventory_sync")


def _normalize_level(level: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "location_id": normalize_shopify_id(level.get("location_id")),
        "location_name": level.get("location_name"),
        "available": int(level.get("available") or 0),
        "updated_at": level.get("updated_at"),
    }


def merge_inventory_levels(existing: Optional[List[Dict[str, Any]]],
                           incoming: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Upsert ``incoming`` into ``existing`` keyed by stringified location_id.

    Existing order is preserved and new locations are appended. A level that
    arrives without a location name keeps the name already on file.
    """
    merged: List[Dict[str, Any]] = []
    positions: Dict[str, int] = {}
    for level in existing or []:
        normalized = _normalize_level(level)
        if normalized["location_id"] is None:
            continue
        if normalized["location_id"] in positions:
            merged[positions[normalized["location_id"]]] = normalized
        else:
            positions[normalized["location_id"]] = len(merged)
            merged.append(normalized)

    for level in incoming:
        normalized = _normalize_level(level)
        location_id = normalized["location_id"]
        if location_id is None:
            continue
        if location_id in positions:
            previous = merged[positions[location_id]]
            if not normalized["location_name"]:
                normalized["location_name"] = previous.get("location_name")
            merged[positions[location_id]] = normalized
        else:
            positions[location_id] = len(merged)
            merged.append(normalized)
    return merged


def _incoming_levels(inventory_item_id: str, location_id: Optional[str], available: Optional[int],
                     updated_at: Optional[str], all_known_levels, shopify,
                     result: schemas.InventorySyncResult) -> List[Dict[str, Any]]:
    webhook_level = None
    if location_id is not None:
        webhook_level = {"location_id": location_id, "available": available or 0, "updated_at": updated_at}

    levels = all_known_levels
    if levels is None and shopify is not None:
        try:
            levels = shopify.get_inventory_levels(inventory_item_id)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("[SYNC] Could not fetch levels for item %s, using webhook level only: %s", inventory_item_id, e)
            levels = None

    if levels is None:
        return [webhook_level] if webhook_level else []

    result.used_full_levels = True
    incoming = list(levels)
    known = {normalize_shopify_id(level.get("location_id")) for level in incoming}
    if webhook_level and location_id not in known:
        incoming.append(webhook_level)
    return incoming


def apply_inventory_level_update(db: Session, inventory_item_id, location_id=None, available: Optional[int] = None,
                                 all_known_levels: Optional[List[Dict[str, Any]]] = None,
                                 updated_at: Optional[str] = None, shopify=None) -> schemas.InventorySyncResult:
    """
    Merge a level change into every copy of the inventory item and recompute aggregates.

    Applying the same event twice leaves the same state as applying it once.
    """
    item_id = normalize_shopify_id(inventory_item_id)
    location_id = normalize_shopify_id(location_id)
    updated_at = updated_at or datetime.now(timezone.utc).isoformat()
    result = schemas.InventorySyncResult(
        inventory_item_id=item_id or "", location_id=location_id, location_available=available,
    )
    if not item_id:
        return result

    incoming = _incoming_levels(item_id, location_id, available, updated_at, all_known_levels, shopify, result)
    if not incoming:
        logger.info("[SYNC] Nothing to apply for item %s", item_id)
        return result

    for db_staging in find_staging_copies(db, None, item_id):
        try:
            raw = copy.deepcopy(db_staging.raw_product or {})
            for raw_variant in raw.get("variants") or []:
                if normalize_shopify_id(raw_variant.get("inventory_item_id")) != item_id:
                    continue
                merged = merge_inventory_levels(raw_variant.get("inventory_levels"), incoming)
                total = levels_total(merged)
                raw_variant["inventory_levels"] = merged
                raw_variant["inventory_quantity"] = total
                raw_variant["inventory_quantity_total"] = total
                result.total_available = total
            db_staging.raw_product = raw
            recompute_staging_aggregates(db_staging)
            db.commit()
            result.updated_staging += 1
        except Exception as e:
            db.rollback()
            logger.exception("[SYNC] Failed to update staging product %s", db_staging.shopify_id)
            result.errors.append(f"staging:{e}")

    for found in find_variant_copies(db, None, item_id):
        try:
            merged = merge_inventory_levels(found.variant.inventory_levels, incoming)
            total = levels_total(merged)
            set_variant_levels(found.variant, merged, total)
            recompute_product_aggregates(db, found.product, list(found.product.variants))
            db.commit()
            result.updated_storefront_variants += 1
            result.total_available = total
        except Exception as e:
            db.rollback()
            logger.exception("[SYNC] %s failed to update product %s", found.storefront, found.product.id)
            result.errors.append(f"{found.storefront}:{e}")

    logger.info(
        "[SYNC] item=%s location=%s available=%s total=%s full_levels=%s updated=%d",
        item_id, location_id, available, result.total_available, result.used_full_levels, result.updated_count,
    )
    return result


def refresh_inventory_item(db: Session, inventory_item_id, shopify) -> schemas.InventorySyncResult:
    """Refetch every level for the item and apply them; a failed fetch is a no-op."""
    item_id = normalize_shopify_id(inventory_item_id)
    result = schemas.InventorySyncResult(inventory_item_id=item_id or "")
    if not item_id or shopify is None:
        return result
    try:
        levels = shopify.get_inventory_levels(item_id)
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.warning("[SYNC] Could not refresh item %s: %s", item_id, e)
        return result
    return apply_inventory_level_update(db, item_id, all_known_levels=levels)
