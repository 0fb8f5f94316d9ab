# services/cascade.py
"""
Cascading deletion: variant -> product -> category.

A product is deleted outright when its last variant goes, and a category is
deleted when no product (active or not) references it any more. Deleted
product ids are also stripped from every preview list that still mentions
them, member category or not. Work is committed once per storefront product;
a failure in one storefront is rolled back and logged while the others carry on.
"""
import copy
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

import models
import schemas
from crud import catalog, staging as staging_crud
from crud.storefront import get_storefront_by_name
from services.aggregates import recompute_product_aggregates, recompute_staging_aggregates
from services.storefront_directory import list_storefronts
from services.variant_locator import (
    find_staging_copies, find_variant_copies, normalize_shopify_id, raw_variant_matches,
)

logger = logging.getLogger("cascade")


def _strip(preview_ids: Optional[List], product_id: int) -> List:
    return [pid for pid in (preview_ids or []) if str(pid) != str(product_id)]


def on_product_removed(db: Session, storefront: str, product_id: int, category_ids) -> schemas.CategoryCleanupResult:
    """
    Category cleanup after ``product_id`` left ``storefront``.

    Member categories lose the id from their preview list and are deleted once
    nothing references them. Other categories that still preview the product
    are stripped but never deleted. The caller owns the commit.
    """
    result = schemas.CategoryCleanupResult()
    db_storefront = get_storefront_by_name(db, storefront)
    if db_storefront is None:
        return result

    member_ids = []
    for raw_id in category_ids or []:
        if raw_id is None:
            continue
        category_id = int(raw_id)
        if category_id not in member_ids:
            member_ids.append(category_id)

    for category_id in member_ids:
        try:
            with db.begin_nested():
                category = catalog.get_category(db, db_storefront.id, category_id)
                if category is None:
                    continue
                remaining = catalog.count_category_members(
                    db, db_storefront.id, category_id, exclude_product_id=product_id
                )
                if remaining == 0:
                    db.delete(category)
                    deleted = True
                else:
                    category.preview_product_ids = _strip(category.preview_product_ids, product_id)
                    deleted = False
            if deleted:
                result.deleted_categories.append(category_id)
                logger.info("[DELETE] %s category=%s has no products left, deleted", storefront, category_id)
            else:
                result.updated_categories.append(category_id)
        except Exception:
            logger.exception("[DELETE] %s cleanup of category=%s failed", storefront, category_id)

    for category in catalog.categories_previewing(db, db_storefront.id, product_id):
        category.preview_product_ids = _strip(category.preview_product_ids, product_id)
        if category.id not in result.updated_categories:
            result.updated_categories.append(category.id)
    db.flush()
    return result


def on_variant_removed(db: Session, storefront: str, product: models.StorefrontProduct,
                       variant: models.Variant) -> schemas.VariantRemovalResult:
    """Delete one variant copy; the product goes with its last variant."""
    catalog.remove_variant(db, product, variant)
    remaining = list(product.variants)

    if not remaining:
        product_id = product.id
        category_ids = product.member_category_ids
        catalog.delete_product(db, product)
        logger.info("[DELETE] %s product=%s lost its last variant, deleted", storefront, product_id)
        categories = on_product_removed(db, storefront, product_id, category_ids)
        return schemas.VariantRemovalResult(product_deleted=True, categories=categories)

    updated = recompute_product_aggregates(db, product, remaining, deleted_variant=variant)
    db.flush()
    return schemas.VariantRemovalResult(product_deleted=False, updated_fields=updated)


def _remove_from_staging(db: Session, variant_id: Optional[str], inventory_item_id: Optional[str],
                         summary: schemas.DeletionSummary) -> None:
    for db_staging in find_staging_copies(db, variant_id, inventory_item_id):
        try:
            raw = copy.deepcopy(db_staging.raw_product or {})
            raw["variants"] = [
                v for v in raw.get("variants") or [] if not raw_variant_matches(v, variant_id, inventory_item_id)
            ]
            db_staging.raw_product = raw
            recompute_staging_aggregates(db_staging)
            db.commit()
            summary.staging_updated += 1
        except Exception as e:
            db.rollback()
            logger.exception("[DELETE] Failed to update staging product %s", db_staging.shopify_id)
            summary.errors.append(f"staging:{e}")


def delete_variant_everywhere(db: Session, shopify_variant_id=None, inventory_item_id=None) -> schemas.DeletionSummary:
    """
    Remove a Shopify variant from staging and from every storefront copy.

    The staging row survives with fewer (possibly zero) variants; storefront
    products and categories cascade as their last children disappear.
    """
    variant_id = normalize_shopify_id(shopify_variant_id)
    item_id = normalize_shopify_id(inventory_item_id)
    summary = schemas.DeletionSummary()
    if not variant_id and not item_id:
        return summary

    _remove_from_staging(db, variant_id, item_id, summary)

    copies = find_variant_copies(db, variant_id, item_id)
    if not copies:
        logger.info("[DELETE] variant=%s item=%s has no storefront copies", variant_id, item_id)
        db.commit()
        return summary

    for found in copies:
        try:
            result = on_variant_removed(db, found.storefront, found.product, found.variant)
            db.commit()
            summary.deleted_variants += 1
            if result.product_deleted:
                summary.deleted_products += 1
            else:
                summary.updated_products += 1
            if result.categories:
                summary.deleted_categories += len(result.categories.deleted_categories)
                summary.updated_categories += len(result.categories.updated_categories)
        except Exception as e:
            db.rollback()
            logger.exception("[DELETE] %s failed to remove variant=%s", found.storefront, variant_id or item_id)
            summary.errors.append(f"{found.storefront}:{e}")

    logger.info(
        "[DELETE] variant=%s item=%s: %d variants removed, %d products updated, %d products deleted",
        variant_id, item_id, summary.deleted_variants, summary.updated_products, summary.deleted_products,
    )
    return summary


def delete_product_everywhere(db: Session, shopify_product_id) -> schemas.DeletionSummary:
    """Shopify product deleted: drop staging, then every storefront copy and its categories."""
    summary = schemas.DeletionSummary()
    shopify_product_id = int(shopify_product_id)

    try:
        if staging_crud.delete_staging_product(db, shopify_product_id):
            summary.staging_deleted += 1
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("[DELETE] Failed to delete staging product %s", shopify_product_id)
        summary.errors.append(f"staging:{e}")

    for storefront in list_storefronts(db):
        try:
            products = catalog.get_products_by_source(db, shopify_product_id, [storefront])
            for product in products:
                product_id = product.id
                category_ids = product.member_category_ids
                summary.deleted_variants += len(product.variants)
                catalog.delete_product(db, product)
                cleanup = on_product_removed(db, storefront, product_id, category_ids)
                summary.deleted_products += 1
                summary.deleted_categories += len(cleanup.deleted_categories)
                summary.updated_categories += len(cleanup.updated_categories)
                logger.info("[DELETE] %s product=%s (shopify %s) deleted", storefront, product_id, shopify_product_id)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception("[DELETE] %s failed to delete copies of product %s", storefront, shopify_product_id)
            summary.errors.append(f"{storefront}:{e}")

    return summary
