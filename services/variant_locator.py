# services/variant_locator.py
"""
Finds every copy of a Shopify variant: the staging product that carries it and
each storefront product variant derived from it.

Lookups go through the ``variant_index`` table, which a ``before_flush`` hook
keeps in step with every ORM write of a storefront variant or staging row.
The full scan over storefronts x products x variants is kept as the fallback
and repair path: it runs when the index has nothing (or when
VARIANT_LOOKUP_MODE=scan) and re-indexes whatever it finds. Writes that
bypass the ORM (bulk updates, raw SQL) are repaired by ``rebuild_variant_index``.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import event, inspect, or_
from sqlalchemy.orm import Session

import models
from config import settings
from shopify_service import gid_to_id
from services.storefront_directory import list_storefronts

logger = logging.getLogger("variant_locator")


@dataclass
class VariantCopy:
    storefront: str
    product: models.StorefrontProduct
    variant: models.Variant


def normalize_shopify_id(value) -> Optional[str]:
    """Shopify ids arrive as ints, numeric strings or GIDs; compare them as plain numeric strings."""
    if value is None or value == "":
        return None
    text = str(value)
    if text.startswith("gid://"):
        parsed = gid_to_id(text)
        return str(parsed) if parsed is not None else None
    return text


def _match_in_product(product: models.StorefrontProduct, variant_id: Optional[str],
                      inventory_item_id: Optional[str]) -> Optional[models.Variant]:
    variants = sorted(product.variants, key=lambda v: (v.position or 0, v.id or 0))
    if variant_id:
        for variant in variants:
            if normalize_shopify_id(variant.shopify_variant_id) == variant_id:
                return variant
    if inventory_item_id:
        for variant in variants:
            if normalize_shopify_id(variant.shopify_inventory_item_id) == inventory_item_id:
                return variant
    return None


def raw_variant_matches(raw_variant: Dict, variant_id: Optional[str], inventory_item_id: Optional[str]) -> bool:
    if variant_id and normalize_shopify_id(raw_variant.get("id")) == variant_id:
        return True
    return bool(inventory_item_id) and normalize_shopify_id(raw_variant.get("inventory_item_id")) == inventory_item_id


def _is_candidate(product: Optional[models.StorefrontProduct], storefronts: Iterable[str]) -> bool:
    return (
        product is not None
        and product.source_shopify_id is not None
        and product.storefront is not None
        and product.storefront.name in storefronts
    )


def _copies_for(products: Iterable[models.StorefrontProduct], variant_id, inventory_item_id) -> List[VariantCopy]:
    copies = []
    for product in products:
        variant = _match_in_product(product, variant_id, inventory_item_id)
        if variant is not None:
            copies.append(VariantCopy(storefront=product.storefront.name, product=product, variant=variant))
    return copies


def _lookup_index(db: Session, variant_id, inventory_item_id, storefronts: List[str]) -> List[VariantCopy]:
    clauses = []
    if variant_id:
        clauses.append(models.VariantIndexEntry.shopify_variant_id == variant_id)
    if inventory_item_id:
        clauses.append(models.VariantIndexEntry.shopify_inventory_item_id == inventory_item_id)

    entries = (
        db.query(models.VariantIndexEntry)
        .filter(models.VariantIndexEntry.variant_id.isnot(None))
        .filter(or_(*clauses))
        .all()
    )

    products: Dict[int, models.StorefrontProduct] = {}
    for entry in entries:
        variant = entry.variant
        if variant is None or not (
            (variant_id and normalize_shopify_id(variant.shopify_variant_id) == variant_id)
            or (inventory_item_id and normalize_shopify_id(variant.shopify_inventory_item_id) == inventory_item_id)
        ):
            logger.debug("[LOCATOR] Dropping stale index entry %s", entry.id)
            db.delete(entry)
            continue
        if _is_candidate(variant.product, storefronts):
            products[variant.product.id] = variant.product

    ordered = sorted(products.values(), key=lambda p: (p.storefront.name, p.id))
    return _copies_for(ordered, variant_id, inventory_item_id)


def _scan(db: Session, variant_id, inventory_item_id, storefronts: List[str]) -> List[VariantCopy]:
    products = (
        db.query(models.StorefrontProduct)
        .join(models.Storefront, models.StorefrontProduct.storefront_id == models.Storefront.id)
        .filter(models.Storefront.name.in_(storefronts))
        .filter(models.StorefrontProduct.source_shopify_id.isnot(None))
        .order_by(models.Storefront.name.asc(), models.StorefrontProduct.id.asc())
        .all()
    )
    return _copies_for(products, variant_id, inventory_item_id)


def find_variant_copies(db: Session, shopify_variant_id=None, inventory_item_id=None) -> List[VariantCopy]:
    """
    Every storefront copy of a variant, at most one per product.

    The Shopify variant id wins over the inventory item id within a product;
    inventory-level webhooks only carry the latter. An empty list means the
    product was never launched and is not an error.
    """
    variant_id = normalize_shopify_id(shopify_variant_id)
    item_id = normalize_shopify_id(inventory_item_id)
    if not variant_id and not item_id:
        return []

    storefronts = list_storefronts(db)

    if settings.variant_lookup_mode != "scan":
        copies = _lookup_index(db, variant_id, item_id, storefronts)
        if copies:
            return copies

    copies = _scan(db, variant_id, item_id, storefronts)
    if copies:
        logger.info(
            "[LOCATOR] Scan found %d copies of variant=%s item=%s, re-indexing",
            len(copies), variant_id, item_id,
        )
        for copy in copies:
            index_storefront_variant(db, copy.variant)
    return copies


def find_staging_copies(db: Session, shopify_variant_id=None, inventory_item_id=None) -> List[models.StagingProduct]:
    variant_id = normalize_shopify_id(shopify_variant_id)
    item_id = normalize_shopify_id(inventory_item_id)
    if not variant_id and not item_id:
        return []

    def carries_variant(staging: models.StagingProduct) -> bool:
        raw_variants = (staging.raw_product or {}).get("variants") or []
        return any(raw_variant_matches(v, variant_id, item_id) for v in raw_variants)

    if settings.variant_lookup_mode != "scan":
        clauses = []
        if variant_id:
            clauses.append(models.VariantIndexEntry.shopify_variant_id == variant_id)
        if item_id:
            clauses.append(models.VariantIndexEntry.shopify_inventory_item_id == item_id)
        entries = (
            db.query(models.VariantIndexEntry)
            .filter(models.VariantIndexEntry.staging_product_id.isnot(None))
            .filter(or_(*clauses))
            .all()
        )
        found = {e.staging_product.id: e.staging_product for e in entries
                 if e.staging_product is not None and carries_variant(e.staging_product)}
        if found:
            return [found[key] for key in sorted(found)]

    matches = [s for s in db.query(models.StagingProduct).order_by(models.StagingProduct.id).all() if carries_variant(s)]
    for staging in matches:
        index_staging_product(db, staging)
    return matches


# -------------------- index maintenance --------------------

def index_storefront_variant(db: Session, variant: models.Variant) -> None:
    """Point the index at ``variant``; runs in the caller's transaction."""
    variant_id = normalize_shopify_id(variant.shopify_variant_id)
    item_id = normalize_shopify_id(variant.shopify_inventory_item_id)
    current = list(variant.index_entries)
    if len(current) == 1 and current[0].shopify_variant_id == variant_id \
            and current[0].shopify_inventory_item_id == item_id:
        return
    if not variant_id and not item_id:
        variant.index_entries = []
        return
    variant.index_entries = [
        models.VariantIndexEntry(shopify_variant_id=variant_id, shopify_inventory_item_id=item_id)
    ]
    db.add(variant)


def index_staging_product(db: Session, staging: models.StagingProduct) -> None:
    pairs = []
    for raw in (staging.raw_product or {}).get("variants") or []:
        variant_id = normalize_shopify_id(raw.get("id"))
        item_id = normalize_shopify_id(raw.get("inventory_item_id"))
        if variant_id or item_id:
            pairs.append((variant_id, item_id))
    current = [(e.shopify_variant_id, e.shopify_inventory_item_id) for e in staging.index_entries]
    if current == pairs:
        return
    staging.index_entries = [
        models.VariantIndexEntry(shopify_variant_id=variant_id, shopify_inventory_item_id=item_id)
        for variant_id, item_id in pairs
    ]
    db.add(staging)


def _changed(obj, *names: str) -> bool:
    state = inspect(obj)
    return state.pending or any(state.attrs[name].history.has_changes() for name in names)


@event.listens_for(Session, "before_flush")
def _index_on_flush(session: Session, flush_context, instances) -> None:
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, models.Variant):
            if _changed(obj, "shopify_variant_id", "shopify_inventory_item_id"):
                index_storefront_variant(session, obj)
        elif isinstance(obj, models.StagingProduct):
            if _changed(obj, "raw_product"):
                index_staging_product(session, obj)


def rebuild_variant_index(db: Session) -> int:
    """Drop and rebuild the whole index from current rows. Returns the number of entries written."""
    db.query(models.VariantIndexEntry).delete(synchronize_session=False)
    db.expire_all()

    count = 0
    products = db.query(models.StorefrontProduct).filter(models.StorefrontProduct.source_shopify_id.isnot(None)).all()
    for product in products:
        for variant in product.variants:
            index_storefront_variant(db, variant)
            count += len(variant.index_entries)

    for staging in db.query(models.StagingProduct).all():
        index_staging_product(db, staging)
        count += len(staging.index_entries)

    db.commit()
    logger.info("[LOCATOR] Rebuilt variant index with %d entries", count)
    return count
