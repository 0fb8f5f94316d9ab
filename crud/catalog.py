# crud/catalog.py

from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timezone
from sqlalchemy.orm import Session
import models


# --- Storefront products ---
def get_products_by_source(
    db: Session, shopify_product_id: int, storefront_names: Optional[Iterable[str]] = None
) -> List[models.StorefrontProduct]:
    """
    Storefront copies derived from one Shopify product, optionally restricted to some storefronts.
    """
    query = (
        db.query(models.StorefrontProduct)
        .join(models.Storefront, models.StorefrontProduct.storefront_id == models.Storefront.id)
        .filter(models.StorefrontProduct.source_shopify_id == int(shopify_product_id))
    )
    if storefront_names is not None:
        query = query.filter(models.Storefront.name.in_(list(storefront_names)))
    return query.order_by(models.Storefront.name.asc(), models.StorefrontProduct.id.asc()).all()

def get_storefront_products(db: Session, storefront_id: int) -> List[models.StorefrontProduct]:
    """All products in a storefront, inactive ones included."""
    return db.query(models.StorefrontProduct).filter(
        models.StorefrontProduct.storefront_id == storefront_id
    ).order_by(models.StorefrontProduct.id.asc()).all()

def create_storefront_product(db: Session, storefront: models.Storefront, **fields) -> models.StorefrontProduct:
    fields.setdefault("category_ids", [])
    fields.setdefault("images", [])
    fields.setdefault("markets", [])
    db_product = models.StorefrontProduct(storefront_id=storefront.id, **fields)
    db_product.storefront = storefront
    db.add(db_product)
    db.flush()
    return db_product

def delete_product(db: Session, product: models.StorefrontProduct) -> None:
    """Deletes every variant first, then the product itself."""
    for variant in list(product.variants):
        product.variants.remove(variant)
        db.delete(variant)
    db.delete(product)
    db.flush()


# --- Variants ---
def add_variant(db: Session, product: models.StorefrontProduct, **fields) -> models.Variant:
    """Creates a variant; the flush indexes it in the same transaction."""
    if "position" not in fields:
        fields["position"] = len(product.variants)
    fields.setdefault("inventory_levels", [])
    fields.setdefault("images", [])
    for key in ("shopify_variant_id", "shopify_inventory_item_id"):
        if fields.get(key) is not None:
            fields[key] = str(fields[key])
    db_variant = models.Variant(**fields)
    product.variants.append(db_variant)
    db.flush()
    return db_variant

def remove_variant(db: Session, product: models.StorefrontProduct, variant: models.Variant) -> None:
    if variant in product.variants:
        product.variants.remove(variant)
    db.delete(variant)
    db.flush()

def set_variant_levels(variant: models.Variant, levels: List[Dict[str, Any]], stock: int) -> None:
    variant.inventory_levels = [dict(level) for level in levels]
    variant.stock = stock
    variant.updated_at = datetime.now(timezone.utc)


# --- Categories ---
def get_category(db: Session, storefront_id: int, category_id: int) -> Optional[models.Category]:
    return db.query(models.Category).filter(
        models.Category.storefront_id == storefront_id, models.Category.id == category_id
    ).first()

def get_categories(db: Session, storefront_id: int) -> List[models.Category]:
    return db.query(models.Category).filter(
        models.Category.storefront_id == storefront_id
    ).order_by(models.Category.id.asc()).all()

def create_category(db: Session, storefront: models.Storefront, name: str, slug: Optional[str] = None,
                    preview_product_ids: Optional[List[int]] = None) -> models.Category:
    db_category = models.Category(
        storefront_id=storefront.id, name=name, slug=slug or name.lower(),
        preview_product_ids=list(preview_product_ids or []),
    )
    db.add(db_category)
    db.flush()
    return db_category

def count_category_members(db: Session, storefront_id: int, category_id: int,
                           exclude_product_id: Optional[int] = None) -> int:
    """
    Full scan over the storefront's products; the category row alone cannot say
    whether anything still references it. Inactive products count as members.
    """
    count = 0
    for product in get_storefront_products(db, storefront_id):
        if exclude_product_id is not None and product.id == exclude_product_id:
            continue
        if category_id in product.member_category_ids:
            count += 1
    return count

def categories_previewing(db: Session, storefront_id: int, product_id: int) -> List[models.Category]:
    """Preview lists may hold ids as ints or strings."""
    return [
        c for c in get_categories(db, storefront_id)
        if any(str(pid) == str(product_id) for pid in (c.preview_product_ids or []))
    ]
