# crud/staging.py

import re
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from unidecode import unidecode
import models

CATEGORY_MATCHING: Dict[str, Dict[str, List[str]]] = {
    "lingerie": {
        "keywords": ["lingerie", "bra", "bralette", "bra set", "corset", "bustier", "teddy", "bodysuit",
                     "garter", "stockings", "thong", "panties set", "matching set"],
        "product_types": ["lingerie", "bra", "bralette", "underwear set"],
        "tags": ["lingerie", "bra", "bralette", "matching set"],
    },
    "underwear": {
        "keywords": ["underwear", "panties", "brief", "thong", "g-string", "boy short", "hipster", "bikini",
                     "underwear set"],
        "product_types": ["underwear", "panties", "briefs", "thong"],
        "tags": ["underwear", "panties", "briefs", "thong"],
    },
    "sports": {
        "keywords": ["sport", "activewear", "athletic", "yoga", "gym", "workout", "fitness", "running",
                     "leggings", "sports bra", "athletic wear"],
        "product_types": ["activewear", "sportswear", "athletic", "yoga wear"],
        "tags": ["sport", "activewear", "athletic", "yoga", "fitness"],
    },
    "dresses": {
        "keywords": ["dress", "gown", "frock", "evening dress", "cocktail dress", "maxi dress", "midi dress",
                     "mini dress"],
        "product_types": ["dress", "gown", "evening wear"],
        "tags": ["dress", "gown", "evening"],
    },
    "clothes": {
        "keywords": ["top", "shirt", "blouse", "sweater", "cardigan", "jacket", "coat", "pants", "trousers",
                     "skirt", "shorts", "jumpsuit", "romper"],
        "product_types": ["top", "shirt", "blouse", "sweater", "jacket", "pants", "skirt"],
        "tags": ["clothing", "apparel", "fashion"],
    },
}


# --- Helper functions ---
def _fold(text: Optional[str]) -> str:
    return unidecode(text or "").lower()

def _slugify(text: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]+", "-", _fold(text).strip()).strip("-")

def staging_doc_id(payload: Dict[str, Any]) -> str:
    """Handle first, then title, then a synthetic id."""
    return _slugify(payload.get("handle")) or _slugify(payload.get("title")) or f"shopify-product-{payload.get('id')}"

def split_tags(tags: Any) -> List[str]:
    if isinstance(tags, list):
        return [str(t).strip() for t in tags if str(t).strip()]
    return [t.strip() for t in (tags or "").split(",") if t.strip()]

def extract_image_urls(payload: Dict[str, Any]) -> List[str]:
    urls = []
    for img in payload.get("images") or []:
        url = img.get("src") if isinstance(img, dict) else img
        if url:
            urls.append(url)
    return urls

def match_category_slug(payload: Dict[str, Any]) -> Optional[str]:
    """
    Keyword-scored category suggestion. Title hits score 3, description hits 1,
    a product-type hit 5 and each matching tag 4. Ties go to the first category listed.
    """
    title = _fold(payload.get("title"))
    description = _fold(payload.get("body_html"))
    product_type = _fold(payload.get("product_type"))
    tags = [_fold(t) for t in split_tags(payload.get("tags"))]

    best: Tuple[Optional[str], int] = (None, 0)
    for slug, config in CATEGORY_MATCHING.items():
        score = 0
        for keyword in config["keywords"]:
            if keyword in title: score += 3
            if keyword in description: score += 1
        if any(pt in product_type for pt in config["product_types"]):
            score += 5
        for tag in tags:
            if any(config_tag in tag for config_tag in config["tags"]):
                score += 4
        if score > best[1]:
            best = (slug, score)
    return best[0]


# --- Staging rows ---
def get_staging_by_shopify_id(db: Session, shopify_id: int) -> Optional[models.StagingProduct]:
    return db.query(models.StagingProduct).filter(models.StagingProduct.shopify_id == int(shopify_id)).first()

def upsert_staging_product(db: Session, payload: Dict[str, Any]) -> Tuple[models.StagingProduct, bool]:
    """
    One row per Shopify product id. Content fields are overwritten from the payload;
    storefront assignment and market state are left alone on existing rows.
    Returns (row, created).
    """
    shopify_id = int(payload["id"])
    db_staging = get_staging_by_shopify_id(db, shopify_id)
    created = db_staging is None
    if created:
        db_staging = models.StagingProduct(
            shopify_id=shopify_id,
            markets=[],
            storefronts=[],
            processed_storefronts=[],
            auto_process=False,
            published_to_online_store=False,
        )
        db.add(db_staging)

    db_staging.doc_id = staging_doc_id(payload)
    db_staging.title = payload.get("title")
    db_staging.handle = payload.get("handle")
    db_staging.status = payload.get("status")
    db_staging.vendor = payload.get("vendor")
    db_staging.product_type = payload.get("product_type")
    db_staging.tags = split_tags(payload.get("tags"))
    db_staging.image_urls = extract_image_urls(payload)
    db_staging.matched_category_slug = match_category_slug(payload)
    db_staging.raw_product = payload
    db_staging.updated_at = datetime.now(timezone.utc)

    db.flush()
    return db_staging, created

def delete_staging_product(db: Session, shopify_id: int) -> bool:
    db_staging = get_staging_by_shopify_id(db, shopify_id)
    if not db_staging:
        return False
    db.delete(db_staging)
    db.flush()
    return True
