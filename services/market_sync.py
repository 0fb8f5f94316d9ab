# services/market_sync.py
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests
from sqlalchemy.orm import Session

import schemas
from config import settings
from crud import catalog, staging as staging_crud

logger = logging.getLogger("market_sync")


def build_markets_array(flags: Dict[str, bool], market_codes: Optional[List[str]] = None) -> List[str]:
    """Published market codes, in configured order."""
    codes = market_codes or settings.market_code_list
    return [code for code in codes if flags.get(code)]


def build_markets_object(markets: List[str]) -> Dict[str, Dict]:
    return {code: {"available": True} for code in markets}


def sync_markets_and_publication(db: Session, shopify_product_id, shopify) -> schemas.MarketSyncResult:
    """
    Refresh per-market and Online Store publication state for one product.

    Unpublished products are published to the Online Store. If Shopify cannot
    be queried the values already on the staging row are kept.
    """
    shopify_product_id = int(shopify_product_id)
    db_staging = staging_crud.get_staging_by_shopify_id(db, shopify_product_id)
    result = schemas.MarketSyncResult(
        shopify_product_id=shopify_product_id,
        markets=list((db_staging.markets if db_staging else None) or []),
        published_to_online_store=bool(db_staging.published_to_online_store) if db_staging else False,
    )
    if shopify is None:
        logger.info("[MARKETS] Shopify not configured, keeping stored markets for %s", shopify_product_id)
        return result

    try:
        info = shopify.get_product_markets(
            shopify_product_id, settings.market_code_list, settings.online_store_publication_name
        )
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.warning("[MARKETS] Could not query markets for product %s: %s", shopify_product_id, e)
        return result

    if not info.get("found", True):
        logger.warning("[MARKETS] Product %s not found upstream, keeping stored markets", shopify_product_id)
        return result

    result.queried = True
    result.markets = build_markets_array(info.get("markets") or {})
    result.published_to_online_store = bool(info.get("published_to_online_store"))

    if not result.published_to_online_store:
        try:
            shopify.publish_product_to_online_store(shopify_product_id, settings.online_store_publication_name)
            result.published_to_online_store = True
            result.auto_published = True
            logger.info("[MARKETS] Auto-published product %s to the Online Store", shopify_product_id)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("[MARKETS] Auto-publish of product %s failed: %s", shopify_product_id, e)

    markets_object = build_markets_object(result.markets)
    now = datetime.now(timezone.utc)
    if db_staging is not None:
        db_staging.markets = result.markets
        db_staging.markets_object = markets_object
        db_staging.published_to_online_store = result.published_to_online_store
        db_staging.updated_at = now

    for product in catalog.get_products_by_source(db, shopify_product_id):
        product.markets = result.markets
        product.markets_object = markets_object
        product.published_to_online_store = result.published_to_online_store
        product.updated_at = now
    db.commit()

    logger.info(
        "[MARKETS] product=%s markets=[%s] online_store=%s",
        shopify_product_id, ", ".join(result.markets) or "none", result.published_to_online_store,
    )
    return result
