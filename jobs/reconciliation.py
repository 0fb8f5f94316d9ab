# jobs/reconciliation.py

import logging
from datetime import datetime, timezone
from sqlalchemy.orm import Session
import schemas
from crud import catalog
from crud.storefront import get_storefront_by_name
from services.aggregates import recompute_product_aggregates, recompute_staging_aggregates
from services.storefront_directory import list_storefronts
from services.variant_locator import rebuild_variant_index
import models

logger = logging.getLogger("reconciliation")


def run_reconciliation(db_factory) -> schemas.ReconciliationSummary:
    """
    Repair pass: rebuild the variant index, then recompute every product's
    aggregates from the variants it has right now. One product failing does
    not stop the rest.
    """
    db: Session = db_factory()
    summary = schemas.ReconciliationSummary()
    try:
        logger.info("--- Recon start ---")
        summary.indexed_entries = rebuild_variant_index(db)

        for db_staging in db.query(models.StagingProduct).all():
            try:
                recompute_staging_aggregates(db_staging)
                db.commit()
            except Exception as e:
                db.rollback()
                logger.exception("[RECON] staging %s failed", db_staging.shopify_id)
                summary.errors.append(f"staging:{e}")

        for name in list_storefronts(db):
            storefront = get_storefront_by_name(db, name)
            if storefront is None:
                continue
            for product in catalog.get_storefront_products(db, storefront.id):
                try:
                    recompute_product_aggregates(db, product, list(product.variants))
                    db.commit()
                    summary.products_recomputed += 1
                except Exception as e:
                    db.rollback()
                    logger.exception("[RECON] %s product=%s failed", name, product.id)
                    summary.errors.append(f"{name}:{product.id}:{e}")

        summary.finished_at = datetime.now(timezone.utc)
        logger.info("--- Recon done: %d products, %d errors ---", summary.products_recomputed, len(summary.errors))
        return summary
    finally:
        db.close()
