# services/storefront_directory.py
"""
Storefront directory: which catalog partitions reconciliation fans out to.

A storefront is listed when it is enabled, is not a system partition and
holds at least one product. The default storefront is always listed. Any
failure to read the registry falls back to the default storefront alone so
that a webhook never crash-loops on directory errors.
"""
import logging
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from config import settings

logger = logging.getLogger("storefront_directory")


def list_storefronts(db: Session) -> List[str]:
    default = settings.default_storefront
    excluded = set(settings.system_partition_names)
    try:
        rows = (
            db.query(models.Storefront, func.count(models.StorefrontProduct.id))
            .outerjoin(models.StorefrontProduct, models.StorefrontProduct.storefront_id == models.Storefront.id)
            .filter(models.Storefront.enabled == True)
            .group_by(models.Storefront.id)
            .all()
        )
    except Exception as e:
        logger.warning("[DIRECTORY] Could not list storefronts, falling back to %s: %s", default, e)
        db.rollback()
        return [default]

    names = []
    for storefront, product_count in rows:
        if storefront.name in excluded:
            continue
        if product_count > 0 or storefront.is_default:
            names.append(storefront.name)

    if default not in names:
        names.append(default)
    return sorted(names)
