# routes/webhooks.py
import hmac
import hashlib
import base64
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Header
from pydantic import ValidationError
from sqlalchemy.orm import Session

import schemas
from config import settings
from database import get_db
from shopify_service import ShopifyService
from services import cascade, inventory_sync, product_sync

logger = logging.getLogger("webhooks")

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])

HANDLED_TOPICS = [
    "inventory_levels/update",
    "inventory_items/update",
    "inventory_items/delete",
    "products/create",
    "products/update",
    "products/delete",
    "variants/delete",
]


def verify_webhook(data: bytes, hmac_header: Optional[str], secret: Optional[str]) -> bool:
    """Verify the base64 HMAC-SHA256 signature of the raw request body."""
    if not secret or not hmac_header: return False
    digest = hmac.new(secret.encode('utf-8'), data, digestmod=hashlib.sha256).digest()
    computed_hmac = base64.b64encode(digest)
    return hmac.compare_digest(computed_hmac, hmac_header.strip().encode('utf-8'))


def get_shopify_service() -> Optional[ShopifyService]:
    """Upstream client, or None when the shop is not configured."""
    return ShopifyService.from_settings()


def dispatch(db: Session, topic: str, payload: Dict[str, Any], shopify: Optional[ShopifyService]):
    if topic == "inventory_levels/update":
        event = schemas.InventoryLevelEvent.model_validate(payload)
        return inventory_sync.apply_inventory_level_update(
            db, event.inventory_item_id, event.location_id, event.available,
            updated_at=event.updated_at, shopify=shopify,
        )
    if topic == "inventory_items/update":
        event = schemas.InventoryItemEvent.model_validate(payload)
        return inventory_sync.refresh_inventory_item(db, event.id, shopify)
    if topic == "inventory_items/delete":
        event = schemas.InventoryItemEvent.model_validate(payload)
        return cascade.delete_variant_everywhere(db, None, event.id)
    if topic == "products/create":
        product = schemas.ShopifyProductPayload.model_validate(payload)
        return product_sync.handle_product_create(db, product.model_dump(), shopify)
    if topic == "products/update":
        product = schemas.ShopifyProductPayload.model_validate(payload)
        return product_sync.handle_product_update(db, product.model_dump(), shopify)
    if topic == "products/delete":
        event = schemas.ProductDeleteEvent.model_validate(payload)
        return product_sync.handle_product_delete(db, {"id": event.id})
    if topic == "variants/delete":
        event = schemas.VariantDeleteEvent.model_validate(payload)
        return cascade.delete_variant_everywhere(db, event.variant_id, event.inventory_item_id)
    return None


@router.post("/shopify")
async def receive_webhook(
    request: Request,
    x_shopify_hmac_sha256: str = Header(None),
    x_shopify_topic: str = Header(None),
    db: Session = Depends(get_db),
    shopify: Optional[ShopifyService] = Depends(get_shopify_service),
):
    """
    Verifies the signature and runs the handler for the topic before answering.
    Anything the engine can recover from still gets a 200 so Shopify does not
    redeliver; only an escaped error yields a 500 and a retry.
    """
    raw_body = await request.body()
    if not verify_webhook(raw_body, x_shopify_hmac_sha256, settings.shopify_webhook_secret):
        logger.warning("[WEBHOOK] Rejected %s: invalid HMAC signature", x_shopify_topic)
        raise HTTPException(status_code=401, detail="Invalid HMAC signature")

    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Malformed JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Malformed JSON payload")

    if x_shopify_topic not in HANDLED_TOPICS:
        logger.info("[WEBHOOK] Received unhandled webhook topic: %s", x_shopify_topic)
        return {"status": "ignored", "topic": x_shopify_topic}

    try:
        result = dispatch(db, x_shopify_topic, payload, shopify)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {x_shopify_topic} payload: {e.errors()}")
    except Exception as e:
        db.rollback()
        logger.exception("[WEBHOOK] %s failed", x_shopify_topic)
        raise HTTPException(status_code=500, detail=f"Webhook processing failed: {e}")

    return {"status": "ok", "topic": x_shopify_topic, "result": result.model_dump(mode="json") if result is not None else None}
