import base64
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

import models
from config import settings
from database import get_db
from main import app
from routes.webhooks import get_shopify_service, verify_webhook

SECRET = "test-webhook-secret"


def sign(body: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()).decode("utf-8")


@pytest.fixture
def client(db, monkeypatch):
    monkeypatch.setattr(settings, "shopify_webhook_secret", SECRET)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_shopify_service] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


def post(client, topic, payload, signature=None):
    body = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload
    headers = {
        "X-Shopify-Topic": topic,
        "X-Shopify-Hmac-Sha256": signature if signature is not None else sign(body),
        "Content-Type": "application/json",
    }
    return client.post("/api/webhooks/shopify", content=body, headers=headers)


def test_verify_webhook():
    body = b'{"id": 1}'
    assert verify_webhook(body, sign(body), SECRET) is True
    assert verify_webhook(body, sign(body, "other"), SECRET) is False
    assert verify_webhook(body, None, SECRET) is False
    assert verify_webhook(body, sign(body), None) is False


def test_bad_signature_is_rejected(client, db):
    response = post(client, "products/create", {"id": 1}, signature="bm9wZQ==")

    assert response.status_code == 401
    assert db.query(models.StagingProduct).count() == 0


def test_malformed_json_is_rejected(client):
    response = post(client, "products/create", b"{not json")

    assert response.status_code == 400


def test_unknown_topic_is_acknowledged(client):
    response = post(client, "orders/create", {"id": 1})

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_product_create_is_dispatched(client, db, product_payload):
    response = post(client, "products/create", product_payload())

    assert response.status_code == 200
    assert response.json()["result"]["created"] is True
    assert db.query(models.StagingProduct).count() == 1


def test_inventory_level_update_is_dispatched(client, db, make_product):
    product = make_product(variants=[{
        "shopify_variant_id": "501", "shopify_inventory_item_id": "9001", "stock": 5,
        "inventory_levels": [{"location_id": "111", "available": 5}],
    }])

    response = post(client, "inventory_levels/update", {
        "inventory_item_id": 9001, "location_id": 222, "available": 3, "updated_at": "2024-05-01T10:00:00Z",
    })
    db.expire_all()

    assert response.status_code == 200
    assert response.json()["result"]["updated_storefront_variants"] == 1
    assert product.variants[0].stock == 8


def test_variant_delete_is_dispatched(client, db, make_product):
    make_product(variants=[{"shopify_variant_id": "501", "shopify_inventory_item_id": "9001"}])

    response = post(client, "variants/delete", {"variant_id": 501, "inventory_item_id": 9001})

    assert response.status_code == 200
    assert response.json()["result"]["deleted_products"] == 1
    assert db.query(models.StorefrontProduct).count() == 0


def test_inventory_item_delete_uses_item_id(client, db, make_product):
    make_product(variants=[
        {"shopify_variant_id": "501", "shopify_inventory_item_id": "9001"},
        {"shopify_variant_id": "502", "shopify_inventory_item_id": "9002"},
    ])

    response = post(client, "inventory_items/delete", {"id": 9001})
    db.expire_all()

    assert response.status_code == 200
    variants = db.query(models.Variant).all()
    assert [v.shopify_variant_id for v in variants] == ["502"]


def test_invalid_payload_shape_is_rejected(client):
    response = post(client, "products/delete", {"title": "no id"})

    assert response.status_code == 400


def test_storefront_api(client, db, make_product):
    make_product(storefront="HEALTH", variants=[{"shopify_variant_id": "1"}])

    created = client.post("/api/storefronts", json={"name": "LEATHER"})
    duplicate = client.post("/api/storefronts", json={"name": "LEATHER"})
    listed = client.get("/api/storefronts")

    assert created.status_code == 200
    assert created.json()["name"] == "LEATHER"
    assert duplicate.status_code == 400
    assert listed.json() == {"storefronts": ["HEALTH", "LUNERA"]}


def test_launch_endpoint(client, db, product_payload):
    post(client, "products/create", product_payload())

    response = client.post("/api/storefronts/LUNERA/launch/1000", json={"category_ids": [1]})
    missing = client.post("/api/storefronts/LUNERA/launch/404", json={})

    assert response.status_code == 200
    assert response.json()["slug"] == "summer-maxi-dress"
    assert len(response.json()["variants"]) == 2
    assert missing.status_code == 404
