import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import itertools

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from config import settings
from crud import catalog
from crud.storefront import get_or_create_storefront
from database import Base
from services.aggregates import recompute_product_aggregates


class FakeShopifyService:
    """Stands in for ShopifyService; records calls and can be told to fail."""

    def __init__(self, levels=None, markets=(), published=True,
                 fail_levels=False, fail_markets=False, fail_publish=False):
        self.levels = {str(k): v for k, v in (levels or {}).items()}
        self.markets = set(markets)
        self.published = published
        self.fail_levels = fail_levels
        self.fail_markets = fail_markets
        self.fail_publish = fail_publish
        self.level_calls = []
        self.publish_calls = []

    def get_inventory_levels(self, inventory_item_id):
        self.level_calls.append(str(inventory_item_id))
        if self.fail_levels:
            raise requests.exceptions.ConnectionError("shopify unreachable")
        return [dict(level) for level in self.levels.get(str(inventory_item_id), [])]

    def get_product_markets(self, product_id, market_codes, online_store_name="Online Store"):
        if self.fail_markets:
            raise ValueError("GraphQL API Error: THROTTLED")
        return {
            "markets": {code: code in self.markets for code in market_codes},
            "published_to_online_store": self.published,
            "found": True,
        }

    def publish_product_to_online_store(self, product_id, online_store_name="Online Store"):
        self.publish_calls.append(int(product_id))
        if self.fail_publish:
            raise ValueError("Shopify User Error: [{'message': 'not allowed'}]")
        self.published = True
        return {"id": f"gid://shopify/Product/{product_id}"}


@pytest.fixture
def fake_shopify():
    return FakeShopifyService


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_product(db):
    """Builds a launched storefront product through the crud layer so the variant index is populated."""
    counter = itertools.count(1)

    def _make(storefront="LUNERA", variants=(), category_ids=None, source_shopify_id=1000,
              slug=None, **fields):
        db_storefront = get_or_create_storefront(db, storefront, is_default=storefront == settings.default_storefront)
        product = catalog.create_storefront_product(
            db, db_storefront,
            slug=slug or f"product-{next(counter)}",
            source_shopify_id=source_shopify_id,
            category_ids=list(category_ids or []),
            **fields,
        )
        for values in variants:
            catalog.add_variant(db, product, **values)
        recompute_product_aggregates(db, product, list(product.variants))
        db.commit()
        return product

    return _make


@pytest.fixture
def make_category(db):
    def _make(product_or_storefront, name="Dresses", preview_product_ids=None):
        storefront = getattr(product_or_storefront, "storefront", None) or product_or_storefront
        category = catalog.create_category(db, storefront, name, preview_product_ids=preview_product_ids)
        db.commit()
        return category

    return _make


def build_payload(product_id=1000, variants=None, **fields):
    """A products/create style REST payload."""
    payload = {
        "id": product_id,
        "title": "Summer Maxi Dress",
        "handle": "summer-maxi-dress",
        "status": "active",
        "vendor": "Lunera",
        "product_type": "Dress",
        "body_html": "<p>Light and flowing.</p>",
        "tags": "summer, dress",
        "images": [{"id": 1, "src": "https://cdn.example.com/dress.jpg", "variant_ids": []}],
        "variants": variants if variants is not None else [
            {"id": 501, "sku": "DRESS-S", "price": "49.90", "position": 1, "inventory_item_id": 9001,
             "inventory_quantity": 4, "inventory_policy": "deny", "option1": "S"},
            {"id": 502, "sku": "DRESS-M", "price": "44.90", "position": 2, "inventory_item_id": 9002,
             "inventory_quantity": 0, "inventory_policy": "deny", "option1": "M"},
        ],
    }
    payload.update(fields)
    return payload


@pytest.fixture
def product_payload():
    return build_payload
