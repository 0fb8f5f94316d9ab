import models
from crud import staging as staging_crud
from services.product_sync import (
    handle_product_create, handle_product_delete, handle_product_update, launch_staging_product,
)


def test_create_builds_staging_entry(db, product_payload, fake_shopify):
    result = handle_product_create(db, product_payload(), fake_shopify(markets={"FI"}))

    staging = staging_crud.get_staging_by_shopify_id(db, 1000)
    assert result.created is True
    assert staging.doc_id == "summer-maxi-dress"
    assert staging.matched_category_slug == "dresses"
    assert staging.tags == ["summer", "dress"]
    assert staging.image_urls == ["https://cdn.example.com/dress.jpg"]
    assert staging.storefronts == []
    assert staging.auto_process is False
    assert staging.total_variant_count == 2
    assert staging.in_stock_variant_count == 1
    assert staging.markets == ["FI"]


def test_create_twice_keeps_one_staging_row(db, product_payload):
    handle_product_create(db, product_payload())
    result = handle_product_create(db, product_payload(title="Renamed"))

    assert result.created is False
    assert db.query(models.StagingProduct).count() == 1


def test_doc_id_falls_back_to_title_then_id(db, product_payload):
    handle_product_create(db, product_payload(product_id=1, handle=None, title="Cosy Knit  Sweater!"))
    handle_product_create(db, product_payload(product_id=2, handle=None, title=None))
    handle_product_create(db, product_payload(product_id=3, handle=None, title="Mekko Ääni"))

    assert staging_crud.get_staging_by_shopify_id(db, 1).doc_id == "cosy-knit-sweater"
    assert staging_crud.get_staging_by_shopify_id(db, 2).doc_id == "shopify-product-2"
    assert staging_crud.get_staging_by_shopify_id(db, 3).doc_id == "mekko-aani"


def test_update_creates_missing_staging(db, product_payload):
    result = handle_product_update(db, product_payload())

    assert result.created is True
    assert staging_crud.get_staging_by_shopify_id(db, 1000) is not None


def test_launch_projects_staging_into_storefront(db, product_payload):
    handle_product_create(db, product_payload())

    product = launch_staging_product(db, 1000, "HEALTH", [3])

    assert product.storefront.name == "HEALTH"
    assert product.slug == "summer-maxi-dress"
    assert product.category_ids == [3]
    assert [v.shopify_variant_id for v in product.variants] == ["501", "502"]
    assert [v.position for v in product.variants] == [0, 1]
    assert product.default_variant_id == str(product.variants[0].id)
    assert product.base_price == 44.9
    assert product.total_stock == 4
    staging = staging_crud.get_staging_by_shopify_id(db, 1000)
    assert staging.processed_storefronts == ["HEALTH"]
    assert staging.storefronts == ["HEALTH"]


def test_launch_unknown_product_returns_none(db):
    assert launch_staging_product(db, 404, "LUNERA") is None


def test_update_cascades_vanished_variant(db, product_payload):
    handle_product_create(db, product_payload())
    product = launch_staging_product(db, 1000, "LUNERA")
    payload = product_payload()
    payload["variants"] = payload["variants"][1:]

    result = handle_product_update(db, payload)
    db.expire_all()

    assert result.removed_variants == ["501"]
    assert [v.shopify_variant_id for v in product.variants] == ["502"]
    assert product.default_variant_id == str(product.variants[0].id)
    assert product.total_stock == 0


def test_update_propagates_prices_to_assigned_storefronts_only(db, product_payload, make_product):
    handle_product_create(db, product_payload())
    launched = launch_staging_product(db, 1000, "LUNERA")
    # A copy in a storefront the product was never assigned to, matched by SKU only.
    stray = make_product(storefront="HEALTH", source_shopify_id=1000, variants=[{"sku": "DRESS-S", "price": 1.0}])

    payload = product_payload()
    payload["variants"][0]["price"] = "39.90"
    result = handle_product_update(db, payload)
    db.expire_all()

    assert result.updated_products == 1
    assert launched.variants[0].price == 39.9
    assert launched.base_price == 39.9
    assert stray.variants[0].price == 1.0


def test_update_matches_by_sku_when_variant_id_is_unknown(db, product_payload, make_product):
    handle_product_create(db, product_payload())
    copy = make_product(storefront="LUNERA", source_shopify_id=1000, variants=[{"sku": "DRESS-M", "price": 1.0}])

    handle_product_update(db, product_payload())
    db.expire_all()

    variant = copy.variants[0]
    assert variant.shopify_variant_id == "502"
    assert variant.shopify_inventory_item_id == "9002"
    assert variant.price == 44.9


def test_delete_removes_staging_and_copies(db, product_payload):
    handle_product_create(db, product_payload())
    launch_staging_product(db, 1000, "LUNERA")

    summary = handle_product_delete(db, {"id": 1000})

    assert summary.staging_deleted == 1
    assert summary.deleted_products == 1
    assert db.query(models.StorefrontProduct).count() == 0
