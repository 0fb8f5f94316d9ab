import models
from crud import staging as staging_crud
from jobs.reconciliation import run_reconciliation


def test_reconciliation_repairs_drifted_aggregates(db, session_factory, make_product, product_payload):
    staging_crud.upsert_staging_product(db, product_payload(product_id=1000))
    product = make_product(variants=[
        {"shopify_variant_id": "501", "shopify_inventory_item_id": "9001", "stock": 2, "price": 30.0},
        {"shopify_variant_id": "502", "shopify_inventory_item_id": "9002", "stock": 1, "price": 25.0},
    ])
    product.total_stock = 99
    product.default_variant_id = "gone"
    product.default_variant_kind = "local"
    db.query(models.VariantIndexEntry).delete(synchronize_session=False)
    db.commit()

    summary = run_reconciliation(session_factory)
    db.expire_all()

    assert summary.errors == []
    assert summary.products_recomputed == 1
    assert summary.indexed_entries == 4
    assert summary.finished_at is not None
    assert product.total_stock == 3
    assert product.default_variant_id == str(product.variants[0].id)
    assert product.base_price == 25.0
    assert db.query(models.VariantIndexEntry).count() == 4
