import shopify_service
from crud import staging as staging_crud
from services.market_sync import build_markets_array, sync_markets_and_publication


def _staging(db, product_payload, **fields):
    db_staging, _ = staging_crud.upsert_staging_product(db, product_payload(product_id=1000))
    for key, value in fields.items():
        setattr(db_staging, key, value)
    db.commit()
    return db_staging


def test_unpublished_product_is_auto_published(db, make_product, product_payload, fake_shopify):
    db_staging = _staging(db, product_payload)
    copy = make_product(source_shopify_id=1000, variants=[{"shopify_variant_id": "501"}])
    shopify = fake_shopify(markets={"FI"}, published=False)

    result = sync_markets_and_publication(db, 1000, shopify)

    assert result.queried is True
    assert result.auto_published is True
    assert result.published_to_online_store is True
    assert result.markets == ["FI"]
    assert shopify.publish_calls == [1000]
    assert db_staging.markets == ["FI"]
    assert db_staging.published_to_online_store is True
    assert copy.markets == ["FI"]
    assert copy.published_to_online_store is True


def test_already_published_product_is_left_alone(db, product_payload, fake_shopify):
    _staging(db, product_payload)
    shopify = fake_shopify(markets={"FI", "DE"}, published=True)

    result = sync_markets_and_publication(db, 1000, shopify)

    assert result.auto_published is False
    assert shopify.publish_calls == []
    assert result.markets == ["FI", "DE"]


def test_publish_failure_is_not_fatal(db, product_payload, fake_shopify):
    db_staging = _staging(db, product_payload)
    shopify = fake_shopify(markets={"DE"}, published=False, fail_publish=True)

    result = sync_markets_and_publication(db, 1000, shopify)

    assert result.auto_published is False
    assert result.published_to_online_store is False
    assert db_staging.markets == ["DE"]


def test_query_failure_keeps_stored_values(db, product_payload, fake_shopify):
    db_staging = _staging(db, product_payload, markets=["DE"], published_to_online_store=True)

    result = sync_markets_and_publication(db, 1000, fake_shopify(fail_markets=True))

    assert result.queried is False
    assert result.markets == ["DE"]
    assert result.published_to_online_store is True
    assert db_staging.markets == ["DE"]
    assert db_staging.published_to_online_store is True


def test_no_upstream_client_keeps_stored_values(db, product_payload):
    _staging(db, product_payload, markets=["FI"])

    result = sync_markets_and_publication(db, 1000, None)

    assert result.markets == ["FI"]
    assert result.queried is False


def test_markets_array_keeps_configured_order():
    assert build_markets_array({"DE": True, "FI": True}, ["FI", "DE"]) == ["FI", "DE"]
    assert build_markets_array({"FI": False, "DE": True}, ["FI", "DE"]) == ["DE"]


def test_empty_graphql_data_keeps_stored_markets(db, product_payload, monkeypatch):
    db_staging = _staging(db, product_payload, markets=["DE"], published_to_online_store=True)

    class _NullData:
        def raise_for_status(self):
            pass

        def json(self):
            return {"data": None}

    monkeypatch.setattr(shopify_service.requests, "post", lambda *args, **kwargs: _NullData())
    client = shopify_service.ShopifyService("example.myshopify.com", "token")

    result = sync_markets_and_publication(db, 1000, client)

    assert result.queried is False
    assert result.markets == ["DE"]
    assert db_staging.markets == ["DE"]
