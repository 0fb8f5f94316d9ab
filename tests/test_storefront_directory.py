from sqlalchemy.exc import OperationalError

import schemas
from crud import storefront as crud_storefront
from services.storefront_directory import list_storefronts


class BrokenSession:
    def __init__(self):
        self.rolled_back = False

    def query(self, *args, **kwargs):
        raise OperationalError("SELECT storefronts", {}, Exception("database is locked"))

    def rollback(self):
        self.rolled_back = True


def test_default_storefront_listed_even_when_empty(db):
    assert list_storefronts(db) == ["LUNERA"]


def test_lists_storefronts_with_products_sorted(db, make_product):
    make_product(storefront="LUNERA", variants=[{"shopify_variant_id": "1"}])
    make_product(storefront="HEALTH", variants=[{"shopify_variant_id": "2"}])
    make_product(storefront="FIVESTARFINDS", variants=[{"shopify_variant_id": "3"}])

    assert list_storefronts(db) == ["FIVESTARFINDS", "HEALTH", "LUNERA"]


def test_empty_storefront_is_skipped(db):
    crud_storefront.register_storefront(db, schemas.StorefrontCreate(name="LEATHER"))

    assert list_storefronts(db) == ["LUNERA"]


def test_system_partitions_and_disabled_storefronts_are_skipped(db, make_product):
    make_product(storefront="orders", variants=[{"shopify_variant_id": "1"}])
    disabled = make_product(storefront="OLDSHOP", variants=[{"shopify_variant_id": "2"}])
    disabled.storefront.enabled = False
    db.commit()

    assert list_storefronts(db) == ["LUNERA"]


def test_directory_failure_falls_back_to_default():
    session = BrokenSession()

    assert list_storefronts(session) == ["LUNERA"]
    assert session.rolled_back is True
