# models.py

from sqlalchemy import (Column, Integer, String, DateTime, Text, Float, JSON,
                        ForeignKey, BIGINT, BOOLEAN, UniqueConstraint)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class Storefront(Base):
    __tablename__ = "storefronts"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, index=True, nullable=False)
    is_default = Column(BOOLEAN, default=False, nullable=False)
    enabled = Column(BOOLEAN, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    products = relationship("StorefrontProduct", back_populates="storefront", cascade="all, delete-orphan")
    categories = relationship("Category", back_populates="storefront", cascade="all, delete-orphan")


class StagingProduct(Base):
    """One row per Shopify product, before and after it is launched to storefronts."""
    __tablename__ = "shopify_items"
    id = Column(Integer, primary_key=True, index=True)
    shopify_id = Column(BIGINT, unique=True, index=True, nullable=False)
    doc_id = Column(String(255), index=True)
    title = Column(String(512))
    handle = Column(String(255))
    status = Column(String(50))
    vendor = Column(String(255))
    product_type = Column(String(255))
    tags = Column(JSON, default=list)
    raw_product = Column(JSON, default=dict)
    markets = Column(JSON, default=list)
    markets_object = Column(JSON, nullable=True)
    published_to_online_store = Column(BOOLEAN, default=False, nullable=False)
    matched_category_slug = Column(String(255), nullable=True)
    image_urls = Column(JSON, default=list)
    storefronts = Column(JSON, default=list)
    processed_storefronts = Column(JSON, default=list)
    auto_process = Column(BOOLEAN, default=False, nullable=False)

    total_stock = Column(Integer, default=0, nullable=False)
    has_in_stock_variants = Column(BOOLEAN, default=False, nullable=False)
    in_stock_variant_count = Column(Integer, default=0, nullable=False)
    total_variant_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    index_entries = relationship("VariantIndexEntry", back_populates="staging_product", cascade="all, delete-orphan")


class StorefrontProduct(Base):
    __tablename__ = "storefront_products"
    id = Column(Integer, primary_key=True, index=True)
    storefront_id = Column(Integer, ForeignKey("storefronts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(512))
    slug = Column(String(255), nullable=False)
    category_ids = Column(JSON, default=list)
    category_id = Column(Integer, nullable=True)  # legacy single-category field
    base_price = Column(Float, nullable=True)

    total_stock = Column(Integer, default=0, nullable=False)
    has_in_stock_variants = Column(BOOLEAN, default=False, nullable=False)
    in_stock_variant_count = Column(Integer, default=0, nullable=False)
    total_variant_count = Column(Integer, default=0, nullable=False)

    # Tagged pointer: kind is "local" (Variant.id) or "shopify" (Variant.shopify_variant_id).
    # NULL kind marks legacy rows written before the pointer was normalized.
    default_variant_id = Column(String(64), nullable=True)
    default_variant_kind = Column(String(16), nullable=True)
    main_image = Column(String(2048), nullable=True)
    images = Column(JSON, default=list)
    default_variant_price = Column(Float, nullable=True)

    markets = Column(JSON, default=list)
    markets_object = Column(JSON, nullable=True)
    published_to_online_store = Column(BOOLEAN, default=False, nullable=False)
    active = Column(BOOLEAN, default=True, nullable=False)
    source_shopify_id = Column(BIGINT, index=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    storefront = relationship("Storefront", back_populates="products")
    variants = relationship(
        "Variant", back_populates="product", cascade="all, delete-orphan",
        order_by=lambda: [Variant.position, Variant.id],
    )

    __table_args__ = (
        UniqueConstraint('storefront_id', 'slug', name='storefront_products_storefront_id_slug_key'),
    )

    @property
    def member_category_ids(self):
        if self.category_ids:
            return list(self.category_ids)
        return [self.category_id] if self.category_id is not None else []


class Variant(Base):
    __tablename__ = "storefront_variants"
    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("storefront_products.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0, nullable=False)
    size = Column(String(255))
    color = Column(String(255))
    type = Column(String(255))
    sku = Column(String(255), index=True)
    stock = Column(Integer, nullable=True)
    price = Column(Float, nullable=True)
    price_override = Column(Float, nullable=True)
    inventory_policy = Column(String(50), default="deny")
    images = Column(JSON, default=list)
    default_photo = Column(String(2048), nullable=True)
    image_url = Column(String(2048), nullable=True)
    image = Column(JSON, nullable=True)  # str or {"url": ...}
    shopify_variant_id = Column(String(64), index=True)
    shopify_inventory_item_id = Column(String(64), index=True)
    inventory_levels = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product = relationship("StorefrontProduct", back_populates="variants")
    index_entries = relationship("VariantIndexEntry", back_populates="variant", cascade="all, delete-orphan")


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    storefront_id = Column(Integer, ForeignKey("storefronts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255))
    slug = Column(String(255))
    description = Column(Text)
    preview_product_ids = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    storefront = relationship("Storefront", back_populates="categories")


class VariantIndexEntry(Base):
    """Lookup table from Shopify variant / inventory-item ids to the rows that copy them."""
    __tablename__ = "variant_index"
    id = Column(Integer, primary_key=True)
    shopify_variant_id = Column(String(64), index=True)
    shopify_inventory_item_id = Column(String(64), index=True)
    variant_id = Column(Integer, ForeignKey("storefront_variants.id", ondelete="CASCADE"), nullable=True, index=True)
    staging_product_id = Column(Integer, ForeignKey("shopify_items.id", ondelete="CASCADE"), nullable=True, index=True)

    variant = relationship("Variant", back_populates="index_entries")
    staging_product = relationship("StagingProduct", back_populates="index_entries")
