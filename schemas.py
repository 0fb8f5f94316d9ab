# schemas.py
from __future__ import annotations

from typing import Annotated, Optional, List, Dict, Any, Union
from datetime import datetime
from pydantic import BaseModel, BeforeValidator, Field, ConfigDict

# =========================
# Base model configurations
# =========================

class ORMBase(BaseModel):
    """Base for models mapped to SQLAlchemy objects."""
    model_config = ConfigDict(from_attributes=True)

class APIBase(BaseModel):
    """Base for models mapped to external API payloads."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

# ======================================================
# App-specific schemas (for API responses)
# ======================================================

class StorefrontCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    is_default: bool = False

class Storefront(ORMBase):
    id: int
    name: str
    is_default: bool
    enabled: bool

class StorefrontList(BaseModel):
    storefronts: List[str]

class LaunchRequest(BaseModel):
    category_ids: List[int] = Field(default_factory=list)

class InventoryLevel(BaseModel):
    location_id: str
    location_name: Optional[str] = None
    available: int = 0
    updated_at: Optional[str] = None

class Variant(ORMBase):
    id: int
    position: int
    sku: Optional[str] = None
    stock: Optional[int] = None
    price: Optional[float] = None
    inventory_policy: Optional[str] = None
    shopify_variant_id: Optional[str] = None
    shopify_inventory_item_id: Optional[str] = None
    inventory_levels: List[Dict[str, Any]] = Field(default_factory=list)

class StorefrontProduct(ORMBase):
    id: int
    storefront_id: int
    name: Optional[str] = None
    slug: str
    category_ids: List[int] = Field(default_factory=list)
    base_price: Optional[float] = None
    total_stock: int
    has_in_stock_variants: bool
    in_stock_variant_count: int
    total_variant_count: int
    default_variant_id: Optional[str] = None
    main_image: Optional[str] = None
    default_variant_price: Optional[float] = None
    markets: List[str] = Field(default_factory=list)
    published_to_online_store: bool
    source_shopify_id: Optional[int] = None
    variants: List[Variant] = Field(default_factory=list)

# ======================================================
# Shopify webhook payloads (REST shape)
# ======================================================

def _stringify(value):
    return None if value is None else str(value)

ShopifyId = Annotated[Optional[str], BeforeValidator(_stringify)]

class InventoryLevelEvent(APIBase):
    inventory_item_id: ShopifyId
    location_id: ShopifyId = None
    available: Optional[int] = None
    updated_at: Optional[str] = None

class InventoryItemEvent(APIBase):
    id: ShopifyId

class ShopifyVariantPayload(APIBase):
    id: Union[int, str]
    sku: Optional[str] = None
    price: Optional[Union[str, float]] = None
    position: Optional[int] = None
    inventory_item_id: Optional[Union[int, str]] = None
    inventory_quantity: Optional[int] = None
    inventory_policy: Optional[str] = None
    option1: Optional[str] = None
    option2: Optional[str] = None
    option3: Optional[str] = None

class ShopifyProductPayload(APIBase):
    id: int
    title: Optional[str] = None
    handle: Optional[str] = None
    status: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    body_html: Optional[str] = None
    tags: Optional[str] = None
    variants: List[ShopifyVariantPayload] = Field(default_factory=list)
    images: List[Dict[str, Any]] = Field(default_factory=list)

class ProductDeleteEvent(APIBase):
    id: int

class VariantDeleteEvent(APIBase):
    variant_id: ShopifyId = None
    inventory_item_id: ShopifyId = None

# ======================================================
# Reconciliation results
# ======================================================

class CategoryCleanupResult(BaseModel):
    deleted_categories: List[int] = Field(default_factory=list)
    updated_categories: List[int] = Field(default_factory=list)

class VariantRemovalResult(BaseModel):
    product_deleted: bool = False
    categories: Optional[CategoryCleanupResult] = None
    updated_fields: Dict[str, Any] = Field(default_factory=dict)

class DeletionSummary(BaseModel):
    staging_updated: int = 0
    staging_deleted: int = 0
    deleted_variants: int = 0
    updated_products: int = 0
    deleted_products: int = 0
    deleted_categories: int = 0
    updated_categories: int = 0
    errors: List[str] = Field(default_factory=list)

class InventorySyncResult(BaseModel):
    inventory_item_id: str
    location_id: Optional[str] = None
    location_available: Optional[int] = None
    total_available: int = 0
    used_full_levels: bool = False
    updated_staging: int = 0
    updated_storefront_variants: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return self.updated_staging + self.updated_storefront_variants

class MarketSyncResult(BaseModel):
    shopify_product_id: int
    markets: List[str] = Field(default_factory=list)
    published_to_online_store: bool = False
    auto_published: bool = False
    queried: bool = False

class ProductSyncResult(BaseModel):
    shopify_product_id: int
    staging_doc_id: Optional[str] = None
    created: bool = False
    removed_variants: List[str] = Field(default_factory=list)
    updated_products: int = 0
    markets: Optional[MarketSyncResult] = None

class ReconciliationSummary(BaseModel):
    indexed_entries: int = 0
    products_recomputed: int = 0
    errors: List[str] = Field(default_factory=list)
    finished_at: Optional[datetime] = None
