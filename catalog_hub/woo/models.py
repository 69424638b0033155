# catalog_hub/woo/models.py
# ======================================================================
# WooCommerce REST v3 payload DTOs and their mapping onto local rows.
# Required fields (id, name) must be present; everything else optional.
# ======================================================================
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _decimal_str(v: Any) -> Optional[str]:
    """WooCommerce sends prices/weights as strings, "" meaning unset."""
    if v is None:
        return None
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return str(v)
    s = str(v).strip()
    return s or None


class WooImage(BaseModel):
    id: Optional[int] = None
    src: Optional[str] = None
    name: Optional[str] = None
    alt: Optional[str] = None
    class Config:
        extra = "allow"


class WooTermRef(BaseModel):
    """Category/brand reference embedded in a product payload."""
    id: int
    name: Optional[str] = None
    slug: Optional[str] = None
    class Config:
        extra = "allow"


class WooDimensions(BaseModel):
    length: Optional[str] = ""
    width: Optional[str] = ""
    height: Optional[str] = ""
    class Config:
        extra = "allow"

    def as_dict(self) -> Dict[str, str]:
        return {
            "length": self.length or "",
            "width": self.width or "",
            "height": self.height or "",
        }


class WooCategory(BaseModel):
    id: int = Field(..., description="WooCommerce category ID")
    name: str
    slug: Optional[str] = None
    parent: int = 0
    description: Optional[str] = None
    image: Optional[WooImage] = None
    menu_order: int = 0
    count: int = 0
    class Config:
        extra = "allow"


class WooBrand(BaseModel):
    id: int = Field(..., description="WooCommerce brand term ID")
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    class Config:
        extra = "allow"


class WooProduct(BaseModel):
    id: int = Field(..., description="WooCommerce product ID")
    name: str
    slug: Optional[str] = None
    type: str = "simple"
    status: str = "publish"
    description: Optional[str] = None
    short_description: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[str] = None
    regular_price: Optional[str] = None
    sale_price: Optional[str] = None
    manage_stock: bool = False
    stock_quantity: Optional[int] = None
    stock_status: Optional[str] = "instock"
    weight: Optional[str] = None
    dimensions: WooDimensions = Field(default_factory=WooDimensions)
    categories: List[WooTermRef] = Field(default_factory=list)
    brands: List[WooTermRef] = Field(default_factory=list)
    images: List[WooImage] = Field(default_factory=list)
    class Config:
        extra = "allow"

    @field_validator("price", "regular_price", "sale_price", "weight", mode="before")
    @classmethod
    def _decimals(cls, v):
        return _decimal_str(v)

    @field_validator("manage_stock", mode="before")
    @classmethod
    def _manage_stock(cls, v):
        # variations report "parent" when stock is managed on the parent
        if v == "parent":
            return True
        return bool(v) if v is not None else False

    def image_urls(self) -> tuple[Optional[str], List[str]]:
        """(featured, gallery): first image is featured, the rest the gallery."""
        srcs = [img.src for img in self.images if img.src]
        if not srcs:
            return None, []
        return srcs[0], srcs[1:]


class WooVariationAttribute(BaseModel):
    id: Optional[int] = None
    name: str
    option: Optional[str] = None
    class Config:
        extra = "allow"


class WooVariation(BaseModel):
    id: int = Field(..., description="WooCommerce variation ID")
    sku: Optional[str] = None
    price: Optional[str] = None
    regular_price: Optional[str] = None
    sale_price: Optional[str] = None
    manage_stock: bool = False
    stock_quantity: Optional[int] = None
    stock_status: Optional[str] = "instock"
    weight: Optional[str] = None
    dimensions: WooDimensions = Field(default_factory=WooDimensions)
    image: Optional[WooImage] = None
    attributes: List[WooVariationAttribute] = Field(default_factory=list)
    class Config:
        extra = "allow"

    @field_validator("price", "regular_price", "sale_price", "weight", mode="before")
    @classmethod
    def _decimals(cls, v):
        return _decimal_str(v)

    @field_validator("manage_stock", mode="before")
    @classmethod
    def _manage_stock(cls, v):
        if v == "parent":
            return True
        return bool(v) if v is not None else False


# ---------------------------
# Mapping onto local rows
# ---------------------------

_STATUS_MAP = {
    "publish": "published",
    "draft": "draft",
    "pending": "draft",
    "private": "private",
}

_TYPE_MAP = {
    "simple": "simple",
    "variable": "variable",
    "grouped": "grouped",
    "external": "simple",
}


def _int_str(v: Optional[int]) -> Optional[str]:
    return None if v is None else str(v)


def category_row(dto: WooCategory, shop_id: str) -> Dict[str, Any]:
    return {
        "shop_id": shop_id,
        "woocommerce_id": str(dto.id),
        "name": dto.name,
        "slug": dto.slug,
        "description": dto.description or None,
        "image": dto.image.src if dto.image and dto.image.src else None,
        "menu_order": dto.menu_order,
    }


def brand_row(dto: WooBrand, shop_id: str) -> Dict[str, Any]:
    return {
        "shop_id": shop_id,
        "woocommerce_id": str(dto.id),
        "name": dto.name,
        "slug": dto.slug,
        "description": dto.description or None,
    }


def product_row(dto: WooProduct, shop_id: str) -> Dict[str, Any]:
    """Local product columns, without image fields (set after relocation)."""
    return {
        "shop_id": shop_id,
        "woocommerce_id": str(dto.id),
        "sku": (dto.sku or "").strip() or f"wc-{dto.id}",
        "name": dto.name,
        "slug": dto.slug,
        "description": dto.description,
        "short_description": dto.short_description,
        "base_price": dto.price,
        "regular_price": dto.regular_price,
        "sale_price": dto.sale_price,
        "status": _STATUS_MAP.get(dto.status, "draft"),
        "type": _TYPE_MAP.get(dto.type, "simple"),
        "manage_stock": dto.manage_stock,
        "stock_quantity": _int_str(dto.stock_quantity),
        "stock_status": dto.stock_status or "instock",
        "weight": dto.weight,
        "dimensions": dto.dimensions.as_dict(),
        "woocommerce_data": dto.model_dump(mode="json"),
    }


def variant_row(dto: WooVariation, shop_id: str, product_id: str) -> Dict[str, Any]:
    return {
        "product_id": product_id,
        "shop_id": shop_id,
        "woocommerce_id": str(dto.id),
        "sku": (dto.sku or "").strip() or f"var-{dto.id}",
        "attributes": {a.name: a.option for a in dto.attributes},
        "price": dto.price,
        "regular_price": dto.regular_price,
        "sale_price": dto.sale_price,
        "manage_stock": dto.manage_stock,
        "stock_quantity": _int_str(dto.stock_quantity),
        "stock_status": dto.stock_status or "instock",
        "weight": dto.weight,
        "dimensions": dto.dimensions.as_dict(),
        "image": dto.image.src if dto.image and dto.image.src else None,
    }
