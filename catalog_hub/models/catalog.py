# catalog_hub/models/catalog.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from catalog_hub.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Shop(Base):
    __tablename__ = "shops"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255))
    url: Mapped[str] = mapped_column(String(512), unique=True)
    # compact ciphertext (nonce:tag:ciphertext), never plaintext
    consumer_key_enc: Mapped[str] = mapped_column(Text)
    consumer_secret_enc: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), default="active")  # active | inactive | error
    last_connection_check_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_connection_ok: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("shop_id", "woocommerce_id", name="categories_shop_wc_unique"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    shop_id: Mapped[Optional[str]] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), index=True, nullable=True)
    woocommerce_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), index=True, nullable=True
    )
    image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    menu_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class Brand(Base):
    __tablename__ = "brands"
    __table_args__ = (UniqueConstraint("shop_id", "woocommerce_id", name="brands_shop_wc_unique"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    shop_id: Mapped[Optional[str]] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), index=True, nullable=True)
    woocommerce_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class Product(Base):
    __tablename__ = "products"
    # one local row per remote product per shop
    __table_args__ = (UniqueConstraint("shop_id", "woocommerce_id", name="products_shop_wc_unique"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    shop_id: Mapped[Optional[str]] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), index=True, nullable=True)
    woocommerce_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    sku: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(Text)
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    short_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    base_price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    regular_price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    sale_price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="draft", index=True)  # published | draft | private
    type: Mapped[str] = mapped_column(String(16), default="simple", index=True)  # simple | variable | grouped
    manage_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_quantity: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    stock_status: Mapped[str] = mapped_column(String(32), default="instock", index=True)
    weight: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    dimensions: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    woocommerce_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    featured_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gallery_images: Mapped[list[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)


class ProductVariant(Base):
    __tablename__ = "product_variants"
    __table_args__ = (UniqueConstraint("shop_id", "woocommerce_id", name="product_variants_shop_wc_unique"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    shop_id: Mapped[Optional[str]] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), index=True, nullable=True)
    woocommerce_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    sku: Mapped[str] = mapped_column(String(255), index=True)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    regular_price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    sale_price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    manage_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_quantity: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    stock_status: Mapped[str] = mapped_column(String(32), default="instock")
    weight: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    dimensions: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class ProductCategory(Base):
    __tablename__ = "product_categories"
    __table_args__ = (UniqueConstraint("product_id", "category_id", name="product_categories_pk"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    category_id: Mapped[str] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"), index=True)


class ProductBrand(Base):
    __tablename__ = "product_brands"
    __table_args__ = (UniqueConstraint("product_id", "brand_id", name="product_brands_pk"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    brand_id: Mapped[str] = mapped_column(ForeignKey("brands.id", ondelete="CASCADE"), index=True)


class MediaFile(Base):
    """A relocated image object in central storage."""
    __tablename__ = "media_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    object_name: Mapped[str] = mapped_column(String(1024), unique=True)
    original_url: Mapped[str] = mapped_column(Text)
    url: Mapped[str] = mapped_column(Text)
    mime_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    shop_id: Mapped[Optional[str]] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), index=True, nullable=True)
    product_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("products.id", ondelete="SET NULL"), index=True, nullable=True
    )
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
