"""Catalogue endpoints: public reads, admin writes."""
from typing import List, Optional
from math import ceil
import uuid

from fastapi import APIRouter, HTTPException, Query, status

from milkcart.api.deps import DB, CurrentAdmin
from milkcart.schemas.product import (
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    ProductCreate,
    ProductListResponse,
    ProductResponse,
    ProductUpdate,
    StockUpdate,
)
from milkcart.services.product_service import ProductService

categories_router = APIRouter(prefix="/categories", tags=["Categories"])
router = APIRouter(prefix="/products", tags=["Products"])


# ==================== CATEGORIES ====================

@categories_router.get("", response_model=List[CategoryResponse])
async def list_categories(db: DB):
    return await ProductService(db).get_categories()


@categories_router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(data: CategoryCreate, db: DB, admin: CurrentAdmin):
    return await ProductService(db).create_category(data)


@categories_router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(category_id: uuid.UUID, data: CategoryUpdate, db: DB, admin: CurrentAdmin):
    return await ProductService(db).update_category(category_id, data)


# ==================== PRODUCTS ====================

@router.get("", response_model=ProductListResponse)
async def list_products(
    db: DB,
    category_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    """Storefront listing. Inactive products are hidden."""
    products, total = await ProductService(db).get_products(
        category_id=category_id,
        search=search,
        skip=(page - 1) * size,
        limit=size,
    )
    return ProductListResponse(
        items=[ProductResponse.model_validate(p) for p in products],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/admin/all", response_model=ProductListResponse)
async def list_all_products(
    db: DB,
    admin: CurrentAdmin,
    category_id: Optional[uuid.UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    products, total = await ProductService(db).get_products(
        category_id=category_id,
        search=search,
        status=status_filter,
        public_only=False,
        skip=(page - 1) * size,
        limit=size,
    )
    return ProductListResponse(
        items=[ProductResponse.model_validate(p) for p in products],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: uuid.UUID, db: DB):
    product = await ProductService(db).get_product_by_id(product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(data: ProductCreate, db: DB, admin: CurrentAdmin):
    return await ProductService(db).create_product(data)


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(product_id: uuid.UUID, data: ProductUpdate, db: DB, admin: CurrentAdmin):
    return await ProductService(db).update_product(product_id, data)


@router.put("/{product_id}/stock", response_model=ProductResponse)
async def update_stock(product_id: uuid.UUID, data: StockUpdate, db: DB, admin: CurrentAdmin):
    """Set the on-hand quantity. Status follows (out_of_stock at zero)."""
    return await ProductService(db).set_stock(product_id, data.stock)


@router.delete("/{product_id}", response_model=ProductResponse)
async def deactivate_product(product_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    return await ProductService(db).deactivate_product(product_id)
