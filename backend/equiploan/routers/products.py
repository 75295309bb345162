"""Equipment catalog routes: products and their physical instances.

Endpoints:
    GET    /api/products                              List products          (product:read)
    POST   /api/products                              Create product         (product:create)
    GET    /api/products/categories                   Distinct categories    (product:read)
    GET    /api/products/manufacturers                Distinct manufacturers (product:read)
    GET    /api/products/instances                    List instances         (product:read)
    POST   /api/products/instances                    Create instance        (product:create)
    GET    /api/products/instances/conditions         Known conditions       (product:read)
    GET    /api/products/instances/locations          Distinct locations     (product:read)
    GET    /api/products/instances/barcode/{barcode}  Instance by barcode    (product:read)
    GET    /api/products/instances/{instance_id}      Instance + current loan(product:read)
    PUT    /api/products/instances/{instance_id}      Update instance        (product:update)
    DELETE /api/products/instances/{instance_id}      Delete instance        (product:delete)
    GET    /api/products/{product_id}                 Product with counts    (product:read)
    PUT    /api/products/{product_id}                 Update product         (product:update)
    DELETE /api/products/{product_id}                 Delete product         (product:delete)

Static paths are declared before `/{product_id}` so they are not captured by it.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.deps import require_permission
from equiploan.database import get_db
from equiploan.models.product import Product, ProductInstance
from equiploan.models.user import User
from equiploan.schemas.common import PaginatedResponse, page_count
from equiploan.schemas.product import (
    CurrentLoanRef,
    InstanceCreate,
    InstanceDetail,
    InstanceOut,
    InstanceUpdate,
    ProductCreate,
    ProductOut,
    ProductUpdate,
)
from equiploan.services import products as product_service
from equiploan.services.products import InstanceFilters, ProductFilters

router = APIRouter()


# ── Helpers ──────────────────────────────────────────────────

async def _build_product_out(db: AsyncSession, product: Product) -> ProductOut:
    counts = await product_service.instance_counts(db, [product.id])
    return ProductOut.model_validate(product).model_copy(update=counts[product.id])


async def _build_instance_detail(db: AsyncSession, instance: ProductInstance) -> InstanceDetail:
    loan = await product_service.current_loan(db, instance.id)
    return InstanceDetail(
        **InstanceOut.model_validate(instance).model_dump(),
        current_loan=CurrentLoanRef.model_validate(loan) if loan else None,
    )


# ── Products ─────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[ProductOut])
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    category: str | None = None,
    manufacturer: str | None = None,
    sort_by: str = "name",
    sort_order: Literal["asc", "desc"] = "asc",
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    filters = ProductFilters(
        search=search,
        category=category,
        manufacturer=manufacturer,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    products, total = await product_service.list_products(db, filters, page, limit)
    counts = await product_service.instance_counts(db, [p.id for p in products])
    return PaginatedResponse(
        items=[ProductOut.model_validate(p).model_copy(update=counts[p.id]) for p in products],
        total=total,
        page=page,
        limit=limit,
        total_pages=page_count(total, limit),
    )


@router.post("", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductCreate,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:create")),
):
    product = await product_service.create_product(db, body.model_dump())
    return await _build_product_out(db, product)


@router.get("/categories", response_model=list[str])
async def list_categories(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    return await product_service.categories(db)


@router.get("/manufacturers", response_model=list[str])
async def list_manufacturers(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    return await product_service.manufacturers(db)


# ── Instances ────────────────────────────────────────────────

@router.get("/instances", response_model=PaginatedResponse[InstanceOut])
async def list_instances(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    product_id: str | None = None,
    search: str | None = None,
    condition: str | None = None,
    location: str | None = None,
    is_available: bool | None = None,
    sort_by: str = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    filters = InstanceFilters(
        product_id=product_id,
        search=search,
        condition=condition,
        location=location,
        is_available=is_available,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    instances, total = await product_service.list_instances(db, filters, page, limit)
    return PaginatedResponse(
        items=[InstanceOut.model_validate(i) for i in instances],
        total=total,
        page=page,
        limit=limit,
        total_pages=page_count(total, limit),
    )


@router.post("/instances", response_model=InstanceOut, status_code=status.HTTP_201_CREATED)
async def create_instance(
    body: InstanceCreate,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:create")),
):
    return await product_service.create_instance(db, body.model_dump())


@router.get("/instances/conditions", response_model=list[str])
async def list_conditions(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    return await product_service.conditions(db)


@router.get("/instances/locations", response_model=list[str])
async def list_locations(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    return await product_service.locations(db)


@router.get("/instances/barcode/{barcode}", response_model=InstanceDetail)
async def get_instance_by_barcode(
    barcode: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    instance = await product_service.get_instance_by_barcode(db, barcode)
    return await _build_instance_detail(db, instance)


@router.get("/instances/{instance_id}", response_model=InstanceDetail)
async def get_instance(
    instance_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    instance = await product_service.get_instance(db, instance_id)
    return await _build_instance_detail(db, instance)


@router.put("/instances/{instance_id}", response_model=InstanceOut)
async def update_instance(
    instance_id: str,
    body: InstanceUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("product:update")),
):
    return await product_service.update_instance(
        db, instance_id, body.model_dump(exclude_unset=True), actor=user
    )


@router.delete("/instances/{instance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_instance(
    instance_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:delete")),
):
    await product_service.delete_instance(db, instance_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Single product ───────────────────────────────────────────

@router.get("/{product_id}", response_model=ProductOut)
async def get_product(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:read")),
):
    product = await product_service.get_product(db, product_id)
    return await _build_product_out(db, product)


@router.put("/{product_id}", response_model=ProductOut)
async def update_product(
    product_id: str,
    body: ProductUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("product:update")),
):
    product = await product_service.update_product(
        db, product_id, body.model_dump(exclude_unset=True), actor=user
    )
    return await _build_product_out(db, product)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("product:delete")),
):
    await product_service.delete_product(db, product_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
