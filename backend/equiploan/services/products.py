"""Equipment catalog service: products and their physical instances."""

import logging
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from equiploan.messages import message
from equiploan.middleware.exceptions import ConflictError, NotFoundError, persistence_errors
from equiploan.models.audit_log import AuditEntity
from equiploan.models.loan import ACTIVE_STATUSES, Loan
from equiploan.models.product import INSTANCE_CONDITIONS, Product, ProductInstance
from equiploan.models.user import User
from equiploan.services import audit
from equiploan.utils.query import apply_sort, paginate

logger = logging.getLogger(__name__)

PRODUCT_SORT_COLUMNS = {
    "name": Product.name,
    "category": Product.category,
    "manufacturer": Product.manufacturer,
    "created_at": Product.created_at,
}

INSTANCE_SORT_COLUMNS = {
    "barcode": ProductInstance.barcode,
    "condition": ProductInstance.condition,
    "location": ProductInstance.location,
    "created_at": ProductInstance.created_at,
}


# ── Products ─────────────────────────────────────────────────

async def instance_counts(db: AsyncSession, product_ids: list[str]) -> dict[str, dict]:
    """Per-product totals: total / available / currently loaned instances."""
    counts = {
        pid: {"total_instances": 0, "available_instances": 0, "loaned_instances": 0}
        for pid in product_ids
    }
    if not product_ids:
        return counts

    rows = await db.execute(
        select(ProductInstance.product_id, ProductInstance.is_available, func.count(ProductInstance.id))
        .where(ProductInstance.product_id.in_(product_ids))
        .group_by(ProductInstance.product_id, ProductInstance.is_available)
    )
    for product_id, available, count in rows.all():
        counts[product_id]["total_instances"] += count
        if available:
            counts[product_id]["available_instances"] += count

    loaned = await db.execute(
        select(ProductInstance.product_id, func.count(func.distinct(Loan.product_instance_id)))
        .join(Loan, Loan.product_instance_id == ProductInstance.id)
        .where(
            ProductInstance.product_id.in_(product_ids),
            Loan.status.in_(ACTIVE_STATUSES),
        )
        .group_by(ProductInstance.product_id)
    )
    for product_id, count in loaned.all():
        counts[product_id]["loaned_instances"] = count
    return counts


async def get_product(db: AsyncSession, product_id: str) -> Product:
    product = await db.get(Product, product_id)
    if not product:
        raise NotFoundError(message("product_not_found"))
    return product


@dataclass
class ProductFilters:
    search: str | None = None
    category: str | None = None
    manufacturer: str | None = None
    sort_by: str = "name"
    sort_order: str = "asc"


async def list_products(db: AsyncSession, filters: ProductFilters, page: int, limit: int) -> tuple[list[Product], int]:
    stmt = select(Product)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(or_(
            Product.name.ilike(pattern),
            Product.category.ilike(pattern),
            Product.manufacturer.ilike(pattern),
            Product.model.ilike(pattern),
            Product.description.ilike(pattern),
        ))
    if filters.category:
        stmt = stmt.where(Product.category.ilike(filters.category))
    if filters.manufacturer:
        stmt = stmt.where(Product.manufacturer.ilike(filters.manufacturer))
    stmt = apply_sort(stmt, PRODUCT_SORT_COLUMNS, filters.sort_by, filters.sort_order)
    return await paginate(db, stmt, page, limit)


async def create_product(db: AsyncSession, data: dict) -> Product:
    product = Product(**data)
    db.add(product)
    async with persistence_errors("create product"):
        await db.flush()
    logger.info("Product created: %s (%s)", product.name, product.id)
    return product


async def update_product(db: AsyncSession, product_id: str, updates: dict, actor: User | None = None) -> Product:
    product = await get_product(db, product_id)
    old = {key: getattr(product, key) for key in updates}
    for key, value in updates.items():
        setattr(product, key, value)
    async with persistence_errors("update product"):
        await db.flush()
    audit.log_data_change(actor.id if actor else None, AuditEntity.PRODUCT, product.id, old, updates)
    return product


async def delete_product(db: AsyncSession, product_id: str) -> None:
    """Loans are permanent history, so any loan on any instance blocks deletion."""
    product = await get_product(db, product_id)

    base = (
        select(func.count(Loan.id))
        .join(ProductInstance, Loan.product_instance_id == ProductInstance.id)
        .where(ProductInstance.product_id == product.id)
    )
    if await db.scalar(base.where(Loan.status.in_(ACTIVE_STATUSES))):
        raise ConflictError(message("product_has_active_loans"))
    if await db.scalar(base):
        raise ConflictError(message("product_has_loan_history"))

    await db.delete(product)
    async with persistence_errors("delete product"):
        await db.flush()


async def _distinct(db: AsyncSession, column) -> list[str]:
    result = await db.execute(
        select(column).where(column.is_not(None)).distinct().order_by(column)
    )
    return [value for value in result.scalars().all() if value]


async def categories(db: AsyncSession) -> list[str]:
    return await _distinct(db, Product.category)


async def manufacturers(db: AsyncSession) -> list[str]:
    return await _distinct(db, Product.manufacturer)


# ── Instances ────────────────────────────────────────────────

async def current_loan(db: AsyncSession, instance_id: str) -> Loan | None:
    result = await db.execute(
        select(Loan)
        .where(Loan.product_instance_id == instance_id, Loan.status.in_(ACTIVE_STATUSES))
        .options(selectinload(Loan.user))
    )
    return result.scalars().first()


async def get_instance(db: AsyncSession, instance_id: str) -> ProductInstance:
    result = await db.execute(
        select(ProductInstance)
        .where(ProductInstance.id == instance_id)
        .options(selectinload(ProductInstance.product))
        .execution_options(populate_existing=True)
    )
    instance = result.scalar_one_or_none()
    if not instance:
        raise NotFoundError(message("instance_not_found"))
    return instance


async def get_instance_by_barcode(db: AsyncSession, barcode: str) -> ProductInstance:
    result = await db.execute(
        select(ProductInstance)
        .where(ProductInstance.barcode == barcode)
        .options(selectinload(ProductInstance.product))
    )
    instance = result.scalar_one_or_none()
    if not instance:
        raise NotFoundError(message("instance_not_found"))
    return instance


async def _barcode_taken(db: AsyncSession, barcode: str, exclude_id: str | None = None) -> bool:
    stmt = select(ProductInstance.id).where(ProductInstance.barcode == barcode)
    if exclude_id:
        stmt = stmt.where(ProductInstance.id != exclude_id)
    return (await db.scalar(stmt)) is not None


@dataclass
class InstanceFilters:
    product_id: str | None = None
    search: str | None = None
    condition: str | None = None
    location: str | None = None
    is_available: bool | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"


async def list_instances(db: AsyncSession, filters: InstanceFilters, page: int, limit: int) -> tuple[list[ProductInstance], int]:
    stmt = select(ProductInstance).options(selectinload(ProductInstance.product))
    if filters.product_id:
        stmt = stmt.where(ProductInstance.product_id == filters.product_id)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(or_(
            ProductInstance.barcode.ilike(pattern),
            ProductInstance.serial_number.ilike(pattern),
            ProductInstance.location.ilike(pattern),
            ProductInstance.notes.ilike(pattern),
        ))
    if filters.condition:
        stmt = stmt.where(ProductInstance.condition == filters.condition)
    if filters.location:
        stmt = stmt.where(ProductInstance.location.ilike(f"%{filters.location}%"))
    if filters.is_available is not None:
        stmt = stmt.where(ProductInstance.is_available == filters.is_available)
    stmt = apply_sort(stmt, INSTANCE_SORT_COLUMNS, filters.sort_by, filters.sort_order)
    return await paginate(db, stmt, page, limit)


async def create_instance(db: AsyncSession, data: dict) -> ProductInstance:
    await get_product(db, data["product_id"])
    if await _barcode_taken(db, data["barcode"]):
        raise ConflictError(message("barcode_taken"))

    instance = ProductInstance(**data)
    db.add(instance)
    async with persistence_errors("create product instance"):
        await db.flush()
    return await get_instance(db, instance.id)


async def update_instance(db: AsyncSession, instance_id: str, updates: dict, actor: User | None = None) -> ProductInstance:
    instance = await get_instance(db, instance_id)
    if "barcode" in updates and await _barcode_taken(db, updates["barcode"], exclude_id=instance.id):
        raise ConflictError(message("barcode_taken"))
    if "product_id" in updates:
        await get_product(db, updates["product_id"])

    old = {key: getattr(instance, key) for key in updates}
    for key, value in updates.items():
        setattr(instance, key, value)
    async with persistence_errors("update product instance"):
        await db.flush()
    audit.log_data_change(
        actor.id if actor else None, AuditEntity.PRODUCT_INSTANCE, instance.id, old, updates
    )
    return await get_instance(db, instance.id)


async def delete_instance(db: AsyncSession, instance_id: str) -> None:
    instance = await get_instance(db, instance_id)
    if await current_loan(db, instance.id):
        raise ConflictError(message("instance_on_loan"))
    if await db.scalar(select(func.count(Loan.id)).where(Loan.product_instance_id == instance.id)):
        raise ConflictError(message("instance_has_loan_history"))

    await db.delete(instance)
    async with persistence_errors("delete product instance"):
        await db.flush()


async def conditions(db: AsyncSession) -> list[str]:
    recorded = await _distinct(db, ProductInstance.condition)
    return list(INSTANCE_CONDITIONS) + [c for c in recorded if c not in INSTANCE_CONDITIONS]


async def locations(db: AsyncSession) -> list[str]:
    return await _distinct(db, ProductInstance.location)
