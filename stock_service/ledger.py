"""Ledger store: sale rows. Nothing here commits; callers own the transaction."""
from sqlalchemy import delete as sa_delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import logging

from . import schemas, models

logger = logging.getLogger(__name__)


async def insert(db: AsyncSession, sale: models.Sale) -> int:
    db.add(sale)
    await db.flush() # assigns the id
    return sale.id


async def lock_for_update(db: AsyncSession, sale_id: int) -> models.Sale | None:
    result = await db.execute(
        select(models.Sale).where(models.Sale.id == sale_id).with_for_update()
    )
    return result.scalars().first()


async def delete(db: AsyncSession, sale_id: int) -> int:
    result = await db.execute(
        sa_delete(models.Sale)
        .where(models.Sale.id == sale_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def get_sale(db: AsyncSession, sale_id: int) -> models.Sale | None:
    result = await db.execute(select(models.Sale).where(models.Sale.id == sale_id))
    return result.scalars().first()


async def count_for_item(db: AsyncSession, item_id: int) -> int:
    result = await db.execute(select(func.count(models.Sale.id)).where(models.Sale.item_id == item_id))
    return result.scalar_one()


async def list_sales(
    db: AsyncSession,
    date_from: str | None = None,
    date_to: str | None = None,
    item_id: int | None = None,
) -> list[schemas.SaleRead]:
    """
    Sales newest first, joined with the item's current name and image.

    Dates are compared as 'YYYY-MM-DD' strings, which sort like the dates they
    spell.
    """
    stmt = select(models.Sale, models.Item.name, models.Item.image_ref).outerjoin(
        models.Item, models.Item.id == models.Sale.item_id
    )
    if date_from:
        stmt = stmt.where(models.Sale.date >= date_from)
    if date_to:
        stmt = stmt.where(models.Sale.date <= date_to)
    if item_id:
        stmt = stmt.where(models.Sale.item_id == item_id)
    stmt = stmt.order_by(models.Sale.date.desc(), models.Sale.id.desc())

    result = await db.execute(stmt)
    rows = []
    for sale, item_name, image_ref in result.all():
        row = schemas.SaleRead.model_validate(sale)
        row.item_name = item_name
        row.image_ref = image_ref
        rows.append(row)
    return rows
