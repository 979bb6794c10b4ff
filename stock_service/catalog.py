"""
Catalog store: item rows and their stock.

The three stock primitives (``conditional_decrement``, ``increment``,
``read_stock_and_name``) never commit; they run inside whatever transaction the
caller's session has open, so the engine controls the unit of work. The item
management helpers below them commit on their own like ordinary CRUD.
"""
from decimal import Decimal

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import logging

from . import schemas, models, ledger
from .exceptions import ItemAlreadyExists, ItemInUse, ItemNotFound

logger = logging.getLogger(__name__)


# --- Stock primitives used by the stock ledger engine ---

async def conditional_decrement(db: AsyncSession, item_id: int, amount: Decimal) -> int:
    """
    Subtracts ``amount`` only when the item holds at least that much.

    Condition and mutation are one UPDATE statement, so the row lock the store
    takes for it covers the check as well. Returns the number of rows changed:
    0 means the item is missing or short.
    """
    stmt = (
        update(models.Item)
        .where(models.Item.id == item_id, models.Item.stock_on_hand >= amount)
        .values(stock_on_hand=models.Item.stock_on_hand - amount)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


async def increment(db: AsyncSession, item_id: int, amount: Decimal) -> int:
    stmt = (
        update(models.Item)
        .where(models.Item.id == item_id)
        .values(stock_on_hand=models.Item.stock_on_hand + amount)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


async def read_stock_and_name(db: AsyncSession, item_id: int) -> tuple[str, Decimal] | None:
    result = await db.execute(
        select(models.Item.name, models.Item.stock_on_hand).where(models.Item.id == item_id)
    )
    row = result.first()
    if row is None:
        return None
    return row.name, row.stock_on_hand


# --- Item management ---

async def get_item(db: AsyncSession, item_id: int) -> models.Item | None:
    result = await db.execute(select(models.Item).filter(models.Item.id == item_id))
    return result.scalars().first()


async def list_items(db: AsyncSession, q: str | None = None, category: str | None = None) -> list[models.Item]:
    stmt = select(models.Item)
    if q:
        stmt = stmt.where(models.Item.name.like(f"%{q}%"))
    if category:
        stmt = stmt.where(models.Item.category == category)
    result = await db.execute(stmt.order_by(models.Item.id.asc()))
    return list(result.scalars().all())


async def list_item_options(db: AsyncSession) -> list[models.Item]:
    """Every item ordered by name, for pick lists."""
    result = await db.execute(select(models.Item).order_by(models.Item.name.asc(), models.Item.id.asc()))
    return list(result.scalars().all())


async def list_stock(db: AsyncSession) -> list[schemas.StockRow]:
    items = await list_item_options(db)
    return [
        schemas.StockRow(
            id=item.id,
            name=item.name,
            category=item.category,
            unit_price=item.unit_price,
            stock=item.stock_on_hand,
            stock_on_hand=item.stock_on_hand,
            current_stock=item.stock_on_hand,
            minimum_stock=item.minimum_stock,
            below_minimum=item.stock_on_hand < item.minimum_stock,
            image_ref=item.image_ref,
        )
        for item in items
    ]


async def next_item_id(db: AsyncSession) -> int:
    result = await db.execute(select(func.coalesce(func.max(models.Item.id), 0) + 1))
    return int(result.scalar_one())


async def create_item(db: AsyncSession, item: schemas.ItemCreate) -> models.Item:
    item_id = item.id or await next_item_id(db)
    if item.id is not None and await get_item(db, item.id) is not None:
        raise ItemAlreadyExists(item.id)

    db_item = models.Item(id=item_id, **item.model_dump(exclude={"id"}))
    db.add(db_item)
    try:
        await db.commit()
    except IntegrityError:
        # Another request claimed the same id between max() and insert
        await db.rollback()
        raise ItemAlreadyExists(item_id) from None
    await db.refresh(db_item)
    logger.info(f"Created item {item_id} '{db_item.name}' with stock {db_item.stock_on_hand}")
    return db_item


async def update_item(db: AsyncSession, item_id: int, item: schemas.ItemUpdate) -> models.Item:
    """Replaces every editable field of the item."""
    result = await db.execute(
        update(models.Item)
        .where(models.Item.id == item_id)
        .values(**item.model_dump())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        await db.rollback()
        raise ItemNotFound(item_id)
    await db.commit()
    logger.info(f"Updated item {item_id}; stock set to {item.stock_on_hand}")
    db_item = await get_item(db, item_id)
    await db.refresh(db_item)
    return db_item


async def delete_item(db: AsyncSession, item_id: int) -> None:
    """
    Deletes an item that no sale references.

    The item row is locked first, so a sale being recorded concurrently either
    commits before the count (and blocks the delete) or waits and then finds
    the item gone.
    """
    result = await db.execute(select(models.Item).where(models.Item.id == item_id).with_for_update())
    db_item = result.scalars().first()
    if db_item is None:
        await db.rollback()
        logger.warning(f"Attempted to delete non-existent item {item_id}")
        raise ItemNotFound(item_id)

    sale_count = await ledger.count_for_item(db, item_id)
    if sale_count:
        await db.rollback()
        logger.warning(f"Refusing to delete item {item_id}: {sale_count} sale(s) reference it")
        raise ItemInUse(item_id, sale_count)

    await db.delete(db_item)
    await db.commit()
    logger.info(f"Deleted item {item_id}")


async def set_image_ref(db: AsyncSession, item_id: int, image_ref: str) -> models.Item:
    db_item = await get_item(db, item_id)
    if db_item is None:
        raise ItemNotFound(item_id)
    db_item.image_ref = image_ref
    await db.commit()
    await db.refresh(db_item)
    return db_item
