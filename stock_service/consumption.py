"""
Workshop consumption log.

Records material used in the workshop for costing. It shares item ids with the
catalog but is deliberately not wired into stock: nothing here touches
``stock_on_hand``.
"""
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import logging

from . import schemas, models
from .exceptions import RecordNotFound

logger = logging.getLogger(__name__)


async def list_consumption(db: AsyncSession) -> list[models.WorkshopConsumption]:
    result = await db.execute(
        select(models.WorkshopConsumption).order_by(
            models.WorkshopConsumption.date.desc(), models.WorkshopConsumption.id.desc()
        )
    )
    return list(result.scalars().all())


async def record_consumption(db: AsyncSession, entry: schemas.ConsumptionCreate) -> models.WorkshopConsumption:
    db_entry = models.WorkshopConsumption(**entry.model_dump())
    db.add(db_entry)
    await db.commit()
    await db.refresh(db_entry)
    logger.info(f"Recorded workshop consumption {db_entry.id}: item {entry.item_id} x{entry.quantity}")
    return db_entry


async def delete_consumption(db: AsyncSession, entry_id: int) -> None:
    result = await db.execute(
        delete(models.WorkshopConsumption)
        .where(models.WorkshopConsumption.id == entry_id)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        await db.rollback()
        logger.warning(f"Attempted to delete non-existent consumption entry {entry_id}")
        raise RecordNotFound(f"Consumption entry {entry_id} not found")
    await db.commit()
    logger.info(f"Deleted workshop consumption {entry_id}")
