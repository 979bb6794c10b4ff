"""
Stock ledger engine.

Stock changes in exactly two places: recording a sale decrements it, reversing
a sale restores it. Each runs as one unit of work, so the catalog and the sale
ledger are never observed disagreeing:

    stock_on_hand == last set stock - sum(quantity of existing sales)
"""
from decimal import Decimal
from typing import Any
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from . import catalog, ledger, models, schemas
from .database import TransactionCoordinator
from .exceptions import InvalidInput, SaleNotFound, StockConflict
from .parsing import parse_amount, parse_date, parse_item_id, parse_quantity

logger = logging.getLogger(__name__)


class StockLedgerEngine:
    def __init__(self, coordinator: TransactionCoordinator):
        self.coordinator = coordinator

    async def record_sale(
        self,
        date: Any,
        item_id: Any,
        quantity: Any,
        total_amount: Any,
        notes: str | None = None,
    ) -> schemas.SaleReceipt:
        """
        Records a sale and takes its quantity out of stock.

        Inputs are validated before any storage access and raise InvalidInput.
        Raises StockConflict when the item is missing or holds less than
        ``quantity``; in that case nothing is written.
        """
        sale_date = parse_date(date)
        item = parse_item_id(item_id)
        qty = parse_quantity(quantity)
        total = parse_amount(total_amount)
        notes = notes or None

        async def _record(db: AsyncSession) -> schemas.SaleReceipt:
            if not await catalog.conditional_decrement(db, item, qty):
                raise StockConflict(item)

            snapshot = await catalog.read_stock_and_name(db, item)
            if snapshot is None:
                # The decrement just matched this row under lock
                raise StockConflict(item)
            name, stock_remaining = snapshot

            sale_id = await ledger.insert(
                db,
                models.Sale(
                    date=sale_date,
                    item_id=item,
                    item_name_snapshot=name or "",
                    quantity=qty,
                    total_amount=total,
                    notes=notes,
                ),
            )
            return schemas.SaleReceipt(sale_id=sale_id, stock_remaining=stock_remaining)

        try:
            receipt = await self.coordinator.run_atomic(_record)
        except StockConflict:
            logger.warning(f"Sale rejected for item {item}: requested {qty}, stock insufficient or item missing")
            raise
        logger.info(f"Recorded sale {receipt.sale_id}: item {item} -{qty}, stock now {receipt.stock_remaining}")
        return receipt

    async def reverse_sale(self, sale_id: Any) -> schemas.ReversalReceipt:
        """
        Deletes a sale and puts its quantity back into stock.

        Raises SaleNotFound when the sale does not exist or a concurrent
        reversal deleted it first; the stock is then left untouched.
        """
        try:
            target = parse_item_id(sale_id, "sale_id")
        except InvalidInput:
            # An id that cannot name a row names no sale
            raise SaleNotFound(sale_id) from None

        async def _reverse(db: AsyncSession) -> Decimal:
            sale = await ledger.lock_for_update(db, target)
            if sale is None:
                raise SaleNotFound(target)

            restored = await catalog.increment(db, sale.item_id, sale.quantity)
            if not restored:
                logger.warning(
                    f"Reversing sale {target}: item {sale.item_id} no longer exists, "
                    f"quantity {sale.quantity} not returned to stock"
                )

            if not await ledger.delete(db, target):
                raise SaleNotFound(target)
            return sale.quantity

        try:
            quantity = await self.coordinator.run_atomic(_reverse)
        except SaleNotFound:
            logger.warning(f"Reversal of sale {target} failed: not found")
            raise
        logger.info(f"Reversed sale {target}: {quantity} returned to stock")
        return schemas.ReversalReceipt(sale_id=target)
