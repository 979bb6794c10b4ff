import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.future import select

from stock_service import ledger, models
from stock_service.exceptions import InternalError, InvalidInput, SaleNotFound, StockConflict


async def test_sale_decrements_stock_and_returns_remaining(stock_engine, make_item, stock_of):
    await make_item(item_id=1, stock=10)

    receipt = await stock_engine.record_sale("2024-01-01", 1, 3, 150)

    assert receipt.stock_remaining == 7
    assert await stock_of(1) == 7


async def test_scenario_sell_conflict_then_reverse(stock_engine, make_item, stock_of, sale_ids):
    await make_item(item_id=1, stock=10)

    first = await stock_engine.record_sale(date="2024-01-01", item_id=1, quantity=3, total_amount=150)
    assert first.stock_remaining == 7

    with pytest.raises(StockConflict) as excinfo:
        await stock_engine.record_sale(date="2024-01-02", item_id=1, quantity=8, total_amount=400)
    assert excinfo.value.item_id == 1
    assert await stock_of(1) == 7
    assert await sale_ids() == [first.sale_id]

    reversal = await stock_engine.reverse_sale(first.sale_id)
    assert reversal.sale_id == first.sale_id
    assert await stock_of(1) == 10
    assert await sale_ids() == []


async def test_sale_may_take_the_last_unit(stock_engine, make_item, stock_of):
    await make_item(item_id=1, stock=5)

    receipt = await stock_engine.record_sale("2024-01-01", 1, 5, 0)

    assert receipt.stock_remaining == 0
    assert await stock_of(1) == 0


async def test_sale_of_missing_item_is_a_conflict(stock_engine, sale_ids):
    with pytest.raises(StockConflict):
        await stock_engine.record_sale("2024-01-01", 99, 1, 10)
    assert await sale_ids() == []


async def test_locale_formatted_quantity_is_accepted(stock_engine, make_item, stock_of):
    await make_item(item_id=1, stock=2000)

    receipt = await stock_engine.record_sale("2024-01-01", "1", "1.234,56", "10.000,00")

    assert receipt.stock_remaining == pytest.approx(765.44)
    assert await stock_of(1) == Decimal("765.44")


async def test_sale_snapshots_item_name(stock_engine, make_item, database):
    await make_item(item_id=1, name="Gate hinge", stock=10)
    receipt = await stock_engine.record_sale("2024-01-01", 1, 1, 20, notes="counter sale")

    async with database.session() as session:
        item = await session.get(models.Item, 1)
        item.name = "Heavy gate hinge"
        await session.commit()
        sale = await session.get(models.Sale, receipt.sale_id)

    assert sale.item_name_snapshot == "Gate hinge"
    assert sale.notes == "counter sale"
    assert sale.date == "2024-01-01"


async def test_negative_total_is_recorded_as_given(stock_engine, make_item, database):
    await make_item(item_id=1, stock=10)
    receipt = await stock_engine.record_sale("2024-01-01", 1, 1, "-15,50")

    async with database.session() as session:
        sale = await session.get(models.Sale, receipt.sale_id)
    assert sale.total_amount == Decimal("-15.50")


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(date="", item_id=1, quantity=1, total_amount=10),
        dict(date="2024-01-01", item_id=None, quantity=1, total_amount=10),
        dict(date="2024-01-01", item_id=0, quantity=1, total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity="", total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity="abc", total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity=0, total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity=-2, total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity=1, total_amount=None),
        dict(date="2024-01-01", item_id=1, quantity=1, total_amount="NaN"),
        dict(date="2024-01-01", item_id=1, quantity="1,2345", total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity="0,0004", total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity="123456789012", total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity="1e3", total_amount=10),
        dict(date="2024-01-01", item_id=1, quantity=1, total_amount="10000000000000"),
    ],
)
async def test_invalid_input_never_touches_storage(kwargs, stock_engine, make_item, stock_of, sale_ids, monkeypatch):
    await make_item(item_id=1, stock=10)

    async def fail(*args, **kwargs):
        raise AssertionError("storage must not be touched")

    monkeypatch.setattr(stock_engine.coordinator, "run_atomic", fail)

    with pytest.raises(InvalidInput):
        await stock_engine.record_sale(**kwargs)
    assert await stock_of(1) == 10
    assert await sale_ids() == []


async def test_reversing_twice_fails_without_double_increment(stock_engine, make_item, stock_of):
    await make_item(item_id=1, stock=10)
    receipt = await stock_engine.record_sale("2024-01-01", 1, 4, 80)

    await stock_engine.reverse_sale(receipt.sale_id)
    with pytest.raises(SaleNotFound):
        await stock_engine.reverse_sale(receipt.sale_id)

    assert await stock_of(1) == 10


async def test_reversing_unknown_sale_is_not_found(stock_engine):
    with pytest.raises(SaleNotFound):
        await stock_engine.reverse_sale(12345)


async def test_fractional_sale_and_reversal_restore_stock_exactly(stock_engine, make_item, stock_of, database):
    await make_item(item_id=1, stock=10)

    receipt = await stock_engine.record_sale("2024-01-01", 1, "1,234", 12)

    async with database.session() as session:
        sale = await session.get(models.Sale, receipt.sale_id)
    assert sale.quantity == Decimal("1.234")
    assert await stock_of(1) + sale.quantity == 10

    await stock_engine.reverse_sale(receipt.sale_id)
    assert await stock_of(1) == 10


async def test_reversal_proceeds_when_item_is_gone(stock_engine, make_item, database, sale_ids):
    await make_item(item_id=1, stock=10)
    receipt = await stock_engine.record_sale("2024-01-01", 1, 2, 40)

    # Bypass the catalog guard to simulate an item removed behind the engine's back
    async with database.session() as session:
        await session.delete(await session.get(models.Item, 1))
        await session.commit()

    await stock_engine.reverse_sale(receipt.sale_id)
    assert await sale_ids() == []


async def test_ledger_insert_failure_rolls_back_decrement(stock_engine, make_item, stock_of, sale_ids, monkeypatch):
    await make_item(item_id=1, stock=10)

    async def broken_insert(db, sale):
        raise OperationalError("INSERT INTO sales", {}, Exception("disk full"))

    monkeypatch.setattr(ledger, "insert", broken_insert)

    with pytest.raises(InternalError):
        await stock_engine.record_sale("2024-01-01", 1, 3, 150)

    assert await stock_of(1) == 10
    assert await sale_ids() == []


async def test_unexpected_error_also_rolls_back(stock_engine, make_item, stock_of, monkeypatch):
    await make_item(item_id=1, stock=10)

    async def broken_insert(db, sale):
        raise RuntimeError("boom")

    monkeypatch.setattr(ledger, "insert", broken_insert)

    with pytest.raises(RuntimeError):
        await stock_engine.record_sale("2024-01-01", 1, 3, 150)
    assert await stock_of(1) == 10


async def test_reversal_raced_away_rolls_back_increment(stock_engine, make_item, stock_of, sale_ids, monkeypatch):
    await make_item(item_id=1, stock=10)
    receipt = await stock_engine.record_sale("2024-01-01", 1, 3, 150)

    async def nothing_deleted(db, sale_id):
        return 0

    monkeypatch.setattr(ledger, "delete", nothing_deleted)

    with pytest.raises(SaleNotFound):
        await stock_engine.reverse_sale(receipt.sale_id)

    assert await stock_of(1) == 7
    assert await sale_ids() == [receipt.sale_id]


async def test_stock_matches_live_sales_through_a_sequence(stock_engine, make_item, stock_of, database):
    await make_item(item_id=1, stock=20)
    await make_item(item_id=2, name="Welding rod", stock=15)

    live = []
    for item_id, qty in [(1, 3), (2, 5), (1, "2,5"), (2, 1), (1, 4)]:
        live.append((await stock_engine.record_sale("2024-03-01", item_id, qty, 10)).sale_id)
    with pytest.raises(StockConflict):
        await stock_engine.record_sale("2024-03-01", 2, 10, 10)
    await stock_engine.reverse_sale(live.pop(1))
    await stock_engine.reverse_sale(live.pop(0))
    live.append((await stock_engine.record_sale("2024-03-02", 2, 9, 10)).sale_id)

    async with database.session() as session:
        sales = (await session.execute(select(models.Sale))).scalars().all()
    assert sorted(s.id for s in sales) == sorted(live)
    for item_id, initial in [(1, 20), (2, 15)]:
        sold = sum((s.quantity for s in sales if s.item_id == item_id), Decimal(0))
        assert await stock_of(item_id) == initial - sold


async def test_concurrent_sales_for_the_last_units(stock_engine, make_item, stock_of, sale_ids):
    await make_item(item_id=1, stock=5)

    results = await asyncio.gather(
        stock_engine.record_sale("2024-01-01", 1, 5, 100),
        stock_engine.record_sale("2024-01-01", 1, 5, 100),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, StockConflict)]
    receipts = [r for r in results if not isinstance(r, Exception)]
    assert len(receipts) == 1
    assert len(conflicts) == 1
    assert receipts[0].stock_remaining == 0
    assert await stock_of(1) == 0
    assert len(await sale_ids()) == 1


async def test_many_concurrent_single_unit_sales(stock_engine, make_item, stock_of):
    await make_item(item_id=1, stock=5)

    results = await asyncio.gather(
        *(stock_engine.record_sale("2024-01-01", 1, 1, 10) for _ in range(8)),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, StockConflict)) == 3
    assert sum(1 for r in results if not isinstance(r, Exception)) == 5
    assert await stock_of(1) == 0
