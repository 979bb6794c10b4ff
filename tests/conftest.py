from decimal import Decimal

import httpx
import pytest
from sqlalchemy.future import select

from stock_service import config, models
from stock_service.database import Database, TransactionCoordinator
from stock_service.stock_ledger import StockLedgerEngine

TEST_TOKEN = "test-token"


@pytest.fixture
async def database(tmp_path):
    """A fresh SQLite file database per test."""
    db = Database(url=f"sqlite+aiosqlite:///{tmp_path / 'stock.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def coordinator(database):
    return TransactionCoordinator(database)


@pytest.fixture
def stock_engine(coordinator):
    return StockLedgerEngine(coordinator)


@pytest.fixture
def make_item(database):
    async def _make(item_id=1, name="Steel bracket", stock=10, category="Hardware", unit_price=50, minimum_stock=3):
        async with database.session() as session:
            session.add(
                models.Item(
                    id=item_id,
                    name=name,
                    category=category,
                    unit_price=Decimal(unit_price),
                    stock_on_hand=Decimal(stock),
                    minimum_stock=Decimal(minimum_stock),
                )
            )
            await session.commit()
        return item_id

    return _make


@pytest.fixture
def stock_of(database):
    async def _stock_of(item_id):
        async with database.session() as session:
            result = await session.execute(select(models.Item.stock_on_hand).where(models.Item.id == item_id))
            return result.scalar_one_or_none()

    return _stock_of


@pytest.fixture
def sale_ids(database):
    async def _sale_ids(item_id=None):
        async with database.session() as session:
            stmt = select(models.Sale.id).order_by(models.Sale.id)
            if item_id is not None:
                stmt = stmt.where(models.Sale.item_id == item_id)
            return list((await session.execute(stmt)).scalars().all())

    return _sale_ids


@pytest.fixture
async def client(database, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "API_TOKEN", TEST_TOKEN)
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(config, "PUBLIC_BASE_URL", "")

    from stock_service.main import create_app

    app = create_app(database=database, create_tables=False)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            headers={"Authorization": f"Bearer {TEST_TOKEN}"},
        ) as c:
            yield c
