from fastapi import APIRouter, FastAPI, Depends, File, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from pathlib import Path
import logging
from contextlib import asynccontextmanager

from . import auth, catalog, config, consumption, ledger, schemas, uploads
from .database import Database, TransactionCoordinator, get_db_session
from .exceptions import ItemNotFound, StockServiceError
from .stock_ledger import StockLedgerEngine

# Configure logging basic setup
logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
logger = logging.getLogger(__name__)


def get_stock_engine(request: Request) -> StockLedgerEngine:
    return request.app.state.stock_engine


# --- Routes behind the bearer gate ---

api = APIRouter(prefix="/api", dependencies=[Depends(auth.require_token)])


@api.get("/items", response_model=List[schemas.ItemRead], tags=["Items"], summary="List Items")
async def list_items(q: str | None = None, category: str | None = None, db: AsyncSession = Depends(get_db_session)):
    """Lists catalog items ordered by id, optionally filtered by name substring and category."""
    return await catalog.list_items(db, q=q, category=category)


@api.get("/items/options", response_model=List[schemas.ItemOption], tags=["Items"], summary="Item Pick List")
async def list_item_options(db: AsyncSession = Depends(get_db_session)):
    return await catalog.list_item_options(db)


@api.get("/items/{item_id}", response_model=schemas.ItemRead, tags=["Items"], summary="Get Item Details")
async def read_item(item_id: int, db: AsyncSession = Depends(get_db_session)):
    db_item = await catalog.get_item(db, item_id)
    if db_item is None:
        logger.warning(f"Item requested but not found: {item_id}")
        raise ItemNotFound(item_id)
    return db_item


@api.post(
    "/items",
    response_model=schemas.ItemRead,
    status_code=status.HTTP_201_CREATED,
    tags=["Items"],
    summary="Create Item",
)
async def create_item(item: schemas.ItemCreate, db: AsyncSession = Depends(get_db_session)):
    """Creates an item; the id is assigned as max(id)+1 when not supplied."""
    return await catalog.create_item(db, item)


@api.put("/items/{item_id}", response_model=schemas.ItemRead, tags=["Items"], summary="Replace Item")
async def update_item(item_id: int, item: schemas.ItemUpdate, db: AsyncSession = Depends(get_db_session)):
    return await catalog.update_item(db, item_id, item)


@api.delete("/items/{item_id}", response_model=schemas.ItemDeleted, tags=["Items"], summary="Delete Item")
async def delete_item(item_id: int, db: AsyncSession = Depends(get_db_session)):
    """Deletes an item. Refused with 409 while sales still reference it."""
    await catalog.delete_item(db, item_id)
    return schemas.ItemDeleted(id=item_id)


@api.post("/items/{item_id}/image", response_model=schemas.ItemRead, tags=["Items"], summary="Upload Item Image")
async def upload_item_image(
    item_id: int,
    request: Request,
    image: UploadFile = File(...),
    db: AsyncSession = Depends(get_db_session),
):
    return await uploads.store_item_image(db, item_id, image, base_url=str(request.base_url))


@api.get("/sales", response_model=List[schemas.SaleRead], tags=["Sales"], summary="List Sales")
async def list_sales(
    date_from: str | None = None,
    date_to: str | None = None,
    item_id: int | None = None,
    db: AsyncSession = Depends(get_db_session),
):
    return await ledger.list_sales(db, date_from=date_from, date_to=date_to, item_id=item_id)


@api.post(
    "/sales",
    response_model=schemas.SaleReceipt,
    status_code=status.HTTP_201_CREATED,
    tags=["Sales"],
    summary="Record Sale",
)
async def create_sale(sale: schemas.SaleCreate, engine: StockLedgerEngine = Depends(get_stock_engine)):
    """
    Records a sale and decrements the item's stock in one transaction.
    Answers 409 when the item is missing or its stock is short.
    """
    return await engine.record_sale(sale.date, sale.item_id, sale.quantity, sale.total_amount, sale.notes)


@api.delete("/sales/{sale_id}", response_model=schemas.ReversalReceipt, tags=["Sales"], summary="Reverse Sale")
async def delete_sale(sale_id: str, engine: StockLedgerEngine = Depends(get_stock_engine)):
    """
    Deletes a sale and returns its quantity to stock in one transaction.
    The id is handed over as typed; one that names no sale answers 404.
    """
    return await engine.reverse_sale(sale_id)


@api.get("/consumption", response_model=List[schemas.ConsumptionRead], tags=["Workshop"], summary="List Consumption")
async def list_consumption(db: AsyncSession = Depends(get_db_session)):
    return await consumption.list_consumption(db)


@api.post(
    "/consumption",
    response_model=schemas.ConsumptionRead,
    status_code=status.HTTP_201_CREATED,
    tags=["Workshop"],
    summary="Record Consumption",
)
async def record_consumption(entry: schemas.ConsumptionCreate, db: AsyncSession = Depends(get_db_session)):
    """Logs workshop material usage. Stock is not affected."""
    return await consumption.record_consumption(db, entry)


@api.delete("/consumption/{entry_id}", response_model=schemas.RecordDeleted, tags=["Workshop"], summary="Delete Consumption")
async def delete_consumption(entry_id: int, db: AsyncSession = Depends(get_db_session)):
    await consumption.delete_consumption(db, entry_id)
    return schemas.RecordDeleted(id=entry_id)


@api.get("/stock", response_model=List[schemas.StockRow], tags=["Stock"], summary="Stock Listing")
async def list_stock(db: AsyncSession = Depends(get_db_session)):
    return await catalog.list_stock(db)


# --- Error translation ---

async def stock_service_error_handler(request: Request, exc: StockServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc), "kind": exc.kind})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}" for err in exc.errors()
    )
    logger.warning(f"Invalid request to {request.url.path}: {problems}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": f"Invalid or missing required field: {problems}", "kind": "invalid_input"},
    )


async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Storage error while handling {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Storage error: {exc}", "kind": "internal"},
    )


def create_app(database: Database | None = None, create_tables: bool = config.CREATE_TABLES) -> FastAPI:
    """Builds the application; tests pass their own Database."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Stock Service starting up...")
        db = database or Database()
        if create_tables:
            # Use with caution in dev, NEVER in prod without migration tool
            logger.info("Checking/Creating database tables...")
            await db.create_all()
            logger.info("Database tables check complete.")
        Path(config.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
        app.state.database = db
        app.state.stock_engine = StockLedgerEngine(TransactionCoordinator(db))
        yield
        logger.info("Stock Service shutting down...")
        await db.dispose() # Clean up engine resources

    app = FastAPI(
        title="Workshop Stock Service",
        description="Tracks item stock and keeps it consistent with recorded sales.",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/health", response_model=schemas.HealthResponse, tags=["Monitoring"], summary="Health Check")
    async def health_check(request: Request):
        try:
            dialect = await request.app.state.database.ping()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"detail": f"Database unreachable: {e}", "kind": "internal"},
            )
        return schemas.HealthResponse(status="healthy", database=dialect)

    @app.post("/auth/login", response_model=schemas.LoginResponse, tags=["Auth"], summary="Log In")
    async def login(credentials: schemas.LoginRequest):
        return auth.login(credentials)

    app.include_router(api)
    app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")

    app.add_exception_handler(StockServiceError, stock_service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    return app


app = create_app()


def run():
    import uvicorn

    uvicorn.run("stock_service.main:app", host=config.APP_HOST, port=config.APP_PORT)
