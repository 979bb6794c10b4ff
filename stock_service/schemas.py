from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from typing import Annotated, Union
from decimal import Decimal

from . import config
from .exceptions import InvalidInput
from .parsing import MONEY_DIGITS, MONEY_PLACES, QUANTITY_DIGITS, QUANTITY_PLACES, check_precision, parse_date, parse_number

# Loose numeric input as typed on a form; parsed by the engine, not by pydantic
NumericInput = Union[int, float, str, None]


def _locale_number(value):
    if value is None or isinstance(value, Decimal):
        return value
    try:
        return parse_number(value)
    except InvalidInput as e:
        raise ValueError(str(e)) from None


LocaleDecimal = Annotated[Decimal, BeforeValidator(_locale_number)]


def _fits(places: int, digits: int):
    def check(value):
        if value is None:
            return value
        try:
            return check_precision(value, "value", places, digits)
        except InvalidInput as e:
            raise ValueError(str(e)) from None
    return check


# Same scale as the Numeric columns they land in
LocaleQuantity = Annotated[LocaleDecimal, AfterValidator(_fits(QUANTITY_PLACES, QUANTITY_DIGITS))]
LocaleMoney = Annotated[LocaleDecimal, AfterValidator(_fits(MONEY_PLACES, MONEY_DIGITS))]


# --- Items ---

class ItemBase(BaseModel):
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    unit_price: LocaleMoney = Field(default=Decimal(0), ge=0)
    stock_on_hand: LocaleQuantity = Field(default=Decimal(0), ge=0)
    minimum_stock: LocaleQuantity = Field(default=Decimal(config.DEFAULT_MINIMUM_STOCK), ge=0)
    image_ref: str | None = None


class ItemCreate(ItemBase):
    id: int | None = Field(default=None, gt=0) # auto-assigned as max(id)+1 when omitted


class ItemUpdate(ItemBase):
    """Full replace: omitted optional fields are reset, not kept."""
    unit_price: LocaleMoney = Field(..., ge=0)
    stock_on_hand: LocaleQuantity = Field(..., ge=0)
    minimum_stock: LocaleQuantity = Field(..., ge=0)


class ItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: str
    unit_price: float
    stock_on_hand: float
    minimum_stock: float
    image_ref: str | None = None


class ItemOption(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    image_ref: str | None = None
    unit_price: float


class StockRow(BaseModel):
    """Stock listing row; the same value is exposed under every name older clients read."""
    id: int
    name: str
    category: str
    unit_price: float
    stock: float
    stock_on_hand: float
    current_stock: float
    minimum_stock: float
    below_minimum: bool
    image_ref: str | None = None


class ItemDeleted(BaseModel):
    id: int


# --- Sales ---

class SaleCreate(BaseModel):
    date: str | None = None
    item_id: NumericInput = None
    quantity: NumericInput = None
    total_amount: NumericInput = None
    notes: str | None = None


class SaleReceipt(BaseModel):
    sale_id: int
    stock_remaining: float


class ReversalReceipt(BaseModel):
    sale_id: int


class SaleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: str
    item_id: int
    item_name_snapshot: str
    quantity: float
    total_amount: float
    notes: str | None = None
    item_name: str | None = None # current catalog name, may differ from the snapshot
    image_ref: str | None = None


# --- Workshop consumption ---

class ConsumptionCreate(BaseModel):
    date: str
    item_id: int = Field(..., gt=0)
    item_name: str = Field(..., min_length=1)
    quantity: LocaleQuantity = Field(..., gt=0)
    amount: LocaleMoney
    boards: LocaleQuantity | None = None
    posts: LocaleQuantity | None = None
    sale_value: LocaleMoney | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, value):
        try:
            return parse_date(value)
        except InvalidInput as e:
            raise ValueError(str(e)) from None


class ConsumptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: str
    item_id: int
    item_name: str
    quantity: float
    amount: float
    boards: float | None = None
    posts: float | None = None
    sale_value: float | None = None


class RecordDeleted(BaseModel):
    id: int


# --- Auth / monitoring ---

class LoginRequest(BaseModel):
    username: str
    password: str


class UserProfile(BaseModel):
    name: str
    role: str


class LoginResponse(BaseModel):
    token: str
    user: UserProfile


class HealthResponse(BaseModel):
    status: str
    database: str
