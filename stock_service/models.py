from sqlalchemy import Column, Integer, String, Numeric, Text, ForeignKey, CheckConstraint, Index
from .database import Base
from . import config

# Stock and quantities may be fractional (sheet metal by the metre, paint by the litre)
Quantity = Numeric(14, 3)
Money = Numeric(14, 2)


class Item(Base):
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, autoincrement=False) # caller-supplied or max(id)+1
    name = Column(String(255), nullable=False, index=True)
    category = Column(String(120), nullable=False, index=True)
    unit_price = Column(Money, nullable=False, default=0)
    stock_on_hand = Column(Quantity, nullable=False, default=0)
    minimum_stock = Column(Quantity, nullable=False, default=config.DEFAULT_MINIMUM_STOCK)
    image_ref = Column(String(1024), nullable=True)

    __table_args__ = (
        CheckConstraint('unit_price >= 0', name='inventory_unit_price_non_negative'),
        CheckConstraint('stock_on_hand >= 0', name='inventory_stock_on_hand_non_negative'),
    )

    def __repr__(self):
        return f"<Item(id={self.id}, name='{self.name}', stock_on_hand={self.stock_on_hand})>"


class Sale(Base):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(String(10), nullable=False) # plain 'YYYY-MM-DD', no timezone
    item_id = Column(Integer, ForeignKey("inventory.id"), nullable=False, index=True)
    item_name_snapshot = Column(String(255), nullable=False, default="")
    quantity = Column(Quantity, nullable=False)
    total_amount = Column(Money, nullable=False)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='sales_quantity_positive'),
        Index('ix_sales_date_id', 'date', 'id'),
    )

    def __repr__(self):
        return f"<Sale(id={self.id}, item_id={self.item_id}, quantity={self.quantity})>"


class WorkshopConsumption(Base):
    """Material used in the workshop. Recorded for costing only; stock is not touched."""
    __tablename__ = "workshop_consumption"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(String(10), nullable=False)
    item_id = Column(Integer, nullable=False, index=True)
    item_name = Column(String(255), nullable=False)
    quantity = Column(Quantity, nullable=False)
    amount = Column(Money, nullable=False)
    boards = Column(Quantity, nullable=True)
    posts = Column(Quantity, nullable=True)
    sale_value = Column(Money, nullable=True)

    def __repr__(self):
        return f"<WorkshopConsumption(id={self.id}, item_id={self.item_id}, quantity={self.quantity})>"
