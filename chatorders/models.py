# chatorders/models.py
from sqlalchemy import (
    Column, Integer, String, Numeric, JSON, TIMESTAMP, Boolean, Text,
    ForeignKey, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from .db import Base

ORDER_STATUSES = ("pending", "confirmed", "cancelled")
PAYMENT_STATUSES = ("unpaid", "partial", "paid")
DISCOUNT_TYPES = ("percent", "amount")


class Merchant(Base):
    __tablename__ = "merchants"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    office_days = Column(String, nullable=True)   # e.g. "lunes a viernes"
    office_hours = Column(String, nullable=True)  # e.g. "9 a 13 y 17 a 20"
    created_at = Column(TIMESTAMP, server_default=func.now())


class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    categories = Column(JSON, default=list)
    description = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("merchant_id", "phone", name="uq_client_merchant_phone"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    phone = Column(String, nullable=False)
    full_name = Column(String, nullable=False, default="Cliente WhatsApp")
    dni = Column(String, nullable=True)
    address = Column(String, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())


class Promotion(Base):
    __tablename__ = "promotions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(TIMESTAMP, nullable=False)
    end_date = Column(TIMESTAMP, nullable=True)
    discount_type = Column(String, nullable=False, default="percent")  # "percent" | "amount"
    discount_value = Column(Numeric(10, 2), nullable=False)
    product_ids = Column(JSON, default=list)
    product_tag_labels = Column(JSON, default=list)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (UniqueConstraint("merchant_id", "sequence_number", name="uq_order_merchant_seq"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending")
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    customer_name = Column(String)
    customer_address = Column(String)
    customer_dni = Column(String)

    customer_confirmed = Column(Boolean, nullable=False, default=False)
    customer_confirmed_at = Column(TIMESTAMP, nullable=True)
    inventory_deducted = Column(Boolean, nullable=False, default=False)
    inventory_deducted_at = Column(TIMESTAMP, nullable=True)

    payment_status = Column(String, nullable=False, default="unpaid")
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(TIMESTAMP, server_default=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    promotion_id = Column(Integer, ForeignKey("promotions.id"), nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    promotion = relationship("Promotion")


class Message(Base):
    __tablename__ = "messages"
    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    direction = Column(String, nullable=False)  # "incoming" | "outgoing"
    body = Column(Text)
    external_id = Column(String, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())
