# models.py
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Float, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)


class Counter(Base):
    __tablename__ = "counters"

    # value хранит СЛЕДУЮЩИЙ номер, который будет выдан
    key = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, index=True)
    order_number = Column(Integer, unique=True, index=True, nullable=False)
    user_id = Column(String(128), index=True, nullable=True)

    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(30), nullable=False)
    order_type = Column(String(20), nullable=False)
    neighborhood = Column(String(100), default="")
    street = Column(String(200), default="")
    number = Column(String(20), default="")
    complement = Column(String(200), default="")
    reservation_date = Column(String(10), nullable=True)
    reservation_time = Column(String(5), nullable=True)
    number_of_people = Column(Integer, nullable=True)

    total = Column(Float, nullable=True)
    delivery_fee = Column(Float, default=0)
    payment_method = Column(String(20), nullable=True)
    change_needed = Column(Boolean, default=False)
    change_amount = Column(String(20), default="")
    notes = Column(Text, default="")
    pickup_time_estimate = Column(String(50), nullable=True)

    status = Column(String(20), default="pending", nullable=False)
    payment_status = Column(String(20), default="pending", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(64), ForeignKey("orders.id"), nullable=False)
    product_id = Column(String(64), nullable=False)
    name = Column(String(100), nullable=False)
    size = Column(String(20), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")
