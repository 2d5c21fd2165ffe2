import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from synergy_delivery.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    sku = Column(String(100))
    price = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    # Shipping profile, grams and centimetres
    weight = Column(Integer)
    length = Column(Float)
    width = Column(Float)
    height = Column(Float)


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    product = relationship("Product")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_email = Column(String(255), nullable=False)

    status = Column(String(30), nullable=False, default="pending", index=True)
    payment_status = Column(String(30), nullable=False, default="pending")
    payment_method = Column(String(30))
    stripe_session_id = Column(String(255), unique=True, index=True)
    stripe_payment_intent_id = Column(String(255))

    subtotal = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    shipping_cost = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    total = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    currency = Column(String(3), nullable=False, default="AED")

    order_notes = Column(Text)
    shipping_method = Column(String(50))
    tracking_number = Column(String(100), index=True)
    delivery_provider = Column(String(50))
    estimated_delivery = Column(DateTime)
    shipped_at = Column(DateTime)
    delivered_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    status_history = relationship("OrderStatusHistory", back_populates="order", cascade="all, delete-orphan")
    shipment = relationship("DeliveryShipment", back_populates="order", uselist=False, cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)

    product_title = Column(String(255), nullable=False)
    product_slug = Column(String(255), nullable=False)
    product_sku = Column(String(100))
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    total_price = Column(Numeric(10, 2, asdecimal=False), nullable=False)

    # Snapshot of the shipping profile at time of purchase
    product_weight = Column(Integer)
    product_length = Column(Float)
    product_width = Column(Float)
    product_height = Column(Float)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    previous_status = Column(String(30))
    new_status = Column(String(30), nullable=False)
    change_reason = Column(Text)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    order = relationship("Order", back_populates="status_history")


class StripeWebhookEvent(Base):
    __tablename__ = "stripe_webhook_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    stripe_event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(255))
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_attempt_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime)
    last_error = Column(Text)


class DeliveryShipment(Base):
    __tablename__ = "delivery_shipments"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    tracking_number = Column(String(100), unique=True, nullable=False)
    delivery_provider = Column(String(50), nullable=False)

    origin_name = Column(String(255), nullable=False)
    origin_phone = Column(String(50), nullable=False)
    origin_street = Column(String(255), nullable=False)
    origin_city = Column(String(100), nullable=False)
    origin_state = Column(String(100), nullable=False)
    origin_country = Column(String(2), nullable=False)
    origin_postal_code = Column(String(20), nullable=False)

    destination_name = Column(String(255), nullable=False)
    destination_phone = Column(String(50), nullable=False)
    destination_street = Column(String(255), nullable=False)
    destination_city = Column(String(100), nullable=False)
    destination_state = Column(String(100), nullable=False)
    destination_country = Column(String(2), nullable=False)
    destination_postal_code = Column(String(20), nullable=False)

    package_weight = Column(Float, nullable=False)
    package_length = Column(Float, nullable=False)
    package_width = Column(Float, nullable=False)
    package_height = Column(Float, nullable=False)
    package_description = Column(Text)

    status = Column(String(30), nullable=False, default="pending")
    estimated_delivery = Column(DateTime)
    actual_delivery = Column(DateTime)
    shipping_cost = Column(Numeric(10, 2, asdecimal=False))
    currency = Column(String(3), nullable=False, default="AED")
    provider_response = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    order = relationship("Order", back_populates="shipment")
    tracking_updates = relationship(
        "DeliveryTrackingUpdate", back_populates="shipment", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("delivery_shipments_order_id_idx", "order_id"),
        Index("delivery_shipments_tracking_number_idx", "tracking_number"),
        Index("delivery_shipments_status_idx", "status"),
        Index("delivery_shipments_provider_idx", "delivery_provider"),
        Index("delivery_shipments_created_at_idx", "created_at"),
    )


class DeliveryTrackingUpdate(Base):
    __tablename__ = "delivery_tracking_updates"

    id = Column(String(36), primary_key=True, default=_uuid)
    shipment_id = Column(String(36), ForeignKey("delivery_shipments.id", ondelete="CASCADE"), nullable=False)
    tracking_number = Column(String(100), nullable=False)

    status = Column(String(30), nullable=False)
    location = Column(String(255))
    description = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    provider_data = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    shipment = relationship("DeliveryShipment", back_populates="tracking_updates")

    __table_args__ = (
        Index("delivery_tracking_updates_shipment_id_idx", "shipment_id"),
        Index("delivery_tracking_updates_tracking_number_idx", "tracking_number"),
        Index("delivery_tracking_updates_timestamp_idx", "timestamp"),
    )


class DeliveryRate(Base):
    __tablename__ = "delivery_rates"

    id = Column(String(36), primary_key=True, default=_uuid)

    origin_city = Column(String(100), nullable=False)
    origin_country = Column(String(2), nullable=False)
    destination_city = Column(String(100), nullable=False)
    destination_country = Column(String(2), nullable=False)

    weight = Column(Float, nullable=False)
    length = Column(Float, nullable=False)
    width = Column(Float, nullable=False)
    height = Column(Float, nullable=False)

    delivery_provider = Column(String(50), nullable=False)
    service_name = Column(String(100), nullable=False)
    cost = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    currency = Column(String(3), nullable=False, default="AED")
    estimated_days = Column(String(20), nullable=False)
    description = Column(Text)
    restrictions = Column(JSON)

    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index(
            "delivery_rates_route_idx",
            "origin_city",
            "origin_country",
            "destination_city",
            "destination_country",
        ),
        Index("delivery_rates_provider_idx", "delivery_provider"),
        Index("delivery_rates_expires_at_idx", "expires_at"),
    )
