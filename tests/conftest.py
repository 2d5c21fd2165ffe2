from datetime import datetime, timedelta
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from synergy_delivery.database import Base, get_db
from synergy_delivery.delivery_service import DeliveryService
from synergy_delivery.main import app, get_delivery_service
from synergy_delivery.models import (
    CartItem,
    DeliveryShipment,
    DeliveryTrackingUpdate,
    Order,
    Product,
    User,
)
from synergy_delivery.providers.mock import MockDeliveryProvider


@pytest.fixture
def session_factory() -> Callable[[], Session]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def delivery_service(session_factory) -> DeliveryService:
    service = DeliveryService()
    service.register_provider("mock", MockDeliveryProvider(session_factory))
    return service


@pytest.fixture
def client(session_factory, delivery_service) -> TestClient:
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_delivery_service] = lambda: delivery_service
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()


@pytest.fixture
def make_customer(db) -> Callable[..., User]:
    def _make(user_id: str = "user_1", cart: Optional[list] = None) -> User:
        user = User(id=user_id, email=f"{user_id}@example.com", name="Test Customer")
        db.add(user)
        for index, (quantity, profile) in enumerate(cart or []):
            product = Product(
                title=f"Product {user_id}-{index}",
                slug=f"product-{user_id}-{index}",
                sku=f"SKU-{index}",
                price=10.0,
                **profile,
            )
            db.add(product)
            db.flush()
            db.add(CartItem(user_id=user_id, product_id=product.id, quantity=quantity))
        db.commit()
        return user

    return _make


@pytest.fixture
def make_order(db, make_customer) -> Callable[..., Order]:
    def _make(user_id: str = "user_1", order_number: str = "ORD-00000001") -> Order:
        if not db.get(User, user_id):
            make_customer(user_id)
        order = Order(
            order_number=order_number,
            user_id=user_id,
            customer_email=f"{user_id}@example.com",
            status="confirmed",
            payment_status="paid",
            subtotal=20.0,
            total=20.0,
        )
        db.add(order)
        db.commit()
        return order

    return _make


@pytest.fixture
def make_shipment(db, make_order) -> Callable[..., DeliveryShipment]:
    def _make(
        tracking_number: str = "MOC0000000001",
        age: timedelta = timedelta(0),
        status: str = "pending",
        user_id: str = "user_1",
        order: Optional[Order] = None,
        destination_city: str = "Dubai",
    ) -> DeliveryShipment:
        order = order or make_order(user_id=user_id, order_number=f"ORD-{tracking_number}")
        created_at = datetime.utcnow() - age
        shipment = DeliveryShipment(
            order_id=order.id,
            tracking_number=tracking_number,
            delivery_provider="mock",
            origin_name="Synergy Foods",
            origin_phone="+971501234567",
            origin_street="Sheikh Zayed Road, Dubai",
            origin_city="Dubai",
            origin_state="Dubai",
            origin_country="AE",
            origin_postal_code="12345",
            destination_name="Customer",
            destination_phone="+971500000000",
            destination_street="12 Marina Walk",
            destination_city=destination_city,
            destination_state=destination_city,
            destination_country="AE",
            destination_postal_code="00000",
            package_weight=1.3,
            package_length=20,
            package_width=15,
            package_height=30,
            status=status,
            estimated_delivery=created_at + timedelta(days=3),
            shipping_cost=31,
            created_at=created_at,
        )
        db.add(shipment)
        db.flush()
        db.add(DeliveryTrackingUpdate(
            shipment_id=shipment.id,
            tracking_number=tracking_number,
            status="pending",
            location="Processing Center, Dubai",
            description="Shipment created and pending pickup",
            timestamp=created_at,
        ))
        order.tracking_number = tracking_number
        order.delivery_provider = "mock"
        db.commit()
        return shipment

    return _make
