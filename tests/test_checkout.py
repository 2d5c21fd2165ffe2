import asyncio

from synergy_delivery.checkout import (
    PackageLine,
    aggregate_package_profile,
    handle_checkout_session_completed,
    initialize_order_delivery,
)
from synergy_delivery.delivery_service import DeliveryService
from synergy_delivery.models import (
    CartItem,
    DeliveryShipment,
    DeliveryTrackingUpdate,
    Order,
    OrderStatusHistory,
)


class FailingProvider:
    name = "Failing"

    async def create_shipment(self, request):
        raise RuntimeError("courier down")


def checkout_session(session_id="cs_test_1", user_id="user_1"):
    return {
        "id": session_id,
        "payment_intent": "pi_test_1",
        "metadata": {"userId": user_id},
    }


def test_package_profile_defaults_and_weights():
    profile = aggregate_package_profile([
        PackageLine(quantity=2),
        PackageLine(quantity=1, weight=300),
    ])

    assert profile.total_weight == 1300
    assert profile.weight_kg == 1.3
    assert profile.length == 20
    assert profile.width == 15
    assert profile.stacked_height == 30
    assert profile.height == 30


def test_package_profile_takes_largest_footprint():
    profile = aggregate_package_profile([
        PackageLine(quantity=1, length=35, width=10),
        PackageLine(quantity=1, length=12, width=22),
    ])

    assert profile.length == 35
    assert profile.width == 22


def test_package_height_is_capped():
    profile = aggregate_package_profile([PackageLine(quantity=4, height=12), PackageLine(quantity=1)])

    assert profile.stacked_height == 58
    assert profile.height == 50


def test_checkout_creates_order_and_shipment(db, delivery_service, make_customer):
    make_customer("user_1", cart=[
        (2, {}),
        (1, {"weight": 300, "length": 30, "height": 40}),
    ])

    order = asyncio.run(handle_checkout_session_completed(db, delivery_service, checkout_session()))

    assert order is not None
    db.expire_all()
    order = db.get(Order, order.id)
    assert order.status == "confirmed"
    assert order.payment_status == "paid"
    assert order.stripe_payment_intent_id == "pi_test_1"
    assert order.subtotal == 30
    assert order.order_number.startswith("ORD-")
    assert len(order.items) == 2
    assert db.query(CartItem).filter_by(user_id="user_1").count() == 0
    assert db.query(OrderStatusHistory).filter_by(order_id=order.id).count() == 1

    shipment = db.query(DeliveryShipment).filter_by(order_id=order.id).one()
    assert shipment.tracking_number == order.tracking_number
    assert order.delivery_provider == "mock"
    assert order.estimated_delivery == shipment.estimated_delivery
    assert shipment.package_weight == 1.3
    assert shipment.package_length == 30
    assert shipment.package_width == 15
    assert shipment.package_height == 50
    assert shipment.destination_city == "Dubai"
    assert shipment.origin_name == "Synergy Foods"
    assert shipment.status == "pending"
    assert shipment.provider_response["success"] is True

    updates = db.query(DeliveryTrackingUpdate).filter_by(shipment_id=shipment.id).all()
    assert [u.status for u in updates] == ["pending"]
    assert updates[0].timestamp == shipment.created_at


def test_replayed_session_creates_single_order(db, delivery_service, make_customer):
    make_customer("user_1", cart=[(1, {})])

    first = asyncio.run(handle_checkout_session_completed(db, delivery_service, checkout_session()))
    second = asyncio.run(handle_checkout_session_completed(db, delivery_service, checkout_session()))

    assert first.id == second.id
    assert db.query(Order).count() == 1
    assert db.query(DeliveryShipment).count() == 1


def test_checkout_without_user_metadata(db, delivery_service):
    session = {"id": "cs_test_1", "metadata": {}}

    assert asyncio.run(handle_checkout_session_completed(db, delivery_service, session)) is None
    assert db.query(Order).count() == 0


def test_checkout_with_empty_cart(db, delivery_service, make_customer):
    make_customer("user_1")

    assert asyncio.run(handle_checkout_session_completed(db, delivery_service, checkout_session())) is None


def test_delivery_failure_keeps_order(db, make_customer):
    make_customer("user_1", cart=[(1, {})])
    service = DeliveryService()
    service.register_provider("mock", FailingProvider())

    order = asyncio.run(handle_checkout_session_completed(db, service, checkout_session()))

    db.expire_all()
    order = db.get(Order, order.id)
    assert order.payment_status == "paid"
    assert order.tracking_number is None
    assert db.query(DeliveryShipment).count() == 0


def test_delivery_without_providers_keeps_order(db, make_customer):
    make_customer("user_1", cart=[(1, {})])

    order = asyncio.run(handle_checkout_session_completed(db, DeliveryService(), checkout_session()))

    assert db.get(Order, order.id) is not None
    assert db.query(DeliveryShipment).count() == 0


def test_initialize_delivery_is_idempotent(db, delivery_service, make_customer):
    make_customer("user_1", cart=[(1, {})])
    order = asyncio.run(handle_checkout_session_completed(db, delivery_service, checkout_session()))
    tracking_number = order.tracking_number

    response = asyncio.run(initialize_order_delivery(db, delivery_service, order))

    assert response.success is True
    assert response.tracking_number == tracking_number
    assert db.query(DeliveryShipment).count() == 1
