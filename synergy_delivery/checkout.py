"""Turns a paid checkout session into an order and books its delivery."""

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from synergy_delivery import services
from synergy_delivery.config import settings
from synergy_delivery.delivery_service import DeliveryService
from synergy_delivery.models import (
    CartItem,
    Order,
    OrderItem,
    OrderStatusHistory,
    User,
)
from synergy_delivery.schemas import (
    DeliveryAddress,
    PackageDetails,
    PackageDimensions,
    ShipmentRequest,
    ShipmentResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_ITEM_WEIGHT = 500  # grams
DEFAULT_ITEM_LENGTH = 20  # cm
DEFAULT_ITEM_WIDTH = 15  # cm
DEFAULT_ITEM_HEIGHT = 10  # cm
MAX_PACKAGE_HEIGHT = 50  # cm


@dataclass(frozen=True)
class PackageLine:
    quantity: int
    weight: Optional[float] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


@dataclass(frozen=True)
class PackageProfile:
    total_weight: float  # grams
    length: float
    width: float
    stacked_height: float
    height: float

    @property
    def weight_kg(self) -> float:
        return self.total_weight / 1000


def aggregate_package_profile(lines: Iterable[PackageLine]) -> PackageProfile:
    total_weight = 0.0
    max_length = 0.0
    max_width = 0.0
    total_height = 0.0

    for line in lines:
        total_weight += (line.weight or DEFAULT_ITEM_WEIGHT) * line.quantity
        max_length = max(max_length, line.length or DEFAULT_ITEM_LENGTH)
        max_width = max(max_width, line.width or DEFAULT_ITEM_WIDTH)
        total_height += (line.height or DEFAULT_ITEM_HEIGHT) * line.quantity

    return PackageProfile(
        total_weight=total_weight,
        length=max_length,
        width=max_width,
        stacked_height=total_height,
        height=min(total_height, MAX_PACKAGE_HEIGHT),
    )


def package_line_from_order_item(item: OrderItem) -> PackageLine:
    return PackageLine(
        quantity=item.quantity,
        weight=item.product_weight,
        length=item.product_length,
        width=item.product_width,
        height=item.product_height,
    )


def placeholder_destination_address() -> DeliveryAddress:
    # TODO: thread the customer's shipping address through the checkout session metadata
    return DeliveryAddress(
        name=settings.placeholder_name,
        phone=settings.placeholder_phone,
        street=settings.placeholder_street,
        city=settings.placeholder_city,
        state=settings.placeholder_state,
        country=settings.placeholder_country,
        postal_code=settings.placeholder_postal_code,
    )


async def create_order_shipment(
    db: Session,
    delivery_service: DeliveryService,
    order: Order,
    request: ShipmentRequest,
    provider_name: Optional[str] = None,
) -> ShipmentResponse:
    """Book a shipment for the order unless it already has one, and record it."""
    existing = services.get_shipment_by_order_id(db, order.id)
    if existing:
        logger.info(f"Order {order.id} already has shipment {existing.tracking_number}")
        return ShipmentResponse(
            success=True,
            tracking_number=existing.tracking_number,
            estimated_delivery=existing.estimated_delivery,
            cost=existing.shipping_cost,
            provider=existing.delivery_provider,
        )

    response = await delivery_service.create_shipment(request, provider_name)
    if not response.success:
        return response

    provider = delivery_service.resolve_provider_name(provider_name)
    created_at = response.updates[0].timestamp if response.updates else datetime.utcnow()
    origin = request.origin_address
    destination = request.destination_address
    package = request.package_details

    order.tracking_number = response.tracking_number
    order.delivery_provider = provider
    order.estimated_delivery = response.estimated_delivery
    order.updated_at = datetime.utcnow()

    shipment = services.create_shipment(
        db,
        order_id=order.id,
        tracking_number=response.tracking_number,
        delivery_provider=provider,
        origin_name=origin.name,
        origin_phone=origin.phone,
        origin_street=origin.street,
        origin_city=origin.city,
        origin_state=origin.state,
        origin_country=origin.country,
        origin_postal_code=origin.postal_code,
        destination_name=destination.name,
        destination_phone=destination.phone,
        destination_street=destination.street,
        destination_city=destination.city,
        destination_state=destination.state,
        destination_country=destination.country,
        destination_postal_code=destination.postal_code,
        package_weight=package.weight,
        package_length=package.dimensions.length,
        package_width=package.dimensions.width,
        package_height=package.dimensions.height,
        package_description=package.description,
        estimated_delivery=response.estimated_delivery,
        shipping_cost=response.cost,
        provider_response=response.model_dump(mode="json"),
        created_at=created_at,
    )

    for update in response.updates:
        services.add_tracking_update(
            db,
            shipment.id,
            shipment.tracking_number,
            update.status.value,
            update.description,
            update.timestamp,
            location=update.location,
            commit=False,
        )
    db.commit()

    return response


async def initialize_order_delivery(
    db: Session,
    delivery_service: DeliveryService,
    order: Order,
    provider_name: str = "mock",
) -> Optional[ShipmentResponse]:
    """Best-effort shipment booking after payment. Never raises."""
    try:
        logger.info(f"Initializing delivery for order {order.id}")

        lines = [package_line_from_order_item(item) for item in order.items]
        if not lines:
            logger.warning(f"⚠️ Order {order.id} has no items, skipping delivery")
            return None

        profile = aggregate_package_profile(lines)

        request = ShipmentRequest(
            order_id=order.id,
            order_number=order.order_number,
            origin_address=delivery_service.get_origin_address(),
            destination_address=placeholder_destination_address(),
            package_details=PackageDetails(
                weight=profile.weight_kg,
                dimensions=PackageDimensions(
                    length=profile.length,
                    width=profile.width,
                    height=profile.height,
                ),
                description=f"Order {order.order_number} - {len(lines)} items",
            ),
        )

        response = await create_order_shipment(db, delivery_service, order, request, provider_name)

        if response.success:
            logger.info(f"✅ Delivery initialized for order {order.id}, tracking: {response.tracking_number}")
        else:
            logger.error(f"❌ Failed to create shipment for order {order.id}: {response.error}")

        return response

    except Exception as e:
        db.rollback()
        logger.exception(f"❌ Error initializing delivery for order {order.id}: {e}")
        return None


def _generate_order_number(db: Session) -> str:
    order_number = f"ORD-{int(time.time() * 1000) % 10 ** 8:08d}"
    while db.query(Order.id).filter(Order.order_number == order_number).first():
        order_number = f"ORD-{random.randint(0, 10 ** 8 - 1):08d}"
    return order_number


def _payment_intent_id(session: Mapping[str, Any]) -> Optional[str]:
    payment_intent = session.get("payment_intent")
    if payment_intent is None or isinstance(payment_intent, str):
        return payment_intent
    return payment_intent.get("id")


async def handle_checkout_session_completed(
    db: Session,
    delivery_service: DeliveryService,
    session: Mapping[str, Any],
) -> Optional[Order]:
    session_id = session["id"]
    logger.info(f"Processing completed checkout session: {session_id}")

    metadata = session.get("metadata") or {}
    user_id = metadata.get("userId") or metadata.get("user_id")

    if not user_id:
        logger.error(f"Missing userId in session metadata: {session_id}")
        return None

    existing = db.query(Order).filter(Order.stripe_session_id == session_id).first()
    if existing:
        logger.info(f"Checkout session {session_id} already produced order {existing.order_number}")
        await initialize_order_delivery(db, delivery_service, existing)
        return existing

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.error(f"User not found: {user_id}")
        return None

    cart_items = [
        item for item in db.query(CartItem).filter(CartItem.user_id == user_id).all()
        if item.product is not None
    ]
    if not cart_items:
        logger.error(f"No cart items found for user: {user_id}")
        return None

    subtotal = round(sum(item.product.price * item.quantity for item in cart_items), 2)

    order = Order(
        order_number=_generate_order_number(db),
        user_id=user_id,
        customer_email=user.email,
        status="confirmed",
        payment_status="paid",
        payment_method="stripe",
        stripe_session_id=session_id,
        stripe_payment_intent_id=_payment_intent_id(session),
        subtotal=subtotal,
        shipping_cost=0,
        total=subtotal,
        currency="AED",
        order_notes=f"Order created via Stripe Checkout session: {session_id}",
    )
    db.add(order)
    db.flush()

    for item in cart_items:
        product = item.product
        db.add(OrderItem(
            order_id=order.id,
            product_id=product.id,
            product_title=product.title,
            product_slug=product.slug,
            product_sku=product.sku,
            quantity=item.quantity,
            unit_price=product.price,
            total_price=round(product.price * item.quantity, 2),
            product_weight=product.weight,
            product_length=product.length,
            product_width=product.width,
            product_height=product.height,
        ))

    db.add(OrderStatusHistory(
        order_id=order.id,
        previous_status=None,
        new_status="confirmed",
        change_reason="Order created from successful Stripe payment",
        notes=f"Payment completed via Stripe session: {session_id}",
    ))

    db.query(CartItem).filter(CartItem.user_id == user_id).delete(synchronize_session=False)
    db.commit()
    db.refresh(order)

    logger.info(f"✅ Order {order.order_number} created for user {user_id} with {len(cart_items)} items")

    await initialize_order_delivery(db, delivery_service, order)

    return order
