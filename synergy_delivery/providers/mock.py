"""Mock courier that simulates a third-party shipping API.

The provider keeps no state of its own. Tracking history is synthesized from
the persisted shipment's creation time and destination, so every process
sees the same timeline for the same shipment.
"""

import asyncio
import logging
import random
import string
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from synergy_delivery.models import DeliveryShipment, DeliveryTrackingUpdate
from synergy_delivery.providers.base import DeliveryProvider
from synergy_delivery.schemas import (
    RateRequest,
    ShipmentRequest,
    ShipmentResponse,
    ShipmentStatus,
    ShippingRate,
    TrackingUpdate,
)

logger = logging.getLogger(__name__)

BASE_RATE = 25  # AED
WEIGHT_RATE = 2  # AED per kg
VOLUME_RATE = 0.5  # AED per 1000 cm3

DUBAI_CITIES = ["dubai", "dxb"]
NEARBY_EMIRATES = ["sharjah", "ajman", "ras al khaimah", "umm al quwain"]
FAR_EMIRATES = ["abu dhabi", "al ain", "fujairah"]

PROCESSING_CENTER = "Processing Center, Dubai"

# (hours after creation, status, location template, description)
MILESTONES = [
    (0, ShipmentStatus.PENDING, PROCESSING_CENTER, "Shipment created and pending pickup"),
    (2, ShipmentStatus.PICKED_UP, PROCESSING_CENTER, "Shipment confirmed and ready for pickup"),
    (6, ShipmentStatus.PICKED_UP, "Dubai Distribution Center", "Package picked up by courier"),
    (24, ShipmentStatus.IN_TRANSIT, "{city} Distribution Center", "Package in transit to destination"),
    (48, ShipmentStatus.OUT_FOR_DELIVERY, "{city} Local Facility", "Package out for delivery"),
    (72, ShipmentStatus.DELIVERED, "{street}", "Package delivered successfully"),
]


def generate_tracking_number(provider_name: str) -> str:
    prefix = provider_name[:3].upper()
    suffix = "".join(random.choices(string.digits + string.ascii_uppercase, k=10))
    return f"{prefix}{suffix}"


def calculate_distance_factor(city: str, country: str) -> float:
    if country.upper() != "AE":
        return 3.0

    city_lower = city.lower()

    if any(c in city_lower for c in DUBAI_CITIES):
        return 1.0
    if any(c in city_lower for c in NEARBY_EMIRATES):
        return 1.3
    if any(c in city_lower for c in FAR_EMIRATES):
        return 1.6

    return 1.2


def calculate_shipping_cost(request: RateRequest) -> int:
    package = request.package_details
    dims = package.dimensions

    weight_cost = package.weight * WEIGHT_RATE
    volume_cost = dims.length * dims.width * dims.height / 1000 * VOLUME_RATE
    factor = calculate_distance_factor(
        request.destination_address.city,
        request.destination_address.country,
    )

    raw = (BASE_RATE + weight_cost + volume_cost) * factor
    return int(Decimal(str(raw)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def generate_tracking_updates(
    created_at: datetime,
    destination_city: str,
    destination_street: str,
    now: datetime,
) -> List[TrackingUpdate]:
    """Milestones unlocked by the time elapsed since ``created_at``, oldest first."""
    hours_elapsed = (now - created_at).total_seconds() / 3600

    updates = []
    for threshold, status, location, description in MILESTONES:
        if threshold and hours_elapsed < threshold:
            break
        updates.append(TrackingUpdate(
            status=status,
            location=location.format(city=destination_city, street=destination_street),
            timestamp=created_at + timedelta(hours=threshold),
            description=description,
        ))

    return updates


class MockDeliveryProvider(DeliveryProvider):

    def __init__(
        self,
        session_factory: Callable[[], Session],
        name: str = "Mock Delivery",
        latency: float = 0.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.name = name
        self.session_factory = session_factory
        self.latency = latency
        self._now = clock or datetime.utcnow

    async def _simulate_latency(self):
        if self.latency:
            await asyncio.sleep(self.latency)

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResponse:
        await self._simulate_latency()

        now = self._now()
        tracking_number = generate_tracking_number(self.name)
        estimated_delivery = now + timedelta(days=random.randint(2, 5))

        logger.debug(f"Mock shipment {tracking_number} booked for order {request.order_number}")

        return ShipmentResponse(
            success=True,
            tracking_number=tracking_number,
            estimated_delivery=estimated_delivery,
            cost=calculate_shipping_cost(request),
            provider=self.name,
            updates=[TrackingUpdate(
                status=ShipmentStatus.PENDING,
                location=PROCESSING_CENTER,
                timestamp=now,
                description="Shipment created and pending pickup",
            )],
        )

    async def track_shipment(self, tracking_number: str) -> List[TrackingUpdate]:
        await self._simulate_latency()

        db = self.session_factory()
        try:
            shipment = db.query(DeliveryShipment).filter(
                DeliveryShipment.tracking_number == tracking_number
            ).first()

            if not shipment:
                return []

            if shipment.status == ShipmentStatus.CANCELLED.value:
                return self._cancelled_history(db, shipment)

            return generate_tracking_updates(
                shipment.created_at,
                shipment.destination_city,
                shipment.destination_street,
                self._now(),
            )
        finally:
            db.close()

    def _cancelled_history(self, db: Session, shipment: DeliveryShipment) -> List[TrackingUpdate]:
        updates = generate_tracking_updates(
            shipment.created_at,
            shipment.destination_city,
            shipment.destination_street,
            shipment.created_at,
        )
        cancellations = db.query(DeliveryTrackingUpdate).filter(
            DeliveryTrackingUpdate.shipment_id == shipment.id,
            DeliveryTrackingUpdate.status == ShipmentStatus.CANCELLED.value,
        ).order_by(DeliveryTrackingUpdate.timestamp).all()

        for row in cancellations:
            updates.append(TrackingUpdate(
                status=ShipmentStatus.CANCELLED,
                location=row.location,
                timestamp=row.timestamp,
                description=row.description,
            ))
        return updates

    async def cancel_shipment(self, tracking_number: str) -> bool:
        await self._simulate_latency()

        db = self.session_factory()
        try:
            shipment = db.query(DeliveryShipment).filter(
                DeliveryShipment.tracking_number == tracking_number
            ).first()

            if not shipment:
                return False

            now = self._now()
            history = generate_tracking_updates(
                shipment.created_at,
                shipment.destination_city,
                shipment.destination_street,
                now,
            )

            # Only shipments that have not been picked up can be cancelled
            can_cancel = shipment.status == ShipmentStatus.PENDING.value and all(
                u.status == ShipmentStatus.PENDING for u in history
            )

            if can_cancel:
                shipment.status = ShipmentStatus.CANCELLED.value
                shipment.updated_at = now
                db.add(DeliveryTrackingUpdate(
                    shipment_id=shipment.id,
                    tracking_number=tracking_number,
                    status=ShipmentStatus.CANCELLED.value,
                    location=PROCESSING_CENTER,
                    description="Shipment cancelled at customer request",
                    timestamp=now,
                ))
                db.commit()

            return can_cancel
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def get_shipping_rates(self, request: RateRequest) -> List[ShippingRate]:
        await self._simulate_latency()

        base_rate = calculate_shipping_cost(request)

        return [
            ShippingRate(
                service_name="Standard Delivery",
                cost=base_rate,
                currency="AED",
                estimated_days="3-5",
                description="Standard delivery within UAE",
            ),
            ShippingRate(
                service_name="Express Delivery",
                cost=base_rate * 1.5,
                currency="AED",
                estimated_days="1-2",
                description="Express delivery within UAE",
            ),
            ShippingRate(
                service_name="Same Day Delivery",
                cost=base_rate * 2.5,
                currency="AED",
                estimated_days="1",
                description="Same day delivery (Dubai only)",
                restrictions=["Available only in Dubai"],
            ),
        ]
