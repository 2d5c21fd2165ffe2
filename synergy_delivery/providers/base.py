"""Delivery provider contract.

Every courier integration implements this interface. The delivery service
programs against it; providers are registered by name at start-up.
"""

from abc import ABC, abstractmethod
from typing import List

from synergy_delivery.schemas import (
    RateRequest,
    ShipmentRequest,
    ShipmentResponse,
    ShippingRate,
    TrackingUpdate,
)


class DeliveryProvider(ABC):
    name: str

    @abstractmethod
    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResponse:
        """Book a shipment with the courier.

        Returns a response with ``success`` set; on failure ``error`` explains why.
        """
        ...

    @abstractmethod
    async def track_shipment(self, tracking_number: str) -> List[TrackingUpdate]:
        """Return the tracking history, oldest first. Unknown numbers give an empty list."""
        ...

    @abstractmethod
    async def cancel_shipment(self, tracking_number: str) -> bool:
        """Cancel a shipment that has not been picked up yet."""
        ...

    @abstractmethod
    async def get_shipping_rates(self, request: RateRequest) -> List[ShippingRate]:
        """Quote the service tiers available for the package and route."""
        ...
