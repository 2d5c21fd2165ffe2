from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ShipmentStatus(str, Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = [
    ShipmentStatus.PENDING.value,
    ShipmentStatus.PICKED_UP.value,
    ShipmentStatus.IN_TRANSIT.value,
    ShipmentStatus.OUT_FOR_DELIVERY.value,
]

TERMINAL_STATUSES = [
    ShipmentStatus.DELIVERED.value,
    ShipmentStatus.FAILED.value,
    ShipmentStatus.CANCELLED.value,
]


class DeliveryAddress(BaseModel):
    name: str
    phone: str
    street: str
    city: str
    state: str = ""
    country: str
    postal_code: str = ""


class PackageDimensions(BaseModel):
    length: float = Field(gt=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class PackageDetails(BaseModel):
    weight: float = Field(gt=0, description="Weight in kg")
    dimensions: PackageDimensions
    description: str = ""


class RateRequest(BaseModel):
    origin_address: DeliveryAddress
    destination_address: DeliveryAddress
    package_details: PackageDetails


class ShipmentRequest(RateRequest):
    order_id: str
    order_number: str


class TrackingUpdate(BaseModel):
    status: ShipmentStatus
    location: Optional[str] = None
    timestamp: datetime
    description: str


class ShipmentResponse(BaseModel):
    success: bool
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    cost: Optional[float] = None
    provider: Optional[str] = None
    error: Optional[str] = None
    updates: List[TrackingUpdate] = []


class ShippingRate(BaseModel):
    service_name: str
    cost: float
    currency: str = "AED"
    estimated_days: str
    description: str = ""
    provider: Optional[str] = None
    restrictions: List[str] = []


# HTTP payloads

class RateQuotePayload(BaseModel):
    destination_address: DeliveryAddress
    package_details: PackageDetails
    provider: Optional[str] = None


class CreateShipmentPayload(BaseModel):
    order_id: str
    destination_address: DeliveryAddress
    package_details: PackageDetails
    provider: str = "mock"


class TrackingActionPayload(BaseModel):
    action: str
