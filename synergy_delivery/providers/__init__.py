from synergy_delivery.providers.base import DeliveryProvider
from synergy_delivery.providers.mock import MockDeliveryProvider

__all__ = ["DeliveryProvider", "MockDeliveryProvider"]
