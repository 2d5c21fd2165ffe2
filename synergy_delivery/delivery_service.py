import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from synergy_delivery.config import Settings, settings
from synergy_delivery.providers.base import DeliveryProvider
from synergy_delivery.providers.mock import MockDeliveryProvider
from synergy_delivery.schemas import (
    DeliveryAddress,
    RateRequest,
    ShipmentRequest,
    ShipmentResponse,
    ShippingRate,
    TrackingUpdate,
)

logger = logging.getLogger(__name__)


class DeliveryServiceConfig(BaseModel):
    store_name: str
    store_phone: str
    street: str
    city: str
    state: str
    country: str
    postal_code: str

    @classmethod
    def from_settings(cls, config: Settings) -> "DeliveryServiceConfig":
        return cls(
            store_name=config.store_name,
            store_phone=config.store_phone,
            street=config.store_address,
            city=config.store_city,
            state=config.store_state,
            country=config.store_country,
            postal_code=config.store_postal_code,
        )


class DeliveryService:
    """Registry of delivery providers and the entry point for shipment operations.

    Per-request operations never raise: provider failures are logged and turned
    into an unsuccessful response, an empty list or ``False``.
    """

    def __init__(self, config: Optional[DeliveryServiceConfig] = None):
        self.providers: Dict[str, DeliveryProvider] = {}
        self.default_provider: Optional[str] = None
        self.config = config or DeliveryServiceConfig.from_settings(settings)

    def register_provider(self, name: str, provider: DeliveryProvider):
        self.providers[name] = provider
        if not self.default_provider:
            self.default_provider = name
        logger.info(f"Delivery provider '{name}' registered")

    def set_default_provider(self, name: str):
        if name not in self.providers:
            raise ValueError(f"Provider '{name}' not found")
        self.default_provider = name
        logger.info(f"Default delivery provider set to '{name}'")

    def update_config(self, **changes):
        self.config = self.config.model_copy(update=changes)

    def get_origin_address(self) -> DeliveryAddress:
        return DeliveryAddress(
            name=self.config.store_name,
            phone=self.config.store_phone,
            street=self.config.street,
            city=self.config.city,
            state=self.config.state,
            country=self.config.country,
            postal_code=self.config.postal_code,
        )

    def get_available_providers(self) -> List[str]:
        return list(self.providers)

    def is_ready(self) -> bool:
        return len(self.providers) > 0

    def get_status(self) -> Dict[str, Any]:
        return {
            "providers_count": len(self.providers),
            "default_provider": self.default_provider,
            "available_providers": self.get_available_providers(),
            "is_ready": self.is_ready(),
            "config": self.config.model_dump(),
        }

    def resolve_provider_name(self, name: Optional[str] = None) -> Optional[str]:
        """Registered provider that serves ``name``; unknown names fall back to the default."""
        if name and name in self.providers:
            return name
        return self.default_provider

    def _get_provider(self, name: Optional[str] = None) -> Optional[DeliveryProvider]:
        resolved = self.resolve_provider_name(name)
        if not resolved:
            return None
        return self.providers.get(resolved)

    async def create_shipment(
        self,
        request: ShipmentRequest,
        provider_name: Optional[str] = None,
    ) -> ShipmentResponse:
        provider = self._get_provider(provider_name)
        if not provider:
            return ShipmentResponse(success=False, error="No delivery provider available")

        used = self.resolve_provider_name(provider_name)

        try:
            result = await provider.create_shipment(request)
        except Exception as e:
            logger.exception(f"❌ Shipment creation error for order {request.order_id}: {e}")
            return ShipmentResponse(success=False, error=str(e) or "Failed to create shipment")

        if result.success:
            logger.info(
                f"✅ Shipment created: order={request.order_id}, "
                f"tracking={result.tracking_number}, provider={used}"
            )
        else:
            logger.error(
                f"❌ Shipment creation failed: order={request.order_id}, "
                f"error={result.error}, provider={used}"
            )

        return result

    async def track_shipment(
        self,
        tracking_number: str,
        provider_name: Optional[str] = None,
    ) -> List[TrackingUpdate]:
        provider = self._get_provider(provider_name)
        if not provider:
            logger.error("No delivery provider available for tracking")
            return []

        try:
            updates = await provider.track_shipment(tracking_number)
        except Exception as e:
            logger.exception(f"Tracking error for {tracking_number}: {e}")
            return []

        logger.info(f"📦 Tracking updates retrieved for {tracking_number}: {len(updates)}")
        return updates

    async def cancel_shipment(
        self,
        tracking_number: str,
        provider_name: Optional[str] = None,
    ) -> bool:
        provider = self._get_provider(provider_name)
        if not provider:
            logger.error("No delivery provider available for cancellation")
            return False

        try:
            result = await provider.cancel_shipment(tracking_number)
        except Exception as e:
            logger.exception(f"Cancellation error for {tracking_number}: {e}")
            return False

        logger.info(
            f"Shipment cancellation {'successful' if result else 'rejected'} for {tracking_number}"
        )
        return result

    async def get_shipping_rates(self, request: RateRequest) -> List[ShippingRate]:
        all_rates: List[ShippingRate] = []

        for name, provider in self.providers.items():
            try:
                rates = await provider.get_shipping_rates(request)
            except Exception as e:
                logger.error(f"⚠️ Failed to get rates from {name}: {e}")
                continue
            all_rates.extend(rate.model_copy(update={"provider": name}) for rate in rates)

        return sorted(all_rates, key=lambda rate: rate.cost)

    async def get_shipping_rates_from_provider(
        self,
        request: RateRequest,
        provider_name: str,
    ) -> List[ShippingRate]:
        provider = self.providers.get(provider_name)
        if not provider:
            logger.error(f"Provider '{provider_name}' not found")
            return []

        try:
            rates = await provider.get_shipping_rates(request)
        except Exception as e:
            logger.error(f"⚠️ Failed to get rates from {provider_name}: {e}")
            return []

        return [rate.model_copy(update={"provider": provider_name}) for rate in rates]


def build_delivery_service(session_factory: Callable[[], Session]) -> DeliveryService:
    """Create the process-wide delivery service with the providers this deployment offers."""
    service = DeliveryService()
    service.register_provider("mock", MockDeliveryProvider(session_factory))
    if settings.default_delivery_provider in service.providers:
        service.set_default_provider(settings.default_delivery_provider)
    return service
