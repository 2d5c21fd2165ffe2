import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from synergy_delivery import services
from synergy_delivery.config import settings
from synergy_delivery.delivery_service import DeliveryService
from synergy_delivery.models import DeliveryRate
from synergy_delivery.schemas import RateRequest, ShippingRate

logger = logging.getLogger(__name__)


def _route_key(request: RateRequest) -> dict:
    dims = request.package_details.dimensions
    return {
        "origin_city": request.origin_address.city,
        "origin_country": request.origin_address.country,
        "destination_city": request.destination_address.city,
        "destination_country": request.destination_address.country,
        "weight": request.package_details.weight,
        "length": dims.length,
        "width": dims.width,
        "height": dims.height,
    }


def _to_shipping_rate(row: DeliveryRate) -> ShippingRate:
    return ShippingRate(
        service_name=row.service_name,
        cost=row.cost,
        currency=row.currency,
        estimated_days=row.estimated_days,
        description=row.description or "",
        provider=row.delivery_provider,
        restrictions=row.restrictions or [],
    )


async def _quote_provider(
    db: Session,
    delivery_service: DeliveryService,
    request: RateRequest,
    provider: str,
    key: dict,
    now: datetime
) -> List[ShippingRate]:
    cached = services.get_cached_delivery_rates(db, provider=provider, now=now, **key)
    if cached:
        logger.debug(f"Rate cache hit for {provider}: {key['origin_city']} -> {key['destination_city']}")
        return [_to_shipping_rate(row) for row in cached]

    rates = await delivery_service.get_shipping_rates_from_provider(request, provider)
    if not rates:
        return rates

    expires_at = now + timedelta(minutes=settings.rate_cache_ttl_minutes)
    try:
        for rate in rates:
            services.cache_delivery_rate(db, rate=rate, expires_at=expires_at, commit=False, **key)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"⚠️ Failed to cache delivery rates from {provider}: {e}")

    return rates


async def quote_shipping_rates(
    db: Session,
    delivery_service: DeliveryService,
    request: RateRequest,
    provider: Optional[str] = None,
    now: Optional[datetime] = None
) -> List[ShippingRate]:
    """Shipping rates for the route and package from one provider or all of them.

    The cache is read and filled per provider, so a quote for every provider
    never stops at rows left by an earlier single-provider quote.
    """
    now = now or datetime.utcnow()
    key = _route_key(request)
    providers = [provider] if provider else delivery_service.get_available_providers()

    all_rates: List[ShippingRate] = []
    for name in providers:
        all_rates.extend(await _quote_provider(db, delivery_service, request, name, key, now))

    return sorted(all_rates, key=lambda rate: rate.cost)
