import asyncio
from datetime import datetime, timedelta

from synergy_delivery import rates, services
from synergy_delivery.models import DeliveryRate, DeliveryTrackingUpdate, Order
from synergy_delivery.schemas import (
    DeliveryAddress,
    PackageDetails,
    PackageDimensions,
    RateRequest,
    ShippingRate,
)

ROUTE = {
    "origin_city": "Dubai",
    "origin_country": "AE",
    "destination_city": "Sharjah",
    "destination_country": "AE",
    "weight": 1.3,
    "length": 20.0,
    "width": 15.0,
    "height": 30.0,
}

STANDARD = ShippingRate(
    service_name="Standard Delivery",
    cost=40,
    estimated_days="3-5",
    provider="mock",
)


def test_cached_rates_exclude_expired_rows(db):
    now = datetime(2025, 6, 1, 12, 0)
    services.cache_delivery_rate(db, rate=STANDARD, expires_at=now - timedelta(seconds=1), **ROUTE)

    assert services.get_cached_delivery_rates(db, now=now, **ROUTE) == []

    services.cache_delivery_rate(db, rate=STANDARD, expires_at=now + timedelta(minutes=5), **ROUTE)

    cached = services.get_cached_delivery_rates(db, now=now, **ROUTE)
    assert len(cached) == 1
    assert cached[0].expires_at > now


def test_cached_rates_match_every_dimension(db):
    now = datetime(2025, 6, 1, 12, 0)
    services.cache_delivery_rate(db, rate=STANDARD, expires_at=now + timedelta(hours=1), **ROUTE)

    assert services.get_cached_delivery_rates(db, now=now, **{**ROUTE, "height": 31.0}) == []
    assert services.get_cached_delivery_rates(db, now=now, **{**ROUTE, "destination_city": "Ajman"}) == []
    assert services.get_cached_delivery_rates(db, now=now, provider="other", **ROUTE) == []
    assert len(services.get_cached_delivery_rates(db, now=now, provider="mock", **ROUTE)) == 1


def test_cleanup_expired_rates(db):
    now = datetime(2025, 6, 1, 12, 0)
    services.cache_delivery_rate(db, rate=STANDARD, expires_at=now - timedelta(hours=1), **ROUTE)
    services.cache_delivery_rate(db, rate=STANDARD, expires_at=now - timedelta(minutes=1), **ROUTE)
    services.cache_delivery_rate(db, rate=STANDARD, expires_at=now + timedelta(hours=1), **ROUTE)

    assert services.cleanup_expired_rates(db, now=now) == 2
    assert db.query(DeliveryRate).count() == 1


def test_tracking_updates_newest_first(db, make_shipment):
    shipment = make_shipment()
    services.add_tracking_update(
        db, shipment.id, shipment.tracking_number, "picked_up", "Picked up",
        shipment.created_at + timedelta(hours=6), location="Dubai Distribution Center",
    )

    updates = services.get_tracking_updates(db, shipment.tracking_number)

    assert [u.status for u in updates] == ["picked_up", "pending"]
    assert services.get_tracking_updates_by_shipment_id(db, shipment.id) == updates


def test_update_shipment_status(db, make_shipment):
    shipment = make_shipment()
    delivered_at = datetime(2025, 6, 4, 9, 30)

    updated = services.update_shipment_status(db, shipment.tracking_number, "delivered", delivered_at)

    assert updated.status == "delivered"
    assert updated.actual_delivery == delivered_at
    assert services.update_shipment_status(db, "MOCUNKNOWN000", "delivered") is None


def test_order_with_delivery_info(db, make_order, make_shipment):
    shipment = make_shipment()
    bare_order = make_order(order_number="ORD-00000002")

    order, found = services.get_order_with_delivery_info(db, shipment.order_id)
    assert found.tracking_number == shipment.tracking_number
    assert order.id == shipment.order_id

    order, found = services.get_order_with_delivery_info(db, bare_order.id)
    assert found is None
    assert services.get_order_with_delivery_info(db, "missing") is None

    rows = services.get_user_orders_with_delivery(db, "user_1")
    assert len(rows) == 2


def test_sync_persists_each_milestone_once(db, delivery_service, make_shipment):
    shipment = make_shipment(age=timedelta(hours=73))

    first = asyncio.run(services.update_shipment_statuses(db, delivery_service, shipment.tracking_number))
    second = asyncio.run(services.update_shipment_statuses(db, delivery_service, shipment.tracking_number))

    assert first["success"] is True
    assert first["new_updates"] == 5
    assert first["status"] == "delivered"
    assert second["new_updates"] == 0
    assert db.query(DeliveryTrackingUpdate).filter_by(shipment_id=shipment.id).count() == 6

    db.expire_all()
    order = db.get(Order, shipment.order_id)
    assert order.status == "delivered"
    assert order.delivered_at == shipment.created_at + timedelta(hours=72)
    assert order.shipped_at == shipment.created_at + timedelta(hours=2)
    assert services.get_shipment_by_tracking_number(db, shipment.tracking_number).actual_delivery is not None


def test_sync_all_skips_terminal_shipments(db, delivery_service, make_shipment):
    make_shipment("MOC0000000001", age=timedelta(hours=25))
    make_shipment("MOC0000000002", status="cancelled")

    results = asyncio.run(services.update_all_shipments_statuses(db, delivery_service))

    assert [r["tracking_number"] for r in results] == ["MOC0000000001"]
    assert results[0]["status"] == "in_transit"


def test_sync_unknown_shipment(db, delivery_service):
    result = asyncio.run(services.update_shipment_statuses(db, delivery_service, "MOCUNKNOWN000"))
    assert result == {"success": False, "tracking_number": "MOCUNKNOWN000", "error": "Shipment not found"}


def test_shipments_statistics(db, make_shipment):
    make_shipment("MOC0000000001")
    make_shipment("MOC0000000002", status="cancelled")
    delayed = make_shipment("MOC0000000003", age=timedelta(days=5), status="in_transit")

    statistics = services.get_shipments_statistics(db)

    assert statistics["total_shipments"] == 3
    assert statistics["active_shipments"] == 2
    assert statistics["cancelled"] == 1
    assert statistics["delayed"] == 1

    details = services.get_shipments_with_details(db)
    assert {d["tracking_number"]: d["delayed"] for d in details}[delayed.tracking_number] is True
    assert all(d["order"] is not None for d in details)


class FlatRateProvider:
    name = "Flat Rate"

    async def get_shipping_rates(self, request):
        return [ShippingRate(service_name="Flat Rate", cost=20, estimated_days="2")]


def rate_request_for(delivery_service) -> RateRequest:
    return RateRequest(
        origin_address=delivery_service.get_origin_address(),
        destination_address=DeliveryAddress(
            name="Customer", phone="+971500000000", street="1 Test Street",
            city="Dubai", country="AE",
        ),
        package_details=PackageDetails(
            weight=2.0, dimensions=PackageDimensions(length=20, width=15, height=10),
        ),
    )


def count_provider_quotes(delivery_service) -> list:
    calls = []
    real_get_rates = delivery_service.get_shipping_rates_from_provider

    async def counting_get_rates(rate_request, provider_name):
        calls.append(provider_name)
        return await real_get_rates(rate_request, provider_name)

    delivery_service.get_shipping_rates_from_provider = counting_get_rates
    return calls


def test_quote_shipping_rates_uses_cache(db, delivery_service):
    request = rate_request_for(delivery_service)
    calls = count_provider_quotes(delivery_service)

    first = asyncio.run(rates.quote_shipping_rates(db, delivery_service, request))
    second = asyncio.run(rates.quote_shipping_rates(db, delivery_service, request))

    assert calls == ["mock"]
    assert [r.cost for r in first] == [31, 46.5, 77.5]
    assert first[-1].restrictions == ["Available only in Dubai"]
    assert second == first
    assert db.query(DeliveryRate).count() == 3


def test_quote_all_providers_after_single_provider_quote(db, delivery_service):
    delivery_service.register_provider("flat", FlatRateProvider())
    request = rate_request_for(delivery_service)
    calls = count_provider_quotes(delivery_service)

    single = asyncio.run(rates.quote_shipping_rates(db, delivery_service, request, provider="flat"))
    everything = asyncio.run(rates.quote_shipping_rates(db, delivery_service, request))
    again = asyncio.run(rates.quote_shipping_rates(db, delivery_service, request))

    assert [r.provider for r in single] == ["flat"]
    assert [(r.provider, r.cost) for r in everything] == [
        ("flat", 20), ("mock", 31), ("mock", 46.5), ("mock", 77.5),
    ]
    assert again == everything
    assert calls == ["flat", "mock"]
