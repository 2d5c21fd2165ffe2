import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from synergy_delivery.delivery_service import DeliveryService
from synergy_delivery.models import (
    DeliveryRate,
    DeliveryShipment,
    DeliveryTrackingUpdate,
    Order,
)
from synergy_delivery.schemas import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ShipmentStatus,
    ShippingRate,
    TrackingUpdate,
)

logger = logging.getLogger(__name__)

# Order status each shipment status moves the order to
ORDER_STATUS_FOR_SHIPMENT = {
    ShipmentStatus.PICKED_UP.value: "shipped",
    ShipmentStatus.IN_TRANSIT.value: "shipped",
    ShipmentStatus.OUT_FOR_DELIVERY.value: "shipped",
    ShipmentStatus.DELIVERED.value: "delivered",
    ShipmentStatus.CANCELLED.value: "cancelled",
}


# Shipments

def create_shipment(db: Session, **shipment_data) -> DeliveryShipment:
    shipment = DeliveryShipment(**shipment_data)
    db.add(shipment)
    db.commit()
    db.refresh(shipment)
    return shipment


def get_shipment_by_tracking_number(db: Session, tracking_number: str) -> Optional[DeliveryShipment]:
    return db.query(DeliveryShipment).filter(DeliveryShipment.tracking_number == tracking_number).first()


def get_shipment_by_order_id(db: Session, order_id: str) -> Optional[DeliveryShipment]:
    return db.query(DeliveryShipment).filter(DeliveryShipment.order_id == order_id).first()


def update_shipment_status(
    db: Session,
    tracking_number: str,
    status: str,
    actual_delivery: Optional[datetime] = None
) -> Optional[DeliveryShipment]:
    shipment = get_shipment_by_tracking_number(db, tracking_number)
    if not shipment:
        return None

    shipment.status = status
    shipment.updated_at = datetime.utcnow()
    if actual_delivery:
        shipment.actual_delivery = actual_delivery

    db.commit()
    db.refresh(shipment)
    return shipment


# Tracking history

def add_tracking_update(
    db: Session,
    shipment_id: str,
    tracking_number: str,
    status: str,
    description: str,
    timestamp: datetime,
    location: Optional[str] = None,
    provider_data: Optional[Dict[str, Any]] = None,
    commit: bool = True
) -> DeliveryTrackingUpdate:
    update = DeliveryTrackingUpdate(
        shipment_id=shipment_id,
        tracking_number=tracking_number,
        status=status,
        location=location,
        description=description,
        timestamp=timestamp,
        provider_data=provider_data
    )
    db.add(update)
    if commit:
        db.commit()
        db.refresh(update)
    return update


def get_tracking_updates(db: Session, tracking_number: str) -> List[DeliveryTrackingUpdate]:
    return db.query(DeliveryTrackingUpdate).filter(
        DeliveryTrackingUpdate.tracking_number == tracking_number
    ).order_by(desc(DeliveryTrackingUpdate.timestamp)).all()


def get_tracking_updates_by_shipment_id(db: Session, shipment_id: str) -> List[DeliveryTrackingUpdate]:
    return db.query(DeliveryTrackingUpdate).filter(
        DeliveryTrackingUpdate.shipment_id == shipment_id
    ).order_by(desc(DeliveryTrackingUpdate.timestamp)).all()


# Rate cache

def cache_delivery_rate(
    db: Session,
    origin_city: str,
    origin_country: str,
    destination_city: str,
    destination_country: str,
    weight: float,
    length: float,
    width: float,
    height: float,
    rate: ShippingRate,
    expires_at: datetime,
    commit: bool = True
) -> DeliveryRate:
    cached = DeliveryRate(
        origin_city=origin_city,
        origin_country=origin_country,
        destination_city=destination_city,
        destination_country=destination_country,
        weight=weight,
        length=length,
        width=width,
        height=height,
        delivery_provider=rate.provider or "unknown",
        service_name=rate.service_name,
        cost=rate.cost,
        currency=rate.currency,
        estimated_days=rate.estimated_days,
        description=rate.description,
        restrictions=list(rate.restrictions),
        expires_at=expires_at
    )
    db.add(cached)
    if commit:
        db.commit()
        db.refresh(cached)
    return cached


def get_cached_delivery_rates(
    db: Session,
    origin_city: str,
    origin_country: str,
    destination_city: str,
    destination_country: str,
    weight: float,
    length: float,
    width: float,
    height: float,
    provider: Optional[str] = None,
    now: Optional[datetime] = None
) -> List[DeliveryRate]:
    query = db.query(DeliveryRate).filter(
        DeliveryRate.origin_city == origin_city,
        DeliveryRate.origin_country == origin_country,
        DeliveryRate.destination_city == destination_city,
        DeliveryRate.destination_country == destination_country,
        DeliveryRate.weight == weight,
        DeliveryRate.length == length,
        DeliveryRate.width == width,
        DeliveryRate.height == height,
        DeliveryRate.expires_at > (now or datetime.utcnow())
    )
    if provider:
        query = query.filter(DeliveryRate.delivery_provider == provider)
    return query.order_by(DeliveryRate.cost).all()


def cleanup_expired_rates(db: Session, now: Optional[datetime] = None) -> int:
    deleted = db.query(DeliveryRate).filter(
        DeliveryRate.expires_at < (now or datetime.utcnow())
    ).delete(synchronize_session=False)
    db.commit()

    logger.info(f"🧹 Cleaned up {deleted} expired delivery rates")
    return deleted


# Orders with delivery info

def get_order_with_delivery_info(db: Session, order_id: str) -> Optional[Tuple[Order, Optional[DeliveryShipment]]]:
    row = db.query(Order, DeliveryShipment).outerjoin(
        DeliveryShipment, DeliveryShipment.order_id == Order.id
    ).filter(Order.id == order_id).first()

    if not row:
        return None
    return row[0], row[1]


def get_user_orders_with_delivery(
    db: Session,
    user_id: str,
    limit: int = 10
) -> List[Tuple[Order, Optional[DeliveryShipment]]]:
    rows = db.query(Order, DeliveryShipment).outerjoin(
        DeliveryShipment, DeliveryShipment.order_id == Order.id
    ).filter(Order.user_id == user_id).order_by(desc(Order.created_at)).limit(limit).all()

    return [(order, shipment) for order, shipment in rows]


# Tracking sync

def _sync_order_status(db: Session, shipment: DeliveryShipment, latest: TrackingUpdate):
    order = db.query(Order).filter(Order.id == shipment.order_id).first()
    if not order:
        return

    new_status = ORDER_STATUS_FOR_SHIPMENT.get(latest.status.value)
    if new_status and order.status != new_status:
        order.status = new_status

    if latest.status == ShipmentStatus.DELIVERED and not order.delivered_at:
        order.delivered_at = latest.timestamp
    if new_status in ("shipped", "delivered") and not order.shipped_at:
        picked_up = db.query(DeliveryTrackingUpdate).filter(
            DeliveryTrackingUpdate.shipment_id == shipment.id,
            DeliveryTrackingUpdate.status == ShipmentStatus.PICKED_UP.value
        ).order_by(DeliveryTrackingUpdate.timestamp).first()
        order.shipped_at = picked_up.timestamp if picked_up else latest.timestamp


async def update_shipment_statuses(
    db: Session,
    delivery_service: DeliveryService,
    tracking_number: str
) -> Dict[str, Any]:
    shipment = get_shipment_by_tracking_number(db, tracking_number)

    if not shipment:
        return {
            "success": False,
            "tracking_number": tracking_number,
            "error": "Shipment not found"
        }

    try:
        updates = await delivery_service.track_shipment(tracking_number, shipment.delivery_provider)

        new_updates_count = 0
        for update in updates:
            existing = db.query(DeliveryTrackingUpdate).filter(
                DeliveryTrackingUpdate.shipment_id == shipment.id,
                DeliveryTrackingUpdate.status == update.status.value,
                DeliveryTrackingUpdate.timestamp == update.timestamp
            ).first()

            if not existing:
                add_tracking_update(
                    db,
                    shipment.id,
                    tracking_number,
                    update.status.value,
                    update.description,
                    update.timestamp,
                    location=update.location,
                    commit=False
                )
                new_updates_count += 1

        if updates:
            latest = updates[-1]
            if latest.status.value != shipment.status:
                shipment.status = latest.status.value
                shipment.updated_at = datetime.utcnow()
            if latest.status == ShipmentStatus.DELIVERED and not shipment.actual_delivery:
                shipment.actual_delivery = latest.timestamp
            db.flush()
            _sync_order_status(db, shipment, latest)

        db.commit()

        return {
            "success": True,
            "tracking_number": tracking_number,
            "status": shipment.status,
            "new_updates": new_updates_count,
            "total_updates": len(updates)
        }

    except Exception as e:
        db.rollback()
        logger.error(f"❌ Failed to sync tracking for {tracking_number}: {e}")
        return {
            "success": False,
            "tracking_number": tracking_number,
            "error": str(e)
        }


async def update_all_shipments_statuses(db: Session, delivery_service: DeliveryService) -> List[Dict[str, Any]]:
    shipments = db.query(DeliveryShipment).filter(
        DeliveryShipment.status.notin_(TERMINAL_STATUSES)
    ).all()
    tracking_numbers = [shipment.tracking_number for shipment in shipments]

    results = []
    for tracking_number in tracking_numbers:
        result = await update_shipment_statuses(db, delivery_service, tracking_number)
        results.append(result)

    return results


# Admin read models

def is_delayed_shipment(shipment: DeliveryShipment, now: Optional[datetime] = None) -> bool:
    if shipment.status not in ACTIVE_STATUSES:
        return False

    now = now or datetime.utcnow()
    if shipment.estimated_delivery:
        return now > shipment.estimated_delivery
    return (now - shipment.created_at).days > 3


def get_shipments_statistics(db: Session) -> Dict[str, int]:
    shipments = db.query(DeliveryShipment).all()
    now = datetime.utcnow()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

    statistics = {
        "total_shipments": len(shipments),
        "active_shipments": 0,
        "delivered": 0,
        "delivered_today": 0,
        "cancelled": 0,
        "delayed": 0,
    }

    for shipment in shipments:
        if shipment.status in ACTIVE_STATUSES:
            statistics["active_shipments"] += 1
        elif shipment.status == ShipmentStatus.DELIVERED.value:
            statistics["delivered"] += 1
            if shipment.actual_delivery and shipment.actual_delivery >= start_of_day:
                statistics["delivered_today"] += 1
        elif shipment.status == ShipmentStatus.CANCELLED.value:
            statistics["cancelled"] += 1

        if is_delayed_shipment(shipment, now):
            statistics["delayed"] += 1

    return statistics


def get_shipments_with_details(db: Session, limit: int = 50) -> List[Dict[str, Any]]:
    rows = db.query(DeliveryShipment, Order).outerjoin(
        Order, DeliveryShipment.order_id == Order.id
    ).order_by(desc(DeliveryShipment.created_at)).limit(limit).all()

    result = []
    for shipment, order in rows:
        shipment_data = {
            "id": shipment.id,
            "tracking_number": shipment.tracking_number,
            "provider": shipment.delivery_provider,
            "status": shipment.status,
            "destination_city": shipment.destination_city,
            "shipping_cost": shipment.shipping_cost,
            "currency": shipment.currency,
            "created_at": shipment.created_at.isoformat(),
            "estimated_delivery": shipment.estimated_delivery.isoformat() if shipment.estimated_delivery else None,
            "delayed": is_delayed_shipment(shipment),
            "order": None
        }

        if order:
            shipment_data["order"] = {
                "id": order.id,
                "order_number": order.order_number,
                "customer_email": order.customer_email,
                "total": order.total,
                "status": order.status
            }

        result.append(shipment_data)

    return result
