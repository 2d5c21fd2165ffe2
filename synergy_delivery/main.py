import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import stripe
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from synergy_delivery import rates, services
from synergy_delivery.checkout import create_order_shipment, handle_checkout_session_completed
from synergy_delivery.config import settings
from synergy_delivery.database import SessionLocal, get_db
from synergy_delivery.delivery_service import DeliveryService, build_delivery_service
from synergy_delivery.logging_config import setup_logging
from synergy_delivery.models import Order, OrderStatusHistory, StripeWebhookEvent
from synergy_delivery.schemas import (
    CreateShipmentPayload,
    DeliveryAddress,
    RateQuotePayload,
    RateRequest,
    ShipmentRequest,
    TrackingActionPayload,
)

setup_logging(log_level=settings.log_level, log_file=settings.log_file)

stripe.api_key = settings.stripe_secret_key

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.delivery_service = build_delivery_service(SessionLocal)
    logger.info("🚀 Synergy delivery service started")
    yield


app = FastAPI(title="Synergy Delivery", lifespan=lifespan)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def get_delivery_service(request: Request) -> DeliveryService:
    return request.app.state.delivery_service


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    # Identity is asserted by the auth proxy in front of this service
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def get_admin_user_id(user_id: str = Depends(get_current_user_id)) -> str:
    if user_id not in settings.admin_user_ids:
        logger.warning(f"⚠️ Admin access denied for user {user_id}")
        raise HTTPException(status_code=403, detail="Forbidden")
    return user_id


def _get_owned_order(db: Session, user_id: str, **filters) -> Order:
    query = db.query(Order).filter(Order.user_id == user_id)
    for column, value in filters.items():
        query = query.filter(getattr(Order, column) == value)
    order = query.first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found or not authorized")
    return order


def _require_complete_address(address: DeliveryAddress):
    if not address.street or not address.city or not address.country:
        raise HTTPException(status_code=400, detail="Incomplete destination address")


def _shipment_summary(shipment) -> Optional[Dict[str, Any]]:
    if not shipment:
        return None
    return {
        "id": shipment.id,
        "tracking_number": shipment.tracking_number,
        "provider": shipment.delivery_provider,
        "status": shipment.status,
        "estimated_delivery": shipment.estimated_delivery,
        "actual_delivery": shipment.actual_delivery,
        "shipping_cost": shipment.shipping_cost,
        "currency": shipment.currency,
    }


@app.get("/", response_class=HTMLResponse)
async def root(request: Request, db: Session = Depends(get_db)):
    return await shipments_page(request, db)


@app.get("/shipments", response_class=HTMLResponse)
async def shipments_page(request: Request, db: Session = Depends(get_db)):
    statistics = services.get_shipments_statistics(db)
    shipments = services.get_shipments_with_details(db)

    return templates.TemplateResponse(
        request,
        "shipments.html",
        {
            "statistics": statistics,
            "shipments": shipments
        }
    )


@app.get("/health")
async def health_check():
    return {"status": "ok"}


# Stripe webhook

def _event_object(payload: bytes) -> Dict[str, Any]:
    """``data.object`` of a verified event body as plain dicts.

    StripeObject is not a Mapping in current SDK releases, so handlers get the
    decoded JSON instead of the constructed event.
    """
    return json.loads(payload)["data"]["object"]


@app.post("/api/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    delivery_service: DeliveryService = Depends(get_delivery_service)
) -> Dict[str, Any]:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        logger.error("No Stripe signature found")
        raise HTTPException(status_code=400, detail="No signature")

    try:
        event = stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    except Exception as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_id = event["id"]
    event_type = event["type"]
    event_object = _event_object(payload)

    record = db.query(StripeWebhookEvent).filter(StripeWebhookEvent.stripe_event_id == event_id).first()
    if record and record.processed_at:
        record.attempts += 1
        record.last_attempt_at = datetime.utcnow()
        db.commit()
        logger.info(f"Stripe event {event_id} already processed, skipping")
        return {"received": True, "duplicate": True}

    if record:
        record.attempts += 1
        record.last_attempt_at = datetime.utcnow()
        db.commit()
    else:
        record = StripeWebhookEvent(stripe_event_id=event_id, event_type=event_type)
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Stripe event {event_id} is being processed by another delivery")
            return {"received": True, "duplicate": True}

    try:
        if event_type == "checkout.session.completed":
            await handle_checkout_session_completed(db, delivery_service, event_object)
        elif event_type == "payment_intent.succeeded":
            logger.info(f"Payment intent succeeded: {event_object['id']}")
        elif event_type == "payment_intent.payment_failed":
            logger.info(f"Payment intent failed: {event_object['id']}")
        else:
            logger.info(f"Unhandled event type {event_type}")
    except Exception as e:
        db.rollback()
        record.last_error = str(e)
        db.commit()
        logger.exception(f"❌ Webhook error for event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Webhook handler failed")

    record.processed_at = datetime.utcnow()
    record.last_error = None
    db.commit()

    return {"received": True}


# Rates

@app.post("/api/delivery/rates")
async def quote_rates(
    payload: RateQuotePayload,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    delivery_service: DeliveryService = Depends(get_delivery_service)
) -> Dict[str, Any]:
    _require_complete_address(payload.destination_address)

    rate_request = RateRequest(
        origin_address=delivery_service.get_origin_address(),
        destination_address=payload.destination_address,
        package_details=payload.package_details
    )
    shipping_rates = await rates.quote_shipping_rates(db, delivery_service, rate_request, payload.provider)

    return {
        "success": True,
        "rates": shipping_rates,
        "origin": rate_request.origin_address,
        "destination": payload.destination_address
    }


@app.get("/api/delivery/rates")
async def delivery_status(
    user_id: str = Depends(get_current_user_id),
    delivery_service: DeliveryService = Depends(get_delivery_service)
) -> Dict[str, Any]:
    return {"success": True, **delivery_service.get_status()}


# Shipments

@app.post("/api/delivery/shipments")
async def create_shipment(
    payload: CreateShipmentPayload,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    delivery_service: DeliveryService = Depends(get_delivery_service)
) -> Dict[str, Any]:
    _require_complete_address(payload.destination_address)
    order = _get_owned_order(db, user_id, id=payload.order_id)

    if order.tracking_number:
        raise HTTPException(status_code=409, detail="Order already has a shipment")

    shipment_request = ShipmentRequest(
        order_id=order.id,
        order_number=order.order_number,
        origin_address=delivery_service.get_origin_address(),
        destination_address=payload.destination_address,
        package_details=payload.package_details
    )

    try:
        response = await create_order_shipment(db, delivery_service, order, shipment_request, payload.provider)
    except Exception as e:
        db.rollback()
        logger.exception(f"Shipment creation error for order {order.id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    if not response.success:
        raise HTTPException(status_code=500, detail=response.error or "Failed to create shipment")

    return {
        "success": True,
        "tracking_number": response.tracking_number,
        "estimated_delivery": response.estimated_delivery,
        "cost": response.cost,
        "provider": response.provider
    }


@app.get("/api/delivery/shipments")
async def get_shipment(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    row = services.get_order_with_delivery_info(db, order_id)
    if not row or row[0].user_id != user_id:
        raise HTTPException(status_code=404, detail="Order not found or not authorized")

    order, shipment = row
    if not order.tracking_number:
        raise HTTPException(status_code=404, detail="No shipment found for this order")

    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "tracking_number": order.tracking_number,
        "delivery_provider": order.delivery_provider,
        "estimated_delivery": order.estimated_delivery,
        "status": order.status,
        "shipment": _shipment_summary(shipment)
    }


@app.get("/api/delivery/orders")
async def get_orders_with_delivery(
    limit: int = 10,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> List[Dict[str, Any]]:
    rows = services.get_user_orders_with_delivery(db, user_id, limit=limit)
    return [
        {
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "total": order.total,
            "currency": order.currency,
            "created_at": order.created_at,
            "shipment": _shipment_summary(shipment)
        }
        for order, shipment in rows
    ]


# Tracking

@app.get("/api/delivery/tracking/{tracking_number}")
async def track_shipment(
    tracking_number: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    delivery_service: DeliveryService = Depends(get_delivery_service)
) -> Dict[str, Any]:
    order = _get_owned_order(db, user_id, tracking_number=tracking_number)

    updates = await delivery_service.track_shipment(
        tracking_number,
        order.delivery_provider or settings.default_delivery_provider
    )

    return {
        "tracking_number": tracking_number,
        "order_id": order.id,
        "order_number": order.order_number,
        "provider": order.delivery_provider,
        "estimated_delivery": order.estimated_delivery,
        "updates": updates
    }


@app.get("/api/delivery/tracking/{tracking_number}/history")
async def tracking_history(
    tracking_number: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> List[Dict[str, Any]]:
    _get_owned_order(db, user_id, tracking_number=tracking_number)

    return [
        {
            "status": update.status,
            "location": update.location,
            "description": update.description,
            "timestamp": update.timestamp
        }
        for update in services.get_tracking_updates(db, tracking_number)
    ]


@app.post("/api/delivery/tracking/{tracking_number}")
async def tracking_action(
    tracking_number: str,
    payload: TrackingActionPayload,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    delivery_service: DeliveryService = Depends(get_delivery_service)
) -> Dict[str, Any]:
    if payload.action != "cancel":
        raise HTTPException(status_code=400, detail='Invalid action. Only "cancel" is supported')

    order = _get_owned_order(db, user_id, tracking_number=tracking_number)

    cancelled = await delivery_service.cancel_shipment(
        tracking_number,
        order.delivery_provider or settings.default_delivery_provider
    )
    if not cancelled:
        raise HTTPException(status_code=400, detail="Shipment cannot be cancelled at this stage")

    services.update_shipment_status(db, tracking_number, "cancelled")

    db.add(OrderStatusHistory(
        order_id=order.id,
        previous_status=order.status,
        new_status="cancelled",
        change_reason="Shipment cancelled by customer"
    ))
    order.status = "cancelled"
    order.updated_at = datetime.utcnow()
    db.commit()

    return {"success": True, "message": "Shipment cancelled successfully"}


# Admin

@app.get("/api/admin/delivery")
async def admin_delivery(
    view: str = "overview",
    admin_id: str = Depends(get_admin_user_id),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if view == "overview":
        return {"success": True, "data": services.get_shipments_statistics(db)}

    if view == "shipments":
        return {"success": True, "data": services.get_shipments_with_details(db)}

    raise HTTPException(status_code=400, detail="Invalid view parameter")


@app.post("/api/admin/delivery/sync-tracking")
async def sync_tracking(
    admin_id: str = Depends(get_admin_user_id),
    db: Session = Depends(get_db),
    delivery_service: DeliveryService = Depends(get_delivery_service)
) -> Dict[str, Any]:
    logger.info("🔄 Syncing tracking history for all active shipments")

    results = await services.update_all_shipments_statuses(db, delivery_service)

    success_count = sum(1 for r in results if r.get("success"))
    failed_count = len(results) - success_count
    total_new_updates = sum(r.get("new_updates", 0) for r in results if r.get("success"))

    logger.info(
        f"✅ Tracking sync finished: synced={success_count}, failed={failed_count}, new updates={total_new_updates}"
    )

    return {
        "success": True,
        "total_shipments": len(results),
        "updated_successfully": success_count,
        "failed": failed_count,
        "total_new_updates": total_new_updates,
        "details": results
    }


@app.post("/api/admin/delivery/cleanup-rates")
async def cleanup_rates(
    admin_id: str = Depends(get_admin_user_id),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    deleted = services.cleanup_expired_rates(db)
    return {"success": True, "deleted": deleted}
