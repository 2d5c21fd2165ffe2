"""
Pay for demo carts by posting signed checkout.session.completed events
to the Stripe webhook of a running instance
"""
import asyncio
import hashlib
import hmac
import json
import sys
import time
import uuid

import httpx

from synergy_delivery.config import settings

BASE_URL = "http://localhost:8000"

# Customers whose carts should be turned into orders
user_ids = [
    "user_demo",
]


def sign_payload(payload: str, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_event(user_id: str) -> dict:
    session_id = f"cs_test_{uuid.uuid4().hex[:24]}"
    return {
        "id": f"evt_test_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": f"pi_test_{uuid.uuid4().hex[:24]}",
                "metadata": {"userId": user_id},
            }
        },
    }


async def pay_for_cart(client: httpx.AsyncClient, user_id: str):
    event = build_event(user_id)
    payload = json.dumps(event)
    signature = sign_payload(payload, settings.stripe_webhook_secret, int(time.time()))

    print(f"\n💳 Paying for the cart of {user_id} (session {event['data']['object']['id']})...")

    response = await client.post(
        f"{BASE_URL}/api/webhooks/stripe",
        content=payload,
        headers={"Content-Type": "application/json", "Stripe-Signature": signature},
    )

    if response.status_code == 200:
        print(f"✅ Webhook accepted: {response.json()}")
        return True

    print(f"❌ Webhook rejected: {response.status_code}")
    print(f"   {response.text}")
    return False


async def main():
    print("=" * 70)
    print("🚀 Creating demo orders")
    print("=" * 70)
    print(f"API: {BASE_URL}")
    print("-" * 70)

    if not settings.stripe_webhook_secret:
        print("❌ STRIPE_WEBHOOK_SECRET must be set to sign the events")
        sys.exit(1)

    async with httpx.AsyncClient(timeout=30.0) as client:
        accepted = 0
        for user_id in user_ids:
            if await pay_for_cart(client, user_id):
                accepted += 1
            await asyncio.sleep(1)

    print(f"\n✅ Accepted events: {accepted}/{len(user_ids)}")
    print("\n🌐 Open http://localhost:8000/shipments to see the shipments")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\n⚠️ Interrupted")
        sys.exit(1)
