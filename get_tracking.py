import asyncio
import sys

import httpx

BASE_URL = "http://localhost:8000"
USER_ID = "user_demo"


async def get_tracking(client: httpx.AsyncClient, tracking_number: str):
    try:
        response = await client.get(
            f"{BASE_URL}/api/delivery/tracking/{tracking_number}",
            headers={"X-User-Id": USER_ID}
        )

        if response.status_code == 200:
            return response.json()
        else:
            print(f"  ⚠️ Error {response.status_code}: {response.text}")
            return None
    except httpx.HTTPError as e:
        print(f"  ❌ Request failed: {e}")
        return None


async def main(tracking_numbers):
    print("=" * 70)
    print("🔍 Tracking timelines")
    print("=" * 70)
    print(f"API: {BASE_URL}")
    print("-" * 70)

    async with httpx.AsyncClient(timeout=30.0) as client:
        for tracking_number in tracking_numbers:
            print(f"\n📦 {tracking_number}")
            data = await get_tracking(client, tracking_number)

            if not data:
                continue

            print(f"   Order: {data['order_number']}")
            print(f"   Provider: {data['provider']}")
            print(f"   Estimated delivery: {data['estimated_delivery']}")

            if not data["updates"]:
                print("   No tracking info yet")
            for update in data["updates"]:
                print(f"   {update['timestamp']}  {update['status']:<17} {update['location'] or ''}")
                print(f"      {update['description']}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python get_tracking.py TRACKING_NUMBER [TRACKING_NUMBER ...]")
        sys.exit(1)
    asyncio.run(main(sys.argv[1:]))
