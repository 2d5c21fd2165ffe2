"""
Create the database schema and seed a demo customer with a filled cart
"""
from synergy_delivery.database import Base, SessionLocal, engine
from synergy_delivery.models import CartItem, Product, User

DEMO_USER_ID = "user_demo"

demo_products = [
    {"title": "Organic Dates 1kg", "slug": "organic-dates-1kg", "sku": "DATES-1KG", "price": 45.0,
     "weight": 1000, "length": 25, "width": 18, "height": 8},
    {"title": "Arabic Coffee Beans", "slug": "arabic-coffee-beans", "sku": "COFFEE-500", "price": 60.0,
     "weight": 500, "length": 20, "width": 12, "height": 6},
    {"title": "Saffron Gift Box", "slug": "saffron-gift-box", "sku": "SAFFRON-BOX", "price": 120.0},
]


def init_test_data():
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        existing_count = db.query(Product).count()

        if existing_count > 0:
            print(f"Database already contains {existing_count} products.")
            print("Skipping demo data.")
            return

        print("Adding demo customer and products...")

        db.add(User(id=DEMO_USER_ID, email="demo@synergyfoods.ae", name="Demo Customer"))

        for data in demo_products:
            product = Product(**data)
            db.add(product)
            db.flush()
            db.add(CartItem(user_id=DEMO_USER_ID, product_id=product.id, quantity=1))
            print(f"  ✓ Added product: {product.title}")

        db.commit()
        print(f"\nAdded {len(demo_products)} products to the cart of '{DEMO_USER_ID}'.")
        print("\nRun create_test_orders.py to pay for the cart through the Stripe webhook.")

    except Exception as e:
        print(f"Initialization failed: {e}")
        db.rollback()
    finally:
        db.close()


if __name__ == "__main__":
    init_test_data()
