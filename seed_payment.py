"""
Payment System Seeder
Seeds payment methods and creates indexes
Run: python seed_payment.py
"""
import asyncio
from datetime import datetime

from app.database import Database
from app.models.payment.payment_method import PaymentMethodInDB


PAYMENT_METHODS = [
    {
        "name": "Easebuzz Payment",
        "code": "EASEBUZZ",
        "gateway": "easebuzz",
        "is_active": True,
    },
    {
        "name": "UPI Gateway Payment",
        "code": "UPIGATEWAY",
        "gateway": "upigateway",
        "is_active": True,
    },
]


async def seed_payment_methods(db) -> int:
    """Insert missing payment methods; returns how many were created"""
    created = 0
    for method in PAYMENT_METHODS:
        existing = await db.payment_methods.find_one({"code": method["code"]})
        if existing:
            print(f"[SKIP] Payment method {method['name']} already exists")
            continue

        document = PaymentMethodInDB(**method).model_dump()
        document["created_at"] = document["updated_at"] = datetime.utcnow()
        await db.payment_methods.insert_one(document)
        created += 1
        print(f"[OK] Created payment method: {method['name']}")
    return created


async def main():
    """Main seeder function"""
    print("=" * 50)
    print("Payment System Seeder")
    print("=" * 50)

    # Connect to MongoDB (creates indexes)
    print("\n[1/2] Connecting and creating indexes...")
    await Database.connect_db()

    try:
        print("\n[2/2] Seeding payment methods...")
        await seed_payment_methods(Database.get_db())

        print("\n" + "=" * 50)
        print("[SUCCESS] Payment system seeded successfully!")
        print("=" * 50)

    except Exception as e:
        print(f"\n[ERROR] Seeding failed: {str(e)}")
        raise
    finally:
        await Database.close_db()


if __name__ == "__main__":
    asyncio.run(main())
