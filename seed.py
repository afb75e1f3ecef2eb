"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 3 service tiers (Standard, Express, Same Day)
  - 1 admin, 3 customers (with wallets), 3 riders (2 approved, 1 pending)
  - 4 sample deliveries (pending, assigned, delivered)

Every seeded account uses the password ``password123``.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import text

from lastmile.config import settings
from lastmile.domain.enums import (
    AccountStatus,
    ApprovalStatus,
    DeliveryStatus,
    PackageWeight,
    PaymentStatus,
    TransactionType,
    UserRole,
    VehicleType,
)
from lastmile.domain.entities import Location
from lastmile.domain.pricing import FareEstimator
from lastmile.domain.tracking import generate_tracking_number
from lastmile.infrastructure.database import async_session_factory, engine
from lastmile.infrastructure.models import (
    AuthIdentityModel,
    DeliveryModel,
    DeliveryTypeModel,
    ProfileModel,
    RiderModel,
    TrackingEventModel,
    TransactionModel,
    WalletModel,
)
from lastmile.services.accounts import hash_password
from lastmile.services.lifecycle import MSG_RIDER_ASSIGNED

# Abuja city centre
CENTRE_LAT, CENTRE_LNG = 9.0579, 7.4951

PASSWORD = "password123"

DELIVERY_TYPES = [
    {"name": "Standard", "description": "Delivered within 2 days", "base_price": 500, "hours": 48},
    {"name": "Express", "description": "Delivered within 24 hours", "base_price": 1000, "hours": 24},
    {"name": "Same Day", "description": "Delivered today", "base_price": 1500, "hours": 8},
]

USERS = [
    {"name": "Amaka Obi", "email": "admin@example.com", "phone": "+2348000000001", "role": UserRole.ADMIN},
    {"name": "Tunde Bello", "email": "tunde@example.com", "phone": "+2348000000002", "role": UserRole.CUSTOMER},
    {"name": "Ngozi Eze", "email": "ngozi@example.com", "phone": "+2348000000003", "role": UserRole.CUSTOMER},
    {"name": "Ibrahim Musa", "email": "ibrahim@example.com", "phone": "+2348000000004", "role": UserRole.CUSTOMER},
    {"name": "Chidi Okeke", "email": "chidi@example.com", "phone": "+2348000000005", "role": UserRole.RIDER},
    {"name": "Fatima Sani", "email": "fatima@example.com", "phone": "+2348000000006", "role": UserRole.RIDER},
    {"name": "Segun Ade", "email": "segun@example.com", "phone": "+2348000000007", "role": UserRole.RIDER},
]

RIDERS = [
    {"vehicle_type": VehicleType.BIKE, "plate": "ABJ-101-KA", "approval": ApprovalStatus.APPROVED, "lat": 9.0600, "lng": 7.4900},
    {"vehicle_type": VehicleType.CAR, "plate": "ABJ-202-KB", "approval": ApprovalStatus.APPROVED, "lat": 9.0700, "lng": 7.5000},
    {"vehicle_type": VehicleType.VAN, "plate": "ABJ-303-KC", "approval": ApprovalStatus.PENDING, "lat": None, "lng": None},
]


async def seed():
    estimator = FareEstimator()
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM profiles"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Service tiers ─────────────────────────────────────────────
        tiers = []
        for t in DELIVERY_TYPES:
            m = DeliveryTypeModel(
                name=t["name"],
                description=t["description"],
                base_price=t["base_price"],
                estimated_hours=t["hours"],
            )
            session.add(m)
            tiers.append(m)
        await session.flush()
        print(f"  Created {len(tiers)} service tiers")

        # ── Accounts ──────────────────────────────────────────────────
        password_hash = hash_password(PASSWORD)
        profiles = []
        for u in USERS:
            identity = AuthIdentityModel(email=u["email"], password_hash=password_hash)
            session.add(identity)
            await session.flush()
            status = AccountStatus.ACTIVE
            if u["role"] == UserRole.RIDER:
                status = AccountStatus.PENDING
            profile = ProfileModel(
                id=identity.id,
                email=u["email"],
                full_name=u["name"],
                phone=u["phone"],
                role=u["role"],
                status=status,
            )
            session.add(profile)
            if u["role"] == UserRole.CUSTOMER:
                session.add(WalletModel(user_id=identity.id))
            profiles.append(profile)
        await session.flush()
        print(f"  Created {len(profiles)} accounts")

        customers = [p for p in profiles if p.role == UserRole.CUSTOMER]
        rider_profiles = [p for p in profiles if p.role == UserRole.RIDER]

        # ── Riders ────────────────────────────────────────────────────
        riders = []
        for profile, r in zip(rider_profiles, RIDERS):
            if r["approval"] == ApprovalStatus.APPROVED:
                profile.status = AccountStatus.ACTIVE
            m = RiderModel(
                user_id=profile.id,
                vehicle_type=r["vehicle_type"],
                vehicle_number=r["plate"],
                driver_license=f"DL-{profile.id:05d}",
                is_available=r["approval"] == ApprovalStatus.APPROVED,
                current_lat=r["lat"],
                current_lng=r["lng"],
                approval_status=r["approval"],
            )
            session.add(m)
            riders.append(m)
        await session.flush()
        print(f"  Created {len(riders)} riders")

        # ── Deliveries ────────────────────────────────────────────────
        deliveries_data = [
            {"customer": customers[0], "tier": tiers[0], "pickup": (9.0820, 8.6753), "weight": PackageWeight.LIGHT, "status": DeliveryStatus.PENDING, "rider": None},
            {"customer": customers[1], "tier": tiers[1], "pickup": (9.0765, 7.3986), "weight": PackageWeight.MEDIUM, "status": DeliveryStatus.PENDING, "rider": None},
            {"customer": customers[2], "tier": tiers[0], "pickup": (9.0643, 7.4892), "weight": PackageWeight.HEAVY, "status": DeliveryStatus.ASSIGNED, "rider": riders[0]},
            {"customer": customers[0], "tier": tiers[2], "pickup": (9.0336, 7.4753), "weight": PackageWeight.LIGHT, "status": DeliveryStatus.DELIVERED, "rider": riders[1]},
        ]
        for d in deliveries_data:
            pickup = Location(*d["pickup"])
            fare = estimator.estimate(
                pickup, Location(CENTRE_LAT, CENTRE_LNG), d["weight"], d["tier"].base_price
            )
            delivered = d["status"] == DeliveryStatus.DELIVERED
            delivery = DeliveryModel(
                customer_id=d["customer"].id,
                rider_id=d["rider"].id if d["rider"] else None,
                delivery_type_id=d["tier"].id,
                tracking_number=generate_tracking_number(),
                pickup_address="Sample pickup address",
                pickup_lat=pickup.latitude,
                pickup_lng=pickup.longitude,
                dropoff_address="Central Business District, Abuja",
                dropoff_lat=CENTRE_LAT,
                dropoff_lng=CENTRE_LNG,
                package_details="Documents",
                package_weight=d["weight"],
                recipient_name="Sample Recipient",
                recipient_phone="+2348000000099",
                fare_estimate=fare,
                final_fare=fare if delivered else None,
                completed_at=datetime.now(timezone.utc) if delivered else None,
                payment_status=PaymentStatus.COMPLETED if delivered else PaymentStatus.PENDING,
                status=d["status"],
            )
            session.add(delivery)
            await session.flush()
            if d["rider"] is not None:
                session.add(
                    TrackingEventModel(
                        delivery_id=delivery.id,
                        rider_lat=d["rider"].current_lat,
                        rider_lng=d["rider"].current_lng,
                        status_update=MSG_RIDER_ASSIGNED,
                    )
                )
            if delivered:
                rider = d["rider"]
                rider.total_deliveries = (rider.total_deliveries or 0) + 1
                session.add_all([
                    TransactionModel(
                        user_id=d["customer"].id,
                        delivery_id=delivery.id,
                        type=TransactionType.DEBIT,
                        amount=Decimal(fare),
                        description=f"Payment for delivery {delivery.tracking_number}",
                    ),
                    TransactionModel(
                        user_id=rider.user_id,
                        delivery_id=delivery.id,
                        type=TransactionType.CREDIT,
                        amount=(Decimal(fare) * Decimal(str(settings.rider_share))).quantize(Decimal("0.01")),
                        description=f"Earning from delivery {delivery.tracking_number}",
                    ),
                ])
        await session.flush()
        print(f"  Created {len(deliveries_data)} deliveries")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
