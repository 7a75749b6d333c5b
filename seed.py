"""
Seed script -- creates the schema and sample data for reviewers.

    python seed.py

Creates:
  - 6 passengers
  - 5 drivers (3 available, 1 unavailable, 1 on a ride)
  - 5 rides: 2 searching, 1 counter-offered, 1 accepted, 1 completed
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from rideoffer.config import settings
from rideoffer.domain.enums import (
    DriverStatus,
    PaymentMethod,
    RideStatus,
    ServiceType,
)
from rideoffer.domain.pricing import PricingEngine
from rideoffer.infrastructure.database import async_session_factory, create_tables, engine
from rideoffer.infrastructure.models import DriverModel, RideModel, UserModel


PASSENGERS = [
    {"id": "p-lucia", "name": "Lucía Fernández", "email": "lucia@example.com", "rating": 4.8, "total_rides": 12},
    {"id": "p-mateo", "name": "Mateo Quispe", "email": "mateo@example.com", "rating": 4.6, "total_rides": 7},
    {"id": "p-valeria", "name": "Valeria Rojas", "email": "valeria@example.com", "rating": 4.9, "total_rides": 21},
    {"id": "p-diego", "name": "Diego Huamán", "email": "diego@example.com", "rating": 4.4, "total_rides": 3},
    {"id": "p-camila", "name": "Camila Torres", "email": "camila@example.com", "rating": 0.0, "total_rides": 0},
    {"id": "p-andres", "name": "Andrés Salazar", "email": "andres@example.com", "rating": 4.7, "total_rides": 9},
]

DRIVERS = [
    {"id": "d-jorge", "name": "Jorge Mendoza", "rating": 4.9, "total_rides": 340, "status": DriverStatus.AVAILABLE, "service_type": ServiceType.ECONOMY},
    {"id": "d-rosa", "name": "Rosa Chávez", "rating": 4.8, "total_rides": 212, "status": DriverStatus.AVAILABLE, "service_type": ServiceType.COMFORT},
    {"id": "d-luis", "name": "Luis Paredes", "rating": 4.5, "total_rides": 98, "status": DriverStatus.AVAILABLE, "service_type": ServiceType.ECONOMY},
    {"id": "d-carmen", "name": "Carmen Vargas", "rating": 4.7, "total_rides": 156, "status": DriverStatus.UNAVAILABLE, "service_type": ServiceType.EXCLUSIVE},
    {"id": "d-pedro", "name": "Pedro Castillo", "rating": 4.6, "total_rides": 77, "status": DriverStatus.ON_RIDE, "service_type": ServiceType.ECONOMY},
]

# (passenger, pickup, dropoff, km, minutes, service, status, driver, offered_to)
RIDES = [
    ("p-lucia", "Av. Larco 345, Miraflores", "Jockey Plaza, Surco", 9.8, 24, ServiceType.ECONOMY, RideStatus.SEARCHING, None, None),
    ("p-mateo", "Parque Kennedy", "Aeropuerto Jorge Chávez", 17.5, 45, ServiceType.COMFORT, RideStatus.SEARCHING, None, None),
    ("p-valeria", "Plaza San Miguel", "Barranco", 11.2, 30, ServiceType.ECONOMY, RideStatus.COUNTER_OFFERED, None, "d-luis"),
    ("p-diego", "Real Plaza Salaverry", "San Isidro", 4.1, 12, ServiceType.ECONOMY, RideStatus.ACCEPTED, "d-pedro", None),
    ("p-andres", "Estadio Nacional", "La Molina", 12.6, 33, ServiceType.ECONOMY, RideStatus.COMPLETED, "d-jorge", None),
]


async def seed():
    await create_tables()

    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(UserModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Identities ────────────────────────────────────────────────
        session.add_all(UserModel(**p) for p in PASSENGERS)
        session.add_all(DriverModel(**d) for d in DRIVERS)
        await session.flush()
        print(f"  Created {len(PASSENGERS)} passengers, {len(DRIVERS)} drivers")

        # ── Rides ─────────────────────────────────────────────────────
        pricing = PricingEngine.from_settings(settings)
        now = datetime.now(timezone.utc)
        for i, (pid, pickup, dropoff, km, minutes, service, status, driver, offered) in enumerate(RIDES):
            estimate = pricing.estimate(km, minutes, service_type=service.value)
            fare = estimate.estimated_fare
            if status is RideStatus.COUNTER_OFFERED:
                fare = round(fare * 1.1, 2)
            session.add(
                RideModel(
                    pickup=pickup,
                    dropoff=dropoff,
                    fare=fare,
                    fare_breakdown=estimate.breakdown.to_dict(),
                    service_type=service,
                    payment_method=PaymentMethod.CASH,
                    passenger_id=pid,
                    driver_id=driver,
                    offered_to=offered,
                    offered_at=now if offered else None,
                    rejected_by=[],
                    status=status,
                    date=now - timedelta(minutes=len(RIDES) - i),
                    assignment_timestamp=now if driver else None,
                    version=0,
                )
            )
        await session.flush()
        print(f"  Created {len(RIDES)} rides")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
