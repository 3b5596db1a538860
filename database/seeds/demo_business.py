"""
Seed script for a demo tenant.

Populates the database with one business ready to take bookings:
- Main branch "Centro"
- 2 professionals (Lucía, Martín) working Monday-Saturday 09:00-18:00
- 3 global services (Corte, Color, Peinado)
- Daily lunch break 13:00-14:00
"""

import asyncio
from datetime import time
from decimal import Decimal
from typing import Any

from sqlalchemy import select

from database.connection import AsyncSessionLocal
from database.models import (
    Branch,
    BreakTime,
    Business,
    DEFAULT_TIMEZONE,
    Professional,
    Service,
    WorkingHours,
)

DEMO_BUSINESS_SLUG = "demo-salon"

PROFESSIONALS_DATA: list[str] = ["Lucía", "Martín"]

SERVICES_DATA: list[dict[str, Any]] = [
    {"name": "Corte", "duration_minutes": 30, "price": Decimal("8000.00")},
    {"name": "Color", "duration_minutes": 90, "price": Decimal("25000.00")},
    {"name": "Peinado", "duration_minutes": 45, "price": Decimal("12000.00")},
]

# Monday (1) to Saturday (6)
WORKING_DAYS = range(1, 7)
WORKDAY_START = time(9, 0)
WORKDAY_END = time(18, 0)
LUNCH_START = time(13, 0)
LUNCH_END = time(14, 0)


async def seed_demo_business() -> None:
    """
    Seed a demo business with its main branch, staff, services and calendar.

    Skips everything if the business slug already exists.
    """
    async with AsyncSessionLocal() as session:
        async with session.begin():
            existing = await session.execute(
                select(Business).where(Business.slug == DEMO_BUSINESS_SLUG)
            )
            if existing.scalar_one_or_none():
                print(f"  Business '{DEMO_BUSINESS_SLUG}' already exists, skipping")
                return

            business = Business(
                name="Salón Demo",
                slug=DEMO_BUSINESS_SLUG,
                timezone=DEFAULT_TIMEZONE,
                slot_granularity_minutes=30,
            )
            session.add(business)
            await session.flush()

            branch = Branch(
                business_id=business.id,
                name="Salón Demo - Centro",
                slug="centro",
                timezone=DEFAULT_TIMEZONE,
                is_main=True,
            )
            session.add(branch)
            await session.flush()

            for name in PROFESSIONALS_DATA:
                professional = Professional(
                    business_id=business.id, branch_id=branch.id, name=name
                )
                session.add(professional)
                await session.flush()
                for day in WORKING_DAYS:
                    session.add(
                        WorkingHours(
                            professional_id=professional.id,
                            day_of_week=day,
                            start_time=WORKDAY_START,
                            end_time=WORKDAY_END,
                        )
                    )
                print(f"  Created professional: {name}")

            for service_data in SERVICES_DATA:
                session.add(Service(business_id=business.id, **service_data))
                print(f"  Created service: {service_data['name']}")

            for day in WORKING_DAYS:
                session.add(
                    BreakTime(
                        branch_id=branch.id,
                        day_of_week=day,
                        start_time=LUNCH_START,
                        end_time=LUNCH_END,
                        name="Almuerzo",
                    )
                )

    print(f" Demo business '{DEMO_BUSINESS_SLUG}' seeded")


if __name__ == "__main__":
    asyncio.run(seed_demo_business())
