"""
Seed data orchestration module.

Provides seed_all() function to execute all seed scripts in dependency order.
Can be run standalone: python -m database.seeds
"""

import asyncio

from database.seeds.demo_business import seed_demo_business


async def seed_all() -> None:
    """Execute all seed scripts in dependency order."""
    print("Starting database seeding...")
    print("-" * 50)

    await seed_demo_business()

    print("-" * 50)
    print(" Database seeding complete!")


if __name__ == "__main__":
    asyncio.run(seed_all())
