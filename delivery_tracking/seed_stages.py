"""
Database seeding script for the delivery stage catalogue.

Creates the tables and inserts the default marketplace stages when the
catalogue is empty. Run this once after the database is set up.
"""

import asyncio

from delivery_tracking.app.db.session import AsyncSessionLocal, engine, Base
from delivery_tracking.app.models.delivery_stage import DeliveryStage  # noqa: F401
from delivery_tracking.app.services.stage_registry import DEFAULT_STAGES, seed_default_stages


async def seed_stages():
    """Seed the default stages, skipping if any stage already exists."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting stage seeding...")
        created = await seed_default_stages(db)

        if not created:
            print("ℹ️  Delivery stages already exist, skipping seeding")
            return

        print(f"✅ Created {created} delivery stages:")
        for stage in DEFAULT_STAGES:
            print(f"  {stage.position}. {stage.code:<18} {stage.display_name}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_stages())
