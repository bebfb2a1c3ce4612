import argparse
import asyncio

from sqlalchemy import func, select

from resgrid.models.resource import Resource
from resgrid.modules.resources.domain.seed import seed_resources
from resgrid.shared.db.session import async_session_maker, dispose_engine, init_models


async def seed_data(count: int, seed: int, force: bool) -> None:
    """Seed the demo inventory used by the dashboard."""
    print(f"🌱 Seeding {count} resources...", flush=True)
    await init_models()

    async with async_session_maker() as db:
        existing = (await db.execute(select(func.count()).select_from(Resource))).scalar_one()
        if existing and not force:
            print(f"  ~ {existing} resources already exist, skipping seed.", flush=True)
        else:
            if existing:
                await db.execute(Resource.__table__.delete())
                print(f"  - Removed {existing} existing resources", flush=True)
            await seed_resources(db, count, seed=seed)
            print(f"  + Created {count} resources (seed={seed})", flush=True)

    print("✅ Resource seeding complete!", flush=True)
    await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo resources")
    parser.add_argument("--count", type=int, default=1000)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--force", action="store_true", help="Replace existing resources")
    args = parser.parse_args()
    asyncio.run(seed_data(args.count, args.seed, args.force))
