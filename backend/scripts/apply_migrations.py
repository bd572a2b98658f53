"""Apply every SQL file under backend/migrations in name order."""

import asyncio
import os
import sys

# Ensure backend path is in sys.path
if os.path.exists("backend"):
    sys.path.append(os.path.join(os.getcwd(), "backend"))
    migration_dir = os.path.join("backend", "migrations")
else:
    sys.path.append(os.getcwd())
    migration_dir = "migrations"

from app.infra.postgres import close_pool, init_pool


async def main() -> None:
    if not os.path.exists(migration_dir):
        print("Migrations directory not found.")
        return

    files = sorted(f for f in os.listdir(migration_dir) if f.endswith(".sql"))
    pool = await init_pool()
    try:
        async with pool.acquire() as conn:
            for filename in files:
                print(f"Executing {filename}...")
                with open(os.path.join(migration_dir, filename), "r") as f:
                    sql = f.read()
                async with conn.transaction():
                    await conn.execute(sql)
                print(f"Finished {filename}")
    finally:
        await close_pool()


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main())
