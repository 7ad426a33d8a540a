# scripts/bootstrap_db.py
import sys
from pathlib import Path

from sqlalchemy import text

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from dashboard_iam.application.role_service import seed_roles
from dashboard_iam.infrastructure.database.identity_store import SqlIdentityStore
from dashboard_iam.infrastructure.database.session import (
    create_schema,
    get_engine,
    get_sessionmaker,
)


async def bootstrap():
    async with get_engine().begin() as conn:
        result = await conn.execute(text("SELECT 1"))
        print("DB Connected:", result.scalar())
    await create_schema()
    created = await seed_roles(SqlIdentityStore(get_sessionmaker()))
    print("Seeded roles:", created or "none (already present)")
    await get_engine().dispose()

asyncio.run(bootstrap())
