"""
Database seeding script for a demo agency.

Creates one agency with a manager, a leader, a client and an operator so
the credit ledger can be exercised locally (see smoke_credit_ledger.py).
Run this script after the database is reachable; tables are created if missing.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from ofistur.app.db.session import AsyncSessionLocal, Base, engine
from ofistur.app.models.agency import Agency
from ofistur.app.models.user import User
from ofistur.app.models.subjects import Client, Operator
from ofistur.app.models.enums import UserRole

# Registers the remaining tables on Base.metadata
from ofistur.app.models import agency_counter, audit_log, credit_account, credit_entry  # noqa: F401

DEMO_AGENCY = "Ofistur Demo"


async def seed_agency():
    """
    Seed a demo agency.

    Creates:
    - 1 agency
    - 1 MANAGER user (ledger admin) and 1 LEADER user
    - 1 client and 1 operator
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting agency seeding...")

        result = await db.execute(select(Agency).where(Agency.name == DEMO_AGENCY))
        existing = result.scalar_one_or_none()

        if existing:
            print(f"ℹ️  Agency '{DEMO_AGENCY}' already exists (id={existing.id_agency}), skipping seeding")
            return

        agency = Agency(name=DEMO_AGENCY)
        db.add(agency)
        await db.flush()

        manager = User(
            id_agency=agency.id_agency,
            email="gerencia@ofistur.demo",
            first_name="Gerencia",
            role=UserRole.MANAGER,
        )
        leader = User(
            id_agency=agency.id_agency,
            email="lider@ofistur.demo",
            first_name="Lider",
            role=UserRole.LEADER,
        )
        client = Client(id_agency=agency.id_agency, first_name="Juan", last_name="Perez")
        operator = Operator(id_agency=agency.id_agency, name="Operador Demo")
        db.add_all([manager, leader, client, operator])
        await db.flush()

        await db.commit()

        print("\n🎉 Agency seeding completed successfully!")
        print(f"  - agency_id:   {agency.id_agency}")
        print(f"  - MANAGER:     user_id={manager.id_user}")
        print(f"  - LEADER:      user_id={leader.id_user}")
        print(f"  - client_id:   {client.id_client}")
        print(f"  - operator_id: {operator.id_operator}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_agency())
