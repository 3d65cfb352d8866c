"""
Database seeding script for initial accounts.

Creates the admin, a demo distributor with one reseller, and a starter
package catalog for development.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reseller_backend.app.db.session import AsyncSessionLocal
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.package import Package
from reseller_backend.app.models.enums import AccountTier, AccountStatus
from reseller_backend.app.core.security import get_password_hash
from sqlalchemy import select


async def seed_users():
    """
    Seed initial accounts with different tiers.

    Creates:
    - 1 admin
    - 1 distributor
    - 1 reseller owned by that distributor
    - 2 packages
    """
    async with AsyncSessionLocal() as db:
        print("🌱 Starting account seeding...")

        # Check if an admin already exists
        result = await db.execute(
            select(Account).where(Account.tier == AccountTier.ADMIN)
        )
        existing_admin = result.scalars().first()

        if existing_admin:
            print("ℹ️  Admin account already exists, skipping seeding")
            return

        admin = Account(
            name="Admin",
            email="admin@reseller.local",
            hashed_password=get_password_hash("admin123"),
            tier=AccountTier.ADMIN,
            status=AccountStatus.ACTIVE,
            balance=0
        )
        db.add(admin)
        print("✅ Created admin account (email: admin@reseller.local, password: admin123)")

        distributor = Account(
            name="Demo Distributor",
            email="distributor@reseller.local",
            hashed_password=get_password_hash("distributor123"),
            tier=AccountTier.DISTRIBUTOR,
            status=AccountStatus.ACTIVE,
            balance=0
        )
        db.add(distributor)
        await db.flush()
        print("✅ Created distributor account (email: distributor@reseller.local, password: distributor123)")

        reseller = Account(
            name="Demo Reseller",
            email="reseller@reseller.local",
            hashed_password=get_password_hash("reseller123"),
            tier=AccountTier.RESELLER,
            status=AccountStatus.ACTIVE,
            balance=0,
            parent_id=distributor.id
        )
        db.add(reseller)
        print("✅ Created reseller account (email: reseller@reseller.local, password: reseller123)")

        db.add_all([
            Package(name="Basic Monthly", cost=300, duration_days=30),
            Package(name="Premium Quarterly", cost=800, duration_days=90),
        ])
        print("✅ Created 2 packages")

        # Commit everything
        await db.commit()

        print("\n🎉 Account seeding completed successfully!")
        print("\nSeeded accounts:")
        print("  - admin:       admin@reseller.local / admin123")
        print("  - distributor: distributor@reseller.local / distributor123")
        print("  - reseller:    reseller@reseller.local / reseller123")
        print("\nNote: fund the admin with POST /v1/credits/self-credit before crediting anyone")


if __name__ == "__main__":
    asyncio.run(seed_users())
