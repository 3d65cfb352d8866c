"""
Capping Policy.

Minimum balance floor per account tier. A policy value is resolved once per
request and handed to the ledger, so a transaction never sees the floors
change halfway through.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.core.config import settings
from reseller_backend.app.core.exceptions import ValidationFailedError
from reseller_backend.app.models.capping_settings import CappingSettings
from reseller_backend.app.models.enums import AccountTier


@dataclass(frozen=True)
class CappingPolicy:
    distributor_floor: Decimal
    reseller_floor: Decimal

    @classmethod
    def defaults(cls) -> "CappingPolicy":
        return cls(
            distributor_floor=Decimal(str(settings.default_distributor_floor)),
            reseller_floor=Decimal(str(settings.default_reseller_floor)),
        )

    def floor(self, tier: AccountTier) -> Decimal:
        """Lowest balance a ledger transaction may leave an account of this tier with."""
        if tier == AccountTier.ADMIN:
            return Decimal("0")
        if tier == AccountTier.DISTRIBUTOR:
            return self.distributor_floor
        if tier == AccountTier.RESELLER:
            return self.reseller_floor
        raise ValueError(f"No capping floor defined for tier {tier!r}")


class CappingResolver:

    @staticmethod
    async def _current_row(db: AsyncSession) -> Optional[CappingSettings]:
        result = await db.execute(select(CappingSettings).order_by(CappingSettings.id).limit(1))
        return result.scalar_one_or_none()

    @staticmethod
    async def resolve(db: AsyncSession) -> CappingPolicy:
        """
        Read the stored floors.

        Falls back to the configured defaults when nothing has been stored yet.
        Never writes.
        """
        row = await CappingResolver._current_row(db)
        if row is None:
            return CappingPolicy.defaults()
        return CappingPolicy(
            distributor_floor=Decimal(row.distributor_floor),
            reseller_floor=Decimal(row.reseller_floor),
        )

    @staticmethod
    async def update(
        db: AsyncSession,
        distributor_floor: Decimal,
        reseller_floor: Decimal,
        admin_id: Optional[int] = None
    ) -> CappingPolicy:
        """
        Store new floors. Only transactions resolved after the commit see them.

        Raises:
            ValidationFailedError: If a floor is missing or negative
        """
        if distributor_floor is None or reseller_floor is None:
            raise ValidationFailedError("Both distributor and reseller floors are required")
        if distributor_floor < 0:
            raise ValidationFailedError("Distributor capping must be a non-negative number")
        if reseller_floor < 0:
            raise ValidationFailedError("Reseller capping must be a non-negative number")

        row = await CappingResolver._current_row(db)
        if row is None:
            row = CappingSettings()
            db.add(row)
        row.distributor_floor = distributor_floor
        row.reseller_floor = reseller_floor
        row.updated_by_admin_id = admin_id

        await db.commit()

        return CappingPolicy(distributor_floor=Decimal(distributor_floor), reseller_floor=Decimal(reseller_floor))
