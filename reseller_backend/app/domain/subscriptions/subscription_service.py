"""
Subscription Service (Domain Logic).

Subscriber devices and their paid activation. Activations, renewals and
package or expiry changes are charged to the owning reseller through the
ledger, in the same transaction as the subscriber update.
"""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reseller_backend.app.core.clock import utcnow, as_utc
from reseller_backend.app.core.exceptions import (
    ValidationFailedError,
    InsufficientPermissionsError,
    ResourceNotFoundError,
)
from reseller_backend.app.domain.hierarchy.account_store import AccountStore
from reseller_backend.app.domain.hierarchy.cascade_engine import CascadeEngine
from reseller_backend.app.domain.ledger.ledger_service import LedgerService, CENT
from reseller_backend.app.models.account import Account
from reseller_backend.app.models.enums import AccountTier, AccountStatus, SubscriberStatus
from reseller_backend.app.models.package import Package
from reseller_backend.app.models.subscriber import Subscriber
from reseller_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("reseller.subscribers")


def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


def normalize_mac(mac_address: Optional[str]) -> str:
    mac = (mac_address or "").strip().lower()
    if not mac:
        raise ValidationFailedError("MAC address is required")
    return mac


def extension_cost(packages: list[Package], old_expiry: Optional[datetime], new_expiry: Optional[datetime]) -> Decimal:
    """Pro-rated cost of moving an expiry later, whole days rounded up."""
    if old_expiry is None or new_expiry is None or new_expiry <= old_expiry:
        return Decimal("0")
    days = math.ceil((new_expiry - old_expiry) / timedelta(days=1))
    daily = sum((Decimal(p.cost) / p.duration_days for p in packages), Decimal("0"))
    return (daily * days).quantize(CENT, rounding=ROUND_HALF_UP)


class ActivationResult:
    """Subscriber after a paid activation, renewal or update."""

    def __init__(
        self,
        subscriber: Subscriber,
        charged: Decimal,
        remaining_balance: Optional[Decimal],
        breakdown: Optional[dict] = None
    ):
        self.subscriber = subscriber
        self.charged = charged
        self.remaining_balance = remaining_balance
        self.breakdown = breakdown


class BulkRegistration:

    def __init__(self, created: list[Subscriber], failed: list[dict]):
        self.created = created
        self.failed = failed


class SubscriptionService:

    def __init__(self, db: AsyncSession, ledger: LedgerService):
        self.db = db
        self.ledger = ledger
        self.cascade = CascadeEngine(db)

    # Visibility

    async def _visible_reseller_ids(self, caller: Account) -> Optional[list[int]]:
        """None means every subscriber is visible."""
        if caller.tier == AccountTier.ADMIN:
            return None
        if caller.tier == AccountTier.DISTRIBUTOR:
            return await AccountStore.reseller_ids_of(self.db, caller.id)
        if caller.tier == AccountTier.RESELLER:
            return [caller.id]
        raise ValueError(f"Unhandled account tier {caller.tier!r}")

    async def _get_visible(self, caller: Account, subscriber_id: int) -> Subscriber:
        subscriber = await AccountStore.get_subscriber(self.db, subscriber_id)
        reseller_ids = await self._visible_reseller_ids(caller)
        if reseller_ids is not None and subscriber.reseller_id not in reseller_ids:
            raise InsufficientPermissionsError("Access denied. You do not have permission to access this subscriber.")
        return subscriber

    async def list_visible(self, caller: Account, status: Optional[SubscriberStatus] = None) -> list[Subscriber]:
        """
        Subscribers the caller may see, newest first.

        Active subscribers whose expiry has passed are flipped to Inactive first.
        """
        reseller_ids = await self._visible_reseller_ids(caller)

        query = select(Subscriber)
        if reseller_ids is not None:
            query = query.where(Subscriber.reseller_id.in_(reseller_ids))

        ids_result = await self.db.execute(query.with_only_columns(Subscriber.id))
        visible_ids = list(ids_result.scalars().all())

        expired = await AccountStore.expire_lapsed_subscribers(self.db, utcnow(), visible_ids)
        await self.db.commit()
        if expired:
            logger.info("%s lapsed subscribers set Inactive", expired)

        if status is not None:
            query = query.where(Subscriber.status == status)
        result = await self.db.execute(
            query.order_by(Subscriber.created_at.desc(), Subscriber.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_visible(self, caller: Account, subscriber_id: int) -> Subscriber:
        subscriber = await self._get_visible(caller, subscriber_id)
        if await AccountStore.expire_lapsed_subscribers(self.db, utcnow(), [subscriber.id]):
            await self.db.commit()
            await self.db.refresh(subscriber)
        return subscriber

    # Lifecycle

    async def create(
        self,
        caller: Account,
        name: str,
        serial_number: str,
        mac_address: str,
        reseller_id: Optional[int] = None
    ) -> Subscriber:
        """
        Register a Fresh subscriber.

        A reseller always owns what it creates; a distributor picks one of
        its resellers; admin may pick any reseller or leave it unassigned.
        """
        if not name or not serial_number:
            raise ValidationFailedError("Name and serial number are required")
        mac = normalize_mac(mac_address)

        owner = await self._resolve_owner(caller, reseller_id)

        if owner is not None and owner.subscriber_limit:
            owned = await AccountStore.count_subscribers(self.db, owner.id)
            if owned >= owner.subscriber_limit:
                raise ValidationFailedError(
                    f"Subscriber limit reached. {owner.name} can have at most {owner.subscriber_limit} subscribers"
                )

        existing = await self.db.execute(
            select(Subscriber.id).where(func.lower(Subscriber.mac_address) == mac)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationFailedError("Subscriber with this MAC address already exists")

        subscriber = Subscriber(
            name=name.strip(),
            serial_number=serial_number.strip(),
            mac_address=mac,
            reseller_id=owner.id if owner else None,
            status=SubscriberStatus.FRESH,
            package_ids=[]
        )
        self.db.add(subscriber)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationFailedError("Subscriber with this MAC address already exists")
        await self.db.refresh(subscriber)

        await log_event(
            self.db,
            action=AuditAction.SUBSCRIBER_CREATED,
            actor_id=caller.id,
            actor_name=caller.name,
            target_account_id=subscriber.reseller_id,
            metadata={"subscriber_id": subscriber.id, "mac_address": mac}
        )
        return subscriber

    async def activate(
        self,
        caller: Account,
        subscriber_id: int,
        package_ids: list[int],
        primary_package_id: Optional[int] = None
    ) -> ActivationResult:
        """
        Activate a Fresh or Inactive subscriber with packages.

        Cost is the sum of package costs, validity the longest package
        duration, ending at the end of that day (UTC).
        """
        subscriber = await self._get_visible(caller, subscriber_id)
        if subscriber.status == SubscriberStatus.ACTIVE:
            raise ValidationFailedError("Subscriber is already active, renew it instead")

        packages = await self._load_packages(package_ids)
        if primary_package_id is not None and primary_package_id not in package_ids:
            raise ValidationFailedError("Primary package must be one of the selected packages")

        now = utcnow()
        expiry = end_of_day(now + timedelta(days=max(p.duration_days for p in packages)))
        return await self._charge_and_apply(
            caller,
            subscriber,
            packages,
            expiry,
            primary_package_id or package_ids[0],
            AuditAction.SUBSCRIBER_ACTIVATED
        )

    async def renew(self, caller: Account, subscriber_id: int) -> ActivationResult:
        """
        Extend validity by the longest package duration from max(now, expiry).
        """
        subscriber = await self._get_visible(caller, subscriber_id)
        if not subscriber.package_ids or subscriber.status == SubscriberStatus.FRESH:
            raise ValidationFailedError("Subscriber has never been activated")

        packages = await self._load_packages(list(subscriber.package_ids))

        now = utcnow()
        base = max(now, as_utc(subscriber.expiry_date) or now)
        expiry = end_of_day(base + timedelta(days=max(p.duration_days for p in packages)))
        return await self._charge_and_apply(
            caller,
            subscriber,
            packages,
            expiry,
            subscriber.primary_package_id,
            AuditAction.SUBSCRIBER_RENEWED
        )

    async def update(
        self,
        caller: Account,
        subscriber_id: int,
        name: Optional[str] = None,
        serial_number: Optional[str] = None,
        mac_address: Optional[str] = None,
        package_ids: Optional[list[int]] = None,
        expiry_date: Optional[datetime] = None,
        primary_package_id: Optional[int] = None
    ) -> ActivationResult:
        """
        Edit a subscriber's details, packages or expiry.

        Packages and expiry only change on an Active subscriber. Packages
        added to the current set are charged at full cost. Moving the expiry
        later is charged pro rata: every selected package's cost divided by
        its duration, per extra day. A shorter expiry is not refunded.
        """
        subscriber = await self.get_visible(caller, subscriber_id)
        mac = normalize_mac(mac_address) if mac_address is not None else None
        old_package_ids = list(subscriber.package_ids or [])
        old_expiry = as_utc(subscriber.expiry_date)

        paid_change = package_ids is not None or expiry_date is not None or primary_package_id is not None
        if paid_change and subscriber.status != SubscriberStatus.ACTIVE:
            raise ValidationFailedError("Only an active subscriber can change packages or expiry, activate it instead")

        new_package_ids = list(dict.fromkeys(package_ids)) if package_ids is not None else old_package_ids
        packages = await self._load_packages(new_package_ids) if paid_change else []

        primary = primary_package_id or subscriber.primary_package_id
        if primary_package_id is not None and primary_package_id not in new_package_ids:
            raise ValidationFailedError("Primary package must be one of the selected packages")
        if paid_change and primary not in new_package_ids:
            primary = new_package_ids[0]

        expiry = old_expiry
        if expiry_date is not None:
            expiry = end_of_day(as_utc(expiry_date))
            if expiry <= utcnow():
                raise ValidationFailedError("Expiry date cannot be in the past")

        if mac is not None:
            existing = await self.db.execute(
                select(Subscriber.id).where(func.lower(Subscriber.mac_address) == mac, Subscriber.id != subscriber_id)
            )
            if existing.scalar_one_or_none() is not None:
                raise ValidationFailedError("Subscriber with this MAC address already exists")

        breakdown = {
            "packages": sum((Decimal(p.cost) for p in packages if p.id not in old_package_ids), Decimal("0")),
            "extension": extension_cost(packages, old_expiry, expiry)
        }
        cost = breakdown["packages"] + breakdown["extension"]

        owner_id = None
        if paid_change:
            if subscriber.reseller_id is None:
                raise ValidationFailedError("Assign the subscriber to a reseller before changing its packages")
            owner_id = (await self._active_owner(subscriber.reseller_id)).id

        charged = Decimal("0")
        remaining = None
        try:
            if caller.tier != AccountTier.ADMIN and cost > 0:
                entry = await self.ledger.charge_subscription(owner_id, cost)
                charged, remaining = cost, entry.sender_balance_after

            subscriber = await AccountStore.get_subscriber(self.db, subscriber_id)
            if name is not None:
                subscriber.name = name.strip()
            if serial_number is not None:
                subscriber.serial_number = serial_number.strip()
            if mac is not None:
                subscriber.mac_address = mac
            if paid_change:
                subscriber.package_ids = new_package_ids
                subscriber.primary_package_id = primary
                subscriber.expiry_date = expiry
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationFailedError("Subscriber with this MAC address already exists")
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(subscriber)

        await log_event(
            self.db,
            action=AuditAction.SUBSCRIBER_UPDATED,
            actor_id=caller.id,
            actor_name=caller.name,
            target_account_id=subscriber.reseller_id,
            metadata={
                "subscriber_id": subscriber_id,
                "package_ids": list(subscriber.package_ids or []),
                "charged": str(charged),
                "expiry_date": expiry.isoformat() if expiry else None
            }
        )
        return ActivationResult(subscriber, charged, remaining, breakdown if charged else None)

    async def bulk_register(self, caller: Account, rows: list[dict]) -> BulkRegistration:
        """
        Admin registers many unassigned Fresh devices at once.

        Rows are independent: a row with missing fields or a MAC that is
        already registered is reported in failed and the rest go ahead.
        """
        if caller.tier != AccountTier.ADMIN:
            raise InsufficientPermissionsError("Only admins can perform bulk uploads")
        if not rows:
            raise ValidationFailedError("No subscribers to upload")

        created_ids = []
        failed = []
        for index, row in enumerate(rows):
            try:
                subscriber = await self.create(
                    caller,
                    name=row.get("name"),
                    serial_number=row.get("serial_number"),
                    mac_address=row.get("mac_address")
                )
                created_ids.append(subscriber.id)
            except ValidationFailedError as exc:
                failed.append({"row": index, "mac_address": row.get("mac_address"), "reason": exc.message})

        created = []
        if created_ids:
            result = await self.db.execute(
                select(Subscriber)
                .where(Subscriber.id.in_(created_ids))
                .order_by(Subscriber.id)
                .execution_options(populate_existing=True)
            )
            created = list(result.scalars().all())

        logger.info("Bulk upload by %s: %s created, %s failed", caller.id, len(created), len(failed))
        return BulkRegistration(created, failed)

    async def deactivate(self, caller: Account, subscriber_id: int) -> Subscriber:
        subscriber = await self._get_visible(caller, subscriber_id)
        if subscriber.status == SubscriberStatus.INACTIVE:
            return subscriber

        subscriber.status = SubscriberStatus.INACTIVE
        await self.db.commit()
        await self.db.refresh(subscriber)

        await log_event(
            self.db,
            action=AuditAction.SUBSCRIBER_DEACTIVATED,
            actor_id=caller.id,
            actor_name=caller.name,
            target_account_id=subscriber.reseller_id,
            metadata={"subscriber_id": subscriber.id}
        )
        return subscriber

    async def remove(self, caller: Account, subscriber_id: int) -> bool:
        """
        Admin deletes the subscriber; anyone else releases it back to an
        unassigned Fresh device.

        Returns:
            True if the row was deleted, False if it was released
        """
        subscriber = await self._get_visible(caller, subscriber_id)
        reseller_id = subscriber.reseller_id

        if caller.tier == AccountTier.ADMIN:
            await self.db.delete(subscriber)
            action, deleted = AuditAction.SUBSCRIBER_DELETED, True
        else:
            subscriber.reseller_id = None
            subscriber.status = SubscriberStatus.FRESH
            subscriber.package_ids = []
            subscriber.primary_package_id = None
            subscriber.expiry_date = None
            action, deleted = AuditAction.SUBSCRIBER_RELEASED, False
        await self.db.commit()

        await log_event(
            self.db,
            action=action,
            actor_id=caller.id,
            actor_name=caller.name,
            target_account_id=reseller_id,
            metadata={"subscriber_id": subscriber_id}
        )
        return deleted

    # Internals

    async def _resolve_owner(self, caller: Account, reseller_id: Optional[int]) -> Optional[Account]:
        if caller.tier == AccountTier.RESELLER:
            if reseller_id is not None and reseller_id != caller.id:
                raise InsufficientPermissionsError("Resellers can only create subscribers for themselves")
            return caller
        if caller.tier == AccountTier.DISTRIBUTOR:
            if reseller_id is None:
                raise ValidationFailedError("Reseller is required")
            reseller = await AccountStore.get_account(self.db, reseller_id, AccountTier.RESELLER, resource="Reseller")
            if reseller.parent_id != caller.id:
                raise InsufficientPermissionsError("You can only create subscribers for your resellers")
            return reseller
        if caller.tier == AccountTier.ADMIN:
            if reseller_id is None:
                return None
            return await AccountStore.get_account(self.db, reseller_id, AccountTier.RESELLER, resource="Reseller")
        raise ValueError(f"Unhandled account tier {caller.tier!r}")

    async def _load_packages(self, package_ids: list[int]) -> list[Package]:
        if not package_ids:
            raise ValidationFailedError("At least one package is required")
        result = await self.db.execute(select(Package).where(Package.id.in_(package_ids)))
        packages = list(result.scalars().all())
        missing = set(package_ids) - {p.id for p in packages}
        if missing:
            raise ResourceNotFoundError("Package", sorted(missing)[0])
        return packages

    async def _active_owner(self, reseller_id: int) -> Account:
        """
        Load the owning reseller after checking its and its distributor's validity.
        A lapsed distributor cascades down before the reseller is looked at.
        """
        reseller = await AccountStore.get_account(self.db, reseller_id, AccountTier.RESELLER, resource="Reseller")
        reseller = await self.cascade.check_hierarchy(reseller)
        if reseller.status != AccountStatus.ACTIVE:
            raise InsufficientPermissionsError(f"Reseller {reseller.name} is inactive")
        return reseller

    async def _charge_and_apply(
        self,
        caller: Account,
        subscriber: Subscriber,
        packages: list[Package],
        expiry: datetime,
        primary_package_id: Optional[int],
        action: str
    ) -> ActivationResult:
        if subscriber.reseller_id is None:
            raise ValidationFailedError("Assign the subscriber to a reseller before activating it")

        owner = await self._active_owner(subscriber.reseller_id)
        owner_id = owner.id
        subscriber_id = subscriber.id
        cost = sum((Decimal(p.cost) for p in packages), Decimal("0"))
        package_ids = [p.id for p in packages]

        charged = Decimal("0")
        remaining = None
        try:
            if caller.tier != AccountTier.ADMIN and cost > 0:
                entry = await self.ledger.charge_subscription(owner_id, cost)
                charged, remaining = cost, entry.sender_balance_after

            subscriber = await AccountStore.get_subscriber(self.db, subscriber_id)
            subscriber.status = SubscriberStatus.ACTIVE
            subscriber.expiry_date = expiry
            subscriber.package_ids = package_ids
            subscriber.primary_package_id = primary_package_id
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(subscriber)

        logger.info(
            "Subscriber %s %s until %s, charged %s to reseller %s",
            subscriber_id, action.lower(), expiry.isoformat(), charged, owner_id
        )
        await log_event(
            self.db,
            action=action,
            actor_id=caller.id,
            actor_name=caller.name,
            target_account_id=owner_id,
            metadata={
                "subscriber_id": subscriber_id,
                "package_ids": package_ids,
                "charged": str(charged),
                "expiry_date": expiry.isoformat()
            }
        )
        return ActivationResult(subscriber, charged, remaining)
