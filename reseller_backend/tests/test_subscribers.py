"""
Subscriber Lifecycle Tests.

Creation rules, paid activation and renewal through the ledger, lazy
expiry and release.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import select

from reseller_backend.app.core.clock import utcnow, as_utc
from reseller_backend.app.core.exceptions import (
    ValidationFailedError,
    InsufficientPermissionsError,
    InsufficientFundsError,
)
from reseller_backend.app.domain.ledger.capping_policy import CappingPolicy
from reseller_backend.app.domain.ledger.ledger_service import LedgerService
from reseller_backend.app.domain.subscriptions.subscription_service import SubscriptionService
from reseller_backend.app.models.enums import AccountTier, AccountStatus, SubscriberStatus
from reseller_backend.app.models.ledger_entry import LedgerEntry
from reseller_backend.app.models.ledger_enums import LedgerEntryType
from reseller_backend.app.models.package import Package
from reseller_backend.app.models.subscriber import Subscriber


@pytest.fixture
def service(db_session):
    return SubscriptionService(db_session, LedgerService(db_session, CappingPolicy.defaults()))


@pytest.fixture
async def catalog(db_session):
    basic = Package(name="Basic", cost=Decimal("300"), duration_days=30)
    sports = Package(name="Sports", cost=Decimal("200"), duration_days=60)
    db_session.add_all([basic, sports])
    await db_session.commit()
    return basic, sports


async def ledger_entries(db):
    result = await db.execute(select(LedgerEntry))
    return result.scalars().all()


# Creation

async def test_reseller_creates_fresh_subscriber(service, reseller):
    subscriber = await service.create(reseller, "Living Room", "SN-1", "  AA:BB:CC:00:11:22 ")

    assert subscriber.status == SubscriberStatus.FRESH
    assert subscriber.reseller_id == reseller.id
    assert subscriber.mac_address == "aa:bb:cc:00:11:22"
    assert subscriber.expiry_date is None


async def test_mac_address_is_unique_ignoring_case(service, reseller):
    await service.create(reseller, "Box 1", "SN-1", "aa:bb:cc:00:11:22")

    with pytest.raises(ValidationFailedError):
        await service.create(reseller, "Box 2", "SN-2", "AA:BB:CC:00:11:22")


async def test_subscriber_limit_is_enforced(service, account_factory, distributor):
    limited = await account_factory(AccountTier.RESELLER, "Small Res", parent=distributor, subscriber_limit=1)
    await service.create(limited, "Box 1", "SN-1", "00:00:00:00:00:01")

    with pytest.raises(ValidationFailedError) as exc_info:
        await service.create(limited, "Box 2", "SN-2", "00:00:00:00:00:02")
    assert "limit" in exc_info.value.message


async def test_distributor_creates_for_own_reseller_only(service, account_factory, distributor, reseller):
    other_dist = await account_factory(AccountTier.DISTRIBUTOR, "Dist Two")
    foreign = await account_factory(AccountTier.RESELLER, "Foreign Res", parent=other_dist)

    subscriber = await service.create(distributor, "Box", "SN-1", "00:00:00:00:00:01", reseller_id=reseller.id)
    assert subscriber.reseller_id == reseller.id

    with pytest.raises(InsufficientPermissionsError):
        await service.create(distributor, "Box", "SN-2", "00:00:00:00:00:02", reseller_id=foreign.id)
    with pytest.raises(ValidationFailedError):
        await service.create(distributor, "Box", "SN-3", "00:00:00:00:00:03")


async def test_admin_may_leave_subscriber_unassigned(service, admin):
    subscriber = await service.create(admin, "Spare", "SN-9", "00:00:00:00:00:09")

    assert subscriber.reseller_id is None


# Activation

async def test_activation_charges_reseller_through_ledger(db_session, service, catalog, reseller):
    basic, sports = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")

    result = await service.activate(reseller, subscriber.id, [basic.id, sports.id], sports.id)

    assert result.charged == Decimal("500")
    assert result.remaining_balance == Decimal("4500")
    assert result.subscriber.status == SubscriberStatus.ACTIVE
    assert result.subscriber.primary_package_id == sports.id

    expiry = as_utc(result.subscriber.expiry_date)
    assert (expiry.hour, expiry.minute, expiry.second) == (23, 59, 59)
    assert timedelta(days=59) < expiry - utcnow() <= timedelta(days=61)

    entries = await ledger_entries(db_session)
    assert len(entries) == 1
    assert entries[0].entry_type == LedgerEntryType.SUBSCRIPTION_CHARGE
    assert entries[0].sender_id == reseller.id
    assert entries[0].target_id is None
    await db_session.refresh(reseller)
    assert reseller.balance == Decimal("4500")


async def test_activation_only_needs_balance_to_cover_cost(db_session, service, catalog, account_factory, distributor):
    """The reseller floor does not apply to subscription charges."""
    basic, _ = catalog
    res = await account_factory(AccountTier.RESELLER, "Low Res", balance=1200, parent=distributor)
    subscriber = await service.create(res, "Box", "SN-1", "00:00:00:00:00:01")

    result = await service.activate(res, subscriber.id, [basic.id])

    assert result.remaining_balance == Decimal("900")


async def test_activation_without_balance_changes_nothing(db_session, service, catalog, account_factory, distributor):
    basic, _ = catalog
    res = await account_factory(AccountTier.RESELLER, "Broke Res", balance=100, parent=distributor)
    subscriber = await service.create(res, "Box", "SN-1", "00:00:00:00:00:01")
    subscriber_id = subscriber.id

    with pytest.raises(InsufficientFundsError):
        await service.activate(res, subscriber_id, [basic.id])

    stored = await db_session.get(Subscriber, subscriber_id, populate_existing=True)
    assert stored.status == SubscriberStatus.FRESH
    assert await ledger_entries(db_session) == []
    await db_session.refresh(res)
    assert res.balance == Decimal("100")


async def test_admin_activation_is_not_charged(db_session, service, catalog, admin, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")

    result = await service.activate(admin, subscriber.id, [basic.id])

    assert result.charged == Decimal("0")
    assert result.subscriber.status == SubscriberStatus.ACTIVE
    assert await ledger_entries(db_session) == []


async def test_lapsed_reseller_cannot_activate(db_session, service, catalog, admin, account_factory, distributor):
    basic, _ = catalog
    res = await account_factory(
        AccountTier.RESELLER, "Old Res", balance=5000, parent=distributor,
        valid_until=utcnow() - timedelta(hours=1)
    )
    subscriber = await service.create(admin, "Box", "SN-1", "00:00:00:00:00:01", reseller_id=res.id)

    with pytest.raises(InsufficientPermissionsError):
        await service.activate(admin, subscriber.id, [basic.id])

    await db_session.refresh(res)
    assert res.status == AccountStatus.INACTIVE


async def test_lapsed_distributor_blocks_its_resellers(db_session, service, catalog, admin, account_factory):
    basic, _ = catalog
    dist = await account_factory(AccountTier.DISTRIBUTOR, "Old Dist", valid_until=utcnow() - timedelta(days=1))
    res = await account_factory(AccountTier.RESELLER, "Res Under Old", balance=5000, parent=dist)
    subscriber = await service.create(admin, "Box", "SN-1", "00:00:00:00:00:01", reseller_id=res.id)

    with pytest.raises(InsufficientPermissionsError):
        await service.activate(admin, subscriber.id, [basic.id])

    await db_session.refresh(res)
    assert res.status == AccountStatus.INACTIVE


async def test_active_subscriber_must_be_renewed(service, catalog, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    await service.activate(reseller, subscriber.id, [basic.id])

    with pytest.raises(ValidationFailedError):
        await service.activate(reseller, subscriber.id, [basic.id])


async def test_renewal_extends_from_current_expiry(db_session, service, catalog, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    activated = await service.activate(reseller, subscriber.id, [basic.id])
    first_expiry = as_utc(activated.subscriber.expiry_date)

    renewed = await service.renew(reseller, subscriber.id)

    assert renewed.charged == Decimal("300")
    assert as_utc(renewed.subscriber.expiry_date).date() == (first_expiry + timedelta(days=30)).date()
    await db_session.refresh(reseller)
    assert reseller.balance == Decimal("4400")


async def test_fresh_subscriber_cannot_be_renewed(service, reseller):
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")

    with pytest.raises(ValidationFailedError):
        await service.renew(reseller, subscriber.id)


async def test_reversing_a_charge_refunds_the_reseller(db_session, service, catalog, admin, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    await service.activate(reseller, subscriber.id, [basic.id])
    entry = (await ledger_entries(db_session))[0]

    await service.ledger.reverse(entry.id, admin.id)

    await db_session.refresh(reseller)
    assert reseller.balance == Decimal("5000")


# Reads and removal

async def test_read_expires_lapsed_subscriber(db_session, service, reseller):
    subscriber = Subscriber(
        name="Old Box", serial_number="SN-0", mac_address="00:00:00:00:00:00",
        reseller_id=reseller.id, status=SubscriberStatus.ACTIVE,
        expiry_date=utcnow() - timedelta(days=1), package_ids=[]
    )
    db_session.add(subscriber)
    await db_session.commit()

    listed = await service.list_visible(reseller)
    assert [s.status for s in listed] == [SubscriberStatus.INACTIVE]

    detail = await service.get_visible(reseller, subscriber.id)
    assert detail.status == SubscriberStatus.INACTIVE


async def test_reseller_cannot_see_other_resellers_subscribers(service, account_factory, distributor, reseller):
    other = await account_factory(AccountTier.RESELLER, "Res Two", parent=distributor)
    subscriber = await service.create(other, "Box", "SN-1", "00:00:00:00:00:01")

    assert await service.list_visible(reseller) == []
    with pytest.raises(InsufficientPermissionsError):
        await service.get_visible(reseller, subscriber.id)
    assert len(await service.list_visible(distributor)) == 1


async def test_status_filter(service, catalog, reseller):
    basic, _ = catalog
    fresh = await service.create(reseller, "Box 1", "SN-1", "00:00:00:00:00:01")
    active = await service.create(reseller, "Box 2", "SN-2", "00:00:00:00:00:02")
    await service.activate(reseller, active.id, [basic.id])

    listed = await service.list_visible(reseller, SubscriberStatus.FRESH)

    assert [s.id for s in listed] == [fresh.id]


async def test_manual_deactivation(service, catalog, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    await service.activate(reseller, subscriber.id, [basic.id])

    deactivated = await service.deactivate(reseller, subscriber.id)

    assert deactivated.status == SubscriberStatus.INACTIVE


async def test_reseller_delete_releases_subscriber(service, catalog, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    await service.activate(reseller, subscriber.id, [basic.id])

    deleted = await service.remove(reseller, subscriber.id)

    assert deleted is False
    assert subscriber.reseller_id is None
    assert subscriber.status == SubscriberStatus.FRESH
    assert subscriber.package_ids == []
    assert subscriber.expiry_date is None


async def test_admin_delete_removes_subscriber(db_session, service, admin, reseller):
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    subscriber_id = subscriber.id

    deleted = await service.remove(admin, subscriber_id)

    assert deleted is True
    assert await db_session.get(Subscriber, subscriber_id) is None


# Update

async def test_update_charges_added_packages_in_full(db_session, service, catalog, reseller):
    basic, sports = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    activated = await service.activate(reseller, subscriber.id, [basic.id])
    expiry = activated.subscriber.expiry_date

    result = await service.update(reseller, subscriber.id, package_ids=[basic.id, sports.id])

    assert result.charged == Decimal("200")
    assert result.remaining_balance == Decimal("4500")
    assert result.breakdown == {"packages": Decimal("200"), "extension": Decimal("0")}
    assert result.subscriber.package_ids == [basic.id, sports.id]
    assert result.subscriber.primary_package_id == basic.id
    assert result.subscriber.expiry_date == expiry


async def test_update_charges_extension_per_day(db_session, service, catalog, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    activated = await service.activate(reseller, subscriber.id, [basic.id])
    old_expiry = as_utc(activated.subscriber.expiry_date)

    result = await service.update(reseller, subscriber.id, expiry_date=old_expiry + timedelta(days=10))

    # Basic costs 300 for 30 days
    assert result.charged == Decimal("100")
    assert result.breakdown["extension"] == Decimal("100")
    assert as_utc(result.subscriber.expiry_date) == old_expiry + timedelta(days=10)

    entries = await ledger_entries(db_session)
    assert [e.entry_type for e in entries] == [LedgerEntryType.SUBSCRIPTION_CHARGE] * 2
    await db_session.refresh(reseller)
    assert reseller.balance == Decimal("4600")


async def test_shorter_expiry_is_not_charged_or_refunded(db_session, service, catalog, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    await service.activate(reseller, subscriber.id, [basic.id])

    result = await service.update(reseller, subscriber.id, expiry_date=utcnow() + timedelta(days=5))

    assert result.charged == Decimal("0")
    assert len(await ledger_entries(db_session)) == 1
    await db_session.refresh(reseller)
    assert reseller.balance == Decimal("4700")


async def test_admin_update_is_not_charged(db_session, service, catalog, admin, reseller):
    basic, sports = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")
    await service.activate(admin, subscriber.id, [basic.id])

    result = await service.update(admin, subscriber.id, package_ids=[basic.id, sports.id])

    assert result.charged == Decimal("0")
    assert result.breakdown is None
    assert await ledger_entries(db_session) == []


async def test_update_without_balance_changes_nothing(db_session, service, catalog, account_factory, distributor):
    basic, sports = catalog
    res = await account_factory(AccountTier.RESELLER, "Tight Res", balance=300, parent=distributor)
    subscriber = await service.create(res, "Box", "SN-1", "00:00:00:00:00:01")
    subscriber_id = subscriber.id
    await service.activate(res, subscriber_id, [basic.id])

    with pytest.raises(InsufficientFundsError):
        await service.update(res, subscriber_id, name="Renamed", package_ids=[basic.id, sports.id])

    stored = await db_session.get(Subscriber, subscriber_id, populate_existing=True)
    assert stored.package_ids == [basic.id]
    assert stored.name == "Box"


async def test_fresh_subscriber_only_changes_details(service, catalog, reseller):
    basic, _ = catalog
    subscriber = await service.create(reseller, "Box", "SN-1", "00:00:00:00:00:01")

    with pytest.raises(ValidationFailedError):
        await service.update(reseller, subscriber.id, package_ids=[basic.id])

    result = await service.update(reseller, subscriber.id, name="Bedroom", mac_address="00:00:00:00:00:0A")
    assert result.charged == Decimal("0")
    assert result.subscriber.name == "Bedroom"
    assert result.subscriber.mac_address == "00:00:00:00:00:0a"
    assert result.subscriber.status == SubscriberStatus.FRESH


async def test_update_rejects_taken_mac(service, reseller):
    await service.create(reseller, "Box 1", "SN-1", "00:00:00:00:00:01")
    second = await service.create(reseller, "Box 2", "SN-2", "00:00:00:00:00:02")

    with pytest.raises(ValidationFailedError):
        await service.update(reseller, second.id, mac_address="00:00:00:00:00:01")


# Bulk upload

async def test_bulk_upload_skips_bad_rows(service, admin, reseller):
    await service.create(reseller, "Existing", "SN-0", "00:00:00:00:00:00")

    result = await service.bulk_register(admin, [
        {"name": "Box 1", "serial_number": "SN-1", "mac_address": "00:00:00:00:00:01"},
        {"name": "Box 2", "serial_number": None, "mac_address": "00:00:00:00:00:02"},
        {"name": "Box 3", "serial_number": "SN-3", "mac_address": "00:00:00:00:00:00"},
    ])

    assert [s.mac_address for s in result.created] == ["00:00:00:00:00:01"]
    assert result.created[0].reseller_id is None
    assert result.created[0].status == SubscriberStatus.FRESH
    assert [f["row"] for f in result.failed] == [1, 2]
    assert "MAC" in result.failed[1]["reason"]


async def test_bulk_upload_is_admin_only(service, distributor):
    with pytest.raises(InsufficientPermissionsError):
        await service.bulk_register(distributor, [{"name": "Box", "serial_number": "SN", "mac_address": "01"}])
