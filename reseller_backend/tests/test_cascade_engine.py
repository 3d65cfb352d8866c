"""
Validity Cascade Tests.

Lazy expiry on read, the three-level walk, idempotence, manual
deactivation / reactivation and the sweep.
"""

import pytest
from datetime import timedelta
from sqlalchemy import select
from sqlalchemy.orm.attributes import set_committed_value

from reseller_backend.app.core.clock import utcnow
from reseller_backend.app.core.exceptions import ValidationFailedError
from reseller_backend.app.domain.hierarchy.cascade_engine import CascadeEngine
from reseller_backend.app.models.audit_log import AuditLog
from reseller_backend.app.models.enums import AccountTier, AccountStatus, SubscriberStatus
from reseller_backend.app.models.subscriber import Subscriber
from reseller_backend.app.services.audit import AuditAction


async def add_subscriber(db, reseller, mac, status=SubscriberStatus.ACTIVE, expiry_date=None):
    subscriber = Subscriber(
        name=f"Box {mac}",
        serial_number=f"SN-{mac}",
        mac_address=mac,
        reseller_id=reseller.id,
        status=status,
        expiry_date=expiry_date or utcnow() + timedelta(days=30),
        package_ids=[]
    )
    db.add(subscriber)
    await db.commit()
    await db.refresh(subscriber)
    return subscriber


async def statuses(db, *objects):
    for obj in objects:
        await db.refresh(obj)
    return [obj.status for obj in objects]


@pytest.fixture
async def lapsed_tree(db_session, account_factory):
    """Distributor whose validity ended yesterday, two resellers, three subscribers."""
    dist = await account_factory(AccountTier.DISTRIBUTOR, "Lapsed Dist", valid_until=utcnow() - timedelta(days=1))
    res_a = await account_factory(AccountTier.RESELLER, "Res A", parent=dist)
    res_b = await account_factory(AccountTier.RESELLER, "Res B", parent=dist)
    subs = [
        await add_subscriber(db_session, res_a, "aa:01"),
        await add_subscriber(db_session, res_a, "aa:02", status=SubscriberStatus.FRESH),
        await add_subscriber(db_session, res_b, "bb:01"),
    ]
    return dist, [res_a, res_b], subs


async def test_lapsed_distributor_cascades_to_everything_below(db_session, lapsed_tree):
    dist, resellers, subs = lapsed_tree

    report = await CascadeEngine(db_session).check_validity(dist)

    assert report.fired is True
    assert report.resellers_inactivated == 2
    assert report.subscribers_inactivated == 3
    assert dist.status == AccountStatus.INACTIVE
    assert await statuses(db_session, *resellers) == [AccountStatus.INACTIVE] * 2
    assert await statuses(db_session, *subs) == [SubscriberStatus.INACTIVE] * 3


async def test_cascade_leaves_other_hierarchies_alone(db_session, account_factory, lapsed_tree):
    dist, _, _ = lapsed_tree
    other_dist = await account_factory(AccountTier.DISTRIBUTOR, "Other Dist")
    other_res = await account_factory(AccountTier.RESELLER, "Other Res", parent=other_dist)
    other_sub = await add_subscriber(db_session, other_res, "cc:01")

    await CascadeEngine(db_session).check_validity(dist)

    assert await statuses(db_session, other_dist, other_res) == [AccountStatus.ACTIVE] * 2
    assert await statuses(db_session, other_sub) == [SubscriberStatus.ACTIVE]


async def test_second_check_writes_nothing(db_session, lapsed_tree):
    dist, _, _ = lapsed_tree
    engine = CascadeEngine(db_session)

    await engine.check_validity(dist)
    again = await engine.check_validity(dist)

    assert again.fired is False
    assert again.resellers_inactivated == 0
    result = await db_session.execute(select(AuditLog).where(AuditLog.action == AuditAction.ACCOUNT_EXPIRED))
    assert len(result.scalars().all()) == 1


async def test_stale_object_does_not_walk_twice(db_session, lapsed_tree, mocker):
    """A second reader holding an Active copy finds the status already flipped."""
    dist, _, _ = lapsed_tree
    engine = CascadeEngine(db_session)
    await engine.check_validity(dist)

    set_committed_value(dist, "status", AccountStatus.ACTIVE)  # what a stale reader would still see
    walk = mocker.spy(engine, "_walk")
    report = await engine.check_validity(dist)

    assert report.fired is False
    walk.assert_not_called()
    assert dist.status == AccountStatus.INACTIVE


async def test_lapsed_reseller_inactivates_its_subscribers(db_session, distributor, account_factory):
    res = await account_factory(
        AccountTier.RESELLER, "Old Res", parent=distributor, valid_until=utcnow() - timedelta(minutes=5)
    )
    sub = await add_subscriber(db_session, res, "dd:01")

    report = await CascadeEngine(db_session).check_validity(res)

    assert report.fired is True
    assert report.subscribers_inactivated == 1
    assert await statuses(db_session, sub) == [SubscriberStatus.INACTIVE]
    assert await statuses(db_session, distributor) == [AccountStatus.ACTIVE]


async def test_future_or_missing_validity_is_noop(db_session, account_factory):
    future = await account_factory(AccountTier.DISTRIBUTOR, "Future", valid_until=utcnow() + timedelta(days=3))
    endless = await account_factory(AccountTier.DISTRIBUTOR, "Endless")
    engine = CascadeEngine(db_session)

    assert (await engine.check_validity(future)).fired is False
    assert (await engine.check_validity(endless)).fired is False
    assert await statuses(db_session, future, endless) == [AccountStatus.ACTIVE] * 2


async def test_check_hierarchy_runs_the_distributor_first(db_session, lapsed_tree):
    dist, (res_a, _), subs = lapsed_tree
    engine = CascadeEngine(db_session)

    account = await engine.check_hierarchy(res_a)

    assert account.id == res_a.id
    assert account.status == AccountStatus.INACTIVE
    assert await statuses(db_session, dist, subs[0]) == [AccountStatus.INACTIVE, SubscriberStatus.INACTIVE]


async def test_check_hierarchy_leaves_active_chain_alone(db_session, distributor, reseller):
    account = await CascadeEngine(db_session).check_hierarchy(reseller)

    assert account.status == AccountStatus.ACTIVE
    assert await statuses(db_session, distributor) == [AccountStatus.ACTIVE]


async def test_expiry_revokes_tokens_of_the_subtree(db_session, lapsed_tree, redis_client_session):
    dist, resellers, _ = lapsed_tree

    await CascadeEngine(db_session).check_validity(dist)

    for account in [dist] + resellers:
        assert await redis_client_session.exists(f"account:tokens:{account.id}:revoked") == 1


async def test_manual_deactivation_walks_the_hierarchy(db_session, admin, distributor, reseller):
    sub = await add_subscriber(db_session, reseller, "ee:01")

    report = await CascadeEngine(db_session).deactivate(distributor, actor=admin)

    assert report.fired is True
    assert await statuses(db_session, distributor, reseller) == [AccountStatus.INACTIVE] * 2
    assert await statuses(db_session, sub) == [SubscriberStatus.INACTIVE]


async def test_manual_deactivation_of_reseller(db_session, admin, distributor, reseller):
    sub = await add_subscriber(db_session, reseller, "ee:02")

    await CascadeEngine(db_session).deactivate(reseller, actor=admin)

    assert await statuses(db_session, distributor, reseller) == [AccountStatus.ACTIVE, AccountStatus.INACTIVE]
    assert await statuses(db_session, sub) == [SubscriberStatus.INACTIVE]


async def test_admin_cannot_be_deactivated(db_session, admin):
    with pytest.raises(ValidationFailedError):
        await CascadeEngine(db_session).deactivate(admin)


async def test_reactivation_does_not_propagate(db_session, admin, lapsed_tree, redis_client_session):
    dist, resellers, subs = lapsed_tree
    engine = CascadeEngine(db_session)
    await engine.check_validity(dist)

    changed = await engine.reactivate(dist, utcnow() + timedelta(days=30), actor=admin)

    assert changed is True
    assert dist.status == AccountStatus.ACTIVE
    assert await statuses(db_session, *resellers) == [AccountStatus.INACTIVE] * 2
    assert await statuses(db_session, *subs) == [SubscriberStatus.INACTIVE] * 3
    assert await redis_client_session.exists(f"account:tokens:{dist.id}:revoked") == 0


async def test_reactivation_without_date_clears_lapsed_validity(db_session, lapsed_tree):
    dist, _, _ = lapsed_tree
    engine = CascadeEngine(db_session)
    await engine.check_validity(dist)

    await engine.reactivate(dist)

    assert dist.valid_until is None
    assert (await engine.check_validity(dist)).fired is False
    assert dist.status == AccountStatus.ACTIVE


async def test_reactivation_requires_future_date(db_session, lapsed_tree):
    dist, _, _ = lapsed_tree
    await CascadeEngine(db_session).check_validity(dist)

    with pytest.raises(ValidationFailedError):
        await CascadeEngine(db_session).reactivate(dist, utcnow() - timedelta(hours=1))


async def test_sweep_expires_unread_accounts(db_session, account_factory, lapsed_tree):
    _, _, _ = lapsed_tree
    other_dist = await account_factory(AccountTier.DISTRIBUTOR, "Other Dist")
    await account_factory(
        AccountTier.RESELLER, "Old Res", parent=other_dist, valid_until=utcnow() - timedelta(days=2)
    )
    engine = CascadeEngine(db_session)

    report = await engine.sweep()

    assert report.distributors_checked == 2
    assert report.resellers_checked == 3
    assert report.accounts_expired == 2
    assert report.resellers_inactivated == 2

    again = await engine.sweep()
    assert again.accounts_expired == 0
    assert again.subscribers_inactivated == 0
