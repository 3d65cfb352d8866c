"""
Integration tests for Authentication Flow.

Verifies Login -> Me with the validity check applied on every account read.
"""

import pytest
from datetime import timedelta

from reseller_backend.app.core.clock import utcnow
from reseller_backend.app.core.token_revocation import revoke_token, revoke_account_tokens
from reseller_backend.app.models.enums import AccountTier, AccountStatus

PASSWORD = "secret123"


@pytest.mark.asyncio
async def test_login_success(client, distributor):
    response = await client.post("/v1/auth/login", json={"email": "dist.one@example.com", "password": PASSWORD})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["tier"] == "distributor"
    assert data["account"]["id"] == distributor.id
    assert data["account"]["last_login"] is not None

    me = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "dist.one@example.com"


@pytest.mark.asyncio
async def test_login_email_is_case_insensitive(client, reseller):
    response = await client.post("/v1/auth/login", json={"email": "  RES.One@Example.com ", "password": PASSWORD})

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_bad_credentials(client, distributor):
    """
    Wrong password and unknown email get the same answer.
    """
    wrong_password = await client.post("/v1/auth/login", json={"email": "dist.one@example.com", "password": "nope"})
    unknown = await client.post("/v1/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})

    assert wrong_password.status_code == 401
    assert unknown.status_code == 401
    assert wrong_password.json()["message"] == unknown.json()["message"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_of_lapsed_distributor_expires_its_hierarchy(client, db_session, account_factory):
    """
    Logging in is an account read: the lapsed distributor is expired,
    its reseller with it, and the login is refused.
    """
    dist = await account_factory(AccountTier.DISTRIBUTOR, "Late Dist", valid_until=utcnow() - timedelta(hours=2))
    res = await account_factory(AccountTier.RESELLER, "Late Res", parent=dist)

    response = await client.post("/v1/auth/login", json={"email": "late.dist@example.com", "password": PASSWORD})

    assert response.status_code == 403
    await db_session.refresh(dist)
    await db_session.refresh(res)
    assert dist.status == AccountStatus.INACTIVE
    assert res.status == AccountStatus.INACTIVE


@pytest.mark.asyncio
async def test_inactive_account_cannot_login(client, account_factory):
    await account_factory(AccountTier.RESELLER, "Off Res", status=AccountStatus.INACTIVE)

    response = await client.post("/v1/auth/login", json={"email": "off.res@example.com", "password": PASSWORD})

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_token_of_lapsed_account_is_refused(client, db_session, account_factory, auth_headers):
    """
    A token issued before the validity passed stops working on the next request.
    """
    res = await account_factory(AccountTier.RESELLER, "Soon Res", valid_until=utcnow() + timedelta(days=1))
    headers = auth_headers(res)
    assert (await client.get("/v1/auth/me", headers=headers)).status_code == 200

    res.valid_until = utcnow() - timedelta(seconds=1)
    await db_session.commit()

    response = await client.get("/v1/auth/me", headers=headers)
    assert response.status_code in (401, 403)
    await db_session.refresh(res)
    assert res.status == AccountStatus.INACTIVE


@pytest.mark.asyncio
async def test_revoked_token_is_refused(client, reseller, auth_headers):
    headers = auth_headers(reseller)
    token = headers["Authorization"].split(" ", 1)[1]

    await revoke_token(token, reseller.id)

    response = await client.get("/v1/auth/me", headers=headers)
    assert response.status_code == 401
    assert response.json()["message"] == "Token has been revoked"


@pytest.mark.asyncio
async def test_account_revocation_covers_every_token(client, reseller, auth_headers):
    await revoke_account_tokens([reseller.id])

    response = await client.get("/v1/auth/me", headers=auth_headers(reseller))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_missing_or_garbage_token(client):
    no_token = await client.get("/v1/auth/me")
    garbage = await client.get("/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert no_token.status_code in (401, 403)
    assert garbage.status_code == 401


@pytest.mark.asyncio
async def test_reseller_of_unread_lapsed_distributor_cannot_login(client, db_session, account_factory):
    """
    Nobody has read the distributor since it lapsed. The reseller's own
    login runs the distributor's check first and is refused.
    """
    dist = await account_factory(AccountTier.DISTRIBUTOR, "Gone Dist", valid_until=utcnow() - timedelta(days=1))
    res = await account_factory(AccountTier.RESELLER, "Under Res", parent=dist)

    response = await client.post("/v1/auth/login", json={"email": "under.res@example.com", "password": PASSWORD})

    assert response.status_code == 403
    await db_session.refresh(dist)
    await db_session.refresh(res)
    assert dist.status == AccountStatus.INACTIVE
    assert res.status == AccountStatus.INACTIVE


@pytest.mark.asyncio
async def test_token_of_reseller_under_lapsed_distributor_is_refused(client, db_session, account_factory, auth_headers):
    dist = await account_factory(AccountTier.DISTRIBUTOR, "Fading Dist", valid_until=utcnow() + timedelta(days=1))
    res = await account_factory(AccountTier.RESELLER, "Fading Res", parent=dist)
    headers = auth_headers(res)
    assert (await client.get("/v1/credits", headers=headers)).status_code == 200

    dist.valid_until = utcnow() - timedelta(seconds=1)
    await db_session.commit()

    response = await client.get("/v1/credits", headers=headers)

    assert response.status_code == 403
    await db_session.refresh(res)
    assert res.status == AccountStatus.INACTIVE


@pytest.mark.asyncio
async def test_logout_revokes_the_token(client, reseller):
    login = await client.post("/v1/auth/login", json={"email": "res.one@example.com", "password": PASSWORD})
    headers = {"Authorization": f"Bearer {login.json()['data']['access_token']}"}

    response = await client.post("/v1/auth/logout", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"] == {"revoked": True}
    after = await client.get("/v1/auth/me", headers=headers)
    assert after.status_code == 401
    assert after.json()["message"] == "Token has been revoked"
