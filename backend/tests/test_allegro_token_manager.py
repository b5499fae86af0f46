import asyncio
from datetime import timedelta

import pytest

from allegro_connector.services.allegro_token_manager import AllegroTokenManager
from allegro_connector.services.errors import OAuthRequiredError, TokenExchangeError
from allegro_connector.services.user_token_store import UserTokenStore
from allegro_connector.utils import crypto

from conftest import FakeOAuthClient, ManualClock


def _manager(oauth=None, store=None, clock=None, margin=300):
    return AllegroTokenManager(
        oauth_client=oauth or FakeOAuthClient(),
        token_store=store,
        safety_margin_seconds=margin,
        clock=clock or ManualClock(),
    )


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_exchange():
    oauth = FakeOAuthClient()
    oauth.gate = asyncio.Event()
    manager = _manager(oauth)

    waiters = [asyncio.create_task(manager.get_access_token()) for _ in range(10)]
    await asyncio.sleep(0)
    oauth.gate.set()
    tokens = await asyncio.gather(*waiters)

    assert oauth.calls == ["client_credentials"]
    assert set(tokens) == {"client_credentials-access-1"}


@pytest.mark.asyncio
async def test_cached_token_reused_until_safety_margin():
    oauth = FakeOAuthClient(expires_in=3600)
    clock = ManualClock()
    manager = _manager(oauth, clock=clock, margin=300)

    first = await manager.get_access_token()
    clock.advance(3600 - 301)
    assert await manager.get_access_token() == first
    assert len(oauth.calls) == 1

    clock.advance(1)
    second = await manager.get_access_token()
    assert second != first
    assert len(oauth.calls) == 2


@pytest.mark.asyncio
async def test_failed_exchange_reaches_every_waiter_and_is_not_cached():
    oauth = FakeOAuthClient()
    oauth.gate = asyncio.Event()
    oauth.error = TokenExchangeError("boom", status_code=500)
    manager = _manager(oauth)

    waiters = [asyncio.create_task(manager.get_access_token()) for _ in range(3)]
    await asyncio.sleep(0)
    oauth.gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert len(oauth.calls) == 1
    assert all(isinstance(r, TokenExchangeError) for r in results)

    oauth.error = None
    assert await manager.get_access_token() == "client_credentials-access-1"
    assert len(oauth.calls) == 2


@pytest.mark.asyncio
async def test_user_token_missing_requires_oauth(session_factory):
    manager = _manager(store=UserTokenStore(session_factory))

    with pytest.raises(OAuthRequiredError):
        await manager.get_user_access_token("user-1")


@pytest.mark.asyncio
async def test_authorize_persists_encrypted_grant(session_factory):
    store = UserTokenStore(session_factory)
    manager = _manager(store=store)

    entry = await manager.authorize_user("user-1", "code", "verifier")

    from allegro_connector.db_models import AllegroUserToken

    db = session_factory()
    try:
        row = db.query(AllegroUserToken).filter(AllegroUserToken.user_id == "user-1").one()
        assert crypto.is_encrypted(row.access_token)
        assert crypto.is_encrypted(row.refresh_token)
    finally:
        db.close()

    stored = store.load("user-1")
    assert stored.access_token == entry.access_token
    assert stored.refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_expired_user_token_is_refreshed_from_store(session_factory):
    clock = ManualClock()
    store = UserTokenStore(session_factory)
    store.save("user-1", "old-access", "old-refresh", clock() - timedelta(minutes=1), ["scope"])
    oauth = FakeOAuthClient()
    manager = _manager(oauth, store=store, clock=clock)

    token = await manager.get_user_access_token("user-1")

    assert token == "refresh_token-access-1"
    assert oauth.calls == ["refresh_token"]
    assert store.load("user-1").refresh_token == "refresh-1"


@pytest.mark.asyncio
async def test_fresh_stored_user_token_is_used_without_exchange(session_factory):
    clock = ManualClock()
    store = UserTokenStore(session_factory)
    store.save("user-1", "stored-access", "stored-refresh", clock() + timedelta(hours=1))
    oauth = FakeOAuthClient()
    manager = _manager(oauth, store=store, clock=clock)

    assert await manager.get_user_access_token("user-1") == "stored-access"
    assert oauth.calls == []


@pytest.mark.asyncio
async def test_forced_refresh_ignores_fresh_cache(session_factory):
    manager = _manager(store=UserTokenStore(session_factory))
    await manager.authorize_user("user-1", "code", "verifier")

    refreshed = await manager.refresh_user_token("user-1")

    assert refreshed == "refresh_token-access-2"
    assert await manager.get_user_access_token("user-1") == refreshed


@pytest.mark.asyncio
async def test_concurrent_forced_refreshes_run_once(session_factory):
    oauth = FakeOAuthClient()
    manager = _manager(oauth, store=UserTokenStore(session_factory))
    await manager.authorize_user("user-1", "code", "verifier")
    oauth.gate = asyncio.Event()

    waiters = [asyncio.create_task(manager.refresh_user_token("user-1")) for _ in range(5)]
    await asyncio.sleep(0)
    oauth.gate.set()
    tokens = await asyncio.gather(*waiters)

    assert oauth.calls.count("refresh_token") == 1
    assert len(set(tokens)) == 1


@pytest.mark.asyncio
async def test_rejected_refresh_token_requires_oauth(session_factory):
    oauth = FakeOAuthClient()
    manager = _manager(oauth, store=UserTokenStore(session_factory))
    await manager.authorize_user("user-1", "code", "verifier")
    oauth.error = TokenExchangeError("invalid_grant", status_code=400, body={"error": "invalid_grant"})

    with pytest.raises(OAuthRequiredError):
        await manager.refresh_user_token("user-1")


@pytest.mark.asyncio
async def test_revoke_drops_cache_and_store(session_factory):
    store = UserTokenStore(session_factory)
    manager = _manager(store=store)
    await manager.authorize_user("user-1", "code", "verifier")

    manager.revoke("user-1")

    assert store.load("user-1") is None
    with pytest.raises(OAuthRequiredError):
        await manager.get_user_access_token("user-1")


def test_store_keeps_refresh_token_when_response_omits_it(session_factory):
    clock = ManualClock()
    store = UserTokenStore(session_factory)
    store.save("user-1", "a1", "r1", clock())
    store.save("user-1", "a2", None, clock())

    stored = store.load("user-1")
    assert stored.access_token == "a2"
    assert stored.refresh_token == "r1"
