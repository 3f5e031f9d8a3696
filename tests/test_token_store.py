import asyncio
from types import SimpleNamespace

import pytest

from realtime.token_store import Token, TokenStore
from shared.errors import ApiError, AuthError


@pytest.mark.asyncio
async def test_refresh_stores_token_with_nominal_lifetime(fetcher):
    store = TokenStore(fetcher, expiration_seconds=120)

    assert store.get_token("1234-app") is None
    token = await store.refresh_token("1234-app")

    assert token.value == "token-1"
    assert token.application == "1234-app"
    assert token.expires_at - token.issued_at == pytest.approx(120)
    assert store.get_token("1234-app") is token
    assert store.ttl == pytest.approx(108)
    store.clear()


@pytest.mark.asyncio
async def test_token_is_dropped_at_margin_of_lifetime(fetcher):
    store = TokenStore(fetcher, expiration_seconds=1, margin=0.05)

    await store.refresh_token("app")
    assert store.get_token("app") is not None

    await asyncio.sleep(0.1)
    assert store.get_token("app") is None


@pytest.mark.asyncio
async def test_superseded_token_timer_does_not_remove_new_token(fetcher):
    store = TokenStore(fetcher, expiration_seconds=1, margin=0.05)

    await store.refresh_token("app")
    store.margin = 10
    second = await store.refresh_token("app")
    await asyncio.sleep(0.1)

    assert store.get_token("app") is second
    store.clear()


@pytest.mark.asyncio
async def test_expire_token_removes_immediately(fetcher):
    store = TokenStore(fetcher)
    await store.refresh_token("app")

    store.expire_token("app")
    store.expire_token("app")

    assert store.get_token("app") is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_one_token_per_application(fetcher):
    store = TokenStore(fetcher)
    await store.refresh_token("a")
    await store.refresh_token("b")
    await store.refresh_token("a")

    assert len(store) == 2
    assert store.get_token("a").value == "token-3"
    store.clear()


@pytest.mark.asyncio
async def test_fetch_failure_raises_auth_error_and_caches_nothing(fetcher):
    fetcher.fail_with = ApiError("forbidden", 403)
    store = TokenStore(fetcher)

    with pytest.raises(AuthError) as exc:
        await store.refresh_token("app")

    assert exc.value.status == 403
    assert store.get_token("app") is None


def test_refresh_in_progress_flag_is_per_application(fetcher):
    store = TokenStore(fetcher)

    store.set_refresh_in_progress("a", True)
    assert store.is_refresh_in_progress("a") is True
    assert store.is_refresh_in_progress("b") is False

    store.set_refresh_in_progress("a", False)
    store.set_refresh_in_progress("a", False)
    assert store.is_refresh_in_progress("a") is False


def test_token_repr_hides_value():
    token = Token(value="secret-jwt", application="app", issued_at=0.0, expires_at=120.0)

    assert "secret-jwt" not in repr(token)
    assert token.is_expired(now=121.0) is True
    assert token.is_expired(now=10.0) is False


@pytest.mark.asyncio
async def test_token_past_expiry_is_not_returned(fetcher, monkeypatch):
    store = TokenStore(fetcher, expiration_seconds=120)
    token = await store.refresh_token("app")

    monkeypatch.setattr("realtime.token_store.time", SimpleNamespace(time=lambda: token.expires_at + 1))

    assert store.get_token("app") is None
    assert len(store) == 0
