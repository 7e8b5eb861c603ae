import asyncio

import pytest

import google_id_verification as m

pytestmark = pytest.mark.asyncio


async def test_cache_hit_does_not_fetch(make_fetcher, fetched, clock, signing_key):
    fetcher = make_fetcher(fetched, asynchronous=True)
    store = m.AsyncKeyStore(fetcher, clock=clock)

    assert await store.get("kid1") is signing_key
    assert await store.get("kid1") is signing_key
    assert fetcher.calls == 1


async def test_concurrent_lookups_share_one_fetch(make_fetcher, fetched, clock, signing_key):
    fetcher = make_fetcher(fetched, delay=0.05, asynchronous=True)
    store = m.AsyncKeyStore(fetcher, clock=clock)

    results = await asyncio.gather(*(store.get("kid1") for _ in range(50)))

    assert fetcher.calls == 1
    assert all(key is signing_key for key in results)


async def test_refetches_once_after_max_age(make_fetcher, fetched, clock):
    fetcher = make_fetcher(fetched, asynchronous=True)
    store = m.AsyncKeyStore(fetcher, clock=clock)
    await store.get("kid1")

    clock.advance(3599)
    await store.get("kid1")
    assert fetcher.calls == 1

    clock.advance(2)
    await asyncio.gather(*(store.get("kid1") for _ in range(10)))
    assert fetcher.calls == 2


async def test_failure_is_shared_and_does_not_poison(make_fetcher, fetched, clock, signing_key):
    fetcher = make_fetcher(
        m.KeyFetchError("endpoint down"), fetched, delay=0.05, asynchronous=True
    )
    store = m.AsyncKeyStore(fetcher, clock=clock)

    results = await asyncio.gather(
        *(store.get("kid1") for _ in range(10)), return_exceptions=True
    )

    assert fetcher.calls == 1
    assert all(isinstance(r, m.KeyFetchError) for r in results)

    assert await store.get("kid1") is signing_key
    assert fetcher.calls == 2


async def test_fetch_timeout(make_fetcher, fetched, clock):
    fetcher = make_fetcher(fetched, delay=1.0, asynchronous=True)
    store = m.AsyncKeyStore(fetcher, clock=clock, refresh_timeout=0.05)

    with pytest.raises(m.KeyFetchError, match="timed out"):
        await store.get("kid1")

    fetcher.delay = 0
    assert (await store.get("kid1")).key_id == "kid1"
    assert fetcher.calls == 2


async def test_cancelled_waiter_does_not_cancel_the_fetch(make_fetcher, fetched, clock):
    fetcher = make_fetcher(fetched, delay=0.05, asynchronous=True)
    store = m.AsyncKeyStore(fetcher, clock=clock)

    first = asyncio.create_task(store.get("kid1"))
    second = asyncio.create_task(store.get("kid1"))
    await asyncio.sleep(0)
    first.cancel()

    key = await second

    assert key.key_id == "kid1"
    assert first.cancelled()
    assert fetcher.calls == 1


async def test_unknown_kid_refresh_is_throttled(make_fetcher, fetched, clock):
    fetcher = make_fetcher(fetched, asynchronous=True)
    store = m.AsyncKeyStore(fetcher, clock=clock, refresh_gate=m.RefreshGate(60, clock=clock))
    await store.get("kid1")

    with pytest.raises(m.UnknownKeyId, match="not published"):
        await store.get("forged-1")
    with pytest.raises(m.UnknownKeyId, match="throttled"):
        await store.get("forged-2")

    assert fetcher.calls == 2


async def test_refresh_warms_cache(make_fetcher, fetched, clock):
    fetcher = make_fetcher(fetched, asynchronous=True)
    store = m.AsyncKeyStore(fetcher, clock=clock)

    key_set = await store.refresh()

    assert store.current is key_set
    await store.get("kid1")
    assert fetcher.calls == 1
