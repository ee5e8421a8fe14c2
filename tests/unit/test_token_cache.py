"""Unit tests for the installation token cache."""

import asyncio
from datetime import datetime, timedelta

import pytest

from git_app_auth.auth.token_cache import CacheKey, TokenCache
from git_app_auth.enums import IdentityKind

KEY = CacheKey(IdentityKind.APP, 123456, 987654)
OTHER_INSTALLATION = CacheKey(IdentityKind.APP, 123456, 111)
OTHER_APP = CacheKey(IdentityKind.APP, 999, 987654)


def zeroed(buffer: bytearray) -> bool:
    return all(b == 0 for b in buffer)


class TestCacheKey:
    def test_str(self):
        assert str(KEY) == "app:123456:987654"

    def test_equal_keys_hash_alike(self):
        assert {KEY: 1}[CacheKey(IdentityKind.APP, 123456, 987654)] == 1


class TestExpiry:
    @pytest.mark.asyncio
    async def test_served_until_one_second_before_margin(self, token_cache, clock):
        await token_cache.put(KEY, "ghs_abc", clock() + timedelta(hours=1))

        clock.advance(55 * 60 - 1)

        assert await token_cache.get(KEY) == "ghs_abc"

    @pytest.mark.asyncio
    async def test_miss_at_margin(self, token_cache, clock):
        """Test a get exactly at host expiry minus the margin is a miss."""
        await token_cache.put(KEY, "ghs_abc", clock() + timedelta(hours=1))

        clock.advance(55 * 60)

        assert await token_cache.get(KEY) is None
        assert len(token_cache) == 0

    @pytest.mark.asyncio
    async def test_miss_after_margin(self, token_cache, clock):
        await token_cache.put(KEY, "ghs_abc", clock() + timedelta(hours=1))

        clock.advance(55 * 60 + 1)

        assert await token_cache.get(KEY) is None

    @pytest.mark.asyncio
    async def test_expires_at_never_before_created_at(self, token_cache, clock):
        """Test a token already inside the margin is stored but never served."""
        entry = await token_cache.put(KEY, "ghs_short", clock() + timedelta(minutes=2))

        assert entry.expires_at == entry.created_at == clock()
        assert await token_cache.get(KEY) is None

    @pytest.mark.asyncio
    async def test_expiry_in_the_past(self, token_cache, clock):
        entry = await token_cache.put(KEY, "ghs_old", clock() - timedelta(hours=1))

        assert entry.expires_at == entry.created_at

    @pytest.mark.asyncio
    async def test_naive_expiry_is_utc(self, token_cache, clock):
        naive = (clock() + timedelta(hours=1)).replace(tzinfo=None)

        entry = await token_cache.put(KEY, "ghs_abc", naive)

        assert entry.expires_at == clock() + timedelta(minutes=55)

    @pytest.mark.asyncio
    async def test_custom_margin(self, clock):
        cache = TokenCache(clock=clock, safety_margin=timedelta(seconds=30))

        entry = await cache.put(KEY, "ghs_abc", clock() + timedelta(minutes=10))

        assert entry.expires_at == clock() + timedelta(minutes=9, seconds=30)

    @pytest.mark.asyncio
    async def test_get_entry_returns_expiry(self, token_cache, clock):
        await token_cache.put(KEY, "ghs_abc", clock() + timedelta(hours=1))

        assert await token_cache.get_entry(KEY) == ("ghs_abc", clock() + timedelta(minutes=55))


class TestPutAndInvalidate:
    @pytest.mark.asyncio
    async def test_miss_on_empty_cache(self, token_cache):
        assert await token_cache.get(KEY) is None

    @pytest.mark.asyncio
    async def test_rejects_empty_token(self, token_cache, clock):
        with pytest.raises(ValueError, match="empty token"):
            await token_cache.put(KEY, "", clock() + timedelta(hours=1))

    @pytest.mark.asyncio
    async def test_replacing_wipes_previous_token(self, token_cache, clock):
        first = await token_cache.put(KEY, "ghs_first", clock() + timedelta(hours=1))

        await token_cache.put(KEY, "ghs_second", clock() + timedelta(hours=1))

        assert zeroed(first.secret)
        assert await token_cache.get(KEY) == "ghs_second"

    @pytest.mark.asyncio
    async def test_expired_entry_is_wiped_on_access(self, token_cache, clock):
        entry = await token_cache.put(KEY, "ghs_abc", clock() + timedelta(minutes=10))
        clock.advance(600)

        await token_cache.get(KEY)

        assert zeroed(entry.secret)

    @pytest.mark.asyncio
    async def test_invalidate(self, token_cache, clock):
        entry = await token_cache.put(KEY, "ghs_abc", clock() + timedelta(hours=1))

        assert await token_cache.invalidate(KEY) is True
        assert await token_cache.invalidate(KEY) is False
        assert await token_cache.get(KEY) is None
        assert zeroed(entry.secret)

    @pytest.mark.asyncio
    async def test_invalidate_app_drops_every_installation(self, token_cache, clock):
        expiry = clock() + timedelta(hours=1)
        await token_cache.put(KEY, "a", expiry)
        await token_cache.put(OTHER_INSTALLATION, "b", expiry)
        await token_cache.put(OTHER_APP, "c", expiry)

        assert await token_cache.invalidate_app(123456) == 2
        assert await token_cache.get(OTHER_APP) == "c"

    @pytest.mark.asyncio
    async def test_repr_hides_token(self, token_cache, clock):
        entry = await token_cache.put(KEY, "ghs_secret_value", clock() + timedelta(hours=1))

        assert "ghs_secret_value" not in repr(entry)


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, token_cache, clock):
        await token_cache.put(KEY, "short", clock() + timedelta(minutes=10))
        await token_cache.put(OTHER_APP, "long", clock() + timedelta(hours=1))
        clock.advance(10 * 60)

        assert await token_cache.sweep() == 1
        assert len(token_cache) == 1
        assert await token_cache.get(OTHER_APP) == "long"

    @pytest.mark.asyncio
    async def test_background_sweep(self, clock):
        cache = TokenCache(clock=clock, sweep_interval=0.01)
        async with cache:
            assert cache.running
            entry = await cache.put(KEY, "ghs_abc", clock() + timedelta(minutes=10))
            clock.advance(600)

            for _ in range(100):
                if len(cache) == 0:
                    break
                await asyncio.sleep(0.01)

            assert len(cache) == 0
            assert zeroed(entry.secret)

        assert not cache.running

    @pytest.mark.asyncio
    async def test_stop_clears_and_wipes(self, token_cache, clock):
        token_cache.start()
        entry = await token_cache.put(KEY, "ghs_abc", clock() + timedelta(hours=1))

        await token_cache.stop()

        assert len(token_cache) == 0
        assert zeroed(entry.secret)
        assert not token_cache.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, token_cache):
        token_cache.start()
        sweeper = token_cache._sweeper
        token_cache.start()

        assert token_cache._sweeper is sweeper
        await token_cache.stop()

    @pytest.mark.asyncio
    async def test_sweep_not_running_until_started(self, token_cache):
        assert not token_cache.running


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_readers_never_see_mixed_entries(self, token_cache, clock):
        """Test every read pairs a token with the expiry it was stored with."""
        base = clock()

        def expiry_for(i: int) -> datetime:
            return base + timedelta(minutes=10 + i)

        async def writer(i: int) -> None:
            await token_cache.put(KEY, f"ghs_{i}", expiry_for(i))
            await asyncio.sleep(0)

        async def reader() -> tuple[str, datetime] | None:
            await asyncio.sleep(0)
            return await token_cache.get_entry(KEY)

        results = await asyncio.gather(*(writer(i) for i in range(50)), *(reader() for _ in range(50)))

        for result in results:
            if result is None:
                continue
            token, expires_at = result
            i = int(token.removeprefix("ghs_"))
            assert expires_at == expiry_for(i) - token_cache.safety_margin

        final = await token_cache.get_entry(KEY)
        assert final is not None
        assert final[0].startswith("ghs_")
