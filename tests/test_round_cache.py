import asyncio

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from conftest import T0, make_round
from roundengine.core.exceptions import TransportError
from roundengine.schemas.rounds import GameType, RoundStatus


async def test_fetch_within_ttl_uses_cache(cache, backend, clock):
    backend.active[GameType.COLOR] = [make_round("r1")]
    assert await cache.fetch(GameType.COLOR) is True
    clock.advance(10_000)
    assert await cache.fetch(GameType.COLOR) is False
    assert backend.calls["active"] == 1
    assert backend.calls["upcoming"] == 1


async def test_fetch_after_ttl_goes_to_network(cache, backend, clock):
    await cache.fetch(GameType.COLOR)
    clock.advance(30_001)
    assert await cache.fetch(GameType.COLOR) is True
    assert backend.calls["active"] == 2


async def test_force_refresh_bypasses_ttl(cache, backend):
    await cache.fetch(GameType.COLOR)
    assert await cache.fetch(GameType.COLOR, force_refresh=True) is True
    assert backend.calls["active"] == 2


async def test_failure_keeps_previous_rounds(cache, backend, clock):
    backend.active[GameType.COLOR] = [make_round("r1")]
    await cache.fetch(GameType.COLOR)
    last = cache.state(GameType.COLOR).last_fetch_ms

    backend.fail_rounds = True
    clock.advance(60_000)
    with pytest.raises(TransportError):
        await cache.fetch(GameType.COLOR)

    st = cache.state(GameType.COLOR)
    assert [r.id for r in st.active_rounds] == ["r1"]
    assert st.last_fetch_ms == last
    assert st.is_loading is False


async def test_last_fetch_recorded_at_fetch_start(cache, clock):
    await cache.fetch(GameType.NUMBER)
    assert cache.state(GameType.NUMBER).last_fetch_ms == T0


async def test_auto_selects_first_active_round(cache, backend):
    backend.active[GameType.COLOR] = [make_round("r1"), make_round("r2")]
    await cache.fetch(GameType.COLOR)
    assert cache.selected_round_id(GameType.COLOR) == "r1"


async def test_existing_selection_is_kept(cache, backend):
    backend.active[GameType.COLOR] = [make_round("r1"), make_round("r2")]
    cache.select(GameType.COLOR, "r2")
    await cache.fetch(GameType.COLOR)
    assert cache.selected_round_id(GameType.COLOR) == "r2"


async def test_game_types_are_independent(cache, backend):
    backend.active[GameType.COLOR] = [make_round("c1")]
    backend.active[GameType.NUMBER] = [make_round("n1", GameType.NUMBER)]
    await cache.refresh_all()

    cache.select(GameType.NUMBER, None)
    assert cache.selected_round_id(GameType.COLOR) == "c1"
    assert cache.selected_round_id(GameType.NUMBER) is None
    assert [r.game_type for r in cache.active_rounds(GameType.NUMBER)] == [GameType.NUMBER]


async def test_concurrent_fetches_share_one_request(cache, backend):
    backend.delay = 0.01
    results = await asyncio.gather(
        cache.fetch(GameType.COLOR, force_refresh=True),
        cache.fetch(GameType.COLOR, force_refresh=True),
        cache.fetch(GameType.COLOR, force_refresh=True),
    )
    assert results == [True, True, True]
    assert backend.calls["active"] == 1
    assert backend.calls["upcoming"] == 1


async def test_forced_fetch_does_not_reuse_request_already_sent(cache, backend):
    backend.delay = 0.05
    backend.active[GameType.COLOR] = [make_round("c1")]
    first = asyncio.ensure_future(cache.fetch(GameType.COLOR))
    await asyncio.sleep(0.01)  # 第一次请求已发出
    backend.active[GameType.COLOR] = [make_round("c1"), make_round("c2")]

    assert await cache.fetch(GameType.COLOR, force_refresh=True) is True
    await first

    assert backend.calls["active"] == 2
    assert [r.id for r in cache.active_rounds(GameType.COLOR)] == ["c1", "c2"]


async def test_plain_fetch_joins_request_already_sent(cache, backend):
    backend.delay = 0.05
    first = asyncio.ensure_future(cache.fetch(GameType.COLOR))
    await asyncio.sleep(0.01)
    await cache.fetch(GameType.COLOR)
    await first
    assert backend.calls["active"] == 1


async def test_refresh_stale_only_touches_stale_types(cache, backend, clock):
    await cache.fetch(GameType.COLOR)
    clock.advance(5_000)
    # number 从未拉取过，视为过期
    await cache.refresh_stale()
    assert backend.calls["active"] == 2
    assert cache.state(GameType.NUMBER).last_fetch_ms == T0 + 5_000
    assert cache.state(GameType.COLOR).last_fetch_ms == T0


async def test_refresh_stale_swallows_errors(cache, backend):
    backend.fail_rounds = True
    await cache.refresh_stale()
    assert cache.state(GameType.COLOR).last_fetch_ms is None


async def test_upcoming_limit_is_forwarded(backend, clock):
    from roundengine.services.round_cache import RoundCache

    backend.upcoming[GameType.COLOR] = [make_round(f"u{i}", status=RoundStatus.UPCOMING) for i in range(5)]
    c = RoundCache(backend, clock=clock, ttl_seconds=30, upcoming_limit=3)
    await c.fetch(GameType.COLOR)
    assert len(c.upcoming_rounds(GameType.COLOR)) == 3


def test_apply_update_moves_upcoming_to_active(cache):
    st = cache.state(GameType.COLOR)
    st.upcoming_rounds = [make_round("u1", status=RoundStatus.UPCOMING)]

    cache.apply_round_update(make_round("u1", status=RoundStatus.BETTING))

    assert cache.upcoming_rounds(GameType.COLOR) == []
    assert [r.id for r in cache.active_rounds(GameType.COLOR)] == ["u1"]


def test_apply_update_replaces_in_place(cache):
    st = cache.state(GameType.COLOR)
    st.active_rounds = [make_round("a1"), make_round("a2")]

    cache.apply_round_update(make_round("a1", status=RoundStatus.DRAWING))

    assert [(r.id, r.status) for r in cache.active_rounds(GameType.COLOR)] == [
        ("a1", RoundStatus.DRAWING), ("a2", RoundStatus.BETTING),
    ]


def test_apply_update_retires_settled_round(cache):
    st = cache.state(GameType.COLOR)
    st.active_rounds = [make_round("a1")]
    st.selected_round_id = "a1"

    cache.apply_round_update(make_round("a1", status=RoundStatus.SETTLED))

    assert cache.active_rounds(GameType.COLOR) == []
    assert cache.selected_round_id(GameType.COLOR) is None


def test_apply_update_accepts_backend_correction(cache):
    st = cache.state(GameType.COLOR)
    st.active_rounds = [make_round("a1", status=RoundStatus.DRAWING)]

    cache.apply_round_update(make_round("a1", status=RoundStatus.BETTING))

    assert cache.active_rounds(GameType.COLOR)[0].status == RoundStatus.BETTING


def test_start_and_stop_register_refresh_job(cache):
    scheduler = AsyncIOScheduler()
    cache.start(scheduler)
    job = scheduler.get_job(cache.JOB_ID)
    assert job is not None
    assert job.trigger.interval.total_seconds() == 60

    cache.stop()
    assert scheduler.get_job(cache.JOB_ID) is None
    # 重复 stop 无副作用
    cache.stop()
