import asyncio
import random
from decimal import Decimal

import pytest

from roundengine.core.exceptions import TransportError
from roundengine.core.timeutil import ManualClock
from roundengine.schemas.orders import BatchResult, TradeResult
from roundengine.schemas.rounds import GameType, Round, RoundStatus
from roundengine.services.batch_service import BatchSubmitter
from roundengine.services.cart_service import Cart
from roundengine.services.charge_service import ChargeModel
from roundengine.services.round_cache import RoundCache
from roundengine.services.round_lifecycle import LocalRound, LocalTiming

T0 = 1_700_000_000_000


def make_round(rid, game_type=GameType.COLOR, status=RoundStatus.BETTING):
    return Round(id=rid, game_type=game_type, status=status)


class FakeBackend:
    """内存版交易后端：记录调用次数，可设置失败"""

    def __init__(self):
        self.active = {GameType.COLOR: [], GameType.NUMBER: []}
        self.upcoming = {GameType.COLOR: [], GameType.NUMBER: []}
        self.calls = {"active": 0, "upcoming": 0, "batch": 0, "wallet": 0}
        self.fail_rounds = False
        self.fail_batch = False
        self.delay = 0
        self.balance = Decimal("1000")
        self.batch_calls = []
        self.accept = None  # None = 全部成交；否则为成交笔数

    async def list_active_rounds(self, game_type):
        self.calls["active"] += 1
        # 响应内容在请求发出时确定
        rounds = list(self.active[game_type])
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_rounds:
            raise TransportError("backend down", status_code=503)
        return rounds

    async def list_upcoming_rounds(self, game_type, limit=10):
        self.calls["upcoming"] += 1
        rounds = list(self.upcoming[game_type])[:limit]
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_rounds:
            raise TransportError("backend down", status_code=503)
        return rounds

    async def place_trades_batch(self, trades, idempotency_key=None):
        self.calls["batch"] += 1
        self.batch_calls.append((list(trades), idempotency_key))
        if self.fail_batch:
            raise TransportError("timeout")
        accepted = len(trades) if self.accept is None else self.accept
        results = [
            TradeResult(selection=t.selection, success=i < accepted, trade_id=f"t{i}" if i < accepted else None)
            for i, t in enumerate(trades)
        ]
        return BatchResult(success_count=accepted, total=len(trades), results=results)

    async def get_wallet_balance(self):
        self.calls["wallet"] += 1
        return self.balance

    async def aclose(self):
        pass


class FakeWallet:
    def __init__(self, balance="1000", backend=None):
        self.balance = Decimal(balance)
        self.refreshes = 0
        self._backend = backend

    async def refresh(self):
        self.refreshes += 1
        if self._backend is not None:
            self.balance = await self._backend.get_wallet_balance()
        return self.balance


class FakeRedis:
    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def cache(backend, clock):
    return RoundCache(backend, clock=clock, ttl_seconds=30, refresh_interval_seconds=60, upcoming_limit=10)


@pytest.fixture
def cart(clock):
    return Cart(charge_model=ChargeModel(rate="0.10", minimum="5", mode="additive"), max_items=20, clock=clock)


@pytest.fixture
def local_round(clock):
    return LocalRound(
        game_type=GameType.COLOR,
        clock=clock,
        rng=random.Random(42),
        timing=LocalTiming(round_ms=180_000, betting_ms=150_000, restart_delay_ms=5_000),
        history_size=10,
        payout_multiplier=2,
        tick_ms=100,
    )


@pytest.fixture
def submitter(backend, cache):
    wallet = FakeWallet("1000", backend=backend)
    return BatchSubmitter(backend, wallet, cache, key_factory=lambda: "key-1")
