"""
Round lifecycle

合法状态：upcoming -> betting -> drawing -> settled，cancelled 可从任一未终结状态进入。

后端轮次：状态以后端为准（包括回溯修正），这里只做校验与记录。
本地模拟轮次：状态是一个不可变值 LocalRoundState，advance(state, now) 给出下一状态；
副作用（派彩、历史、重置选择）由 LocalRound 在状态变化时执行，时钟和随机源都可注入。
"""
import logging
import random
from collections import deque
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError

from roundengine.core.config import settings
from roundengine.core.exceptions import InvalidStateTransition
from roundengine.core.timeutil import SystemClock
from roundengine.schemas.orders import ActionResult, normalize_selection
from roundengine.schemas.rounds import GameType, Round, RoundStatus
from roundengine.services.charge_service import q2

logger = logging.getLogger(__name__)

TERMINAL = frozenset({RoundStatus.SETTLED, RoundStatus.CANCELLED})

TRANSITIONS = {
    RoundStatus.UPCOMING: {RoundStatus.BETTING, RoundStatus.CANCELLED},
    RoundStatus.BETTING: {RoundStatus.DRAWING, RoundStatus.CANCELLED},
    RoundStatus.DRAWING: {RoundStatus.SETTLED, RoundStatus.CANCELLED},
    RoundStatus.SETTLED: set(),
    RoundStatus.CANCELLED: set(),
}

BETTING_CLOSED = "BETTING_CLOSED"


def can_transition(from_status: RoundStatus, to_status: RoundStatus) -> bool:
    return to_status in TRANSITIONS[from_status]


def transition(from_status: RoundStatus, to_status: RoundStatus) -> RoundStatus:
    if not can_transition(from_status, to_status):
        raise InvalidStateTransition(from_status.value, to_status.value)
    return to_status


def apply_backend_update(current: Optional[Round], incoming: Round) -> Round:
    """后端推送的状态一律生效；非正向跳转只记日志"""
    if (
        current is not None
        and current.status != incoming.status
        and not can_transition(current.status, incoming.status)
    ):
        logger.warning(
            "round %s corrected by backend: %s -> %s",
            incoming.id, current.status.value, incoming.status.value,
        )
    return incoming


# ------------------------------
# 本地模拟轮次
# ------------------------------
@dataclass(frozen=True)
class LocalTiming:
    round_ms: int = 180_000
    betting_ms: int = 150_000
    restart_delay_ms: int = 5_000

    @classmethod
    def from_settings(cls) -> "LocalTiming":
        return cls(
            round_ms=settings.LOCAL_ROUND_DURATION_MS,
            betting_ms=settings.LOCAL_BETTING_DURATION_MS,
            restart_delay_ms=settings.LOCAL_RESTART_DELAY_MS,
        )


@dataclass(frozen=True)
class LocalRoundState:
    round_id: str
    status: RoundStatus
    start_ms: int
    cutoff_ms: int
    end_ms: int
    winning_selection: Optional[str] = None
    settled_at_ms: Optional[int] = None


def new_local_state(now_ms: int, timing: LocalTiming) -> LocalRoundState:
    return LocalRoundState(
        round_id=f"round-{now_ms}",
        status=RoundStatus.BETTING,
        start_ms=now_ms,
        cutoff_ms=now_ms + timing.betting_ms,
        end_ms=now_ms + timing.round_ms,
    )


def settle(state: LocalRoundState, now_ms: int, winner: str) -> LocalRoundState:
    if state.status in TERMINAL:
        raise InvalidStateTransition(state.status.value, RoundStatus.SETTLED.value)
    return replace(state, status=RoundStatus.SETTLED, winning_selection=winner, settled_at_ms=now_ms)


def advance(state: LocalRoundState, now_ms: int, timing: LocalTiming,
            draw: Callable[[], str]) -> LocalRoundState:
    """一次 tick 的纯状态转换"""
    if state.status == RoundStatus.SETTLED:
        if now_ms >= (state.settled_at_ms or now_ms) + timing.restart_delay_ms:
            return new_local_state(now_ms, timing)
        return state
    if state.status == RoundStatus.CANCELLED:
        return state
    if now_ms >= state.end_ms:
        return settle(state, now_ms, draw())
    if now_ms >= state.cutoff_ms and state.status == RoundStatus.BETTING:
        return replace(state, status=transition(state.status, RoundStatus.DRAWING))
    return state


@dataclass(frozen=True)
class LocalBet:
    selection: str
    amount: Decimal
    placed_at: int


@dataclass(frozen=True)
class DrawOutcome:
    round_id: str
    winning_selection: str
    total_winnings: Decimal
    winning_bets: int
    had_bets: bool
    message: str


class LocalRound:
    """
    本地计时轮次（没有选中后端轮次时使用）。
    周期 tick（默认 100ms）推进状态；封盘后拒绝选号/加购；到点开奖，
    命中的下注按 stake x 2 派彩；结算后等待 5s 自动开始新一轮。
    """

    JOB_ID = "tick_local_round"

    def __init__(self, game_type: GameType | str | None = None, clock=None,
                 rng: Optional[random.Random] = None, timing: Optional[LocalTiming] = None,
                 history_size: Optional[int] = None, payout_multiplier: Optional[int] = None,
                 tick_ms: Optional[int] = None):
        self.game_type = GameType.parse(game_type or settings.LOCAL_GAME_TYPE)
        self.selection_set = self.game_type.palette
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()
        self.timing = timing or LocalTiming.from_settings()
        self.payout_multiplier = Decimal(payout_multiplier or settings.LOCAL_PAYOUT_MULTIPLIER)
        self.tick_ms = tick_ms or settings.LOCAL_TICK_MS

        self.state: Optional[LocalRoundState] = None
        self.bets: List[LocalBet] = []
        self.selected: List[str] = []
        self.history: deque = deque(maxlen=history_size or settings.LOCAL_HISTORY_SIZE)
        self.last_outcome: Optional[DrawOutcome] = None
        self._scheduler = None

    # ---------- 状态读取 ----------
    @property
    def round_id(self) -> Optional[str]:
        return self.state.round_id if self.state else None

    @property
    def status(self) -> Optional[RoundStatus]:
        return self.state.status if self.state else None

    @property
    def winning_selection(self) -> Optional[str]:
        return self.state.winning_selection if self.state else None

    @property
    def time_left(self) -> int:
        if self.state is None:
            return 0
        return max(0, self.state.end_ms - self._clock.now_ms())

    def is_betting_open(self) -> bool:
        return (
            self.state is not None
            and self.state.status == RoundStatus.BETTING
            and self._clock.now_ms() < self.state.cutoff_ms
        )

    # ---------- 生命周期 ----------
    def initialize(self) -> LocalRoundState:
        self.state = new_local_state(self._clock.now_ms(), self.timing)
        self.bets = []
        self.selected = []
        logger.info("local %s round %s opened", self.game_type.value, self.state.round_id)
        return self.state

    def _draw(self) -> str:
        return self._rng.choice(self.selection_set)

    def tick(self) -> Optional[DrawOutcome]:
        if self.state is None:
            self.initialize()
            return None
        prev = self.state
        nxt = advance(prev, self._clock.now_ms(), self.timing, self._draw)
        if nxt is prev:
            return None
        if nxt.round_id != prev.round_id:
            # 宽限期结束，新一轮
            self.initialize()
            return None
        self.state = nxt
        if nxt.status == RoundStatus.SETTLED:
            return self._on_settled(nxt)
        logger.info("local round %s closed for betting", nxt.round_id)
        return None

    def draw_winner(self) -> DrawOutcome:
        if self.state is None:
            self.initialize()
        self.state = settle(self.state, self._clock.now_ms(), self._draw())
        return self._on_settled(self.state)

    def _on_settled(self, state: LocalRoundState) -> DrawOutcome:
        winner = state.winning_selection
        winning = [b for b in self.bets if b.selection == winner]
        total = q2(sum((b.amount * self.payout_multiplier for b in winning), Decimal("0")))
        if total > 0:
            message = f"You won {settings.CURRENCY_SYMBOL}{total}! Winning selection: {winner}"
        else:
            message = f"Better luck next time! Winning selection was {winner}"
        outcome = DrawOutcome(
            round_id=state.round_id,
            winning_selection=winner,
            total_winnings=total,
            winning_bets=len(winning),
            had_bets=bool(self.bets),
            message=message,
        )
        self.history.appendleft(state)
        self.last_outcome = outcome
        logger.info("local round %s settled: %s (winnings %s)", state.round_id, winner, total)
        return outcome

    # ---------- 下注操作（仅 betting 状态） ----------
    def _closed(self) -> ActionResult:
        return ActionResult(success=False, message="betting closed", code=BETTING_CLOSED)

    def toggle_selection(self, value) -> ActionResult:
        if not self.is_betting_open():
            return self._closed()
        try:
            sel = normalize_selection(self.game_type, value)
        except ValueError as e:
            return ActionResult(success=False, message=str(e), code="INVALID_SELECTION")
        if sel in self.selected:
            self.selected.remove(sel)
            return ActionResult(success=True, message=f"{sel} deselected")
        self.selected.append(sel)
        return ActionResult(success=True, message=f"{sel} selected")

    def total_bet_amount(self, plan_amount) -> Decimal:
        return q2(Decimal(str(plan_amount)) * len(self.selected))

    def place_bet(self, plan_amount, balance=None) -> ActionResult:
        """纯本地下注：每个选中项一注，金额 = 档位金额"""
        if not self.is_betting_open():
            return self._closed()
        if not self.selected:
            return ActionResult(success=False, message="select at least one option", code="EMPTY_SELECTION")
        amount = Decimal(str(plan_amount))
        if amount <= 0:
            return ActionResult(success=False, message="amount must be greater than 0", code="INVALID_AMOUNT")
        total = self.total_bet_amount(amount)
        if balance is not None and Decimal(str(balance)) < total:
            return ActionResult(success=False, message="Insufficient balance!", code="INSUFFICIENT_BALANCE")

        now = self._clock.now_ms()
        count = len(self.selected)
        self.bets.extend(LocalBet(selection=s, amount=amount, placed_at=now) for s in self.selected)
        self.selected = []
        return ActionResult(
            success=True,
            message=f"Bet placed: {settings.CURRENCY_SYMBOL}{total} on {count} selection(s)",
        )

    def add_to_cart(self, cart, plan_amount) -> ActionResult:
        if not self.is_betting_open():
            return self._closed()
        result = cart.add_item(
            self.round_id, self.game_type, list(self.selected),
            self.total_bet_amount(plan_amount), window=self,
        )
        if result.success:
            self.selected = []
        return result

    # ---------- 定时器 ----------
    async def _tick_job(self):
        try:
            self.tick()
        except Exception as e:
            logger.exception("local round tick failed: %s", e)

    def start(self, scheduler) -> None:
        if self._scheduler is not None:
            return
        if self.state is None:
            self.initialize()
        scheduler.add_job(
            self._tick_job,
            "interval",
            seconds=self.tick_ms / 1000,
            id=self.JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=1,
        )
        self._scheduler = scheduler

    def stop(self) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(self.JOB_ID)
        except JobLookupError:
            pass
        self._scheduler = None
