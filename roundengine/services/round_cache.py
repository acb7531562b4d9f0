import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from apscheduler.jobstores.base import JobLookupError

from roundengine.core.config import settings
from roundengine.core.exceptions import TransportError
from roundengine.core.timeutil import SystemClock
from roundengine.schemas.rounds import GameType, Round, RoundStatus, RoundsOut
from roundengine.services.round_lifecycle import TERMINAL, apply_backend_update

logger = logging.getLogger(__name__)


@dataclass
class GameRounds:
    active_rounds: List[Round] = field(default_factory=list)
    upcoming_rounds: List[Round] = field(default_factory=list)
    selected_round_id: Optional[str] = None
    last_fetch_ms: Optional[int] = None
    is_loading: bool = False


class RoundCache:
    """
    颜色/数字两种玩法各一份的轮次缓存：
      - fetch：TTL 内直接命中；否则并发拉取 upcoming + active，整表替换
      - 同一玩法的并发 fetch 共享一次请求；强制刷新只复用尚未发出的请求
      - start/stop：后台定时检查过期并强制刷新，失败只记日志
    """

    JOB_ID = "refresh_rounds"

    def __init__(self, client, clock=None, ttl_seconds: Optional[int] = None,
                 refresh_interval_seconds: Optional[int] = None,
                 upcoming_limit: Optional[int] = None):
        self._client = client
        self._clock = clock or SystemClock()
        ttl = ttl_seconds if ttl_seconds is not None else settings.ROUND_CACHE_TTL_SECONDS
        self.ttl_ms = int(ttl * 1000)
        self.refresh_interval_seconds = refresh_interval_seconds or settings.ROUND_REFRESH_INTERVAL_SECONDS
        self.upcoming_limit = upcoming_limit or settings.UPCOMING_ROUNDS_LIMIT
        self._state: Dict[GameType, GameRounds] = {gt: GameRounds() for gt in GameType}
        self._inflight: Dict[GameType, asyncio.Future] = {}
        self._started: Set[asyncio.Future] = set()   # 已发出网络请求的 in-flight 任务
        self._scheduler = None

    # ---------- 读取 ----------
    def state(self, game_type) -> GameRounds:
        return self._state[GameType.parse(game_type)]

    def active_rounds(self, game_type) -> List[Round]:
        return self.state(game_type).active_rounds

    def upcoming_rounds(self, game_type) -> List[Round]:
        return self.state(game_type).upcoming_rounds

    def selected_round_id(self, game_type) -> Optional[str]:
        return self.state(game_type).selected_round_id

    def is_loading(self, game_type) -> bool:
        return self.state(game_type).is_loading

    def find_round(self, game_type, round_id: Optional[str]) -> Optional[Round]:
        if not round_id:
            return None
        st = self.state(game_type)
        for r in st.active_rounds + st.upcoming_rounds:
            if r.id == round_id:
                return r
        return None

    def selected_round(self, game_type) -> Optional[Round]:
        return self.find_round(game_type, self.selected_round_id(game_type))

    def snapshot(self, game_type) -> RoundsOut:
        gt = GameType.parse(game_type)
        st = self._state[gt]
        return RoundsOut(
            game_type=gt,
            active_rounds=list(st.active_rounds),
            upcoming_rounds=list(st.upcoming_rounds),
            selected_round_id=st.selected_round_id,
            is_loading=st.is_loading,
            last_fetch_ms=st.last_fetch_ms,
        )

    def is_fresh(self, game_type) -> bool:
        last = self.state(game_type).last_fetch_ms
        return last is not None and self._clock.now_ms() - last < self.ttl_ms

    def is_stale(self, game_type) -> bool:
        last = self.state(game_type).last_fetch_ms
        return last is None or self._clock.now_ms() - last > self.ttl_ms

    # ---------- 写入 ----------
    def select(self, game_type, round_id: Optional[str]) -> None:
        self.state(game_type).selected_round_id = round_id

    async def fetch(self, game_type, force_refresh: bool = False) -> bool:
        """返回 True 表示走了网络；失败抛 TransportError，缓存保持原样"""
        gt = GameType.parse(game_type)
        if not force_refresh and self.is_fresh(gt):
            logger.debug("using cached %s rounds", gt.value)
            return False

        task = self._inflight.get(gt)
        # 强制刷新不能复用已经发出的请求（其响应可能早于调用方的写入），排在它后面重新拉
        if task is None or (force_refresh and task in self._started):
            task = asyncio.ensure_future(self._chain(gt, task))
            self._inflight[gt] = task

            def _done(t, gt=gt):
                self._started.discard(t)
                if self._inflight.get(gt) is t:
                    del self._inflight[gt]
            task.add_done_callback(_done)
        else:
            logger.debug("joining pending %s rounds request", gt.value)
        await asyncio.shield(task)
        return True

    async def _chain(self, gt: GameType, prev: Optional[asyncio.Future]) -> None:
        if prev is not None:
            # 等上一轮结束，其结果由它自己的调用方处理
            await asyncio.wait([prev])
        self._started.add(asyncio.current_task())
        await self._load(gt)

    async def _load(self, gt: GameType) -> None:
        st = self._state[gt]
        now = self._clock.now_ms()
        st.is_loading = True
        try:
            upcoming, active = await asyncio.gather(
                self._client.list_upcoming_rounds(gt, limit=self.upcoming_limit),
                self._client.list_active_rounds(gt),
            )
        except TransportError as e:
            logger.warning("failed to fetch %s rounds: %s", gt.value, e)
            raise
        finally:
            st.is_loading = False

        st.upcoming_rounds = [r.model_copy(update={"game_type": gt}) for r in upcoming]
        st.active_rounds = [r.model_copy(update={"game_type": gt}) for r in active]
        st.last_fetch_ms = now
        if st.selected_round_id is None and st.active_rounds:
            st.selected_round_id = st.active_rounds[0].id
        logger.info(
            "%s rounds refreshed: %d active, %d upcoming",
            gt.value, len(st.active_rounds), len(st.upcoming_rounds),
        )

    async def refresh_all(self) -> None:
        await asyncio.gather(
            self.fetch(GameType.COLOR, force_refresh=True),
            self.fetch(GameType.NUMBER, force_refresh=True),
        )

    async def refresh_stale(self) -> None:
        """后台任务：各玩法独立判断是否过期，失败吞掉，下个周期再试"""
        stale = [gt for gt in GameType if self.is_stale(gt)]
        if not stale:
            return
        results = await asyncio.gather(
            *(self.fetch(gt, force_refresh=True) for gt in stale), return_exceptions=True
        )
        for gt, res in zip(stale, results):
            if isinstance(res, TransportError):
                logger.warning("background refresh of %s rounds failed, keeping stale data", gt.value)
            elif isinstance(res, Exception):
                logger.error("background refresh of %s rounds crashed: %s", gt.value, res)

    def apply_round_update(self, incoming: Round) -> None:
        """
        后端推送的轮次变化（以后端为准）：
          upcoming -> upcoming 列表；betting/drawing -> active 列表；settled/cancelled -> 移出缓存
        """
        st = self._state[incoming.game_type]
        current = self.find_round(incoming.game_type, incoming.id)
        incoming = apply_backend_update(current, incoming)

        def _place(rounds: List[Round]) -> bool:
            for i, r in enumerate(rounds):
                if r.id == incoming.id:
                    rounds[i] = incoming
                    return True
            return False

        if incoming.status in TERMINAL:
            st.active_rounds = [r for r in st.active_rounds if r.id != incoming.id]
            st.upcoming_rounds = [r for r in st.upcoming_rounds if r.id != incoming.id]
            if st.selected_round_id == incoming.id:
                st.selected_round_id = None
            logger.info("%s round %s retired (%s)", incoming.game_type.value, incoming.id, incoming.status.value)
            return

        if incoming.status == RoundStatus.UPCOMING:
            target, other = st.upcoming_rounds, st.active_rounds
        else:
            target, other = st.active_rounds, st.upcoming_rounds
        other[:] = [r for r in other if r.id != incoming.id]
        if not _place(target):
            target.append(incoming)

    # ---------- 定时器 ----------
    async def _refresh_job(self):
        try:
            await self.refresh_stale()
        except Exception as e:
            logger.exception("refresh_rounds job failed: %s", e)

    def start(self, scheduler) -> None:
        if self._scheduler is not None:
            return
        scheduler.add_job(
            self._refresh_job,
            "interval",
            seconds=self.refresh_interval_seconds,
            id=self.JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=10,
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
