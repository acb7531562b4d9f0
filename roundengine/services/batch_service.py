import asyncio
import logging
import uuid
from typing import Callable, Iterable, List, Optional

from roundengine.core.config import settings
from roundengine.core.exceptions import TransportError
from roundengine.schemas.orders import CartItem, SubmitResult, TradeRequest
from roundengine.schemas.rounds import GameType

logger = logging.getLogger(__name__)


def flatten_cart(items: Iterable[CartItem], round_id: str, game_type: GameType) -> List[TradeRequest]:
    """每个选项拆成一笔交易，条目金额在选项间平分"""
    trades: List[TradeRequest] = []
    for item in items:
        share = float(item.amount) / len(item.selections)
        for sel in item.selections:
            trades.append(TradeRequest(
                round_id=round_id,
                trade_type=game_type.wire,
                selection=sel,
                amount=share,
            ))
    return trades


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


class BatchSubmitter:
    """
    购物车一次性提交：
      ① 余额不足本地拦截，不发请求
      ② 按玩法过滤并拆单
      ③ 单次批量请求（每次尝试一个幂等键）
      ④ 有成交：清空购物车、关确认面板，并发刷新钱包与轮次缓存
      ⑤ 零成交或传输失败：购物车原样保留，供重试
    """

    def __init__(self, client, wallet, cache,
                 key_factory: Optional[Callable[[], str]] = None):
        self._client = client
        self._wallet = wallet
        self._cache = cache
        self._key_factory = key_factory or new_idempotency_key

    async def submit(self, cart, selected_round_id: Optional[str], game_type) -> SubmitResult:
        gt = GameType.parse(game_type)
        if not selected_round_id:
            return SubmitResult(success=False, message="No round selected!")

        check = cart.validate_cart_balance(self._wallet.balance)
        if not check.is_valid:
            return SubmitResult(success=False, message=check.message)

        items = cart.items_by_game_type(gt)
        if not items:
            return SubmitResult(success=False, message=f"No {gt.value} orders in cart")

        trades = flatten_cart(items, selected_round_id, gt)
        key = self._key_factory()
        final_amount = cart.final_amount
        logger.info("submitting %d %s trades on round %s (key=%s)", len(trades), gt.value, selected_round_id, key)

        try:
            result = await self._client.place_trades_batch(trades, idempotency_key=key)
        except TransportError as e:
            logger.warning("batch submit failed (key=%s): %s", key, e)
            return SubmitResult(
                success=False,
                message="Failed to place orders. Please try again.",
                total=len(trades),
                idempotency_key=key,
            )

        if result.success_count <= 0:
            return SubmitResult(
                success=False,
                message="Failed to place trades",
                total=result.total,
                results=result.results,
                idempotency_key=key,
            )

        cart.clear_cart()
        cart.close_review()
        await self._reconcile(gt)

        partial = result.success_count < result.total
        plural = "s" if result.success_count > 1 else ""
        message = (
            f"Successfully placed {result.success_count} trade{plural} "
            f"for {settings.CURRENCY_SYMBOL}{final_amount}!"
        )
        if partial:
            message += f" {result.total - result.success_count} of {result.total} were rejected."
            logger.warning("partial batch (key=%s): %d/%d accepted", key, result.success_count, result.total)
        return SubmitResult(
            success=True,
            message=message,
            success_count=result.success_count,
            total=result.total,
            partial=partial,
            results=result.results,
            idempotency_key=key,
        )

    async def _reconcile(self, gt: GameType) -> None:
        # 两个刷新互不依赖，都必须发出
        results = await asyncio.gather(
            self._wallet.refresh(),
            self._cache.fetch(gt, force_refresh=True),
            return_exceptions=True,
        )
        for label, res in zip(("wallet", "rounds"), results):
            if isinstance(res, Exception):
                logger.warning("post-submit %s refresh failed: %s", label, res)
