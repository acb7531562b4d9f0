import logging

from redis.exceptions import RedisError

from roundengine.core.config import settings
from roundengine.core.container import Engine
from roundengine.core.exceptions import TransportError
from roundengine.services.batch_service import BatchSubmitter
from roundengine.services.cart_service import Cart
from roundengine.services.cart_store import CartStore
from roundengine.services.round_cache import RoundCache
from roundengine.services.round_lifecycle import LocalRound
from roundengine.services.trading_client import TradingClient
from roundengine.services.wallet_service import WalletService
from roundengine.tasks.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


def build_engine() -> Engine:
    client = TradingClient()
    wallet = WalletService(client)
    cache = RoundCache(client)
    store = None
    if settings.CART_PERSIST:
        from roundengine.db.redis import r
        store = CartStore(r)
    return Engine(
        client=client,
        wallet=wallet,
        cache=cache,
        cart=Cart(),
        local_round=LocalRound(),
        submitter=BatchSubmitter(client, wallet, cache),
        store=store,
    )


async def startup_engine(engine: Engine) -> None:
    # 恢复购物车
    if engine.store is not None:
        try:
            n = await engine.store.load(engine.cart)
            if n:
                logger.info("restored %d cart items", n)
        except RedisError as e:
            logger.warning("cart restore skipped: %s", e)

    # 首屏数据：失败不阻塞启动，后台任务会重试
    try:
        await engine.cache.refresh_all()
    except TransportError as e:
        logger.warning("initial rounds fetch failed: %s", e)
    try:
        await engine.wallet.refresh()
    except TransportError as e:
        logger.warning("initial wallet fetch failed: %s", e)

    engine.local_round.initialize()
    start_scheduler(engine.cache, engine.local_round)


async def shutdown_engine(engine: Engine) -> None:
    stop_scheduler(engine.cache, engine.local_round)
    await engine.client.aclose()
