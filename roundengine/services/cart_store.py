import json
import logging
from typing import Optional

from pydantic import ValidationError

from roundengine.constants import k_cart
from roundengine.core.config import settings
from roundengine.schemas.orders import CartItem

logger = logging.getLogger(__name__)


class CartStore:
    """购物车持久化到 Redis（JSON 列表），重启后恢复"""

    def __init__(self, redis, owner: Optional[str] = None):
        self._r = redis
        self.key = k_cart(owner or settings.CART_OWNER)

    async def load(self, cart) -> int:
        raw = await self._r.get(self.key)
        if not raw:
            return 0
        try:
            items = [CartItem.model_validate(d) for d in json.loads(raw)]
        except (ValueError, ValidationError, TypeError) as e:
            # 数据损坏：丢弃，不影响启动
            logger.warning("discarding corrupt cart %s: %s", self.key, e)
            await self._r.delete(self.key)
            return 0
        cart.load_items(items)
        return len(cart.items)

    async def save(self, cart) -> None:
        if not cart.items:
            await self._r.delete(self.key)
            return
        payload = json.dumps(
            [it.model_dump(mode="json") for it in cart.items], ensure_ascii=False, sort_keys=True
        )
        await self._r.set(self.key, payload)
