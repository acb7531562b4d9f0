import logging
from decimal import Decimal

logger = logging.getLogger(__name__)


class WalletService:
    """钱包余额快照，只读；扣款/派彩都在后端完成"""

    def __init__(self, client):
        self._client = client
        self.balance = Decimal("0")
        self.is_loading = False

    async def refresh(self) -> Decimal:
        self.is_loading = True
        try:
            self.balance = await self._client.get_wallet_balance()
        finally:
            self.is_loading = False
        logger.info("wallet balance refreshed: %s", self.balance)
        return self.balance
