"""Wires the engine's long-lived services together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from roundengine.services.batch_service import BatchSubmitter
from roundengine.services.cart_service import Cart
from roundengine.services.cart_store import CartStore
from roundengine.services.round_cache import RoundCache
from roundengine.services.round_lifecycle import LocalRound
from roundengine.services.trading_client import TradingClient
from roundengine.services.wallet_service import WalletService


@dataclass
class Engine:
    client: TradingClient
    wallet: WalletService
    cache: RoundCache
    cart: Cart
    local_round: LocalRound
    submitter: BatchSubmitter
    store: Optional[CartStore] = None

    async def persist_cart(self) -> None:
        if self.store is not None:
            await self.store.save(self.cart)


__all__ = ["Engine"]
