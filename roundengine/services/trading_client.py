import logging
from decimal import Decimal
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from roundengine.core.config import settings
from roundengine.core.exceptions import TransportError
from roundengine.schemas.orders import BatchResult, TradeRequest, TradeResult
from roundengine.schemas.rounds import GameType, Round

logger = logging.getLogger(__name__)


class TradingClient:
    """
    轮次/交易后端 + 钱包的 HTTP 客户端。
    响应统一为 {success, data}；success=false、非 2xx、网络错误都转成 TransportError。
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.TRADING_API_BASE_URL,
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            raise TransportError(f"{method} {path} -> HTTP {code}", status_code=code) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON") from e

        if isinstance(payload, dict):
            if payload.get("success") is False:
                raise TransportError(payload.get("message") or f"{method} {path} rejected")
            if "data" in payload:
                return payload["data"]
        return payload

    def _parse_rounds(self, data: Any, game_type: GameType) -> List[Round]:
        if isinstance(data, dict):
            data = data.get("rounds") or []
        rounds: List[Round] = []
        for raw in data or []:
            try:
                rounds.append(Round.from_backend(raw, game_type))
            except (ValidationError, ValueError, TypeError) as e:
                # 单条脏数据不影响整批
                logger.warning("skip malformed %s round %r: %s", game_type.value, raw, e)
        return rounds

    async def list_active_rounds(self, game_type: GameType) -> List[Round]:
        data = await self._request(
            "GET", "/trading/rounds/active", params={"roundType": game_type.wire}
        )
        return self._parse_rounds(data, game_type)

    async def list_upcoming_rounds(self, game_type: GameType, limit: int = 10) -> List[Round]:
        data = await self._request(
            "GET", "/trading/rounds/upcoming", params={"roundType": game_type.wire, "limit": limit}
        )
        return self._parse_rounds(data, game_type)

    async def place_trades_batch(self, trades: List[TradeRequest],
                                 idempotency_key: Optional[str] = None) -> BatchResult:
        body: dict = {"trades": [t.model_dump(by_alias=True) for t in trades]}
        headers = {}
        if idempotency_key:
            body["idempotencyKey"] = idempotency_key
            headers["Idempotency-Key"] = idempotency_key
        data = await self._request("POST", "/trading/trades/batch", json=body, headers=headers)
        data = data or {}

        results = []
        for r in data.get("results") or []:
            results.append(TradeResult(
                selection=str(r.get("selection", "")),
                success=bool(r.get("success")),
                message=r.get("message") or r.get("error"),
                trade_id=r.get("tradeId") or r.get("_id"),
            ))
        success_count = data.get("successCount")
        if success_count is None:
            success_count = sum(1 for r in results if r.success)
        return BatchResult(
            success_count=int(success_count),
            total=int(data.get("total") or len(trades)),
            results=results,
        )

    async def get_wallet_balance(self) -> Decimal:
        data = await self._request("GET", "/wallet") or {}
        if isinstance(data.get("wallet"), dict):
            data = data["wallet"]
        return Decimal(str(data.get("balance") or 0))
