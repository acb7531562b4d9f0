from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from roundengine.constants import COLORS, NUMBER_MIN, NUMBER_MAX
from roundengine.schemas.rounds import GameType


def normalize_selection(game_type: GameType, value) -> str:
    """颜色统一小写；数字统一成不带前导零的字符串（0..100）"""
    s = str(value).strip()
    if game_type is GameType.COLOR:
        s = s.lower()
        if s not in COLORS:
            raise ValueError(f"illegal color: {value}")
        return s
    try:
        n = int(s)
    except ValueError:
        raise ValueError(f"illegal number: {value}") from None
    if not NUMBER_MIN <= n <= NUMBER_MAX:
        raise ValueError(f"illegal number: {value}")
    return str(n)


# 购物车条目（一次用户操作 = 一条）
class CartItem(BaseModel):
    id: str
    round_id: str
    game_type: GameType
    selections: List[str]
    amount: Decimal = Field(gt=0)   # 该条目所有选项的总投注额
    created_at: int = 0             # 毫秒

    @field_validator("game_type", mode="before")
    @classmethod
    def _game_type(cls, v):
        return GameType.parse(v)

    @model_validator(mode="after")
    def _check_selections(self):
        if not self.selections:
            raise ValueError("selections must not be empty")
        self.selections = [normalize_selection(self.game_type, s) for s in self.selections]
        return self


class CartItemIn(BaseModel):
    round_id: Optional[str] = None
    game_type: GameType
    selections: List[str | int] = []
    amount: float

    @field_validator("game_type", mode="before")
    @classmethod
    def _game_type(cls, v):
        return GameType.parse(v)


class CartItemUpdateIn(BaseModel):
    amount: Optional[float] = None
    selections: Optional[List[str | int]] = None


class CartItemOut(BaseModel):
    id: str
    round_id: str
    game_type: GameType
    selections: List[str]
    amount: float


class CartOut(BaseModel):
    items: List[CartItemOut]
    total_items: int
    total_amount: float
    service_charge: float
    final_amount: float
    charge_mode: str


# 结构化结果：校验失败不抛异常
class ActionResult(BaseModel):
    success: bool
    message: str
    code: Optional[str] = None      # BETTING_CLOSED / EMPTY_SELECTION / ...
    item: Optional[CartItemOut] = None


class BalanceCheck(BaseModel):
    is_valid: bool
    message: str
    shortfall: float = 0


# 批量下单：发往后端的单笔交易
class TradeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    round_id: str = Field(alias="roundId")
    trade_type: str = Field(alias="tradeType")   # colour | number
    selection: str
    amount: float


class TradeResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    selection: str
    success: bool
    message: Optional[str] = None
    trade_id: Optional[str] = Field(default=None, alias="tradeId")


class BatchResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success_count: int = Field(alias="successCount")
    total: int
    results: List[TradeResult] = []


class SubmitResult(BaseModel):
    success: bool
    message: str
    success_count: int = 0
    total: int = 0
    partial: bool = False
    results: List[TradeResult] = []
    idempotency_key: Optional[str] = None
