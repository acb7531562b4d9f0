import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from roundengine.core.config import settings
from roundengine.core.timeutil import SystemClock
from roundengine.schemas.orders import (
    ActionResult, BalanceCheck, CartItem, CartItemOut, CartOut, normalize_selection,
)
from roundengine.schemas.rounds import GameType
from roundengine.services.charge_service import ChargeModel, q2

logger = logging.getLogger(__name__)

MSG_NO_ROUND = "select a round / betting closed"
MSG_EMPTY = "select at least one option"
MSG_BAD_AMOUNT = "amount must be greater than 0"


def _to_amount(v) -> Optional[Decimal]:
    try:
        amt = Decimal(str(v))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amt.is_finite() or amt <= 0:
        return None
    return q2(amt)


def _normalize_all(game_type: GameType, selections: Iterable) -> List[str]:
    # 去重，保留选择顺序
    out: List[str] = []
    for s in selections:
        n = normalize_selection(game_type, s)
        if n not in out:
            out.append(n)
    return out


def _out(item: CartItem) -> CartItemOut:
    return CartItemOut(
        id=item.id,
        round_id=item.round_id,
        game_type=item.game_type,
        selections=list(item.selections),
        amount=float(item.amount),
    )


class Cart:
    """
    待提交订单（每次用户操作一条，不合并）。
    校验失败返回 ActionResult(success=False)，不抛异常；不碰钱，扣款在后端。
    """

    def __init__(self, charge_model: Optional[ChargeModel] = None, max_items: Optional[int] = None,
                 clock=None):
        self.items: List[CartItem] = []
        self.charge_model = charge_model or ChargeModel()
        self.max_items = max_items or settings.CART_MAX_ITEMS
        self.is_review_open = False
        self._clock = clock or SystemClock()

    # ---------- 汇总 ----------
    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def total_amount(self) -> Decimal:
        return q2(sum((it.amount for it in self.items), Decimal("0")))

    @property
    def service_charge(self) -> Decimal:
        return self.charge_model.service_charge(it.amount for it in self.items)

    @property
    def final_amount(self) -> Decimal:
        return self.charge_model.final_amount(self.total_amount, self.service_charge)

    @property
    def can_add_more(self) -> bool:
        return len(self.items) < self.max_items

    def summary(self) -> CartOut:
        return CartOut(
            items=[_out(it) for it in self.items],
            total_items=self.total_items,
            total_amount=float(self.total_amount),
            service_charge=float(self.service_charge),
            final_amount=float(self.final_amount),
            charge_mode=self.charge_model.mode,
        )

    # ---------- 增删改 ----------
    def add_item(self, round_id: Optional[str], game_type, selections, amount,
                 window=None) -> ActionResult:
        """
        window: 可选，带 is_betting_open() 的轮次（后端 Round 或 LocalRound），
        传入时要求其处于 betting 状态。
        """
        if not round_id or (window is not None and not window.is_betting_open()):
            return ActionResult(success=False, message=MSG_NO_ROUND, code="BETTING_CLOSED")
        if not selections:
            return ActionResult(success=False, message=MSG_EMPTY, code="EMPTY_SELECTION")

        amt = _to_amount(amount)
        if amt is None:
            return ActionResult(success=False, message=MSG_BAD_AMOUNT, code="INVALID_AMOUNT")

        try:
            gt = GameType.parse(game_type)
            normalized = _normalize_all(gt, selections)
        except ValueError as e:
            return ActionResult(success=False, message=str(e), code="INVALID_SELECTION")

        if not self.can_add_more:
            return ActionResult(
                success=False,
                message=f"Cart is full! Maximum {self.max_items} orders allowed per batch.",
                code="CART_FULL",
            )

        now = self._clock.now_ms()
        item = CartItem(
            id=f"cart_{now}_{uuid.uuid4().hex[:9]}",
            round_id=str(round_id),
            game_type=gt,
            selections=normalized,
            amount=amt,
            created_at=now,
        )
        self.items.append(item)
        logger.info("cart +%s %s x%d on round %s", item.amount, gt.value, len(normalized), round_id)
        return ActionResult(success=True, message=f"{len(normalized)} orders added", item=_out(item))

    def update_item(self, index: int, amount=None, selections=None) -> ActionResult:
        if not 0 <= index < len(self.items):
            return ActionResult(success=False, message="Item not found in cart.", code="NOT_FOUND")
        item = self.items[index]
        updates = {}
        if amount is not None:
            amt = _to_amount(amount)
            if amt is None:
                return ActionResult(success=False, message=MSG_BAD_AMOUNT, code="INVALID_AMOUNT")
            updates["amount"] = amt
        if selections is not None:
            if not selections:
                return ActionResult(success=False, message=MSG_EMPTY, code="EMPTY_SELECTION")
            try:
                updates["selections"] = _normalize_all(item.game_type, selections)
            except ValueError as e:
                return ActionResult(success=False, message=str(e), code="INVALID_SELECTION")
        self.items[index] = item.model_copy(update=updates)
        return ActionResult(success=True, message="Cart item updated successfully!", item=_out(self.items[index]))

    def remove_item(self, index: int) -> bool:
        # 下标失效时静默忽略（界面可能已并发刷新）
        if 0 <= index < len(self.items):
            del self.items[index]
            return True
        return False

    def clear_cart(self) -> None:
        self.items = []

    def load_items(self, items: List[CartItem]) -> None:
        self.items = list(items)[: self.max_items]

    # ---------- 查询 ----------
    def items_by_game_type(self, game_type) -> List[CartItem]:
        gt = GameType.parse(game_type)
        return [it for it in self.items if it.game_type == gt]

    def items_by_round_id(self, round_id: str) -> List[CartItem]:
        return [it for it in self.items if it.round_id == round_id]

    def has_items_for_round(self, round_id: str) -> bool:
        return any(it.round_id == round_id for it in self.items)

    def remove_items_by_round_id(self, round_id: str) -> int:
        before = len(self.items)
        self.items = [it for it in self.items if it.round_id != round_id]
        return before - len(self.items)

    # ---------- 余额校验 ----------
    def validate_cart_balance(self, available_balance) -> BalanceCheck:
        balance = q2(Decimal(str(available_balance or 0)))
        final = self.final_amount
        if final > balance:
            shortfall = q2(final - balance)
            sym = settings.CURRENCY_SYMBOL
            return BalanceCheck(
                is_valid=False,
                message=(
                    f"Insufficient balance! Cart total: {sym}{final}, "
                    f"Available: {sym}{balance}, Short by: {sym}{shortfall}"
                ),
                shortfall=float(shortfall),
            )
        return BalanceCheck(is_valid=True, message="Cart is valid.")

    # ---------- 确认面板 ----------
    def open_review(self) -> None:
        self.is_review_open = True

    def close_review(self) -> None:
        self.is_review_open = False
