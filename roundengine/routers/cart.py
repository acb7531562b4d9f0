from fastapi import APIRouter, Depends, HTTPException, Query

from roundengine.core.container import Engine
from roundengine.core.exceptions import TransportError
from roundengine.routers.deps import get_engine
from roundengine.schemas.orders import (
    ActionResult, BalanceCheck, CartItemIn, CartItemUpdateIn, CartOut, SubmitResult,
)
from roundengine.schemas.rounds import GameType
from roundengine.services.cart_service import MSG_NO_ROUND

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("", response_model=CartOut)
async def get_cart(engine: Engine = Depends(get_engine)):
    return engine.cart.summary()


@router.post("/items", response_model=ActionResult)
async def add_item(payload: CartItemIn, engine: Engine = Depends(get_engine)):
    """
    加入购物车：
      - 未传 round_id 时用当前选中的轮次
      - 轮次必须在缓存中且处于 betting 状态
    """
    round_id = payload.round_id or engine.cache.selected_round_id(payload.game_type)
    window = engine.cache.find_round(payload.game_type, round_id)
    # 不在缓存里的轮次（已结算移出或未知 id）一律视为已封盘
    if window is None:
        return ActionResult(success=False, message=MSG_NO_ROUND, code="BETTING_CLOSED")
    result = engine.cart.add_item(round_id, payload.game_type, payload.selections, payload.amount, window=window)
    if result.success:
        await engine.persist_cart()
    return result


@router.patch("/items/{index}", response_model=ActionResult)
async def update_item(index: int, payload: CartItemUpdateIn, engine: Engine = Depends(get_engine)):
    result = engine.cart.update_item(index, amount=payload.amount, selections=payload.selections)
    if result.success:
        await engine.persist_cart()
    return result


@router.delete("/items/{index}", response_model=CartOut)
async def remove_item(index: int, engine: Engine = Depends(get_engine)):
    if engine.cart.remove_item(index):
        await engine.persist_cart()
    return engine.cart.summary()


@router.delete("", response_model=CartOut)
async def clear_cart(engine: Engine = Depends(get_engine)):
    engine.cart.clear_cart()
    await engine.persist_cart()
    return engine.cart.summary()


@router.get("/validate", response_model=BalanceCheck)
async def validate_cart(refresh: bool = False, engine: Engine = Depends(get_engine)):
    if refresh:
        try:
            await engine.wallet.refresh()
        except TransportError as e:
            raise HTTPException(502, "Failed to load wallet") from e
    return engine.cart.validate_cart_balance(engine.wallet.balance)


@router.post("/submit", response_model=SubmitResult)
async def submit_cart(game: str = Query("color"), engine: Engine = Depends(get_engine)):
    try:
        gt = GameType.parse(game)
    except ValueError:
        raise HTTPException(400, f"未知玩法: {game}")
    engine.cart.open_review()
    result = await engine.submitter.submit(engine.cart, engine.cache.selected_round_id(gt), gt)
    if result.success:
        await engine.persist_cart()
    return result
