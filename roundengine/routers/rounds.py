import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from roundengine.core.container import Engine
from roundengine.core.exceptions import TransportError
from roundengine.routers.deps import get_engine
from roundengine.schemas.rounds import GameType, Round, RoundEventIn, RoundSelectIn, RoundsOut

router = APIRouter(prefix="/api/rounds", tags=["rounds"])
logger = logging.getLogger(__name__)


def _game(game: str) -> GameType:
    try:
        return GameType.parse(game)
    except ValueError:
        raise HTTPException(400, f"未知玩法: {game}")


@router.get("", response_model=RoundsOut)
async def list_rounds(game: str = Query("color"), engine: Engine = Depends(get_engine)):
    """TTL 内走缓存；拉取失败时返回上一次的数据"""
    gt = _game(game)
    try:
        await engine.cache.fetch(gt)
    except TransportError as e:
        logger.warning("serving stale %s rounds: %s", gt.value, e)
    return engine.cache.snapshot(gt)


@router.post("/refresh", response_model=RoundsOut)
async def refresh_rounds(game: str = Query("color"), engine: Engine = Depends(get_engine)):
    gt = _game(game)
    try:
        await engine.cache.fetch(gt, force_refresh=True)
    except TransportError as e:
        raise HTTPException(502, f"Failed to load {gt.value} rounds") from e
    return engine.cache.snapshot(gt)


@router.post("/select", response_model=RoundsOut)
async def select_round(payload: RoundSelectIn, engine: Engine = Depends(get_engine)):
    engine.cache.select(payload.game_type, payload.round_id)
    return engine.cache.snapshot(payload.game_type)


@router.post("/events", response_model=RoundsOut)
async def round_event(payload: RoundEventIn, engine: Engine = Depends(get_engine)):
    """后端推送的轮次事件（created/updated/closed/finalized）"""
    try:
        rnd = Round.from_backend(payload.round, payload.game_type)
    except (ValidationError, ValueError) as e:
        raise HTTPException(400, f"无效轮次数据: {e}")
    engine.cache.apply_round_update(rnd)
    # 轮次结束后，购物车里该轮的订单已无法提交
    if payload.event == "finalized" and engine.cart.remove_items_by_round_id(rnd.id):
        await engine.persist_cart()
    return engine.cache.snapshot(payload.game_type)
