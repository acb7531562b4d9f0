from fastapi import APIRouter, Depends

from roundengine.constants import PLAN_AMOUNTS
from roundengine.core.container import Engine
from roundengine.routers.deps import get_engine
from roundengine.schemas.local_round import (
    HistoryRoundOut, LocalBetOut, LocalRoundOut, OutcomeOut, PlanIn, ToggleIn,
)
from roundengine.schemas.orders import ActionResult

router = APIRouter(prefix="/api/local-round", tags=["local-round"])


def _view(engine: Engine) -> LocalRoundOut:
    lr = engine.local_round
    outcome = lr.last_outcome
    return LocalRoundOut(
        round_id=lr.round_id,
        game_type=lr.game_type.value,
        status=lr.status.value if lr.status else None,
        time_left_ms=lr.time_left,
        winning_selection=lr.winning_selection,
        selected=list(lr.selected),
        bets=[LocalBetOut(selection=b.selection, amount=float(b.amount)) for b in lr.bets],
        history=[
            HistoryRoundOut(
                round_id=h.round_id,
                winning_selection=h.winning_selection,
                start_ms=h.start_ms,
                end_ms=h.end_ms,
            )
            for h in lr.history
        ],
        plan_amounts=list(PLAN_AMOUNTS),
        last_outcome=OutcomeOut(
            round_id=outcome.round_id,
            winning_selection=outcome.winning_selection,
            total_winnings=float(outcome.total_winnings),
            message=outcome.message,
        ) if outcome else None,
    )


@router.get("", response_model=LocalRoundOut)
async def get_local_round(engine: Engine = Depends(get_engine)):
    return _view(engine)


@router.post("/toggle", response_model=ActionResult)
async def toggle_selection(payload: ToggleIn, engine: Engine = Depends(get_engine)):
    return engine.local_round.toggle_selection(payload.selection)


@router.post("/bet", response_model=ActionResult)
async def place_bet(payload: PlanIn, engine: Engine = Depends(get_engine)):
    return engine.local_round.place_bet(payload.plan_amount, balance=engine.wallet.balance)


@router.post("/cart", response_model=ActionResult)
async def add_to_cart(payload: PlanIn, engine: Engine = Depends(get_engine)):
    result = engine.local_round.add_to_cart(engine.cart, payload.plan_amount)
    if result.success:
        await engine.persist_cart()
    return result
