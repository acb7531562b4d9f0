from typing import List, Optional
from pydantic import BaseModel, Field

class ToggleIn(BaseModel):
    selection: str | int

class PlanIn(BaseModel):
    plan_amount: float = Field(gt=0)

class LocalBetOut(BaseModel):
    selection: str
    amount: float

class HistoryRoundOut(BaseModel):
    round_id: str
    winning_selection: Optional[str] = None
    start_ms: int
    end_ms: int

class OutcomeOut(BaseModel):
    round_id: str
    winning_selection: str
    total_winnings: float
    message: str

class LocalRoundOut(BaseModel):
    round_id: Optional[str] = None
    game_type: str
    status: Optional[str] = None
    time_left_ms: int
    winning_selection: Optional[str] = None
    selected: List[str]
    bets: List[LocalBetOut]
    history: List[HistoryRoundOut]
    plan_amounts: List[int]
    last_outcome: Optional[OutcomeOut] = None
