from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from roundengine.constants import COLORS, NUMBERS
from roundengine.core.timeutil import parse_backend_time


class GameType(str, Enum):
    COLOR = "color"
    NUMBER = "number"

    @classmethod
    def parse(cls, v: Any) -> "GameType":
        if isinstance(v, GameType):
            return v
        s = str(v or "").strip().lower()
        if s == "colour":
            return cls.COLOR
        return cls(s)

    @property
    def wire(self) -> str:
        # 后端把颜色玩法叫 colour
        return "colour" if self is GameType.COLOR else "number"

    @property
    def palette(self) -> tuple[str, ...]:
        return COLORS if self is GameType.COLOR else NUMBERS


class RoundStatus(str, Enum):
    UPCOMING = "upcoming"
    BETTING = "betting"
    DRAWING = "drawing"
    SETTLED = "settled"
    CANCELLED = "cancelled"


# 后端状态别名 -> 引擎状态
STATUS_ALIASES = {
    "upcoming": RoundStatus.UPCOMING,
    "scheduled": RoundStatus.UPCOMING,
    "pending": RoundStatus.UPCOMING,
    "betting": RoundStatus.BETTING,
    "active": RoundStatus.BETTING,
    "open": RoundStatus.BETTING,
    "drawing": RoundStatus.DRAWING,
    "closed": RoundStatus.DRAWING,
    "locked": RoundStatus.DRAWING,
    "settled": RoundStatus.SETTLED,
    "completed": RoundStatus.SETTLED,
    "finished": RoundStatus.SETTLED,
    "cancelled": RoundStatus.CANCELLED,
    "canceled": RoundStatus.CANCELLED,
}


def normalize_status(v: Any) -> RoundStatus:
    if isinstance(v, RoundStatus):
        return v
    s = str(v or "").strip().lower()
    if s not in STATUS_ALIASES:
        raise ValueError(f"unknown round status: {v!r}")
    return STATUS_ALIASES[s]


class Round(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    game_type: GameType = Field(alias="gameType")
    status: RoundStatus
    round_number: Optional[int] = Field(default=None, alias="roundNumber")
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    betting_cutoff_time: Optional[datetime] = Field(default=None, alias="bettingCutoffTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    winning_selection: Optional[str] = Field(default=None, alias="winningSelection")
    total_trades: int = Field(default=0, alias="totalTrades")

    @field_validator("game_type", mode="before")
    @classmethod
    def _game_type(cls, v):
        return GameType.parse(v)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v):
        return normalize_status(v)

    @field_validator("start_time", "betting_cutoff_time", "end_time", mode="before")
    @classmethod
    def _times(cls, v):
        return parse_backend_time(v)

    @model_validator(mode="after")
    def _check(self):
        if self.betting_cutoff_time is None:
            self.betting_cutoff_time = self.end_time
        times = [t for t in (self.start_time, self.betting_cutoff_time, self.end_time) if t is not None]
        if times != sorted(times):
            raise ValueError("round times must satisfy start <= betting cutoff <= end")
        # 只有已结算的轮次才有开奖结果
        if self.status != RoundStatus.SETTLED:
            self.winning_selection = None
        return self

    def is_betting_open(self) -> bool:
        return self.status == RoundStatus.BETTING

    @classmethod
    def from_backend(cls, raw: dict, game_type: GameType | str) -> "Round":
        """
        兼容后端多种字段命名：
          id / _id / roundId
          endTime / resultDeclarationTime
          bettingCutoffTime / bettingEndTime / closeTime
          result 可以是标量，也可以是 {winningColor|winningNumber}
        """
        rid = raw.get("id") or raw.get("_id") or raw.get("roundId")
        if not rid:
            raise ValueError("round without id")
        result = raw.get("winningSelection", raw.get("result"))
        if isinstance(result, dict):
            result = result.get("winningColor", result.get("winningNumber"))
        return cls(
            id=str(rid),
            game_type=game_type,
            status=raw.get("status"),
            round_number=raw.get("roundNumber"),
            start_time=raw.get("startTime"),
            betting_cutoff_time=(
                raw.get("bettingCutoffTime")
                or raw.get("bettingEndTime")
                or raw.get("closeTime")
            ),
            end_time=raw.get("endTime") or raw.get("resultDeclarationTime"),
            winning_selection=None if result is None else str(result),
            total_trades=int(raw.get("totalTrades") or raw.get("totalBets") or 0),
        )


class RoundsOut(BaseModel):
    game_type: GameType
    active_rounds: list[Round]
    upcoming_rounds: list[Round]
    selected_round_id: Optional[str] = None
    is_loading: bool = False
    last_fetch_ms: Optional[int] = None


class RoundSelectIn(BaseModel):
    game_type: GameType
    round_id: Optional[str] = None

    @field_validator("game_type", mode="before")
    @classmethod
    def _game_type(cls, v):
        return GameType.parse(v)


class RoundEventIn(BaseModel):
    """后端推送的轮次事件（created/updated/closed/finalized）"""
    event: str = "updated"
    game_type: GameType
    round: dict

    @field_validator("game_type", mode="before")
    @classmethod
    def _game_type(cls, v):
        return GameType.parse(v)
