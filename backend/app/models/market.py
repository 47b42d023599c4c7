"""Betting market models: events, trades, users, odds history and request payloads."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ---------- Events ----------

class SportKind(str, Enum):
    two_outcome = "two_outcome"      # e.g. basketball: home / away
    three_outcome = "three_outcome"  # e.g. soccer: home / draw / away


class EventStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    final = "final"


class Outcome(str, Enum):
    home = "home"
    away = "away"
    draw = "draw"


def outcomes_for(kind: SportKind | str) -> tuple[str, ...]:
    """Valid selectable outcomes for a sport kind."""
    if SportKind(kind) == SportKind.three_outcome:
        return (Outcome.home.value, Outcome.draw.value, Outcome.away.value)
    return (Outcome.home.value, Outcome.away.value)


class EventInDB(BaseModel):
    """One fixture. `odds`, `prior_odds` and `pools` are keyed by outcome."""
    sport_kind: SportKind
    start_at: Optional[datetime] = None
    status: EventStatus = EventStatus.scheduled
    home_team: str = ""
    away_team: str = ""
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    result_winner: Optional[str] = None  # "HOME_TEAM" | "AWAY_TEAM" | "DRAW" (three-outcome feeds)
    odds: dict[str, float]
    prior_odds: dict[str, float]
    pools: dict[str, float]
    alpha: float = 0.5
    trade_ids: list[str] = Field(default_factory=list)
    settled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class EventResponse(BaseModel):
    id: str
    sport_kind: str
    status: str
    start_at: Optional[datetime] = None
    home_team: str
    away_team: str
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    odds: dict[str, float]
    pools: dict[str, float]


class OddsHistoryEntry(BaseModel):
    """Append-only odds observation for an event."""
    event_id: str
    timestamp: datetime
    odds: dict[str, float]
    source: str  # "prior" | "bet"
    trade_id: Optional[str] = None


# ---------- Trades ----------

class TradeStatus(str, Enum):
    pending = "Pending"
    won = "Won"
    lost = "Lost"
    sold = "Sold"  # seller-side view only; the stored bet stays Pending for the buyer


TERMINAL_TRADE_STATUSES = (TradeStatus.won.value, TradeStatus.lost.value)


class TradeTransfer(BaseModel):
    from_user_id: str
    to_user_id: str
    price: float
    at: datetime


class TradeInDB(BaseModel):
    """A single wager on one outcome of an event."""
    user_id: str
    event_id: str
    amount: float
    selected_outcome: Outcome
    odds_at_placement: float
    expected_payout: float  # amount * 100 / odds_at_placement
    current_stake_value: float
    status: TradeStatus = TradeStatus.pending
    for_sale: bool = False
    sale_price: Optional[float] = None
    transfers: list[TradeTransfer] = Field(default_factory=list)
    wallet_delta: Optional[float] = None  # set at settlement
    pnl_delta: Optional[float] = None
    delta_applied: Optional[bool] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime


class TradeResponse(BaseModel):
    id: str
    event_id: str
    amount: float
    selected_outcome: str
    odds_at_placement: float
    expected_payout: float
    current_stake_value: float
    status: str
    for_sale: bool = False
    sale_price: Optional[float] = None
    created_at: Optional[datetime] = None


# ---------- Users ----------

class UserInDB(BaseModel):
    wallet_balance: float = 0.0
    lifetime_pnl: float = 0.0
    trade_ids: list[str] = Field(default_factory=list)
    sold_trade_ids: list[str] = Field(default_factory=list)
    settled_trade_ids: list[str] = Field(default_factory=list)
    is_admin: bool = False
    created_at: datetime


class UserResponse(BaseModel):
    id: str
    wallet_balance: float
    lifetime_pnl: float
    trade_count: int


# ---------- Requests / responses ----------

class PlaceBetRequest(BaseModel):
    """Request body for placing a bet. Values are checked by the engine."""
    event_id: str
    bet_amount: float
    selected_outcome: str
    odds: Optional[float] = None  # odds the client displayed


class PlaceBetResponse(BaseModel):
    trade_id: str
    expected_payout: float
    selected_odds: float


class SellBetRequest(BaseModel):
    sale_price: float


class SuccessResponse(BaseModel):
    success: bool = True


class EventIngestRequest(BaseModel):
    """Normalized schedule/score payload from the ingestion pipeline."""
    event_id: str
    sport_kind: SportKind
    status: str = "scheduled"  # raw feed status, normalized on ingest
    start_at: Optional[datetime] = None
    home_team: str = ""
    away_team: str = ""
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    result_winner: Optional[str] = None


class SettlementResult(BaseModel):
    event_id: str
    winning_outcome: Optional[str] = None
    resolved: int = 0
    won: int = 0
    users_credited: int = 0


class ReconciliationResult(BaseModel):
    scanned: int = 0
    applied: int = 0
    already_applied: int = 0
