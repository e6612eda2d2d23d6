"""
Data models for the session ledger.

Defines conversation messages, derived ecological metrics, and
exchange outcomes.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Optional

from .conversion import (
    ExchangeCost,
    DAILY_COOLING_CAPACITY_LITERS,
    INITIAL_BIODIVERSITY_SCORE,
    energy_for,
    water_for,
)
from .tiers import ComputeTier


class Role(Enum):
    """Author of a conversation message."""
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class Message:
    """Immutable entry in the conversation history.

    Once appended, messages are never modified or reordered.
    """
    role: Role
    content: str
    timestamp: datetime
    tier_used: Optional[ComputeTier] = None


@dataclass(frozen=True)
class EcologicalMetrics:
    """Environmental footprint of a session.

    Energy and water are derived from tokens_used on every read, so
    they can never drift from the token total.
    """
    tokens_used: int = 0
    biodiversity_impact_score: float = INITIAL_BIODIVERSITY_SCORE  # 0-100
    financial_benefit: float = 0.0  # USD

    @property
    def energy_consumed_wh(self) -> float:
        return energy_for(self.tokens_used)

    @property
    def water_used_liters(self) -> float:
        return water_for(self.tokens_used)

    @property
    def cooling_reserve_percent(self) -> float:
        """Share of the daily cooling capacity not yet spent."""
        spent = self.water_used_liters / DAILY_COOLING_CAPACITY_LITERS * 100
        return max(0.0, 100 - spent)


class ExchangeState(Enum):
    """Lifecycle of a single exchange."""
    IDLE = auto()
    CLASSIFYING = auto()
    GENERATING = auto()
    COMPLETED = auto()
    FAILED = auto()


@dataclass(frozen=True)
class ExchangeResult:
    """Outcome of a submitted exchange."""
    status: ExchangeState  # COMPLETED or FAILED
    tier: ComputeTier
    cost: ExchangeCost
    reply: Optional[str] = None

    @property
    def charged_tokens(self) -> int:
        """Tokens charged to the ledger; failed exchanges cost nothing."""
        if self.status is not ExchangeState.COMPLETED:
            return 0
        return self.cost.total_tokens
