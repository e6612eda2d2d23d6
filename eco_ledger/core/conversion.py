"""
Conversion constants and token estimation.

Turns raw text sizes into token costs and token counts into
environmental quantities. The rates are illustrative, not audited.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING

from .tiers import ComputeTier, tier_of


WATER_PER_TOKEN = 0.0005  # Liters of cooling water per token
ENERGY_PER_TOKEN = 0.002  # Wh per token
TOKEN_PRICE_USD = 0.005
PRODUCTIVITY_VALUE_PER_REQUEST = 2.50  # USD credited per completed exchange
BIODIVERSITY_DECAY_PER_TOKEN = 0.0001
CHARS_PER_TOKEN = 4

DAILY_COOLING_CAPACITY_LITERS = 10.0
INITIAL_TOKEN_GRANT = 2500
INITIAL_BIODIVERSITY_SCORE = 92.0


@dataclass(frozen=True)
class ExchangeCost:
    """Token cost of one request/response round-trip."""
    request_tokens: int
    response_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens charged (request + response)."""
        return self.request_tokens + self.response_tokens


def estimate_token_cost(text: str, tier: ComputeTier) -> int:
    """Estimate the token cost of a piece of text under a tier.

    Uses the crude 4-characters-per-token heuristic scaled by the tier
    multiplier, always rounding UP.

    Args:
        text: Request or reply text
        tier: Compute tier the text is charged under

    Returns:
        Whole number of tokens
    """
    multiplier = tier_of(tier).multiplier
    raw = (Decimal(len(text)) / Decimal(CHARS_PER_TOKEN)) * multiplier
    return int(raw.to_integral_value(rounding=ROUND_CEILING))


def energy_for(tokens: int) -> float:
    """Energy in Wh consumed by a number of tokens."""
    return tokens * ENERGY_PER_TOKEN


def water_for(tokens: int) -> float:
    """Cooling water in liters consumed by a number of tokens."""
    return tokens * WATER_PER_TOKEN


def donation_for(amount: int, price_per_token: float = TOKEN_PRICE_USD) -> float:
    """Donation recorded when replenishing `amount` tokens."""
    return amount * price_per_token
