"""
Compute-intensity tiers and their unit economics.

Maps each tier to the cost multiplier applied to token estimates.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict


class ComputeTier(Enum):
    """Reasoning depth a request needs."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HEAVY = "HEAVY"

    @classmethod
    def parse(cls, value: str) -> "ComputeTier":
        """Parse a tier name, case-insensitively.

        Raises:
            ValueError: If the name is not a known tier
        """
        if not isinstance(value, str):
            raise ValueError(f"Unknown compute tier: {value!r}")
        try:
            return cls(value.strip().upper())
        except ValueError:
            valid = [tier.value for tier in cls]
            raise ValueError(f"Unknown compute tier: {value!r} (expected one of {valid})")


@dataclass(frozen=True)
class TierEconomics:
    """Cost multiplier and descriptive metadata for one tier."""
    multiplier: Decimal  # Scales every token estimate
    label: str
    description: str


@dataclass(frozen=True)
class UnitEconomicsTable:
    """Fixed table of tier economics."""
    tiers: Dict[ComputeTier, TierEconomics]

    def get(self, tier: ComputeTier) -> TierEconomics:
        """Get economics for a tier.

        Args:
            tier: Compute tier

        Returns:
            TierEconomics for the tier

        Raises:
            ValueError: If tier is not in the table
        """
        if tier not in self.tiers:
            raise ValueError(f"Unsupported compute tier: {tier}")
        return self.tiers[tier]


UNIT_ECONOMICS = UnitEconomicsTable({
    ComputeTier.LOW: TierEconomics(
        multiplier=Decimal("0.4"),
        label="Minimalist",
        description="Ideal for: Word definitions, proofreading, simple logic. Minimal grid impact."
    ),
    ComputeTier.MEDIUM: TierEconomics(
        multiplier=Decimal("1.0"),
        label="Balanced",
        description="Ideal for: Creative writing, summarization, general chat. Optimized throughput."
    ),
    ComputeTier.HEAVY: TierEconomics(
        multiplier=Decimal("2.8"),
        label="Deep Reason",
        description="Ideal for: Complex coding, multi-step math, deep research. High thermal output."
    ),
})


def tier_of(tier: ComputeTier) -> TierEconomics:
    """Look up the unit economics for a tier."""
    return UNIT_ECONOMICS.get(tier)
