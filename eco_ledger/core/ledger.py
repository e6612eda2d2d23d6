"""
Session ledger for token budget and ecological accounting.

The ledger is the single owned aggregate of a session. All mutation goes
through the methods below so that every exchange is charged atomically.

Exchange flow:
1. Guard - empty text, empty budget, or an exchange already in flight
2. Classify - auto mode only; failures fall back to the active tier
3. Generate - reply from the response gateway
4. Commit - history pair plus one metrics update, or user + error on failure
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Sequence, Tuple

from .conversion import (
    BIODIVERSITY_DECAY_PER_TOKEN,
    INITIAL_BIODIVERSITY_SCORE,
    INITIAL_TOKEN_GRANT,
    PRODUCTIVITY_VALUE_PER_REQUEST,
    TOKEN_PRICE_USD,
    ExchangeCost,
    donation_for,
    estimate_token_cost,
)
from .models import EcologicalMetrics, ExchangeResult, ExchangeState, Message, Role
from .tiers import ComputeTier, tier_of

logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE_NOTICE = "SYSTEM ERROR: SENTINEL UNAVAILABLE. PLEASE RETRY."


class Classifier(Protocol):
    def classify(self, text: str) -> Awaitable[ComputeTier]: ...


class Responder(Protocol):
    def generate(
        self, history: Sequence[Message], prompt: str, tier: ComputeTier
    ) -> Awaitable[str]: ...


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


class SessionLedger:
    """Mutable accounting state for one single-actor session.

    Args:
        classifier: Gateway used to pick a tier in auto mode
        responder: Gateway that produces replies
        initial_tokens: Starting token grant
        initial_biodiversity: Starting biodiversity score (0-100)
        tier: Starting compute tier
        auto_mode: Whether tiers are picked per request by the classifier
    """

    def __init__(
        self,
        classifier: Classifier,
        responder: Responder,
        initial_tokens: int = INITIAL_TOKEN_GRANT,
        initial_biodiversity: float = INITIAL_BIODIVERSITY_SCORE,
        tier: ComputeTier = ComputeTier.MEDIUM,
        auto_mode: bool = True,
    ):
        if initial_tokens < 0:
            raise ValueError("initial_tokens must be >= 0")

        self._classifier = classifier
        self._responder = responder

        self.tokens_remaining = initial_tokens
        self.total_donated = 0.0
        self.active_tier = tier
        self.auto_mode = auto_mode
        self.metrics = EcologicalMetrics(
            biodiversity_impact_score=_clamp(initial_biodiversity)
        )
        self.session_started = False
        self.pending_initial_request: Optional[str] = None
        self.state = ExchangeState.IDLE

        self._history: List[Message] = []
        self._in_flight = False

    @property
    def history(self) -> Tuple[Message, ...]:
        """Conversation history, oldest first."""
        return tuple(self._history)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start_session(self, tier: ComputeTier, initial_request: Optional[str] = None) -> None:
        """Start the session with a tier and an optional onboarding request."""
        self.active_tier = tier
        self.session_started = True
        if initial_request and initial_request.strip():
            self.pending_initial_request = initial_request.strip()

    def take_pending_request(self) -> Optional[str]:
        """Extract the pending initial request and clear it in one step."""
        request, self.pending_initial_request = self.pending_initial_request, None
        return request

    async def dispatch_pending(self) -> Optional[ExchangeResult]:
        """Submit the onboarding request, at most once.

        Only fires on an empty history with nothing in flight. The request
        is replayed under the tier chosen at session start, without
        classification.
        """
        if self.pending_initial_request is None or self._history or self._in_flight:
            return None
        request = self.take_pending_request()
        return await self.submit_exchange(request, replay=True)

    async def submit_exchange(self, text: str, replay: bool = False) -> Optional[ExchangeResult]:
        """Run one request/response exchange and charge it to the ledger.

        Rejected submissions (empty text, no tokens left, or another
        exchange in flight) are no-ops and return None. Gateway failures
        never escape: a failed generation appends an error message and
        charges nothing.

        Args:
            text: Request text
            replay: Skip classification and use the active tier

        Returns:
            ExchangeResult, or None if the submission was rejected
        """
        if not text or not text.strip():
            return None
        if self.tokens_remaining <= 0:
            logger.info("Exchange rejected: token budget exhausted")
            return None
        if self._in_flight:
            logger.debug("Exchange rejected: another exchange is in flight")
            return None

        self._in_flight = True
        self.pending_initial_request = None
        try:
            return await self._run_exchange(text, replay)
        finally:
            self._in_flight = False
            self.state = ExchangeState.IDLE

    async def _run_exchange(self, text: str, replay: bool) -> ExchangeResult:
        tier = self.active_tier
        if self.auto_mode and not replay:
            self.state = ExchangeState.CLASSIFYING
            tier = await self._classify(text)

        user_message = Message(
            role=Role.USER,
            content=text,
            timestamp=datetime.now(),
            tier_used=tier
        )
        request_tokens = estimate_token_cost(text, tier)

        self.state = ExchangeState.GENERATING
        history = self.history
        try:
            reply = await self._responder.generate(history, text, tier)
        except Exception as e:
            logger.error("Generation failed under %s tier: %s", tier.value, e)
            self._history.extend([
                user_message,
                Message(
                    role=Role.MODEL,
                    content=SERVICE_UNAVAILABLE_NOTICE,
                    timestamp=datetime.now(),
                    tier_used=tier
                ),
            ])
            self.state = ExchangeState.FAILED
            return ExchangeResult(
                status=ExchangeState.FAILED,
                tier=tier,
                cost=ExchangeCost(request_tokens=request_tokens, response_tokens=0)
            )

        cost = ExchangeCost(
            request_tokens=request_tokens,
            response_tokens=estimate_token_cost(reply, tier)
        )
        model_message = Message(
            role=Role.MODEL,
            content=reply,
            timestamp=datetime.now(),
            tier_used=tier
        )
        self._commit(cost, tier, user_message, model_message)
        self.state = ExchangeState.COMPLETED
        logger.info(
            "Exchange completed under %s tier: %d tokens charged, %d remaining",
            tier.value, cost.total_tokens, self.tokens_remaining
        )
        return ExchangeResult(
            status=ExchangeState.COMPLETED,
            tier=tier,
            cost=cost,
            reply=reply
        )

    async def _classify(self, text: str) -> ComputeTier:
        """Pick a tier for the request; classification never blocks an exchange."""
        try:
            tier = await self._classifier.classify(text)
        except Exception as e:
            logger.warning(
                "Classification failed, keeping %s tier: %s", self.active_tier.value, e
            )
            return self.active_tier
        self.active_tier = tier
        return tier

    def _commit(
        self,
        cost: ExchangeCost,
        tier: ComputeTier,
        user_message: Message,
        model_message: Message
    ) -> None:
        """Apply a completed exchange. Nothing here can suspend or fail halfway."""
        multiplier = float(tier_of(tier).multiplier)
        total = cost.total_tokens
        metrics = self.metrics

        self._history.extend([user_message, model_message])
        self.tokens_remaining = max(0, self.tokens_remaining - total)
        self.metrics = replace(
            metrics,
            tokens_used=metrics.tokens_used + total,
            financial_benefit=metrics.financial_benefit + PRODUCTIVITY_VALUE_PER_REQUEST * multiplier,
            biodiversity_impact_score=_clamp(
                metrics.biodiversity_impact_score - total * BIODIVERSITY_DECAY_PER_TOKEN * multiplier
            )
        )

    def replenish(self, amount: int, price_per_token: float = TOKEN_PRICE_USD) -> bool:
        """Add tokens and record the matching donation.

        Returns:
            False if amount is not positive (nothing changes)
        """
        if amount <= 0:
            return False
        self.tokens_remaining += amount
        self.total_donated += donation_for(amount, price_per_token)
        logger.info("Replenished %d tokens, total donated %.2f", amount, self.total_donated)
        return True

    def set_tier(self, tier: ComputeTier) -> bool:
        """Select a tier manually. Rejected while auto mode is on."""
        if self.auto_mode:
            return False
        self.active_tier = tier
        return True

    def toggle_auto_mode(self) -> bool:
        """Flip auto mode and return the new value."""
        self.auto_mode = not self.auto_mode
        return self.auto_mode

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view of the ledger for presentation layers."""
        metrics = self.metrics
        economics = tier_of(self.active_tier)
        return {
            "tokens_remaining": self.tokens_remaining,
            "total_donated": self.total_donated,
            "active_tier": self.active_tier.value,
            "tier_label": economics.label,
            "auto_mode": self.auto_mode,
            "session_started": self.session_started,
            "messages": len(self._history),
            "metrics": {
                "tokens_used": metrics.tokens_used,
                "energy_consumed_wh": metrics.energy_consumed_wh,
                "water_used_liters": metrics.water_used_liters,
                "biodiversity_impact_score": metrics.biodiversity_impact_score,
                "financial_benefit": metrics.financial_benefit,
                "cooling_reserve_percent": metrics.cooling_reserve_percent,
            },
        }
