"""
Tests for the session ledger.

Covers charging, failure handling, single-flight, auto classification,
and the one-shot onboarding request.
"""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from eco_ledger.core.ledger import SERVICE_UNAVAILABLE_NOTICE, SessionLedger
from eco_ledger.core.models import ExchangeState, Role
from eco_ledger.core.tiers import ComputeTier


class ServiceError(Exception):
    def __init__(self, status_code: int = 503):
        super().__init__("Service unavailable")
        self.status_code = status_code


def create_classifier(tier=ComputeTier.MEDIUM, error=None):
    classifier = Mock()
    classifier.classify = AsyncMock(return_value=tier, side_effect=error)
    return classifier


def create_responder(reply="x" * 200, error=None):
    responder = Mock()
    responder.generate = AsyncMock(return_value=reply, side_effect=error)
    return responder


def create_ledger(classifier=None, responder=None, **kwargs):
    return SessionLedger(
        classifier=classifier or create_classifier(),
        responder=responder or create_responder(),
        **kwargs
    )


class TestInitialState:
    """Test a fresh ledger."""

    def test_defaults(self):
        ledger = create_ledger()

        assert ledger.tokens_remaining == 2500
        assert ledger.total_donated == 0
        assert ledger.history == ()
        assert ledger.active_tier == ComputeTier.MEDIUM
        assert ledger.auto_mode is True
        assert ledger.state == ExchangeState.IDLE
        assert ledger.metrics.tokens_used == 0
        assert ledger.metrics.biodiversity_impact_score == 92
        assert ledger.metrics.financial_benefit == 0
        assert ledger.metrics.water_used_liters == 0
        assert ledger.metrics.energy_consumed_wh == 0

    def test_biodiversity_clamped_to_range(self):
        assert create_ledger(initial_biodiversity=150).metrics.biodiversity_impact_score == 100
        assert create_ledger(initial_biodiversity=-5).metrics.biodiversity_impact_score == 0

    def test_negative_grant_raises_error(self):
        with pytest.raises(ValueError, match="initial_tokens"):
            create_ledger(initial_tokens=-1)


class TestSubmitExchange:
    """Test the exchange flow."""

    @pytest.mark.asyncio
    async def test_end_to_end_medium(self):
        """40-char request and 200-char reply under MEDIUM cost 60 tokens."""
        ledger = create_ledger(auto_mode=False)

        result = await ledger.submit_exchange("x" * 40)

        assert result.status == ExchangeState.COMPLETED
        assert result.cost.request_tokens == 10
        assert result.cost.response_tokens == 50
        assert result.charged_tokens == 60
        assert ledger.tokens_remaining == 2440
        assert ledger.metrics.tokens_used == 60
        assert ledger.metrics.biodiversity_impact_score == pytest.approx(91.994)
        assert ledger.metrics.financial_benefit == pytest.approx(2.50)
        assert ledger.metrics.water_used_liters == pytest.approx(0.03)
        assert ledger.metrics.energy_consumed_wh == pytest.approx(0.12)
        assert len(ledger.history) == 2
        assert ledger.state == ExchangeState.IDLE

    @pytest.mark.asyncio
    async def test_history_pair(self):
        responder = create_responder(reply="REPLY")
        ledger = create_ledger(responder=responder, auto_mode=False)

        await ledger.submit_exchange("Hello")

        user, model = ledger.history
        assert user.role == Role.USER
        assert user.content == "Hello"
        assert model.role == Role.MODEL
        assert model.content == "REPLY"
        assert model.tier_used == ComputeTier.MEDIUM
        assert user.timestamp <= model.timestamp

    @pytest.mark.asyncio
    async def test_responder_receives_prior_history(self):
        responder = create_responder(reply="first reply")
        ledger = create_ledger(responder=responder, auto_mode=False)

        await ledger.submit_exchange("first")
        await ledger.submit_exchange("second")

        history, prompt, tier = responder.generate.await_args_list[1].args
        assert [m.content for m in history] == ["first", "first reply"]
        assert prompt == "second"
        assert tier == ComputeTier.MEDIUM

    @pytest.mark.asyncio
    async def test_heavy_tier_charges_multiplier(self):
        ledger = create_ledger(tier=ComputeTier.HEAVY, auto_mode=False)

        result = await ledger.submit_exchange("x" * 40)

        # ceil(10 * 2.8) + ceil(50 * 2.8) = 28 + 140
        assert result.charged_tokens == 168
        assert ledger.tokens_remaining == 2500 - 168
        assert ledger.metrics.financial_benefit == pytest.approx(2.50 * 2.8)
        assert ledger.metrics.biodiversity_impact_score == pytest.approx(92 - 168 * 0.0001 * 2.8)

    @pytest.mark.asyncio
    async def test_token_floor(self):
        """Cost beyond the balance drives tokens to 0, never below."""
        ledger = create_ledger(initial_tokens=20, auto_mode=False)

        result = await ledger.submit_exchange("x" * 40)

        assert result.status == ExchangeState.COMPLETED
        assert ledger.tokens_remaining == 0
        assert ledger.metrics.tokens_used == 60

    @pytest.mark.asyncio
    async def test_biodiversity_clamped_at_zero(self):
        responder = create_responder(reply="x" * 40000)
        ledger = create_ledger(
            responder=responder,
            tier=ComputeTier.HEAVY,
            auto_mode=False,
            initial_biodiversity=1.0
        )

        await ledger.submit_exchange("x" * 40)

        assert ledger.metrics.biodiversity_impact_score == 0

    @pytest.mark.asyncio
    async def test_biodiversity_never_increases(self):
        ledger = create_ledger(auto_mode=False)
        scores = [ledger.metrics.biodiversity_impact_score]

        for _ in range(5):
            await ledger.submit_exchange("x" * 40)
            scores.append(ledger.metrics.biodiversity_impact_score)

        assert scores == sorted(scores, reverse=True)
        assert all(0 <= s <= 100 for s in scores)

    @pytest.mark.asyncio
    async def test_empty_request_is_noop(self):
        responder = create_responder()
        ledger = create_ledger(responder=responder)

        assert await ledger.submit_exchange("") is None
        assert await ledger.submit_exchange("   ") is None

        assert ledger.history == ()
        responder.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_tokens_is_noop(self):
        responder = create_responder()
        ledger = create_ledger(responder=responder, initial_tokens=0)

        assert await ledger.submit_exchange("Hello") is None

        assert ledger.history == ()
        responder.generate.assert_not_awaited()


class TestFailedExchange:
    """Test generation failure handling."""

    @pytest.mark.asyncio
    async def test_failure_charges_nothing(self):
        responder = create_responder(error=ServiceError(503))
        ledger = create_ledger(responder=responder, auto_mode=False)
        before = ledger.metrics

        result = await ledger.submit_exchange("Hello")

        assert result.status == ExchangeState.FAILED
        assert result.charged_tokens == 0
        assert ledger.tokens_remaining == 2500
        assert ledger.metrics == before
        assert ledger.state == ExchangeState.IDLE

    @pytest.mark.asyncio
    async def test_failure_appends_user_and_error(self):
        responder = create_responder(error=RuntimeError("API Error"))
        ledger = create_ledger(responder=responder, auto_mode=False)

        await ledger.submit_exchange("Hello")

        user, error = ledger.history
        assert user.role == Role.USER
        assert user.content == "Hello"
        assert error.role == Role.MODEL
        assert error.content == SERVICE_UNAVAILABLE_NOTICE

    @pytest.mark.asyncio
    async def test_session_usable_after_failure(self):
        responder = create_responder()
        responder.generate.side_effect = [ServiceError(), "x" * 200]
        ledger = create_ledger(responder=responder, auto_mode=False)

        await ledger.submit_exchange("x" * 40)
        result = await ledger.submit_exchange("x" * 40)

        assert result.status == ExchangeState.COMPLETED
        assert len(ledger.history) == 4
        assert ledger.tokens_remaining == 2440


class TestSingleFlight:
    """Test that only one exchange runs at a time."""

    @pytest.mark.asyncio
    async def test_second_submission_is_noop(self):
        release = asyncio.Event()

        async def slow_generate(history, prompt, tier):
            await release.wait()
            return "done"

        responder = Mock()
        responder.generate = AsyncMock(side_effect=slow_generate)
        ledger = create_ledger(responder=responder, auto_mode=False)

        first = asyncio.ensure_future(ledger.submit_exchange("first"))
        await asyncio.sleep(0)
        assert ledger.in_flight
        assert ledger.state == ExchangeState.GENERATING

        second = await ledger.submit_exchange("second")
        assert second is None
        assert ledger.history == ()

        release.set()
        result = await first

        assert result.status == ExchangeState.COMPLETED
        assert [m.content for m in ledger.history] == ["first", "done"]
        assert responder.generate.await_count == 1
        assert not ledger.in_flight


class TestAutoClassification:
    """Test auto mode tier selection."""

    @pytest.mark.asyncio
    async def test_classified_tier_used_and_committed(self):
        classifier = create_classifier(tier=ComputeTier.LOW)
        responder = create_responder()
        ledger = create_ledger(classifier=classifier, responder=responder)

        result = await ledger.submit_exchange("Define entropy")

        classifier.classify.assert_awaited_once_with("Define entropy")
        assert result.tier == ComputeTier.LOW
        assert ledger.active_tier == ComputeTier.LOW
        assert responder.generate.await_args.args[2] == ComputeTier.LOW

    @pytest.mark.asyncio
    async def test_classifier_failure_falls_back(self):
        """Classification failure keeps the prior tier and still completes."""
        classifier = create_classifier(error=ServiceError(503))
        ledger = create_ledger(classifier=classifier, tier=ComputeTier.HEAVY)

        result = await ledger.submit_exchange("x" * 40)

        assert result.status == ExchangeState.COMPLETED
        assert result.tier == ComputeTier.HEAVY
        assert ledger.active_tier == ComputeTier.HEAVY
        assert len(ledger.history) == 2

    @pytest.mark.asyncio
    async def test_manual_mode_skips_classifier(self):
        classifier = create_classifier(tier=ComputeTier.HEAVY)
        ledger = create_ledger(classifier=classifier, auto_mode=False)

        result = await ledger.submit_exchange("Hello")

        classifier.classify.assert_not_awaited()
        assert result.tier == ComputeTier.MEDIUM

    @pytest.mark.asyncio
    async def test_replay_skips_classifier(self):
        classifier = create_classifier(tier=ComputeTier.HEAVY)
        ledger = create_ledger(classifier=classifier)

        result = await ledger.submit_exchange("Hello", replay=True)

        classifier.classify.assert_not_awaited()
        assert result.tier == ComputeTier.MEDIUM


class TestPendingRequest:
    """Test the one-shot onboarding request."""

    def test_start_session_stores_request(self):
        ledger = create_ledger()

        ledger.start_session(ComputeTier.LOW, "Summarize this")

        assert ledger.session_started
        assert ledger.active_tier == ComputeTier.LOW
        assert ledger.pending_initial_request == "Summarize this"

    def test_start_session_without_request(self):
        ledger = create_ledger()

        ledger.start_session(ComputeTier.HEAVY)

        assert ledger.pending_initial_request is None

    def test_take_clears(self):
        ledger = create_ledger()
        ledger.start_session(ComputeTier.LOW, "Summarize this")

        assert ledger.take_pending_request() == "Summarize this"
        assert ledger.pending_initial_request is None
        assert ledger.take_pending_request() is None

    @pytest.mark.asyncio
    async def test_dispatch_pending_runs_once(self):
        classifier = create_classifier(tier=ComputeTier.HEAVY)
        responder = create_responder()
        ledger = create_ledger(classifier=classifier, responder=responder)
        ledger.start_session(ComputeTier.LOW, "Summarize this")

        result = await ledger.dispatch_pending()
        again = await ledger.dispatch_pending()

        assert result.tier == ComputeTier.LOW
        assert again is None
        classifier.classify.assert_not_awaited()
        assert responder.generate.await_count == 1
        assert ledger.pending_initial_request is None

    @pytest.mark.asyncio
    async def test_pending_cleared_even_on_failure(self):
        responder = create_responder(error=ServiceError(500))
        ledger = create_ledger(responder=responder)
        ledger.start_session(ComputeTier.MEDIUM, "Summarize this")

        result = await ledger.dispatch_pending()

        assert result.status == ExchangeState.FAILED
        assert ledger.pending_initial_request is None

    @pytest.mark.asyncio
    async def test_submit_clears_pending(self):
        ledger = create_ledger(auto_mode=False)
        ledger.start_session(ComputeTier.MEDIUM, "Summarize this")

        await ledger.submit_exchange("Something else")

        assert ledger.pending_initial_request is None
        assert await ledger.dispatch_pending() is None


class TestLedgerControls:
    """Test replenishment, tier selection, and auto mode."""

    def test_replenish(self):
        ledger = create_ledger()

        assert ledger.replenish(5000, 0.005)

        assert ledger.tokens_remaining == 7500
        assert ledger.total_donated == pytest.approx(25.00)

    def test_replenish_non_positive_is_noop(self):
        ledger = create_ledger()

        assert not ledger.replenish(0)
        assert not ledger.replenish(-100)

        assert ledger.tokens_remaining == 2500
        assert ledger.total_donated == 0

    @pytest.mark.asyncio
    async def test_replenish_restores_exhausted_session(self):
        ledger = create_ledger(initial_tokens=0, auto_mode=False)
        assert await ledger.submit_exchange("Hello") is None

        ledger.replenish(100)

        result = await ledger.submit_exchange("Hello")
        assert result.status == ExchangeState.COMPLETED

    def test_set_tier_rejected_in_auto_mode(self):
        ledger = create_ledger()

        assert not ledger.set_tier(ComputeTier.HEAVY)
        assert ledger.active_tier == ComputeTier.MEDIUM

    def test_set_tier_after_disabling_auto(self):
        ledger = create_ledger()

        assert ledger.toggle_auto_mode() is False
        assert ledger.set_tier(ComputeTier.HEAVY)
        assert ledger.active_tier == ComputeTier.HEAVY

    def test_toggle_auto_mode(self):
        ledger = create_ledger(auto_mode=False)

        assert ledger.toggle_auto_mode() is True
        assert ledger.auto_mode is True

    @pytest.mark.asyncio
    async def test_snapshot(self):
        ledger = create_ledger(auto_mode=False)
        await ledger.submit_exchange("x" * 40)

        snapshot = ledger.snapshot()

        assert snapshot["tokens_remaining"] == 2440
        assert snapshot["active_tier"] == "MEDIUM"
        assert snapshot["tier_label"] == "Balanced"
        assert snapshot["messages"] == 2
        assert snapshot["metrics"]["tokens_used"] == 60
        assert snapshot["metrics"]["water_used_liters"] == pytest.approx(0.03)
        assert snapshot["metrics"]["cooling_reserve_percent"] == pytest.approx(99.7)
