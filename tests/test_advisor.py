"""
Unit tests for the business-case advisor.

Tests report validation and the structured-output contract.
"""

import copy
import json
from unittest.mock import AsyncMock, Mock

import pytest

from eco_ledger.config.loader import RetryConfig
from eco_ledger.sdk.advisor import AdvisorGateway, BusinessCaseReport

REPORT = {
    "metrics": {
        "planetScore": 72,
        "profitScore": 64.5,
        "waterImpact": "Low",
        "roiFactor": "2.1x"
    },
    "temporalBreakeven": {
        "value": 18,
        "unit": "months",
        "description": "Savings offset integration cost"
    },
    "socialImpact": {
        "score": 80,
        "description": "Local jobs retained",
        "pillars": ["Employment", "Education"]
    },
    "roadmap": [
        {
            "stage": "Pilot",
            "timeline": "Q1",
            "action": "Replace batch jobs with rules",
            "gains": "Lower energy",
            "losses": "Setup time"
        }
    ],
    "particulars": [
        {
            "category": "Water",
            "variable": "Cooling",
            "value": "0.02L/t",
            "impact": "Minimal"
        }
    ],
    "verdict": "Proceed with a non-AI baseline first."
}


def create_gateway(*contents, side_effect=None):
    client = Mock()
    responses = []
    for content in contents:
        response = Mock()
        response.choices = [Mock()]
        response.choices[0].message.content = content
        responses.append(response)
    client.chat.completions.create = AsyncMock(side_effect=side_effect or responses)
    return AdvisorGateway(client=client, retry=RetryConfig(initial_delay=0)), client


class TestBusinessCaseReport:
    """Test report parsing and serialization."""

    def test_from_dict(self):
        report = BusinessCaseReport.from_dict(REPORT)

        assert report.metrics.planet_score == 72
        assert report.metrics.profit_score == 64.5
        assert report.temporal_breakeven.value == 18
        assert report.temporal_breakeven.unit == "months"
        assert report.social_impact.pillars == ["Employment", "Education"]
        assert report.roadmap[0].stage == "Pilot"
        assert report.particulars[0].value == "0.02L/t"
        assert report.verdict.startswith("Proceed")

    def test_to_dict_keeps_field_names(self):
        report = BusinessCaseReport.from_dict(REPORT)

        data = report.to_dict()

        assert data["metrics"]["planetScore"] == 72
        assert data["temporalBreakeven"] == REPORT["temporalBreakeven"]
        assert data["socialImpact"] == REPORT["socialImpact"]
        assert data["roadmap"] == REPORT["roadmap"]
        assert data["particulars"] == REPORT["particulars"]
        assert data["verdict"] == REPORT["verdict"]

    def test_missing_section_raises_error(self):
        data = copy.deepcopy(REPORT)
        del data["socialImpact"]

        with pytest.raises(ValueError, match="Missing required 'socialImpact'"):
            BusinessCaseReport.from_dict(data)

    def test_missing_roadmap_field_raises_error(self):
        data = copy.deepcopy(REPORT)
        del data["roadmap"][0]["losses"]

        with pytest.raises(ValueError, match=r"'losses' in roadmap\[0\]"):
            BusinessCaseReport.from_dict(data)

    def test_non_numeric_score_raises_error(self):
        data = copy.deepcopy(REPORT)
        data["metrics"]["planetScore"] = "high"

        with pytest.raises(ValueError, match="planetScore"):
            BusinessCaseReport.from_dict(data)

    def test_non_string_pillar_raises_error(self):
        data = copy.deepcopy(REPORT)
        data["socialImpact"]["pillars"] = ["Jobs", 3]

        with pytest.raises(ValueError, match="pillars"):
            BusinessCaseReport.from_dict(data)


class TestAdvisorGateway:
    """Test AdvisorGateway."""

    @pytest.mark.asyncio
    async def test_analyze(self):
        gateway, client = create_gateway(json.dumps(REPORT))

        report = await gateway.analyze("Automate invoice triage with an LLM")

        assert report.verdict == REPORT["verdict"]
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == gateway.models.advisor
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Automate invoice triage" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_invalid_json_raises_error(self):
        gateway, _ = create_gateway("not json")

        with pytest.raises(ValueError, match="invalid JSON"):
            await gateway.analyze("A proposal")

    @pytest.mark.asyncio
    async def test_empty_description_raises_error(self):
        gateway, client = create_gateway()

        with pytest.raises(ValueError, match="description is required"):
            await gateway.analyze("  ")

        client.chat.completions.create.assert_not_awaited()
