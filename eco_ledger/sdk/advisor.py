"""
Business-case advisor.

Asks the external service for an eco-efficiency audit of a business
proposal and validates the structured report it returns. Field names
follow the report contract consumed by rendering layers.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from .gateways import Gateway

logger = logging.getLogger(__name__)

ADVISOR_PROMPT = """As an AI Eco-Efficiency Auditor and Sentinel, evaluate this business proposal: "{description}".
Your goal is to define the "Eco-Efficient Choice": the intersection where ecological sustainability meets economic growth.

AUDIT REQUIREMENTS:
1. CHALLENGE AI BIAS: Actively look for areas where the AI solution might be overkill or less efficient than non-AI alternatives.
2. ECONOMIC LOSS ASSESSMENT: Explicitly identify potential economic losses (implementation failure, technical debt, or resource waste).
3. PLANETARY IMPACT: Focus on preserving biodiversity and water security.

Respond with a single JSON object with exactly these fields:
metrics {{planetScore: number, profitScore: number, waterImpact: string, roiFactor: string}},
temporalBreakeven {{value: number, unit: string, description: string}},
socialImpact {{score: number, description: string, pillars: [string]}},
roadmap [{{stage, timeline, action, gains, losses}}: strings],
particulars [{{category, variable, value, impact}}: strings],
verdict: string."""


def _require(data: Any, key: str, path: str) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be an object")
    if key not in data:
        raise ValueError(f"Missing required '{key}' in {path}")
    return data[key]


def _number(data: Dict, key: str, path: str) -> float:
    value = _require(data, key, path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _text(data: Dict, key: str, path: str) -> str:
    value = _require(data, key, path)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value


def _items(data: Dict, key: str, path: str) -> List[Any]:
    value = _require(data, key, path)
    if not isinstance(value, list):
        raise ValueError(f"'{key}' in {path} must be a list")
    return value


@dataclass(frozen=True)
class ReportMetrics:
    planet_score: float
    profit_score: float
    water_impact: str
    roi_factor: str


@dataclass(frozen=True)
class Breakeven:
    value: float
    unit: str
    description: str


@dataclass(frozen=True)
class SocialImpact:
    score: float
    description: str
    pillars: List[str]


@dataclass(frozen=True)
class RoadmapStage:
    stage: str
    timeline: str
    action: str
    gains: str
    losses: str


@dataclass(frozen=True)
class Particular:
    category: str
    variable: str
    value: str
    impact: str


@dataclass(frozen=True)
class BusinessCaseReport:
    """Eco-efficiency audit of a business proposal."""
    metrics: ReportMetrics
    temporal_breakeven: Breakeven
    social_impact: SocialImpact
    roadmap: List[RoadmapStage]
    particulars: List[Particular]
    verdict: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusinessCaseReport":
        """Validate a raw report.

        Raises:
            ValueError: If any required field is missing or mistyped
        """
        metrics = _require(data, 'metrics', "report")
        breakeven = _require(data, 'temporalBreakeven', "report")
        social = _require(data, 'socialImpact', "report")

        pillars = _items(social, 'pillars', "socialImpact")
        if not all(isinstance(p, str) for p in pillars):
            raise ValueError("'pillars' in socialImpact must be a list of strings")

        roadmap = [
            RoadmapStage(**{
                key: _text(stage, key, f"roadmap[{i}]")
                for key in ('stage', 'timeline', 'action', 'gains', 'losses')
            })
            for i, stage in enumerate(_items(data, 'roadmap', "report"))
        ]
        particulars = [
            Particular(**{
                key: _text(item, key, f"particulars[{i}]")
                for key in ('category', 'variable', 'value', 'impact')
            })
            for i, item in enumerate(_items(data, 'particulars', "report"))
        ]

        return cls(
            metrics=ReportMetrics(
                planet_score=_number(metrics, 'planetScore', "metrics"),
                profit_score=_number(metrics, 'profitScore', "metrics"),
                water_impact=_text(metrics, 'waterImpact', "metrics"),
                roi_factor=_text(metrics, 'roiFactor', "metrics")
            ),
            temporal_breakeven=Breakeven(
                value=_number(breakeven, 'value', "temporalBreakeven"),
                unit=_text(breakeven, 'unit', "temporalBreakeven"),
                description=_text(breakeven, 'description', "temporalBreakeven")
            ),
            social_impact=SocialImpact(
                score=_number(social, 'score', "socialImpact"),
                description=_text(social, 'description', "socialImpact"),
                pillars=list(pillars)
            ),
            roadmap=roadmap,
            particulars=particulars,
            verdict=_text(data, 'verdict', "report")
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the field names rendering layers key on."""
        return {
            "metrics": {
                "planetScore": self.metrics.planet_score,
                "profitScore": self.metrics.profit_score,
                "waterImpact": self.metrics.water_impact,
                "roiFactor": self.metrics.roi_factor,
            },
            "temporalBreakeven": {
                "value": self.temporal_breakeven.value,
                "unit": self.temporal_breakeven.unit,
                "description": self.temporal_breakeven.description,
            },
            "socialImpact": {
                "score": self.social_impact.score,
                "description": self.social_impact.description,
                "pillars": list(self.social_impact.pillars),
            },
            "roadmap": [asdict(stage) for stage in self.roadmap],
            "particulars": [asdict(item) for item in self.particulars],
            "verdict": self.verdict,
        }


class AdvisorGateway(Gateway):
    """Requests eco-efficiency audits of business proposals."""

    async def analyze(self, description: str) -> BusinessCaseReport:
        """Audit a business proposal.

        Args:
            description: Free-text business description

        Returns:
            Validated BusinessCaseReport

        Raises:
            ValueError: If description is empty or the report is malformed
            OpenAI API errors: Propagated once retries are exhausted
        """
        if not description or not description.strip():
            raise ValueError("description is required and cannot be empty")

        async def attempt() -> str:
            return await self._complete(
                self.models.advisor,
                [{"role": "user", "content": ADVISOR_PROMPT.format(description=description)}],
                response_format={"type": "json_object"}
            )

        raw = await self._with_retry(attempt)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Advisor returned invalid JSON: {e}")
        logger.debug("Received business-case report for %d-char description", len(description))
        return BusinessCaseReport.from_dict(data)
