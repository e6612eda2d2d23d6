"""
Gateways to the external generative-AI service.

Classifies requests into compute tiers and generates replies. Every call
goes through the bounded retry policy; failures that survive it are
propagated unchanged.
"""

import logging
from typing import Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from ..config.loader import DEFAULT_CONFIG, ModelConfig, RetryConfig
from ..core.models import Message, Role
from ..core.retry import with_retry
from ..core.tiers import ComputeTier

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response generated."

CLASSIFIER_PROMPT = """Analyze the user query and classify it into one of three compute intensity modes based on required reasoning depth:
- LOW: Simple tasks, definitions, proofreading, translations.
- MEDIUM: Summaries, creative writing, brainstorming, common knowledge.
- HEAVY: Complex coding, advanced math, scientific reasoning, logic puzzles.

User Query: "{prompt}"

Return only the word: LOW, MEDIUM, or HEAVY."""

TIER_INSTRUCTIONS = {
    ComputeTier.HEAVY: "You are in HEAVY compute mode. Provide deeply reasoned, thorough, and precise answers.",
    ComputeTier.MEDIUM: "You are in MEDIUM compute mode. Provide helpful, balanced responses.",
    ComputeTier.LOW: "You are in LOW compute mode. Be as brief and efficient as possible, using minimal tokens.",
}

SYSTEM_INSTRUCTION = """You are an AI optimized for permacomputing, acting as a Nature's Sentinel (inspired by the peacock, an indicator of environmental health). {tier_instruction}
FORMATTING RULES:
1. NO MARKDOWN. Do not use symbols like #, *, ** or - for lists or headers.
2. Use double line breaks to separate sections.
3. Use ALL CAPS for headers.
4. Keep responses concise but human-readable. Output plain text."""


def parse_tier(raw: Optional[str]) -> ComputeTier:
    """Parse classifier output into a tier.

    HEAVY is matched before LOW; anything unrecognised degrades to MEDIUM
    instead of raising.
    """
    text = (raw or "").strip().upper()
    if "HEAVY" in text:
        return ComputeTier.HEAVY
    if "LOW" in text:
        return ComputeTier.LOW
    return ComputeTier.MEDIUM


def to_chat_messages(history: Sequence[Message], prompt: str, tier: ComputeTier) -> List[Dict[str, str]]:
    """Build the chat payload: system instruction, history, then the new prompt."""
    messages = [{
        "role": "system",
        "content": SYSTEM_INSTRUCTION.format(tier_instruction=TIER_INSTRUCTIONS[tier])
    }]
    for message in history:
        role = "assistant" if message.role is Role.MODEL else "user"
        messages.append({"role": role, "content": message.content})
    messages.append({"role": "user", "content": prompt})
    return messages


class Gateway:
    """Shared client and retry settings for gateways."""

    def __init__(
        self,
        models: ModelConfig = DEFAULT_CONFIG.models,
        retry: RetryConfig = DEFAULT_CONFIG.retry,
        client: Optional[AsyncOpenAI] = None
    ):
        self.models = models
        self.retry = retry
        # Retries belong to the retry policy alone
        self.client = client or AsyncOpenAI(base_url=models.base_url, max_retries=0)

    async def _with_retry(self, operation):
        return await with_retry(
            operation,
            max_retries=self.retry.max_retries,
            initial_delay=self.retry.initial_delay
        )

    async def _complete(self, model: str, messages: List[Dict[str, str]], **kwargs) -> str:
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            **kwargs
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class ClassifierGateway(Gateway):
    """Classifies free-text requests into compute tiers."""

    async def classify(self, text: str) -> ComputeTier:
        """Classify a request.

        Raises:
            OpenAI API errors: Propagated once retries are exhausted
        """
        async def attempt() -> ComputeTier:
            raw = await self._complete(
                self.models.classifier,
                [{"role": "user", "content": CLASSIFIER_PROMPT.format(prompt=text)}]
            )
            return parse_tier(raw)

        tier = await self._with_retry(attempt)
        logger.debug("Classified request as %s", tier.value)
        return tier


class ResponseGateway(Gateway):
    """Generates replies under a compute tier."""

    async def generate(self, history: Sequence[Message], prompt: str, tier: ComputeTier) -> str:
        """Generate a reply to `prompt` in the context of `history`.

        The tier picks the model, the reasoning-depth instruction, and the
        sampling temperature.

        Raises:
            OpenAI API errors: Propagated once retries are exhausted
        """
        tier_model = self.models.for_tier(tier)
        messages = to_chat_messages(history, prompt, tier)

        async def attempt() -> str:
            return await self._complete(
                tier_model.model,
                messages,
                temperature=tier_model.temperature
            )

        reply = await self._with_retry(attempt)
        return reply or NO_RESPONSE
