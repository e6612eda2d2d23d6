"""
Configuration management and loading.

Handles session defaults, retry policy, and model selection.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from eco_ledger.core.conversion import (
    INITIAL_BIODIVERSITY_SCORE,
    INITIAL_TOKEN_GRANT,
    TOKEN_PRICE_USD,
)
from eco_ledger.core.retry import DEFAULT_INITIAL_DELAY, DEFAULT_MAX_RETRIES
from eco_ledger.core.tiers import ComputeTier


LIGHT_MODEL = "gemini-3-flash-preview"
HEAVY_MODEL = "gemini-3-pro-preview"
# OpenAI-compatible endpoint serving the default models
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


@dataclass(frozen=True)
class SessionDefaults:
    """Starting state of a new session ledger."""
    initial_tokens: int = INITIAL_TOKEN_GRANT
    initial_biodiversity: float = INITIAL_BIODIVERSITY_SCORE
    token_price_usd: float = TOKEN_PRICE_USD
    auto_mode: bool = True
    default_tier: ComputeTier = ComputeTier.MEDIUM

    def __post_init__(self):
        """Validate session values."""
        if self.initial_tokens < 0:
            raise ValueError("initial_tokens must be >= 0")
        if not 0 <= self.initial_biodiversity <= 100:
            raise ValueError("initial_biodiversity must be between 0 and 100")
        if self.token_price_usd <= 0:
            raise ValueError("token_price_usd must be > 0")


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for external calls."""
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY

    def __post_init__(self):
        """Validate retry values."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")


@dataclass(frozen=True)
class TierModelConfig:
    """Model and sampling temperature used to answer under one tier."""
    model: str
    temperature: float

    def __post_init__(self):
        """Validate tier model values."""
        if not self.model or not self.model.strip():
            raise ValueError("model is required and cannot be empty")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")


def _default_tier_models() -> Dict[ComputeTier, TierModelConfig]:
    return {
        ComputeTier.LOW: TierModelConfig(model=LIGHT_MODEL, temperature=0.6),
        ComputeTier.MEDIUM: TierModelConfig(model=LIGHT_MODEL, temperature=0.6),
        ComputeTier.HEAVY: TierModelConfig(model=HEAVY_MODEL, temperature=0.9),
    }


@dataclass(frozen=True)
class ModelConfig:
    """Models used by the gateways."""
    base_url: Optional[str] = DEFAULT_BASE_URL
    classifier: str = LIGHT_MODEL
    advisor: str = HEAVY_MODEL
    tiers: Dict[ComputeTier, TierModelConfig] = field(default_factory=_default_tier_models)

    def for_tier(self, tier: ComputeTier) -> TierModelConfig:
        """Get the model configuration for a tier."""
        return self.tiers[tier]


@dataclass(frozen=True)
class SessionConfig:
    """Complete session configuration."""
    session: SessionDefaults = field(default_factory=SessionDefaults)
    retry: RetryConfig = field(default_factory=RetryConfig)
    models: ModelConfig = field(default_factory=ModelConfig)


DEFAULT_CONFIG = SessionConfig()


def load_session_config(path: Optional[str] = None) -> SessionConfig:
    """Load and validate session configuration from a YAML file.

    Every section is optional and falls back to the built-in defaults,
    but unknown keys are rejected so typos never pass silently.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated SessionConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return DEFAULT_CONFIG

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Session config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        return DEFAULT_CONFIG
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    _check_keys(raw_config, {'session', 'retry', 'models'}, "configuration")

    return SessionConfig(
        session=_parse_session(_section(raw_config, 'session')),
        retry=_parse_retry(_section(raw_config, 'retry')),
        models=_parse_models(_section(raw_config, 'models'))
    )


def _section(data: Dict, name: str, path: str = "") -> Dict:
    """Get an optional sub-dictionary, defaulting to empty."""
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{path}{name}' must be a dictionary")
    return value


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _number(data: Dict, key: str, path: str, default: Any) -> Any:
    if key not in data:
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return value


def _parse_session(data: Dict) -> SessionDefaults:
    """Parse and validate the session section."""
    defaults = SessionDefaults()
    _check_keys(
        data,
        {'initial_tokens', 'initial_biodiversity', 'token_price_usd', 'auto_mode', 'default_tier'},
        "session"
    )

    initial_tokens = _number(data, 'initial_tokens', "session", defaults.initial_tokens)
    if not isinstance(initial_tokens, int):
        raise ValueError("'initial_tokens' in session must be an integer")

    auto_mode = data.get('auto_mode', defaults.auto_mode)
    if not isinstance(auto_mode, bool):
        raise ValueError("'auto_mode' in session must be true or false")

    default_tier = defaults.default_tier
    if 'default_tier' in data:
        default_tier = ComputeTier.parse(data['default_tier'])

    return SessionDefaults(
        initial_tokens=initial_tokens,
        initial_biodiversity=float(
            _number(data, 'initial_biodiversity', "session", defaults.initial_biodiversity)
        ),
        token_price_usd=float(
            _number(data, 'token_price_usd', "session", defaults.token_price_usd)
        ),
        auto_mode=auto_mode,
        default_tier=default_tier
    )


def _parse_retry(data: Dict) -> RetryConfig:
    """Parse and validate the retry section."""
    defaults = RetryConfig()
    _check_keys(data, {'max_retries', 'initial_delay'}, "retry")

    max_retries = _number(data, 'max_retries', "retry", defaults.max_retries)
    if not isinstance(max_retries, int):
        raise ValueError("'max_retries' in retry must be an integer")

    return RetryConfig(
        max_retries=max_retries,
        initial_delay=float(_number(data, 'initial_delay', "retry", defaults.initial_delay))
    )


def _parse_models(data: Dict) -> ModelConfig:
    """Parse and validate the models section."""
    defaults = ModelConfig()
    _check_keys(data, {'base_url', 'classifier', 'advisor', 'tiers'}, "models")

    for key in ('base_url', 'classifier', 'advisor'):
        if key in data and (not isinstance(data[key], str) or not data[key].strip()):
            raise ValueError(f"'{key}' in models must be a non-empty string")

    tiers = dict(defaults.tiers)
    for tier_name, tier_data in _section(data, 'tiers', "models.").items():
        tier = ComputeTier.parse(tier_name)
        path = f"models.tiers.{tier_name}"
        if not isinstance(tier_data, dict):
            raise ValueError(f"'{path}' must be a dictionary")
        _check_keys(tier_data, {'model', 'temperature'}, path)

        model = tier_data.get('model', tiers[tier].model)
        if not isinstance(model, str):
            raise ValueError(f"'model' in {path} must be a string")
        tiers[tier] = TierModelConfig(
            model=model,
            temperature=float(_number(tier_data, 'temperature', path, tiers[tier].temperature))
        )

    return ModelConfig(
        base_url=data.get('base_url', defaults.base_url),
        classifier=data.get('classifier', defaults.classifier),
        advisor=data.get('advisor', defaults.advisor),
        tiers=tiers
    )
