"""
Analysis configuration.

Scoring weights, safety I/O channels and the default AI-context target can be
tuned from a YAML file::

    scoring:
      weights:
        documentation: 0.25
        safety: 0.30
        complexity: 0.15
        determinism: 0.15
        testability: 0.15
    safety:
      io_channels:
        - '^%IX1\\.'
    ai_context:
      target_language: rust
    analysis:
      max_workers: 4

Unlike extraction, configuration problems fail fast with ConfigurationError.
"""

import logging
import math
import numbers
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .ai_context import TargetLanguage
from .exceptions import ConfigurationError, InvalidWeightsError

logger = logging.getLogger(__name__)


@dataclass
class ScoringWeights:
    """Relative weight of each migration-score dimension."""
    documentation: float = 0.25
    safety: float = 0.30
    complexity: float = 0.15
    determinism: float = 0.15
    testability: float = 0.15

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise InvalidWeightsError unless every weight is a non-negative number."""
        total = 0.0
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise InvalidWeightsError(
                    f"Weight '{f.name}' must be a number, got {value!r}"
                )
            if not math.isfinite(value):
                raise InvalidWeightsError(f"Weight '{f.name}' must be finite, got {value}")
            if value < 0:
                raise InvalidWeightsError(f"Weight '{f.name}' must not be negative, got {value}")
            total += value
        if total <= 0:
            raise InvalidWeightsError("At least one scoring weight must be positive")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScoringWeights":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise InvalidWeightsError(f"Scoring weights must be a mapping, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidWeightsError(
                f"Unknown scoring weight(s): {', '.join(map(str, unknown))}. "
                f"Expected: {', '.join(sorted(known))}"
            )
        return cls(**data)

    def as_dict(self) -> Dict[str, float]:
        return {f.name: float(getattr(self, f.name)) for f in fields(self)}

    def normalized(self) -> Dict[str, float]:
        """Weights scaled so that they sum to 1."""
        weights = self.as_dict()
        total = sum(weights.values())
        return {name: value / total for name, value in weights.items()}


@dataclass
class AnalysisConfig:
    """Top-level analysis settings."""
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    safety_channels: List[str] = field(default_factory=list)
    target_language: str = TargetLanguage.PYTHON.value
    max_workers: Optional[int] = None

    def __post_init__(self):
        self._channel_patterns = []
        for pattern in self.safety_channels:
            try:
                self._channel_patterns.append(re.compile(pattern, re.IGNORECASE))
            except (re.error, TypeError) as e:
                raise ConfigurationError(f"Invalid safety channel pattern {pattern!r}: {e}") from e
        self.target_language = TargetLanguage.parse(self.target_language).value
        if self.max_workers is not None and (
            isinstance(self.max_workers, bool)
            or not isinstance(self.max_workers, int)
            or self.max_workers < 1
        ):
            raise ConfigurationError(f"max_workers must be a positive integer, got {self.max_workers!r}")

    def is_safety_channel(self, address: Optional[str]) -> bool:
        """Check whether a direct I/O address is wired to a configured safety channel."""
        if not address:
            return False
        return any(p.search(address) for p in self._channel_patterns)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisConfig":
        allowed = {"scoring", "safety", "ai_context", "analysis"}
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ConfigurationError(f"Unknown configuration section(s): {', '.join(map(str, unknown))}")

        scoring = data.get("scoring") or {}
        safety = data.get("safety") or {}
        ai_context = data.get("ai_context") or {}
        analysis = data.get("analysis") or {}
        for name, section in (("scoring", scoring), ("safety", safety),
                              ("ai_context", ai_context), ("analysis", analysis)):
            if not isinstance(section, dict):
                raise ConfigurationError(f"Section '{name}' must be a mapping")

        channels = safety.get("io_channels", [])
        if not isinstance(channels, list):
            raise ConfigurationError("safety.io_channels must be a list of patterns")

        return cls(
            weights=ScoringWeights.from_dict(scoring.get("weights")),
            safety_channels=[str(c) for c in channels],
            target_language=ai_context.get("target_language", TargetLanguage.PYTHON.value),
            max_workers=analysis.get("max_workers"),
        )


def load_config(config_path: Union[str, Path]) -> AnalysisConfig:
    """
    Load analysis configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Parsed AnalysisConfig

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    path = Path(config_path)
    if not path.is_file():
        raise ConfigurationError(f"Configuration file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Could not parse configuration {path}: {e}")
        raise ConfigurationError(f"Malformed YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root in {path} must be a mapping")

    config = AnalysisConfig.from_dict(data)
    logger.info(f"Loaded analysis configuration from {path}")
    return config
