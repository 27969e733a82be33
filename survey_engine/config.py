"""
Engine configuration - immutable tuning values for scoring and halting

Responsibilities:
- Hold every weight and threshold used by the engine
- Provide survey-type aware completion fractions
- Merge overrides from dicts and environment variables

Design principles:
- Frozen dataclasses, passed into constructors (never read from globals)
- Same config in, same decisions out
- Overrides produce a NEW config, the defaults are never mutated
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace, asdict
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SurveyType(str, Enum):
    """
    Survey category, used to pick the completion coverage fraction.

    The *_FEEDBACK members and FEEDBACK form the feedback family, which
    requires more coverage and real depth before completing.
    """
    GENERAL = "general"
    FEEDBACK = "feedback"
    COURSE_FEEDBACK = "course_feedback"
    CUSTOMER_FEEDBACK = "customer_feedback"
    EMPLOYEE_FEEDBACK = "employee_feedback"
    PRODUCT_FEEDBACK = "product_feedback"
    REQUIREMENTS = "requirements"
    BUSINESS_ANALYSIS = "business_analysis"
    USER_RESEARCH = "user_research"

    @property
    def is_feedback(self) -> bool:
        return self is SurveyType.FEEDBACK or self.value.endswith("_feedback")

    @classmethod
    def parse(cls, value) -> "SurveyType":
        """Lenient parse: unknown strings fall back to GENERAL"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning(f"Unknown survey type '{value}', using 'general'")
            return cls.GENERAL


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the candidate score (all non-negative)"""
    coverage: float = 3.0
    confidence_lift: float = 2.0
    eig: float = 2.0
    fatigue: float = 1.2
    redundancy: float = 1.5


@dataclass(frozen=True)
class CalibrationConfig:
    reject_threshold: float = 0.3
    agreement_gain: float = 0.5
    contradiction_gain: float = 0.15
    # Token overlap at or above which two scalar values are said to agree
    agreement_overlap: float = 0.3


@dataclass(frozen=True)
class RedundancyConfig:
    enabled: bool = True
    reject_threshold: float = 0.85
    history_size: int = 5
    embedding_timeout_s: float = 5.0


@dataclass(frozen=True)
class FatigueConfig:
    lookback: int = 4
    trend_weight: float = 0.3
    latency_weight: float = 0.1
    # Seconds between turns treated as a full slowdown signal
    latency_ceiling_s: float = 120.0


@dataclass(frozen=True)
class HaltingConfig:
    max_turns: int = 10
    low_confidence_streak_limit: int = 2
    low_eig_threshold: float = 0.15
    high_fatigue_threshold: float = 0.6
    min_coverage: float = 0.75
    feedback_min_coverage: float = 0.85
    # Feedback surveys may complete without depth only above this fatigue
    feedback_fatigue_escape: float = 0.8
    topic_history_size: int = 5
    topic_streak_limit: int = 2

    def completion_fraction(self, survey_type: SurveyType) -> float:
        if SurveyType.parse(survey_type).is_feedback:
            return self.feedback_min_coverage
        return self.min_coverage


@dataclass(frozen=True)
class TemplateDefaults:
    priority: int = 5
    cooldown_turns: int = 2
    max_asks_per_slot: Optional[int] = 2


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration"""
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    redundancy: RedundancyConfig = field(default_factory=RedundancyConfig)
    fatigue: FatigueConfig = field(default_factory=FatigueConfig)
    halting: HaltingConfig = field(default_factory=HaltingConfig)
    templates: TemplateDefaults = field(default_factory=TemplateDefaults)
    extraction_timeout_s: float = 20.0

    def __post_init__(self):
        negative = [f.name for f in fields(self.weights) if getattr(self.weights, f.name) < 0]
        if negative:
            raise ValueError(f"Scoring weights must be non-negative: {negative}")
        if not 0.0 <= self.redundancy.reject_threshold <= 1.0:
            raise ValueError("redundancy.reject_threshold must be within [0, 1]")
        if self.halting.max_turns < 1:
            raise ValueError("halting.max_turns must be >= 1")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, overrides: Optional[Dict[str, Any]] = None,
                  base: Optional["EngineConfig"] = None) -> "EngineConfig":
        """
        Build a config from nested overrides.

        Args:
            overrides: e.g. {'weights': {'coverage': 4.0}, 'halting': {'max_turns': 8}}
            base: Config to start from (defaults if None)

        Raises:
            ValueError: On unknown sections or keys
        """
        config = base or cls()
        if not overrides:
            return config

        changes = {}
        for section_name, section_values in overrides.items():
            if section_name not in {f.name for f in fields(cls)}:
                raise ValueError(f"Unknown config section '{section_name}'")

            current = getattr(config, section_name)
            if not isinstance(section_values, dict):
                changes[section_name] = section_values
                continue

            known = {f.name for f in fields(current)}
            unknown = set(section_values) - known
            if unknown:
                raise ValueError(f"Unknown keys in '{section_name}': {sorted(unknown)}")
            changes[section_name] = replace(current, **section_values)

        return replace(config, **changes)

    @classmethod
    def from_env(cls, base: Optional["EngineConfig"] = None, environ=None) -> "EngineConfig":
        """Apply SURVEY_MAX_TURNS / SURVEY_MIN_COVERAGE / DISABLE_SEMANTIC_DEDUP"""
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Dict[str, Any]] = {}

        if environ.get("SURVEY_MAX_TURNS"):
            overrides.setdefault("halting", {})["max_turns"] = int(environ["SURVEY_MAX_TURNS"])

        if environ.get("SURVEY_MIN_COVERAGE"):
            overrides.setdefault("halting", {})["min_coverage"] = float(environ["SURVEY_MIN_COVERAGE"])

        if environ.get("DISABLE_SEMANTIC_DEDUP") == "true":
            overrides.setdefault("redundancy", {})["enabled"] = False

        if overrides:
            logger.info(f"Applying environment overrides: {overrides}")

        return cls.from_dict(overrides, base=base)
