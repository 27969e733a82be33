"""
Semantic contracts for the adaptive survey engine.

This module defines immutable data structures that serve as contracts
between modules. These are NOT validators - they define shape and
semantics without enforcing rules.

Design principles:
- Frozen dataclasses (immutable after creation)
- No validation logic (contracts, not validators)
- No dependencies on other engine modules
- Definition layer only (no enforcement)

Contents:
- ExtractionResult: What the extraction service reports for one slot
- SlotUpdate: Mutation plan produced by Confidence Calibration
- RedundancyResult: Outcome of the semantic redundancy check
- Candidate: One scored template in one turn

Usage:
    from survey_engine.contracts import ExtractionResult, SlotUpdate
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple


# Slot update actions
ACTION_FILL = "fill"
ACTION_MERGE = "merge"
ACTION_OVERWRITE = "overwrite"


@dataclass(frozen=True)
class ExtractionResult:
    """
    Raw output of the extraction service for a single slot.

    Lifecycle:
    1. Created by: extraction service (LLMSlotExtractor or a caller's own)
    2. Consumed by: ConfidenceCalibrator
    3. Never stored: only the calibrated SlotUpdate reaches Slot State

    Attributes:
        value: Extracted value (str for text slots, list of str for list slots).
               None means "nothing relevant in the answer".
        confidence: Self-reported confidence 0.0-1.0. 0.0 is "no usable signal".
        evidence_spans: Direct quotes from the answer supporting the value.
        reasoning: Free-text justification from the extractor (debug only).

    Examples:
        >>> ExtractionResult(value="Sprint planning takes 4 hours", confidence=0.9)
        >>> ExtractionResult.empty().confidence
        0.0
    """
    value: Any
    confidence: float = 0.0
    evidence_spans: Tuple[str, ...] = ()
    reasoning: Optional[str] = None

    @staticmethod
    def empty(reasoning: Optional[str] = None) -> "ExtractionResult":
        return ExtractionResult(value=None, confidence=0.0, reasoning=reasoning)


@dataclass(frozen=True)
class SlotUpdate:
    """
    Mutation plan for one slot, computed by Confidence Calibration.

    Calibration is pure: it returns this plan and Slot State applies it.
    The same inputs always produce the same plan.

    Attributes:
        slot_name: Target slot
        value: New value to store (already merged for list slots)
        confidence: New calibrated confidence (never below previous)
        previous_confidence: Confidence before this update
        action: 'fill' (slot was empty), 'merge' (agreement or list union),
                'overwrite' (contradiction from a stronger sample)
        question_id: Question whose answer produced the update
        reported_confidence: Extractor's raw confidence (for provenance)
    """
    slot_name: str
    value: Any
    confidence: float
    previous_confidence: float
    action: str
    question_id: Optional[str] = None
    reported_confidence: float = 0.0


@dataclass(frozen=True)
class RedundancyResult:
    """
    Result of comparing a candidate question with recently asked ones.

    Attributes:
        reject: True if similarity reached the reject threshold
        penalty: Continuous penalty used in scoring (the similarity itself,
                 0.0 when the check could not run)
        similarity: Maximum cosine similarity found (0.0 if none)
        degraded: True if the embedding call failed and the check was skipped
    """
    reject: bool
    penalty: float
    similarity: float = 0.0
    degraded: bool = False


@dataclass(frozen=True)
class Candidate:
    """
    One template scored in one turn. Ephemeral, never persisted.

    Attributes:
        template: QuestionTemplate being scored
        score: Final weighted score
        eig: Expected information gain heuristic, in [0, 1]
        coverage: Fraction of target slots still needing a question
        confidence_lift: 1 - mean confidence across target slots
        redundancy_penalty: Similarity penalty applied in the score
        question_text: Rendered prompt that was scored
    """
    template: Any
    score: float
    eig: float
    coverage: float
    confidence_lift: float
    redundancy_penalty: float
    question_text: str = ""

    @property
    def template_id(self) -> str:
        return self.template.id
