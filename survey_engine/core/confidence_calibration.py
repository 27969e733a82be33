"""
Confidence Calibration - decides whether and how an extraction updates a slot

Responsibilities:
- Reject weak extractions (reported confidence at or below threshold)
- Fill empty slots, merge agreeing samples, arbitrate contradictions
- Union list slots with case-insensitive de-duplication
- Enforce no_inference slots (only the question that targets them may fill)

Design principles:
- Pure: returns a SlotUpdate plan (or None) and never mutates state
- Monotonic: a planned confidence is never below the slot's current one
- Deterministic: same inputs, same plan

Update rules (old = current confidence, r = reported confidence):
- agreement:     old + (1 - old) * r * agreement_gain        -> 'merge'
- contradiction: old + (1 - old) * r * contradiction_gain    -> 'overwrite'
                 (only when r > old, otherwise the sample is discarded)
- list slot:     max(old, r), values unioned                  -> 'merge'
"""

import logging
import re
from typing import Any, List, Optional

from survey_engine.config import CalibrationConfig
from survey_engine.contracts import (
    ACTION_FILL,
    ACTION_MERGE,
    ACTION_OVERWRITE,
    ExtractionResult,
    SlotUpdate,
)

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


def _tokens(text: Any) -> set:
    return set(TOKEN_PATTERN.findall(str(text).lower()))


def token_overlap(a: Any, b: Any) -> float:
    """Jaccard overlap of word tokens (0.0 when either side is empty)"""
    tokens_a = _tokens(a)
    tokens_b = _tokens(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    text = str(value).strip()
    return [text] if text else []


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = "; ".join(str(item).strip() for item in value if str(item).strip())
    text = str(value).strip()
    return text or None


def union_dedup(existing: List[str], incoming: List[str]) -> List[str]:
    """Append incoming items not already present (case-insensitive), order kept"""
    merged = list(existing)
    seen = {item.lower() for item in existing}
    for item in incoming:
        key = item.lower()
        if key not in seen:
            merged.append(item)
            seen.add(key)
    return merged


class ConfidenceCalibrator:
    """Turns raw extraction results into slot update plans"""

    def __init__(self, config: Optional[CalibrationConfig] = None):
        self.config = config or CalibrationConfig()
        if self.config.contradiction_gain >= self.config.agreement_gain:
            raise ValueError("contradiction_gain must be lower than agreement_gain")

    def calibrate(
        self,
        slot_name: str,
        extraction: ExtractionResult,
        answer_text: str,
        question_id: Optional[str],
        slot_state
    ) -> Optional[SlotUpdate]:
        """
        Compute the update for one slot.

        Args:
            slot_name: Target slot
            extraction: Extraction service output for this slot
            answer_text: Raw user answer (for logging context)
            question_id: Question that produced the answer
            slot_state: Current SlotState (read only)

        Returns:
            SlotUpdate, or None if the extraction is discarded

        Raises:
            KeyError: If slot_name is not in the schema
        """
        spec = slot_state.schema[slot_name]
        slot = slot_state.slots[slot_name]
        reported = min(1.0, max(0.0, float(extraction.confidence)))

        if reported <= self.config.reject_threshold:
            logger.debug(f"{slot_name}: rejected, reported confidence {reported:.2f}")
            return None

        if spec.no_inference and not slot.asked_this_turn:
            logger.debug(f"{slot_name}: rejected, no_inference slot not asked this turn")
            return None

        old = slot.confidence

        if spec.is_list:
            return self._calibrate_list(slot_name, extraction, slot, reported, question_id)

        value = _as_text(extraction.value)
        if value is None:
            return None

        if not slot.has_value():
            return SlotUpdate(
                slot_name=slot_name,
                value=value,
                confidence=max(old, reported),
                previous_confidence=old,
                action=ACTION_FILL,
                question_id=question_id,
                reported_confidence=reported,
            )

        overlap = token_overlap(slot.value, value)
        if overlap >= self.config.agreement_overlap:
            new_conf = old + (1.0 - old) * reported * self.config.agreement_gain
            keep_new = reported > old
            return SlotUpdate(
                slot_name=slot_name,
                value=value if keep_new else slot.value,
                confidence=new_conf,
                previous_confidence=old,
                action=ACTION_MERGE,
                question_id=question_id,
                reported_confidence=reported,
            )

        if reported > old:
            new_conf = old + (1.0 - old) * reported * self.config.contradiction_gain
            logger.info(
                f"{slot_name}: contradiction (overlap {overlap:.2f}), "
                f"stronger sample {reported:.2f} > {old:.2f} overwrites"
            )
            return SlotUpdate(
                slot_name=slot_name,
                value=value,
                confidence=new_conf,
                previous_confidence=old,
                action=ACTION_OVERWRITE,
                question_id=question_id,
                reported_confidence=reported,
            )

        logger.info(
            f"{slot_name}: contradiction discarded, weaker sample "
            f"{reported:.2f} <= {old:.2f} (answer: {answer_text[:60]!r})"
        )
        return None

    def _calibrate_list(self, slot_name, extraction, slot, reported, question_id) -> Optional[SlotUpdate]:
        incoming = _as_list(extraction.value)
        if not incoming:
            return None

        existing = _as_list(slot.value)
        merged = union_dedup(existing, incoming)
        new_conf = max(slot.confidence, reported)

        if merged == existing and new_conf == slot.confidence:
            return None

        return SlotUpdate(
            slot_name=slot_name,
            value=merged,
            confidence=new_conf,
            previous_confidence=slot.confidence,
            action=ACTION_FILL if not existing else ACTION_MERGE,
            question_id=question_id,
            reported_confidence=reported,
        )
