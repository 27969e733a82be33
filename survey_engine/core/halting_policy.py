"""
Halting Policy - decides when a session stops asking questions

Rules, evaluated in order (first match wins):
1. max_questions_reached  total_questions >= max_turns
2. low_confidence_streak  low_conf_streak >= streak limit
3. sufficient_coverage    can_complete() holds
4. low_eig_high_fatigue   top EIG < low_eig_threshold and fatigue > high_fatigue_threshold
5. continue

Completion check (can_complete):
- every critical slot meets its threshold
- weighted coverage >= completion fraction for the survey type
- feedback surveys: some depth slot is substantive, or fatigue > escape level
- other surveys: some depth slot is substantive, or marginal utility is low
  (top EIG < low_eig_threshold or fatigue > high_fatigue_threshold)

A schema with no designated depth slot counts as having depth.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from survey_engine.config import HaltingConfig

logger = logging.getLogger(__name__)


class HaltReason(str, Enum):
    MAX_QUESTIONS_REACHED = "max_questions_reached"
    LOW_CONFIDENCE_STREAK = "low_confidence_streak"
    SUFFICIENT_COVERAGE = "sufficient_coverage"
    LOW_EIG_HIGH_FATIGUE = "low_eig_high_fatigue"
    NO_SUITABLE_QUESTIONS = "no_suitable_questions"


@dataclass(frozen=True)
class HaltDecision:
    halt: bool
    reason: Optional[HaltReason] = None

    @classmethod
    def proceed(cls) -> "HaltDecision":
        return cls(halt=False)

    @classmethod
    def stop(cls, reason: HaltReason) -> "HaltDecision":
        return cls(halt=True, reason=reason)


class HaltingPolicy:
    """Stateless stop/continue decision over SlotState"""

    def __init__(self, config: Optional[HaltingConfig] = None):
        self.config = config or HaltingConfig()

    def has_depth(self, slot_state) -> bool:
        depth_slots = slot_state.schema.depth_slots()
        if not depth_slots:
            return True
        return any(
            slot_state.schema[name].is_substantive(slot_state.slots[name].value)
            for name in depth_slots
        )

    def low_marginal_utility(self, top_eig: float, fatigue: float) -> bool:
        return top_eig < self.config.low_eig_threshold or fatigue > self.config.high_fatigue_threshold

    def can_complete(self, slot_state, fatigue: float, top_eig: float) -> bool:
        """
        Coverage-based completion check.

        Args:
            slot_state: Current SlotState
            fatigue: Current fatigue estimate
            top_eig: EIG of the best available candidate

        Returns:
            bool: True if the session has collected enough
        """
        if not slot_state.critical_slots_filled():
            return False

        fraction = self.config.completion_fraction(slot_state.survey_type)
        if slot_state.weighted_coverage() < fraction:
            return False

        if self.has_depth(slot_state):
            return True

        if slot_state.survey_type.is_feedback:
            return fatigue > self.config.feedback_fatigue_escape

        return self.low_marginal_utility(top_eig, fatigue)

    def evaluate(self, slot_state, top_eig: float, fatigue: float) -> HaltDecision:
        """
        Apply the halting rules in order.

        Returns:
            HaltDecision (halt False means keep asking)
        """
        if slot_state.total_questions >= self.config.max_turns:
            return HaltDecision.stop(HaltReason.MAX_QUESTIONS_REACHED)

        if slot_state.low_conf_streak >= self.config.low_confidence_streak_limit:
            return HaltDecision.stop(HaltReason.LOW_CONFIDENCE_STREAK)

        if self.can_complete(slot_state, fatigue, top_eig):
            return HaltDecision.stop(HaltReason.SUFFICIENT_COVERAGE)

        if top_eig < self.config.low_eig_threshold and fatigue > self.config.high_fatigue_threshold:
            return HaltDecision.stop(HaltReason.LOW_EIG_HIGH_FATIGUE)

        return HaltDecision.proceed()
