"""
Question Scoring Engine - picks the next best template for a session

Responsibilities:
- Filter templates by eligibility (askIf, dependencies, cooldown,
  usage cap, topic repetition, semantic redundancy)
- Score survivors by coverage, confidence lift, expected information
  gain, fatigue and redundancy
- Return the winner (or None) with the full candidate ranking

Design principles:
- Read-only on SlotState; the Orchestrator records what was asked
- Deterministic: ties broken by highest score, then lowest template id
- No eligible template is a normal outcome (winner None), not an error

Scoring:
    score = priority
          + w_cov * coverage + w_lift * confidence_lift + w_eig * eig
          - w_fatigue * fatigue - w_redundancy * redundancy_penalty
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from survey_engine.config import EngineConfig
from survey_engine.contracts import Candidate
from survey_engine.core import predicates
from survey_engine.core.redundancy_analyzer import RedundancyAnalyzer, fatigue_score
from survey_engine.core.template_catalog import QuestionTemplate, render_prompt

logger = logging.getLogger(__name__)

# Eligibility rejection reasons, in the order they are checked
REJECT_ASK_IF = "ask_if"
REJECT_DEPENDENCIES = "dependencies"
REJECT_COOLDOWN = "cooldown"
REJECT_USAGE_CAP = "usage_cap"
REJECT_TOPIC = "topic_repetition"
REJECT_REDUNDANT = "redundant"


@dataclass
class ScoringOutcome:
    """
    Result of one selection pass.

    Attributes:
        winner: Highest-ranked candidate, or None if nothing survived
        candidates: All scored candidates, best first
        fatigue: Fatigue used in this pass
        rejections: template_id -> reason for every filtered template
        degraded: True if the redundancy check could not run for some template
    """
    winner: Optional[Candidate]
    candidates: List[Candidate] = field(default_factory=list)
    fatigue: float = 0.0
    rejections: Dict[str, str] = field(default_factory=dict)
    degraded: bool = False

    @property
    def top_eig(self) -> float:
        return self.winner.eig if self.winner else 0.0

    def debug_snapshot(self) -> Dict[str, object]:
        """JSON-safe summary stored in SlotState.debug"""
        return {
            'top_candidate_eig': self.top_eig,
            'candidate_count': len(self.candidates),
            'fatigue': self.fatigue,
            'winner': self.winner.template_id if self.winner else None,
            'ranking': [
                {'id': c.template_id, 'score': round(c.score, 4), 'eig': round(c.eig, 4)}
                for c in self.candidates
            ],
            'rejections': dict(self.rejections),
        }


class QuestionScoringEngine:
    """Eligibility filter and scorer for question templates"""

    def __init__(self, analyzer: Optional[RedundancyAnalyzer] = None,
                 config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.analyzer = analyzer or RedundancyAnalyzer(None, self.config.redundancy)
        self.weights = self.config.weights

    # ========================
    # Scoring components
    # ========================

    @staticmethod
    def coverage_score(template: QuestionTemplate, slot_state) -> float:
        """Fraction of the template's targets that still need a question"""
        targets = template.slot_targets
        if not targets:
            return 0.0
        open_targets = [name for name in targets if slot_state.needs_question(name)]
        return len(open_targets) / len(targets)

    @staticmethod
    def confidence_lift(template: QuestionTemplate, slot_state) -> float:
        """1 - mean confidence of the template's targets"""
        targets = template.slot_targets
        if not targets:
            return 0.0
        mean_conf = sum(slot_state.slots[name].confidence for name in targets) / len(targets)
        return 1.0 - mean_conf

    @staticmethod
    def expected_info_gain(template: QuestionTemplate, slot_state) -> float:
        """
        EIG heuristic in [0, 1].

        coverage * (0.7 * mean uncertainty of open targets + 0.3 * critical share),
        divided by (1 + times the template was already used). 0 when all
        targets are satisfied.
        """
        targets = template.slot_targets
        open_targets = [name for name in targets if slot_state.needs_question(name)]
        if not targets or not open_targets:
            return 0.0

        coverage = len(open_targets) / len(targets)
        uncertainty = sum(1.0 - slot_state.slots[name].confidence for name in open_targets) / len(open_targets)
        critical_share = sum(1 for name in open_targets if slot_state.schema[name].is_critical) / len(open_targets)
        uses = slot_state.template_usage(template.id).count

        eig = coverage * (0.7 * uncertainty + 0.3 * critical_share) / (1 + uses)
        return max(0.0, min(1.0, eig))

    # ========================
    # Eligibility
    # ========================

    def _has_critical_open_target(self, template: QuestionTemplate, slot_state) -> bool:
        return any(
            slot_state.schema[name].is_critical and slot_state.needs_question(name)
            for name in template.slot_targets
        )

    def rejection_reason(self, template: QuestionTemplate, slot_state) -> Optional[str]:
        """
        First static eligibility rule the template fails (None if eligible).

        Redundancy is checked separately since it needs the rendered prompt.
        """
        if not predicates.evaluate(template.ask_if, slot_state):
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Template {template.id} gated by ask_if: {predicates.describe(template.ask_if)}")
            return REJECT_ASK_IF

        if any(slot_state.needs_question(dep) for dep in template.dependencies):
            return REJECT_DEPENDENCIES

        usage = slot_state.template_usage(template.id)
        if usage.last_turn is not None and slot_state.turn - usage.last_turn < template.cooldown_turns:
            return REJECT_COOLDOWN

        if template.max_asks_per_slot is not None and usage.count >= template.max_asks_per_slot:
            return REJECT_USAGE_CAP

        streak_limit = self.config.halting.topic_streak_limit
        recent_topics = slot_state.topic_history.last(streak_limit)
        if (template.topic and len(recent_topics) >= streak_limit
                and all(topic == template.topic for topic in recent_topics)
                and not self._has_critical_open_target(template, slot_state)):
            return REJECT_TOPIC

        return None

    # ========================
    # Selection
    # ========================

    def select(self, slot_state, templates: Iterable[QuestionTemplate],
               fatigue: Optional[float] = None) -> ScoringOutcome:
        """
        Rank eligible templates and pick the winner.

        Args:
            slot_state: Current SlotState (read only)
            templates: Catalog or list of QuestionTemplates
            fatigue: Precomputed fatigue (computed from history if None)

        Returns:
            ScoringOutcome (winner None when no template is eligible)
        """
        if fatigue is None:
            fatigue = fatigue_score(slot_state.conversation_history, self.config.fatigue)

        rejections: Dict[str, str] = {}
        candidates: List[Candidate] = []
        degraded = False

        for template in templates:
            reason = self.rejection_reason(template, slot_state)
            if reason:
                rejections[template.id] = reason
                continue

            question_text = render_prompt(template, slot_state)
            redundancy = self.analyzer.check(question_text, slot_state.asked_questions)
            degraded = degraded or redundancy.degraded
            if redundancy.reject:
                logger.info(
                    f"Rejected template {template.id}: too similar to a recent question "
                    f"(similarity {redundancy.similarity:.2f})"
                )
                rejections[template.id] = REJECT_REDUNDANT
                continue

            coverage = self.coverage_score(template, slot_state)
            lift = self.confidence_lift(template, slot_state)
            eig = self.expected_info_gain(template, slot_state)

            score = (
                template.priority
                + self.weights.coverage * coverage
                + self.weights.confidence_lift * lift
                + self.weights.eig * eig
                - self.weights.fatigue * fatigue
                - self.weights.redundancy * redundancy.penalty
            )

            candidates.append(Candidate(
                template=template,
                score=score,
                eig=eig,
                coverage=coverage,
                confidence_lift=lift,
                redundancy_penalty=redundancy.penalty,
                question_text=question_text,
            ))

        candidates.sort(key=lambda c: (-c.score, c.template_id))
        winner = candidates[0] if candidates else None

        if winner:
            logger.info(
                f"Selected template: {winner.template_id} (score: {winner.score:.2f}, "
                f"EIG: {winner.eig:.2f}, {len(candidates)} candidates)"
            )
        else:
            logger.info(f"No eligible template ({len(rejections)} rejected)")

        return ScoringOutcome(
            winner=winner,
            candidates=candidates,
            fatigue=fatigue,
            rejections=rejections,
            degraded=degraded,
        )
