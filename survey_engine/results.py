"""
Result types returned by SurveyOrchestrator.next_question() and get_status()

next_question() returns exactly one of NextQuestion or SurveyComplete.
Both carry the updated SlotState copy; the caller keeps it for the next turn.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from survey_engine.core.slot_state import SlotState


@dataclass(frozen=True)
class NextQuestion:
    """
    A question to show the respondent.

    Attributes:
        question_id: Template id (pass back to ingest_answer)
        text: Rendered question text
        slot_targets: Slots the answer is expected to fill
        topic: Template topic
        score: Winning score (debug)
        eig: Expected information gain of the winner (debug)
        max_tokens: Suggested answer length hint, if the template sets one
        state: Updated SlotState copy
        debug: Ranking and rejection details for this turn
    """
    question_id: str
    text: str
    slot_targets: List[str]
    topic: Optional[str]
    score: float
    eig: float
    max_tokens: Optional[int]
    state: SlotState
    debug: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SurveyComplete:
    """
    The session has stopped asking questions.

    Attributes:
        reason: Halt reason value (e.g. 'sufficient_coverage')
        ready_slots: {slot_name: value} for slots at threshold
        coverage: Required-slot coverage at completion
        state: Final SlotState copy
    """
    reason: str
    ready_slots: Dict[str, Any]
    coverage: float
    state: SlotState


@dataclass(frozen=True)
class SurveyStatus:
    """
    Read-only progress report for one session.

    Attributes:
        coverage: Required-slot coverage
        weighted_coverage: Priority-weighted coverage
        turn: Turn counter
        total_questions: Questions asked so far
        fatigue: Current fatigue estimate
        low_conf_streak: Consecutive low-confidence answers
        ready_slots: {slot_name: value} for slots at threshold
        missing_slots: Slots still needing a question
        can_complete: Whether the completion check currently holds
        completed: Whether the session has halted
        halt_reason: Halt reason if completed
        topic_history: Recent topics, oldest first
        template_usage: template_id -> {'count', 'last_turn'}
    """
    coverage: float
    weighted_coverage: float
    turn: int
    total_questions: int
    fatigue: float
    low_conf_streak: int
    ready_slots: Dict[str, Any]
    missing_slots: List[str]
    can_complete: bool
    completed: bool
    halt_reason: Optional[str]
    topic_history: List[str]
    template_usage: Dict[str, Dict[str, Any]]
