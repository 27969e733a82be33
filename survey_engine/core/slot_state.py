"""
Slot State - per-session record of collected facts and question history

Responsibilities:
- Hold slot values, confidences and provenance for one session
- Track turn counters, low-confidence streak and conversation history
- Keep bounded recent-question and topic buffers for redundancy control
- Answer read-only coverage queries (needs_question, ready slots, summary)
- Snapshot to / restore from a JSON-safe dict

Design principles:
- Owned by exactly one session, never shared across concurrent turns
- Read queries are free; writes go through the named update operations
  (apply_update, record_answer, register_answer_confidence,
  record_question_asked), called only by the Orchestrator
- Snapshots are lossless (restore(snapshot(state)) == state)

Turn accounting:
- turn advances by exactly 1 per question asked (record_question_asked)
- total_questions counts questions asked and drives the max-turns halt
- template_history[id].last_turn is the turn value at which it was asked
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from survey_engine.config import SurveyType
from survey_engine.contracts import SlotUpdate
from survey_engine.core.slot_schema import SlotSchema
from survey_engine.exceptions import SchemaViolation
from survey_engine.utils.helpers import utc_timestamp
from survey_engine.utils.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

ASKED_QUESTIONS_CAPACITY = 5
TOPIC_HISTORY_CAPACITY = 5


@dataclass
class Slot:
    """Runtime value holder for one slot"""
    value: Any = None
    confidence: float = 0.0
    asked_this_turn: bool = False
    last_updated_turn: Optional[int] = None
    provenance: List[Dict[str, Any]] = field(default_factory=list)

    def has_value(self) -> bool:
        if self.value is None:
            return False
        if isinstance(self.value, list):
            return len(self.value) > 0
        return str(self.value).strip() != ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'value': copy.deepcopy(self.value),
            'confidence': self.confidence,
            'last_updated_turn': self.last_updated_turn,
            'provenance': copy.deepcopy(self.provenance),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Slot":
        return cls(
            value=copy.deepcopy(data.get('value')),
            confidence=float(data.get('confidence', 0.0)),
            last_updated_turn=data.get('last_updated_turn'),
            provenance=copy.deepcopy(data.get('provenance', [])),
        )


@dataclass
class AskedQuestion:
    """Recently asked question kept for redundancy comparison"""
    text: str
    embedding: Optional[List[float]] = None

    def to_dict(self) -> Dict[str, Any]:
        embedding = None
        if self.embedding is not None:
            embedding = [float(x) for x in self.embedding]
        return {'text': self.text, 'embedding': embedding}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AskedQuestion":
        return cls(text=data['text'], embedding=data.get('embedding'))


@dataclass
class TemplateUsage:
    count: int = 0
    last_turn: Optional[int] = None


class SlotState:
    """Mutable per-session slot record"""

    def __init__(
        self,
        schema: SlotSchema,
        session_id: Optional[str] = None,
        survey_type: SurveyType = SurveyType.GENERAL,
        asked_questions_capacity: int = ASKED_QUESTIONS_CAPACITY,
        topic_history_capacity: int = TOPIC_HISTORY_CAPACITY
    ) -> None:
        """
        Initialize empty state for a new session

        Args:
            schema: Loaded slot schema (read-only reference)
            session_id: Caller's session identifier
            survey_type: Drives completion thresholds
            asked_questions_capacity: Size of the redundancy buffer
            topic_history_capacity: Size of the topic buffer
        """
        self.schema = schema
        self.session_id = session_id
        self.survey_type = SurveyType.parse(survey_type)
        self.slots: Dict[str, Slot] = {name: Slot() for name in schema}

        self.turn = 0
        self.total_questions = 0
        self.low_conf_streak = 0

        self.conversation_history: List[Dict[str, Any]] = []
        self.asked_questions = RingBuffer(asked_questions_capacity)
        self.template_history: Dict[str, TemplateUsage] = {}
        self.topic_history = RingBuffer(topic_history_capacity)

        self.pending_question: Optional[Dict[str, Any]] = None
        self.completed = False
        self.halt_reason: Optional[str] = None
        self.debug: Dict[str, Any] = {}
        self.errors: List[Dict[str, Any]] = []

    # ========================
    # Read queries
    # ========================

    def _require_slot(self, slot_name: str) -> Slot:
        if slot_name not in self.slots:
            raise KeyError(f"Unknown slot '{slot_name}'")
        return self.slots[slot_name]

    def needs_question(self, slot_name: str) -> bool:
        """True iff the slot's confidence is below its schema threshold"""
        slot = self._require_slot(slot_name)
        return slot.confidence < self.schema.threshold(slot_name)

    def is_filled(self, slot_name: str) -> bool:
        return not self.needs_question(slot_name)

    def get_ready_slots(self) -> Dict[str, Any]:
        """
        Slots whose confidence meets threshold.

        Returns:
            dict: {slot_name: value} (deep copy)
        """
        return {
            name: copy.deepcopy(slot.value)
            for name, slot in self.slots.items()
            if self.is_filled(name)
        }

    def coverage(self) -> float:
        """Fraction of required slots meeting threshold (all slots if none required)"""
        names = self.schema.required_slots() or list(self.schema)
        filled = [name for name in names if self.is_filled(name)]
        return len(filled) / max(1, len(names))

    def weighted_coverage(self) -> float:
        """Coverage of required slots weighted by priority"""
        names = self.schema.required_slots() or list(self.schema)
        total = sum(self.schema[name].weight for name in names)
        filled = sum(self.schema[name].weight for name in names if self.is_filled(name))
        return filled / total if total else 1.0

    def critical_slots_filled(self) -> bool:
        return all(self.is_filled(name) for name in self.schema.critical_slots())

    def get_completion_summary(self) -> Dict[str, Any]:
        """
        Per-slot filled/unfilled status plus overall coverage.

        Returns:
            dict: {
                'slots': {name: {'filled', 'confidence', 'threshold', 'priority'}},
                'completed': int, 'total': int,
                'coverage': float, 'weighted_coverage': float,
                'ready_slots': [names], 'missing_slots': [names]
            }
        """
        per_slot = {}
        for name, slot in self.slots.items():
            spec = self.schema[name]
            per_slot[name] = {
                'filled': self.is_filled(name),
                'confidence': round(slot.confidence, 4),
                'threshold': spec.min_confidence,
                'priority': spec.priority.value,
            }

        ready = [name for name, info in per_slot.items() if info['filled']]
        missing = [name for name, info in per_slot.items() if not info['filled']]

        return {
            'slots': per_slot,
            'completed': len(ready),
            'total': len(per_slot),
            'coverage': self.coverage(),
            'weighted_coverage': self.weighted_coverage(),
            'ready_slots': ready,
            'missing_slots': missing,
        }

    def template_usage(self, template_id: str) -> TemplateUsage:
        return self.template_history.get(template_id, TemplateUsage())

    def recent_answers(self, lookback: int) -> List[Dict[str, Any]]:
        if lookback <= 0:
            return []
        return self.conversation_history[-lookback:]

    # ========================
    # Write path (Orchestrator only)
    # ========================

    def apply_update(self, update: SlotUpdate) -> None:
        """
        Apply a calibrated slot update.

        Raises:
            KeyError: If slot unknown
            ValueError: If the update would lower the slot's confidence
        """
        slot = self._require_slot(update.slot_name)
        if update.confidence < slot.confidence:
            raise ValueError(
                f"Slot '{update.slot_name}' confidence would regress "
                f"({slot.confidence:.3f} -> {update.confidence:.3f})"
            )

        slot.value = copy.deepcopy(update.value)
        slot.confidence = update.confidence
        slot.last_updated_turn = self.turn
        slot.provenance.append({
            'question_id': update.question_id,
            'turn': self.turn,
            'action': update.action,
            'reported_confidence': update.reported_confidence,
            'confidence': update.confidence,
        })

        logger.debug(
            f"Slot {update.slot_name}: {update.action} "
            f"{update.previous_confidence:.2f} -> {update.confidence:.2f}"
        )

    def mark_asked_this_turn(self, slot_names: List[str]) -> None:
        for name in slot_names:
            if name in self.slots:
                self.slots[name].asked_this_turn = True

    def clear_asked_this_turn(self) -> None:
        for slot in self.slots.values():
            slot.asked_this_turn = False

    def record_answer(
        self,
        question_id: str,
        question_text: Optional[str],
        answer: str,
        timestamp: Optional[str] = None
    ) -> None:
        """Append a raw answer to the conversation history"""
        if timestamp is None:
            timestamp = utc_timestamp()

        self.conversation_history.append({
            'question_id': question_id,
            'question': question_text,
            'answer': answer,
            'timestamp': timestamp,
        })

    def register_answer_confidence(self, confident: bool) -> None:
        """Streak increments on a low-confidence answer, resets on a confident one"""
        if confident:
            self.low_conf_streak = 0
        else:
            self.low_conf_streak += 1

    def record_question_asked(
        self,
        template_id: str,
        topic: Optional[str],
        question_text: str,
        embedding: Optional[List[float]] = None,
        slot_targets: Optional[List[str]] = None
    ) -> None:
        """
        Track an emitted question: template usage, topic, redundancy buffer,
        turn and question counters.
        """
        usage = self.template_history.setdefault(template_id, TemplateUsage())
        usage.count += 1
        usage.last_turn = self.turn

        if topic:
            self.topic_history.push(topic)

        self.asked_questions.push(AskedQuestion(text=question_text, embedding=embedding))

        self.pending_question = {
            'id': template_id,
            'question': question_text,
            'slot_targets': list(slot_targets or []),
            'turn': self.turn,
        }

        self.turn += 1
        self.total_questions += 1

    def record_error(self, context: str, error: Exception, **details) -> None:
        self.errors.append({
            'context': context,
            'error': str(error),
            'error_type': type(error).__name__,
            'turn': self.turn,
            **details,
        })

    def mark_completed(self, reason: str) -> None:
        self.completed = True
        self.halt_reason = reason
        self.pending_question = None

    # ========================
    # Snapshot / restore
    # ========================

    def copy(self) -> "SlotState":
        """Independent copy sharing only the (immutable) schema"""
        return SlotState.from_snapshot(self.snapshot_state(), self.schema)

    def snapshot_state(self) -> Dict[str, Any]:
        """
        Lossless JSON-safe snapshot (for persistence).

        Returns:
            dict with schema fingerprint, slots, counters, history and buffers
        """
        return {
            'session_id': self.session_id,
            'schema_name': self.schema.name,
            'schema_slots': self.schema.fingerprint(),
            'survey_type': self.survey_type.value,
            'slots': {name: slot.to_dict() for name, slot in self.slots.items()},
            'turn': self.turn,
            'total_questions': self.total_questions,
            'low_conf_streak': self.low_conf_streak,
            'conversation_history': copy.deepcopy(self.conversation_history),
            'asked_questions': {
                'capacity': self.asked_questions.capacity,
                'items': [q.to_dict() for q in self.asked_questions],
            },
            'template_history': {
                template_id: {'count': usage.count, 'last_turn': usage.last_turn}
                for template_id, usage in self.template_history.items()
            },
            'topic_history': {
                'capacity': self.topic_history.capacity,
                'items': self.topic_history.to_list(),
            },
            'pending_question': copy.deepcopy(self.pending_question),
            'completed': self.completed,
            'halt_reason': self.halt_reason,
            'debug': copy.deepcopy(self.debug),
            'errors': copy.deepcopy(self.errors),
        }

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any], schema: SlotSchema) -> "SlotState":
        """
        Rehydrate state from snapshot_state() output.

        Raises:
            SchemaViolation: If the snapshot's slots do not match the schema
        """
        snapshot_slots = snapshot.get('schema_slots', sorted(snapshot.get('slots', {})))
        if sorted(snapshot_slots) != schema.fingerprint():
            raise SchemaViolation(
                f"Snapshot slots {sorted(snapshot_slots)} do not match "
                f"schema '{schema.name}' slots {schema.fingerprint()}"
            )

        asked = snapshot.get('asked_questions', {})
        topics = snapshot.get('topic_history', {})

        state = cls(
            schema,
            session_id=snapshot.get('session_id'),
            survey_type=snapshot.get('survey_type', SurveyType.GENERAL.value),
            asked_questions_capacity=asked.get('capacity', ASKED_QUESTIONS_CAPACITY),
            topic_history_capacity=topics.get('capacity', TOPIC_HISTORY_CAPACITY),
        )

        for name, slot_data in snapshot.get('slots', {}).items():
            state.slots[name] = Slot.from_dict(slot_data)

        state.turn = int(snapshot.get('turn', 0))
        state.total_questions = int(snapshot.get('total_questions', 0))
        state.low_conf_streak = int(snapshot.get('low_conf_streak', 0))
        state.conversation_history = copy.deepcopy(snapshot.get('conversation_history', []))

        for item in asked.get('items', []):
            state.asked_questions.push(AskedQuestion.from_dict(item))

        state.template_history = {
            template_id: TemplateUsage(count=usage['count'], last_turn=usage.get('last_turn'))
            for template_id, usage in snapshot.get('template_history', {}).items()
        }

        for topic in topics.get('items', []):
            state.topic_history.push(topic)

        state.pending_question = copy.deepcopy(snapshot.get('pending_question'))
        state.completed = bool(snapshot.get('completed', False))
        state.halt_reason = snapshot.get('halt_reason')
        state.debug = copy.deepcopy(snapshot.get('debug', {}))
        state.errors = copy.deepcopy(snapshot.get('errors', []))

        return state
