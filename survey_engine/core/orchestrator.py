"""
Survey Orchestrator - per-turn coordination of extraction, scoring and halting

Responsibilities:
- Start sessions (fresh SlotState)
- Ingest answers: extract per slot, calibrate, apply updates
- Select the next question or halt with a reason
- Report session status

Design principles:
- Functional core: state in, updated copy out (caller's state untouched)
- Only the Orchestrator writes to SlotState, at turn boundaries
- External failures degrade one signal and are recorded in state.errors
- Thin orchestration layer (logic lives in the specialised modules)

Turn flow:
    ingest_answer(state, question_id, answer)  -> state'
    next_question(state')                      -> NextQuestion | SurveyComplete
"""

import logging
from typing import Any, Dict, Optional, Union

from survey_engine.config import EngineConfig, SurveyType
from survey_engine.contracts import ExtractionResult
from survey_engine.core.confidence_calibration import ConfidenceCalibrator
from survey_engine.core.halting_policy import HaltingPolicy, HaltReason
from survey_engine.core.question_scorer import QuestionScoringEngine
from survey_engine.core.redundancy_analyzer import RedundancyAnalyzer, fatigue_score
from survey_engine.core.slot_schema import SlotSchema
from survey_engine.core.slot_state import SlotState
from survey_engine.core.template_catalog import TemplateCatalog
from survey_engine.exceptions import EmbeddingFailure, ExtractionFailure
from survey_engine.results import NextQuestion, SurveyComplete, SurveyStatus
from survey_engine.utils.helpers import generate_session_id
from survey_engine.utils.timeouts import call_with_timeout

logger = logging.getLogger(__name__)

# Look-ahead EIG before the first scoring pass (no evidence of exhausted questions)
NO_SNAPSHOT_EIG = 1.0


def _coerce_extraction(raw: Any) -> ExtractionResult:
    """Accept ExtractionResult or a plain {value, confidence, ...} dict"""
    if isinstance(raw, ExtractionResult):
        return raw
    if isinstance(raw, dict):
        return ExtractionResult(
            value=raw.get('value'),
            confidence=float(raw.get('confidence', 0.0) or 0.0),
            evidence_spans=tuple(raw.get('evidence_spans', ()) or ()),
            reasoning=raw.get('reasoning'),
        )
    if raw is None:
        return ExtractionResult.empty()
    raise ExtractionFailure(f"Extractor returned unsupported type {type(raw).__name__}")


class SurveyOrchestrator:
    """
    Runs the adaptive question loop for any number of sessions.

    Holds only immutable configuration and stateless collaborators; all
    session data lives in the SlotState passed in and returned.
    """

    def __init__(self, schema: SlotSchema, catalog: TemplateCatalog, extractor,
                 embedder=None, config: Optional[EngineConfig] = None):
        """
        Args:
            schema: Loaded slot schema
            catalog: Template catalog validated against the schema
            extractor: Object with extract(slot_description, answer_text, context)
            embedder: Object with embed(text), or None to disable redundancy checks
            config: Engine configuration (defaults if None)

        Raises:
            TypeError: If extractor has no extract() method
            ValueError: If the catalog was validated against another schema
        """
        if not callable(getattr(extractor, 'extract', None)):
            raise TypeError("extractor must have callable extract() method")
        if catalog.schema.fingerprint() != schema.fingerprint():
            raise ValueError("catalog was built for a different schema")

        self.schema = schema
        self.catalog = catalog
        self.extractor = extractor
        self.config = config or EngineConfig()

        self.calibrator = ConfidenceCalibrator(self.config.calibration)
        self.analyzer = RedundancyAnalyzer(embedder, self.config.redundancy)
        self.scorer = QuestionScoringEngine(self.analyzer, self.config)
        self.halting = HaltingPolicy(self.config.halting)

        logger.info(
            f"Survey orchestrator initialized: schema '{schema.name}' ({len(schema)} slots), "
            f"{len(catalog)} templates, redundancy {'on' if self.analyzer.enabled else 'off'}"
        )

    # ========================
    # Session lifecycle
    # ========================

    def start_session(self, session_id: Optional[str] = None,
                      survey_type: Union[SurveyType, str] = SurveyType.GENERAL) -> SlotState:
        """Create an empty SlotState for a new session"""
        session_id = session_id or generate_session_id()
        state = SlotState(
            self.schema,
            session_id=session_id,
            survey_type=survey_type,
            asked_questions_capacity=self.config.redundancy.history_size,
            topic_history_capacity=self.config.halting.topic_history_size,
        )
        logger.info(f"Session {session_id} started ({state.survey_type.value})")
        return state

    # ========================
    # Answer ingestion
    # ========================

    def _extraction_context(self, state: SlotState, slot_name: str, question_id: str,
                            question_text: Optional[str], targeted: bool) -> Dict[str, Any]:
        spec = self.schema[slot_name]
        return {
            'session_id': state.session_id,
            'question_id': question_id,
            'question': question_text,
            'slot_name': slot_name,
            'slot_kind': spec.kind.value,
            'current_value': state.slots[slot_name].value,
            'targeted': targeted,
        }

    def _extract(self, state: SlotState, slot_name: str, answer_text: str,
                 context: Dict[str, Any]) -> Optional[ExtractionResult]:
        try:
            raw = call_with_timeout(
                self.extractor.extract,
                self.schema[slot_name].description, answer_text, context,
                timeout=self.config.extraction_timeout_s,
                failure=ExtractionFailure,
            )
            return _coerce_extraction(raw)
        except ExtractionFailure as e:
            logger.error(f"Extraction failed for {slot_name}: {e}")
            state.record_error('extraction', e, slot=slot_name)
            return None

    def ingest_answer(self, slot_state: SlotState, question_id: str, answer_text: str,
                      timestamp: Optional[str] = None) -> SlotState:
        """
        Apply one answer to a copy of the state.

        Targeted slots are extracted first, then every other slot (cross-slot
        inference), except no_inference slots the question did not target.

        Args:
            slot_state: Current state (not modified)
            question_id: Template id the answer responds to
            answer_text: Raw answer
            timestamp: ISO timestamp of the answer (now if None)

        Returns:
            SlotState: Updated copy
        """
        state = slot_state.copy()

        if state.completed:
            logger.warning(f"Session {state.session_id} already completed, answer ignored")
            return state

        template = self.catalog.get(question_id)
        if template is None:
            logger.warning(f"Answer for unknown question '{question_id}', inferring slots only")
        targets = list(template.slot_targets) if template else []

        question_text = None
        if state.pending_question and state.pending_question.get('id') == question_id:
            question_text = state.pending_question.get('question')
        elif template:
            question_text = template.prompt

        state.mark_asked_this_turn(targets)
        state.record_answer(question_id, question_text, answer_text, timestamp)

        order = targets + [name for name in self.schema if name not in targets]
        confident = False
        applied = []

        for slot_name in order:
            targeted = slot_name in targets
            if self.schema[slot_name].no_inference and not targeted:
                continue

            context = self._extraction_context(state, slot_name, question_id, question_text, targeted)
            extraction = self._extract(state, slot_name, answer_text, context)
            if extraction is None:
                continue

            update = self.calibrator.calibrate(slot_name, extraction, answer_text, question_id, state)
            if update is None:
                continue

            state.apply_update(update)
            applied.append(slot_name)
            if update.confidence >= self.schema.threshold(slot_name):
                confident = True

        state.register_answer_confidence(confident)
        state.clear_asked_this_turn()
        state.pending_question = None

        logger.info(
            f"Session {state.session_id}: answer to {question_id} updated {applied or 'no slots'} "
            f"(coverage {state.coverage():.2f}, low-confidence streak {state.low_conf_streak})"
        )
        return state

    # ========================
    # Question selection
    # ========================

    def _complete(self, state: SlotState, reason: HaltReason) -> SurveyComplete:
        state.mark_completed(reason.value)
        logger.info(f"Session {state.session_id} halted: {reason.value}")
        return SurveyComplete(
            reason=reason.value,
            ready_slots=state.get_ready_slots(),
            coverage=state.coverage(),
            state=state,
        )

    def next_question(self, slot_state: SlotState) -> Union[NextQuestion, SurveyComplete]:
        """
        Pick the next question or halt.

        Halting is checked twice: first against the previous scoring snapshot
        (state.debug), so an exhausted session stops without rescoring, then
        against the fresh winner.

        Args:
            slot_state: Current state (not modified)

        Returns:
            NextQuestion or SurveyComplete, each carrying the updated state copy
        """
        state = slot_state.copy()

        if state.completed:
            return SurveyComplete(
                reason=state.halt_reason,
                ready_slots=state.get_ready_slots(),
                coverage=state.coverage(),
                state=state,
            )

        fatigue = fatigue_score(state.conversation_history, self.config.fatigue)

        # Look-ahead on the previous scoring snapshot, before any scoring work
        lookahead_eig = float(state.debug.get('top_candidate_eig', NO_SNAPSHOT_EIG))
        decision = self.halting.evaluate(state, lookahead_eig, fatigue)
        if decision.halt:
            return self._complete(state, decision.reason)

        outcome = self.scorer.select(state, self.catalog, fatigue=fatigue)
        state.debug = outcome.debug_snapshot()

        if outcome.degraded:
            state.record_error('embedding', EmbeddingFailure("redundancy check skipped"))

        decision = self.halting.evaluate(state, outcome.top_eig, fatigue)
        if decision.halt:
            return self._complete(state, decision.reason)

        if outcome.winner is None:
            return self._complete(state, HaltReason.NO_SUITABLE_QUESTIONS)

        winner = outcome.winner
        template = winner.template
        embedding = self.analyzer.embed(winner.question_text) if self.analyzer.enabled else None

        state.record_question_asked(
            template.id,
            template.topic,
            winner.question_text,
            embedding=embedding,
            slot_targets=list(template.slot_targets),
        )

        return NextQuestion(
            question_id=template.id,
            text=winner.question_text,
            slot_targets=list(template.slot_targets),
            topic=template.topic,
            score=winner.score,
            eig=winner.eig,
            max_tokens=template.max_tokens,
            state=state,
            debug=dict(state.debug),
        )

    def handle_turn(self, slot_state: SlotState, question_id: str, answer_text: str,
                    timestamp: Optional[str] = None) -> Union[NextQuestion, SurveyComplete]:
        """Ingest an answer, then select the next question"""
        updated = self.ingest_answer(slot_state, question_id, answer_text, timestamp)
        return self.next_question(updated)

    # ========================
    # Status
    # ========================

    def get_status(self, slot_state: SlotState) -> SurveyStatus:
        """Read-only progress report (does not modify the state)"""
        fatigue = fatigue_score(slot_state.conversation_history, self.config.fatigue)
        top_eig = float(slot_state.debug.get('top_candidate_eig', 0.0))
        summary = slot_state.get_completion_summary()

        return SurveyStatus(
            coverage=summary['coverage'],
            weighted_coverage=summary['weighted_coverage'],
            turn=slot_state.turn,
            total_questions=slot_state.total_questions,
            fatigue=fatigue,
            low_conf_streak=slot_state.low_conf_streak,
            ready_slots=slot_state.get_ready_slots(),
            missing_slots=summary['missing_slots'],
            can_complete=self.halting.can_complete(slot_state, fatigue, top_eig),
            completed=slot_state.completed,
            halt_reason=slot_state.halt_reason,
            topic_history=slot_state.topic_history.to_list(),
            template_usage={
                template_id: {'count': usage.count, 'last_turn': usage.last_turn}
                for template_id, usage in slot_state.template_history.items()
            },
        )
