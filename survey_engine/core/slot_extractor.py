"""
LLM Slot Extractor - extract one slot's value from a free-text answer

Responsibilities:
- Build extraction prompts (slot description, few-shot guidance, current value)
- Call the LLM for a JSON {value, confidence, evidence_spans, reasoning}
- Normalise the result to the slot kind (text or list)
- Short-circuit clearly unclear answers without an LLM call

Design principles:
- Implements the extraction service interface:
  extract(slot_description, answer_text, context) -> ExtractionResult
- Generation and parse errors raise ExtractionFailure (the Orchestrator
  degrades that slot to "no signal" and continues)
- Confidence is clipped to [0, 1]; calibration happens downstream
"""

import json
import logging
from typing import Any, Dict, List, Optional

from survey_engine.contracts import ExtractionResult
from survey_engine.exceptions import ExtractionFailure
from survey_engine.utils.json_repair import parse_json_object

logger = logging.getLogger(__name__)

# Pure unclear response patterns (early return, no LLM call)
UNCLEAR_PATTERNS = [
    "i don't know",
    "i dont know",
    "i'm not sure",
    "not sure",
    "no idea",
    "unsure",
    "n/a",
]

# Answers at or below this length that match a pattern are treated as unclear
UNCLEAR_MAX_CHARS = 40

FEW_SHOT_EXAMPLES = {
    "text": {
        "answer": "Our sprint planning takes 4 hours every 2 weeks and people often miss dependencies, causing delays.",
        "extraction": {
            "value": "Sprint planning is slow (4 hours biweekly) and missed dependencies cause delays",
            "confidence": 0.9,
            "evidence_spans": ["4 hours every 2 weeks", "miss dependencies", "causing delays"],
            "reasoning": "Specific timeframe and clear cause-effect relationship",
        },
    },
    "list": {
        "answer": "This affects product managers, the engineering leads, and customer support who handle complaints.",
        "extraction": {
            "value": ["Product managers", "Engineering leads", "Customer support"],
            "confidence": 0.9,
            "evidence_spans": ["product managers", "engineering leads", "customer support"],
            "reasoning": "Roles named explicitly",
        },
    },
}


class LLMSlotExtractor:
    """Extraction service backed by a HuggingFaceClient-compatible model"""

    def __init__(self, hf_client, temperature: float = 0.0, max_tokens: int = 256) -> None:
        """
        Args:
            hf_client: Object with generate_json(prompt, max_tokens, temperature)
            temperature: LLM sampling temperature
            max_tokens: Max tokens to generate

        Raises:
            TypeError: If hf_client has no generate_json() method
            RuntimeError: If hf_client reports its model is not loaded
        """
        if not callable(getattr(hf_client, 'generate_json', None)):
            raise TypeError("hf_client must have callable generate_json() method")

        is_loaded = getattr(hf_client, 'is_loaded', None)
        if callable(is_loaded) and not is_loaded():
            raise RuntimeError("HuggingFace client model not loaded")

        self.hf_client = hf_client
        self.temperature = temperature
        self.max_tokens = max_tokens

        logger.info(f"LLM slot extractor initialized (temp={temperature}, max_tokens={max_tokens})")

    def extract(self, slot_description: str, answer_text: str,
                context: Optional[Dict[str, Any]] = None) -> ExtractionResult:
        """
        Extract a slot value from an answer.

        Args:
            slot_description: What the slot holds
            answer_text: Respondent's raw answer
            context: Optional {'slot_name', 'slot_kind', 'question', 'current_value', ...}

        Returns:
            ExtractionResult (value None, confidence 0 when nothing relevant)

        Raises:
            ExtractionFailure: On generation or parse error
        """
        context = context or {}
        slot_name = context.get('slot_name', 'slot')
        kind = context.get('slot_kind', 'text')

        if self._is_pure_unclear(answer_text):
            logger.info(f"[{slot_name}] Pure unclear answer: '{answer_text}'")
            return ExtractionResult.empty(reasoning="unclear answer")

        prompt = self._build_prompt(slot_description, answer_text, context)

        try:
            raw = self.hf_client.generate_json(
                prompt=prompt,
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except Exception as e:
            raise ExtractionFailure(f"[{slot_name}] generation failed: {e}") from e

        try:
            parsed = parse_json_object(raw)
        except ValueError as e:
            raise ExtractionFailure(f"[{slot_name}] unparseable output: {e}") from e

        return self._to_result(parsed, kind)

    def _is_pure_unclear(self, answer: str) -> bool:
        normalized = (answer or "").lower().strip()
        if not normalized:
            return True
        if len(normalized) > UNCLEAR_MAX_CHARS:
            return False
        return any(pattern in normalized for pattern in UNCLEAR_PATTERNS)

    def _to_result(self, parsed: Dict[str, Any], kind: str) -> ExtractionResult:
        value = parsed.get('value')

        try:
            confidence = float(parsed.get('confidence', 0.0) or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        confidence = max(0.0, min(1.0, confidence))

        if kind == 'list':
            value = self._normalize_list(value)
        elif isinstance(value, list):
            value = "; ".join(str(item) for item in value if str(item).strip()) or None
        elif value is not None:
            value = str(value).strip() or None

        if value is None:
            confidence = 0.0

        spans = parsed.get('evidence_spans') or []
        if not isinstance(spans, list):
            spans = [spans]

        return ExtractionResult(
            value=value,
            confidence=confidence,
            evidence_spans=tuple(str(s) for s in spans),
            reasoning=parsed.get('reasoning'),
        )

    @staticmethod
    def _normalize_list(value: Any) -> Optional[List[str]]:
        if value is None:
            return None
        if isinstance(value, str):
            items = [part.strip() for part in value.replace(';', ',').split(',')]
        elif isinstance(value, list):
            items = [str(item).strip() for item in value]
        else:
            items = [str(value).strip()]
        items = [item for item in items if item]
        return items or None

    def _build_prompt(self, slot_description: str, answer_text: str, context: Dict[str, Any]) -> str:
        """
        Build extraction prompt for the LLM

        Chat formatting is applied by the client, this builds the content only.
        """
        slot_name = context.get('slot_name', 'slot')
        kind = context.get('slot_kind', 'text')
        example = FEW_SHOT_EXAMPLES.get(kind, FEW_SHOT_EXAMPLES['text'])
        value_format = '["item", "item"]' if kind == 'list' else '"extracted text"'

        prompt = f"""You extract structured facts from survey answers.

Slot: {slot_name}
Slot description: {slot_description}
Value type: {kind}
"""
        if context.get('question'):
            prompt += f'Question asked: "{context["question"]}"\n'

        if context.get('current_value'):
            prompt += f"Current value: {json.dumps(context['current_value'])}\n"

        prompt += f"""
Example answer: "{example['answer']}"
Example extraction: {json.dumps(example['extraction'])}

Answer: "{answer_text}"

Extract the {slot_name} slot from the answer.
Return ONLY valid JSON in this format:
{{"value": {value_format}, "confidence": 0.0, "evidence_spans": ["quote"], "reasoning": "short"}}

Rules:
- Only extract what the answer actually says about this slot
- If the answer says nothing relevant, return: {{"value": null, "confidence": 0.0}}
- confidence is 0.0-1.0: vague statements below 0.4, specific details above 0.8
- evidence_spans must be direct quotes from the answer
"""
        return prompt
