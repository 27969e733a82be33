"""
Template Catalog - question templates and their static validation

Responsibilities:
- Define QuestionTemplate (prompt, slot targets, gating rules)
- Load templates from JSON and validate them against the slot schema
- Render prompt placeholders from slot values

Design principles:
- Templates are immutable after load
- Validation is fail-fast and aggregate: every problem in one SchemaViolation
- askIf is declarative data (see predicates), never code

Validation checks:
- Every template has an id, a prompt and at least one slot target
- No duplicate ids
- All targets and dependencies exist in the schema
- No dependency is also a target of the same template
- askIf expressions use known operators and known slots
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from survey_engine.config import TemplateDefaults
from survey_engine.core import predicates
from survey_engine.core.slot_schema import SlotSchema
from survey_engine.exceptions import SchemaViolation

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

# Characters of each slot value shown in a {summary} placeholder
SUMMARY_VALUE_CHARS = 80


@dataclass(frozen=True)
class QuestionTemplate:
    """
    One askable question.

    Attributes:
        id: Unique template id (also the final tie-breaker)
        prompt: Question text, may contain {SlotName} or {summary}
        slot_targets: Slots an answer to this question may fill
        topic: Grouping used by the topic repetition guard
        priority: Base score
        dependencies: Slots that must be filled before this is eligible
        cooldown_turns: Turns before the template may be asked again
        max_asks_per_slot: Cap on uses (None = unlimited)
        ask_if: Predicate expression (None = always)
        max_tokens: Suggested answer length hint for the caller
    """
    id: str
    prompt: str
    slot_targets: Tuple[str, ...]
    topic: Optional[str] = None
    priority: float = 5.0
    dependencies: Tuple[str, ...] = ()
    cooldown_turns: int = 2
    max_asks_per_slot: Optional[int] = 2
    ask_if: Optional[Dict[str, Any]] = field(default=None, hash=False, compare=False)
    max_tokens: Optional[int] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], defaults: Optional[TemplateDefaults] = None) -> "QuestionTemplate":
        """Build a template from a JSON entry ('scope' is accepted for 'topic')"""
        defaults = defaults or TemplateDefaults()
        max_asks = raw.get("max_asks_per_slot", defaults.max_asks_per_slot)
        return cls(
            id=raw["id"],
            prompt=raw["prompt"],
            slot_targets=tuple(raw.get("slot_targets", ())),
            topic=raw.get("topic", raw.get("scope")),
            priority=float(raw.get("priority", defaults.priority)),
            dependencies=tuple(raw.get("dependencies", ())),
            cooldown_turns=int(raw.get("cooldown_turns", defaults.cooldown_turns)),
            max_asks_per_slot=None if max_asks is None else int(max_asks),
            ask_if=raw.get("ask_if"),
            max_tokens=raw.get("max_tokens"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "slot_targets": list(self.slot_targets),
            "topic": self.topic,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "cooldown_turns": self.cooldown_turns,
            "max_asks_per_slot": self.max_asks_per_slot,
            "ask_if": self.ask_if,
            "max_tokens": self.max_tokens,
        }


class TemplateCatalog:
    """Validated, ordered collection of QuestionTemplates"""

    def __init__(self, templates: List[QuestionTemplate], schema: SlotSchema):
        """
        Validate templates against the schema.

        Raises:
            SchemaViolation: If any template is invalid (all problems listed)
        """
        self.schema = schema
        self._templates = list(templates)
        self._by_id = {t.id: t for t in self._templates}
        self._validate()

        logger.info(
            f"Template catalog loaded: {len(self._templates)} templates "
            f"covering {len(self.targeted_slots())}/{len(schema)} slots"
        )

    # ========================
    # Validation
    # ========================

    def _validate(self) -> None:
        errors = []
        if not self._templates:
            errors.append("Catalog declares no templates")

        seen = set()
        for i, template in enumerate(self._templates):
            location = f"template '{template.id}'" if template.id else f"template index {i}"

            if not template.id:
                errors.append(f"{location} missing 'id'")
            elif template.id in seen:
                errors.append(f"Duplicate template id '{template.id}'")
            seen.add(template.id)

            if not template.prompt or not template.prompt.strip():
                errors.append(f"{location} has an empty prompt")

            if not template.slot_targets:
                errors.append(f"{location} has no slot_targets")

            for slot_name in template.slot_targets:
                if slot_name not in self.schema:
                    errors.append(f"{location} targets unknown slot '{slot_name}'")

            for slot_name in template.dependencies:
                if slot_name not in self.schema:
                    errors.append(f"{location} depends on unknown slot '{slot_name}'")
                if slot_name in template.slot_targets:
                    errors.append(f"{location} depends on its own target '{slot_name}'")

            if template.cooldown_turns < 0:
                errors.append(f"{location} has negative cooldown_turns")

            if template.max_asks_per_slot is not None and template.max_asks_per_slot < 1:
                errors.append(f"{location} has max_asks_per_slot < 1")

            errors.extend(predicates.validate(template.ask_if, self.schema, f"{location} ask_if"))

            for placeholder in PLACEHOLDER_PATTERN.findall(template.prompt or ""):
                if placeholder != "summary" and placeholder not in self.schema:
                    errors.append(f"{location} prompt references unknown slot '{{{placeholder}}}'")

        if errors:
            raise SchemaViolation(errors)

    # ========================
    # Access
    # ========================

    def __iter__(self) -> Iterator[QuestionTemplate]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._by_id

    def get(self, template_id: str) -> Optional[QuestionTemplate]:
        return self._by_id.get(template_id)

    def targeted_slots(self) -> List[str]:
        targeted = []
        for template in self._templates:
            for slot_name in template.slot_targets:
                if slot_name not in targeted:
                    targeted.append(slot_name)
        return targeted

    # ========================
    # Loading
    # ========================

    @classmethod
    def from_dict(cls, data: Any, schema: SlotSchema,
                  defaults: Optional[TemplateDefaults] = None) -> "TemplateCatalog":
        """
        Build catalog from {'templates': [...]} or a bare list.

        Raises:
            SchemaViolation: On malformed entries or failed validation
        """
        entries = data.get("templates") if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise SchemaViolation("Template catalog must be a list of template objects")

        templates = []
        errors = []
        for i, entry in enumerate(entries):
            if not isinstance(entry, dict):
                errors.append(f"template index {i} must be an object")
                continue
            missing = [key for key in ("id", "prompt") if key not in entry]
            if missing:
                errors.append(f"template index {i} missing {missing}")
                continue
            try:
                templates.append(QuestionTemplate.from_dict(entry, defaults))
            except (TypeError, ValueError) as e:
                errors.append(f"template '{entry['id']}': {e}")

        if errors:
            raise SchemaViolation(errors)

        return cls(templates, schema)

    @classmethod
    def from_file(cls, path: str, schema: SlotSchema,
                  defaults: Optional[TemplateDefaults] = None) -> "TemplateCatalog":
        """
        Load catalog from a JSON file.

        Raises:
            FileNotFoundError: If file doesn't exist
            SchemaViolation: If catalog is invalid
        """
        catalog_path = Path(path)
        if not catalog_path.exists():
            raise FileNotFoundError(f"Template catalog not found: {path}")

        with open(catalog_path, 'r') as f:
            data = json.load(f)

        return cls.from_dict(data, schema, defaults)


# ========================
# Prompt rendering
# ========================

def _format_value(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(item) for item in value)
    return str(value)


def _truncate(text: str, limit: int = SUMMARY_VALUE_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3].rstrip() + "..."


def build_summary(slot_state) -> str:
    """One-line recap of filled slots, for {summary} placeholders"""
    ready = slot_state.get_ready_slots()
    if not ready:
        return "nothing confirmed yet"
    parts = [f"{name}: {_truncate(_format_value(value))}" for name, value in ready.items()]
    return "; ".join(parts)


def render_prompt(template: QuestionTemplate, slot_state) -> str:
    """
    Substitute {SlotName} and {summary} placeholders.

    Slots without a value render as an empty string.
    """
    def substitute(match):
        key = match.group(1)
        if key == "summary":
            return build_summary(slot_state)
        slot = slot_state.slots.get(key)
        if slot is None or not slot.has_value():
            return ""
        return _format_value(slot.value)

    return PLACEHOLDER_PATTERN.sub(substitute, template.prompt)
