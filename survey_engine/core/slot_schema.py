"""
Slot Schema - static declaration of the facts a session collects

Responsibilities:
- Define SlotSpec (one fact: priority, threshold, kind, description)
- Load and validate a schema from JSON or dict
- Resolve the minimum-confidence threshold per slot

Design principles:
- Immutable after load (frozen dataclasses, read-only mapping)
- Fail fast: every problem found is reported at once (SchemaViolation)
- Priority-driven defaults when a slot has no explicit threshold
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

from survey_engine.exceptions import SchemaViolation

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    OPTIONAL = "optional"


class SlotKind(str, Enum):
    TEXT = "text"
    LIST = "list"


# Threshold used when a slot declares no min_confidence
DEFAULT_THRESHOLDS = {
    Priority.CRITICAL: 0.75,
    Priority.IMPORTANT: 0.70,
    Priority.OPTIONAL: 0.60,
}

# Weight of a slot in weighted coverage
PRIORITY_WEIGHTS = {
    Priority.CRITICAL: 3.0,
    Priority.IMPORTANT: 2.0,
    Priority.OPTIONAL: 1.0,
}

# Legacy schema spellings
_KIND_ALIASES = {"string": "text", "array": "list", "object": "text"}
_PRIORITY_ALIASES = {"nice": "optional"}

DEFAULT_MIN_ITEMS = 2
DEFAULT_MIN_CHARS = 50


@dataclass(frozen=True)
class SlotSpec:
    """
    Schema entry for one slot.

    Attributes:
        name: Unique slot key (e.g. 'ProblemStatement')
        description: Text fed to the extraction service
        priority: critical | important | optional
        min_confidence: Threshold at which the slot counts as filled
                        (priority default when None)
        required: Counts towards coverage
        kind: text (scalar) or list (values are unioned)
        no_inference: Only accept values from a question that targets this slot
        depth: Designated depth slot for the completion check
        min_items: Items that make a list slot substantive
        min_chars: Characters that make a text slot substantive
    """
    name: str
    description: str
    priority: Priority = Priority.IMPORTANT
    min_confidence: Optional[float] = None
    required: bool = True
    kind: SlotKind = SlotKind.TEXT
    no_inference: bool = False
    depth: bool = False
    min_items: int = DEFAULT_MIN_ITEMS
    min_chars: int = DEFAULT_MIN_CHARS

    def __post_init__(self):
        # Accept plain strings for the enum fields; resolve the default threshold
        object.__setattr__(self, "priority", Priority(self.priority))
        object.__setattr__(self, "kind", SlotKind(self.kind))
        if self.min_confidence is None:
            object.__setattr__(self, "min_confidence", DEFAULT_THRESHOLDS[self.priority])

    @property
    def is_critical(self) -> bool:
        return self.priority is Priority.CRITICAL

    @property
    def is_list(self) -> bool:
        return self.kind is SlotKind.LIST

    @property
    def weight(self) -> float:
        return PRIORITY_WEIGHTS[self.priority]

    def is_substantive(self, value: Any) -> bool:
        """Depth check: enough items (list) or enough characters (text)"""
        if value is None:
            return False
        if isinstance(value, (list, tuple)):
            return len(value) >= self.min_items
        return len(str(value).strip()) >= self.min_chars

    @classmethod
    def from_dict(cls, name: str, raw: Dict[str, Any]) -> "SlotSpec":
        """
        Build a SlotSpec from a JSON entry.

        Accepts both the current keys and the legacy ones ('type',
        'min_confidence', priority 'nice').

        Raises:
            ValueError: On invalid priority, kind or threshold
        """
        priority_raw = str(raw.get("priority", "important")).lower()
        priority = Priority(_PRIORITY_ALIASES.get(priority_raw, priority_raw))

        kind_raw = str(raw.get("kind", raw.get("type", "text"))).lower()
        kind = SlotKind(_KIND_ALIASES.get(kind_raw, kind_raw))

        min_conf = raw.get("min_confidence", raw.get("minConfidence"))
        if min_conf is None:
            min_conf = DEFAULT_THRESHOLDS[priority]
        min_conf = float(min_conf)
        if not 0.0 <= min_conf <= 1.0:
            raise ValueError(f"min_confidence must be within [0, 1], got {min_conf}")

        return cls(
            name=name,
            description=raw.get("description", name),
            priority=priority,
            min_confidence=min_conf,
            required=bool(raw.get("required", True)),
            kind=kind,
            no_inference=bool(raw.get("no_inference", False)),
            depth=bool(raw.get("depth", False)),
            min_items=int(raw.get("min_items", DEFAULT_MIN_ITEMS)),
            min_chars=int(raw.get("min_chars", DEFAULT_MIN_CHARS)),
        )


class SlotSchema(Mapping):
    """Immutable, ordered mapping of slot name -> SlotSpec"""

    def __init__(self, specs: List[SlotSpec], name: str = "default", version: str = "1"):
        errors = []
        by_name: Dict[str, SlotSpec] = {}
        for spec in specs:
            if spec.name in by_name:
                errors.append(f"Duplicate slot '{spec.name}'")
            by_name[spec.name] = spec
        if not by_name:
            errors.append("Schema declares no slots")
        if errors:
            raise SchemaViolation(errors)

        self._specs = MappingProxyType(by_name)
        self.name = name
        self.version = version

    def __getitem__(self, slot_name: str) -> SlotSpec:
        return self._specs[slot_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def threshold(self, slot_name: str) -> float:
        return self._specs[slot_name].min_confidence

    def required_slots(self) -> List[str]:
        return [name for name, spec in self._specs.items() if spec.required]

    def critical_slots(self) -> List[str]:
        return [name for name, spec in self._specs.items() if spec.is_critical]

    def depth_slots(self) -> List[str]:
        return [name for name, spec in self._specs.items() if spec.depth]

    def fingerprint(self) -> List[str]:
        """Sorted slot names, used to check a snapshot belongs to this schema"""
        return sorted(self._specs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlotSchema":
        """
        Build schema from dict.

        Accepts either {'slots': {...}, 'name': ..., 'version': ...}
        or a bare {slot_name: entry} mapping.

        Raises:
            SchemaViolation: If any entry is invalid
        """
        slots_raw = data.get("slots", data) if isinstance(data, dict) else None
        if not isinstance(slots_raw, dict):
            raise SchemaViolation("Schema must be a mapping of slot entries")

        specs = []
        errors = []
        for slot_name, entry in slots_raw.items():
            if not isinstance(entry, dict):
                errors.append(f"Slot '{slot_name}' entry must be an object")
                continue
            try:
                specs.append(SlotSpec.from_dict(slot_name, entry))
            except (TypeError, ValueError) as e:
                errors.append(f"Slot '{slot_name}': {e}")

        if errors:
            raise SchemaViolation(errors)

        if "slots" in data:
            return cls(specs, name=data.get("name", "default"), version=str(data.get("version", "1")))
        return cls(specs)


def load_schema(schema_path: str) -> SlotSchema:
    """
    Load slot schema from a JSON file.

    Raises:
        FileNotFoundError: If schema doesn't exist
        SchemaViolation: If schema is invalid
    """
    path = Path(schema_path)
    if not path.exists():
        raise FileNotFoundError(f"Slot schema not found: {schema_path}")

    with open(path, 'r') as f:
        data = json.load(f)

    schema = SlotSchema.from_dict(data)
    logger.info(
        f"Slot schema '{schema.name}' v{schema.version} loaded: "
        f"{len(schema)} slots, {len(schema.critical_slots())} critical"
    )
    return schema

