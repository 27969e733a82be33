"""
askIf predicate DSL - declarative eligibility conditions for templates

Templates carry an `ask_if` expression (JSON) that is evaluated against
the session's SlotState. Expressions are validated once at catalog load,
so evaluation never meets an unknown operator or slot.

Supported operators:
    - Logical: all, any, not
    - Slot status: needs_question, filled, below_threshold, has_value
    - Confidence: confidence_gte, confidence_lt
    - Value: eq, contains_lower, min_items
    - Session: completed_at_least, survey_type

Semantics:
    - Empty expression: True (no constraints)
    - Empty "all": True (vacuous truth)
    - Empty "any": False (no conditions met)
    - Unset slot value: value operators evaluate to False
    - below_threshold: slot has some signal but is not yet filled
    - survey_type "feedback": matches the whole feedback family

Examples:
    {"needs_question": "Stakeholders"}
    {"all": [{"filled": "ProblemStatement"}, {"not": {"filled": "Risks"}}]}
    {"contains_lower": ["CurrentProcess", "manual"]}
"""

from typing import Any, Dict, Iterable, List


LOGICAL_OPS = ("all", "any", "not")

# Operators whose argument is a bare slot name
SLOT_OPS = ("needs_question", "filled", "below_threshold", "has_value")

# Operators whose argument is [slot_name, operand]
PAIR_OPS = ("confidence_gte", "confidence_lt", "eq", "contains_lower", "min_items")

SESSION_OPS = ("completed_at_least", "survey_type")

OPERATORS = LOGICAL_OPS + SLOT_OPS + PAIR_OPS + SESSION_OPS


def validate(expr: Any, slot_names: Iterable[str], location: str = "ask_if") -> List[str]:
    """
    Check an expression without evaluating it.

    Args:
        expr: Predicate expression (dict) or None
        slot_names: Slots known to the schema
        location: Prefix for error messages

    Returns:
        list: Problems found (empty if valid)
    """
    known = set(slot_names)
    errors: List[str] = []
    _validate(expr, known, location, errors)
    return errors


def _validate(expr: Any, known: set, location: str, errors: List[str]) -> None:
    if expr is None or expr == {}:
        return
    if not isinstance(expr, dict):
        errors.append(f"{location}: expression must be an object, got {type(expr).__name__}")
        return
    if len(expr) != 1:
        errors.append(f"{location}: expression must have exactly one operator, got {sorted(expr)}")
        return

    op, arg = next(iter(expr.items()))

    if op not in OPERATORS:
        errors.append(f"{location}: unknown operator '{op}'")
        return

    if op in ("all", "any"):
        if not isinstance(arg, list):
            errors.append(f"{location}: '{op}' takes a list")
            return
        for i, sub in enumerate(arg):
            _validate(sub, known, f"{location}.{op}[{i}]", errors)
        return

    if op == "not":
        _validate(arg, known, f"{location}.not", errors)
        return

    if op in SLOT_OPS:
        if arg not in known:
            errors.append(f"{location}: '{op}' references unknown slot '{arg}'")
        return

    if op in PAIR_OPS:
        if not isinstance(arg, list) or len(arg) != 2:
            errors.append(f"{location}: '{op}' takes [slot, operand]")
            return
        slot_name, operand = arg
        if slot_name not in known:
            errors.append(f"{location}: '{op}' references unknown slot '{slot_name}'")
        if op in ("confidence_gte", "confidence_lt", "min_items") and not isinstance(operand, (int, float)):
            errors.append(f"{location}: '{op}' operand must be numeric")
        if op == "contains_lower" and not isinstance(operand, str):
            errors.append(f"{location}: 'contains_lower' operand must be a string")
        return

    if op == "completed_at_least" and not isinstance(arg, int):
        errors.append(f"{location}: 'completed_at_least' takes an integer")
    if op == "survey_type" and not isinstance(arg, (str, list)):
        errors.append(f"{location}: 'survey_type' takes a name or list of names")


def evaluate(expr: Any, slot_state) -> bool:
    """
    Evaluate a validated expression against slot state.

    Args:
        expr: Predicate expression (dict) or None
        slot_state: Current SlotState (read only)

    Returns:
        bool: Evaluation result

    Raises:
        ValueError: If an unknown operator is encountered
    """
    if not expr:
        return True

    op, arg = next(iter(expr.items()))

    if op == "all":
        return all(evaluate(sub, slot_state) for sub in arg)

    if op == "any":
        if not arg:
            return False
        return any(evaluate(sub, slot_state) for sub in arg)

    if op == "not":
        return not evaluate(arg, slot_state)

    if op == "needs_question":
        return slot_state.needs_question(arg)

    if op == "filled":
        return slot_state.is_filled(arg)

    if op == "below_threshold":
        slot = slot_state.slots[arg]
        return slot.confidence > 0 and slot_state.needs_question(arg)

    if op == "has_value":
        return slot_state.slots[arg].has_value()

    if op == "confidence_gte":
        slot_name, threshold = arg
        return slot_state.slots[slot_name].confidence >= float(threshold)

    if op == "confidence_lt":
        slot_name, threshold = arg
        return slot_state.slots[slot_name].confidence < float(threshold)

    if op == "eq":
        slot_name, expected = arg
        value = slot_state.slots[slot_name].value
        if value is None:
            return False
        return value == expected

    if op == "contains_lower":
        slot_name, substring = arg
        value = slot_state.slots[slot_name].value
        if isinstance(value, list):
            return any(substring.lower() in str(item).lower() for item in value)
        if not isinstance(value, str):
            return False
        return substring.lower() in value.lower()

    if op == "min_items":
        slot_name, count = arg
        value = slot_state.slots[slot_name].value
        if not isinstance(value, list):
            return False
        return len(value) >= count

    if op == "completed_at_least":
        filled = sum(1 for name in slot_state.slots if slot_state.is_filled(name))
        return filled >= arg

    if op == "survey_type":
        wanted = arg if isinstance(arg, list) else [arg]
        current = slot_state.survey_type
        for name in wanted:
            if name == "feedback" and current.is_feedback:
                return True
            if current.value == name:
                return True
        return False

    raise ValueError(f"Unknown predicate operator: {op}")


def describe(expr: Dict[str, Any]) -> str:
    """Short human-readable form, used in rejection reasons"""
    if not expr:
        return "always"
    op, arg = next(iter(expr.items()))
    if op in ("all", "any"):
        return f"{op}(" + ", ".join(describe(sub) for sub in arg) + ")"
    if op == "not":
        return f"not({describe(arg)})"
    return f"{op}({arg})"
