"""Validation rules for metric sample values.

Rules are tagged variants evaluated by ``apply_rules``. The legacy mapping
form (``{"min": 0, "max": 100}``) is converted with ``parse_rules`` and
persisted with ``rule_to_dict`` / ``rule_from_dict``.
"""

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from healthwatch.core.exceptions import ValidationError


@dataclass(frozen=True)
class RangeRule:
    """Numeric value must lie within ``[min, max]`` (either bound optional)."""

    min: float | None = None
    max: float | None = None
    kind: str = "range"


@dataclass(frozen=True)
class EnumRule:
    """Value must be one of ``allowed``."""

    allowed: tuple[Any, ...]
    kind: str = "enum"


@dataclass(frozen=True)
class RegexRule:
    """String value must fully match ``pattern``."""

    pattern: str
    kind: str = "regex"


@dataclass(frozen=True)
class LengthRule:
    """String length must lie within ``[min, max]`` (either bound optional)."""

    min: int | None = None
    max: int | None = None
    kind: str = "length"


@dataclass(frozen=True)
class PredicateRule:
    """Value must satisfy a custom predicate. Not persistable."""

    fn: Callable[[Any], bool]
    description: str = "custom predicate"
    kind: str = "predicate"


ValidationRule = RangeRule | EnumRule | RegexRule | LengthRule | PredicateRule


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check(rule: ValidationRule, value: Any) -> str | None:
    """Return an error message if ``value`` violates ``rule``."""
    match rule:
        case RangeRule(min=low, max=high):
            if not _is_number(value):
                return f"range rule requires a number, got {value!r}"
            if low is not None and value < low:
                return f"value {value!r} is below minimum {low!r}"
            if high is not None and value > high:
                return f"value {value!r} is above maximum {high!r}"
        case EnumRule(allowed=allowed):
            if value not in allowed:
                return f"value {value!r} is not one of {list(allowed)!r}"
        case RegexRule(pattern=pattern):
            if not isinstance(value, str):
                return f"regex rule requires a string, got {value!r}"
            if re.fullmatch(pattern, value) is None:
                return f"value {value!r} does not match {pattern!r}"
        case LengthRule(min=low, max=high):
            if not isinstance(value, str):
                return f"length rule requires a string, got {value!r}"
            if low is not None and len(value) < low:
                return f"value {value!r} is shorter than {low}"
            if high is not None and len(value) > high:
                return f"value {value!r} is longer than {high}"
        case PredicateRule(fn=fn, description=description):
            if not fn(value):
                return f"value {value!r} fails {description}"
    return None


def apply_rules(rules: Iterable[ValidationRule], value: Any) -> None:
    """Evaluate every rule against ``value``.

    Raises:
        ValidationError: Listing every violated rule.
    """
    errors = [msg for rule in rules if (msg := _check(rule, value)) is not None]
    if errors:
        raise ValidationError("; ".join(errors))


def parse_rules(
    rules: Mapping[str, Any] | Iterable[ValidationRule] | None,
) -> tuple[ValidationRule, ...]:
    """Normalize rules given as a mapping or as rule objects.

    Mapping keys: ``min``, ``max``, ``in``, ``regex``, ``min_length``,
    ``max_length`` and ``predicate`` (a callable).

    Raises:
        ValidationError: On unknown keys or malformed parameters.
    """
    if rules is None:
        return ()
    if not isinstance(rules, Mapping):
        parsed = tuple(rules)
        for rule in parsed:
            if not isinstance(
                rule, (RangeRule, EnumRule, RegexRule, LengthRule, PredicateRule)
            ):
                raise ValidationError(f"not a validation rule: {rule!r}")
        return parsed

    unknown = set(rules) - {"min", "max", "in", "regex", "min_length", "max_length", "predicate"}
    if unknown:
        raise ValidationError(f"unknown validation rules: {sorted(unknown)}")

    result: list[ValidationRule] = []
    if "min" in rules or "max" in rules:
        low, high = rules.get("min"), rules.get("max")
        for bound in (low, high):
            if bound is not None and not _is_number(bound):
                raise ValidationError(f"range bound must be numeric, got {bound!r}")
        if low is not None and high is not None and low > high:
            raise ValidationError(f"min {low!r} is greater than max {high!r}")
        result.append(RangeRule(min=low, max=high))
    if "in" in rules:
        allowed = rules["in"]
        if isinstance(allowed, (str, bytes)) or not isinstance(allowed, Iterable):
            raise ValidationError("'in' rule requires a collection of values")
        result.append(EnumRule(allowed=tuple(allowed)))
    if "regex" in rules:
        try:
            re.compile(rules["regex"])
        except (re.error, TypeError) as exc:
            raise ValidationError(f"invalid regex {rules['regex']!r}: {exc}") from exc
        result.append(RegexRule(pattern=rules["regex"]))
    if "min_length" in rules or "max_length" in rules:
        result.append(LengthRule(min=rules.get("min_length"), max=rules.get("max_length")))
    if "predicate" in rules:
        if not callable(rules["predicate"]):
            raise ValidationError("'predicate' rule requires a callable")
        result.append(PredicateRule(fn=rules["predicate"]))
    return tuple(result)


def rule_to_dict(rule: ValidationRule) -> dict[str, Any]:
    """Serialize a rule for storage.

    Raises:
        ValidationError: For predicate rules, which cannot be persisted.
    """
    match rule:
        case RangeRule(min=low, max=high):
            return {"kind": "range", "min": low, "max": high}
        case EnumRule(allowed=allowed):
            return {"kind": "enum", "allowed": list(allowed)}
        case RegexRule(pattern=pattern):
            return {"kind": "regex", "pattern": pattern}
        case LengthRule(min=low, max=high):
            return {"kind": "length", "min": low, "max": high}
    raise ValidationError(f"rule {rule!r} cannot be persisted")


def rule_from_dict(data: Mapping[str, Any]) -> ValidationRule:
    """Inverse of ``rule_to_dict``."""
    kind = data.get("kind")
    if kind == "range":
        return RangeRule(min=data.get("min"), max=data.get("max"))
    if kind == "enum":
        return EnumRule(allowed=tuple(data.get("allowed", ())))
    if kind == "regex":
        return RegexRule(pattern=data["pattern"])
    if kind == "length":
        return LengthRule(min=data.get("min"), max=data.get("max"))
    raise ValidationError(f"unknown rule kind {kind!r}")
