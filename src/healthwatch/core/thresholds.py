"""Threshold comparisons and severity classification.

Pure functions and immutable values only; no I/O.
"""

import operator
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from healthwatch.core.exceptions import ValidationError
from healthwatch.core.models import AlertLevel, HealthStatus

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

_COMPARISON_PATTERN = re.compile(
    r"^\s*(?:value\s*)?(>=|<=|==|!=|>|<)\s*([-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?|true|false)\s*$",
    re.IGNORECASE,
)

# Checked in this order; the first matching level wins.
SEVERITY_ORDER = (AlertLevel.CRITICAL, AlertLevel.WARNING)


@dataclass(frozen=True)
class Comparison:
    """``value <operator> threshold``.

    Attributes:
        operator: One of >, >=, <, <=, ==, !=.
        threshold: Right-hand operand. Booleans compare as 1.0 / 0.0.
    """

    operator: str
    threshold: float

    def __post_init__(self) -> None:
        if self.operator not in _OPERATORS:
            raise ValidationError(f"unknown comparison operator {self.operator!r}")

    @classmethod
    def parse(cls, expression: "str | Comparison") -> "Comparison":
        """Parse expressions such as "> 500", "value >= 0.9" or "== false"."""
        if isinstance(expression, Comparison):
            return expression
        if not isinstance(expression, str):
            raise ValidationError(f"invalid comparison {expression!r}")
        match = _COMPARISON_PATTERN.match(expression)
        if match is None:
            raise ValidationError(f"invalid comparison {expression!r}")
        op, raw = match.groups()
        if raw.lower() in ("true", "false"):
            threshold = 1.0 if raw.lower() == "true" else 0.0
        else:
            threshold = float(raw)
        return cls(operator=op, threshold=threshold)

    def matches(self, value: float | bool) -> bool:
        return _OPERATORS[self.operator](float(value), self.threshold)

    def __str__(self) -> str:
        return f"value {self.operator} {self.threshold:g}"


@dataclass(frozen=True)
class ThresholdSet:
    """Comparisons per alert level, evaluated in descending severity."""

    levels: tuple[tuple[AlertLevel, Comparison], ...]

    @classmethod
    def from_mapping(
        cls, thresholds: "Mapping[str, str | Comparison] | ThresholdSet | Comparison"
    ) -> "ThresholdSet":
        """Build from ``{"critical": "> 100", "warning": "> 50"}``.

        A bare Comparison (or expression string) is treated as a warning
        threshold.

        Raises:
            ValidationError: On unknown levels or malformed comparisons.
        """
        if isinstance(thresholds, ThresholdSet):
            return thresholds
        if isinstance(thresholds, (Comparison, str)):
            return cls(levels=((AlertLevel.WARNING, Comparison.parse(thresholds)),))
        parsed: dict[AlertLevel, Comparison] = {}
        for level, expression in thresholds.items():
            try:
                alert_level = AlertLevel(level)
            except ValueError as exc:
                raise ValidationError(f"unknown threshold level {level!r}") from exc
            if alert_level not in SEVERITY_ORDER:
                raise ValidationError(f"threshold level {level!r} cannot classify a breach")
            parsed[alert_level] = Comparison.parse(expression)
        return cls(
            levels=tuple((lvl, parsed[lvl]) for lvl in SEVERITY_ORDER if lvl in parsed)
        )

    def classify(self, value: float | bool) -> AlertLevel | None:
        """Return the most severe matching level, or None when nothing matches."""
        for level, comparison in self.levels:
            if comparison.matches(value):
                return level
        return None

    def comparison_for(self, level: AlertLevel) -> Comparison | None:
        for lvl, comparison in self.levels:
            if lvl == level:
                return comparison
        return None

    def __bool__(self) -> bool:
        return bool(self.levels)


_STATUS_RANK = {
    HealthStatus.OK: 0,
    HealthStatus.UNKNOWN: 1,
    HealthStatus.WARNING: 2,
    HealthStatus.CRITICAL: 3,
}


def worst_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Most severe status: critical > warning > unknown > ok (ok when empty)."""
    return max(statuses, key=_STATUS_RANK.__getitem__, default=HealthStatus.OK)
