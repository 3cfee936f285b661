"""Duration parsing for aggregation windows and intervals."""

import math
import re

from healthwatch.core.exceptions import ValidationError

_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0, "w": 604800.0}
_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d|w)\s*$")


def parse_duration(value: float | int | str) -> float:
    """Convert a duration to seconds.

    Args:
        value: Seconds as a number, or a string such as "30s", "5m", "1h",
            "24h", "1d" or "250ms".

    Returns:
        Duration in seconds (always > 0).

    Raises:
        ValidationError: If the value is malformed, zero or negative.
    """
    if isinstance(value, bool):
        raise ValidationError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if match is None:
            raise ValidationError(f"invalid duration {value!r}")
        seconds = float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    else:
        raise ValidationError(f"invalid duration {value!r}")
    if not math.isfinite(seconds) or seconds <= 0:
        raise ValidationError(f"duration must be positive, got {value!r}")
    return seconds
