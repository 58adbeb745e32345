"""Semantic version comparison and advisory range checks.

Versions are compared on their numeric segments only. Pre-release and build
qualifiers are stripped before comparing; they are not ordered.
"""

import logging
import operator
import re

logger = logging.getLogger(__name__)

_CONDITION_PATTERN = re.compile(r"^(<=|>=|<|>|=)?\s*(\S+)$")

_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "=": operator.eq,
}


class InvalidVersionError(ValueError):
    """Raised when a version or range string cannot be parsed."""


def parse_version(version: str) -> tuple[int, ...]:
    """Parse a version string into its numeric segments.

    Args:
        version: Version such as "4.17.21", "v2.0" or "1.0.0-beta.1".

    Returns:
        Tuple of integer segments, e.g. (4, 17, 21).

    Raises:
        InvalidVersionError: If a segment is not numeric.
    """
    core = version.strip().lstrip("=v").split("+", 1)[0].split("-", 1)[0]
    parts = core.split(".")
    if not core or not all(part.isdigit() for part in parts):
        raise InvalidVersionError(f"Invalid version: {version!r}")
    return tuple(int(part) for part in parts)


def is_prerelease(version: str) -> bool:
    """Return True if the version carries a pre-release qualifier."""
    return "-" in version.split("+", 1)[0]


def compare(a: str, b: str) -> int:
    """Compare two versions.

    Missing segments count as zero, so "5" == "5.0.0".

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b.
    """
    left = parse_version(a)
    right = parse_version(b)
    width = max(len(left), len(right))
    left += (0,) * (width - len(left))
    right += (0,) * (width - len(right))
    return (left > right) - (left < right)


def satisfies_range(version: str, version_range: str) -> bool:
    """Check whether a version falls inside a vulnerable version range.

    Supports single conditions ("<8.3.5", "<= 8.3.4", "=1.0.0", "1.0.0"),
    comma-separated conjunctions (">= 1.0.0, < 2.0.0") and "||" alternatives.

    A range or version that cannot be parsed satisfies the range, so an
    unreadable advisory is still reported.
    """
    try:
        return any(
            _satisfies_all(version, alternative)
            for alternative in version_range.split("||")
        )
    except InvalidVersionError as e:
        logger.debug(f"Treating {version} as inside range {version_range!r}: {e}")
        return True


def _satisfies_all(version: str, conjunction: str) -> bool:
    conditions = [condition.strip() for condition in conjunction.split(",")]
    if not all(conditions):
        raise InvalidVersionError(f"Empty condition in range: {conjunction!r}")
    return all(_satisfies_condition(version, condition) for condition in conditions)


def _satisfies_condition(version: str, condition: str) -> bool:
    match = _CONDITION_PATTERN.match(condition)
    if not match:
        raise InvalidVersionError(f"Invalid range condition: {condition!r}")
    op, target = match.groups()
    return _OPERATORS[op or "="](compare(version, target), 0)
