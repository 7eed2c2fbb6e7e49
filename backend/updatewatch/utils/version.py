"""Version comparison utilities for image tags.

Tags are parsed leniently: a strict ``X.Y.Z[-pre][+build]`` form keeps its
prerelease identifiers, long all-numeric tags keep their extra components as
numeric prerelease identifiers, and anything else is coerced from the first
numeric run found in the tag.
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Maximum length of a user supplied transform pattern
MAX_TRANSFORM_PATTERN_LENGTH = 1024

_IDENTIFIER = r"(?:\d+|\d*[a-zA-Z-][a-zA-Z0-9-]*)"
_FULL_VERSION_RE = re.compile(
    r"^(\d+)\.(\d+)\.(\d+)(?!\d)"
    rf"(?:-?({_IDENTIFIER}(?:\.{_IDENTIFIER})*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)
_COERCE_RE = re.compile(r"(?:^|\D)(\d{1,16})(?:\.(\d{1,16}))?(?:\.(\d{1,16}))?(?!\d)")
_BACKREFERENCE_RE = re.compile(r"\$(\d+)")


@dataclass(frozen=True)
class Version:
    """Parsed image tag."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[int | str, ...] = field(default_factory=tuple)


def _prerelease_identifiers(raw: str | None) -> tuple[int | str, ...]:
    if not raw:
        return ()
    return tuple(int(part) if part.isdigit() else part for part in raw.split("."))


def parse(tag: str) -> Version | None:
    """Parse an image tag into a Version.

    Args:
        tag: Tag value (e.g., "1.2.3", "v1.2.3-alpha1", "0.6.12-ls132", "fix__50")

    Returns:
        Parsed Version, or None when the tag carries no usable numeric run

    Raises:
        TypeError: If tag is None
    """
    if tag is None:
        raise TypeError("Tag value is required")

    cleaned = str(tag).strip().lstrip("=v").strip()

    match = _FULL_VERSION_RE.match(cleaned)
    if match:
        return Version(
            major=int(match.group(1)),
            minor=int(match.group(2)),
            patch=int(match.group(3)),
            prerelease=_prerelease_identifiers(match.group(4)),
        )

    # Long all-numeric tags (e.g. 24.04.13.3.1)
    parts = cleaned.split(".")
    if len(parts) > 3 and all(part.isdigit() for part in parts):
        return Version(
            major=int(parts[0]),
            minor=int(parts[1]),
            patch=int(parts[2]),
            prerelease=tuple(int(part) for part in parts[3:]),
        )

    coerced = _COERCE_RE.search(str(tag))
    if not coerced:
        return None
    return Version(
        major=int(coerced.group(1)),
        minor=int(coerced.group(2) or 0),
        patch=int(coerced.group(3) or 0),
    )


def _safe_parse(tag: str | None) -> Version | None:
    if tag is None:
        return None
    return parse(tag)


def _compare_identifiers(left: int | str, right: int | str) -> int:
    if isinstance(left, int) and isinstance(right, int):
        return (left > right) - (left < right)
    # Numeric identifiers always have lower precedence than alphanumeric ones
    if isinstance(left, int):
        return -1
    if isinstance(right, int):
        return 1
    return (left > right) - (left < right)


def _compare_prerelease(left: tuple, right: tuple) -> int:
    if not left and not right:
        return 0
    # A release is greater than any prerelease
    if not left:
        return 1
    if not right:
        return -1
    for left_id, right_id in zip(left, right):
        result = _compare_identifiers(left_id, right_id)
        if result:
            return result
    return (len(left) > len(right)) - (len(left) < len(right))


def compare(left: Version, right: Version) -> int:
    """Compare two parsed versions (-1, 0 or 1)."""
    for attribute in ("major", "minor", "patch"):
        left_value = getattr(left, attribute)
        right_value = getattr(right, attribute)
        if left_value != right_value:
            return 1 if left_value > right_value else -1
    return _compare_prerelease(left.prerelease, right.prerelease)


def is_greater(version1: str, version2: str) -> bool:
    """Return True when version1 is greater than or equal to version2.

    Unparsable values on either side always yield False.
    """
    parsed1 = _safe_parse(version1)
    parsed2 = _safe_parse(version2)
    if parsed1 is None or parsed2 is None:
        return False
    return compare(parsed1, parsed2) >= 0


def diff(version1: str, version2: str) -> str | None:
    """Return the level of the first difference between two tags.

    Returns:
        "major", "minor", "patch", "prerelease", or None when identical or unparsable.
        A release compared with a prerelease of the same version reports "patch".
    """
    parsed1 = _safe_parse(version1)
    parsed2 = _safe_parse(version2)
    if parsed1 is None or parsed2 is None:
        return None

    for attribute in ("major", "minor", "patch"):
        if getattr(parsed1, attribute) != getattr(parsed2, attribute):
            return attribute

    if bool(parsed1.prerelease) != bool(parsed2.prerelease):
        return "patch"
    if parsed1.prerelease != parsed2.prerelease:
        return "prerelease"
    return None


def transform(formula: str | None, tag: str) -> str:
    """Transform a tag using a ``"<pattern> => <replacement>"`` formula.

    The replacement supports ``$1..$n`` backreferences; a group that did not
    participate in the match (or does not exist) renders as an empty string.

    Args:
        formula: Transform formula (e.g., "^v(.+)$ => $1")
        tag: Tag value to transform

    Returns:
        Transformed tag, or the original tag when the formula is missing,
        invalid, oversized, does not match, or fails to apply
    """
    if not formula:
        return tag

    try:
        if "=>" not in formula:
            return tag
        pattern, replacement = (part.strip() for part in formula.split("=>", 1))
        if len(pattern) > MAX_TRANSFORM_PATTERN_LENGTH:
            logger.warning(
                f"Tag transform pattern exceeds {MAX_TRANSFORM_PATTERN_LENGTH} characters, ignoring"
            )
            return tag

        try:
            regex = re.compile(pattern)
        except re.error as e:
            logger.warning(f"Invalid tag transform pattern: {e}")
            return tag

        match = regex.search(tag)
        if not match:
            return tag

        def _group(backreference: re.Match) -> str:
            index = int(backreference.group(1))
            if index > regex.groups:
                return ""
            return match.group(index) or ""

        return _BACKREFERENCE_RE.sub(_group, replacement)
    except Exception as e:
        logger.warning(f"Unable to transform tag {tag!r}: {e}")
        return tag
