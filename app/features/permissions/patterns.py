"""
Feature-code pattern matching shared by roles and organization-type defaults.

Grammar:
    "*"              every feature
    "<category>.*"   every feature whose code starts with "<category>."
    anything else    exact, case-sensitive code match
"""
import re
from typing import Iterable

from app.core.errors import ValidationError


WILDCARD = "*"
CATEGORY_SUFFIX = ".*"

# Lowercase dot-separated segments, e.g. "production.create", "admin.users.manage"
_CODE_RE = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")


def matches(pattern: str, code: str) -> bool:
    """Return True if `pattern` covers feature `code`."""
    if pattern == WILDCARD:
        return True
    if pattern.endswith(CATEGORY_SUFFIX):
        # keep the dot so "production.*" does not match "productionline.view"
        return code.startswith(pattern[:-1])
    return pattern == code


def matches_any(patterns: Iterable[str], code: str) -> bool:
    return any(matches(pattern, code) for pattern in patterns)


def matching_patterns(patterns: Iterable[str], code: str) -> list[str]:
    return [pattern for pattern in patterns if matches(pattern, code)]


def expand(patterns: Iterable[str], codes: Iterable[str]) -> set[str]:
    """Expand patterns against the catalog codes."""
    patterns = list(patterns)
    return {code for code in codes if matches_any(patterns, code)}


def is_valid_code(code: str) -> bool:
    return bool(_CODE_RE.match(code))


def category_of(code: str) -> str:
    return code.split(".", 1)[0]


def validate_patterns(patterns: Iterable[str], known_codes: set[str]) -> list[str]:
    """
    Check a pattern list and return it de-duplicated in its original order.

    Raises:
        ValidationError: malformed wildcard or exact code missing from the catalog
    """
    cleaned: list[str] = []
    for pattern in patterns:
        if pattern == WILDCARD:
            pass
        elif pattern.endswith(CATEGORY_SUFFIX):
            prefix = pattern[:-len(CATEGORY_SUFFIX)]
            if not prefix or not is_valid_code(prefix):
                raise ValidationError(f"Invalid wildcard pattern: {pattern!r}")
        elif WILDCARD in pattern:
            raise ValidationError(f"Wildcards are only allowed as '*' or '<category>.*': {pattern!r}")
        elif pattern not in known_codes:
            raise ValidationError(f"Unknown feature code: {pattern!r}")
        if pattern not in cleaned:
            cleaned.append(pattern)
    return cleaned
