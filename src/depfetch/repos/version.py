"""
Version Utilities for the depfetch Repository Subsystem

Semantic-version range matching (npm range grammar: ^, ~, x-ranges, hyphen
ranges, comparator sets and `||` unions) plus the ordering helpers used by
backends that have to sort raw tag names.
"""

import re
from typing import Iterable, List, Optional, Union

import semantic_version
from packaging.version import InvalidVersion, Version

from depfetch.log_utils import logger

_LEADING_V = re.compile(r"^[vV=]\s*")
_PARTIAL_VERSION = re.compile(r"^\d+(?:\.\d+)?$")


def _parse_version(version: str) -> Optional[semantic_version.Version]:
    """
    Parse a version string loosely.

    Accepts a leading 'v' or '=' and versions with missing minor/patch parts
    ('1.2' becomes 1.2.0). Returns None for anything that is not a version.
    """
    if not version:
        return None
    cleaned = _LEADING_V.sub("", str(version).strip())
    try:
        return semantic_version.Version(cleaned)
    except ValueError:
        pass
    if not _PARTIAL_VERSION.match(cleaned):
        return None
    return semantic_version.Version.coerce(cleaned)


def _parse_range(range_spec: str) -> Optional[semantic_version.NpmSpec]:
    try:
        return semantic_version.NpmSpec(range_spec.strip())
    except ValueError:
        logger.debug("Invalid semver range %r", range_spec)
        return None


def is_valid_version(version: str) -> bool:
    """Return True if `version` parses as a (loose) semantic version."""
    return _parse_version(version) is not None


def satisfies(version: str, range_spec: str) -> bool:
    """
    Check whether `version` satisfies the npm-style `range_spec`.

    Unparsable versions or ranges never satisfy.
    """
    parsed = _parse_version(version)
    spec = _parse_range(range_spec)
    if parsed is None or spec is None:
        return False
    return spec.match(parsed)


def max_satisfying(versions: Iterable[str], range_spec: str) -> Optional[str]:
    """
    Return the highest version in `versions` that satisfies `range_spec`.

    The returned value is the original string from `versions` (so callers can
    use it as a lookup key), or None when nothing matches.
    """
    spec = _parse_range(range_spec)
    if spec is None:
        return None

    best: Optional[str] = None
    best_parsed: Optional[semantic_version.Version] = None
    for candidate in versions:
        parsed = _parse_version(candidate)
        if parsed is None or not spec.match(parsed):
            continue
        if best_parsed is None or parsed > best_parsed:
            best, best_parsed = candidate, parsed
    return best


def normalize_version(version: Optional[str]) -> Optional[Union[Version, str]]:
    """
    Normalize a tag or version name to a packaging Version for ordering.

    Strips a leading 'v'. Returns the stripped string when it is not a valid
    PEP 440 version, and None for empty input.
    """
    if not version:
        return None
    trimmed = _LEADING_V.sub("", version.strip())
    try:
        return Version(trimmed)
    except InvalidVersion:
        return trimmed


def sort_versions_desc(versions: Iterable[str]) -> List[str]:
    """
    Sort version names newest first.

    Names that are valid versions come first, ordered by version; the rest
    follow in their original order.
    """
    parsed = []
    unparsed = []
    for name in versions:
        normalized = normalize_version(name)
        if isinstance(normalized, Version):
            parsed.append((normalized, name))
        else:
            unparsed.append(name)
    parsed.sort(key=lambda item: item[0], reverse=True)
    return [name for _, name in parsed] + unparsed


def strip_version_prefix(version: str) -> str:
    """Return `version` without a leading 'v' or '='."""
    return _LEADING_V.sub("", version.strip())


def is_newer(candidate: Optional[str], current: Optional[str]) -> bool:
    """
    Return True if `candidate` is a strictly newer version than `current`.

    A missing or unparsable `current` counts as older than any valid candidate.
    """
    parsed_candidate = _parse_version(candidate or "")
    if parsed_candidate is None:
        return False
    parsed_current = _parse_version(current or "")
    if parsed_current is None:
        return True
    return parsed_candidate > parsed_current
