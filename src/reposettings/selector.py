# src/reposettings/selector.py: Glob matching for rule selection.
# This module implements the pattern matcher every rule uses to decide whether
# it applies to a repository, branch, group or user name. Patterns support '*'
# (zero or more characters), '?' (exactly one character) and a leading '!'
# which negates the result. Matching is a linear scan over the literal
# segments between stars, not a regular expression engine.

from typing import Iterable

NEGATION = "!"
WILDCARD = "*"
SINGLE = "?"


def _char_equals(expected: str, actual: str, case_sensitive: bool) -> bool:
    if expected == SINGLE or expected == actual:
        return True
    if case_sensitive:
        return False
    return expected.upper() == actual.upper() or expected.lower() == actual.lower()


def _segment_at(segment: str, text: str, offset: int, case_sensitive: bool) -> bool:
    """Whether ``segment`` matches ``text`` starting at ``offset``."""
    return all(
        _char_equals(ch, text[offset + i], case_sensitive)
        for i, ch in enumerate(segment)
    )


def _find_segment(segment: str, text: str, start: int, end: int, case_sensitive: bool) -> int:
    """Earliest index in text[start:end] where ``segment`` matches, or -1."""
    for i in range(start, end - len(segment) + 1):
        if _segment_at(segment, text, i, case_sensitive):
            return i
    return -1


def _match_glob(pattern: str, text: str, case_sensitive: bool) -> bool:
    if WILDCARD not in pattern:
        return len(pattern) == len(text) and _segment_at(pattern, text, 0, case_sensitive)

    segments = pattern.split(WILDCARD)
    prefix, infixes, suffix = segments[0], segments[1:-1], segments[-1]

    # prefix and suffix are anchored and may not share characters
    if len(prefix) + len(suffix) > len(text):
        return False
    if not _segment_at(prefix, text, 0, case_sensitive):
        return False
    end = len(text) - len(suffix)
    if not _segment_at(suffix, text, end, case_sensitive):
        return False

    start = len(prefix)
    for infix in infixes:
        if not infix:
            continue  # consecutive stars
        found = _find_segment(infix, text, start, end, case_sensitive)
        if found == -1:
            return False
        start = found + len(infix)
    return True


def is_negated(pattern: str) -> bool:
    return pattern.startswith(NEGATION)


def match(pattern: str, text: str, case_sensitive: bool = True) -> bool:
    """
    Tests whether ``text`` matches ``pattern``.

    Args:
        pattern: A glob where '*' means zero or more characters and '?' one
            character. A leading '!' inverts the result.
        text: The name to test.
        case_sensitive: Compare characters ignoring case when False.

    Returns:
        True if the (possibly negated) pattern accepts the text.
    """
    if is_negated(pattern):
        return not _match_glob(pattern[1:], text, case_sensitive)
    return _match_glob(pattern, text, case_sensitive)


def match_any(patterns: Iterable[str], text: str, case_sensitive: bool = True) -> bool:
    """
    Folds a list of patterns into a single verdict.

    The accumulator starts False. A positive pattern is OR-ed into it, a
    negated pattern is AND-ed into it. The fold depends on order:
    ``match_any(["a*", "!ab*"], "abc")`` is False whereas
    ``match_any(["!ab*", "a*"], "abc")`` is True. Rule files rely on this
    exact behaviour, so exclusions must be listed after the inclusions they
    narrow.
    """
    accepted = False
    for pattern in patterns:
        if is_negated(pattern):
            accepted &= match(pattern, text, case_sensitive)
        else:
            accepted |= match(pattern, text, case_sensitive)
    return accepted


def split_patterns(patterns: str) -> list[str]:
    """
    Splits a comma-joined pattern list.

    Terms are kept verbatim: blanks around a comma belong to the term, so
    in "*, !*-deploy" the second term is the literal " !*-deploy" and not an
    exclusion.
    """
    return patterns.split(",")
