"""Controlled-vocabulary matching for select-type fields."""

from __future__ import annotations

import re
from typing import Sequence

from vision_attrs.catalog.schema import AllowedValue

FUZZY_ACCEPT_SCORE = 0.8
SUBSTRING_SCORE = 0.9

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def similarity(first: str, second: str) -> float:
    """Score two strings in ``[0, 1]``.

    Identical strings score 1.0 and containment in either direction 0.9.
    Otherwise the score is the Jaccard index of the two *distinct character
    sets*. Order and repetition are ignored, so anagrams such as ``"tops"`` and
    ``"stop"`` score 1.0 under that rule; this is a cheap approximation, not a
    token-level similarity, and only the ``> 0.8`` acceptance bar keeps it
    usable.
    """

    if first == second:
        return 1.0
    if not first or not second:
        return 0.0
    if first in second or second in first:
        return SUBSTRING_SCORE

    chars_first = set(first)
    chars_second = set(second)
    union = chars_first | chars_second
    return len(chars_first & chars_second) / len(union)


def _normalise(value: str) -> str:
    return _NON_ALNUM.sub("", value.lower())


def match_allowed_value(value: str, allowed: Sequence[AllowedValue]) -> tuple[str | None, float]:
    """Resolve ``value`` to a short form, returning ``(short_form, score)``.

    Exact case-sensitive matches win, then case-insensitive ones, then the best
    fuzzy candidate scoring above ``FUZZY_ACCEPT_SCORE``.
    """

    candidate = value.strip()
    if not candidate or not allowed:
        return None, 0.0

    for option in allowed:
        if candidate == option.short_form or (option.full_form and candidate == option.full_form):
            return option.short_form, 1.0

    lowered = candidate.lower()
    for option in allowed:
        if lowered == option.short_form.lower() or (
            option.full_form and lowered == option.full_form.lower()
        ):
            return option.short_form, 1.0

    probe = _normalise(candidate)
    if not probe:
        return None, 0.0

    best: AllowedValue | None = None
    best_score = 0.0
    for option in allowed:
        score = max(
            similarity(probe, _normalise(option.short_form)),
            similarity(probe, _normalise(option.full_form)) if option.full_form else 0.0,
        )
        if score > best_score:
            best, best_score = option, score

    if best is not None and best_score > FUZZY_ACCEPT_SCORE:
        return best.short_form, best_score
    return None, best_score
