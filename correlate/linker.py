"""
Issue-key extraction from commit messages.
A key is one of the configured project prefixes, a dash, and one or more ASCII letters/digits (e.g. ABC-123).
Matching is case-sensitive and a prefix must not be glued to a preceding word character,
so with prefix ABC the text "XABC-1" yields nothing.
"""
import re
from functools import lru_cache
from typing import Iterable, List, Pattern, Tuple


@lru_cache(maxsize=32)
def _compile(prefixes: Tuple[str, ...]) -> Pattern:
    # longest first, so with A and A-B the text A-B-7 yields A-B-7
    alternation = "|".join(re.escape(p) for p in sorted(set(prefixes), key=len, reverse=True))
    return re.compile(rf"(?<![A-Za-z0-9_-])(?:{alternation})-[A-Za-z0-9]+")


def build_key_pattern(prefixes: Iterable[str]) -> Pattern:
    """Compile the key regex for a set of prefixes. Empty prefixes are ignored."""
    cleaned = tuple(p for p in prefixes if p)
    if not cleaned:
        raise ValueError("at least one project prefix is required")
    return _compile(cleaned)


def find_issue_keys_in_text(text: str, prefixes: Iterable[str]) -> List[str]:
    """Return the issue keys in text, in first-occurrence order, without duplicates."""
    prefixes = tuple(p for p in prefixes if p)
    if not text or not prefixes:
        return []
    keys: List[str] = []
    for m in build_key_pattern(prefixes).finditer(text):
        key = m.group(0)
        if key not in keys:
            keys.append(key)
    return keys


def unique_keys(key_lists: Iterable[List[str]]) -> List[str]:
    """Flatten per-entry key lists into one ordered, de-duplicated list."""
    seen = {}
    for keys in key_lists:
        for k in keys:
            seen.setdefault(k, None)
    return list(seen)
