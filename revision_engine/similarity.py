"""
Similarity Scorer v1.0.0
========================
Levenshtein-ratio similarity shared by move detection, replacement grouping,
change classification and paragraph alignment.

All functions are pure and safe to call from multiple threads.
"""

import html
import re
from functools import lru_cache

_PUNCTUATION_RE = re.compile(r'[^\w\s]')
_WHITESPACE_RE = re.compile(r'\s+')
_TAG_RE = re.compile(r'<[^>]+>')


@lru_cache(maxsize=4096)
def levenshtein(s1: str, s2: str) -> int:
    """Calculate Levenshtein edit distance between two strings."""
    if len(s1) < len(s2):
        s1, s2 = s2, s1

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def similarity(a: str, b: str) -> float:
    """
    Levenshtein ratio of two strings.

    Returns:
        1.0 for identical strings (including two empty strings), 0.0 when
        nothing can be salvaged, otherwise (longer - distance) / longer.
    """
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    if a == b:
        return 1.0
    return (longer - levenshtein(a, b)) / longer


def normalize(text: str) -> str:
    """Lower-case, drop punctuation, collapse whitespace and trim."""
    text = _PUNCTUATION_RE.sub('', text.lower())
    return _WHITESPACE_RE.sub(' ', text).strip()


def normalized_similarity(a: str, b: str) -> float:
    return similarity(normalize(a), normalize(b))


def strip_markup(markup: str) -> str:
    """
    Reduce an HTML fragment to comparable plain text.

    Block-level closing tags become blank lines so paragraph boundaries
    survive; entities are unescaped.
    """
    text = re.sub(r'</(p|div|h[1-6]|li|blockquote)>', '\n\n', markup, flags=re.IGNORECASE)
    text = re.sub(r'<br\s*/?>', '\n', text, flags=re.IGNORECASE)
    text = html.unescape(_TAG_RE.sub('', text))
    lines = [re.sub(r'[ \t]+', ' ', line).strip() for line in text.split('\n')]
    return re.sub(r'\n{3,}', '\n\n', '\n'.join(lines)).strip()
