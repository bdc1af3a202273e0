"""Title similarity heuristics used to skip already-finished work.

This is a heuristic. It can drop genuinely new work whose title happens to
contain an old one, and it can miss finished work that was reworded.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

TitleSimilarity = Callable[[str, str], bool]

KEYWORD_OVERLAP_THRESHOLD = 0.6
MIN_SHARED_KEYWORDS = 2

_STOPWORDS = frozenset({
    "and", "the", "for", "with", "from", "into", "that", "this", "add", "new",
    "use", "via", "all", "per", "its",
})
_WORD = re.compile(r"[a-z0-9]+")


def normalize_title(title: str) -> str:
    return " ".join(title.casefold().split())


def keywords(title: str) -> frozenset[str]:
    return frozenset(
        w for w in _WORD.findall(title.casefold()) if len(w) >= 3 and w not in _STOPWORDS
    )


def keyword_overlap_similarity(a: str, b: str) -> bool:
    """Return True when two titles look like the same piece of work.

    Equal or contained titles match. Otherwise the shared keyword count must
    reach MIN_SHARED_KEYWORDS and cover KEYWORD_OVERLAP_THRESHOLD of the
    smaller keyword set.
    """
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return False
    if na == nb or na in nb or nb in na:
        return True
    ka, kb = keywords(na), keywords(nb)
    if not ka or not kb:
        return False
    shared = ka & kb
    if len(shared) < MIN_SHARED_KEYWORDS:
        return False
    return len(shared) / min(len(ka), len(kb)) >= KEYWORD_OVERLAP_THRESHOLD


def exact_title_similarity(a: str, b: str) -> bool:
    return normalize_title(a) == normalize_title(b)


def find_equivalent(
    title: str,
    completed_titles: Iterable[str],
    similarity: TitleSimilarity = keyword_overlap_similarity,
) -> str | None:
    for done in completed_titles:
        if similarity(title, done):
            return done
    return None
