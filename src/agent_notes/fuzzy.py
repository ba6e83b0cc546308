"""Fuzzy text matching for anchor re-location.

Provides Levenshtein scoring and an approximate substring search (diff-match-patch
Bitap) that is seeded at the anchor's last known offset. All results are
deterministic.
"""

import zlib
from typing import NamedTuple

from diff_match_patch import diff_match_patch

# Bitap gives up on candidates whose error rate plus distance penalty exceeds this
SEARCH_THRESHOLD = 0.5


class AnchorMatch(NamedTuple):
    """A re-located anchor within a document."""

    offset: int  # character offset of the match start
    length: int  # length of the matched slice (the original snippet length)
    score: float  # 0-1 similarity of the slice to the original snippet


def levenshtein_distance(s1: str, s2: str) -> int:
    """Compute the Levenshtein edit distance between two strings.

    Uses the Wagner-Fischer dynamic programming algorithm with a single-row
    optimisation: O(m*n) time, O(min(m, n)) space.
    """
    if s1 == s2:
        return 0
    if not s1 or not s2:
        return len(s1) or len(s2)

    # Ensure s1 is the shorter string (optimize memory)
    if len(s1) > len(s2):
        s1, s2 = s2, s1

    prev_row = list(range(len(s1) + 1))
    curr_row = [0] * (len(s1) + 1)

    for i, c2 in enumerate(s2, start=1):
        curr_row[0] = i
        for j, c1 in enumerate(s1, start=1):
            if c1 == c2:
                curr_row[j] = prev_row[j - 1]
            else:
                curr_row[j] = 1 + min(
                    prev_row[j],  # deletion
                    curr_row[j - 1],  # insertion
                    prev_row[j - 1],  # substitution
                )
        prev_row, curr_row = curr_row, prev_row

    return prev_row[len(s1)]


def similarity_score(s1: str, s2: str) -> float:
    """Normalized similarity: 1 - distance / max(len(s1), len(s2)).

    Returns:
        1.0 for identical strings (including two empty strings), 0.0 when
        nothing is shared
    """
    longest = max(len(s1), len(s2))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(s1, s2) / longest


def compute_content_hash(text: str) -> str:
    """Fast non-cryptographic fingerprint of anchored text (CRC32, 8 hex chars)."""
    return f"{zlib.crc32(text.encode('utf-8')):08x}"


def approximate_find(
    text: str,
    pattern: str,
    loc: int,
    *,
    threshold: float = SEARCH_THRESHOLD,
    distance: int = 1000,
) -> int:
    """Locate the best approximate occurrence of pattern near loc.

    Delegates to diff-match-patch's ``match_main``. Candidates are scored by
    ``errors / len(pattern) + abs(loc - x) / distance`` (lower is better), so
    among equally good matches the one closest to loc wins. An exact
    occurrence at loc short-circuits the search.

    Args:
        text: Text to search
        pattern: Snippet to look for (no length limit)
        loc: Expected offset of the snippet in text (clamped to the text)
        threshold: Highest acceptable candidate score (0 = exact at loc only)
        distance: Characters of drift that cost as much as a full mismatch;
            0 means only matches exactly at loc are considered

    Returns:
        Offset of the best match, or -1 if none scores within threshold
    """
    if not pattern:
        return -1
    dmp = diff_match_patch()
    dmp.Match_Threshold = threshold
    dmp.Match_Distance = distance
    return dmp.match_main(text, pattern, loc)


def find_anchor(
    text: str,
    needle: str,
    loc: int,
    *,
    threshold: float = 0.5,
    distance: int = 1000,
) -> AnchorMatch | None:
    """Find the anchored snippet near its last known offset.

    Runs the approximate search, then scores the slice of the same length at
    the candidate offset against the snippet. The candidate is accepted only
    if its similarity is at least ``threshold``.

    Args:
        text: Full current document text
        needle: Original anchored snippet
        loc: Offset of the anchor's last known start line
        threshold: Minimum similarity to accept the candidate (default 0.5)
        distance: Drift tolerance passed to the approximate search

    Returns:
        AnchorMatch, or None when no candidate exists or it scores too low
    """
    offset = approximate_find(text, needle, loc, distance=distance)
    if offset == -1:
        return None

    candidate = text[offset : offset + len(needle)]
    score = similarity_score(needle, candidate)
    if score < threshold:
        return None
    return AnchorMatch(offset=offset, length=len(needle), score=score)
