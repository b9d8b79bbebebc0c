"""
Vote Tally Rules
================

Pure functions for the two round tally algorithms.

CONSENSUS:
    Each entity (devRel, daoHic, community) casts at most one effective vote.
    A project wins only if at least two of the three entity votes agree.

WEIGHTED:
    Each entity controls one third of the total weight, split across projects
    in proportion to that entity's own vote distribution. A project's score is
    the sum of its three shares. The strictly highest score wins; an exact tie
    at the top means no winner.

Scores use Fraction so ties are detected exactly.
"""

from collections import Counter
from fractions import Fraction
from typing import Dict, Iterable, Mapping, Optional, Tuple

ENTITY_SHARE = Fraction(1, 3)


def consensus_winner(entity_votes: Iterable[Optional[str]]) -> Tuple[Optional[str], bool]:
    """
    Args:
        entity_votes: Effective vote of each entity (project address or None)

    Returns:
        (winner_address, has_winner)
    """
    counts = Counter(v.lower() for v in entity_votes if v)
    if not counts:
        return None, False
    project, votes = counts.most_common(1)[0]
    if votes >= 2:
        return project, True
    return None, False


def weighted_scores(distributions: Mapping[str, Mapping[str, int]]) -> Dict[str, Fraction]:
    """
    Per-project weighted scores.

    Args:
        distributions: {entity: {project: vote_count}}. An entity with no
                       votes contributes nothing.

    Example:
        devRel all-in on A, daoHic 6/10 for A, community 40/100 for A gives
        A = 1/3 + 6/30 + 40/300 = 2/3.
    """
    scores: Dict[str, Fraction] = {}
    for votes in distributions.values():
        total = sum(votes.values())
        if total <= 0:
            continue
        for project, count in votes.items():
            key = project.lower()
            scores[key] = scores.get(key, Fraction(0)) + ENTITY_SHARE * Fraction(count, total)
    return scores


def strict_max_winner(scores: Mapping[str, object]) -> Tuple[Optional[str], bool]:
    """Highest-scoring project, or no winner when empty, all-zero or tied at the top"""
    if not scores:
        return None, False
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    top_project, top_score = ranked[0]
    if not top_score:
        return None, False
    if len(ranked) > 1 and ranked[1][1] == top_score:
        return None, False
    return top_project.lower(), True


def weighted_winner(distributions: Mapping[str, Mapping[str, int]]) -> Tuple[Optional[str], bool]:
    return strict_max_winner(weighted_scores(distributions))
