from collections import Counter
from typing import Sequence

from marquee_ranking.types import Candidate, SelectionResult


def _dedup_key(c: Candidate) -> str:
    return f"{c.title.lower()}|{c.year or ''}"


def diversity_boost(
    c: Candidate,
    genre_counts: Counter,
    network_counts: Counter,
    selected_n: int,
    *,
    use_network: bool,
) -> float:
    """
    Reward for adding something unlike what is already selected.

    Genre overlap makes up 0.6 of the boost; the remaining 0.4 comes from the
    network (series) or a second genre term (movies).
    """
    if c.genres:
        overlap = sum(1 for g in c.genres if genre_counts[g] > 0)
        genre_part = (1 - overlap / len(c.genres)) * 0.6
    else:
        genre_part = 0.3

    if use_network:
        if c.network and selected_n > 0:
            other_part = (1 - network_counts[c.network] / selected_n) * 0.4
        else:
            other_part = 0.2
    elif c.genres:
        other_part = (genre_part / 0.6) * 0.4
    else:
        other_part = 0.2

    return genre_part + other_part


def select_diverse(
    ranked: Sequence[Candidate],
    *,
    target_count: int,
    diversity_weight: float,
    use_network: bool = False,
) -> SelectionResult:
    """
    Greedy pick of `target_count` titles from a scored list.

    Each round takes the remaining candidate with the best
    base * (1 - w) + boost * w; ties go to the earlier (higher ranked) one.
    Duplicate title|year keys are skipped.
    """
    remaining = list(ranked)
    selected: list[Candidate] = []
    skipped: list[dict] = []
    seen_keys: set[str] = set()
    genre_counts: Counter = Counter()
    network_counts: Counter = Counter()

    while len(selected) < target_count and remaining:
        best_idx = -1
        best_score = float("-inf")
        best_boost = 0.0
        for idx, c in enumerate(remaining):
            boost = diversity_boost(c, genre_counts, network_counts, len(selected), use_network=use_network)
            score = c.base_score * (1 - diversity_weight) + boost * diversity_weight
            if score > best_score:
                best_idx, best_score, best_boost = idx, score, boost

        pick = remaining.pop(best_idx)
        key = _dedup_key(pick)
        if key in seen_keys:
            skipped.append({"id": pick.id, "title": pick.title, "year": pick.year})
            continue
        seen_keys.add(key)

        pick.diversity_boost = best_boost
        pick.final_score = best_score
        pick.selected_rank = len(selected) + 1
        selected.append(pick)
        genre_counts.update(pick.genres or [])
        if pick.network:
            network_counts[pick.network] += 1

    return SelectionResult(selected=selected, skipped_duplicates=skipped)
