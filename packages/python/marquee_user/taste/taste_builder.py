from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

import numpy as np
from marquee_core.types import EngagementParams, ItemId, MediaKind, WatchedItem
from marquee_user.signals.weights import compute_item_weights

log = logging.getLogger(__name__)

Embed = np.ndarray


# ---- small utils ----
# L2 normalization; None for a zero vector
def _l2(x: np.ndarray) -> np.ndarray | None:
    n = float(np.linalg.norm(x))
    return None if n == 0 else x / n


# ---- main builder ----
def build_taste_vector(
    items: Sequence[WatchedItem],
    *,
    kind: MediaKind,
    get_item_embeddings: Callable[[Sequence[ItemId]], Mapping[ItemId, Embed]],
    params: EngagementParams | None = None,
    now: datetime | None = None,
) -> tuple[Embed | None, dict[str, Any]]:
    """
    Build a normalized taste vector from watch history:

    - One engagement weight per title (depth, rewatches, favorite, rating, recency).
    - Weighted mean over the titles that have an embedding.
    - L2-normalized; None when nothing usable remains.

    Titles are accumulated in descending weight order (ties keep input order)
    so identical inputs give bit-identical output.
    """
    params = params or EngagementParams()
    now = now or datetime.now(timezone.utc)
    debug: dict[str, Any] = {"items": len(items), "used": 0, "total_weight": 0.0}

    # 1) canonical weight per title
    weights = compute_item_weights(items, kind, now, params)
    ranked = sorted(weights, key=lambda mid: weights[mid], reverse=True)
    debug["top"] = [(mid, round(weights[mid], 4)) for mid in ranked[:5]]

    # 2) fetch embeddings in one shot
    vec_map: Mapping[ItemId, Embed] = get_item_embeddings(ranked) if ranked else {}
    if not vec_map:
        return None, debug

    # 3) weighted mean
    dim: int | None = None
    acc: np.ndarray | None = None
    total = 0.0
    for mid in ranked:
        v = vec_map.get(mid)
        if v is None:
            continue
        v = np.asarray(v, dtype=np.float64)
        if dim is None:
            dim = v.shape[0]
            acc = np.zeros((dim,), dtype=np.float64)
        elif v.shape[0] != dim:
            log.warning("skipping %s: embedding dim %d != %d", mid, v.shape[0], dim)
            continue
        acc += weights[mid] * v
        total += weights[mid]
        debug["used"] += 1

    debug["total_weight"] = total
    if acc is None or total <= 0:
        return None, debug

    # 4) normalize
    vec = _l2(acc / total)
    return vec, debug
