import math
from datetime import datetime
from typing import Iterable

from marquee_core.types import EngagementParams, ItemId, MediaKind, WatchedItem

from .decay import half_life_decay


def normalize_rating(r: float) -> float:
    """
    Ratings above 5 are read as a 1-10 scale, everything else as 1-5.
    """
    return r / 10.0 if r > 5 else r / 5.0


def compute_engagement_weight(
    item: WatchedItem,
    kind: MediaKind,
    now: datetime,
    params: EngagementParams,
) -> float:
    """
    How much one watched title should pull the taste profile.

    - series: depth of viewing (log10 of episodes watched) plus a completion bonus
    - movies: rewatches, damped
    - favorite, explicit rating and recency multiply on top
    """
    weight = 1.0

    if kind is MediaKind.SERIES:
        episodes = max(item.episodes_watched or 1, 1)
        weight *= 1 + math.log10(episodes)
        completion = item.completion_rate
        if completion is not None and completion > params.completion_high:
            weight *= params.completion_high_bonus
        elif completion is not None and completion > params.completion_mid:
            weight *= params.completion_mid_bonus
    else:
        plays = max(item.play_count or 1, 1)
        weight *= 1 + math.log10(plays) * params.rewatch_scale

    if item.is_favorite:
        weight *= params.favorite_bonus

    if item.rating is not None:
        weight *= params.rating_base + normalize_rating(float(item.rating)) * params.rating_scale

    if item.last_played_at is not None:
        weight *= half_life_decay(item.last_played_at, now, params.half_life_days, params.recency_floor)

    return weight


def compute_item_weights(
    items: Iterable[WatchedItem],
    kind: MediaKind,
    now: datetime,
    params: EngagementParams,
) -> dict[ItemId, float]:
    weights: dict[ItemId, float] = {}
    for item in items:
        if item.id in weights:
            continue  # first occurrence wins
        weights[item.id] = compute_engagement_weight(item, kind, now, params)
    return weights
