from datetime import timedelta

import numpy as np
import pytest

from marquee_core.types import MediaKind, WatchedItem
from marquee_user.taste.taste_builder import build_taste_vector

from conftest import NOW


def _items():
    return [
        WatchedItem(id="m1", title="One", last_played_at=NOW - timedelta(days=1), is_favorite=True),
        WatchedItem(id="m2", title="Two", last_played_at=NOW - timedelta(days=40), rating=7),
        WatchedItem(id="m3", title="Three", last_played_at=NOW - timedelta(days=400), play_count=3),
    ]


VECS = {
    "m1": np.array([0.9, 0.1, 0.0], dtype=np.float32),
    "m2": np.array([0.2, 0.8, 0.1], dtype=np.float32),
    "m3": np.array([0.0, 0.3, 0.9], dtype=np.float32),
}


def test_profile_is_unit_length():
    vec, _ = build_taste_vector(_items(), kind=MediaKind.MOVIE, get_item_embeddings=lambda ids: VECS, now=NOW)
    assert vec is not None
    assert np.linalg.norm(vec) == pytest.approx(1.0, abs=1e-6)


def test_identical_inputs_give_identical_output():
    a, _ = build_taste_vector(_items(), kind=MediaKind.MOVIE, get_item_embeddings=lambda ids: VECS, now=NOW)
    b, _ = build_taste_vector(_items(), kind=MediaKind.MOVIE, get_item_embeddings=lambda ids: VECS, now=NOW)
    assert np.array_equal(a, b)


def test_embeddings_requested_heaviest_first():
    seen = []

    def fetch(ids):
        seen.extend(ids)
        return VECS

    build_taste_vector(_items(), kind=MediaKind.MOVIE, get_item_embeddings=fetch, now=NOW)
    assert seen[0] == "m1"
    assert set(seen) == {"m1", "m2", "m3"}


def test_titles_without_embeddings_are_ignored():
    partial = {"m2": VECS["m2"]}
    vec, debug = build_taste_vector(_items(), kind=MediaKind.MOVIE, get_item_embeddings=lambda ids: partial, now=NOW)
    assert debug["used"] == 1
    assert np.allclose(vec, VECS["m2"] / np.linalg.norm(VECS["m2"]), atol=1e-6)


def test_mismatched_dimension_is_skipped():
    mixed = dict(VECS)
    mixed["m3"] = np.array([1.0, 0.0], dtype=np.float32)
    vec, debug = build_taste_vector(_items(), kind=MediaKind.MOVIE, get_item_embeddings=lambda ids: mixed, now=NOW)
    assert vec.shape == (3,)
    assert debug["used"] == 2


@pytest.mark.parametrize(
    "items, vecs",
    [
        ([], VECS),  # no history
        (_items(), {}),  # nothing embedded
        (_items()[:1], {"m1": np.zeros(3, dtype=np.float32)}),  # zero vector
    ],
)
def test_insufficient_data_returns_none(items, vecs):
    vec, _ = build_taste_vector(items, kind=MediaKind.MOVIE, get_item_embeddings=lambda ids: vecs, now=NOW)
    assert vec is None
