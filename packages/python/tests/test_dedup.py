from marquee_media.types import parse_server_datetime
from marquee_watching.dedup import filter_and_deduplicate

NAMES = {"lib-movies": "Movies", "lib-4k": "4K Movies", "lib-auto": "Alice's Picks", "lib-kids": "Kids"}


def _run(items, auto=(), admin=()):
    return filter_and_deduplicate(items, auto, admin, NAMES)


def test_highest_progress_wins(make_resume):
    items = [
        make_resume("hd", tmdb="603", library_id="lib-movies", progress=20),
        make_resume("uhd", tmdb="603", library_id="lib-4k", progress=60),
    ]
    out = _run(items)
    assert [i.id for i in out] == ["uhd"]
    assert out[0].library_name == "4K Movies"


def test_recent_play_breaks_progress_tie(make_resume):
    items = [
        make_resume("hd", tmdb="603", library_id="lib-movies", played="2026-09-01T10:00:00Z"),
        make_resume("uhd", tmdb="603", library_id="lib-4k", played="2026-09-02T10:00:00Z"),
    ]
    assert [i.id for i in _run(items)] == ["uhd"]


def test_library_name_breaks_full_tie(make_resume):
    items = [
        make_resume("hd", tmdb="603", library_id="lib-movies"),
        make_resume("uhd", tmdb="603", library_id="lib-4k"),
    ]
    # "4K Movies" < "Movies"
    assert [i.id for i in _run(items)] == ["uhd"]


def test_mixed_timestamp_precision_compares_by_instant(make_resume):
    # seven fractional digits vs none: the later instant must win, not the longer string
    items = [
        make_resume("a", tmdb="1", library_id="lib-movies", played="2026-09-01T10:00:00.9999999Z"),
        make_resume("b", tmdb="1", library_id="lib-4k", played="2026-09-01T10:00:01Z"),
    ]
    assert parse_server_datetime("2026-09-01T10:00:00.9999999Z").microsecond == 999999
    assert [i.id for i in _run(items)] == ["b"]


def test_excluded_libraries_are_dropped(make_resume):
    items = [
        make_resume("auto", tmdb="1", library_id="lib-auto", progress=90),
        make_resume("kids", tmdb="2", library_id="lib-kids"),
        make_resume("keep", tmdb="1", library_id="lib-movies", progress=10),
    ]
    out = _run(items, auto=["lib-auto"], admin=["lib-kids"])
    assert [i.id for i in out] == ["keep"]


def test_identity_falls_back_to_imdb_then_id(make_resume):
    items = [
        make_resume("x1", imdb_id="tt1", library_id="lib-movies"),
        make_resume("x2", imdb_id="tt1", library_id="lib-4k", progress=70),
        make_resume("y", library_id="lib-movies"),
        make_resume("z", library_id="lib-movies"),
    ]
    out = _run(items)
    assert [i.id for i in out] == ["x2", "y", "z"]
    assert len({i.identity_key for i in out}) == len(out)


def test_output_keeps_first_appearance_order(make_resume):
    items = [
        make_resume("b1", tmdb="2"),
        make_resume("a1", tmdb="1"),
        make_resume("b2", tmdb="2", library_id="lib-4k", progress=99),
    ]
    assert [i.id for i in _run(items)] == ["b2", "a1"]


def test_idempotent(make_resume):
    items = [
        make_resume("hd", tmdb="603", library_id="lib-movies", progress=20),
        make_resume("uhd", tmdb="603", library_id="lib-4k", progress=60),
        make_resume("other", tmdb="604"),
    ]
    once = _run(items)
    twice = _run(once)
    assert [i.model_dump() for i in twice] == [i.model_dump() for i in once]


def test_input_is_not_mutated(make_resume):
    item = make_resume("hd", tmdb="603", library_id="lib-movies")
    assert item.library_name is None
    out = _run([item])
    assert out[0].library_name == "Movies"
    assert item.library_name is None
