import os
from datetime import timedelta

import pytest

from marquee_library.filenames import apply_merge_tags, item_basename, sanitize_filename, user_folder_name
from marquee_library.nfo import render_nfo
from marquee_library.types import LibraryItem
from marquee_library.writer import WriterOptions, write_library

from conftest import NOW


def _movie(pid, title, rank=None, source="/media/movies/x.mkv", **kw):
    return LibraryItem(provider_item_id=pid, title=title, year=2001, source=source, rank=rank, **kw)


def test_filenames_are_deterministic():
    assert item_basename(_movie("42", "Alien: Resurrection?")) == "Alien Resurrection (2001) [42]"
    ep = LibraryItem(
        provider_item_id="7", title="Pilot", kind="episode", series_name="Lost", season_number=1, episode_number=2
    )
    assert item_basename(ep) == "Lost - S01E02 - Pilot [7]"
    assert sanitize_filename('  a/b\\c  <d>  ') == "abc d"
    assert user_folder_name("Mary Jane", "abc") == "Mary_Jane_abc"
    assert apply_merge_tags("{{username}}'s Picks ({{userid}})", username="Mary", user_id="9") == "Mary's Picks (9)"


def test_reconciles_against_existing_entries(tmp_path):
    a, b, c = _movie("a", "A"), _movie("b", "B"), _movie("c", "C")
    write_library([b, c], tmp_path)

    result = write_library([a, b], tmp_path)
    assert (result.added, result.deleted, result.unchanged) == (1, 1, 1)
    assert result.written == 2
    assert result.has_changes
    assert sorted(p.name for p in tmp_path.iterdir()) == ["A (2001) [a].strm", "B (2001) [b].strm"]


def test_second_run_converges(tmp_path):
    items = [_movie("a", "A"), _movie("b", "B")]
    write_library(items, tmp_path)
    again = write_library(items, tmp_path)
    assert (again.added, again.deleted, again.unchanged) == (0, 0, 2)
    assert not again.has_changes


def test_empty_desired_set_clears_library(tmp_path):
    write_library([_movie("a", "A"), _movie("b", "B")], tmp_path)
    result = write_library([], tmp_path)
    assert result.deleted == 2
    assert list(tmp_path.iterdir()) == []


def test_pointer_content_is_refreshed(tmp_path):
    write_library([_movie("a", "A", source="/old/path.mkv")], tmp_path)
    result = write_library([_movie("a", "A", source="http://media/stream")], tmp_path)
    assert result.unchanged == 1
    assert (tmp_path / "A (2001) [a].strm").read_text() == "http://media/stream\n"


def test_rank_drives_date_added(tmp_path):
    items = [_movie("a", "A", rank=1), _movie("b", "B", rank=2), _movie("c", "C", rank=3)]
    write_library(items, tmp_path, options=WriterOptions(write_nfo=True), now=NOW)

    mtimes = [os.stat(tmp_path / f"{n} (2001) [{n.lower()}].strm").st_mtime for n in "ABC"]
    assert mtimes[0] > mtimes[1] > mtimes[2]
    assert mtimes[0] - mtimes[1] == pytest.approx(86400)

    nfo = (tmp_path / "B (2001) [b].nfo").read_text()
    assert "<sorttitle>02 - B</sorttitle>" in nfo
    expected = (NOW - timedelta(days=1)).strftime("%Y-%m-%d %H:%M:%S")
    assert f"<dateadded>{expected}</dateadded>" in nfo


def test_sort_titles_widen_past_two_digit_ranks(tmp_path):
    items = [_movie(str(n), f"T{n}", rank=n) for n in (9, 11, 100)]
    write_library(items, tmp_path, options=WriterOptions(write_nfo=True), now=NOW)

    titles = [
        (tmp_path / f"T{n} (2001) [{n}].nfo").read_text().split("<sorttitle>")[1].split("</sorttitle>")[0]
        for n in (9, 11, 100)
    ]
    assert titles == ["009 - T9", "011 - T11", "100 - T100"]
    assert sorted(titles) == titles


def test_interrupted_write_leftovers_are_not_entries(tmp_path):
    items = [_movie("a", "A"), _movie("b", "B")]
    write_library(items, tmp_path)
    (tmp_path / ".A (2001) [a].strm.tmp").write_text("/media/half")
    (tmp_path / "B (2001) [b].strm.tmp").write_text("/media/half")

    again = write_library(items, tmp_path)
    assert (again.added, again.deleted, again.unchanged) == (0, 0, 2)
    assert not again.has_changes
    assert sorted(p.name for p in tmp_path.iterdir()) == ["A (2001) [a].strm", "B (2001) [b].strm"]


def test_failed_item_keeps_existing_entry(tmp_path):
    write_library([_movie("a", "A"), _movie("b", "B")], tmp_path)
    result = write_library([_movie("a", "A", source=None), _movie("b", "B")], tmp_path)
    assert result.failed == 1
    assert result.failures[0]["id"] == "a"
    assert result.deleted == 0
    assert (tmp_path / "A (2001) [a].strm").exists()


def test_duplicate_items_written_once(tmp_path):
    result = write_library([_movie("a", "A"), _movie("a", "A")], tmp_path)
    assert result.written == 1
    assert result.added == 1


def test_folder_layout_for_series(tmp_path):
    show = LibraryItem(provider_item_id="s1", title="Dark", kind="series", year=2017, rank=1, network="Netflix")
    for n in (1, 2):
        show.episodes.append(
            LibraryItem(
                provider_item_id=f"e{n}",
                title=f"Ep {n}",
                kind="episode",
                source=f"/media/dark/{n}.mkv",
                series_name="Dark",
                season_number=1,
                episode_number=n,
            )
        )
    opts = WriterOptions(layout="folder", write_nfo=True)
    result = write_library([show], tmp_path, options=opts, now=NOW)
    folder = tmp_path / "Dark (2017) [s1]"
    assert result.added == 1
    assert (folder / "tvshow.nfo").exists()
    assert (folder / "Season 01" / "Dark - S01E01 - Ep 1 [e1].strm").read_text() == "/media/dark/1.mkv\n"

    # an episode that disappears is pruned inside the kept folder
    show.episodes.pop()
    again = write_library([show], tmp_path, options=opts, now=NOW)
    assert again.unchanged == 1
    assert not (folder / "Season 01" / "Dark - S01E02 - Ep 2 [e2].strm").exists()


def test_folder_layout_queues_missing_images(tmp_path):
    movie = _movie("a", "A", poster_url="http://img/poster.jpg", backdrop_url="http://img/fanart.jpg")
    opts = WriterOptions(layout="folder", write_nfo=True, download_images=True)
    result = write_library([movie], tmp_path, options=opts, now=NOW)
    assert [t.dest.name for t in result.image_tasks] == ["poster.jpg", "fanart.jpg"]
    assert (tmp_path / "A (2001) [a]" / "movie.nfo").exists()


def test_nfo_document():
    item = _movie("a", "Heat", rank=3, genres=["Crime", "Drama"], imdb_id="tt0113277", overview="L.A. & crime")
    nfo = render_nfo(item, now=NOW)
    assert nfo.startswith('<?xml version="1.0" encoding="utf-8"?>\n<movie>')
    assert "<genre>Crime</genre>" in nfo
    assert '<uniqueid type="imdb">tt0113277</uniqueid>' in nfo
    assert "L.A. &amp; crime" in nfo
    assert "<sorttitle>03 - Heat</sorttitle>" in nfo
