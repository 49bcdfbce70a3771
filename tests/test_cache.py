from __future__ import annotations

import os
from pathlib import Path

from sitepipe.orchestrator.cache import (
    expand_braces,
    expand_globs,
    glob_base,
    is_newer,
    newer_only,
    sync_mtime,
)

from .fakes import write


def test_expand_braces_multiplies_alternatives() -> None:
    assert expand_braces("img/*.{png,jpg}") == ["img/*.png", "img/*.jpg"]
    assert expand_braces("a/*.js") == ["a/*.js"]


def test_glob_base_stops_at_first_wildcard() -> None:
    assert glob_base("src/sass/**/*.scss") == Path("src/sass")
    assert glob_base("src/js/vendor/*.js*") == Path("src/js/vendor")
    assert glob_base("src/app.js") == Path("src")


def test_star_does_not_cross_directories(tmp_path: Path) -> None:
    write(tmp_path / "js" / "top.js", "")
    write(tmp_path / "js" / "sub" / "nested.js", "")

    top = [p.name for p, _ in expand_globs(["js/*.js"], tmp_path)]
    deep = [p.name for p, _ in expand_globs(["js/**/*.js"], tmp_path)]

    assert top == ["top.js"]
    assert sorted(deep) == ["nested.js", "top.js"]


def test_excludes_and_braces(tmp_path: Path) -> None:
    write(tmp_path / "sass" / "main.scss", "")
    write(tmp_path / "sass" / "vendor" / "reset.scss", "")
    write(tmp_path / "img" / "a.png", "")
    write(tmp_path / "img" / "b.gif", "")

    sass = expand_globs(["sass/**/*.scss"], tmp_path, exclude=["sass/vendor/*.scss"])
    imgs = expand_globs(["img/*.{png,gif}"], tmp_path)

    assert [p.name for p, _ in sass] == ["main.scss"]
    assert sass[0][1] == tmp_path / "sass"
    assert [p.name for p, _ in imgs] == ["a.png", "b.gif"]


def test_no_matches_is_empty(tmp_path: Path) -> None:
    assert expand_globs(["missing/**/*.js"], tmp_path) == []


def test_newer_only_is_a_per_file_decision(tmp_path: Path) -> None:
    src_dir = tmp_path / "src"
    out_dir = tmp_path / "out"
    old = write(src_dir / "old.txt", "old")
    new = write(src_dir / "new.txt", "new")
    write(out_dir / "old.txt", "old")
    sync_mtime(old, out_dir / "old.txt")

    todo, skipped = newer_only([(old, src_dir), (new, src_dir)], out_dir)

    assert todo == [(new, out_dir / "new.txt")]
    assert skipped == [old]


def test_output_older_than_input_is_reprocessed(tmp_path: Path) -> None:
    src = write(tmp_path / "a.txt", "a")
    dest = write(tmp_path / "out" / "a.txt", "a")
    st = src.stat()
    os.utime(dest, (st.st_atime, st.st_mtime - 10))

    assert is_newer(src, dest) is True
