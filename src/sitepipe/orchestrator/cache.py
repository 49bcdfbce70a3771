from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Tuple


_BRACES = re.compile(r"\{([^{}]*,[^{}]*)\}")


def expand_braces(pattern: str) -> List[str]:
    """``a/*.{png,jpg}`` -> ``["a/*.png", "a/*.jpg"]``."""
    m = _BRACES.search(pattern)
    if not m:
        return [pattern]
    out: List[str] = []
    for alt in m.group(1).split(","):
        out.extend(expand_braces(pattern[: m.start()] + alt + pattern[m.end() :]))
    return out


def glob_base(pattern: str) -> Path:
    """Leading directory of ``pattern`` that contains no wildcard."""
    parts: List[str] = []
    for part in Path(pattern).parts:
        if any(ch in part for ch in "*?[{"):
            break
        parts.append(part)
    else:
        # no wildcard at all: the base is the file's directory
        return Path(*parts).parent if parts else Path(".")
    return Path(*parts) if parts else Path(".")


@lru_cache(maxsize=256)
def _translate(pattern: str) -> re.Pattern:
    """Glob to regex where ``*`` and ``?`` stop at ``/`` and ``**/`` spans directories."""
    i, n, out = 0, len(pattern), []
    while i < n:
        c = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
            continue
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if c == "*":
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            j = pattern.find("]", i + 1)
            if j == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : j].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = j
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


def _match(path: str, pattern: str) -> bool:
    return _translate(pattern).match(path) is not None


def _normalize(path: Path) -> str:
    return path.as_posix()


def expand_globs(
    patterns: Iterable[str],
    root: Path,
    exclude: Iterable[str] = (),
) -> List[Tuple[Path, Path]]:
    """Expand patterns relative to ``root``.

    Returns sorted ``(file, base)`` pairs where ``base`` is the pattern's
    non-wildcard prefix, used to place the file under an output directory.
    """
    excluded = [_normalize(root / e) for pat in exclude for e in expand_braces(pat)]
    seen: dict[Path, Path] = {}
    for raw in patterns:
        for pat in expand_braces(raw):
            full = _normalize(root / pat)
            base = root / glob_base(pat)
            if not any(ch in pat for ch in "*?["):
                p = root / pat
                if p.is_file():
                    seen.setdefault(p, base)
                continue
            for dirpath, _, files in os.walk(base):
                for file in files:
                    p = Path(dirpath) / file
                    s = _normalize(p)
                    if _match(s, full) and not any(_match(s, e) for e in excluded):
                        seen.setdefault(p, base)
    return sorted(seen.items())


def safe_stat(path: Path) -> dict:
    try:
        st = path.stat()
        return {"size": st.st_size, "mtime": st.st_mtime}
    except FileNotFoundError:
        return {"size": None, "mtime": None}


def is_newer(src: Path, dest: Path) -> bool:
    """True when ``src`` must be (re)processed into ``dest``.

    The output counts as up to date when it exists and its mtime is not older
    than the input's.
    """
    d = safe_stat(dest)
    if d["mtime"] is None:
        return True
    return safe_stat(src)["mtime"] > d["mtime"]


def target_path(src: Path, base: Path, out_dir: Path, suffix: str | None = None) -> Path:
    try:
        rel = src.relative_to(base)
    except ValueError:
        rel = Path(src.name)
    dest = out_dir / rel
    return dest.with_suffix(suffix) if suffix is not None else dest


def newer_only(
    pairs: Iterable[Tuple[Path, Path]], out_dir: Path, suffix: str | None = None
) -> Tuple[List[Tuple[Path, Path]], List[Path]]:
    """Split inputs into ``(src, dest)`` pairs to process and skipped sources."""
    todo: List[Tuple[Path, Path]] = []
    skipped: List[Path] = []
    for src, base in pairs:
        dest = target_path(src, base, out_dir, suffix)
        if is_newer(src, dest):
            todo.append((src, dest))
        else:
            skipped.append(src)
    return todo, skipped


def sync_mtime(src: Path, dest: Path) -> None:
    """Give ``dest`` the mtime of ``src`` so the next run skips it."""
    st = src.stat()
    os.utime(dest, ns=(st.st_atime_ns, st.st_mtime_ns))
