from __future__ import annotations

import io
import mmap
import stat
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

BINARY_SNIFF_BYTES = 8192
READ_CHUNK_BYTES = 16 * 1024
MMAP_THRESHOLD = 1024 * 1024
MAX_FILE_SIZE = 100 * 1024 * 1024

README_NAMES = frozenset({"readme", "readme.md", "readme.txt"})


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def is_regular_file(path: Path) -> bool:
    """Check if a file is regular.

    Args:
        path (Path): path to test.

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    try:
        st = path.stat()
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode)


def is_binary(path: Path, nbytes: int = BINARY_SNIFF_BYTES) -> bool:
    """Check if a file looks binary.

    A NUL byte anywhere in the first `nbytes` bytes marks the file as binary.

    Args:
        path (Path): path to test.
        nbytes (int, optional): number of bytes sampled. Defaults to 8192.

    Returns:
        bool: True if the sample contains a NUL byte.
    """
    with path.open("rb") as f:
        chunk = f.read(nbytes)
    return b"\x00" in chunk


def read_buffered(path: Path, chunk_size: int = READ_CHUNK_BYTES) -> bytes:
    """Read a whole file through a buffered reader, chunk by chunk.

    Args:
        path (Path): the file to read
        chunk_size (int, optional): bytes per read call. Defaults to 16 KiB.

    Returns:
        bytes: the file content
    """
    buf = io.BytesIO()
    with path.open("rb", buffering=chunk_size) as f:
        for blk in iter(lambda: f.read(chunk_size), b""):
            buf.write(blk)
    return buf.getvalue()


def read_mapped(path: Path) -> bytes:
    """Read a whole file through a read-only memory map.

    Args:
        path (Path): the file to read

    Returns:
        bytes: the file content, identical to `read_buffered`
    """
    with path.open("rb") as f:
        if path.stat().st_size == 0:
            return b""
        with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mm:
            return mm[:]


def count_lines(content: bytes | str) -> int:
    """Count the lines of a content.

    Every newline ends a line; a trailing segment without newline counts as one more line.

    Args:
        content (bytes | str): the content

    Returns:
        int: 0 for empty content, else the number of lines
    """
    if not content:
        return 0
    nl = b"\n" if isinstance(content, bytes) else "\n"
    lines = content.count(nl)  # type: ignore[arg-type]
    if not content.endswith(nl):  # type: ignore[arg-type]
        lines += 1
    return lines


def is_readme_file(path: Path | str) -> bool:
    """Check if a path names a README file, case-insensitively.

    Args:
        path (Path | str): the path to test

    Returns:
        bool: True for `readme`, `readme.md`, `readme.txt` or any `readme.*` name
    """
    name = Path(path).name.lower()
    return name in README_NAMES or name.startswith("readme.")


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Normalize a sequence of glob patterns by stripping whitespace and
    replacing backslashes with forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def build_tree_lines(root_name: str, rel_paths: Sequence[str]) -> list[str]:
    """Build a visual tree representation of file paths.

    Args:
        root_name (str): the name to use for the root of the tree
        rel_paths (Sequence[str]): file paths relative to the root, POSIX separators

    Returns:
        list[str]: the tree lines, suitable for printing
    """
    tree: dict[str, Any] = {}
    for rp in {p.strip("/") for p in rel_paths if p.strip("/")}:
        *dirs, name = rp.split("/")
        cur = tree
        for part in dirs:
            cur = cur.setdefault(part, {})
        cur.setdefault("__files__", set()).add(name)

    lines: list[str] = [root_name]

    def walk(node: dict[str, Any], prefix: str) -> None:
        entries = [(d, node[d]) for d in sorted((k for k in node if k != "__files__"), key=str.lower)]
        entries.extend((f, None) for f in sorted(node.get("__files__", set()), key=str.lower))
        for idx, (name, child) in enumerate(entries):
            last = idx == len(entries) - 1
            lines.append(prefix + ("└── " if last else "├── ") + name + ("/" if child is not None else ""))
            if child is not None:
                walk(child, prefix + ("    " if last else "│   "))

    walk(tree, "")
    return lines


def now_iso() -> str:
    """Return the current date and time in ISO 8601 format with timezone.

    Returns:
        str: the current date and time in ISO 8601 format with timezone
    """
    return datetime.now(UTC).astimezone().isoformat(timespec="seconds")
