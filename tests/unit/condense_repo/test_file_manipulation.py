from pathlib import Path

import pytest

from condense_repo.file_manipulation import (
    build_tree_lines,
    count_lines,
    is_binary,
    is_readme_file,
    is_regular_file,
    normalize_globs,
    read_buffered,
    read_mapped,
    relpath,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ("", 0),
        (b"", 0),
        ("Line 1\n", 1),
        ("Line 1\nLine 2\nLine 3", 3),
        (b"Line 1\nLine 2\n", 2),
        ("\n\n", 2),
    ],
)
def test_count_lines(content: str | bytes, expected: int) -> None:
    assert count_lines(content) == expected


@pytest.mark.unit
def test_buffered_and_mapped_reads_agree(tmp_path: Path) -> None:
    file_path = tmp_path / "big.txt"
    payload = b"0123456789abcdef\n" * 5000
    file_path.write_bytes(payload)

    assert read_buffered(file_path, chunk_size=1024) == payload
    assert read_mapped(file_path) == payload


@pytest.mark.unit
def test_read_mapped_empty_file(tmp_path: Path) -> None:
    file_path = tmp_path / "empty.txt"
    file_path.write_bytes(b"")

    assert read_mapped(file_path) == b""


@pytest.mark.unit
def test_is_binary_detects_nul_in_sample(tmp_path: Path) -> None:
    text = tmp_path / "a.txt"
    text.write_text("hello\n", encoding="utf-8")
    blob = tmp_path / "a.bin"
    blob.write_bytes(b"ab\x00cd")
    late = tmp_path / "late.bin"
    late.write_bytes(b"a" * 100 + b"\x00")

    assert not is_binary(text)
    assert is_binary(blob)
    assert not is_binary(late, nbytes=50)


@pytest.mark.unit
def test_is_regular_file(tmp_path: Path) -> None:
    file_path = tmp_path / "a.txt"
    file_path.write_text("x", encoding="utf-8")

    assert is_regular_file(file_path)
    assert not is_regular_file(tmp_path)
    assert not is_regular_file(tmp_path / "missing")


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "expected"),
    [("README.md", True), ("readme", True), ("Readme.rst", True), ("docs/README.txt", True), ("READ.md", False)],
)
def test_is_readme_file(name: str, expected: bool) -> None:
    assert is_readme_file(name) is expected


@pytest.mark.unit
def test_relpath_inside_and_outside_root(tmp_path: Path) -> None:
    assert relpath(tmp_path / "src" / "a.py", tmp_path) == "src/a.py"
    assert relpath(Path("/elsewhere/a.py"), tmp_path) == str(Path("/elsewhere/a.py"))


@pytest.mark.unit
def test_normalize_globs_strips_and_normalizes() -> None:
    assert normalize_globs(["  src/**/*.py ", "\\tests\\*.py", ""]) == ["src/**/*.py", "/tests/*.py"]


@pytest.mark.unit
def test_build_tree_lines_lists_directories_first() -> None:
    lines = build_tree_lines("repo", ["src/a.py", "README.md", "src/util/b.py"])

    assert lines == [
        "repo",
        "├── src/",
        "│   ├── util/",
        "│   │   └── b.py",
        "│   └── a.py",
        "└── README.md",
    ]
