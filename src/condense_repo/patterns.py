from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from condense_repo.config import DEFAULT_IGNORE_PATTERNS, EXTENDED_IGNORE_PATTERNS
from condense_repo.file_manipulation import normalize_globs
from condense_repo.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

_WILDCARDS = frozenset("*?[")


@dataclass(frozen=True)
class PathPattern:
    """A compiled glob.

    Attributes:
        glob: the glob text as given.
        regex: full-match regular expression over POSIX relative paths.
        suffix: set for `*.<ext>` globs, matched by a plain suffix compare.
    """

    glob: str
    regex: re.Pattern[str]
    suffix: str | None = None

    def matches(self, path: str) -> bool:
        """Check a relative POSIX path against the pattern.

        Args:
            path (str): the path to test, relative to the repository root

        Returns:
            bool: True if the path matches
        """
        if self.suffix is not None:
            return path.endswith(self.suffix)
        return self.regex.fullmatch(path) is not None


def _translate(body: str) -> str:
    out: list[str] = []
    i = 0
    n = len(body)
    while i < n:
        if body.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif body.startswith("**", i):
            out.append(".*")
            i += 2
        elif body[i] == "*":
            out.append("[^/]*")
            i += 1
        elif body[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(body[i]))
            i += 1
    return "".join(out)


def compile_glob(glob: str) -> PathPattern:
    """Compile a glob into a path predicate.

    Rules, applied to paths relative to the repository root:

    - `*` matches a run of characters other than `/`, `?` a single one;
    - `**/` matches zero or more whole segments, a bare `**` anything;
    - a leading `/` anchors the pattern at the root;
    - a pattern without any inner `/` floats, it matches at any depth;
    - a trailing `/` makes the pattern match everything below that directory;
    - every other character is literal, regex metacharacters included.

    Compilation never fails.

    Args:
        glob (str): the glob text

    Returns:
        PathPattern: the compiled predicate
    """
    body = glob.strip().replace("\\", "/")
    anchored = body.startswith("/")
    body = body.lstrip("/")
    floats = not anchored and "/" not in body.rstrip("/")
    if body.endswith("/"):
        body = body.rstrip("/") + "/**"
    if floats and not body.startswith("**"):
        body = "**/" + body

    suffix = None
    if floats and body.startswith("**/*.") and not _WILDCARDS.intersection(body[5:]) and "/" not in body[5:]:
        suffix = body[4:]

    return PathPattern(glob=glob, regex=re.compile(_translate(body), re.DOTALL), suffix=suffix)


class PatternMatcher:
    """Include/exclude decision for repository paths.

    A path is processed iff it matches no ignore pattern and, when include
    patterns exist, matches at least one of them.
    """

    def __init__(self, *, defaults: bool = True) -> None:
        """Create a matcher.

        Args:
            defaults (bool): start with the default ignore patterns
        """
        self._ignores: list[PathPattern] = []
        self._includes: list[PathPattern] = []
        if defaults:
            for glob in DEFAULT_IGNORE_PATTERNS:
                self.add_ignore(glob)

    @classmethod
    def for_repository(
        cls,
        root: Path,
        *,
        include: Sequence[str] = (),
        exclude: Sequence[str] = (),
        use_gitignore: bool = True,
    ) -> PatternMatcher:
        """Build the matcher used for a whole repository export.

        Args:
            root (Path): repository root
            include (Sequence[str]): include globs
            exclude (Sequence[str]): extra ignore globs
            use_gitignore (bool): load `<root>/.gitignore` when it exists

        Returns:
            PatternMatcher: matcher with default, extended, gitignore and user patterns
        """
        matcher = cls()
        for glob in EXTENDED_IGNORE_PATTERNS:
            matcher.add_ignore(glob)
        gitignore = root / ".gitignore"
        if use_gitignore and gitignore.is_file():
            matcher.load_gitignore(gitignore)
        for glob in normalize_globs(exclude):
            matcher.add_ignore(glob)
        for glob in normalize_globs(include):
            matcher.add_include(glob)
        return matcher

    @property
    def ignore_patterns(self) -> tuple[str, ...]:
        return tuple(p.glob for p in self._ignores)

    @property
    def include_patterns(self) -> tuple[str, ...]:
        return tuple(p.glob for p in self._includes)

    def add_ignore(self, glob: str) -> None:
        self._ignores.append(compile_glob(glob))

    def add_include(self, glob: str) -> None:
        self._includes.append(compile_glob(glob))

    def set_include_patterns(self, patterns: str) -> None:
        """Replace the include patterns with a comma separated list."""
        self._includes = [compile_glob(g) for g in _split_csv(patterns)]

    def set_exclude_patterns(self, patterns: str) -> None:
        """Add the globs of a comma separated list to the ignore patterns."""
        for glob in _split_csv(patterns):
            self.add_ignore(glob)

    def load_gitignore(self, path: Path) -> None:
        """Add every pattern line of an ignore file.

        Blank lines and `#` comments are skipped. Negations (`!`) are not
        supported and are skipped with a warning.

        Args:
            path (Path): the ignore file
        """
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read ignore file %s: %s", path, e)
            return
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("!"):
                logger.warning("Negated ignore pattern not supported: %s", line)
                continue
            self.add_ignore(line)

    def is_ignored(self, path: str | Path) -> bool:
        rel = _as_rel(path)
        return any(p.matches(rel) for p in self._ignores)

    def is_included(self, path: str | Path) -> bool:
        if not self._includes:
            return True
        rel = _as_rel(path)
        return any(p.matches(rel) for p in self._includes)

    def should_process(self, path: str | Path) -> bool:
        """Decide whether a relative path is eligible.

        Args:
            path (str | Path): path relative to the repository root

        Returns:
            bool: False if any ignore pattern matches, else the include decision
        """
        return not self.is_ignored(path) and self.is_included(path)

    def is_dir_ignored(self, rel_dir: str) -> bool:
        """Check whether a whole directory can be pruned from a walk.

        Args:
            rel_dir (str): directory path relative to the root, without trailing slash

        Returns:
            bool: True if an ignore pattern covers every path below the directory
        """
        probe = rel_dir.rstrip("/") + "/"
        return any(
            p.suffix is None and p.glob.rstrip().endswith(("/**", "/")) and p.matches(probe)
            for p in self._ignores
        )


def _as_rel(path: str | Path) -> str:
    return str(path).replace("\\", "/").lstrip("/")


def _split_csv(patterns: str) -> Iterable[str]:
    return [g.strip() for g in patterns.split(",") if g.strip()]
