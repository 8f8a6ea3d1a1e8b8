from __future__ import annotations

from enum import StrEnum, auto
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field

_ = Path()


class FileType(StrEnum):
    """Language family of a file, derived from its extension.

    The families drive every per-language table of the package: signature
    patterns in the summarizer, comment syntax in the density analyzer,
    import patterns of the dependency graph and entity patterns.
    """

    PYTHON = auto()
    JAVASCRIPT = auto()
    TYPESCRIPT = auto()
    C = auto()
    CPP = auto()
    JAVA = auto()
    GO = auto()
    RUST = auto()
    RUBY = auto()
    PHP = auto()
    SWIFT = auto()
    BASH = auto()
    MARKDOWN = auto()
    JSON = auto()
    YAML = auto()
    TOML = auto()
    INI = auto()
    HTML = auto()
    CSS = auto()
    OTHER = auto()


EXT2LANG: dict[str, FileType] = {
    ".bash": FileType.BASH,
    ".c": FileType.C,
    ".cc": FileType.CPP,
    ".cfg": FileType.INI,
    ".conf": FileType.INI,
    ".cpp": FileType.CPP,
    ".css": FileType.CSS,
    ".cxx": FileType.CPP,
    ".go": FileType.GO,
    ".h": FileType.C,
    ".hpp": FileType.CPP,
    ".htm": FileType.HTML,
    ".html": FileType.HTML,
    ".ini": FileType.INI,
    ".java": FileType.JAVA,
    ".js": FileType.JAVASCRIPT,
    ".json": FileType.JSON,
    ".jsx": FileType.JAVASCRIPT,
    ".markdown": FileType.MARKDOWN,
    ".md": FileType.MARKDOWN,
    ".mjs": FileType.JAVASCRIPT,
    ".php": FileType.PHP,
    ".py": FileType.PYTHON,
    ".rb": FileType.RUBY,
    ".rs": FileType.RUST,
    ".sh": FileType.BASH,
    ".swift": FileType.SWIFT,
    ".toml": FileType.TOML,
    ".ts": FileType.TYPESCRIPT,
    ".tsx": FileType.TYPESCRIPT,
    ".yaml": FileType.YAML,
    ".yml": FileType.YAML,
}

_FENCE_LANGUAGE: dict[FileType, str] = {
    FileType.PYTHON: "python",
    FileType.JAVASCRIPT: "javascript",
    FileType.TYPESCRIPT: "typescript",
    FileType.C: "c",
    FileType.CPP: "cpp",
    FileType.JAVA: "java",
    FileType.GO: "go",
    FileType.RUST: "rust",
    FileType.RUBY: "ruby",
    FileType.PHP: "php",
    FileType.SWIFT: "swift",
    FileType.BASH: "bash",
    FileType.MARKDOWN: "markdown",
    FileType.JSON: "json",
    FileType.YAML: "yaml",
    FileType.TOML: "toml",
    FileType.INI: "ini",
    FileType.HTML: "html",
    FileType.CSS: "css",
    FileType.OTHER: "",
}

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git/**",
    "node_modules/**",
    "*.o",
    "*.obj",
    "*.exe",
    "*.dll",
    "*.lib",
    "*.a",
    "*.so",
    "*.pyc",
    "__pycache__/**",
    ".DS_Store",
)

# Added on top of the defaults when a whole repository is exported.
EXTENDED_IGNORE_PATTERNS: tuple[str, ...] = (
    ".svn/**",
    ".hg/**",
    "build/**",
    "dist/**",
    "out/**",
    "target/**",
    "bin/**",
    "obj/**",
    "vendor/**",
    "bower_components/**",
    "jspm_packages/**",
    "packages/**",
    "_deps/**",
    ".dockerignore",
    ".cache/**",
    ".pytest_cache/**",
    ".nyc_output/**",
    ".idea/**",
    ".vscode/**",
    "*.sublime-*",
    "*.swp",
    "*.dylib",
    "*.class",
    "*.jar",
    "*.war",
    "*.pyo",
    "*.zip",
    "*.tar.gz",
    "*.tgz",
    "*.rar",
    "*.7z",
    "*.log",
    "logs/**",
    "CMakeFiles/**",
    "CMakeCache.txt",
    "cmake_install.cmake",
)


def guess_file_type(path: Path | str) -> FileType:
    """Heuristic guess of the language family based on extension.

    Args:
        path (Path | str): The file path to guess the type for.

    Returns:
        FileType: The guessed file type, or FileType.OTHER if unknown.
    """
    return EXT2LANG.get(Path(path).suffix.lower(), FileType.OTHER)


def guess_language(file_type: FileType) -> str:
    """Get the suggested code fence language for a given file type.

    Args:
        file_type (FileType): The categorized file type.

    Returns:
        str: The suggested language name for code fences, or empty string if none.
    """
    return _FENCE_LANGUAGE.get(file_type, "")


class EntityType(StrEnum):
    """Kind of a named code entity."""

    CLASS = auto()
    FUNCTION = auto()
    VARIABLE = auto()
    ENUM = auto()
    IMPORT = auto()
    OTHER = auto()


class NamedEntity(BaseModel):
    """A named code entity found in a file."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Entity identifier as written in the source")
    type: EntityType = Field(default=EntityType.OTHER, description="Entity kind")


class FileRecord(BaseModel):
    """Outcome of reading one file during a scan.

    Records are published once by the worker that produced them; later
    enrichment (entities, summary parts) goes through `model_copy(update=...)`.

    Attributes:
        path: Absolute path to the file on disk.
        rel: Path relative to the scanned root, POSIX separators.
        content: Raw bytes, None when the file was skipped or errored.
        byte_size: File size in bytes.
        line_count: Number of lines of the content.
        processed: Whether the content was read.
        skipped: Whether the file was rejected (binary or oversized).
        error: Error message when reading failed.
        summarized: Whether a summary replaced the content in the export.
        first_lines: First lines kept for the summary.
        snippets: Representative snippets kept for the summary.
        entities: Named entities recognised in the content.
        formatted_entities: Display form of the entity listing.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path = Field(..., description="Absolute file path")
    rel: str = Field(default="", description="File path relative to the scanned root")
    content: bytes | None = Field(default=None, description="File bytes")
    byte_size: int = Field(default=0, ge=0, description="File size in bytes")
    line_count: int = Field(default=0, ge=0, description="Number of lines")
    processed: bool = Field(default=False, description="Content was read")
    skipped: bool = Field(default=False, description="File was rejected without error")
    error: str | None = Field(default=None, description="Error message")
    summarized: bool = Field(default=False, description="Summary replaces content")
    first_lines: str | None = Field(default=None, description="Leading lines kept for the summary")
    snippets: tuple[str, ...] = Field(default=(), description="Representative snippets")
    entities: tuple[NamedEntity, ...] = Field(default=(), description="Named entities")
    formatted_entities: str | None = Field(default=None, description="Entity listing for display")

    @computed_field
    @property
    def file_type(self) -> FileType:
        """Categorize the file type based on extension."""
        return EXT2LANG.get(self.path.suffix.lower(), FileType.OTHER)

    @computed_field
    @property
    def language(self) -> str:
        """Get the suggested code fence language based on the file type."""
        return _FENCE_LANGUAGE.get(self.file_type, "")

    def text(self) -> str:
        """Decode the content as UTF-8, replacing undecodable bytes.

        Returns:
            str: the decoded content, empty when nothing was read
        """
        if self.content is None:
            return ""
        return self.content.decode("utf-8", errors="replace")


class ProgressInfo(BaseModel):
    """Snapshot of a scan's progress counters."""

    model_config = ConfigDict(frozen=True)

    total_files: int = 0
    processed_files: int = 0
    skipped_files: int = 0
    error_files: int = 0
    current_file: str = ""
    is_complete: bool = False

    @computed_field
    @property
    def percentage(self) -> float:
        """Share of finished files, in percent."""
        if self.total_files == 0:
            return 0.0
        done = self.processed_files + self.skipped_files + self.error_files
        return done / self.total_files * 100.0


class ScoredFile(BaseModel):
    """Importance score of one file with its named components."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path = Field(..., description="Absolute file path")
    rel: str = Field(..., description="File path relative to the repository root")
    score: float = Field(..., description="Sum of the components, clamped to [0, 1]")
    component_scores: dict[str, float] = Field(default_factory=dict, description="Score per component")
    threshold: float = Field(..., description="Inclusion threshold in force when scored")

    @computed_field
    @property
    def included(self) -> bool:
        """Whether the file reaches the inclusion threshold."""
        return self.score >= self.threshold
