from __future__ import annotations

import os
from enum import StrEnum, auto
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from condense_repo.exceptions import ConfigurationError

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "CONDENSE_REPO_"


class NerMethod(StrEnum):
    """Entity extraction strategy selector."""

    PATTERN = auto()
    STRUCTURAL = auto()
    LEARNED = auto()
    HYBRID = auto()


class SummarizationOptions(BaseModel):
    """Options of the summarizer and of the entity extractors it drives."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False, description="Summarize files above the size threshold.")
    file_size_threshold: int = Field(default=10_240, ge=0, description="Byte size above which a file is summarized.")
    include_readme: bool = Field(default=True, description="Always keep README files in full.")
    max_summary_lines: int = Field(default=200, ge=1, description="Cap on the emitted summary lines.")

    include_first_n_lines: bool = Field(default=True, description="Emit the first lines section.")
    first_n_lines_count: int = Field(default=50, ge=0, description="Number of leading lines kept.")
    include_signatures: bool = Field(default=True, description="Emit function and class signatures.")
    include_docstrings: bool = Field(default=True, description="Emit comments and docstrings.")
    include_snippets: bool = Field(default=False, description="Emit evenly spaced snippets.")
    snippets_count: int = Field(default=3, ge=0, description="Number of snippets.")

    include_entity_recognition: bool = Field(default=False, description="Emit the entity listing.")
    ner_method: NerMethod = Field(default=NerMethod.PATTERN, description="Entity extraction strategy.")
    use_tree_sitter: bool = Field(default=True, description="Allow the structural parser backend.")
    include_classes: bool = Field(default=True, description="List class entities.")
    include_functions: bool = Field(default=True, description="List function entities.")
    include_variables: bool = Field(default=True, description="List variable entities.")
    include_enums: bool = Field(default=True, description="List enum entities.")
    include_imports: bool = Field(default=True, description="List import entities.")
    max_entities: int = Field(default=100, ge=0, description="Cap on listed entities.")
    group_entities_by_type: bool = Field(default=True, description="Group the listing by entity type.")

    use_ml_for_large_files: bool = Field(default=False, description="Allow the learned model for large files.")
    ml_ner_size_threshold: int = Field(default=102_400, ge=0, description="Content size from which the model is used.")
    ml_model_path: str = Field(default="", description="ONNX model path; empty means the default location.")
    cache_ml_results: bool = Field(default=True, description="Cache model results per path.")
    ml_confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Minimum label probability.")
    max_ml_processing_time_ms: int = Field(default=5_000, ge=0, description="Soft time budget per file.")


class ScoringConfig(BaseModel):
    """Weights, thresholds and pattern lists of the file scorer."""

    model_config = ConfigDict(frozen=True)

    root_files_weight: float = 0.9
    top_level_dirs_weight: float = 0.8
    entry_points_weight: float = 0.8
    dependency_graph_weight: float = 0.7

    source_code_weight: float = 0.8
    config_files_weight: float = 0.7
    documentation_weight: float = 0.6
    test_files_weight: float = 0.5

    recently_modified_weight: float = 0.7
    recent_time_window_days: int = Field(default=7, ge=0)

    file_size_weight: float = 0.4
    large_file_threshold: int = Field(default=1_000_000, ge=0)

    code_density_weight: float = 0.5

    inclusion_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    use_tree_sitter: bool = True

    important_file_patterns: tuple[str, ...] = (
        "README.md",
        "package.json",
        "requirements.txt",
        "setup.py",
        "pyproject.toml",
        "Makefile",
        "CMakeLists.txt",
        ".gitignore",
        "Dockerfile",
        "docker-compose.yml",
        ".eslintrc.*",
        "tsconfig.json",
        "*.config.js",
        "main.*",
        "index.*",
        "app.*",
    )
    important_dir_patterns: tuple[str, ...] = ("src/", "lib/", "app/", "source/", "include/", "core/")
    source_code_extensions: tuple[str, ...] = (
        ".c",
        ".cpp",
        ".cc",
        ".cxx",
        ".h",
        ".hpp",
        ".js",
        ".ts",
        ".jsx",
        ".tsx",
        ".py",
        ".java",
        ".go",
        ".rs",
        ".rb",
        ".php",
        ".swift",
    )
    config_file_extensions: tuple[str, ...] = (".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf")
    documentation_extensions: tuple[str, ...] = (".md", ".txt", ".rst", ".adoc", ".pdf", ".doc", ".docx")
    test_file_patterns: tuple[str, ...] = (
        "test_*",
        "*_test.*",
        "*_spec.*",
        "*Test.*",
        "*Spec.*",
        "*/test/*",
        "*/tests/*",
    )


class Settings(BaseModel):
    """Configuration settings for the condense_repo command line."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    repo: Path = Field(default_factory=Path.cwd, description="Repository root.")
    output: Path = Field(default=Path("condensed.md"), description="Output file (.md or .json).")
    format: str = Field(default="", description="Force format: md or json.")
    log_file: str = Field(default="", description="Log file path.")
    report: Path | None = Field(default=None, description="Write the scoring report to this JSON file.")

    threads: int = Field(default_factory=lambda: os.cpu_count() or 4, ge=1, description="Worker threads.")
    parallel_collect: bool = Field(default=False, description="Collect files with parallel walkers.")
    use_gitignore: bool = Field(default=True, description="Honour the root .gitignore.")
    include_glob: list[str] = Field(default_factory=list, description="Include glob.")
    exclude_glob: list[str] = Field(default_factory=list, description="Exclude glob.")

    scoring: bool = Field(default=False, description="Select files by importance score.")
    scoring_config: ScoringConfig = Field(default_factory=ScoringConfig, description="Scorer settings.")
    summarization: SummarizationOptions = Field(
        default_factory=SummarizationOptions,
        description="Summarizer settings.",
    )


_ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "THREADS": ("threads",),
    "LOG_FILE": ("log_file",),
    "ML_MODEL_PATH": ("summarization", "ml_model_path"),
    "INCLUSION_THRESHOLD": ("scoring_config", "inclusion_threshold"),
}


def _read_yaml(config_file: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(config_file.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(source=config_file, reason=str(e)) from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(source=config_file, reason="top level must be a mapping")
    return raw


def _env_values(env_file: str | None) -> dict[str, str]:
    values: dict[str, str] = {}
    if env_file:
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update(os.environ)
    return {k.removeprefix(ENV_PREFIX): v for k, v in values.items() if k.startswith(ENV_PREFIX)}


def _set_nested(data: dict[str, Any], keys: tuple[str, ...], value: Any) -> None:  # noqa: ANN401
    cur = data
    for key in keys[:-1]:
        cur = cur.setdefault(key, {})
    cur[keys[-1]] = value


def load_settings(
    config_file: Path | None = None,
    *,
    env_file: str | None = ENV_FILE,
    **overrides: Any,  # noqa: ANN401
) -> Settings:
    """Build the settings from a YAML file, the environment and explicit overrides.

    Later sources win: YAML file, then `.env` and `CONDENSE_REPO_*` environment
    variables, then the keyword overrides.

    Args:
        config_file (Path | None): optional YAML file with the settings layout
        env_file (str | None): dotenv file to read, found from the working directory by default
        **overrides: explicit top-level settings values

    Raises:
        ConfigurationError: if the YAML file cannot be read or the values do not validate

    Returns:
        Settings: the validated settings
    """
    data: dict[str, Any] = _read_yaml(config_file) if config_file else {}
    for name, value in _env_values(env_file).items():
        keys = _ENV_OVERRIDES.get(name)
        if keys:
            _set_nested(data, keys, value)
    data.update(overrides)
    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigurationError(source=config_file or Path(env_file or "."), reason=str(e)) from e
