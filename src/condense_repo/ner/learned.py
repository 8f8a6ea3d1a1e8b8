"""Entity extraction with a token-classification model run through ONNX Runtime.

The model labels whitespace tokens with BIO tags (`B-FUNC`, `I-FUNC`, `O`, ...).
`onnxruntime` and `numpy` come from the `ml` extra and are imported on first
use only. Without them, or without a model file, every call is answered by
the pattern extractor.

The time budget is checked after inference returns: a slow run is thrown
away and replaced by pattern extraction, it is never interrupted.
"""

from __future__ import annotations

import importlib
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from condense_repo.config import EntityType, NamedEntity
from condense_repo.logging import logger
from condense_repo.ner.base import BackendStatus, dedupe
from condense_repo.ner.pattern import PatternExtractor

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from condense_repo.settings import SummarizationOptions

DEFAULT_MODEL_PATH = Path("models") / "codebert-ner.onnx"
DEFAULT_LABELS: tuple[str, ...] = (
    "O",
    "B-CLASS",
    "I-CLASS",
    "B-FUNC",
    "I-FUNC",
    "B-VAR",
    "I-VAR",
    "B-ENUM",
    "I-ENUM",
    "B-IMP",
    "I-IMP",
)
CLS_TOKEN_ID = 101
SEP_TOKEN_ID = 102
UNK_TOKEN_ID = 100
MAX_SEQ_LENGTH = 512

_MODEL_TYPES: dict[str, EntityType] = {
    "CLASS": EntityType.CLASS,
    "FUNC": EntityType.FUNCTION,
    "VAR": EntityType.VARIABLE,
    "ENUM": EntityType.ENUM,
    "IMP": EntityType.IMPORT,
}


def map_entity_type(label_type: str) -> EntityType:
    """Map a model label suffix (`FUNC`, `CLASS`, ...) to an entity type."""
    return _MODEL_TYPES.get(label_type, EntityType.OTHER)


def decode_bio(tokens: Sequence[str], labels: Sequence[str]) -> list[tuple[str, str]]:
    """Group BIO-labelled tokens into entity spans.

    A span starts at a `B-<T>` label and extends over the following `I-<T>`
    labels of the same type; its tokens are joined with spaces. Stray `I-`
    labels and `O` labels are skipped.

    Args:
        tokens (Sequence[str]): the tokens
        labels (Sequence[str]): one label per token

    Returns:
        list[tuple[str, str]]: `(text, type)` pairs in token order
    """
    spans: list[tuple[str, str]] = []
    size = min(len(tokens), len(labels))
    i = 0
    while i < size:
        label = labels[i]
        if not label.startswith("B-"):
            i += 1
            continue
        kind = label[2:]
        words = [tokens[i]]
        j = i + 1
        while j < size and labels[j] == f"I-{kind}":
            words.append(tokens[j])
            j += 1
        spans.append((" ".join(words), kind))
        i = j
    return spans


@dataclass
class _Model:
    session: Any
    numpy: Any
    vocab: dict[str, int]
    labels: tuple[str, ...]
    input_name: str
    input_dtype: Any
    output_name: str
    cls_id: int
    sep_id: int
    unk_id: int


def _read_lines(path: Path) -> list[str]:
    return [line.rstrip("\r\n") for line in path.read_text(encoding="utf-8").splitlines()]


class LearnedExtractor:
    """Model-based entity extraction with a soft time budget and a per-path cache.

    The model is loaded on the first extraction (or `status()` call) behind a
    once-only guard. Cache entries are keyed by path string; concurrent
    misses on the same key wait for the first computation instead of running
    the model twice.
    """

    name = "learned"

    def __init__(
        self,
        options: SummarizationOptions,
        *,
        session_factory: Callable[[str], Any] | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._options = options
        self._session_factory = session_factory
        self._clock = clock
        self._fallback = PatternExtractor()

        self._init_lock = threading.Lock()
        self._initialized = False
        self._model: _Model | None = None
        self._failure = ""

        self._cache_lock = threading.Lock()
        self._cache: dict[str, tuple[NamedEntity, ...]] = {}
        self._key_locks: dict[str, threading.Lock] = {}

    @property
    def model_path(self) -> Path:
        return Path(self._options.ml_model_path) if self._options.ml_model_path else DEFAULT_MODEL_PATH

    def status(self) -> BackendStatus:
        if self._ensure_model() is None:
            return BackendStatus.unavailable(self.name, self._failure)
        return BackendStatus.ok(self.name)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def _ensure_model(self) -> _Model | None:
        with self._init_lock:
            if not self._initialized:
                self._initialized = True
                try:
                    self._model = self._load_model()
                except (ImportError, OSError, RuntimeError, ValueError) as e:
                    self._failure = str(e)
                    logger.warning("Learned entity model unavailable, using patterns: %s", e)
            return self._model

    def _load_model(self) -> _Model:
        path = self.model_path
        if not path.is_file():
            msg = f"model file not found: {path}"
            raise FileNotFoundError(msg)
        vocab_path = path.parent / "vocab.txt"
        vocab = {token: idx for idx, token in enumerate(_read_lines(vocab_path))}
        labels_path = path.parent / "labels.txt"
        labels = tuple(_read_lines(labels_path)) if labels_path.is_file() else DEFAULT_LABELS

        np = importlib.import_module("numpy")
        if self._session_factory is not None:
            session = self._session_factory(str(path))
        else:
            ort = importlib.import_module("onnxruntime")
            sess_options = ort.SessionOptions()
            sess_options.intra_op_num_threads = 2
            sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_BASIC
            session = ort.InferenceSession(str(path), sess_options, providers=["CPUExecutionProvider"])

        model_input = session.get_inputs()[0]
        outputs = [o.name for o in session.get_outputs()]
        logger.info("Loaded entity model %s (%d tokens, %d labels)", path, len(vocab), len(labels))
        return _Model(
            session=session,
            numpy=np,
            vocab=vocab,
            labels=labels,
            input_name=model_input.name,
            input_dtype=np.int32 if "int32" in str(model_input.type) else np.int64,
            output_name="logits" if "logits" in outputs else outputs[0],
            cls_id=vocab.get("[CLS]", CLS_TOKEN_ID),
            sep_id=vocab.get("[SEP]", SEP_TOKEN_ID),
            unk_id=vocab.get("[UNK]", UNK_TOKEN_ID),
        )

    def extract_entities(self, content: str, path: Path | str) -> list[NamedEntity]:
        """Extract entities, from the cache when possible.

        Args:
            content (str): the source text
            path (Path | str): the file path, also the cache key

        Returns:
            list[NamedEntity]: the entities
        """
        if not self._options.cache_ml_results:
            return self._extract_within_budget(content, path)

        key = str(path)
        with self._cache_lock:
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            with self._cache_lock:
                cached = self._cache.get(key)
            if cached is not None:
                return list(cached)
            result = self._extract_within_budget(content, path)
            with self._cache_lock:
                self._cache[key] = tuple(result)
                self._key_locks.pop(key, None)
        return result

    def _extract_within_budget(self, content: str, path: Path | str) -> list[NamedEntity]:
        model = self._ensure_model()
        if model is None:
            return self._fallback.extract_entities(content, path)
        start = self._clock()
        try:
            entities = self._infer(model, content)
        except Exception as e:
            logger.warning("Entity model inference failed for %s: %s", path, e)
            return self._fallback.extract_entities(content, path)
        elapsed_ms = (self._clock() - start) * 1000.0
        if elapsed_ms > self._options.max_ml_processing_time_ms:
            logger.warning(
                "Entity model exceeded its budget for %s (%.0f ms > %d ms)",
                path,
                elapsed_ms,
                self._options.max_ml_processing_time_ms,
            )
            return self._fallback.extract_entities(content, path)
        return entities

    def tokenize(self, model: _Model, line: str) -> tuple[list[str], list[int]]:
        """Split a line on whitespace and map the words to vocabulary ids.

        Returns:
            tuple[list[str], list[int]]: the kept words and the ids framed by CLS and SEP
        """
        words = line.split()[: MAX_SEQ_LENGTH - 2]
        ids = [model.cls_id, *(model.vocab.get(w, model.unk_id) for w in words), model.sep_id]
        return words, ids

    def _infer(self, model: _Model, content: str) -> list[NamedEntity]:
        np = model.numpy
        entities: list[NamedEntity] = []
        for line in content.splitlines():
            words, ids = self.tokenize(model, line)
            if not words:
                continue
            inputs = np.asarray([ids], dtype=model.input_dtype)
            logits = np.asarray(model.session.run([model.output_name], {model.input_name: inputs})[0])[0]
            body = logits[1 : len(words) + 1]
            shifted = np.exp(body - body.max(axis=-1, keepdims=True))
            probs = shifted / shifted.sum(axis=-1, keepdims=True)
            best = probs.argmax(axis=-1)
            labels = [
                model.labels[int(idx)]
                if int(idx) < len(model.labels) and probs[pos, idx] >= self._options.ml_confidence_threshold
                else "O"
                for pos, idx in enumerate(best)
            ]
            entities.extend(
                NamedEntity(name=text, type=map_entity_type(kind)) for text, kind in decode_bio(words, labels)
            )
        return dedupe(entities)
