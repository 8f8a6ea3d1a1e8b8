from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from condense_repo.logging import logger
from condense_repo.ner.base import BackendStatus
from condense_repo.ner.learned import LearnedExtractor
from condense_repo.ner.pattern import PatternExtractor
from condense_repo.ner.structural import StructuralExtractor

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from condense_repo.config import NamedEntity
    from condense_repo.ner.base import EntityExtractor
    from condense_repo.settings import SummarizationOptions


class HybridDispatcher:
    """Per-file choice between the learned, structural and pattern extractors.

    Large contents go to the learned model when it is enabled and usable,
    then the structural extractor is tried when enabled and usable, and the
    pattern extractor takes the rest. A backend that fails to construct or
    to come up stays unavailable for the dispatcher's lifetime.
    """

    name = "hybrid"

    def __init__(
        self,
        options: SummarizationOptions,
        *,
        structural_factory: Callable[[], Any] = StructuralExtractor,
        learned_factory: Callable[[SummarizationOptions], Any] = LearnedExtractor,
    ) -> None:
        self._options = options
        self._pattern = PatternExtractor()
        self._lock = threading.Lock()
        self._structural, self._structural_state = self._build(
            "structural",
            enabled=options.use_tree_sitter,
            factory=structural_factory,
        )
        self._learned, self._learned_state = self._build(
            "learned",
            enabled=options.use_ml_for_large_files,
            factory=lambda: learned_factory(options),
        )

    @staticmethod
    def _build(name: str, *, enabled: bool, factory: Callable[[], Any]) -> tuple[Any, BackendStatus | None]:
        if not enabled:
            return None, BackendStatus.unavailable(name, "disabled")
        try:
            return factory(), None
        except Exception as e:
            logger.warning("Could not construct the %s extractor: %s", name, e)
            return None, BackendStatus.unavailable(name, str(e))

    def _probe(self, extractor: Any, status: BackendStatus | None) -> BackendStatus:  # noqa: ANN401
        if status is not None:
            return status
        try:
            return extractor.status()
        except Exception as e:
            logger.warning("Could not start the %s extractor: %s", extractor.name, e)
            return BackendStatus.unavailable(extractor.name, str(e))

    @property
    def structural_status(self) -> BackendStatus:
        with self._lock:
            self._structural_state = self._probe(self._structural, self._structural_state)
            return self._structural_state

    @property
    def learned_status(self) -> BackendStatus:
        with self._lock:
            self._learned_state = self._probe(self._learned, self._learned_state)
            return self._learned_state

    def select(self, content: str) -> EntityExtractor:
        """Pick the extractor for a content.

        Args:
            content (str): the source text

        Returns:
            EntityExtractor: the extractor that will handle it
        """
        if len(content) >= self._options.ml_ner_size_threshold and self.learned_status.available:
            return self._learned
        if self.structural_status.available:
            return self._structural
        return self._pattern

    def extract_entities(self, content: str, path: Path | str) -> list[NamedEntity]:
        extractor = self.select(content)
        logger.debug("Extracting entities of %s with %s", path, extractor.name)
        return extractor.extract_entities(content, path)
