"""Named entity extraction strategies and their selection."""

from __future__ import annotations

from dataclasses import dataclass

from condense_repo.logging import logger
from condense_repo.ner.base import BackendStatus, EntityExtractor
from condense_repo.ner.hybrid import HybridDispatcher
from condense_repo.ner.learned import LearnedExtractor, decode_bio, map_entity_type
from condense_repo.ner.pattern import PatternExtractor
from condense_repo.ner.structural import StructuralExtractor
from condense_repo.settings import NerMethod, SummarizationOptions

__all__ = [
    "BackendStatus",
    "EntityExtractor",
    "ExtractorSelection",
    "HybridDispatcher",
    "LearnedExtractor",
    "PatternExtractor",
    "StructuralExtractor",
    "create_extractor",
    "decode_bio",
    "map_entity_type",
    "select_extractor",
]


@dataclass(frozen=True)
class ExtractorSelection:
    """The extractor chosen for a configuration.

    Attributes:
        extractor: the extractor to use.
        requested: the method the configuration asked for.
        fallback_reason: why a simpler extractor replaced the requested one, empty otherwise.
    """

    extractor: EntityExtractor
    requested: NerMethod
    fallback_reason: str = ""

    @property
    def degraded(self) -> bool:
        return bool(self.fallback_reason)


def select_extractor(options: SummarizationOptions) -> ExtractorSelection:
    """Choose the extractor for `options.ner_method`, probing optional backends.

    Structural and learned extractors whose backend cannot come up are
    replaced by the pattern extractor; the hybrid dispatcher probes its
    backends itself, per file.

    Args:
        options (SummarizationOptions): the summarization options

    Returns:
        ExtractorSelection: the extractor with the fallback outcome
    """
    method = options.ner_method
    if method is NerMethod.HYBRID:
        return ExtractorSelection(extractor=HybridDispatcher(options), requested=method)
    if method is NerMethod.STRUCTURAL:
        candidate: StructuralExtractor | LearnedExtractor = StructuralExtractor()
    elif method is NerMethod.LEARNED:
        candidate = LearnedExtractor(options)
    else:
        return ExtractorSelection(extractor=PatternExtractor(), requested=method)

    status = candidate.status()
    if status.available:
        return ExtractorSelection(extractor=candidate, requested=method)
    logger.warning("Entity extractor %s unavailable, using patterns: %s", method, status.reason)
    return ExtractorSelection(extractor=PatternExtractor(), requested=method, fallback_reason=status.reason)


def create_extractor(options: SummarizationOptions | None = None) -> EntityExtractor:
    """Return the extractor selected for the options (defaults when None)."""
    return select_extractor(options or SummarizationOptions()).extractor
