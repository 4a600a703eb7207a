"""Turning fetched items into briefing topics, heuristically or via an LLM."""

from alteris_briefing.clustering.heuristic import TopicClusterer, build_heuristic_topics
from alteris_briefing.clustering.preprocess import (
    BatchPreprocessor,
    BatchResult,
    batch_to_topics,
    presort_items,
    split_batches,
)

__all__ = [
    "BatchPreprocessor",
    "BatchResult",
    "TopicClusterer",
    "batch_to_topics",
    "build_heuristic_topics",
    "presort_items",
    "split_batches",
]
