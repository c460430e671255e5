"""Scoring crawl results to decide whether to try a fallback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pagescrape.data_types import ParseResult


@dataclass(frozen=True)
class QualityWeights:
    """Weights of the quality score.

    score = has_items (items > 0)
          + some_items (items > some_items_threshold)
          + many_items (items > many_items_threshold)
          + success_rate_weight * success_rate
          - min(error_penalty * errors, max_error_penalty)

    clamped to [0, 1]. A result is accepted when its score reaches
    ``acceptance_threshold`` and it holds at least ``min_items`` items.
    """

    has_items: float = 0.3
    some_items: float = 0.2
    some_items_threshold: int = 10
    many_items: float = 0.1
    many_items_threshold: int = 50
    success_rate_weight: float = 0.3
    error_penalty: float = 0.1
    max_error_penalty: float = 0.3
    acceptance_threshold: float = 0.3
    min_items: int = 1


class QualityAssessor:
    """Computes quality scores from item count, success rate and errors."""

    def __init__(self, weights: QualityWeights | None = None) -> None:
        self.weights = weights or QualityWeights()

    def score(
        self, items_count: int, success_rate: float, errors_count: int
    ) -> float:
        """Score a result from its summary numbers.

        Args:
            items_count: Number of extracted items.
            success_rate: Fraction of successful page requests, 0 to 1.
            errors_count: Number of recorded errors.

        Returns:
            The score, clamped to [0, 1].
        """
        w = self.weights
        score = 0.0
        if items_count > 0:
            score += w.has_items
        if items_count > w.some_items_threshold:
            score += w.some_items
        if items_count > w.many_items_threshold:
            score += w.many_items
        score += success_rate * w.success_rate_weight
        score -= min(errors_count * w.error_penalty, w.max_error_penalty)
        return max(0.0, min(1.0, score))

    def score_result(self, result: ParseResult) -> float:
        return self.score(
            result.total_items,
            result.statistics.success_rate,
            len(result.metadata.errors),
        )

    def is_acceptable(self, result: ParseResult, score: float) -> bool:
        return (
            score >= self.weights.acceptance_threshold
            and result.total_items >= self.weights.min_items
        )
