"""Tests for quality scoring and acceptance."""

import pytest

from pagescrape.data_types import ParseResult
from pagescrape.quality import QualityAssessor, QualityWeights


@pytest.fixture
def assessor() -> QualityAssessor:
    return QualityAssessor()


class TestScore:
    """Tests for QualityAssessor.score."""

    @pytest.mark.parametrize(
        ("items", "success_rate", "errors", "expected"),
        [
            (0, 0.0, 0, 0.0),
            (1, 0.0, 0, 0.3),
            (25, 1.0, 0, 0.8),
            (60, 1.0, 0, 0.9),
            (5, 0.5, 1, 0.35),
            (5, 1.0, 10, 0.3),
            (0, 0.0, 5, 0.0),
        ],
    )
    def test_known_scores(
        self, assessor, items, success_rate, errors, expected
    ):
        assert assessor.score(items, success_rate, errors) == pytest.approx(
            expected
        )

    def test_more_items_never_lowers_score(self, assessor):
        """The score shall be non-decreasing in the item count."""
        scores = [assessor.score(n, 0.5, 1) for n in range(0, 80)]
        assert scores == sorted(scores)

    def test_more_errors_never_raises_score(self, assessor):
        """The score shall be non-increasing in the error count."""
        scores = [assessor.score(20, 0.5, n) for n in range(0, 8)]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.parametrize(("items", "errors"), [(0, 0), (5, 1), (60, 5)])
    def test_higher_success_rate_never_lowers_score(
        self, assessor, items, errors
    ):
        """The score shall be non-decreasing in the success rate."""
        rates = [step / 20 for step in range(21)]
        scores = [assessor.score(items, rate, errors) for rate in rates]
        assert scores == sorted(scores)
        assert scores[-1] > scores[0] or scores[0] == 1.0

    def test_score_is_clamped(self, assessor):
        assert 0.0 <= assessor.score(1000, 1.0, 0) <= 1.0

    def test_custom_weights(self):
        assessor = QualityAssessor(QualityWeights(has_items=0.5))
        assert assessor.score(1, 0.0, 0) == pytest.approx(0.5)


class TestAcceptance:
    """Tests for score_result and is_acceptable."""

    def test_score_result_reads_the_result(self, assessor):
        result = ParseResult()
        result.add_items({"text": str(n)} for n in range(12))
        result.record_success(10)
        result.add_error("one page failed")

        assert assessor.score_result(result) == pytest.approx(0.7)

    def test_threshold_with_items_accepted(self, assessor):
        result = ParseResult()
        result.add_item({"text": "a"})
        assert assessor.is_acceptable(result, 0.3) is True

    def test_low_score_rejected(self, assessor):
        result = ParseResult()
        result.add_item({"text": "a"})
        assert assessor.is_acceptable(result, 0.29) is False

    def test_empty_result_never_accepted(self, assessor):
        """A result without items shall not be accepted at any score."""
        assert assessor.is_acceptable(ParseResult(), 1.0) is False
