"""Tests for heuristic page-structure analysis."""

import pytest

from pagescrape.analysis.structure import (
    PageAnalysis,
    PageStructureAnalyzer,
    SelectorSuggestion,
)
from tests.mock_site import generate_shop_html

NEWS_HTML = """
<html><head><title>Daily News</title>
<meta name="description" content="Latest news and headline stories">
</head><body>
<header>Site</header><nav>Menu</nav>
<div class="content">
  <article class="article"><h2>One</h2><p>First story</p></article>
  <article class="article"><h2>Two</h2><p>Second story</p></article>
  <article class="article"><h2>Three</h2><p>Third story</p></article>
</div>
<table><tr><td>1</td></tr><tr><td>2</td></tr><tr><td>3</td></tr></table>
<footer>Footer</footer>
</body></html>
"""


@pytest.fixture
def analyzer() -> PageStructureAnalyzer:
    return PageStructureAnalyzer()


class TestAnalyze:
    """Tests for PageStructureAnalyzer.analyze."""

    def test_shop_page(self, analyzer):
        analysis = analyzer.analyze(generate_shop_html(), "http://x/shop")

        assert analysis.page_type == "ecommerce"
        assert analysis.suggested_selectors["prices"].selector == ".price"
        assert analysis.suggested_selectors["prices"].count == 6
        assert analysis.content_structure["main_content_area"] == "main"
        assert analysis.content_structure["repeating_elements"] == {
            "div.product-item": 6,
            "span.price": 6,
            "button.add-to-cart": 6,
        }
        assert analysis.confidence == pytest.approx(0.95)
        assert {r.type for r in analysis.recommendations} == {
            "success",
            "tip",
        }

    def test_news_page(self, analyzer):
        analysis = analyzer.analyze(NEWS_HTML)

        assert analysis.page_type == "news"
        assert analysis.suggested_selectors["articles"].count == 3
        assert analysis.preferred_item_selector() == "article"
        assert analysis.content_structure["has_header"] is True
        assert analysis.content_structure["has_sidebar"] is False
        assert analysis.data_patterns[0].type == "table"
        assert analysis.data_patterns[0].item_count == 3

    def test_empty_page(self, analyzer):
        """Empty input shall produce a low-confidence general analysis."""
        analysis = analyzer.analyze("")

        assert analysis.page_type == "general"
        assert analysis.confidence == pytest.approx(0.5)
        assert analysis.recommendations[0].type == "warning"
        assert analysis.preferred_item_selector() is None


class TestPreferredItemSelector:
    """Tests for PageAnalysis.preferred_item_selector."""

    def test_products_before_articles(self):
        analysis = PageAnalysis(
            suggested_selectors={
                "articles": SelectorSuggestion("article", 4),
                "products": SelectorSuggestion(".product", 2),
            }
        )
        assert analysis.preferred_item_selector() == ".product"

    def test_empty_suggestions_ignored(self):
        analysis = PageAnalysis(
            suggested_selectors={
                "products": SelectorSuggestion(".product", 0),
                "posts": SelectorSuggestion(".post", 5),
            }
        )
        assert analysis.preferred_item_selector() == ".post"
