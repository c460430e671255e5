"""Heuristic page-structure analysis.

PageStructureAnalyzer reads raw HTML and guesses what kind of page it is,
which selectors match its repeated items, and which data patterns (tables,
lists, cards) it contains. The adaptive backend uses the suggestions to
replace a poor item selector on the first page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pagescrape.common.page_element import PageDocument, PageElement

logger = logging.getLogger(__name__)

SEMANTIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "ecommerce": (
        "price", "buy", "cart", "shop", "product", "order", "payment",
    ),
    "news": (
        "article", "news", "story", "report", "headline", "author", "date",
    ),
    "blog": ("post", "blog", "comment", "tag", "category", "archive"),
    "social": ("like", "share", "follow", "friend", "profile", "feed"),
    "forum": ("thread", "post", "reply", "user", "topic", "discussion"),
}

# Bonus signals: selector present -> page type gets +5
TYPE_MARKERS = {
    "ecommerce": '.price, [class*="price"], [class*="cost"]',
    "news": 'article, .article, [class*="article"]',
    "blog": '.post, [class*="post"], .blog',
}

PAGE_TYPE_THRESHOLD = 5

SUGGESTION_CANDIDATES: dict[str, dict[str, tuple[str, ...]]] = {
    "ecommerce": {
        "products": (
            ".product", ".item", ".product-item", '[class*="product"]',
        ),
        "prices": (".price", ".cost", '[class*="price"]', '[class*="cost"]'),
        "titles": (
            ".product-title", ".title", "h1", "h2", '[class*="title"]',
        ),
    },
    "news": {
        "articles": (
            "article", ".article", ".news-item", '[class*="article"]',
        ),
        "headlines": (
            "h1", "h2", ".headline", ".title", '[class*="headline"]',
        ),
        "content": (".content", ".text", "p", '[class*="content"]'),
    },
    "blog": {
        "posts": (".post", "article", ".entry", '[class*="post"]'),
        "titles": (".post-title", "h1", "h2", '[class*="title"]'),
    },
    "general": {
        "content": (".content", "p", ".text", "article"),
        "links": ("a",),
        "headings": ("h1", "h2", "h3"),
    },
}

# Suggestions that name a repeated item, in order of preference.
ITEM_SUGGESTIONS = ("products", "articles", "posts")

MAIN_CONTENT_CANDIDATES = (
    "main",
    '[role="main"]',
    ".main",
    ".content",
    ".container",
    "#content",
    "#main",
    "article",
    ".article",
)

CARD_SELECTORS = (".card", ".item", ".product", ".post", '[class*="card"]')

MAX_SELECTOR_MATCHES = 1000


@dataclass
class SelectorSuggestion:
    selector: str
    count: int
    samples: list[str] = field(default_factory=list)


@dataclass
class DataPattern:
    type: str
    selector: str
    item_count: int
    confidence: float


@dataclass
class Recommendation:
    type: str
    message: str


@dataclass
class PageAnalysis:
    """Result of analyzing one page.

    Attributes:
        page_type: ecommerce, news, blog, social, forum or general.
        confidence: How much to trust the analysis, 0 to 1.
        suggested_selectors: Best selector per role (products, titles...).
        data_patterns: Tables, lists and card groups, most confident first.
        recommendations: Advice for the operator.
        content_structure: Landmarks, repeated elements and media counts.
    """

    page_type: str = "general"
    confidence: float = 0.0
    suggested_selectors: dict[str, SelectorSuggestion] = field(
        default_factory=dict
    )
    data_patterns: list[DataPattern] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    content_structure: dict[str, Any] = field(default_factory=dict)

    def preferred_item_selector(self) -> str | None:
        """Return the suggested selector for repeated items, if any."""
        for role in ITEM_SUGGESTIONS:
            suggestion = self.suggested_selectors.get(role)
            if suggestion is not None and suggestion.count > 0:
                return suggestion.selector
        return None


def _selector_for(element: PageElement) -> str:
    element_id = element.get_attribute("id")
    if element_id:
        return f"{element.tag_name}#{element_id}"
    classes = element.classes()
    if classes:
        return f"{element.tag_name}.{classes[0]}"
    return element.tag_name


class PageStructureAnalyzer:
    """Keyword and DOM-shape heuristics over a parsed page."""

    def analyze(self, html: str, url: str = "") -> PageAnalysis:
        """Analyze ``html`` fetched from ``url``.

        Args:
            html: Raw page HTML.
            url: Where the page came from, for logging.

        Returns:
            The analysis. Empty pages produce a "general" analysis.
        """
        document = PageDocument(url=url, text=html)
        analysis = PageAnalysis()
        analysis.page_type = self.detect_page_type(document)
        analysis.content_structure = self.analyze_content_structure(document)
        analysis.suggested_selectors = self.suggest_selectors(
            document, analysis.page_type
        )
        analysis.data_patterns = self.find_data_patterns(document)
        analysis.confidence = self.calculate_confidence(analysis)
        analysis.recommendations = self.generate_recommendations(analysis)
        logger.debug(
            f"Analyzed {url or 'page'}: type={analysis.page_type} "
            f"confidence={analysis.confidence:.2f} "
            f"patterns={len(analysis.data_patterns)}"
        )
        return analysis

    def detect_page_type(self, document: PageDocument) -> str:
        root = document.root
        title = " ".join(root.xpath("//title//text()")).lower()
        description = " ".join(
            root.xpath("//meta[@name='description']/@content")
        ).lower()
        keywords = " ".join(
            root.xpath("//meta[@name='keywords']/@content")
        ).lower()

        scores: dict[str, int] = {}
        for page_type, words in SEMANTIC_KEYWORDS.items():
            score = 0
            for word in words:
                if word in title:
                    score += 3
                if word in description:
                    score += 2
                if word in keywords:
                    score += 1
                score += len(
                    document.select(f'[class*="{word}"], [id*="{word}"]')
                )
            scores[page_type] = score

        for page_type, selector in TYPE_MARKERS.items():
            if document.exists(selector):
                scores[page_type] += 5

        best = max(scores, key=lambda page_type: scores[page_type])
        return best if scores[best] > PAGE_TYPE_THRESHOLD else "general"

    def analyze_content_structure(
        self, document: PageDocument
    ) -> dict[str, Any]:
        return {
            "has_header": document.exists("header, .header"),
            "has_navigation": document.exists("nav, .nav, .menu"),
            "has_footer": document.exists("footer, .footer"),
            "has_sidebar": document.exists("aside, .sidebar, .aside"),
            "main_content_area": self.find_main_content_area(document),
            "repeating_elements": self.find_repeating_elements(document),
            "media": {
                "images": len(document.select("img")),
                "videos": len(document.select("video")),
                "iframes": len(document.select("iframe")),
            },
        }

    def find_main_content_area(self, document: PageDocument) -> str | None:
        for selector in MAIN_CONTENT_CANDIDATES:
            if document.exists(selector):
                return selector

        largest: PageElement | None = None
        largest_length = 0
        for element in document.select("div"):
            length = len(element.text_content())
            if length > largest_length:
                largest, largest_length = element, length
        return _selector_for(largest) if largest is not None else None

    def find_repeating_elements(
        self, document: PageDocument
    ) -> dict[str, int]:
        """Count ``tag.firstClass`` groups that occur at least 3 times."""
        groups: dict[str, int] = {}
        for element in document.select("[class]"):
            classes = element.classes()
            if not classes:
                continue
            key = f"{element.tag_name}.{classes[0]}"
            groups[key] = groups.get(key, 0) + 1
        return {key: count for key, count in groups.items() if count >= 3}

    def find_best_selector(
        self, document: PageDocument, selectors: tuple[str, ...]
    ) -> SelectorSuggestion | None:
        """Pick the candidate matching the most elements (under 1000)."""
        best: SelectorSuggestion | None = None
        for selector in selectors:
            elements = document.select(selector)
            count = len(elements)
            if count < MAX_SELECTOR_MATCHES and count > (
                best.count if best else 0
            ):
                best = SelectorSuggestion(
                    selector=selector,
                    count=count,
                    samples=[el.text_content()[:50] for el in elements[:3]],
                )
        return best

    def suggest_selectors(
        self, document: PageDocument, page_type: str
    ) -> dict[str, SelectorSuggestion]:
        candidates = SUGGESTION_CANDIDATES.get(
            page_type, SUGGESTION_CANDIDATES["general"]
        )
        suggestions = {}
        for role, selectors in candidates.items():
            best = self.find_best_selector(document, selectors)
            if best is not None:
                suggestions[role] = best
        return suggestions

    def find_data_patterns(self, document: PageDocument) -> list[DataPattern]:
        patterns = []
        for table in document.select("table"):
            rows = len(table.element.xpath(".//tr"))
            if rows > 2:
                patterns.append(
                    DataPattern("table", _selector_for(table), rows, 0.9)
                )
        for list_element in document.select("ul, ol"):
            items = len(list_element.element.xpath(".//li"))
            if items > 3:
                selector = _selector_for(list_element)
                patterns.append(DataPattern("list", selector, items, 0.8))
        for selector in CARD_SELECTORS:
            count = len(document.select(selector))
            if count > 2:
                patterns.append(DataPattern("cards", selector, count, 0.85))
        return sorted(patterns, key=lambda p: p.confidence, reverse=True)

    def calculate_confidence(self, analysis: PageAnalysis) -> float:
        confidence = 0.5
        if analysis.page_type != "general":
            confidence += 0.2
        if analysis.content_structure.get("main_content_area"):
            confidence += 0.1
        if analysis.content_structure.get("repeating_elements"):
            confidence += 0.15
        confidence += min(len(analysis.data_patterns) * 0.05, 0.15)
        return min(confidence, 1.0)

    def generate_recommendations(
        self, analysis: PageAnalysis
    ) -> list[Recommendation]:
        recommendations = []
        if analysis.confidence < 0.7:
            recommendations.append(
                Recommendation(
                    "warning",
                    "Low analysis confidence; check the selectors manually.",
                )
            )
        if analysis.data_patterns:
            recommendations.append(
                Recommendation(
                    "info",
                    f"Found {len(analysis.data_patterns)} data patterns; "
                    "the suggested selectors should work.",
                )
            )
        if analysis.content_structure.get("repeating_elements"):
            recommendations.append(
                Recommendation(
                    "success",
                    "Repeated elements found; the page suits automatic "
                    "extraction.",
                )
            )
        if analysis.page_type == "ecommerce":
            recommendations.append(
                Recommendation(
                    "tip",
                    "For shops, extract prices, product names and images.",
                )
            )
        return recommendations
