"""Tests for PageDocument and PageElement."""

import pytest

from pagescrape.common.page_element import PageDocument

HTML = """
<html><body>
<div id="main" class="box wide">
  <p class="intro">Hi <b>there</b> friend</p>
  <!-- comment -->
  <button class="more" style="display: none">More</button>
  <button class="next">Next</button>
  <button class="prev" disabled>Prev</button>
  <a class="page" aria-disabled="true" href="/p/2">2</a>
</div>
</body></html>
"""


@pytest.fixture
def document() -> PageDocument:
    return PageDocument(url="http://x.com", text=HTML)


class TestPageDocument:
    def test_select_css_and_xpath(self, document):
        assert len(document.select("button")) == 3
        assert len(document.select("//button")) == 3
        assert document.exists("#main")
        assert not document.exists("table")

    def test_empty_text_parses(self):
        document = PageDocument(url="http://x.com", text="  ")
        assert document.root.tag == "html"
        assert document.select("div") == []

    def test_encoding_declaration(self):
        """A declared encoding shall not stop the page from parsing."""
        text = (
            '<?xml version="1.0" encoding="utf-8"?>'
            "<html><body><p>Hello</p></body></html>"
        )
        document = PageDocument(url="http://x.com", text=text)

        assert document.select("p")[0].text_content() == "Hello"

    def test_size_in_bytes(self):
        document = PageDocument(url="http://x.com", text="é")
        assert document.size == 2


class TestPageElement:
    def test_text_accessors(self, document):
        (intro,) = document.select("p.intro")

        assert intro.text_content() == "Hi there friend"
        assert intro.own_text() == "Hi  friend"
        assert intro.inner_html() == "Hi <b>there</b> friend"

    def test_identity_accessors(self, document):
        (main,) = document.select("#main")

        assert main.tag_name == "div"
        assert main.classes() == ["box", "wide"]
        assert main.attributes() == {"id": "main", "class": "box wide"}
        assert main.child_key() == "div.box#main"

    def test_children_skip_comments(self, document):
        (main,) = document.select("#main")
        assert [c.child_key() for c in main.children()] == [
            "p.intro",
            "button.more",
            "button.next",
            "button.prev",
            "a.page",
        ]

    def test_xpath_results_are_lists(self, document):
        (main,) = document.select("#main")

        assert main.xpath("./p/b/text()") == ["there"]
        assert main.xpath("count(./button)") == [3.0]
        assert main.xpath("string(./@missing)") == []

    @pytest.mark.parametrize(
        ("selector", "usable"),
        [
            ("button.next", True),
            ("button.more", False),
            ("button.prev", False),
            ("a.page", False),
        ],
    )
    def test_usable_control(self, document, selector, usable):
        (element,) = document.select(selector)
        assert element.is_usable_control() is usable
