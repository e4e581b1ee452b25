"""Tests for locator resolution order: CSS, XPath, then exact text."""

import pytest

from tabrelay.errors import ElementNotFound
from tabrelay.executor.resolver import by_css, by_text, by_xpath, load_document, require, resolve


@pytest.fixture
def doc(sample_html):
    return load_document(sample_html)


def test_css_xpath_and_text_resolve_the_same_element(doc):
    by_id = resolve(doc, "#x")
    assert by_id is not None
    assert by_id.get("id") == "x"
    assert resolve(doc, "//div[@id='x']") is by_id
    assert resolve(doc, "Hello") is by_id


def test_missing_css_selector_is_not_found(doc):
    assert resolve(doc, "#missing") is None
    with pytest.raises(ElementNotFound, match="#missing"):
        require(doc, "#missing")


def test_css_returns_first_match_in_document_order(doc):
    assert resolve(doc, "p.note").text_content() == "First note"


def test_xpath_returns_first_ordered_result(doc):
    assert resolve(doc, "//p[@class='note']").text_content() == "First note"


def test_invalid_css_is_swallowed(doc):
    assert by_css(doc, "//div[@id='x']") is None
    assert by_css(doc, "div[") is None


def test_invalid_xpath_is_swallowed(doc):
    assert by_xpath(doc, "#x") is None
    assert by_xpath(doc, "Sign in") is None


def test_xpath_with_non_element_result_does_not_match(doc):
    assert by_xpath(doc, "count(//p)") is None
    assert by_xpath(doc, "//div[@id='x']/text()") is None


def test_text_match_is_exact_trimmed_and_case_sensitive(doc):
    assert resolve(doc, "  Sign in  ").tag == "button"
    assert resolve(doc, "sign in") is None
    assert resolve(doc, "Sign") is None


def test_text_match_skips_body_and_walks_document_order():
    doc = load_document("<html><body><section><span>Go</span></section></body></html>")
    # <section> and <span> both read "Go"; the outer one comes first
    assert by_text(doc, "Go").tag == "section"


def test_css_wins_over_text_match():
    doc = load_document("<html><body><p>button</p><button>Press</button></body></html>")
    assert resolve(doc, "button").tag == "button"


def test_empty_locator_is_not_found(doc):
    assert resolve(doc, "") is None
    assert resolve(doc, "   ") is None
    assert resolve(doc, None) is None


def test_load_document_accepts_fragments_and_empty_markup():
    fragment = load_document("<div id='x'>Hello</div>")
    assert fragment.tag == "html"
    assert resolve(fragment, "#x").text_content() == "Hello"
    assert load_document("").tag == "html"


def test_locator_with_characters_xml_forbids_is_not_found(doc):
    assert by_css(doc, "a\x00b") is None
    assert by_xpath(doc, "a\x00b") is None
    assert resolve(doc, "a\x00b") is None
    with pytest.raises(ElementNotFound, match="Element not found"):
        require(doc, "a\x00b")
