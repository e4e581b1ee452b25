"""Tests for the reference PageExecutor actions."""

import pytest

from tabrelay.errors import ElementNotFound, ExecutorError
from tabrelay.executor import PageExecutor


def test_click_and_hover_report_locator_and_tag(page_executor):
    assert page_executor.execute("click", {"selector": "#x"}) == {"clicked": "#x", "tag": "div"}
    assert page_executor.execute("hover", {"selector": "Sign in"}) == {
        "hovered": "Sign in", "tag": "button",
    }


def test_missing_element_is_a_distinguishable_error(page_executor):
    with pytest.raises(ElementNotFound) as excinfo:
        page_executor.execute("fill", {"selector": "#missing", "value": "x"})
    assert str(excinfo.value) == "Element not found: #missing"


def test_fill_sets_value_and_submits_enclosing_form(page_executor):
    result = page_executor.execute(
        "fill", {"selector": "#email", "value": "user@example.com", "submit": True},
    )
    assert result == {"filled": "#email", "value": "user@example.com", "submitted": True}

    tab = page_executor.tab()
    assert tab.document.get_element_by_id("email").get("value") == "user@example.com"
    assert ("submit", "/login") in tab.history


def test_fill_textarea_sets_text(page_executor):
    page_executor.execute("fill", {"selector": "#bio", "value": "hi there"})
    assert page_executor.execute("get_text", {"selector": "#bio"}) == {"text": "hi there"}


def test_get_text_and_title(page_executor):
    assert page_executor.execute("get_text", {"selector": "h1"}) == {"text": "Welcome"}
    assert page_executor.execute("get_title") == {
        "title": "Sample page", "url": "https://example.com/", "tabId": 1,
    }


def test_scrape_whole_page(page_executor):
    page = page_executor.execute("scrape", {})
    assert page["title"] == "Sample page"
    assert page["meta"] == {"description": "A page for tests"}
    assert page["links"] == [{"text": "About us", "href": "https://example.com/about"}]
    assert page["headings"] == [
        {"level": 1, "text": "Welcome"},
        {"level": 2, "text": "Details"},
    ]
    assert "Second note" in page["bodyText"]


def test_scrape_selector_single_and_multiple(page_executor):
    single = page_executor.execute("scrape", {"selector": "p.note"})
    assert len(single) == 1
    assert single[0]["tag"] == "p"
    assert single[0]["text"] == "First note"
    assert single[0]["attributes"] == {"class": "note"}
    assert single[0]["html"].startswith("<p class=\"note\">")

    many = page_executor.execute("scrape", {"selector": "p.note", "multiple": True})
    assert [item["text"] for item in many] == ["First note", "Second note"]


def test_scrape_attribute(page_executor):
    assert page_executor.execute("scrape", {"selector": "a", "attribute": "href"}) == ["/about"]


def test_scrape_invalid_selector_fails(page_executor):
    with pytest.raises(ExecutorError, match="Invalid selector"):
        page_executor.execute("scrape", {"selector": "p["})


def test_scroll_directions(page_executor):
    down = page_executor.execute("scroll", {"direction": "down", "amount": 300})
    assert down == {"scrolled": "down", "amount": 300, "scrollX": 0, "scrollY": 300}

    up = page_executor.execute("scroll", {"direction": "up", "amount": 500})
    assert up["scrollY"] == 0

    assert page_executor.execute("scroll", {"direction": "bottom"}) == {"scrolled": "bottom"}

    with pytest.raises(ExecutorError, match="Unknown scroll direction"):
        page_executor.execute("scroll", {"direction": "sideways"})


def test_scroll_missing_target_element(page_executor):
    with pytest.raises(ElementNotFound):
        page_executor.execute("scroll", {"selector": "#nowhere"})


def test_screenshot_returns_png_data_url(page_executor):
    shot = page_executor.execute("screenshot")
    assert shot["tabId"] == 1
    assert shot["screenshot"].startswith("data:image/png;base64,")


def test_unknown_action_fails():
    with pytest.raises(ExecutorError, match="Unknown action: teleport"):
        PageExecutor().execute("teleport", {})


def test_navigate_loads_registered_page_and_drops_agent():
    executor = PageExecutor(pages={"https://example.com/": "<title>Example</title><p>hi</p>"})
    executor.install()

    result = executor.execute("navigate", {"url": "example.com/"})
    assert result == {"tabId": 1, "url": "https://example.com/", "title": "Example"}

    with pytest.raises(ExecutorError, match="page agent not installed"):
        executor.execute("get_text", {"selector": "p"})

    executor.install()
    assert executor.execute("get_text", {"selector": "p"}) == {"text": "hi"}


def test_strict_navigation_to_unknown_url_fails():
    executor = PageExecutor(strict=True)
    with pytest.raises(ExecutorError, match="Navigation failed: https://nowhere.test"):
        executor.execute("navigate", {"url": "nowhere.test"})


def test_unknown_tab_fails(page_executor):
    with pytest.raises(ExecutorError, match="No tab with id: 7"):
        page_executor.execute("get_title", {"tabId": 7})


def test_locator_with_null_character_reports_not_found(page_executor):
    with pytest.raises(ElementNotFound):
        page_executor.execute("click", {"selector": "#x\x00"})
