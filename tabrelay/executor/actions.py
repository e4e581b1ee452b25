"""Reference command executor over static HTML documents.

Implements each action of the catalogue against lxml documents held per
tab. It mirrors what the in-browser agent does closely enough to exercise
the relay end to end: locators resolve through the same fallback chain,
missing elements fail with ``Element not found: <locator>``, and DOM
actions require the page agent to be installed in the tab first (a fresh
navigation drops it, as a real page load would).
"""

import logging
from dataclasses import dataclass, field
from urllib.parse import urljoin

from lxml import etree, html
from lxml.cssselect import CSSSelector, SelectorError

import typing as tp

from ..commands import SCROLL_DIRECTIONS, normalize_url
from ..errors import ExecutorError
from .resolver import load_document, require

logger = logging.getLogger(__name__)

# 1x1 transparent PNG; there is no renderer behind a static document
_BLANK_PNG = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

TEXT_LIMIT = 2000
HTML_LIMIT = 5000
GET_TEXT_LIMIT = 10000
BODY_TEXT_LIMIT = 50000


@dataclass
class Tab:
    id: int
    url: str
    document: html.HtmlElement
    agent_installed: bool = False
    scroll_x: int = 0
    scroll_y: int = 0
    history: tp.List[tp.Tuple[str, str]] = field(default_factory=list)

    @property
    def title(self) -> str:
        return (self.document.findtext(".//title") or "").strip()


def _outer_html(element: html.HtmlElement) -> str:
    return etree.tostring(element, encoding="unicode", method="html", with_tail=False)


def _text(element: html.HtmlElement) -> str:
    return element.text_content().strip()


class PageExecutor:
    """Executes catalogue actions against in-memory tabs.

    Args:
        html: Markup for the initial tab.
        url: URL reported for the initial tab.
        pages: Known URL -> markup map that ``navigate`` loads from.
        strict: When True, navigating to an unknown URL fails instead of
                loading a blank page.
    """

    def __init__(
        self,
        html: tp.Optional[str] = None,
        url: str = "about:blank",
        pages: tp.Optional[tp.Dict[str, str]] = None,
        strict: bool = False,
    ):
        self.pages = dict(pages or {})
        self.strict = strict
        self.tabs: tp.Dict[int, Tab] = {1: Tab(1, url, load_document(html))}
        self.active_tab_id = 1
        self.install_count = 0
        self._handlers: tp.Dict[str, tp.Callable[[dict], tp.Any]] = {
            "navigate": self.navigate,
            "click": self.click,
            "fill": self.fill,
            "scrape": self.scrape,
            "screenshot": self.screenshot,
            "scroll": self.scroll,
            "hover": self.hover,
            "get_text": self.get_text,
            "get_title": self.get_title,
        }
        self._dom_actions = {"click", "fill", "scrape", "scroll", "hover", "get_text"}

    # ── plumbing ──

    def tab(self, tab_id: tp.Any = None) -> Tab:
        if tab_id is None:
            return self.tabs[self.active_tab_id]
        try:
            key = int(tab_id)
        except (TypeError, ValueError):
            raise ExecutorError(f"Invalid tab id: {tab_id!r}") from None
        if key not in self.tabs:
            raise ExecutorError(f"No tab with id: {tab_id}")
        return self.tabs[key]

    def install(self, tab_id: tp.Any = None) -> Tab:
        """(Re-)install the page agent; harmless when already present."""
        tab = self.tab(tab_id)
        tab.agent_installed = True
        self.install_count += 1
        return tab

    def execute(self, action: str, params: tp.Optional[dict] = None) -> tp.Any:
        params = params or {}
        handler = self._handlers.get(action)
        if handler is None:
            raise ExecutorError(f"Unknown action: {action}")
        if action in self._dom_actions:
            tab = self.tab(params.get("tabId"))
            if not tab.agent_installed:
                raise ExecutorError(
                    f"Could not establish connection to tab {tab.id}: page agent not installed"
                )
        return handler(params)

    # ── tab-level actions ──

    def navigate(self, params: dict) -> dict:
        url = params.get("url")
        if not url:
            raise ExecutorError("navigate requires a 'url' parameter")
        url = normalize_url(str(url))
        tab = self.tab(params.get("tabId"))

        markup = self.pages.get(url)
        if markup is None and self.strict:
            raise ExecutorError(f"Navigation failed: {url}")

        tab.document = load_document(markup)
        tab.url = url
        tab.agent_installed = False
        tab.scroll_x = tab.scroll_y = 0
        tab.history.append(("navigate", url))
        return {"tabId": tab.id, "url": tab.url, "title": tab.title}

    def screenshot(self, params: dict) -> dict:
        tab = self.tab(params.get("tabId"))
        self.active_tab_id = tab.id
        return {"screenshot": f"data:image/png;base64,{_BLANK_PNG}", "tabId": tab.id}

    def get_title(self, params: dict) -> dict:
        tab = self.tab(params.get("tabId"))
        return {"title": tab.title, "url": tab.url, "tabId": tab.id}

    # ── DOM actions ──

    def click(self, params: dict) -> dict:
        tab = self.tab(params.get("tabId"))
        element = require(tab.document, params.get("selector"))
        tab.history.append(("click", params["selector"]))
        return {"clicked": params["selector"], "tag": element.tag}

    def hover(self, params: dict) -> dict:
        tab = self.tab(params.get("tabId"))
        element = require(tab.document, params.get("selector"))
        tab.history.append(("hover", params["selector"]))
        return {"hovered": params["selector"], "tag": element.tag}

    def fill(self, params: dict) -> dict:
        tab = self.tab(params.get("tabId"))
        element = require(tab.document, params.get("selector"))
        value = "" if params.get("value") is None else str(params["value"])

        if element.tag == "textarea":
            element.text = value
        else:
            element.set("value", value)
        tab.history.append(("fill", params["selector"]))

        result = {"filled": params["selector"], "value": value}
        if params.get("submit"):
            form = next((a for a in element.iterancestors() if a.tag == "form"), None)
            result["submitted"] = form is not None
            if form is not None:
                tab.history.append(("submit", form.get("action", "")))
        return result

    def get_text(self, params: dict) -> dict:
        tab = self.tab(params.get("tabId"))
        element = require(tab.document, params.get("selector"))
        return {"text": _text(element)[:GET_TEXT_LIMIT]}

    def scroll(self, params: dict) -> dict:
        tab = self.tab(params.get("tabId"))
        direction = params.get("direction", "down")
        try:
            amount = int(params.get("amount", 500))
        except (TypeError, ValueError):
            raise ExecutorError(f"Invalid scroll amount: {params.get('amount')!r}") from None
        selector = params.get("selector")
        if selector:
            require(tab.document, selector)
        if direction not in SCROLL_DIRECTIONS:
            raise ExecutorError(f"Unknown scroll direction: {direction}")

        if direction in ("top", "bottom"):
            if direction == "top":
                tab.scroll_y = 0
            return {"scrolled": direction}

        if direction == "down":
            tab.scroll_y += amount
        elif direction == "up":
            tab.scroll_y = max(0, tab.scroll_y - amount)
        elif direction == "right":
            tab.scroll_x += amount
        else:
            tab.scroll_x = max(0, tab.scroll_x - amount)
        return {"scrolled": direction, "amount": amount, "scrollX": tab.scroll_x, "scrollY": tab.scroll_y}

    def scrape(self, params: dict) -> tp.Union[dict, list]:
        tab = self.tab(params.get("tabId"))
        selector = params.get("selector")
        if not selector:
            return self._scrape_page(tab)

        try:
            matches = CSSSelector(selector, translator="html")(tab.document)
        except (SelectorError, etree.XPathError, ValueError):
            raise ExecutorError(f"Invalid selector: {selector}") from None
        if not params.get("multiple"):
            matches = matches[:1]

        attribute = params.get("attribute")
        if attribute:
            return [el.get(attribute) for el in matches]
        return [
            {
                "tag": el.tag,
                "text": _text(el)[:TEXT_LIMIT],
                "html": _outer_html(el)[:HTML_LIMIT],
                "attributes": dict(el.attrib),
            }
            for el in matches
        ]

    def _scrape_page(self, tab: Tab) -> dict:
        doc = tab.document
        meta = {}
        for m in doc.xpath("//meta[@name or @property]"):
            meta[m.get("name") or m.get("property")] = m.get("content")

        links = [
            {"text": _text(a)[:200], "href": urljoin(tab.url, a.get("href"))}
            for a in doc.xpath("//a[@href]")[:200]
        ]
        headings = [
            {"level": int(h.tag[1]), "text": _text(h)[:500]}
            for h in doc.xpath("//h1|//h2|//h3|//h4|//h5|//h6")[:100]
        ]
        bodies = doc.xpath("//body")
        body_text = _text(bodies[0]) if bodies else ""

        return {
            "title": tab.title,
            "url": tab.url,
            "meta": meta,
            "links": links,
            "headings": headings,
            "bodyText": body_text[:BODY_TEXT_LIMIT],
        }
