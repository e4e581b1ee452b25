"""Locator resolution: CSS, then XPath, then exact visible text.

The first strategy that yields an element wins. A locator that is not
valid CSS or not valid XPath simply does not match under that strategy;
syntax errors never reach the caller.
"""

import logging

from lxml import etree, html
from lxml.cssselect import CSSSelector, SelectorError

import typing as tp

from ..errors import ElementNotFound

logger = logging.getLogger(__name__)

BLANK_PAGE = "<html><head><title></title></head><body></body></html>"


def load_document(markup: tp.Optional[str]) -> html.HtmlElement:
    """Parse markup into a full document rooted at <html>."""
    if not markup or not markup.strip():
        markup = BLANK_PAGE
    return html.document_fromstring(markup)


def _is_element(node: tp.Any) -> bool:
    # comments and processing instructions are _Element too, but without a str tag
    return isinstance(node, etree._Element) and isinstance(node.tag, str)


def by_css(document: html.HtmlElement, locator: str) -> tp.Optional[html.HtmlElement]:
    try:
        matches = CSSSelector(locator, translator="html")(document)
    except (SelectorError, etree.XPathError, ValueError) as e:
        logger.debug(f"Not a CSS selector: {locator!r} ({e})")
        return None
    return matches[0] if matches else None


def by_xpath(document: html.HtmlElement, locator: str) -> tp.Optional[html.HtmlElement]:
    try:
        result = document.xpath(locator)
    except (etree.XPathError, ValueError) as e:
        logger.debug(f"Not an XPath expression: {locator!r} ({e})")
        return None
    if isinstance(result, list):
        for node in result:
            if _is_element(node):
                return node
    return None


def by_text(document: html.HtmlElement, locator: str) -> tp.Optional[html.HtmlElement]:
    """First element under <body>, in document order, whose trimmed text equals the locator."""
    wanted = locator.strip()
    bodies = document.xpath("//body")
    scope = bodies[0] if bodies else document
    for node in scope.iterdescendants():
        if _is_element(node) and node.text_content().strip() == wanted:
            return node
    return None


STRATEGIES = (by_css, by_xpath, by_text)


def resolve(document: html.HtmlElement, locator: tp.Optional[str]) -> tp.Optional[html.HtmlElement]:
    """Return the single element ``locator`` designates, or None."""
    if not locator or not locator.strip():
        return None
    for strategy in STRATEGIES:
        element = strategy(document, locator)
        if element is not None:
            return element
    return None


def require(document: html.HtmlElement, locator: tp.Optional[str]) -> html.HtmlElement:
    """Like resolve, but raises ElementNotFound naming the locator."""
    element = resolve(document, locator)
    if element is None:
        raise ElementNotFound(str(locator))
    return element
