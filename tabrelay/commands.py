"""Closed catalogue of browser actions and their parameters."""

import re
from dataclasses import dataclass, field

import typing as tp

from .errors import InvalidParams, UnknownAction

SCROLL_DIRECTIONS = ("up", "down", "left", "right", "top", "bottom")

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
_OPAQUE_SCHEMES = ("about:", "data:", "javascript:", "blob:")


@dataclass(frozen=True)
class ActionSpec:
    name: str
    required: tp.Tuple[str, ...] = ()
    optional: tp.Dict[str, tp.Any] = field(default_factory=dict)
    needs_dom: bool = False
    navigation: bool = False


ACTIONS: tp.Dict[str, ActionSpec] = {
    spec.name: spec
    for spec in (
        ActionSpec("navigate", ("url",), {"tabId": None}, navigation=True),
        ActionSpec("click", ("selector",), {"tabId": None}, needs_dom=True),
        ActionSpec(
            "fill", ("selector", "value"), {"submit": False, "tabId": None}, needs_dom=True,
        ),
        ActionSpec(
            "scrape",
            (),
            {"selector": None, "attribute": None, "multiple": False, "tabId": None},
            needs_dom=True,
        ),
        ActionSpec("screenshot", (), {"tabId": None}),
        ActionSpec(
            "scroll",
            (),
            {"direction": "down", "amount": 500, "selector": None, "tabId": None},
            needs_dom=True,
        ),
        ActionSpec("hover", ("selector",), {"tabId": None}, needs_dom=True),
        ActionSpec("get_text", ("selector",), {"tabId": None}, needs_dom=True),
        ActionSpec("get_title", (), {"tabId": None}),
    )
}


def get_spec(action: str) -> ActionSpec:
    try:
        return ACTIONS[action]
    except (KeyError, TypeError):
        raise UnknownAction(str(action)) from None


def normalize_url(url: str) -> str:
    """Default scheme-less URLs to https."""
    url = url.strip()
    if _SCHEME_RE.match(url) or url.lower().startswith(_OPAQUE_SCHEMES):
        return url
    return f"https://{url}"


def prepare(action: str, params: tp.Optional[dict] = None) -> dict:
    """Validate params for ``action`` and return the dict to forward.

    Unset optionals are filled with their non-None defaults, ``None``
    values are dropped, and navigation URLs get a scheme.
    """
    spec = get_spec(action)
    given = {k: v for k, v in (params or {}).items() if v is not None}

    # an empty fill value clears the field, so only locators and URLs must be non-empty
    missing = [
        name for name in spec.required
        if name not in given or (given[name] == "" and name != "value")
    ]
    if missing:
        raise InvalidParams(f"{action} requires {', '.join(repr(m) for m in missing)}")

    prepared = {k: v for k, v in spec.optional.items() if v is not None}
    prepared.update(given)

    if spec.navigation:
        prepared["url"] = normalize_url(str(prepared["url"]))

    if action == "scroll":
        if prepared["direction"] not in SCROLL_DIRECTIONS:
            raise InvalidParams(f"Unknown scroll direction: {prepared['direction']}")
        try:
            prepared["amount"] = int(prepared["amount"])
        except (TypeError, ValueError):
            raise InvalidParams(f"Invalid scroll amount: {prepared['amount']!r}") from None

    return prepared
