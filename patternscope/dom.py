"""
HtmlDocument — an in-memory DocumentEnvironment over an lxml HTML tree.

The tree itself holds structure and attributes. Runtime state that a
browser keeps outside the markup (form values, checked state, scroll
offsets, rendered size) lives in a per-node override table that starts
from what the markup declares:

    value        — INPUT value attribute, TEXTAREA text, selected OPTION
    width/height — inline style "width: 300px; height: 120px"
    scroll       — scroll height defaults to the client (inline) height

Selector queries are CSS, compiled through cssselect. Mutations made
through the helper methods (append_html, remove, set_attribute,
set_style, set_text) are delivered to observers synchronously, one
batch per call. User interactions are simulated with dispatch() and the
click/type_text/press_key/scroll_to shortcuts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union

import lxml.html
from cssselect import ExpressionError, SelectorError
from lxml.cssselect import CSSSelector
from lxml.etree import XPathError

from .environment import (
    ActionCallback,
    ActionEvent,
    Bounds,
    DocumentEnvironment,
    EnvironmentAccessError,
    EventKind,
    MutationCallback,
    MutationRecord,
    MutationType,
    Node,
    ScrollState,
    Style,
    Unsubscribe,
)


logger = logging.getLogger(__name__)


# =============================================================================
# DEFAULT PRESENTATION
# =============================================================================

NEVER_RENDERED_TAGS = frozenset({
    "HEAD", "SCRIPT", "STYLE", "TEMPLATE", "TITLE", "META", "LINK", "NOSCRIPT",
})

INLINE_TAGS = frozenset({
    "SPAN", "A", "B", "I", "EM", "STRONG", "LABEL", "IMG", "CODE", "SMALL", "ABBR",
})

INLINE_BLOCK_TAGS = frozenset({"INPUT", "BUTTON", "SELECT", "TEXTAREA"})

EMPTY_DOCUMENT = "<html><body></body></html>"


def parse_inline_style(declaration: Optional[str]) -> dict[str, str]:
    """Parse "a: b; c: d" into {"a": "b", "c": "d"} (lower-cased names)."""
    props: dict[str, str] = {}
    if not declaration:
        return props
    for item in declaration.split(";"):
        name, sep, value = item.partition(":")
        if sep and name.strip():
            props[name.strip().lower()] = value.strip()
    return props


def _format_inline_style(props: dict[str, str]) -> str:
    return "; ".join(f"{name}: {value}" for name, value in props.items())


def _parse_pixels(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    value = value.strip().lower()
    if value.endswith("px"):
        value = value[:-2]
    try:
        return float(value)
    except ValueError:
        return None


def _is_element(node: Any) -> bool:
    return isinstance(getattr(node, "tag", None), str)


# =============================================================================
# HTML DOCUMENT
# =============================================================================

class HtmlDocument(DocumentEnvironment):
    """
    A mutable HTML document usable wherever a DocumentEnvironment is expected.

    Nodes are lxml HtmlElement objects. Identity comparison is safe
    because lxml reuses a live proxy for the same underlying element.
    """

    def __init__(self, markup: Union[str, bytes] = EMPTY_DOCUMENT):
        if not markup or not markup.strip():
            markup = EMPTY_DOCUMENT
        self._html = lxml.html.document_fromstring(markup)
        body = self._html.find("body")
        if body is None:
            body = lxml.html.Element("body")
            self._html.append(body)
        self._body = body

        self._overrides: dict[Node, dict[str, Any]] = {}
        self._observers: list[tuple[Node, MutationCallback]] = []
        self._listeners: list[ActionCallback] = []

        self._selectors: dict[str, CSSSelector] = {}
        self._version = 0
        self._match_cache: dict[str, tuple[int, frozenset[int], list[Node]]] = {}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> HtmlDocument:
        """Load a file; non-UTF-8 bytes are left to lxml and the declared charset."""
        data = Path(path).read_bytes()
        markup: Union[str, bytes]
        try:
            markup = data.decode("utf-8")
        except UnicodeDecodeError:
            markup = data
        return cls(markup)

    # -------------------------------------------------------------------------
    # Selector machinery
    # -------------------------------------------------------------------------

    def _compile(self, selector: str) -> CSSSelector:
        compiled = self._selectors.get(selector)
        if compiled is None:
            try:
                compiled = CSSSelector(selector, translator="html")
            except (SelectorError, ExpressionError) as e:
                raise EnvironmentAccessError(f"Invalid selector {selector!r}: {e}") from e
            self._selectors[selector] = compiled
        return compiled

    def _run(self, selector: str, scope: Node) -> list[Node]:
        compiled = self._compile(selector)
        try:
            return [n for n in compiled(scope) if _is_element(n)]
        except XPathError as e:
            raise EnvironmentAccessError(f"Selector {selector!r} failed: {e}") from e

    def _ensure_attached(self, node: Node) -> None:
        current = node
        while current is not None:
            if current is self._html:
                return
            current = current.getparent()
        raise EnvironmentAccessError(f"Node <{getattr(node, 'tag', '?')}> is detached")

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def root(self) -> Node:
        return self._body

    def query_all(self, selector: str, scope: Optional[Node] = None) -> list[Node]:
        scope = self._body if scope is None else scope
        return [n for n in self._run(selector, scope) if n is not scope]

    def matches(self, node: Node, selector: str) -> bool:
        cached = self._match_cache.get(selector)
        if cached is None or cached[0] != self._version:
            found = self._run(selector, self._html)
            cached = (self._version, frozenset(id(n) for n in found), found)
            self._match_cache[selector] = cached
        return id(node) in cached[1]

    def tag(self, node: Node) -> str:
        return str(node.tag).upper()

    def attributes(self, node: Node) -> dict[str, str]:
        return dict(node.attrib)

    def get_attribute(self, node: Node, name: str) -> Optional[str]:
        return node.get(name)

    def has_attribute(self, node: Node, name: str) -> bool:
        return name in node.attrib

    def text(self, node: Node) -> str:
        return " ".join(node.text_content().split())

    def parent(self, node: Node) -> Optional[Node]:
        return node.getparent()

    def children(self, node: Node) -> list[Node]:
        return [child for child in node if _is_element(child)]

    def child_node_count(self, node: Node) -> int:
        count = 1 if node.text and node.text.strip() else 0
        for child in node:
            count += 1
            if child.tail and child.tail.strip():
                count += 1
        return count

    # -------------------------------------------------------------------------
    # Form state
    # -------------------------------------------------------------------------

    def _override(self, node: Node, key: str, default: Any = None) -> Any:
        return self._overrides.get(node, {}).get(key, default)

    def _set_override(self, node: Node, **values: Any) -> None:
        self._overrides.setdefault(node, {}).update(values)

    def value(self, node: Node) -> Optional[str]:
        tag = self.tag(node)
        if tag not in ("INPUT", "TEXTAREA", "SELECT", "OPTION", "BUTTON"):
            return None
        overridden = self._override(node, "value")
        if overridden is not None:
            return overridden
        if tag == "TEXTAREA":
            return node.text_content()
        if tag == "OPTION":
            return node.get("value", self.text(node))
        if tag == "SELECT":
            options = node.findall(".//option")
            chosen = [o for o in options if o.get("selected") is not None]
            picked = (chosen or options or [None])[0]
            return self.value(picked) if picked is not None else ""
        if tag == "INPUT" and (node.get("type") or "").lower() in ("checkbox", "radio"):
            return node.get("value", "on")
        return node.get("value", "")

    def checked(self, node: Node) -> Optional[bool]:
        if self.tag(node) != "INPUT":
            return None
        return self._override(node, "checked", node.get("checked") is not None)

    def selected(self, node: Node) -> Optional[bool]:
        if self.tag(node) != "OPTION":
            return None
        return self._override(node, "selected", node.get("selected") is not None)

    # -------------------------------------------------------------------------
    # Style & geometry
    # -------------------------------------------------------------------------

    def style(self, node: Node) -> Style:
        self._ensure_attached(node)
        props = parse_inline_style(node.get("style"))
        tag = self.tag(node)

        if (
            tag in NEVER_RENDERED_TAGS
            or node.get("hidden") is not None
            or (tag == "INPUT" and (node.get("type") or "").lower() == "hidden")
        ):
            display = "none"
        elif "display" in props:
            display = props["display"]
        elif tag in INLINE_TAGS:
            display = "inline"
        elif tag in INLINE_BLOCK_TAGS:
            display = "inline-block"
        else:
            display = "block"

        visibility = "visible"
        current = node
        while current is not None:
            declared = parse_inline_style(current.get("style")).get("visibility")
            if declared and declared != "inherit":
                visibility = declared
                break
            current = current.getparent()

        try:
            opacity = float(props.get("opacity", "1"))
        except ValueError:
            opacity = 1.0

        overflow = props.get("overflow-y") or props.get("overflow", "visible")
        return Style(
            display=display,
            visibility=visibility,
            opacity=opacity,
            position=props.get("position", "static"),
            overflow_y=overflow.split()[-1] if overflow else "visible",
        )

    def bounds(self, node: Node) -> Bounds:
        if self.style(node).display == "none":
            return Bounds()
        props = parse_inline_style(node.get("style"))
        width = self._override(node, "width", _parse_pixels(props.get("width")))
        height = self._override(node, "height", _parse_pixels(props.get("height")))
        return Bounds(width=width or 0.0, height=height or 0.0)

    def scroll(self, node: Node) -> ScrollState:
        client_height = self._override(node, "client_height")
        if client_height is None:
            client_height = self.bounds(node).height
        return ScrollState(
            top=self._override(node, "scroll_top", 0.0),
            height=self._override(node, "scroll_height", client_height),
            client_height=client_height,
        )

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def observe(self, node: Node, callback: MutationCallback) -> Unsubscribe:
        entry = (node, callback)
        self._observers.append(entry)

        def unsubscribe() -> None:
            if entry in self._observers:
                self._observers.remove(entry)

        return unsubscribe

    def listen(self, callback: ActionCallback) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _deliver(self, records: list[MutationRecord]) -> None:
        self._version += 1
        for observed, callback in list(self._observers):
            batch = [r for r in records if self.contains(observed, r.target)]
            if batch:
                callback(batch)

    # -------------------------------------------------------------------------
    # Mutation helpers
    # -------------------------------------------------------------------------

    def append_html(self, parent: Node, markup: str) -> list[Node]:
        """Parse markup and append the resulting elements to parent."""
        added = [f for f in lxml.html.fragments_fromstring(markup) if _is_element(f)]
        for element in added:
            parent.append(element)
        if added:
            self._deliver([MutationRecord(
                type=MutationType.CHILD_LIST,
                target=parent,
                added_nodes=tuple(added),
            )])
        return added

    def remove(self, node: Node) -> None:
        parent = node.getparent()
        if parent is None:
            return
        node.drop_tree()
        self._deliver([MutationRecord(
            type=MutationType.CHILD_LIST,
            target=parent,
            removed_nodes=(node,),
        )])

    def set_text(self, node: Node, text: str) -> None:
        removed = tuple(self.children(node))
        for child in list(node):
            node.remove(child)
        node.text = text
        self._deliver([MutationRecord(
            type=MutationType.CHILD_LIST,
            target=node,
            removed_nodes=removed,
        )])

    def set_attribute(self, node: Node, name: str, value: Optional[str]) -> None:
        if value is None:
            node.attrib.pop(name, None)
        else:
            node.set(name, value)
        self._deliver([MutationRecord(
            type=MutationType.ATTRIBUTES,
            target=node,
            attribute_name=name,
        )])

    def set_style(self, node: Node, **props: Optional[str]) -> None:
        """set_style(node, display="none", overflow_y="auto"); None removes a property."""
        declared = parse_inline_style(node.get("style"))
        for name, value in props.items():
            name = name.replace("_", "-")
            if value is None:
                declared.pop(name, None)
            else:
                declared[name] = value
        self.set_attribute(node, "style", _format_inline_style(declared) or None)

    def set_value(self, node: Node, value: str) -> None:
        self._set_override(node, value=value)

    def set_checked(self, node: Node, checked: bool) -> None:
        self._set_override(node, checked=checked)

    def set_scroll(
        self,
        node: Node,
        top: Optional[float] = None,
        height: Optional[float] = None,
        client_height: Optional[float] = None,
    ) -> None:
        values = {}
        if top is not None:
            values["scroll_top"] = top
        if height is not None:
            values["scroll_height"] = height
        if client_height is not None:
            values["client_height"] = client_height
        self._set_override(node, **values)

    def set_bounds(self, node: Node, width: Optional[float] = None, height: Optional[float] = None) -> None:
        values = {}
        if width is not None:
            values["width"] = width
        if height is not None:
            values["height"] = height
        self._set_override(node, **values)

    # -------------------------------------------------------------------------
    # Simulated interaction
    # -------------------------------------------------------------------------

    def dispatch(self, event: ActionEvent) -> None:
        for callback in list(self._listeners):
            callback(event)

    def click(self, node: Node) -> None:
        self.dispatch(ActionEvent(EventKind.CLICK, node))

    def type_text(self, node: Node, text: str) -> None:
        self.set_value(node, text)
        self.dispatch(ActionEvent(EventKind.INPUT, node))

    def press_key(self, node: Node, key: str = "Enter") -> None:
        self.dispatch(ActionEvent(EventKind.KEYDOWN, node, key=key))

    def scroll_to(self, node: Node, top: float) -> None:
        self.set_scroll(node, top=top)
        self.dispatch(ActionEvent(EventKind.SCROLL, node))
