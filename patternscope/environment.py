"""
Document Environment — the collaborator contract for PatternScope.

The engine never touches a global document. Everything it reads or
subscribes to goes through a DocumentEnvironment passed in explicitly.
Nodes are opaque references: only the environment knows what they are.

Capabilities required of an environment:
    Query      — selector lookups, tag/attribute/text/value reads, tree walks
    Style      — effective presentation (display, visibility, opacity, position, overflow)
    Geometry   — boundary size and scroll state
    Mutations  — subscribe to a subtree, receive batched MutationRecords
    Actions    — subscribe to document-level user interaction events

Environment-access faults (detached node, restricted content, invalid
selector) are raised as EnvironmentAccessError. Callers in the engine
catch ENVIRONMENT_FAULTS at the call site and degrade to "predicate
false" or "field absent".
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


Node = Any


class EnvironmentAccessError(Exception):
    """Raised when a node cannot be read (detached, restricted, bad selector)."""
    pass


# Everything a call site has to absorb when it reads from the environment
ENVIRONMENT_FAULTS = (EnvironmentAccessError, LookupError, ValueError, TypeError)


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class Style:
    """Effective presentation properties of a node."""
    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0
    position: str = "static"
    overflow_y: str = "visible"


@dataclass(frozen=True)
class Bounds:
    """Rendered boundary size in pixels."""
    width: float = 0.0
    height: float = 0.0


@dataclass(frozen=True)
class ScrollState:
    """Vertical scroll geometry of a node."""
    top: float = 0.0
    height: float = 0.0
    client_height: float = 0.0

    @property
    def is_scrollable(self) -> bool:
        return self.height > self.client_height


class MutationType(Enum):
    """Kinds of raw mutation records delivered by an environment."""
    CHILD_LIST = "child_list"
    ATTRIBUTES = "attributes"


@dataclass(frozen=True)
class MutationRecord:
    """A single change inside an observed subtree."""
    type: MutationType
    target: Node
    added_nodes: tuple = ()
    removed_nodes: tuple = ()
    attribute_name: Optional[str] = None


class EventKind(Enum):
    """Raw user interaction events at the document level."""
    CLICK = "click"
    INPUT = "input"
    SCROLL = "scroll"
    KEYDOWN = "keydown"


@dataclass(frozen=True)
class ActionEvent:
    """A user interaction as delivered by the action feed."""
    kind: EventKind
    target: Optional[Node]
    key: Optional[str] = None


MutationCallback = Callable[[list[MutationRecord]], None]
ActionCallback = Callable[[ActionEvent], None]
Unsubscribe = Callable[[], None]


# =============================================================================
# DOCUMENT ENVIRONMENT
# =============================================================================

class DocumentEnvironment(ABC):
    """
    Abstract document environment.

    root() is the content root (the body of an HTML document). Structural
    paths are computed relative to it and the root itself never appears
    in a path. query_all() never returns its scope node.
    """

    @abstractmethod
    def root(self) -> Node:
        ...

    @abstractmethod
    def query_all(self, selector: str, scope: Optional[Node] = None) -> list[Node]:
        """All descendants of scope (default: root) matching selector, in document order."""

    @abstractmethod
    def matches(self, node: Node, selector: str) -> bool:
        ...

    @abstractmethod
    def tag(self, node: Node) -> str:
        """Upper-case tag name."""

    @abstractmethod
    def attributes(self, node: Node) -> dict[str, str]:
        ...

    @abstractmethod
    def text(self, node: Node) -> str:
        """Visible text with whitespace collapsed."""

    @abstractmethod
    def value(self, node: Node) -> Optional[str]:
        """Current form value, or None when the node carries no value."""

    @abstractmethod
    def checked(self, node: Node) -> Optional[bool]:
        ...

    @abstractmethod
    def selected(self, node: Node) -> Optional[bool]:
        ...

    @abstractmethod
    def parent(self, node: Node) -> Optional[Node]:
        ...

    @abstractmethod
    def children(self, node: Node) -> list[Node]:
        """Element children only."""

    @abstractmethod
    def child_node_count(self, node: Node) -> int:
        """Element children plus non-blank text runs."""

    @abstractmethod
    def style(self, node: Node) -> Style:
        ...

    @abstractmethod
    def bounds(self, node: Node) -> Bounds:
        ...

    @abstractmethod
    def scroll(self, node: Node) -> ScrollState:
        ...

    @abstractmethod
    def observe(self, node: Node, callback: MutationCallback) -> Unsubscribe:
        """Subscribe to mutations in node's subtree."""

    @abstractmethod
    def listen(self, callback: ActionCallback) -> Unsubscribe:
        """Subscribe to document-level user interaction events."""

    # -------------------------------------------------------------------------
    # Derived helpers (implementations may override for speed)
    # -------------------------------------------------------------------------

    def query(self, selector: str, scope: Optional[Node] = None) -> Optional[Node]:
        found = self.query_all(selector, scope)
        return found[0] if found else None

    def get_attribute(self, node: Node, name: str) -> Optional[str]:
        return self.attributes(node).get(name)

    def has_attribute(self, node: Node, name: str) -> bool:
        return name in self.attributes(node)

    def closest(self, node: Optional[Node], selector: str) -> Optional[Node]:
        """Nearest inclusive ancestor matching selector."""
        while node is not None:
            if self.matches(node, selector):
                return node
            node = self.parent(node)
        return None

    def contains(self, ancestor: Node, node: Optional[Node]) -> bool:
        while node is not None:
            if node is ancestor:
                return True
            node = self.parent(node)
        return False

    def node_id(self, node: Node) -> str:
        return self.get_attribute(node, "id") or ""


def first_node(*nodes: Optional[Node]) -> Optional[Node]:
    """First argument that is not None. Nodes may be falsy (lxml leaves are)."""
    return next((n for n in nodes if n is not None), None)


# =============================================================================
# STRUCTURAL PATHS
# =============================================================================

PATH_SEPARATOR = ">"


def element_path(env: DocumentEnvironment, node: Node) -> str:
    """
    Render the TAG[index]>TAG[index] chain from below the root to node.

    Example: "DIV[0]>SPAN[0]" is the first SPAN of the first DIV in the body.
    """
    parts: list[str] = []
    root = env.root()
    while node is not None and node is not root:
        parent = env.parent(node)
        if parent is None:
            break
        index = next(
            (i for i, sibling in enumerate(env.children(parent)) if sibling is node),
            -1,
        )
        parts.append(f"{env.tag(node)}[{index}]")
        node = parent
    parts.reverse()
    return PATH_SEPARATOR.join(parts)


def resolve_path(env: DocumentEnvironment, path: str) -> Optional[Node]:
    """Walk a structural path back to a node; None if the tree moved on."""
    node = env.root()
    if not path:
        return node
    for part in path.split(PATH_SEPARATOR):
        tag, _, rest = part.partition("[")
        try:
            index = int(rest.rstrip("]"))
            child = env.children(node)[index]
        except (ValueError, IndexError):
            return None
        if env.tag(child) != tag:
            return None
        node = child
    return node


# =============================================================================
# SCHEDULING
# =============================================================================

class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        ...


class Scheduler(ABC):
    """Repeating timer primitive used by the passive correlation tick."""

    @abstractmethod
    def call_every(self, interval_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


@dataclass
class _AsyncioRepeatingHandle(TimerHandle):
    loop: asyncio.AbstractEventLoop
    interval_s: float
    callback: Callable[[], Any]
    _handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    _cancelled: bool = False

    def schedule(self) -> None:
        if not self._cancelled:
            self._handle = self.loop.call_later(self.interval_s, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        try:
            self.callback()
        finally:
            self.schedule()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_every(self, interval_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = _AsyncioRepeatingHandle(loop, interval_ms / 1000.0, callback)
        handle.schedule()
        return handle
