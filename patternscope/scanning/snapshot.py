"""
Snapshot Differ for PatternScope.

Point-in-time value scanning: capture a normalized ValueRecord for every
node below the document root, then diff two snapshots into categorized
changes. The scan cycle is

    first_scan()  — clear history, capture a baseline
    (user acts on the page)
    next_scan()   — capture again and diff against the previous snapshot

Design principles:
- A record holds only the fields a node actually produced
- Records are immutable once captured; diffs are derived, never edited
- A node that cannot be read is skipped; the scan continues
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from ..config import DEFAULT_SETTINGS, MAX_CLASS_NAME_LENGTH, EngineSettings
from ..environment import ENVIRONMENT_FAULTS, DocumentEnvironment, Node, PATH_SEPARATOR


logger = logging.getLogger(__name__)


ARIA_STATE_ATTRIBUTES = (
    "aria-expanded", "aria-hidden", "aria-selected", "aria-checked", "aria-pressed",
)


def _now_ms() -> float:
    return time.time() * 1000


# =============================================================================
# VALUE RECORD
# =============================================================================

@dataclass(frozen=True)
class ValueRecord:
    """
    The observable surface of one node at one instant.

    Only fields the node produced are set; everything else is None.
    tag, node_id and class_name identify the node for display and are
    not compared by diff().
    """
    child_count: int
    text: Optional[str] = None
    text_length: Optional[int] = None
    value: Optional[str] = None
    value_length: Optional[int] = None
    checked: Optional[bool] = None
    selected: Optional[bool] = None
    scroll_top: Optional[float] = None
    scroll_height: Optional[float] = None
    is_scrollable: Optional[bool] = None
    display: Optional[str] = None
    visibility: Optional[str] = None
    opacity: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    aria_state: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    data_attrs: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    tag: str = ""
    node_id: str = ""
    class_name: str = ""

    _SCALAR_KEYS = (
        "text", "text_length", "value", "value_length", "checked", "selected",
        "child_count", "scroll_top", "scroll_height", "is_scrollable",
        "display", "visibility", "opacity", "width", "height",
    )

    def as_values(self) -> dict[str, Any]:
        """Flat key -> value view used for diffing (absent fields omitted)."""
        values = {
            key: getattr(self, key)
            for key in self._SCALAR_KEYS
            if getattr(self, key) is not None
        }
        values.update(self.aria_state)
        values.update(self.data_attrs)
        return values


@dataclass(frozen=True)
class Snapshot:
    """All records captured in one pass, keyed by structural path."""
    timestamp: float
    elements: Mapping[str, ValueRecord]
    nodes: Mapping[str, Node]


# =============================================================================
# DIFF
# =============================================================================

class ChangeType(Enum):
    """Fixed classification of a per-key change."""
    CHILDREN_ADDED = "children-added"
    CHILDREN_REMOVED = "children-removed"
    TEXT_GREW = "text-grew"
    TEXT_SHRUNK = "text-shrunk"
    INPUT_CLEARED = "input-cleared"
    INPUT_FILLED = "input-filled"
    SCROLLED = "scrolled"
    BECAME_VISIBLE = "became-visible"
    BECAME_HIDDEN = "became-hidden"
    ARIA_TOGGLED = "aria-toggled"
    CHECK_TOGGLED = "check-toggled"
    VALUE_CHANGED = "value-changed"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def categorize_change(key: str, before: Any, after: Any) -> ChangeType:
    """Classify one key's change. First matching row of the table wins."""
    numeric = _is_number(before) and _is_number(after)
    if key == "child_count" and numeric and after > before:
        return ChangeType.CHILDREN_ADDED
    if key == "child_count" and numeric and after < before:
        return ChangeType.CHILDREN_REMOVED
    if key == "text_length" and numeric and after > before:
        return ChangeType.TEXT_GREW
    if key == "text_length" and numeric and after < before:
        return ChangeType.TEXT_SHRUNK
    if key == "value" and after == "":
        return ChangeType.INPUT_CLEARED
    if key == "value" and before == "":
        return ChangeType.INPUT_FILLED
    if key == "scroll_top":
        return ChangeType.SCROLLED
    if key == "display" and before == "none" and after != "none":
        return ChangeType.BECAME_VISIBLE
    if key == "display" and after == "none":
        return ChangeType.BECAME_HIDDEN
    if key == "aria-expanded":
        return ChangeType.ARIA_TOGGLED
    if key == "checked":
        return ChangeType.CHECK_TOGGLED
    return ChangeType.VALUE_CHANGED


@dataclass(frozen=True)
class ValueChange:
    key: str
    before: Any
    after: Any
    change_type: ChangeType


@dataclass(frozen=True)
class ChangedEntry:
    """A path present in both snapshots whose values differ."""
    path: str
    node: Node
    changes: tuple[ValueChange, ...]
    before: ValueRecord
    after: ValueRecord

    def has_change(self, change_type: ChangeType) -> bool:
        return any(c.change_type == change_type for c in self.changes)

    def change_for(self, key: str) -> Optional[ValueChange]:
        return next((c for c in self.changes if c.key == key), None)


@dataclass(frozen=True)
class NodeEntry:
    """A path present in only one of the two snapshots."""
    path: str
    node: Optional[Node]
    record: ValueRecord


@dataclass(frozen=True)
class NumericChange:
    """A numeric key that went up or down."""
    path: str
    node: Node
    key: str
    before: float
    after: float


@dataclass(frozen=True)
class DiffSummary:
    changed: int = 0
    added: int = 0
    removed: int = 0
    increased: int = 0
    decreased: int = 0


@dataclass(frozen=True)
class Diff:
    changed: tuple[ChangedEntry, ...] = ()
    added: tuple[NodeEntry, ...] = ()
    removed: tuple[NodeEntry, ...] = ()
    increased: tuple[NumericChange, ...] = ()
    decreased: tuple[NumericChange, ...] = ()
    unchanged: tuple[str, ...] = ()
    summary: DiffSummary = field(default_factory=DiffSummary)

    @property
    def is_empty(self) -> bool:
        return not (self.changed or self.added or self.removed)


def diff_values(before: Mapping[str, Any], after: Mapping[str, Any]) -> list[ValueChange]:
    """Per-key differences, in before-key order followed by new after-keys."""
    changes = []
    for key in dict.fromkeys([*before, *after]):
        b, a = before.get(key), after.get(key)
        if b != a:
            changes.append(ValueChange(key, b, a, categorize_change(key, b, a)))
    return changes


# =============================================================================
# SNAPSHOT DIFFER
# =============================================================================

class SnapshotDiffer:
    """
    Captures value snapshots of a document and diffs them.

    Keeps a ring buffer of the last settings.max_snapshots snapshots.
    """

    def __init__(
        self,
        env: DocumentEnvironment,
        settings: EngineSettings = DEFAULT_SETTINGS,
        clock: Optional[Callable[[], float]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.env = env
        self.settings = settings
        self._clock = clock or _now_ms
        self.logger = logger or logging.getLogger(__name__)
        self._snapshots: deque[Snapshot] = deque(maxlen=settings.max_snapshots)

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def _walk(self):
        """Yield (path, node) for every node below the root, pre-order."""
        try:
            stack = [("", self.env.root())]
        except ENVIRONMENT_FAULTS as e:
            self.logger.debug("Document root unavailable: %s", e)
            return
        while stack:
            prefix, node = stack.pop()
            if prefix:
                yield prefix, node
            try:
                children = self.env.children(node)
            except ENVIRONMENT_FAULTS as e:
                self.logger.debug("Skipping subtree at %r: %s", prefix, e)
                continue
            level = []
            for index, child in enumerate(children):
                try:
                    part = f"{self.env.tag(child)}[{index}]"
                except ENVIRONMENT_FAULTS:
                    continue
                level.append((f"{prefix}{PATH_SEPARATOR}{part}" if prefix else part, child))
            # reversed so the first child is popped first
            stack.extend(reversed(level))

    def extract_values(self, node: Node) -> Optional[ValueRecord]:
        """Build the record for one node; None when nothing is readable."""
        env = self.env
        settings = self.settings
        fields: dict[str, Any] = {}
        try:
            if env.child_node_count(node) <= settings.max_text_child_nodes:
                text = env.text(node).strip()
                if 0 < len(text) < settings.max_text_length:
                    fields["text"] = text
                    fields["text_length"] = len(text)

            value = env.value(node)
            if value is not None:
                fields["value"] = value
                fields["value_length"] = len(value)

            checked = env.checked(node)
            if checked is not None:
                fields["checked"] = checked
            selected = env.selected(node)
            if selected is not None:
                fields["selected"] = selected

            fields["child_count"] = len(env.children(node))

            attributes = env.attributes(node)
            fields["aria_state"] = MappingProxyType({
                name: attributes[name]
                for name in ARIA_STATE_ATTRIBUTES
                if name in attributes
            })
            fields["data_attrs"] = MappingProxyType({
                name: val
                for name, val in attributes.items()
                if name.startswith("data-") and len(val) < settings.max_data_attr_length
            })
            fields["tag"] = env.tag(node)
            fields["node_id"] = attributes.get("id", "")
            fields["class_name"] = attributes.get("class", "")[:MAX_CLASS_NAME_LENGTH]
        except ENVIRONMENT_FAULTS as e:
            self.logger.debug("Unreadable node skipped: %s", e)
            return None

        try:
            scroll = env.scroll(node)
            if scroll.is_scrollable:
                fields["scroll_top"] = scroll.top
                fields["scroll_height"] = scroll.height
                fields["is_scrollable"] = True
        except ENVIRONMENT_FAULTS:
            pass

        try:
            style = env.style(node)
            fields["display"] = style.display
            fields["visibility"] = style.visibility
            fields["opacity"] = style.opacity
        except ENVIRONMENT_FAULTS:
            pass

        try:
            bounds = env.bounds(node)
            if bounds.width > 0 or bounds.height > 0:
                fields["width"] = round(bounds.width)
                fields["height"] = round(bounds.height)
        except ENVIRONMENT_FAULTS:
            pass

        return ValueRecord(**fields)

    def snapshot(self) -> Snapshot:
        """Capture every readable node and push the snapshot into the ring buffer."""
        elements: dict[str, ValueRecord] = {}
        nodes: dict[str, Node] = {}
        for path, node in self._walk():
            record = self.extract_values(node)
            if record is not None and record.as_values():
                elements[path] = record
                nodes[path] = node

        snap = Snapshot(
            timestamp=self._clock(),
            elements=MappingProxyType(elements),
            nodes=MappingProxyType(nodes),
        )
        self._snapshots.append(snap)
        return snap

    def first_scan(self) -> Snapshot:
        self._snapshots.clear()
        snap = self.snapshot()
        self.logger.info("Baseline: %d elements captured", len(snap.elements))
        return snap

    def next_scan(self) -> Diff:
        """Snapshot again and diff against the previous snapshot."""
        if not self._snapshots:
            self.first_scan()
            return Diff()
        before = self._snapshots[-1]
        after = self.snapshot()
        result = self.diff(before, after)
        self.logger.info(
            "Diff: %d changed, %d added, %d removed",
            result.summary.changed, result.summary.added, result.summary.removed,
        )
        return result

    # -------------------------------------------------------------------------
    # Diff
    # -------------------------------------------------------------------------

    def diff(self, before: Snapshot, after: Snapshot) -> Diff:
        changed: list[ChangedEntry] = []
        added: list[NodeEntry] = []
        removed: list[NodeEntry] = []
        increased: list[NumericChange] = []
        decreased: list[NumericChange] = []
        unchanged: list[str] = []

        for path, after_record in after.elements.items():
            node = after.nodes.get(path)
            before_record = before.elements.get(path)
            if before_record is None:
                added.append(NodeEntry(path, node, after_record))
                continue

            changes = diff_values(before_record.as_values(), after_record.as_values())
            if not changes:
                unchanged.append(path)
                continue

            changed.append(ChangedEntry(path, node, tuple(changes), before_record, after_record))
            for change in changes:
                if _is_number(change.before) and _is_number(change.after):
                    numeric = NumericChange(path, node, change.key, change.before, change.after)
                    if change.after > change.before:
                        increased.append(numeric)
                    elif change.after < change.before:
                        decreased.append(numeric)

        for path, before_record in before.elements.items():
            if path not in after.elements:
                removed.append(NodeEntry(path, before.nodes.get(path), before_record))

        return Diff(
            changed=tuple(changed),
            added=tuple(added),
            removed=tuple(removed),
            increased=tuple(increased),
            decreased=tuple(decreased),
            unchanged=tuple(unchanged),
            summary=DiffSummary(
                changed=len(changed),
                added=len(added),
                removed=len(removed),
                increased=len(increased),
                decreased=len(decreased),
            ),
        )

    @staticmethod
    def filter_by_type(diff: Diff, change_type: ChangeType) -> list[ChangedEntry]:
        return [entry for entry in diff.changed if entry.has_change(change_type)]

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def snapshots(self) -> tuple[Snapshot, ...]:
        return tuple(self._snapshots)

    @property
    def snapshot_count(self) -> int:
        return len(self._snapshots)

    @property
    def last_snapshot(self) -> Optional[Snapshot]:
        return self._snapshots[-1] if self._snapshots else None

    @property
    def element_count(self) -> int:
        last = self.last_snapshot
        return len(last.elements) if last else 0
