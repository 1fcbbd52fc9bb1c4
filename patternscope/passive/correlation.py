"""
Passive Correlation Engine for PatternScope.

Infers patterns from what the user does and what the document does
right after, without any explicit scan cycle.

Feeds:
    actions    click / input / scroll / Enter key, from env.listen()
    mutations  children added / children removed / attribute changed,
               from env.observe(root); attribute changes are only kept
               for aria-expanded, aria-hidden, style, class and hidden

Both queues are bounded FIFOs (oldest evicted). A periodic tick runs
correlate():

    1. drop entries older than 2 * window
    2. for each uncorrelated action no older than window, collect the
       mutations stamped in [action, action + window]
    3. apply the rules in order, first match wins:
         click on aria-expanded element + aria-expanded change  -> dropdown 0.9
         click + dialog node appeared                           -> modal    0.95
         click + large fixed/absolute node appeared             -> modal    0.75
         Enter in INPUT/TEXTAREA + children added               -> chat     0.85
         scroll at bottom + children added inside the scroller  -> feed     0.7
    4. report when confidence >= min confidence, then mark the action
       correlated so it is never evaluated again

Reports are deduplicated by (pattern, container tag, container id); a
new report replaces the stored one unless its confidence is lower.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from ..config import DEFAULT_SETTINGS, EngineSettings
from ..domain import InferredPattern, PatternName
from ..environment import (
    ENVIRONMENT_FAULTS,
    ActionEvent,
    AsyncioScheduler,
    DocumentEnvironment,
    EventKind,
    MutationRecord,
    MutationType,
    Node,
    Scheduler,
    TimerHandle,
    Unsubscribe,
    first_node,
)


logger = logging.getLogger(__name__)


OBSERVED_ATTRIBUTES = frozenset({"aria-expanded", "aria-hidden", "style", "class", "hidden"})

DROPDOWN_CONFIDENCE = 0.9
DIALOG_CONFIDENCE = 0.95
OVERLAY_CONFIDENCE = 0.75
CHAT_CONFIDENCE = 0.85
FEED_CONFIDENCE = 0.7

MAX_VALUE_PREVIEW = 50


def _now_ms() -> float:
    return time.monotonic() * 1000.0


# =============================================================================
# QUEUE ENTRIES
# =============================================================================

class ActionKind(Enum):
    CLICK = "click"
    INPUT = "input"
    SCROLL = "scroll"
    ENTER = "enter"


class MutationKind(Enum):
    CHILDREN_ADDED = "children-added"
    CHILDREN_REMOVED = "children-removed"
    ATTR_CHANGED = "attr-changed"


@dataclass
class ActionEntry:
    """A user action with the metadata the rules need, captured at event time."""
    kind: ActionKind
    target: Any
    timestamp: float
    tag: str = ""
    has_aria_expanded: bool = False
    has_aria_haspopup: bool = False
    is_button: bool = False
    is_input: bool = False
    value: Optional[str] = None
    at_bottom: bool = False
    correlated: bool = False


@dataclass
class MutationEntry:
    kind: MutationKind
    target: Any
    timestamp: float
    count: int = 0
    nodes: tuple = ()
    attribute: Optional[str] = None
    value: Optional[str] = None


@dataclass
class Inference:
    pattern: PatternName
    confidence: float
    evidence: str
    container: Optional[Node]
    extra_parts: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# ENGINE
# =============================================================================

class PassiveCorrelationEngine:
    """
    Windowed action/mutation correlator.

    The tick is driven by a Scheduler (asyncio by default); tests and
    hosts with their own loop can pass any Scheduler and clock, or call
    correlate() directly.
    """

    def __init__(
        self,
        env: DocumentEnvironment,
        settings: EngineSettings = DEFAULT_SETTINGS,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Callable[[], float]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.env = env
        self.settings = settings
        self.scheduler = scheduler
        self.clock = clock or _now_ms
        self.logger = logger or logging.getLogger(__name__)

        self._actions: deque[ActionEntry] = deque(maxlen=settings.max_queue_size)
        self._mutations: deque[MutationEntry] = deque(maxlen=settings.max_queue_size)
        self._inferred: dict[tuple[str, str, str], InferredPattern] = {}
        self._callbacks: list[Callable[[InferredPattern], Any]] = []

        self._running = False
        self._unlisten: Optional[Unsubscribe] = None
        self._unobserve: Optional[Unsubscribe] = None
        self._timer: Optional[TimerHandle] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True

        self._unlisten = self.env.listen(self._handle_action)
        self._unobserve = self.env.observe(self.env.root(), self._handle_mutations)
        if self.scheduler is None:
            self.scheduler = AsyncioScheduler()
        self._timer = self.scheduler.call_every(self.settings.correlation_tick_ms, self.correlate)

        self.logger.info("Passive observation started")

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
        if self._unobserve is not None:
            self._unobserve()
            self._unobserve = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        self.logger.info("Passive observation stopped")

    def on_pattern(self, callback: Callable[[InferredPattern], Any]) -> Unsubscribe:
        """Subscribe to reported inferences."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    @property
    def inferred(self) -> list[InferredPattern]:
        return list(self._inferred.values())

    def clear_inferred(self) -> None:
        self._inferred.clear()

    @property
    def pending_actions(self) -> int:
        return len(self._actions)

    @property
    def pending_mutations(self) -> int:
        return len(self._mutations)

    # -------------------------------------------------------------------------
    # Feeds
    # -------------------------------------------------------------------------

    def _handle_action(self, event: ActionEvent) -> None:
        try:
            entry = self._capture_action(event)
        except ENVIRONMENT_FAULTS as e:
            self.logger.debug("Action on unreadable target ignored: %s", e)
            return
        if entry is not None:
            self._actions.append(entry)

    def _capture_action(self, event: ActionEvent) -> Optional[ActionEntry]:
        env = self.env
        target = event.target
        now = self.clock()

        if event.kind is EventKind.CLICK and target is not None:
            tag = env.tag(target)
            return ActionEntry(
                ActionKind.CLICK, target, now,
                tag=tag,
                has_aria_expanded=env.has_attribute(target, "aria-expanded"),
                has_aria_haspopup=env.has_attribute(target, "aria-haspopup"),
                is_button=tag == "BUTTON" or env.get_attribute(target, "role") == "button",
            )

        if event.kind is EventKind.INPUT and target is not None:
            value = env.value(target)
            return ActionEntry(
                ActionKind.INPUT, target, now,
                tag=env.tag(target),
                value=(value or "")[:MAX_VALUE_PREVIEW],
            )

        if event.kind is EventKind.SCROLL:
            scroller = target if target is not None else env.root()
            state = env.scroll(scroller)
            at_bottom = (
                state.top + state.client_height
                >= state.height - self.settings.scroll_bottom_tolerance
            )
            return ActionEntry(ActionKind.SCROLL, scroller, now, tag=env.tag(scroller), at_bottom=at_bottom)

        if event.kind is EventKind.KEYDOWN and event.key == "Enter" and target is not None:
            tag = env.tag(target)
            value = env.value(target)
            return ActionEntry(
                ActionKind.ENTER, target, now,
                tag=tag,
                is_input=tag in ("INPUT", "TEXTAREA"),
                value=(value or "")[:MAX_VALUE_PREVIEW],
            )

        return None

    def _handle_mutations(self, records: list[MutationRecord]) -> None:
        now = self.clock()
        for record in records:
            if record.type is MutationType.CHILD_LIST:
                if record.added_nodes:
                    self._mutations.append(MutationEntry(
                        MutationKind.CHILDREN_ADDED, record.target, now,
                        count=len(record.added_nodes),
                        nodes=tuple(record.added_nodes),
                    ))
                if record.removed_nodes:
                    self._mutations.append(MutationEntry(
                        MutationKind.CHILDREN_REMOVED, record.target, now,
                        count=len(record.removed_nodes),
                    ))
            elif record.type is MutationType.ATTRIBUTES:
                if record.attribute_name not in OBSERVED_ATTRIBUTES:
                    continue
                try:
                    value = self.env.get_attribute(record.target, record.attribute_name)
                except ENVIRONMENT_FAULTS:
                    value = None
                self._mutations.append(MutationEntry(
                    MutationKind.ATTR_CHANGED, record.target, now,
                    attribute=record.attribute_name,
                    value=value,
                ))

    # -------------------------------------------------------------------------
    # Correlation
    # -------------------------------------------------------------------------

    def correlate(self) -> list[InferredPattern]:
        """One tick: purge, match, infer, report. Returns what was reported."""
        now = self.clock()
        window = self.settings.correlation_window_ms
        horizon = 2 * window

        self._actions = deque(
            (a for a in self._actions if now - a.timestamp < horizon),
            maxlen=self.settings.max_queue_size,
        )
        self._mutations = deque(
            (m for m in self._mutations if now - m.timestamp < horizon),
            maxlen=self.settings.max_queue_size,
        )

        reported: list[InferredPattern] = []
        for action in list(self._actions):
            if action.correlated or now - action.timestamp > window:
                continue

            mutations = [
                m for m in self._mutations
                if action.timestamp <= m.timestamp <= action.timestamp + window
            ]
            if not mutations:
                continue

            inference = self.infer(action, mutations)
            if inference is None or inference.confidence < self.settings.min_passive_confidence:
                continue

            action.correlated = True
            pattern = self._report(inference)
            if pattern is not None:
                reported.append(pattern)
        return reported

    def infer(self, action: ActionEntry, mutations: list[MutationEntry]) -> Optional[Inference]:
        """Apply the rules in order; the first that matches decides."""
        for rule in (self._infer_dropdown, self._infer_modal, self._infer_chat, self._infer_feed):
            inference = rule(action, mutations)
            if inference is not None:
                return inference
        return None

    def _infer_dropdown(self, action: ActionEntry, mutations: list[MutationEntry]) -> Optional[Inference]:
        if action.kind is not ActionKind.CLICK or not action.has_aria_expanded:
            return None
        toggled = any(
            m.kind is MutationKind.ATTR_CHANGED and m.attribute == "aria-expanded"
            for m in mutations
        )
        if not toggled:
            return None
        container = first_node(
            self.env.closest(action.target, '[role="combobox"], [role="listbox"]'),
            self.env.parent(action.target),
        )
        return Inference(
            PatternName.DROPDOWN,
            DROPDOWN_CONFIDENCE,
            "click + aria-expanded toggled",
            container,
            {"trigger": action.target},
        )

    def _infer_modal(self, action: ActionEntry, mutations: list[MutationEntry]) -> Optional[Inference]:
        if action.kind is not ActionKind.CLICK:
            return None
        for mutation in mutations:
            if mutation.kind is not MutationKind.CHILDREN_ADDED:
                continue
            for node in mutation.nodes:
                try:
                    inference = self._modal_from_node(node)
                except ENVIRONMENT_FAULTS as e:
                    self.logger.debug("Added node unreadable: %s", e)
                    continue
                if inference is not None:
                    return inference
        return None

    def _modal_from_node(self, node: Node) -> Optional[Inference]:
        env = self.env
        is_dialog = (
            env.get_attribute(node, "role") == "dialog"
            or env.get_attribute(node, "aria-modal") == "true"
        )
        if is_dialog:
            return Inference(PatternName.MODAL, DIALOG_CONFIDENCE, "dialog role appeared", node)

        if env.style(node).position in ("fixed", "absolute"):
            bounds = env.bounds(node)
            if bounds.width > self.settings.modal_min_width and bounds.height > self.settings.modal_min_height:
                return Inference(
                    PatternName.MODAL, OVERLAY_CONFIDENCE, "fixed element appeared after click", node
                )
        return None

    def _infer_chat(self, action: ActionEntry, mutations: list[MutationEntry]) -> Optional[Inference]:
        if action.kind is not ActionKind.ENTER or not action.is_input:
            return None
        added = [m for m in mutations if m.kind is MutationKind.CHILDREN_ADDED]
        if not added:
            return None
        largest = max(added, key=lambda m: m.count)
        return Inference(
            PatternName.CHAT,
            CHAT_CONFIDENCE,
            "enter + children added (message sent)",
            largest.target,
            {"input": action.target},
        )

    def _infer_feed(self, action: ActionEntry, mutations: list[MutationEntry]) -> Optional[Inference]:
        if action.kind is not ActionKind.SCROLL or not action.at_bottom:
            return None
        grew_inside = any(
            m.kind is MutationKind.CHILDREN_ADDED and self.env.contains(action.target, m.target)
            for m in mutations
        )
        if not grew_inside:
            return None
        return Inference(
            PatternName.FEED, FEED_CONFIDENCE, "scroll to bottom + children added", action.target
        )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def _report(self, inference: Inference) -> Optional[InferredPattern]:
        container = inference.container
        try:
            tag = self.env.tag(container) if container is not None else ""
            node_id = self.env.node_id(container) if container is not None else ""
        except ENVIRONMENT_FAULTS:
            tag, node_id = "", ""

        pattern = InferredPattern(
            pattern=inference.pattern,
            confidence=inference.confidence,
            evidence=inference.evidence,
            container=container,
            container_tag=tag,
            container_id=node_id,
            extra_parts=dict(inference.extra_parts),
        )

        existing = self._inferred.get(pattern.dedup_key)
        if existing is not None and existing.confidence > pattern.confidence:
            return None
        self._inferred[pattern.dedup_key] = pattern

        self.logger.info(
            "[Passive] Inferred %s (%.0f%%) - %s",
            pattern.pattern.value, pattern.confidence * 100, pattern.evidence,
        )
        for callback in list(self._callbacks):
            callback(pattern)
        return pattern
