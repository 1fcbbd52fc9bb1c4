"""
Zero-configuration pattern matchers over a snapshot Diff.

Useful right after a user action: no selectors, no lexicons, just the
shape of what changed.

Matchers (each independent, fixed confidence):
    chat      — an input was cleared AND some node gained children (0.95)
    form      — two or more inputs were cleared (0.85)
    dropdown  — some aria-expanded attribute changed (0.9)
    modal     — a fixed/absolute node went from display:none to visible (0.85)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..domain import PatternName
from ..environment import ENVIRONMENT_FAULTS, DocumentEnvironment
from .snapshot import ChangeType, ChangedEntry, Diff


CHAT_CONFIDENCE = 0.95
FORM_CONFIDENCE = 0.85
DROPDOWN_CONFIDENCE = 0.9
MODAL_CONFIDENCE = 0.85

OVERLAY_POSITIONS = ("fixed", "absolute")


@dataclass
class DiffMatch:
    """A pattern recognised from a diff, with the parts that proved it."""
    pattern: PatternName
    confidence: float
    proof: str
    components: dict[str, Any] = field(default_factory=dict)
    state: Optional[str] = None

    @property
    def container(self) -> Any:
        return self.components.get("container")


def _child_growth(entry: ChangedEntry) -> float:
    change = entry.change_for("child_count")
    if change is None:
        return 0
    return (change.after or 0) - (change.before or 0)


def detect_chat(diff: Diff) -> Optional[DiffMatch]:
    cleared = [e for e in diff.changed if e.has_change(ChangeType.INPUT_CLEARED)]
    grown = [e for e in diff.changed if e.has_change(ChangeType.CHILDREN_ADDED)]
    if not (cleared and grown):
        return None

    container = max(grown, key=_child_growth)
    return DiffMatch(
        pattern=PatternName.CHAT,
        confidence=CHAT_CONFIDENCE,
        proof="input-cleared + children-added",
        components={"container": container.node, "input": cleared[0].node},
    )


def detect_form(diff: Diff, env: Optional[DocumentEnvironment] = None) -> Optional[DiffMatch]:
    cleared = [e for e in diff.changed if e.has_change(ChangeType.INPUT_CLEARED)]
    if len(cleared) < 2:
        return None

    form = None
    if env is not None:
        try:
            form = env.closest(cleared[0].node, "form")
        except ENVIRONMENT_FAULTS:
            form = None

    return DiffMatch(
        pattern=PatternName.FORM,
        confidence=FORM_CONFIDENCE,
        proof=f"{len(cleared)} inputs cleared",
        components={"form": form, "inputs": [e.node for e in cleared]},
    )


def detect_dropdown(diff: Diff) -> Optional[DiffMatch]:
    toggled = [e for e in diff.changed if e.change_for("aria-expanded") is not None]
    if not toggled:
        return None

    visible = [e for e in diff.changed if e.has_change(ChangeType.BECAME_VISIBLE)]
    expanded = toggled[0].after.aria_state.get("aria-expanded") == "true"
    return DiffMatch(
        pattern=PatternName.DROPDOWN,
        confidence=DROPDOWN_CONFIDENCE,
        proof="aria-expanded toggled",
        components={
            "trigger": toggled[0].node,
            "menu": visible[0].node if visible else None,
        },
        state="opened" if expanded else "closed",
    )


def detect_modal(diff: Diff, env: Optional[DocumentEnvironment] = None) -> Optional[DiffMatch]:
    if env is None:
        return None

    for entry in diff.changed:
        if entry.before.display != "none" or entry.after.display == "none":
            continue
        try:
            overlay = env.style(entry.node).position in OVERLAY_POSITIONS
        except ENVIRONMENT_FAULTS:
            overlay = False
        if overlay:
            return DiffMatch(
                pattern=PatternName.MODAL,
                confidence=MODAL_CONFIDENCE,
                proof="fixed element became visible",
                components={"container": entry.node},
                state="opened",
            )
    return None


def detect_pattern(diff: Diff, env: Optional[DocumentEnvironment] = None) -> list[DiffMatch]:
    """
    Run every matcher over a diff.

    env is only consulted to find an enclosing form and to read the
    position of nodes that became visible; without it the form match
    has no form part and the modal matcher is skipped.
    """
    matches = [
        detect_chat(diff),
        detect_form(diff, env),
        detect_dropdown(diff),
        detect_modal(diff, env),
    ]
    return [m for m in matches if m is not None]
