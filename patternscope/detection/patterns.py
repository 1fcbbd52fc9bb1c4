"""
Pattern table for structural candidate scanning.

Each pattern names:
    selectors               CSS selectors that seed candidates
    rules                   weighted structural rules; the structural score
                            is the weight of satisfied rules over the total
    scan_repeated_children  also consider every node with repeated child
                            structure (list-like containers)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..domain import PatternName


class RuleName(Enum):
    SCROLLABLE = "scrollable"
    HAS_INPUT = "has-input"
    HAS_INPUT_NEARBY = "has-input-nearby"
    HAS_BUTTON = "has-button"
    HAS_PASSWORD = "has-password"
    REPEATED_CHILDREN = "repeated-children"
    ARIA_LIVE = "aria-live"
    ARIA_HASPOPUP = "aria-haspopup"
    ARIA_EXPANDED = "aria-expanded"
    FORM_TAG = "form-tag"
    ROLE_DIALOG = "role-dialog"
    FIXED_POSITION = "fixed-position"
    HAS_CLOSE = "has-close"
    SEARCH_TYPE = "search-type"


@dataclass(frozen=True)
class PatternSpec:
    selectors: tuple[str, ...]
    rules: tuple[tuple[RuleName, int], ...]
    scan_repeated_children: bool = False

    @property
    def total_weight(self) -> int:
        return sum(weight for _, weight in self.rules)


PATTERN_SPECS: dict[PatternName, PatternSpec] = {
    PatternName.CHAT: PatternSpec(
        selectors=(
            '[role="log"]',
            "[aria-live]",
            '[class*="message"]',
            '[class*="chat"]',
            '[class*="conversation"]',
        ),
        rules=(
            (RuleName.SCROLLABLE, 3),
            (RuleName.HAS_INPUT_NEARBY, 3),
            (RuleName.REPEATED_CHILDREN, 2),
            (RuleName.ARIA_LIVE, 2),
        ),
        scan_repeated_children=True,
    ),
    PatternName.FORM: PatternSpec(
        selectors=("form", '[role="form"]', '[class*="form"]'),
        rules=(
            (RuleName.FORM_TAG, 4),
            (RuleName.HAS_INPUT, 3),
            (RuleName.HAS_BUTTON, 2),
        ),
    ),
    PatternName.DROPDOWN: PatternSpec(
        selectors=(
            "[aria-haspopup]",
            "[aria-expanded]",
            '[class*="dropdown"]',
            '[class*="select"]',
        ),
        rules=(
            (RuleName.ARIA_HASPOPUP, 3),
            (RuleName.ARIA_EXPANDED, 2),
        ),
    ),
    PatternName.MODAL: PatternSpec(
        selectors=(
            '[role="dialog"]',
            "[aria-modal]",
            '[class*="modal"]',
            '[class*="dialog"]',
            '[class*="popup"]',
        ),
        rules=(
            (RuleName.FIXED_POSITION, 3),
            (RuleName.ROLE_DIALOG, 3),
            (RuleName.HAS_CLOSE, 1),
        ),
    ),
    PatternName.LOGIN: PatternSpec(
        selectors=('[class*="login"]', '[class*="signin"]', "form"),
        rules=(
            (RuleName.HAS_PASSWORD, 4),
            (RuleName.FORM_TAG, 2),
            (RuleName.HAS_BUTTON, 1),
        ),
    ),
    PatternName.SEARCH: PatternSpec(
        selectors=('[class*="search"]', '[role="search"]', 'input[type="search"]'),
        rules=(
            (RuleName.HAS_INPUT, 3),
            (RuleName.SEARCH_TYPE, 3),
        ),
    ),
    PatternName.COOKIE: PatternSpec(
        selectors=('[class*="cookie"]', '[class*="consent"]', '[class*="gdpr"]'),
        rules=(
            (RuleName.FIXED_POSITION, 2),
            (RuleName.HAS_BUTTON, 2),
        ),
    ),
    PatternName.FEED: PatternSpec(
        selectors=('[class*="feed"]', '[class*="timeline"]', '[class*="posts"]'),
        rules=(
            (RuleName.SCROLLABLE, 3),
            (RuleName.REPEATED_CHILDREN, 4),
        ),
        scan_repeated_children=True,
    ),
}
