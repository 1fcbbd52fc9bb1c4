"""
Structural rules, semantic predicates, component finders and behavioral
checks, one table per signal.

Every table is keyed by an enum and must cover every member; this is
checked when the module is imported, so a new pattern or rule cannot be
added without its checks.

All checks read through the DocumentEnvironment and treat an
environment fault as "predicate false" (or "part absent").
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from ..config import NONCE_ATTRIBUTE
from ..domain import ConfigurationError, PatternName
from ..environment import ENVIRONMENT_FAULTS, DocumentEnvironment, Node, first_node
from .patterns import PATTERN_SPECS, RuleName


logger = logging.getLogger(__name__)


Components = dict[str, Any]

INPUT_SELECTOR = "input,textarea"
BUTTON_SELECTOR = 'button,input[type="submit"]'


def _require_exhaustive(table: Mapping, members: type[Enum], label: str) -> None:
    missing = [m.value for m in members if m not in table]
    if missing:
        raise ConfigurationError(f"{label} has no entry for: {missing}")


# =============================================================================
# STRUCTURAL RULES
# =============================================================================

def has_repeated_children(env: DocumentEnvironment, node: Node) -> bool:
    """
    True when at least two children share a structure key.

    The key is the first class token of a child, or its tag when it has
    no class.
    """
    children = env.children(node)
    if len(children) < 2:
        return False
    counts: dict[str, int] = {}
    for child in children:
        tokens = (env.get_attribute(child, "class") or "").split()
        key = tokens[0] if tokens else env.tag(child)
        counts[key] = counts.get(key, 0) + 1
    return max(counts.values()) >= 2


def _is_scrollable(env: DocumentEnvironment, node: Node) -> bool:
    return (
        env.scroll(node).is_scrollable
        and env.style(node).overflow_y in ("auto", "scroll")
    )


def _has(env: DocumentEnvironment, node: Node, selector: str) -> bool:
    return env.query(selector, node) is not None


def _has_input_nearby(env: DocumentEnvironment, node: Node) -> bool:
    if _has(env, node, INPUT_SELECTOR):
        return True
    parent = env.parent(node)
    return parent is not None and _has(env, parent, INPUT_SELECTOR)


def _self_or_descendant_has(env: DocumentEnvironment, node: Node, attribute: str) -> bool:
    return env.has_attribute(node, attribute) or _has(env, node, f"[{attribute}]")


RULE_CHECKS: dict[RuleName, Callable[[DocumentEnvironment, Node], bool]] = {
    RuleName.SCROLLABLE: _is_scrollable,
    RuleName.HAS_INPUT: lambda env, node: _has(env, node, INPUT_SELECTOR),
    RuleName.HAS_INPUT_NEARBY: _has_input_nearby,
    RuleName.HAS_BUTTON: lambda env, node: _has(env, node, BUTTON_SELECTOR),
    RuleName.HAS_PASSWORD: lambda env, node: _has(env, node, 'input[type="password"]'),
    RuleName.REPEATED_CHILDREN: has_repeated_children,
    RuleName.ARIA_LIVE: lambda env, node: env.has_attribute(node, "aria-live"),
    RuleName.ARIA_HASPOPUP: lambda env, node: _self_or_descendant_has(env, node, "aria-haspopup"),
    RuleName.ARIA_EXPANDED: lambda env, node: _self_or_descendant_has(env, node, "aria-expanded"),
    RuleName.FORM_TAG: lambda env, node: env.tag(node) == "FORM",
    RuleName.ROLE_DIALOG: lambda env, node: env.get_attribute(node, "role") == "dialog",
    RuleName.FIXED_POSITION: lambda env, node: env.style(node).position == "fixed",
    RuleName.HAS_CLOSE: lambda env, node: _has(env, node, '[class*="close"], button'),
    RuleName.SEARCH_TYPE: lambda env, node: _has(env, node, 'input[type="search"]'),
}


def check_rule(env: DocumentEnvironment, node: Node, rule: RuleName) -> bool:
    try:
        return bool(RULE_CHECKS[rule](env, node))
    except ENVIRONMENT_FAULTS as e:
        logger.debug("Rule %s unreadable: %s", rule.value, e)
        return False


def structural_score(env: DocumentEnvironment, node: Node, pattern: PatternName) -> float:
    """Weight of satisfied rules divided by the total rule weight."""
    spec = PATTERN_SPECS[pattern]
    total = spec.total_weight
    if total <= 0:
        return 0.0
    satisfied = sum(weight for rule, weight in spec.rules if check_rule(env, node, rule))
    return satisfied / total


# =============================================================================
# SEMANTIC PREDICATES
# =============================================================================

def _role(env: DocumentEnvironment, node: Node) -> Optional[str]:
    return env.get_attribute(node, "role")


SEMANTIC_CHECKS: dict[PatternName, Callable[[DocumentEnvironment, Node], bool]] = {
    PatternName.CHAT: lambda env, node: (
        _role(env, node) == "log" or env.has_attribute(node, "aria-live")
    ),
    PatternName.FORM: lambda env, node: (
        env.tag(node) == "FORM" or _role(env, node) == "form"
    ),
    PatternName.DROPDOWN: lambda env, node: _self_or_descendant_has(env, node, "aria-haspopup"),
    PatternName.MODAL: lambda env, node: (
        _role(env, node) == "dialog" or env.get_attribute(node, "aria-modal") == "true"
    ),
    PatternName.LOGIN: lambda env, node: (
        env.tag(node) == "FORM" and _has(env, node, 'input[type="password"]')
    ),
    PatternName.SEARCH: lambda env, node: (
        _role(env, node) == "search" or _has(env, node, 'input[type="search"]')
    ),
    PatternName.COOKIE: lambda env, node: False,
    PatternName.FEED: lambda env, node: _role(env, node) == "feed",
}


def check_semantic(env: DocumentEnvironment, node: Node, pattern: PatternName) -> float:
    """1.0 when the node declares the pattern through roles/ARIA, else 0.0."""
    try:
        return 1.0 if SEMANTIC_CHECKS[pattern](env, node) else 0.0
    except ENVIRONMENT_FAULTS as e:
        logger.debug("Semantic check for %s unreadable: %s", pattern.value, e)
        return 0.0


# =============================================================================
# COMPONENT FINDERS
# =============================================================================

CHAT_INPUT_SELECTOR = (
    '[contenteditable="true"][role="textbox"], [contenteditable="true"], textarea, '
    'input:not([type="hidden"]):not([type="file"])'
)
PROMPT_INPUT_SELECTOR = (
    '[data-testid="chat-input"], [data-testid*="prompt"] [contenteditable="true"], '
    '[data-testid*="prompt"] textarea'
)
SEND_BUTTON_SKIP = re.compile(r"toggle|menu|attach|upload|expand|close", re.IGNORECASE)
COOKIE_ACCEPT = ("accept", "agree", "allow")


def is_owned(env: DocumentEnvironment, node: Node, nonce_attribute: str = NONCE_ATTRIBUTE) -> bool:
    """True for nodes inside an element this engine injected itself."""
    return env.closest(node, f"[{nonce_attribute}]") is not None


def _is_interactive(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> bool:
    return (
        env.closest(node, "[inert]") is None
        and env.closest(node, '[aria-hidden="true"]') is None
        and not is_owned(env, node, nonce_attribute)
    )


def _ancestor(env: DocumentEnvironment, node: Optional[Node], levels: int) -> Optional[Node]:
    for _ in range(levels):
        if node is None:
            return None
        node = env.parent(node)
    return node


def _send_button_preferences(env: DocumentEnvironment) -> list[Callable[[Node], bool]]:
    def label(button: Node) -> str:
        return (env.get_attribute(button, "aria-label") or "").lower()

    return [
        lambda b: "send" in label(b),
        lambda b: "submit" in label(b),
        lambda b: "send" in (env.get_attribute(b, "data-testid") or "").lower(),
        lambda b: (env.get_attribute(b, "type") or "").lower() == "submit",
    ]


def find_send_button(
    env: DocumentEnvironment,
    chat_input: Optional[Node],
    fallback_root: Optional[Node],
) -> Optional[Node]:
    """
    Find the send button near a chat input.

    Roots are searched from the tightest enclosure outwards. Buttons
    labelled send/submit win; otherwise the last button that is not a
    menu, toggle, attach, upload, expand or close control.
    """
    roots = [
        env.closest(chat_input, "fieldset"),
        env.closest(chat_input, '[data-testid*="chat"]'),
        env.closest(chat_input, '[class*="chat"]'),
        env.closest(chat_input, '[class*="composer"]'),
        _ancestor(env, chat_input, 3),
        fallback_root,
        env.root(),
    ]
    roots = [r for r in roots if r is not None]

    preferences = _send_button_preferences(env)
    for root in roots:
        buttons = env.query_all("button", root)
        for prefer in preferences:
            for button in buttons:
                if prefer(button):
                    return button

    for root in roots:
        plain = [
            b for b in env.query_all("button", root)
            if not SEND_BUTTON_SKIP.search(env.get_attribute(b, "aria-label") or "")
            and not env.get_attribute(b, "aria-haspopup")
        ]
        if plain:
            return plain[-1]
    return None


def _find_chat(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> Components:
    root = first_node(
        env.closest(node, '[class*="chat"]'),
        env.closest(node, '[data-testid*="chat"]'),
        env.parent(node),
        env.root(),
    )
    candidates = env.query_all(CHAT_INPUT_SELECTOR, root) + env.query_all(PROMPT_INPUT_SELECTOR)
    chat_input = next(
        (c for c in candidates if _is_interactive(env, c, nonce_attribute)),
        None,
    )
    return {
        "container": node,
        "input": chat_input,
        "send_button": find_send_button(env, chat_input, root),
    }


def _find_form(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> Components:
    if env.tag(node) == "FORM":
        container = node
    else:
        container = first_node(env.query("form", node), node)
    return {
        "container": container,
        "fields": env.query_all("input,textarea,select", node),
        "submit_button": env.query('button[type="submit"], button, input[type="submit"]', node),
    }


def _find_dropdown(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> Components:
    return {
        "trigger": first_node(
            env.query("[aria-haspopup], [aria-expanded]", node),
            env.query("button", node),
            node,
        ),
        "menu": env.query('[role="listbox"], [role="menu"], ul, [class*="menu"]', node),
    }


def _find_modal(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> Components:
    return {
        "container": node,
        "close_button": env.query('[class*="close"], button:first-of-type', node),
    }


def _find_login(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> Components:
    return {
        "container": node,
        "fields": env.query_all("input", node),
        "submit_button": env.query('button, input[type="submit"]', node),
    }


def _find_search(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> Components:
    return {
        "input": env.query('input[type="search"], input', node),
        "submit_button": env.query("button", node),
    }


def _find_cookie(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> Components:
    buttons = env.query_all('button, [role="button"], input[type="submit"]', node)
    accept = next(
        (
            b for b in buttons
            if any(word in (env.text(b) or env.value(b) or "").lower() for word in COOKIE_ACCEPT)
        ),
        None,
    )
    return {"container": node, "accept_button": accept}


def _find_feed(env: DocumentEnvironment, node: Node, nonce_attribute: str) -> Components:
    return {"container": node, "items": env.children(node)}


COMPONENT_FINDERS: dict[PatternName, Callable[[DocumentEnvironment, Node, str], Components]] = {
    PatternName.CHAT: _find_chat,
    PatternName.FORM: _find_form,
    PatternName.DROPDOWN: _find_dropdown,
    PatternName.MODAL: _find_modal,
    PatternName.LOGIN: _find_login,
    PatternName.SEARCH: _find_search,
    PatternName.COOKIE: _find_cookie,
    PatternName.FEED: _find_feed,
}


def find_components(
    env: DocumentEnvironment,
    node: Node,
    pattern: PatternName,
    nonce_attribute: str = NONCE_ATTRIBUTE,
) -> Components:
    """Locate the functional parts of a pattern instance; {} if unreadable."""
    try:
        return COMPONENT_FINDERS[pattern](env, node, nonce_attribute)
    except ENVIRONMENT_FAULTS as e:
        logger.debug("Component discovery for %s failed: %s", pattern.value, e)
        return {}


# =============================================================================
# BEHAVIORAL CHECKS
# =============================================================================

def _is_shown(env: DocumentEnvironment, node: Optional[Node]) -> bool:
    if node is None:
        return False
    style = env.style(node)
    return style.display != "none" and style.visibility != "hidden"


def _chat_behavior(env: DocumentEnvironment, components: Components) -> float:
    chat_input = components.get("input")
    container = components.get("container")
    has_input = chat_input is not None and env.tag(chat_input) in ("INPUT", "TEXTAREA")
    has_container = container is not None and len(env.children(container)) > 0
    if has_input and has_container:
        return 1.0
    return 0.5 if has_container else 0.0


def _dropdown_behavior(env: DocumentEnvironment, components: Components) -> float:
    trigger = components.get("trigger")
    if trigger is None:
        return 0.0
    return 1.0 if env.has_attribute(trigger, "aria-expanded") else 0.5


def _modal_behavior(env: DocumentEnvironment, components: Components) -> float:
    container = components.get("container")
    return 1.0 if container is not None and env.style(container).display != "none" else 0.0


def _login_behavior(env: DocumentEnvironment, components: Components) -> float:
    fields = components.get("fields") or []
    has_password = any((env.get_attribute(f, "type") or "").lower() == "password" for f in fields)
    return 1.0 if has_password else 0.0


def _cookie_behavior(env: DocumentEnvironment, components: Components) -> float:
    if not _is_shown(env, components.get("container")):
        return 0.0
    return 1.0 if components.get("accept_button") is not None else 0.5


BEHAVIOR_CHECKS: dict[PatternName, Callable[[DocumentEnvironment, Components], float]] = {
    PatternName.CHAT: _chat_behavior,
    PatternName.FORM: lambda env, c: 1.0 if c.get("fields") else 0.0,
    PatternName.DROPDOWN: _dropdown_behavior,
    PatternName.MODAL: _modal_behavior,
    PatternName.LOGIN: _login_behavior,
    PatternName.SEARCH: lambda env, c: 1.0 if c.get("input") is not None else 0.0,
    PatternName.COOKIE: _cookie_behavior,
    PatternName.FEED: lambda env, c: 1.0 if len(c.get("items") or []) > 2 else 0.0,
}


def check_behavioral(
    env: DocumentEnvironment,
    pattern: PatternName,
    components: Components,
) -> float:
    """Score the shape of the discovered parts in {0, 0.5, 1}."""
    try:
        return BEHAVIOR_CHECKS[pattern](env, components)
    except ENVIRONMENT_FAULTS as e:
        logger.debug("Behavioral check for %s unreadable: %s", pattern.value, e)
        return 0.0


_require_exhaustive(RULE_CHECKS, RuleName, "RULE_CHECKS")
_require_exhaustive(PATTERN_SPECS, PatternName, "PATTERN_SPECS")
_require_exhaustive(SEMANTIC_CHECKS, PatternName, "SEMANTIC_CHECKS")
_require_exhaustive(COMPONENT_FINDERS, PatternName, "COMPONENT_FINDERS")
_require_exhaustive(BEHAVIOR_CHECKS, PatternName, "BEHAVIOR_CHECKS")
