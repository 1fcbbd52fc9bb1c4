"""
Phrasal Scorer for PatternScope.

Scores a node's text surface against per-pattern phrase lexicons.

Text surface (all lower-cased):
    - visible text of the node (first 1000 chars)
    - the node's own placeholder and aria-label
    - button texts inside the node
    - placeholder / aria-label / name of every input inside the node
    - text of <label for=...> elements pointing at those inputs

Score composition:
    strong phrase anywhere in the corpus       +0.35
    medium phrase anywhere in the corpus       +0.15
    placeholder phrase in a placeholder/label  +0.25
    button phrase in a button text             +0.20
    negative phrase anywhere in the corpus     -0.25
    final score clamped to [0, 1]

This is substring matching, not tokenization. "dm" matches inside
"admin"; that imprecision is accepted. Every match is returned with the
score so the number can be explained line by line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..domain import PatternName
from ..environment import ENVIRONMENT_FAULTS, DocumentEnvironment, Node
from ..evidence import PHRASE_WEIGHTS, MatchStrength, PhrasalMatch


logger = logging.getLogger(__name__)


MAX_INNER_TEXT = 1000

BUTTON_SELECTOR = 'button, [role="button"], input[type="submit"]'
INPUT_SELECTOR = "input, textarea"


# =============================================================================
# LEXICONS
# =============================================================================

@dataclass(frozen=True)
class PhraseLexicon:
    """Phrase lists for one pattern, by match strength."""
    strong: tuple[str, ...] = ()
    medium: tuple[str, ...] = ()
    placeholders: tuple[str, ...] = ()
    buttons: tuple[str, ...] = ()
    negative: tuple[str, ...] = ()


LEXICONS: dict[PatternName, PhraseLexicon] = {
    PatternName.CHAT: PhraseLexicon(
        strong=("send message", "send a message", "type a message", "write a message", "reply"),
        medium=("chat", "message", "conversation", "dm", "direct message"),
        placeholders=("type here", "write something", "enter message", "say something"),
        buttons=("send", "reply", "post"),
        negative=("email", "subscribe", "newsletter", "search"),
    ),
    PatternName.FORM: PhraseLexicon(
        strong=("submit", "sign up", "register", "create account", "subscribe"),
        medium=("email", "password", "username", "name", "phone", "address"),
        buttons=("submit", "send", "continue", "next", "save"),
        negative=("search", "filter"),
    ),
    PatternName.LOGIN: PhraseLexicon(
        strong=("sign in", "log in", "login", "forgot password", "remember me"),
        medium=("username", "email", "password"),
        buttons=("sign in", "log in", "login"),
        negative=("create account", "sign up", "register"),
    ),
    PatternName.SEARCH: PhraseLexicon(
        strong=("search",),
        medium=("find", "look up", "filter"),
        placeholders=("search", "search...", "find"),
        buttons=("search", "find", "go"),
        negative=("message", "chat", "password"),
    ),
    PatternName.DROPDOWN: PhraseLexicon(
        strong=("select", "choose", "pick one"),
        medium=("option", "select an option"),
    ),
    PatternName.MODAL: PhraseLexicon(
        strong=("close", "dismiss"),
        medium=("cancel", "confirm", "ok", "done"),
        buttons=("close", "cancel", "ok", "confirm", "done", "×"),
    ),
    PatternName.COOKIE: PhraseLexicon(
        strong=("accept cookies", "cookie policy", "we use cookies", "cookie consent"),
        medium=("privacy", "gdpr", "consent", "preferences"),
        buttons=("accept", "accept all", "reject", "manage"),
    ),
    PatternName.FEED: PhraseLexicon(
        strong=("load more", "show more"),
        medium=("posts", "feed", "timeline", "updates"),
    ),
}


# =============================================================================
# TEXT SURFACE
# =============================================================================

@dataclass(frozen=True)
class InputText:
    placeholder: str = ""
    aria_label: str = ""
    name: str = ""
    type: str = ""


@dataclass
class TextSurface:
    """Everything a human reads on or around a candidate node."""
    inner_text: str = ""
    placeholder: str = ""
    aria_label: str = ""
    buttons: list[str] = field(default_factory=list)
    inputs: list[InputText] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)

    @property
    def corpus(self) -> str:
        return " ".join([
            self.inner_text,
            self.placeholder,
            self.aria_label,
            *self.buttons,
            *self.labels,
            *(f"{i.placeholder} {i.aria_label} {i.name}" for i in self.inputs),
        ])

    @property
    def placeholder_fields(self) -> list[str]:
        return [self.placeholder, *(i.placeholder for i in self.inputs), *self.labels]


@dataclass(frozen=True)
class PhrasalScore:
    score: float
    matches: tuple[PhrasalMatch, ...] = ()


def _lower_attr(env: DocumentEnvironment, node: Node, name: str) -> str:
    return (env.get_attribute(node, name) or "").lower()


def extract_text_surface(env: DocumentEnvironment, node: Node) -> TextSurface:
    """Collect the text surface of node and its descendants."""
    surface = TextSurface(
        inner_text=env.text(node).lower()[:MAX_INNER_TEXT],
        placeholder=_lower_attr(env, node, "placeholder"),
        aria_label=_lower_attr(env, node, "aria-label"),
    )

    for button in env.query_all(BUTTON_SELECTOR, node):
        surface.buttons.append((env.text(button) or env.value(button) or "").lower())

    labels_by_target: Optional[dict[str, list[str]]] = None
    for field_node in env.query_all(INPUT_SELECTOR, node):
        surface.inputs.append(InputText(
            placeholder=_lower_attr(env, field_node, "placeholder"),
            aria_label=_lower_attr(env, field_node, "aria-label"),
            name=_lower_attr(env, field_node, "name"),
            type=_lower_attr(env, field_node, "type"),
        ))
        field_id = env.get_attribute(field_node, "id")
        if not field_id:
            continue
        if labels_by_target is None:
            labels_by_target = {}
            for label in env.query_all("label[for]"):
                target = env.get_attribute(label, "for") or ""
                labels_by_target.setdefault(target, []).append(env.text(label).lower())
        surface.labels.extend(labels_by_target.get(field_id, [])[:1])

    return surface


# =============================================================================
# SCORER
# =============================================================================

class PhrasalScorer:
    """Scores nodes against the pattern lexicons."""

    def __init__(
        self,
        env: DocumentEnvironment,
        lexicons: Optional[dict[PatternName, PhraseLexicon]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.env = env
        self.lexicons = lexicons if lexicons is not None else LEXICONS
        self.logger = logger or logging.getLogger(__name__)

    def score(self, node: Node, pattern: PatternName) -> PhrasalScore:
        lexicon = self.lexicons.get(pattern)
        if lexicon is None:
            return PhrasalScore(0.0)

        try:
            surface = extract_text_surface(self.env, node)
        except ENVIRONMENT_FAULTS as e:
            self.logger.debug("Text surface unavailable: %s", e)
            return PhrasalScore(0.0)

        return score_surface(surface, lexicon)


def score_surface(surface: TextSurface, lexicon: PhraseLexicon) -> PhrasalScore:
    """Apply one lexicon to an extracted surface."""
    corpus = surface.corpus
    placeholders = surface.placeholder_fields
    matches: list[PhrasalMatch] = []

    for phrase in lexicon.strong:
        if phrase in corpus:
            matches.append(PhrasalMatch(phrase, MatchStrength.STRONG))
    for phrase in lexicon.medium:
        if phrase in corpus:
            matches.append(PhrasalMatch(phrase, MatchStrength.MEDIUM))
    for phrase in lexicon.placeholders:
        if any(phrase in text for text in placeholders):
            matches.append(PhrasalMatch(phrase, MatchStrength.PLACEHOLDER))
    for phrase in lexicon.buttons:
        if any(phrase in text for text in surface.buttons):
            matches.append(PhrasalMatch(phrase, MatchStrength.BUTTON))
    for phrase in lexicon.negative:
        if phrase in corpus:
            matches.append(PhrasalMatch(phrase, MatchStrength.NEGATIVE))

    raw = sum(PHRASE_WEIGHTS[m.strength] for m in matches)
    return PhrasalScore(score=max(0.0, min(1.0, raw)), matches=tuple(matches))
