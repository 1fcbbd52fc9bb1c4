"""
Behavior Verifier for PatternScope.

Confirms a detection by performing an action against it and watching
the document honour the pattern's temporal invariants.

Each pattern defines named actions. An action has:
    preconditions   synchronous checks, evaluated before the action;
                    a failure is logged and recorded but does not stop it
    postconditions  checks with their own timeout, awaited in order

verify(action_name, action_fn):
    1. evaluate preconditions
    2. capture the state postconditions compare against
    3. run action_fn (sync or awaitable); if it raises, fail with an
       "execution" entry and leave the guarantee untouched
    4. await each postcondition until it holds or its timeout elapses
    5. passed only if every pre- and postcondition passed; success
       escalates the guarantee to VERIFIED, which never reverts

A postcondition wait settles exactly once, on whichever comes first:
the check holding now, on a frame-interval poll, on a document
mutation, or the timeout. Whatever lost is cancelled before returning.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from ..config import DEFAULT_SETTINGS, EngineSettings
from ..domain import ConfigurationError, DetectionResult, GuaranteeLevel, PatternName
from ..environment import ENVIRONMENT_FAULTS, DocumentEnvironment, Node


logger = logging.getLogger(__name__)


Components = dict[str, Any]


# =============================================================================
# BEHAVIOR SPECIFICATIONS
# =============================================================================

class CheckName(Enum):
    INPUT_HAS_VALUE = "input-has-value"
    HAS_FILLED_FIELDS = "has-filled-fields"
    MENU_VISIBLE = "menu-visible"
    MODAL_VISIBLE = "modal-visible"
    INPUT_CLEARED = "input-cleared"
    CHILDREN_ADDED = "children-added"
    CONTAINER_SCROLLED = "container-scrolled"
    INPUTS_CLEARED_OR_HIDDEN = "inputs-cleared-or-hidden"
    ARIA_EXPANDED_TOGGLED = "aria-expanded-toggled"
    MENU_VISIBILITY_CHANGED = "menu-visibility-changed"
    MENU_CLOSED = "menu-closed"
    TRIGGER_TEXT_CHANGED = "trigger-text-changed"
    MODAL_HIDDEN = "modal-hidden"


class Phase(Enum):
    PRE = "pre"
    EXEC = "exec"
    POST = "post"


@dataclass(frozen=True)
class ConditionSpec:
    check: CheckName
    description: str
    timeout_ms: float = 0


@dataclass(frozen=True)
class ActionSpec:
    preconditions: tuple[ConditionSpec, ...] = ()
    postconditions: tuple[ConditionSpec, ...] = ()


@dataclass(frozen=True)
class PatternBehaviorSpec:
    name: str
    actions: dict[str, ActionSpec]


BEHAVIOR_SPECS: dict[PatternName, PatternBehaviorSpec] = {
    PatternName.CHAT: PatternBehaviorSpec("ChatBox", {
        "send": ActionSpec(
            preconditions=(
                ConditionSpec(CheckName.INPUT_HAS_VALUE, "Input must contain text"),
            ),
            postconditions=(
                ConditionSpec(CheckName.INPUT_CLEARED, "Input should be cleared", 500),
                ConditionSpec(CheckName.CHILDREN_ADDED, "New message should appear in container", 3000),
                ConditionSpec(CheckName.CONTAINER_SCROLLED, "Container should scroll to show new message", 3500),
            ),
        ),
    }),
    PatternName.FORM: PatternBehaviorSpec("Form", {
        "submit": ActionSpec(
            preconditions=(
                ConditionSpec(CheckName.HAS_FILLED_FIELDS, "At least one field should have a value"),
            ),
            postconditions=(
                ConditionSpec(CheckName.INPUTS_CLEARED_OR_HIDDEN, "Form should clear or navigate away", 2000),
            ),
        ),
    }),
    PatternName.DROPDOWN: PatternBehaviorSpec("Dropdown", {
        "toggle": ActionSpec(
            postconditions=(
                ConditionSpec(CheckName.ARIA_EXPANDED_TOGGLED, "aria-expanded should toggle", 500),
                ConditionSpec(CheckName.MENU_VISIBILITY_CHANGED, "Menu should appear or disappear", 500),
            ),
        ),
        "select": ActionSpec(
            preconditions=(
                ConditionSpec(CheckName.MENU_VISIBLE, "Menu should be open"),
            ),
            postconditions=(
                ConditionSpec(CheckName.MENU_CLOSED, "Menu should close after selection", 500),
                ConditionSpec(CheckName.TRIGGER_TEXT_CHANGED, "Trigger text should update", 500),
            ),
        ),
    }),
    PatternName.MODAL: PatternBehaviorSpec("Modal", {
        "close": ActionSpec(
            preconditions=(
                ConditionSpec(CheckName.MODAL_VISIBLE, "Modal should be visible"),
            ),
            postconditions=(
                ConditionSpec(CheckName.MODAL_HIDDEN, "Modal should disappear", 1000),
            ),
        ),
    }),
}


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class CheckResult:
    check: str
    passed: bool
    description: str
    phase: Optional[Phase] = None


@dataclass
class VerifierTrace:
    """Everything observed while verifying one action."""
    action: str
    timestamp: float
    preconditions: list[CheckResult] = field(default_factory=list)
    postconditions: list[CheckResult] = field(default_factory=list)
    passed: bool = False


@dataclass(frozen=True)
class VerificationResult:
    passed: bool
    results: tuple[CheckResult, ...]
    guarantee: GuaranteeLevel

    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if not r.passed]


# =============================================================================
# STATE & CHECKS
# =============================================================================

@dataclass(frozen=True)
class CapturedState:
    """Pre-action readings postconditions compare against."""
    input_value: str = ""
    container_child_count: int = 0
    container_scroll_top: float = 0.0
    aria_expanded: Optional[str] = None
    menu_visible: bool = False
    trigger_text: str = ""
    field_values: tuple[Optional[str], ...] = ()


def _input_value(env: DocumentEnvironment, node: Optional[Node]) -> str:
    if node is None:
        return ""
    return env.value(node) or env.text(node).strip()


def _displayed(env: DocumentEnvironment, node: Node) -> bool:
    return env.style(node).display != "none"


def capture_state(env: DocumentEnvironment, components: Components) -> CapturedState:
    chat_input = components.get("input")
    container = components.get("container")
    trigger = components.get("trigger")
    menu = components.get("menu")
    fields = components.get("fields") or []

    def read(reader: Callable[[], Any], default: Any) -> Any:
        try:
            return reader()
        except ENVIRONMENT_FAULTS:
            return default

    return CapturedState(
        input_value=read(lambda: _input_value(env, chat_input), ""),
        container_child_count=read(
            lambda: len(env.children(container)) if container is not None else 0, 0
        ),
        container_scroll_top=read(
            lambda: env.scroll(container).top if container is not None else 0.0, 0.0
        ),
        aria_expanded=read(
            lambda: env.get_attribute(trigger, "aria-expanded") if trigger is not None else None, None
        ),
        menu_visible=read(lambda: menu is not None and _displayed(env, menu), False),
        trigger_text=read(lambda: env.text(trigger).strip() if trigger is not None else "", ""),
        field_values=tuple(read(lambda: env.value(f), None) for f in fields),
    )


ConditionCheck = Callable[[DocumentEnvironment, Components, CapturedState], bool]


def _menu_closed(env: DocumentEnvironment, c: Components, state: CapturedState) -> bool:
    menu = c.get("menu")
    if menu is None:
        return True
    try:
        return not _displayed(env, menu)
    except ENVIRONMENT_FAULTS:
        return True


def _modal_hidden(env: DocumentEnvironment, c: Components, state: CapturedState) -> bool:
    container = c.get("container")
    if container is None:
        return True
    try:
        return not _displayed(env, container)
    except ENVIRONMENT_FAULTS:
        return True


def _inputs_cleared_or_hidden(env: DocumentEnvironment, c: Components, state: CapturedState) -> bool:
    fields = c.get("fields")
    if fields is None:
        return False
    all_cleared = all(not (env.value(f) or "").strip() for f in fields)
    container = c.get("container")
    try:
        hidden = container is not None and not _displayed(env, container)
    except ENVIRONMENT_FAULTS:
        hidden = False
    return all_cleared or hidden


def _menu_visibility_changed(env: DocumentEnvironment, c: Components, state: CapturedState) -> bool:
    menu = c.get("menu")
    if menu is None:
        return False
    return _displayed(env, menu) != state.menu_visible


CONDITION_CHECKS: dict[CheckName, ConditionCheck] = {
    CheckName.INPUT_HAS_VALUE: lambda env, c, s: bool(_input_value(env, c.get("input"))),
    CheckName.HAS_FILLED_FIELDS: lambda env, c, s: any(
        (env.value(f) or "").strip() for f in c.get("fields") or []
    ),
    CheckName.MENU_VISIBLE: lambda env, c, s: c.get("menu") is not None and _displayed(env, c["menu"]),
    CheckName.MODAL_VISIBLE: lambda env, c, s: (
        c.get("container") is not None and _displayed(env, c["container"])
    ),
    CheckName.INPUT_CLEARED: lambda env, c, s: not _input_value(env, c.get("input")),
    CheckName.CHILDREN_ADDED: lambda env, c, s: (
        c.get("container") is not None
        and len(env.children(c["container"])) > s.container_child_count
    ),
    CheckName.CONTAINER_SCROLLED: lambda env, c, s: (
        c.get("container") is not None
        and env.scroll(c["container"]).top > s.container_scroll_top
    ),
    CheckName.INPUTS_CLEARED_OR_HIDDEN: _inputs_cleared_or_hidden,
    CheckName.ARIA_EXPANDED_TOGGLED: lambda env, c, s: (
        (env.get_attribute(c["trigger"], "aria-expanded") if c.get("trigger") is not None else None)
        != s.aria_expanded
    ),
    CheckName.MENU_VISIBILITY_CHANGED: _menu_visibility_changed,
    CheckName.MENU_CLOSED: _menu_closed,
    CheckName.TRIGGER_TEXT_CHANGED: lambda env, c, s: (
        (env.text(c["trigger"]).strip() if c.get("trigger") is not None else "")
        != s.trigger_text
    ),
    CheckName.MODAL_HIDDEN: _modal_hidden,
}

_missing = [name.value for name in CheckName if name not in CONDITION_CHECKS]
if _missing:
    raise ConfigurationError(f"CONDITION_CHECKS has no entry for: {_missing}")


def evaluate_check(
    env: DocumentEnvironment,
    check: CheckName,
    components: Components,
    state: CapturedState,
) -> bool:
    try:
        return bool(CONDITION_CHECKS[check](env, components, state))
    except ENVIRONMENT_FAULTS as e:
        logger.debug("Check %s unreadable: %s", check.value, e)
        return False


# =============================================================================
# FIRST-OF-N SETTLEMENT
# =============================================================================

async def wait_for_condition(
    env: DocumentEnvironment,
    predicate: Callable[[], bool],
    timeout_ms: float,
    frame_interval_s: float = DEFAULT_SETTINGS.frame_interval_s,
    observe: Optional[Node] = None,
) -> bool:
    """
    Resolve True as soon as predicate holds, False once timeout_ms elapses.

    The predicate is evaluated immediately, on every frame-interval
    poll, and on every mutation batch under observe (the document root
    by default). The single future is the only resolution point; the
    timer, the poll task and the subscription are released on exit.
    """
    loop = asyncio.get_running_loop()
    settled: asyncio.Future[bool] = loop.create_future()

    def settle(value: bool) -> None:
        if not settled.done():
            settled.set_result(value)

    def evaluate() -> None:
        if not settled.done() and predicate():
            settle(True)

    def on_timeout() -> None:
        evaluate()
        settle(False)

    evaluate()
    if settled.done():
        return settled.result()

    timer = loop.call_later(max(timeout_ms, 0) / 1000.0, on_timeout)
    unsubscribe = env.observe(observe if observe is not None else env.root(), lambda records: evaluate())

    async def poll() -> None:
        while not settled.done():
            await asyncio.sleep(frame_interval_s)
            evaluate()

    poller = loop.create_task(poll())
    try:
        return await settled
    finally:
        timer.cancel()
        poller.cancel()
        unsubscribe()


# =============================================================================
# VERIFIER
# =============================================================================

ActionFn = Callable[[], Union[Any, Awaitable[Any]]]


class BehaviorVerifier:
    """Verifies the actions of one bound pattern instance."""

    def __init__(
        self,
        env: DocumentEnvironment,
        pattern_name: Union[str, PatternName],
        components: Components,
        settings: EngineSettings = DEFAULT_SETTINGS,
        specs: Optional[dict[PatternName, PatternBehaviorSpec]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.env = env
        self.pattern_name = pattern_name
        self.components = components or {}
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)

        pattern = PatternName.parse(pattern_name)
        specs = BEHAVIOR_SPECS if specs is None else specs
        self.spec = specs.get(pattern) if pattern is not None else None

        self._traces: list[VerifierTrace] = []
        self._guarantee = GuaranteeLevel.STRUCTURAL

    @classmethod
    def for_detection(cls, env: DocumentEnvironment, result: DetectionResult, **kwargs: Any) -> BehaviorVerifier:
        return cls(env, result.pattern_name, result.components, **kwargs)

    @property
    def traces(self) -> list[VerifierTrace]:
        return list(self._traces)

    @property
    def guarantee(self) -> GuaranteeLevel:
        return self._guarantee

    def _failure(self, check: str, description: str) -> VerificationResult:
        self.logger.warning("[Verify] %s", description)
        return VerificationResult(
            passed=False,
            results=(CheckResult(check, False, description),),
            guarantee=self._guarantee,
        )

    async def verify(self, action_name: str, action_fn: ActionFn) -> VerificationResult:
        if self.spec is None:
            return self._failure("spec", f"No behaviors defined for pattern: {self.pattern_name}")
        action = self.spec.actions.get(action_name)
        if action is None:
            return self._failure("action", f"No behavior defined for action: {action_name}")

        results: list[CheckResult] = []
        trace = VerifierTrace(action=action_name, timestamp=time.time() * 1000.0)

        for pre in action.preconditions:
            passed = evaluate_check(self.env, pre.check, self.components, CapturedState())
            outcome = CheckResult(pre.check.value, passed, pre.description, Phase.PRE)
            trace.preconditions.append(outcome)
            results.append(outcome)
            if not passed:
                self.logger.warning("[Verify] Precondition failed: %s", pre.description)

        initial = capture_state(self.env, self.components)

        try:
            outcome = action_fn()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            results.append(CheckResult("execution", False, f"Action threw: {e}", Phase.EXEC))
            trace.passed = False
            self._traces.append(trace)
            self.logger.warning("[Verify] %s.%s raised: %s", self.spec.name, action_name, e)
            return VerificationResult(False, tuple(results), self._guarantee)

        for post in action.postconditions:
            passed = await wait_for_condition(
                self.env,
                lambda check=post.check: evaluate_check(self.env, check, self.components, initial),
                post.timeout_ms,
                self.settings.frame_interval_s,
            )
            outcome = CheckResult(post.check.value, passed, post.description, Phase.POST)
            trace.postconditions.append(outcome)
            results.append(outcome)
            if not passed:
                self.logger.warning("[Verify] Postcondition failed: %s", post.description)

        all_passed = all(r.passed for r in results)
        trace.passed = all_passed
        self._traces.append(trace)

        if all_passed:
            self._guarantee = GuaranteeLevel.VERIFIED
            self.logger.info("[Verify] %s.%s VERIFIED", self.spec.name, action_name)

        return VerificationResult(all_passed, tuple(results), self._guarantee)
