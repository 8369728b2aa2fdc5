"""Table-driven step machine shared by every flow.

A flow is data: an ordered list of steps, the edges between them and the
tagged union of button actions it understands. advance() is pure; it decides
what an inbound event does to a session without touching storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from papertrail.schemas.events import CANCEL_COMMAND, CallbackAction, CallbackEvent, MessageEvent
from papertrail.schemas.session import FINALIZING_STEP, FlowKind, SessionStatus
from papertrail.services.errors import InvalidTransitionError, ValidationError
from papertrail.services.result import Result

# Edge target meaning "this step may complete the flow".
END = "<end>"

WRONG_EVENT_KIND = "wrong_event_kind"
INVALID_ACTION = "invalid_action"
UNEXPECTED_ACTION = "unexpected_action"
VALIDATION_ERROR = "validation_error"


@dataclass(frozen=True)
class StepUpdate:
    """What a step handler decided: fields to write and where to go."""

    fields: dict[str, Any] = field(default_factory=dict)
    next_step: Optional[str] = None
    complete: bool = False


def goto(step: str, **fields: Any) -> StepUpdate:
    return StepUpdate(fields=fields, next_step=step)


def finish(**fields: Any) -> StepUpdate:
    return StepUpdate(fields=fields, complete=True)


MessageHandler = Callable[[MessageEvent, dict[str, Any]], StepUpdate]
ActionHandler = Callable[[Any, dict[str, Any]], StepUpdate]


@dataclass(frozen=True)
class Button:
    label: str
    action_code: str
    value: Optional[str] = None


@dataclass
class StepSpec:
    name: str
    prompt: Union[str, Callable[[dict[str, Any]], str]]
    owns: frozenset[str] = frozenset()
    on_message: Optional[MessageHandler] = None
    on_action: dict[str, ActionHandler] = field(default_factory=dict)
    buttons: tuple[tuple[Button, ...], ...] = ()

    @property
    def accepts_messages(self) -> bool:
        return self.on_message is not None

    def render_prompt(self, fields: dict[str, Any]) -> str:
        if callable(self.prompt):
            return self.prompt(fields)
        return self.prompt


@dataclass(frozen=True)
class Transition:
    updated_fields: dict[str, Any]
    next_step: Optional[str]
    terminal: Optional[SessionStatus] = None


@dataclass
class FlowDefinition:
    kind: FlowKind
    steps: list[StepSpec]
    edges: dict[str, frozenset[str]]
    actions: TypeAdapter
    quota_gated: bool = False
    starter: Optional[Callable[[str], StepUpdate]] = None

    def __post_init__(self):
        self.order = [s.name for s in self.steps]
        self._steps = {s.name: s for s in self.steps}
        if FINALIZING_STEP in self._steps:
            raise ValueError(f"'{FINALIZING_STEP}' is reserved")
        for source, targets in self.edges.items():
            for target in targets:
                if target == END:
                    continue
                if target not in self._steps:
                    raise ValueError(f"{self.kind.value}: edge to unknown step '{target}'")
                # forward-only graph, so no step can be revisited
                if self.order.index(target) <= self.order.index(source):
                    raise ValueError(f"{self.kind.value}: edge {source} -> {target} goes backwards")

    @property
    def initial_step(self) -> str:
        return self.order[0]

    def has_step(self, name: str) -> bool:
        return name in self._steps

    def step(self, name: str) -> StepSpec:
        return self._steps[name]

    def position(self, name: str) -> int:
        if name == FINALIZING_STEP:
            return len(self.order)
        return self.order.index(name)

    def start(self, text: str = "") -> StepUpdate:
        """Initial step and prefilled fields. May raise ValidationError."""
        update = self.starter(text) if self.starter else goto(self.initial_step)
        target = update.next_step
        if target is None or target not in self._steps:
            raise InvalidTransitionError("<start>", target, "start must land on a step")
        owned = set()
        for name in self.order[: self.order.index(target)]:
            owned |= self._steps[name].owns
        stray = set(update.fields) - owned
        if stray:
            raise InvalidTransitionError("<start>", target, f"prefills unowned fields {sorted(stray)}")
        return update

    def check_update(self, from_step: str, update: StepUpdate) -> None:
        spec = self._steps[from_step]
        stray = set(update.fields) - spec.owns
        if stray:
            raise InvalidTransitionError(from_step, update.next_step, f"writes unowned fields {sorted(stray)}")
        allowed = self.edges.get(from_step, frozenset())
        if update.complete:
            if update.next_step is not None or END not in allowed:
                raise InvalidTransitionError(from_step, END, "step cannot complete the flow")
            return
        if update.next_step not in allowed:
            raise InvalidTransitionError(from_step, update.next_step)


def is_cancel(event) -> bool:
    if isinstance(event, CallbackEvent):
        return event.action_code == "cancel"
    if isinstance(event, MessageEvent):
        return event.text.strip().lower() == CANCEL_COMMAND
    return False


def advance(flow: FlowDefinition, current_step: str, fields: dict[str, Any], event) -> Result[Transition]:
    """Decide what event does at current_step.

    Rejections come back as failed results with a user-facing reason; a flow
    definition that breaks its own graph raises InvalidTransitionError.
    """
    if not flow.has_step(current_step):
        raise InvalidTransitionError(current_step, None, f"not a step of {flow.kind.value}")

    if is_cancel(event):
        return Result.success(Transition(updated_fields={}, next_step=None, terminal=SessionStatus.CANCELLED))

    step = flow.step(current_step)
    snapshot = dict(fields)

    if isinstance(event, CallbackEvent):
        try:
            action: CallbackAction = flow.actions.validate_python(
                {"action_code": event.action_code, "value": event.value}
            )
        except PydanticValidationError:
            return Result.failure("That option is not available.", INVALID_ACTION)
        handler = step.on_action.get(action.action_code)
        if handler is None:
            return Result.failure("That option belongs to a different step.", UNEXPECTED_ACTION)
        call = (handler, action)
    elif isinstance(event, MessageEvent):
        if step.on_message is None:
            return Result.failure("Please choose one of the options.", WRONG_EVENT_KIND)
        call = (step.on_message, event)
    else:
        return Result.failure("Unexpected input at this step.", WRONG_EVENT_KIND)

    handler, payload = call
    try:
        update = handler(payload, snapshot)
    except ValidationError as e:
        return Result.failure(e.message, e.code)

    flow.check_update(current_step, update)
    if update.complete:
        return Result.success(
            Transition(updated_fields=dict(update.fields), next_step=None, terminal=SessionStatus.COMPLETED)
        )
    return Result.success(Transition(updated_fields=dict(update.fields), next_step=update.next_step))
