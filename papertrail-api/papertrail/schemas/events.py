from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from papertrail.schemas.session import FlowKind

CANCEL_COMMAND = "/cancel"
SKIP_COMMAND = "/skip"


class StartEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["start"] = "start"
    chat_id: int
    user_id: int
    flow_kind: FlowKind
    text: str = ""  # command arguments, e.g. the /invoice fast path


class MessageEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["message"] = "message"
    chat_id: int
    user_id: int
    text: str = ""
    attachment_id: Optional[str] = None
    flow_kind: Optional[FlowKind] = None  # set by the dispatcher once routed


class CallbackEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["callback"] = "callback"
    chat_id: int
    user_id: int
    flow_kind: FlowKind
    event_id: str
    action_code: str
    value: Optional[str] = None
    query_id: Optional[str] = None
    message_id: Optional[int] = None


InboundEvent = Annotated[Union[StartEvent, MessageEvent, CallbackEvent], Field(discriminator="kind")]


class CallbackAction(BaseModel):
    """Base for the per-flow tagged union of button actions."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    action_code: str
    value: Optional[str] = None


class CancelAction(CallbackAction):
    action_code: Literal["cancel"]
    value: None = None
