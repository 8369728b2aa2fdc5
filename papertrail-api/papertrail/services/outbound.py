from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from papertrail.logging_config import get_logger
from papertrail.schemas.events import CallbackEvent
from papertrail.schemas.session import FlowKind
from papertrail.services import callback_codec
from papertrail.services.completions import GeneratedArtifact
from papertrail.services.errors import GenerationFailure
from papertrail.services.flows import FLOWS
from papertrail.services.step_machine import FlowDefinition
from papertrail.services.telegram_service import TelegramService

logger = get_logger("outbound")

FLOW_TITLES = {
    FlowKind.DOCUMENT: "document",
    FlowKind.REPORT: "report",
    FlowKind.ONBOARDING: "onboarding",
}
RESTART_COMMANDS = {
    FlowKind.DOCUMENT: "/invoice",
    FlowKind.REPORT: "/report",
    FlowKind.ONBOARDING: "/onboard",
}


class OutboundPort(ABC):
    """Everything a flow says back to the user."""

    @abstractmethod
    def send_prompt(self, chat_id: int, flow_kind: FlowKind, step: str, fields: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def send_rejection(self, chat_id: int, flow_kind: FlowKind, reason: str) -> None:
        pass

    @abstractmethod
    def send_expired(self, chat_id: int, flow_kind: FlowKind) -> None:
        pass

    @abstractmethod
    def send_completion_artifact(self, chat_id: int, flow_kind: FlowKind, artifact: GeneratedArtifact) -> None:
        pass

    @abstractmethod
    def send_failure(self, chat_id: int, flow_kind: FlowKind) -> None:
        pass

    @abstractmethod
    def send_cancelled(self, chat_id: int, flow_kind: FlowKind) -> None:
        pass

    @abstractmethod
    def send_rate_limited(self, chat_id: int, flow_kind: FlowKind, reset_at: Optional[datetime]) -> None:
        pass

    @abstractmethod
    def acknowledge_callback(self, event: CallbackEvent) -> None:
        pass


def build_keyboard(flow: FlowDefinition, step: str) -> Optional[dict]:
    rows = flow.step(step).buttons
    if not rows:
        return None
    return {
        "inline_keyboard": [
            [
                {"text": b.label, "callback_data": callback_codec.encode(flow.kind, b.action_code, b.value)}
                for b in row
            ]
            for row in rows
        ]
    }


class TelegramOutbound(OutboundPort):
    def __init__(self, telegram: TelegramService, flows: Optional[dict[FlowKind, FlowDefinition]] = None):
        self.telegram = telegram
        self.flows = flows or FLOWS

    def send_prompt(self, chat_id, flow_kind, step, fields) -> None:
        flow = self.flows[FlowKind(flow_kind)]
        spec = flow.step(step)
        self.telegram.send_message(chat_id, spec.render_prompt(fields), reply_markup=build_keyboard(flow, step))

    def send_rejection(self, chat_id, flow_kind, reason) -> None:
        self.telegram.send_message(chat_id, f"⚠️ {reason}")

    def send_expired(self, chat_id, flow_kind) -> None:
        kind = FlowKind(flow_kind)
        self.telegram.send_message(
            chat_id,
            f"This {FLOW_TITLES[kind]} session has expired. Send {RESTART_COMMANDS[kind]} to start again.",
        )

    def send_completion_artifact(self, chat_id, flow_kind, artifact) -> None:
        result = self.telegram.send_document(
            chat_id, artifact.filename, artifact.content, caption=artifact.caption, mime_type=artifact.mime_type
        )
        if not result.get("ok"):
            raise GenerationFailure(f"artifact delivery failed: {result.get('description') or result.get('error')}")

    def send_failure(self, chat_id, flow_kind) -> None:
        kind = FlowKind(flow_kind)
        self.telegram.send_message(
            chat_id,
            f"❌ Something went wrong creating your {FLOW_TITLES[kind]}. "
            f"Nothing was saved; send {RESTART_COMMANDS[kind]} to try again.",
        )

    def send_cancelled(self, chat_id, flow_kind) -> None:
        self.telegram.send_message(chat_id, f"Cancelled. Send {RESTART_COMMANDS[FlowKind(flow_kind)]} to start over.")

    def send_rate_limited(self, chat_id, flow_kind, reset_at) -> None:
        when = reset_at.strftime("%Y-%m-%d %H:%M %Z") if reset_at else "tomorrow"
        self.telegram.send_message(chat_id, f"Daily limit reached. You can create more from {when}.")

    def acknowledge_callback(self, event) -> None:
        if not event.query_id:
            return
        self.telegram.answer_callback_query(event.query_id)
