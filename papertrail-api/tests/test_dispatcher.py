import pytest

from papertrail.schemas.events import CallbackEvent, MessageEvent, StartEvent
from papertrail.schemas.session import FINALIZING_STEP, FlowKind, SessionMutation
from papertrail.services.flow_orchestrator import Outcome

CHAT, USER = 10, 20


def say(text, attachment_id=None):
    return MessageEvent(chat_id=CHAT, user_id=USER, text=text, attachment_id=attachment_id)


class TestDispatch:
    def test_start_goes_to_command_flow(self, engine, repository):
        outcome = engine.dispatcher.dispatch(StartEvent(chat_id=CHAT, user_id=USER, flow_kind=FlowKind.ONBOARDING))
        assert outcome == Outcome.STARTED
        assert repository.get_active(CHAT, USER, FlowKind.ONBOARDING).current_step == "language"

    def test_callback_goes_to_named_flow(self, engine, repository):
        repository.create(CHAT, USER, FlowKind.DOCUMENT, "select_type")
        event = CallbackEvent(
            chat_id=CHAT,
            user_id=USER,
            flow_kind=FlowKind.DOCUMENT,
            event_id="900",
            action_code="select_type",
            value="invoice",
        )
        assert engine.dispatcher.dispatch(event) == Outcome.ADVANCED
        assert repository.get_active(CHAT, USER, FlowKind.DOCUMENT).current_step == "awaiting_details"

    def test_message_without_live_session_is_ignored(self, engine, outbound):
        assert engine.dispatcher.dispatch(say("hello")) is None
        assert outbound.calls == []

    def test_message_routed_to_flow_expecting_text(self, engine, repository):
        repository.create(CHAT, USER, FlowKind.REPORT, "type")  # buttons only
        repository.create(CHAT, USER, FlowKind.DOCUMENT, "awaiting_details", {"doc_type": "invoice"})

        assert engine.dispatcher.dispatch(say("Acme, 100, Consulting")) == Outcome.ADVANCED
        assert repository.get_active(CHAT, USER, FlowKind.DOCUMENT).current_step == "awaiting_payment"
        assert repository.get_active(CHAT, USER, FlowKind.REPORT).version == 0

    def test_most_recent_session_wins(self, engine, repository, clock):
        repository.create(CHAT, USER, FlowKind.DOCUMENT, "awaiting_details", {"doc_type": "invoice"})
        clock.advance(seconds=10)
        repository.create(CHAT, USER, FlowKind.ONBOARDING, "business_name", {"language": "en"})

        assert engine.dispatcher.dispatch(say("Dana Studio")) == Outcome.ADVANCED
        assert repository.get_active(CHAT, USER, FlowKind.ONBOARDING).current_step == "owner_details"
        assert repository.get_active(CHAT, USER, FlowKind.DOCUMENT).current_step == "awaiting_details"

    def test_cancel_message_reaches_button_step(self, engine, repository, outbound):
        session = repository.create(CHAT, USER, FlowKind.REPORT, "date")
        assert engine.dispatcher.dispatch(say("/cancel")) == Outcome.CANCELLED
        assert repository.get(session.session_id) is None

    def test_finalizing_session_is_skipped(self, engine, repository):
        session = repository.create(CHAT, USER, FlowKind.ONBOARDING, "counter")
        repository.update(session.session_id, "counter", SessionMutation(step=FINALIZING_STEP))
        assert engine.dispatcher.dispatch(say("5")) is None

    def test_unknown_event_type(self, engine):
        with pytest.raises(TypeError):
            engine.dispatcher.dispatch(object())
