from typing import Annotated, Literal, Union

import pytest
from pydantic import Field, TypeAdapter

from papertrail.schemas.events import CallbackAction, CallbackEvent, CancelAction, MessageEvent
from papertrail.schemas.session import FlowKind, SessionStatus
from papertrail.services.errors import InvalidTransitionError
from papertrail.services.flows import FLOWS
from papertrail.services.flows.report import REPORT_FLOW
from papertrail.services.step_machine import (
    END,
    INVALID_ACTION,
    UNEXPECTED_ACTION,
    VALIDATION_ERROR,
    WRONG_EVENT_KIND,
    FlowDefinition,
    StepSpec,
    advance,
    finish,
    goto,
)


def callback(action_code, value=None, flow_kind=FlowKind.REPORT, event_id="e1"):
    return CallbackEvent(
        chat_id=1, user_id=2, flow_kind=flow_kind, event_id=event_id, action_code=action_code, value=value
    )


def message(text, attachment_id=None):
    return MessageEvent(chat_id=1, user_id=2, text=text, attachment_id=attachment_id)


class Pick(CallbackAction):
    action_code: Literal["pick"]
    value: Literal["a", "b"]


ToyAction = Annotated[Union[Pick, CancelAction], Field(discriminator="action_code")]


def toy_flow(first_handler, edges=None):
    return FlowDefinition(
        kind=FlowKind.DOCUMENT,
        steps=[
            StepSpec(name="first", prompt="first?", owns=frozenset({"choice"}), on_action={"pick": first_handler}),
            StepSpec(name="second", prompt="second?", owns=frozenset({"note"}), on_message=lambda e, f: finish(note=e.text)),
        ],
        edges=edges or {"first": frozenset({"second"}), "second": frozenset({END})},
        actions=TypeAdapter(ToyAction),
    )


class TestAdvanceAccepts:
    def test_callback_advances_and_writes_owned_field(self):
        result = advance(REPORT_FLOW, "type", {}, callback("select_type", "revenue"))
        assert result.ok
        assert result.value.next_step == "date"
        assert result.value.updated_fields == {"report_type": "revenue"}
        assert result.value.terminal is None

    def test_preset_date_skips_custom_steps(self):
        result = advance(REPORT_FLOW, "date", {"report_type": "revenue"}, callback("select_date", "last_month"))
        assert result.value.next_step == "format"

    def test_custom_date_detours(self):
        result = advance(REPORT_FLOW, "date", {}, callback("select_date", "custom"))
        assert result.value.next_step == "custom_date_start"

    def test_final_step_completes(self):
        result = advance(REPORT_FLOW, "format", {}, callback("select_format", "pdf"))
        assert result.value.terminal == SessionStatus.COMPLETED
        assert result.value.next_step is None
        assert result.value.updated_fields == {"format": "pdf"}

    @pytest.mark.parametrize("step", ["type", "date", "custom_date_start", "custom_date_end", "format"])
    def test_cancel_callback_from_any_step(self, step):
        result = advance(REPORT_FLOW, step, {"start_date": "2026-01-01"}, callback("cancel"))
        assert result.value.terminal == SessionStatus.CANCELLED
        assert result.value.updated_fields == {}

    def test_cancel_message_from_button_step(self):
        result = advance(REPORT_FLOW, "type", {}, message("/cancel"))
        assert result.value.terminal == SessionStatus.CANCELLED

    def test_does_not_mutate_input_fields(self):
        fields = {"report_type": "revenue"}
        advance(REPORT_FLOW, "date", fields, callback("select_date", "ytd"))
        assert fields == {"report_type": "revenue"}


class TestAdvanceRejects:
    def test_message_at_button_step(self):
        result = advance(REPORT_FLOW, "type", {}, message("revenue please"))
        assert not result.ok
        assert result.error_code == WRONG_EVENT_KIND

    def test_callback_at_message_step(self):
        result = advance(REPORT_FLOW, "custom_date_start", {}, callback("select_format", "pdf"))
        assert result.error_code == UNEXPECTED_ACTION

    def test_unknown_action_code_is_invalid(self):
        result = advance(REPORT_FLOW, "type", {}, callback("drop_tables", "x"))
        assert result.error_code == INVALID_ACTION

    def test_bad_value_for_known_action_is_invalid(self):
        result = advance(REPORT_FLOW, "type", {}, callback("select_type", "profit"))
        assert result.error_code == INVALID_ACTION

    def test_action_for_other_step_is_unexpected(self):
        result = advance(REPORT_FLOW, "type", {}, callback("select_format", "pdf"))
        assert result.error_code == UNEXPECTED_ACTION

    def test_payload_validation_error(self):
        result = advance(REPORT_FLOW, "custom_date_start", {}, message("yesterday"))
        assert result.error_code == VALIDATION_ERROR
        assert "YYYY-MM-DD" in result.error


class TestFlowDefinitionGuards:
    def test_writing_unowned_field_raises(self):
        flow = toy_flow(lambda action, fields: goto("second", choice=action.value, note="sneaky"))
        with pytest.raises(InvalidTransitionError):
            advance(flow, "first", {}, callback("pick", "a", flow_kind=FlowKind.DOCUMENT))

    def test_edge_not_in_graph_raises(self):
        flow = toy_flow(lambda action, fields: finish(choice=action.value))
        with pytest.raises(InvalidTransitionError):
            advance(flow, "first", {}, callback("pick", "a", flow_kind=FlowKind.DOCUMENT))

    def test_backward_edge_rejected_at_definition(self):
        with pytest.raises(ValueError):
            toy_flow(
                lambda action, fields: goto("second"),
                edges={"first": frozenset({"second"}), "second": frozenset({"first"})},
            )

    def test_unknown_current_step_raises(self):
        with pytest.raises(InvalidTransitionError):
            advance(REPORT_FLOW, "nowhere", {}, callback("select_type", "revenue"))

    def test_reserved_step_name_rejected(self):
        with pytest.raises(ValueError):
            FlowDefinition(
                kind=FlowKind.DOCUMENT,
                steps=[StepSpec(name="finalizing", prompt="x")],
                edges={},
                actions=TypeAdapter(ToyAction),
            )


class TestGraphOrder:
    @pytest.mark.parametrize("kind", list(FLOWS))
    def test_every_edge_moves_forward(self, kind):
        flow = FLOWS[kind]
        for source, targets in flow.edges.items():
            for target in targets - {END}:
                assert flow.position(target) > flow.position(source)

    @pytest.mark.parametrize("kind", list(FLOWS))
    def test_every_step_has_outgoing_edge(self, kind):
        flow = FLOWS[kind]
        assert set(flow.edges) == set(flow.order)
