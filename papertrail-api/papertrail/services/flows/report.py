"""Revenue / expense report wizard.

type -> date -> format, with `custom` dates detouring through
custom_date_start -> custom_date_end. Completing the flow is quota gated.
"""

from datetime import date, timedelta
from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from papertrail.schemas.events import CancelAction, CallbackAction
from papertrail.schemas.session import FlowKind
from papertrail.services.errors import ValidationError
from papertrail.services.flows.common import CANCEL_BUTTON, parse_iso_date
from papertrail.services.step_machine import END, Button, FlowDefinition, StepSpec, finish, goto

ReportType = Literal["revenue", "expenses"]
DatePreset = Literal["this_month", "last_month", "ytd", "this_year", "custom"]
ReportFormat = Literal["pdf", "excel", "csv"]


class SelectReportType(CallbackAction):
    action_code: Literal["select_type"]
    value: ReportType


class SelectDate(CallbackAction):
    action_code: Literal["select_date"]
    value: DatePreset


class SelectFormat(CallbackAction):
    action_code: Literal["select_format"]
    value: ReportFormat


ReportAction = Annotated[
    Union[SelectReportType, SelectDate, SelectFormat, CancelAction],
    Field(discriminator="action_code"),
]


def resolve_date_range(fields: dict, today: date) -> tuple[date, date]:
    """Inclusive (start, end) for the chosen preset or custom dates."""
    preset = fields.get("date_preset")
    if preset == "this_month":
        return today.replace(day=1), today
    if preset == "last_month":
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end
    if preset == "ytd":
        return today.replace(month=1, day=1), today
    if preset == "this_year":
        return today.replace(month=1, day=1), today.replace(month=12, day=31)
    if preset == "custom":
        return date.fromisoformat(fields["start_date"]), date.fromisoformat(fields["end_date"])
    raise ValueError(f"unknown date preset: {preset!r}")


def _on_type(action: SelectReportType, fields):
    return goto("date", report_type=action.value)


def _on_date(action: SelectDate, fields):
    if action.value == "custom":
        return goto("custom_date_start", date_preset="custom")
    return goto("format", date_preset=action.value)


def _on_start_date(event, fields):
    start = parse_iso_date(event.text)
    return goto("custom_date_end", start_date=start.isoformat())


def _on_end_date(event, fields):
    end = parse_iso_date(event.text)
    if end < date.fromisoformat(fields["start_date"]):
        raise ValidationError(f"End date must not be before {fields['start_date']}.")
    return goto("format", end_date=end.isoformat())


def _on_format(action: SelectFormat, fields):
    return finish(format=action.value)


REPORT_FLOW = FlowDefinition(
    kind=FlowKind.REPORT,
    steps=[
        StepSpec(
            name="type",
            prompt="Which report?",
            owns=frozenset({"report_type"}),
            on_action={"select_type": _on_type},
            buttons=(
                (Button("Revenue", "select_type", "revenue"), Button("Expenses", "select_type", "expenses")),
                (CANCEL_BUTTON,),
            ),
        ),
        StepSpec(
            name="date",
            prompt="For which period?",
            owns=frozenset({"date_preset"}),
            on_action={"select_date": _on_date},
            buttons=(
                (Button("This month", "select_date", "this_month"), Button("Last month", "select_date", "last_month")),
                (Button("Year to date", "select_date", "ytd"), Button("This year", "select_date", "this_year")),
                (Button("Custom range", "select_date", "custom"),),
                (CANCEL_BUTTON,),
            ),
        ),
        StepSpec(
            name="custom_date_start",
            prompt="Start date (YYYY-MM-DD)?",
            owns=frozenset({"start_date"}),
            on_message=_on_start_date,
            buttons=((CANCEL_BUTTON,),),
        ),
        StepSpec(
            name="custom_date_end",
            prompt=lambda fields: f"End date (YYYY-MM-DD, from {fields.get('start_date')})?",
            owns=frozenset({"end_date"}),
            on_message=_on_end_date,
            buttons=((CANCEL_BUTTON,),),
        ),
        StepSpec(
            name="format",
            prompt="Which format?",
            owns=frozenset({"format"}),
            on_action={"select_format": _on_format},
            buttons=(
                (
                    Button("PDF", "select_format", "pdf"),
                    Button("Excel", "select_format", "excel"),
                    Button("CSV", "select_format", "csv"),
                ),
                (CANCEL_BUTTON,),
            ),
        ),
    ],
    edges={
        "type": frozenset({"date"}),
        "date": frozenset({"format", "custom_date_start"}),
        "custom_date_start": frozenset({"custom_date_end"}),
        "custom_date_end": frozenset({"format"}),
        "format": frozenset({END}),
    },
    actions=TypeAdapter(ReportAction),
    quota_gated=True,
)
