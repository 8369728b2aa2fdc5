"""Tenant onboarding wizard.

language -> business_name -> owner_details -> address -> tax_status -> logo
-> sheet -> counter [-> counter_value]. The logo step takes an image or /skip.
"""

import re
from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from papertrail.schemas.events import SKIP_COMMAND, CancelAction, CallbackAction
from papertrail.schemas.session import FlowKind
from papertrail.services.errors import ValidationError
from papertrail.services.flows.common import (
    CANCEL_BUTTON,
    length_between,
    parse_counter,
    parse_tax_id,
    split_csv,
)
from papertrail.services.step_machine import END, Button, FlowDefinition, StepSpec, finish, goto

_PHONE_RE = re.compile(r"^\+?[\d\s\-()]{9,15}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SHEET_URL_RE = re.compile(r"/spreadsheets/d/([A-Za-z0-9_-]+)")
_SHEET_ID_RE = re.compile(r"^[A-Za-z0-9_-]{20,}$")

Language = Literal["en", "he"]
TaxStatus = Literal["exempt", "licensed"]


class SelectLanguage(CallbackAction):
    action_code: Literal["select_language"]
    value: Language


class SelectTaxStatus(CallbackAction):
    action_code: Literal["select_tax_status"]
    value: TaxStatus


class SelectCounter(CallbackAction):
    action_code: Literal["select_counter"]
    value: Literal["start_from_one", "custom"]


OnboardingAction = Annotated[
    Union[SelectLanguage, SelectTaxStatus, SelectCounter, CancelAction],
    Field(discriminator="action_code"),
]


def _is_skip(text: str) -> bool:
    return text.strip().lower() == SKIP_COMMAND


def parse_owner_details(text: str) -> dict:
    parts = split_csv(text)
    if len(parts) != 4:
        raise ValidationError("Please send: full name, ID number, phone, email")
    name, tax_id, phone, email = parts
    length_between(name, 2, 100, "Name")
    parse_tax_id(tax_id)
    if not _PHONE_RE.match(phone):
        raise ValidationError(f"'{phone}' is not a phone number.")
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"'{email}' is not an email address.")
    return {"owner_name": name, "owner_tax_id": tax_id, "owner_phone": phone, "owner_email": email}


def extract_sheet_id(text: str):
    raw = text.strip()
    match = _SHEET_URL_RE.search(raw)
    if match:
        return match.group(1)
    if _SHEET_ID_RE.match(raw):
        return raw
    raise ValidationError("Send the Google Sheets link or its ID.")


def _on_language(action: SelectLanguage, fields):
    return goto("business_name", language=action.value)


def _on_business_name(event, fields):
    return goto("owner_details", business_name=length_between(event.text, 2, 100, "Business name"))


def _on_owner_details(event, fields):
    return goto("address", **parse_owner_details(event.text))


def _on_address(event, fields):
    return goto("tax_status", address=length_between(event.text, 5, 200, "Address"))


def _on_tax_status(action: SelectTaxStatus, fields):
    return goto("logo", tax_status=action.value)


def _on_logo(event, fields):
    if event.attachment_id:
        return goto("sheet", logo_file_id=event.attachment_id)
    if _is_skip(event.text):
        return goto("sheet", logo_file_id=None)
    raise ValidationError("Send your logo as an image, or /skip.")


def _on_sheet(event, fields):
    return goto("counter", sheet_id=extract_sheet_id(event.text))


def _on_counter_choice(action: SelectCounter, fields):
    if action.value == "custom":
        return goto("counter_value")
    return finish(counter_start=1)


def _on_counter_message(event, fields):
    if _is_skip(event.text):
        return finish(counter_start=1)
    return finish(counter_start=parse_counter(event.text))


def _on_counter_value(event, fields):
    return finish(counter_start=parse_counter(event.text))


ONBOARDING_FLOW = FlowDefinition(
    kind=FlowKind.ONBOARDING,
    steps=[
        StepSpec(
            name="language",
            prompt="Choose your language / בחר שפה",
            owns=frozenset({"language"}),
            on_action={"select_language": _on_language},
            buttons=(
                (Button("English", "select_language", "en"), Button("עברית", "select_language", "he")),
                (CANCEL_BUTTON,),
            ),
        ),
        StepSpec(
            name="business_name",
            prompt="What is the business name?",
            owns=frozenset({"business_name"}),
            on_message=_on_business_name,
        ),
        StepSpec(
            name="owner_details",
            prompt="Owner details: full name, ID number, phone, email",
            owns=frozenset({"owner_name", "owner_tax_id", "owner_phone", "owner_email"}),
            on_message=_on_owner_details,
        ),
        StepSpec(
            name="address",
            prompt="Business address?",
            owns=frozenset({"address"}),
            on_message=_on_address,
        ),
        StepSpec(
            name="tax_status",
            prompt="Tax status?",
            owns=frozenset({"tax_status"}),
            on_action={"select_tax_status": _on_tax_status},
            buttons=(
                (Button("Exempt dealer", "select_tax_status", "exempt"), Button("Licensed dealer", "select_tax_status", "licensed")),
                (CANCEL_BUTTON,),
            ),
        ),
        StepSpec(
            name="logo",
            prompt="Send your logo as an image, or /skip.",
            owns=frozenset({"logo_file_id"}),
            on_message=_on_logo,
        ),
        StepSpec(
            name="sheet",
            prompt="Share the Google Sheet for your records and send its link.",
            owns=frozenset({"sheet_id"}),
            on_message=_on_sheet,
        ),
        StepSpec(
            name="counter",
            prompt="Where should invoice numbering start? Send a number, or /skip to start from 1.",
            owns=frozenset({"counter_start"}),
            on_message=_on_counter_message,
            on_action={"select_counter": _on_counter_choice},
            buttons=(
                (Button("Start from 1", "select_counter", "start_from_one"), Button("Other number", "select_counter", "custom")),
                (CANCEL_BUTTON,),
            ),
        ),
        StepSpec(
            name="counter_value",
            prompt="Send the first invoice number.",
            owns=frozenset({"counter_start"}),
            on_message=_on_counter_value,
        ),
    ],
    edges={
        "language": frozenset({"business_name"}),
        "business_name": frozenset({"owner_details"}),
        "owner_details": frozenset({"address"}),
        "address": frozenset({"tax_status"}),
        "tax_status": frozenset({"logo"}),
        "logo": frozenset({"sheet"}),
        "sheet": frozenset({"counter"}),
        "counter": frozenset({"counter_value", END}),
        "counter_value": frozenset({END}),
    },
    actions=TypeAdapter(OnboardingAction),
)
