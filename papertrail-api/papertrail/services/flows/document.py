"""Invoice / invoice-receipt wizard.

select_type -> awaiting_details -> awaiting_payment -> confirming -> done.
`/invoice name, amount, description, payment` skips straight to confirming.
"""

from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from papertrail.schemas.events import CancelAction, CallbackAction
from papertrail.schemas.session import FlowKind
from papertrail.services.errors import ValidationError
from papertrail.services.flows.common import CANCEL_BUTTON, is_tax_id, parse_amount, split_csv
from papertrail.services.step_machine import END, Button, FlowDefinition, StepSpec, finish, goto

DocType = Literal["invoice", "invoice_receipt"]
PaymentMethod = Literal["cash", "bit", "paybox", "transfer", "credit", "cheque"]

PAYMENT_METHODS: tuple[str, ...] = ("cash", "bit", "paybox", "transfer", "credit", "cheque")
PAYMENT_LABELS = {
    "cash": "Cash",
    "bit": "Bit",
    "paybox": "PayBox",
    "transfer": "Bank transfer",
    "credit": "Credit card",
    "cheque": "Cheque",
}
DOC_TYPE_LABELS = {"invoice": "Invoice", "invoice_receipt": "Invoice-receipt"}

USAGE = "Usage: /invoice name, amount, description, payment method"


class SelectDocType(CallbackAction):
    action_code: Literal["select_type"]
    value: DocType


class SelectPayment(CallbackAction):
    action_code: Literal["select_payment"]
    value: PaymentMethod


class Confirm(CallbackAction):
    action_code: Literal["confirm"]
    value: None = None


DocumentAction = Annotated[
    Union[SelectDocType, SelectPayment, Confirm, CancelAction],
    Field(discriminator="action_code"),
]


def parse_details(text: str) -> dict:
    """`name, amount, description[, tax_id]`; only a 9-digit last part is the tax id."""
    parts = split_csv(text)
    if len(parts) < 3 or not parts[0]:
        raise ValidationError("Please send: name, amount, description[, tax id]")
    details = {"customer_name": parts[0], "amount": parse_amount(parts[1])}
    rest = parts[2:]
    if len(rest) > 1 and is_tax_id(rest[-1]):
        details["customer_tax_id"] = rest[-1]
        rest = rest[:-1]
    description = ", ".join(p for p in rest if p)
    if not description:
        raise ValidationError("Description is required.")
    details["description"] = description
    return details


def start(text: str):
    if not text.strip():
        return goto("select_type")
    parts = split_csv(text)
    if len(parts) < 4:
        raise ValidationError(USAGE)
    payment = parts[-1].lower().replace(" ", "")
    if payment not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method '{parts[-1]}'. {USAGE}")
    details = parse_details(", ".join(parts[:-1]))
    details.pop("customer_tax_id", None)
    return goto("confirming", doc_type="invoice_receipt", payment_method=payment, **details)


def _on_type(action: SelectDocType, fields):
    return goto("awaiting_details", doc_type=action.value)


def _on_details(event, fields):
    return goto("awaiting_payment", **parse_details(event.text))


def _on_payment(action: SelectPayment, fields):
    return goto("confirming", payment_method=action.value)


def _on_confirm(action, fields):
    return finish()


def summary(fields: dict) -> str:
    lines = [
        f"{DOC_TYPE_LABELS.get(fields.get('doc_type'), 'Document')} for {fields.get('customer_name')}",
        f"Amount: {fields.get('amount')}",
        f"Description: {fields.get('description')}",
        f"Payment: {PAYMENT_LABELS.get(fields.get('payment_method'), fields.get('payment_method'))}",
    ]
    if fields.get("customer_tax_id"):
        lines.append(f"Customer ID: {fields['customer_tax_id']}")
    return "\n".join(lines)


DOCUMENT_FLOW = FlowDefinition(
    kind=FlowKind.DOCUMENT,
    steps=[
        StepSpec(
            name="select_type",
            prompt="Which document should I create?",
            owns=frozenset({"doc_type"}),
            on_action={"select_type": _on_type},
            buttons=(
                (Button("Invoice", "select_type", "invoice"), Button("Invoice-receipt", "select_type", "invoice_receipt")),
                (CANCEL_BUTTON,),
            ),
        ),
        StepSpec(
            name="awaiting_details",
            prompt="Send the details: name, amount, description[, customer tax id]",
            owns=frozenset({"customer_name", "amount", "description", "customer_tax_id"}),
            on_message=_on_details,
            buttons=((CANCEL_BUTTON,),),
        ),
        StepSpec(
            name="awaiting_payment",
            prompt="How was it paid?",
            owns=frozenset({"payment_method"}),
            on_action={"select_payment": _on_payment},
            buttons=(
                tuple(Button(PAYMENT_LABELS[m], "select_payment", m) for m in PAYMENT_METHODS[:3]),
                tuple(Button(PAYMENT_LABELS[m], "select_payment", m) for m in PAYMENT_METHODS[3:]),
                (CANCEL_BUTTON,),
            ),
        ),
        StepSpec(
            name="confirming",
            prompt=lambda fields: f"{summary(fields)}\n\nCreate it?",
            on_action={"confirm": _on_confirm},
            buttons=((Button("Confirm", "confirm"), CANCEL_BUTTON),),
        ),
    ],
    edges={
        "select_type": frozenset({"awaiting_details"}),
        "awaiting_details": frozenset({"awaiting_payment"}),
        "awaiting_payment": frozenset({"confirming"}),
        "confirming": frozenset({END}),
    },
    actions=TypeAdapter(DocumentAction),
    starter=start,
)
