from papertrail.schemas.session import FlowKind
from papertrail.services.flows.document import DOCUMENT_FLOW
from papertrail.services.flows.onboarding import ONBOARDING_FLOW
from papertrail.services.flows.report import REPORT_FLOW
from papertrail.services.step_machine import FlowDefinition

FLOWS: dict[FlowKind, FlowDefinition] = {
    FlowKind.DOCUMENT: DOCUMENT_FLOW,
    FlowKind.REPORT: REPORT_FLOW,
    FlowKind.ONBOARDING: ONBOARDING_FLOW,
}

# bot command (without slash) -> flow it starts
COMMANDS: dict[str, FlowKind] = {
    "invoice": FlowKind.DOCUMENT,
    "report": FlowKind.REPORT,
    "onboard": FlowKind.ONBOARDING,
}


def get_flow(kind: FlowKind) -> FlowDefinition:
    return FLOWS[FlowKind(kind)]


__all__ = ["COMMANDS", "FLOWS", "get_flow"]
