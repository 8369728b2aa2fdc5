"""Inline-button callback data: ``{flow}:{action}[:{value}]``.

Telegram caps callback_data at 64 bytes, so flows travel as short codes.
"""

from dataclasses import dataclass
from typing import Optional

from papertrail.schemas.session import FlowKind

MAX_CALLBACK_BYTES = 64
SEPARATOR = ":"

FLOW_CODES: dict[FlowKind, str] = {
    FlowKind.DOCUMENT: "doc",
    FlowKind.REPORT: "rep",
    FlowKind.ONBOARDING: "onb",
}
_FLOWS_BY_CODE = {code: kind for kind, code in FLOW_CODES.items()}


@dataclass(frozen=True)
class CallbackData:
    flow_kind: FlowKind
    action_code: str
    value: Optional[str] = None


def encode(flow_kind: FlowKind, action_code: str, value: Optional[str] = None) -> str:
    parts = [FLOW_CODES[FlowKind(flow_kind)], action_code]
    if value is not None:
        parts.append(value)
    if any(not p or SEPARATOR in p for p in parts[:2]):
        raise ValueError(f"Bad callback component in {parts!r}")
    data = SEPARATOR.join(parts)
    if len(data.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ValueError(f"Callback data exceeds {MAX_CALLBACK_BYTES} bytes: {data!r}")
    return data


def decode(data: Optional[str]) -> Optional[CallbackData]:
    """None for anything not produced by encode()."""
    if not data:
        return None
    parts = data.split(SEPARATOR, 2)
    if len(parts) < 2 or not parts[1]:
        return None
    kind = _FLOWS_BY_CODE.get(parts[0])
    if kind is None:
        return None
    value = parts[2] if len(parts) == 3 else None
    return CallbackData(flow_kind=kind, action_code=parts[1], value=value)
